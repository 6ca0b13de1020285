import os

from config.logger import get_logger
from utils.exceptions import DeliveryConstructionError

logger = get_logger(__name__)


class LinkPublisher:
    """Publish artifacts under human readable names for forced downloads.

    Aliases live at ``<links_root>/<artifact stem>/<display name>`` and are
    symlinks to the artifact. An existing alias is trusted as is.
    """

    def __init__(self, links_root: str, url_prefix: str = "links"):
        self.links_root = links_root
        self.url_prefix = url_prefix
        os.makedirs(self.links_root, exist_ok=True)

    def publish(self, artifact_path: str, display_name: str) -> str:
        """Return the url path of the alias, creating it when missing"""
        folder = os.path.splitext(os.path.basename(artifact_path))[0]
        link_folder = os.path.join(self.links_root, folder)
        link_path = os.path.join(link_folder, display_name)
        url_path = f"{self.url_prefix}/{folder}/{display_name}"

        if os.path.lexists(link_path):
            return url_path

        try:
            os.makedirs(link_folder, exist_ok=True)
            os.symlink(os.path.abspath(artifact_path), link_path)
        except OSError as e:
            # another request may have created it first
            if isinstance(e, FileExistsError) and os.path.lexists(link_path):
                return url_path
            logger.error(
                "Couldn't create symlink for downloading",
                artifact_path=artifact_path,
                link_path=link_path,
                error=str(e),
            )
            raise DeliveryConstructionError(f"Couldn't create link for {display_name}") from e

        logger.debug("Created download link", link_path=link_path)
        return url_path
