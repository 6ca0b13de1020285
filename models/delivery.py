from dataclasses import dataclass
from enum import Enum
from typing import Optional


class DeliveryKind(Enum):
    STREAM = "stream"
    LINK = "link"
    REMOTE = "remote"
    NOT_FOUND = "not_found"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True)
class Delivery:
    """Outcome of a download or stream request.

    Redirect kinds carry a ``location``: a path relative to the service root
    for STREAM and LINK, an absolute url for REMOTE. Error kinds carry a
    ``message`` only.
    """

    kind: DeliveryKind
    location: Optional[str] = None
    message: Optional[str] = None
    cached: bool = False

    @property
    def is_redirect(self) -> bool:
        return self.kind in (DeliveryKind.STREAM, DeliveryKind.LINK, DeliveryKind.REMOTE)

    @classmethod
    def stream(cls, location: str, cached: bool = False) -> "Delivery":
        return cls(DeliveryKind.STREAM, location=location, cached=cached)

    @classmethod
    def link(cls, location: str, cached: bool = False) -> "Delivery":
        return cls(DeliveryKind.LINK, location=location, cached=cached)

    @classmethod
    def remote(cls, url: str, cached: bool = False) -> "Delivery":
        return cls(DeliveryKind.REMOTE, location=url, cached=cached)

    @classmethod
    def not_found(cls, message: str = "Audio not found") -> "Delivery":
        return cls(DeliveryKind.NOT_FOUND, message=message)

    @classmethod
    def internal_error(cls, message: str) -> "Delivery":
        return cls(DeliveryKind.INTERNAL_ERROR, message=message)
