import json
from typing import Any, Dict, Optional

import redis

from config.logger import get_logger

logger = get_logger(__name__)


class RedisCache:
    """JSON values in redis; entries without ttl never expire"""

    def __init__(self, redis_url: str, key_prefix: str = "mp3cache:"):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._client: Optional[redis.Redis] = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.Redis.from_url(
                self.redis_url, decode_responses=True, socket_connect_timeout=5, socket_timeout=5
            )
        return self._client

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def get_key(self, key: str) -> Optional[dict]:
        try:
            raw = self.client.get(self._key(key))
        except redis.RedisError as e:
            logger.warning("Redis get failed", key=key, error=str(e))
            return None

        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Discarding undecodable redis value", key=key, error=str(e))
            return None

    def put_key(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> bool:
        payload = json.dumps(value)
        try:
            self.client.set(self._key(key), payload, ex=ttl or None)
        except redis.RedisError as e:
            logger.warning("Redis put failed", key=key, error=str(e))
            return False
        return True

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
