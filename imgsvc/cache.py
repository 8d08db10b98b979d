"""Redis 缓存：按图片 id 缓存完整的 ImageOut，固定 TTL。"""
import logging
from typing import Optional

import redis

from .config import get_settings
from .schemas import ImageOut

logger = logging.getLogger(__name__)


class CacheKeys:
    PREFIX = "image"

    @classmethod
    def image(cls, image_id: int) -> str:
        return f"{cls.PREFIX}-{image_id}"


class ImageCache:
    """get 未命中返回 None；连接/读取失败直接抛 redis 异常，由调用方决定如何处理。"""

    def __init__(self, client: redis.Redis, ttl_seconds: Optional[int] = None):
        self.client = client
        self.ttl_seconds = ttl_seconds or get_settings().CACHE_TTL_SECONDS

    def get(self, image_id: int) -> Optional[ImageOut]:
        data = self.client.get(CacheKeys.image(image_id))
        if not data:
            return None
        return ImageOut.model_validate_json(data)

    def set(self, image: ImageOut) -> None:
        self.client.setex(CacheKeys.image(image.id), self.ttl_seconds, image.model_dump_json())

    def delete(self, image_id: int) -> None:
        self.client.delete(CacheKeys.image(image_id))


_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    global _client
    if _client is None:
        settings = get_settings()
        _client = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
        )
        logger.info("Redis 客户端已创建: %s", settings.REDIS_URL)
    return _client
