"""Cache-aside 读取：先查缓存，未命中再查元数据库并回填。

- 缓存关闭：只读数据库，从不访问缓存
- 命中：直接返回缓存记录
- 未命中：读数据库，尽力回填（回填失败只记日志，不影响本次读取）
- 缓存读取本身出错：按上游错误处理，不降级为只读数据库

并发未命中时可能重复读库、重复回填，写入的是同一份数据，无需加锁。
写路径通过 invalidate 删除缓存；删除失败时旧记录最多保留一个 TTL。
"""
import logging
from typing import Callable, Optional

import pydantic
import redis

from .cache import ImageCache
from .context import Deadline
from .errors import UpstreamError
from .repository import MetadataStore
from .schemas import ImageOut

logger = logging.getLogger(__name__)


class CacheAsideResolver:
    def __init__(
        self,
        store: MetadataStore,
        cache: Optional[ImageCache] = None,
        enabled: Optional[bool] = None,
    ):
        self.store = store
        self.cache = cache
        # 不显式指定时，有缓存即启用
        self.enabled = cache is not None and (enabled is None or enabled)

    def _from_store(self, image_id: int) -> ImageOut:
        return ImageOut.model_validate(self.store.get_by_id(image_id))

    def resolve(self, image_id: int, deadline: Optional[Deadline] = None) -> ImageOut:
        deadline = deadline or Deadline.never()
        deadline.check("resolve")
        if not self.enabled:
            return self._from_store(image_id)

        try:
            cached = self.cache.get(image_id)
        except (redis.RedisError, pydantic.ValidationError) as e:
            logger.error("读取缓存失败: image %d: %s", image_id, e)
            raise UpstreamError(f"读取缓存失败: {e}") from e

        if cached is not None:
            logger.debug("缓存命中: image %d", image_id)
            return cached

        logger.debug("缓存未命中: image %d", image_id)
        deadline.check("resolve")
        image = self._from_store(image_id)
        self._best_effort(self.cache.set, image, "回填缓存")
        return image

    def invalidate(self, image_id: int) -> None:
        if self.enabled:
            self._best_effort(self.cache.delete, image_id, "删除缓存")

    def _best_effort(self, fn: Callable, arg, action: str) -> None:
        try:
            fn(arg)
        except redis.RedisError as e:
            logger.warning("%s失败: %s", action, e)
