from functools import lru_cache
from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from .cache import ImageCache, get_redis_client
from .config import get_settings
from .database import get_db
from .leases import KeyedLock
from .oss import BlobStore
from .pipeline import PipelineExecutor
from .repository import MetadataStore
from .resolver import CacheAsideResolver
from .services import ImageService


@lru_cache
def get_blob_store() -> BlobStore:
    return BlobStore()


@lru_cache
def get_executor() -> PipelineExecutor:
    return PipelineExecutor(max_workers=get_settings().PIPELINE_WORKERS)


@lru_cache
def get_leases() -> KeyedLock:
    return KeyedLock()


def get_image_cache() -> Optional[ImageCache]:
    if not get_settings().REDIS_ENABLED:
        return None
    return ImageCache(get_redis_client())


def get_metadata_store(db: Session = Depends(get_db)) -> MetadataStore:
    return MetadataStore(db)


def get_resolver(
    store: MetadataStore = Depends(get_metadata_store),
    cache: Optional[ImageCache] = Depends(get_image_cache),
) -> CacheAsideResolver:
    return CacheAsideResolver(store, cache, enabled=get_settings().REDIS_ENABLED)


def get_image_service(
    store: MetadataStore = Depends(get_metadata_store),
    resolver: CacheAsideResolver = Depends(get_resolver),
    blobs: BlobStore = Depends(get_blob_store),
    executor: PipelineExecutor = Depends(get_executor),
    leases: KeyedLock = Depends(get_leases),
) -> ImageService:
    return ImageService(
        store=store,
        blobs=blobs,
        resolver=resolver,
        executor=executor,
        leases=leases,
        update_attempts=get_settings().METADATA_UPDATE_ATTEMPTS,
    )
