import logging
import posixpath
from datetime import datetime
from typing import Any, List, Mapping, Optional, Union

from PIL import UnidentifiedImageError
from PIL.Image import DecompressionBombError

from .context import RequestContext
from .engines import read_dimensions
from .errors import (
    ConflictError,
    ForbiddenError,
    UnsupportedFormatError,
    UpstreamError,
    ValidationError,
)
from .formats import FORMATS, FormatTable, detect_format
from .leases import KeyedLock
from .models import Image
from .oss import BlobStore
from .pagination import PaginationParams
from .pipeline import PipelineExecutor
from .repository import MetadataStore
from .resolver import CacheAsideResolver
from .schemas import ImageDimensions, ImageMetadataResponse, ImageOut, Transformations
from .transforms import validate_spec

logger = logging.getLogger(__name__)


class ImageService:
    def __init__(
        self,
        *,
        store: MetadataStore,
        blobs: BlobStore,
        resolver: CacheAsideResolver,
        executor: PipelineExecutor,
        leases: KeyedLock,
        formats: FormatTable = FORMATS,
        update_attempts: int = 3,
    ):
        self.store = store
        self.blobs = blobs
        self.resolver = resolver
        self.executor = executor
        self.leases = leases
        self.formats = formats
        self.update_attempts = max(1, update_attempts)

    def upload(self, ctx: RequestContext, filename: str, data: bytes) -> ImageOut:
        if not data:
            raise ValidationError("上传文件为空")
        filename = posixpath.basename((filename or "").replace("\\", "/"))
        # 扩展名与内容都要是支持的格式，扩展名不对在访问 OSS 之前就失败
        self.formats.format_for_filename(filename)
        detected = detect_format(data)
        if detected not in self.formats.supported:
            raise UnsupportedFormatError(detected or "unknown")

        key = self.blobs.object_key(filename)
        if self.store.get_by_filename(key) is not None:
            raise ConflictError(f"对象 {key} 已存在")

        ctx.deadline.check("upload")
        key, url = self.blobs.put(filename, data)
        record = self.store.create(url=url, filename=key, owner_id=ctx.user_id)
        logger.info("用户 [%d] 上传图片 [%d] -> %s", ctx.user_id, record.id, key)
        return ImageOut.model_validate(record)

    def get(self, ctx: RequestContext, image_id: int) -> ImageOut:
        image = self.resolver.resolve(image_id, ctx.deadline)
        self._check_owner(ctx, image)
        return image

    def list_images(self, ctx: RequestContext, pagination: PaginationParams) -> List[ImageOut]:
        ctx.deadline.check("list")
        return [ImageOut.model_validate(r) for r in self.store.get_by_owner(ctx.user_id, pagination)]

    def transform(
        self,
        ctx: RequestContext,
        image_id: int,
        raw: Union[Transformations, Mapping[str, Any]],
    ) -> ImageOut:
        spec = validate_spec(raw, self.formats)
        image = self.resolver.resolve(image_id, ctx.deadline)
        # 所有权检查必须在任何写操作之前
        self._check_owner(ctx, image)
        logger.info("用户 [%d] 请求变换图片 [%d]: %s", ctx.user_id, image_id, spec)

        with self.leases.hold(image_id, ctx.deadline):
            ctx.deadline.check("download")
            data = self.blobs.get(image.filename)
            out = self.executor.run(data, spec, ctx.deadline)

            ctx.deadline.check("replace")
            url = self.blobs.signed_url(image.filename)
            self.blobs.replace(image.filename, out)
            # blob 已覆盖，之后不再检查截止时间，尽量让元数据跟上
            record = self._commit_metadata(image_id, url=url, updated_at=datetime.utcnow())
            self.resolver.invalidate(image_id)

        return ImageOut.model_validate(record)

    def inspect(self, filename: str, data: bytes) -> ImageMetadataResponse:
        if not data:
            raise ValidationError("上传文件为空")
        try:
            width, height, fmt = read_dimensions(data)
        except (UnidentifiedImageError, DecompressionBombError, OSError) as e:
            raise ValidationError("无法识别的图片内容") from e
        return ImageMetadataResponse(
            filename=filename,
            size=len(data),
            metadata=ImageDimensions(width=width, height=height, format=fmt or "unknown"),
        )

    def _check_owner(self, ctx: RequestContext, image: ImageOut) -> None:
        if image.user_id != ctx.user_id:
            logger.warning("用户 [%d] 访问不属于自己的图片 [%d]", ctx.user_id, image.id)
            raise ForbiddenError()

    def _commit_metadata(self, image_id: int, **fields) -> Image:
        # replace 对相同字节是幂等的，这里只重试元数据更新
        last_error: Optional[UpstreamError] = None
        for attempt in range(1, self.update_attempts + 1):
            try:
                return self.store.update(image_id, **fields)
            except UpstreamError as e:
                last_error = e
                logger.warning("更新图片 [%d] 元数据失败（第 %d 次）: %s", image_id, attempt, e)
        logger.error("图片 [%d] 已写入 OSS，但元数据未能更新", image_id)
        raise last_error
