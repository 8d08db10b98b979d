"""变换参数校验：把用户提交的 transformations 规范化为 TransformSpec。"""
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Union

import pydantic

from .errors import ValidationError
from .formats import DEFAULT_QUALITY, FORMATS, FormatTable
from .schemas import Transformations

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Dimensions:
    width: int = 0
    height: int = 0

    @property
    def is_set(self) -> bool:
        # 宽高必须同时为正，只给一半等同于没给
        return self.width > 0 and self.height > 0


@dataclass(frozen=True)
class FilterSpec:
    grayscale: bool = False
    sepia: bool = False
    gamma: float = 0.0
    gaussian_blur: float = 0.0

    @property
    def any(self) -> bool:
        return self.grayscale or self.sepia or self.gamma > 0 or self.gaussian_blur > 0


@dataclass(frozen=True)
class TransformSpec:
    resize: Dimensions = field(default_factory=Dimensions)
    crop: Dimensions = field(default_factory=Dimensions)
    mirror: bool = False
    flip: bool = False
    rotate: int = 0
    quality: int = DEFAULT_QUALITY
    target_format: str = ""
    filters: FilterSpec = field(default_factory=FilterSpec)


def validate_spec(
    raw: Union[Transformations, Mapping[str, Any]],
    formats: FormatTable = FORMATS,
) -> TransformSpec:
    """校验并规范化变换参数。

    - 格式：jpg -> jpeg，tif -> tiff；不支持的格式抛 UnsupportedFormatError
    - 质量：不大于 0 时取默认值 75；大于 100 原样交给引擎
    - 缩放/裁剪：宽高都为正才生效，否则整体跳过
    - 旋转：任意整数都接受
    """
    if not isinstance(raw, Transformations):
        try:
            raw = Transformations.model_validate(raw)
        except pydantic.ValidationError as e:
            raise ValidationError(f"变换参数不合法: {e.error_count()} 处错误") from e

    target_format = formats.normalize(raw.format)

    quality = raw.quality if raw.quality > 0 else DEFAULT_QUALITY

    resize = Dimensions(raw.resize.width, raw.resize.height)
    crop = Dimensions(raw.crop.width, raw.crop.height)
    if not resize.is_set:
        resize = Dimensions()
    if not crop.is_set:
        crop = Dimensions()

    if raw.rotate % 90:
        logger.warning("旋转角度 %d 不是 90 的倍数，输出会带有填充边", raw.rotate)

    return TransformSpec(
        resize=resize,
        crop=crop,
        mirror=raw.mirror,
        flip=raw.flip,
        rotate=raw.rotate,
        quality=quality,
        target_format=target_format,
        filters=FilterSpec(
            grayscale=raw.filters.grayscale,
            sepia=raw.filters.sepia,
            gamma=raw.filters.gamma,
            gaussian_blur=raw.filters.gaussian_blur,
        ),
    )
