"""图片引擎。

两类能力分开抽象：
- GeometryEngine：旋转/翻转/质量、缩放、裁剪、格式转换，输入输出都是编码后的字节
- FilterEngine：解码成像素后逐像素滤镜，再按当前格式重新编码

Pipeline 只依赖这两个接口，默认实现都基于 Pillow。
"""
import abc
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Optional, Tuple

from PIL import Image, ImageFilter, ImageOps

from .formats import DEFAULT_QUALITY, FORMATS, FormatTable, detect_format
from .transforms import FilterSpec

logger = logging.getLogger(__name__)

GRAVITY_CENTRE = "centre"

# 顺时针旋转 -> Pillow 转置（Pillow 的角度是逆时针）
_CLOCKWISE_TRANSPOSE = {
    90: Image.Transpose.ROTATE_270,
    180: Image.Transpose.ROTATE_180,
    270: Image.Transpose.ROTATE_90,
}

_SEPIA_MATRIX = (
    0.393, 0.769, 0.189, 0,
    0.349, 0.686, 0.168, 0,
    0.272, 0.534, 0.131, 0,
)


@dataclass(frozen=True)
class GeometryOps:
    """一次几何/格式引擎调用的参数，未设置的字段不生效。"""

    rotate: int = 0
    flip: bool = False
    mirror: bool = False
    quality: int = DEFAULT_QUALITY
    width: int = 0
    height: int = 0
    gravity: Optional[str] = None
    target_format: str = ""


class GeometryEngine(abc.ABC):
    @abc.abstractmethod
    def apply(self, data: bytes, ops: GeometryOps) -> bytes:
        ...


class FilterEngine(abc.ABC):
    @abc.abstractmethod
    def apply(self, data: bytes, filters: FilterSpec) -> bytes:
        ...


def _open(data: bytes) -> Image.Image:
    img = Image.open(BytesIO(data))
    img.load()
    return img


def _has_alpha(img: Image.Image) -> bool:
    return "A" in img.getbands() or "transparency" in img.info


def _prepare_mode(img: Image.Image, fmt: str) -> Image.Image:
    """把图像模式调整为目标编码器可以接受的模式。"""
    if fmt == "jpeg":
        if img.mode not in ("RGB", "L", "CMYK"):
            return img.convert("RGB")
    elif fmt == "webp":
        if img.mode not in ("RGB", "RGBA"):
            return img.convert("RGBA" if _has_alpha(img) else "RGB")
    elif fmt == "tiff":
        if img.mode not in ("1", "L", "LA", "P", "RGB", "RGBA", "CMYK", "I;16", "I", "F"):
            return img.convert("RGBA" if _has_alpha(img) else "RGB")
    elif img.mode not in ("1", "L", "LA", "P", "RGB", "RGBA", "I;16", "I"):
        # png 原生支持 16 位灰度
        return img.convert("RGBA" if _has_alpha(img) else "RGB")
    return img


def encode(img: Image.Image, fmt: str, quality: int, formats: FormatTable = FORMATS) -> bytes:
    out = BytesIO()
    img = _prepare_mode(img, fmt)
    params = {}
    if fmt in ("jpeg", "webp"):
        params["quality"] = quality
    img.save(out, format=formats.pil_name(fmt), **params)
    return out.getvalue()


def read_dimensions(data: bytes) -> Tuple[int, int, Optional[str]]:
    with Image.open(BytesIO(data)) as img:
        width, height = img.size
    return width, height, detect_format(data)


def _rotate(img: Image.Image, angle: int) -> Image.Image:
    angle %= 360
    if angle == 0:
        return img
    if angle in _CLOCKWISE_TRANSPOSE:
        return img.transpose(_CLOCKWISE_TRANSPOSE[angle])
    # 非 90 度倍数：扩展画布，空白处填充
    return img.rotate(-angle, resample=Image.Resampling.BICUBIC, expand=True)


def _crop_centre(img: Image.Image, width: int, height: int) -> Image.Image:
    width = min(width, img.width)
    height = min(height, img.height)
    left = (img.width - width) // 2
    top = (img.height - height) // 2
    return img.crop((left, top, left + width, top + height))


class PillowGeometryEngine(GeometryEngine):
    def __init__(self, formats: FormatTable = FORMATS):
        self.formats = formats

    def apply(self, data: bytes, ops: GeometryOps) -> bytes:
        source_format = detect_format(data)
        if source_format not in self.formats.supported:
            raise ValueError(f"无法识别的源图片格式: {source_format}")
        img = _open(data)

        img = _rotate(img, ops.rotate)
        if ops.flip:
            img = img.transpose(Image.Transpose.FLIP_TOP_BOTTOM)
        if ops.mirror:
            img = img.transpose(Image.Transpose.FLIP_LEFT_RIGHT)

        if ops.width > 0 and ops.height > 0:
            if ops.gravity == GRAVITY_CENTRE:
                img = _crop_centre(img, ops.width, ops.height)
            else:
                img = img.resize((ops.width, ops.height), Image.Resampling.LANCZOS)

        return encode(img, ops.target_format or source_format, ops.quality, self.formats)


class PillowFilterEngine(FilterEngine):
    def __init__(self, formats: FormatTable = FORMATS, quality: int = DEFAULT_QUALITY):
        self.formats = formats
        self.quality = quality

    def apply(self, data: bytes, filters: FilterSpec) -> bytes:
        # 按当前内容识别的格式重新编码，而不是原始上传格式
        fmt = detect_format(data)
        if fmt not in self.formats.supported:
            raise ValueError(f"无法识别的图片格式: {fmt}")

        img = _open(data)
        alpha = img.convert("RGBA").getchannel("A") if _has_alpha(img) else None
        rgb = img.convert("RGB")

        if filters.grayscale:
            rgb = ImageOps.grayscale(rgb).convert("RGB")
        if filters.sepia:
            # 50% 强度
            rgb = Image.blend(rgb, rgb.convert("RGB", _SEPIA_MATRIX), 0.5)
        if filters.gamma > 0:
            inverse = 1.0 / filters.gamma
            table = [round(255 * (i / 255) ** inverse) for i in range(256)]
            rgb = rgb.point(table * 3)
        if filters.gaussian_blur > 0:
            rgb = rgb.filter(ImageFilter.GaussianBlur(radius=filters.gaussian_blur))

        if alpha is not None:
            rgb.putalpha(alpha)
        return encode(rgb, fmt, self.quality, self.formats)
