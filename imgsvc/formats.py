"""图片格式表：格式名规范化、MIME 映射以及基于内容的格式识别。

格式表在进程启动时构建一次，按引用传给校验器和 OSS 适配层，运行期间不可修改。
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from .errors import UnsupportedFormatError


DEFAULT_QUALITY = 75

# 魔数 -> 格式名；WebP 需要额外检查 RIFF 之后的 WEBP 标记
_SIGNATURES = (
    (b"\xff\xd8\xff", "jpeg"),
    (b"\x89PNG\r\n\x1a\n", "png"),
    (b"II*\x00", "tiff"),
    (b"MM\x00*", "tiff"),
    (b"GIF87a", "gif"),
    (b"GIF89a", "gif"),
    (b"BM", "bmp"),
)


def detect_format(data: bytes) -> Optional[str]:
    """根据文件头识别格式，不信任文件名。无法识别时返回 None。"""
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    for signature, fmt in _SIGNATURES:
        if data.startswith(signature):
            return fmt
    return None


@dataclass(frozen=True)
class FormatTable:
    mime_types: Mapping[str, str]
    aliases: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    # Pillow 的编码器名称
    pil_names: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def supported(self) -> frozenset:
        return frozenset(self.mime_types)

    def normalize(self, fmt: Optional[str]) -> str:
        """规范化格式名：jpg -> jpeg, tif -> tiff；空值返回空串表示保持原格式。"""
        if not fmt:
            return ""
        fmt = fmt.strip().lower()
        fmt = self.aliases.get(fmt, fmt)
        if fmt not in self.mime_types:
            raise UnsupportedFormatError(fmt)
        return fmt

    def format_for_filename(self, filename: str) -> str:
        if "." not in filename:
            raise UnsupportedFormatError(filename)
        return self.normalize(filename.rsplit(".", 1)[-1])

    def content_type_for(self, filename: str) -> str:
        return self.mime_types[self.format_for_filename(filename)]

    def pil_name(self, fmt: str) -> str:
        return self.pil_names.get(fmt, fmt.upper())


def build_format_table() -> FormatTable:
    return FormatTable(
        mime_types=MappingProxyType({
            "jpeg": "image/jpeg",
            "png": "image/png",
            "webp": "image/webp",
            "tiff": "image/tiff",
        }),
        aliases=MappingProxyType({"jpg": "jpeg", "tif": "tiff"}),
        pil_names=MappingProxyType({
            "jpeg": "JPEG",
            "png": "PNG",
            "webp": "WEBP",
            "tiff": "TIFF",
        }),
    )


FORMATS = build_format_table()
