from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class ImageOut(BaseModel):
    id: int
    url: str
    filename: str
    user_id: int = Field(validation_alias="owner_id")
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class ImageListResponse(BaseModel):
    page: int
    limit: int
    items: List[ImageOut]


class SizeParams(BaseModel):
    width: int = 0
    height: int = 0


class FilterParams(BaseModel):
    grayscale: bool = False
    sepia: bool = False
    gamma: float = 0
    gaussian_blur: float = 0


class Transformations(BaseModel):
    resize: SizeParams = Field(default_factory=SizeParams)
    crop: SizeParams = Field(default_factory=SizeParams)
    mirror: bool = Field(False, description="沿 Y 轴镜像")
    flip: bool = Field(False, description="沿 X 轴翻转")
    rotate: int = 0
    quality: int = Field(0, description="不大于 0 时使用默认值 75")
    format: str = Field("", description="目标格式：jpeg/png/webp/tiff（jpg/tif 亦可），为空则保持原格式")
    filters: FilterParams = Field(default_factory=FilterParams)


class TransformRequest(BaseModel):
    transformations: Transformations = Field(default_factory=Transformations)


class ImageDimensions(BaseModel):
    width: int
    height: int
    format: str


class ImageMetadataResponse(BaseModel):
    filename: str
    size: int
    metadata: ImageDimensions
