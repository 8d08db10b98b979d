import logging

from fastapi import APIRouter, Depends, File, Request, UploadFile, status
from starlette.concurrency import run_in_threadpool

from ..context import RequestContext, get_request_context
from ..dependencies import get_image_service
from ..pagination import parse_pagination
from ..schemas import ImageListResponse, ImageMetadataResponse, ImageOut, TransformRequest
from ..services import ImageService

logger = logging.getLogger(__name__)


router = APIRouter()


@router.post("", response_model=ImageOut, status_code=status.HTTP_201_CREATED)
async def upload_image(
    *,
    ctx: RequestContext = Depends(get_request_context),
    service: ImageService = Depends(get_image_service),
    image: UploadFile = File(..., description="图片文件：jpeg/png/webp/tiff"),
):
    data = await image.read()
    return await run_in_threadpool(service.upload, ctx, image.filename, data)


@router.get("", response_model=ImageListResponse)
def list_images(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    service: ImageService = Depends(get_image_service),
):
    # 只接受恰好 page 和 limit 两个参数
    pagination = parse_pagination(request.query_params)
    items = service.list_images(ctx, pagination)
    return ImageListResponse(page=pagination.page, limit=pagination.limit, items=items)


@router.post("/metadata", response_model=ImageMetadataResponse)
async def image_metadata(
    *,
    ctx: RequestContext = Depends(get_request_context),
    service: ImageService = Depends(get_image_service),
    image: UploadFile = File(...),
):
    data = await image.read()
    return service.inspect(image.filename, data)


@router.get("/{image_id}", response_model=ImageOut)
def get_image_detail(
    image_id: int,
    ctx: RequestContext = Depends(get_request_context),
    service: ImageService = Depends(get_image_service),
) -> ImageOut:
    return service.get(ctx, image_id)


@router.post("/{image_id}/transform", response_model=ImageOut)
def transform_image(
    image_id: int,
    payload: TransformRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: ImageService = Depends(get_image_service),
) -> ImageOut:
    return service.transform(ctx, image_id, payload.transformations)
