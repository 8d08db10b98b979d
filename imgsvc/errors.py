"""服务内错误分类，以及到 HTTP 响应的映射。

4xx 只返回通用提示，不泄露资源细节；5xx 记录完整上下文。
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    # 返回给调用方的通用提示
    public_detail = "服务内部错误"

    def __init__(self, message: str = ""):
        self.message = message or self.public_detail
        super().__init__(self.message)


class ValidationError(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    public_detail = "请求参数不合法"


class MalformedQueryError(ValidationError):
    public_detail = "查询参数格式错误"


class UnsupportedFormatError(ValidationError):
    public_detail = "不支持的图片格式"

    def __init__(self, fmt: str = ""):
        self.format = fmt
        super().__init__(f"不支持的图片格式: {fmt}" if fmt else "")


class UnauthorizedError(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    public_detail = "未认证"


class ForbiddenError(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    public_detail = "无权访问该资源"


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    public_detail = "未找到图片"


class ConflictError(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    public_detail = "资源已存在"


class EngineError(ServiceError):
    public_detail = "图片处理失败"

    def __init__(self, stage: str, cause: Exception = None):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage} 阶段失败: {cause}")


class ConversionMismatchError(EngineError):
    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__("convert", ValueError(f"期望 {expected}，实际得到 {actual}"))


class UpstreamError(ServiceError):
    status_code = status.HTTP_502_BAD_GATEWAY
    public_detail = "上游存储服务异常"


class DeadlineExceededError(ServiceError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    public_detail = "请求处理超时"


class InternalError(ServiceError):
    pass


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "%s %s -> %s: %s",
            request.method,
            request.url.path,
            type(exc).__name__,
            exc.message,
            exc_info=exc,
        )
        detail = exc.public_detail
    elif isinstance(exc, ValidationError):
        # 参数错误的具体原因可以告诉调用方
        detail = exc.message
    else:
        detail = exc.public_detail
    return JSONResponse(status_code=exc.status_code, content={"detail": detail})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": ValidationError.public_detail, "errors": jsonable_errors(exc)},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("未处理的异常: %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": InternalError.public_detail},
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
