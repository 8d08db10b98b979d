"""请求截止时间中间件。"""
import asyncio
import logging
from collections.abc import Callable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .context import Deadline
from .errors import DeadlineExceededError

logger = logging.getLogger(__name__)


class RequestDeadlineMiddleware(BaseHTTPMiddleware):
    """给每个请求设置统一的截止时间。

    截止时间放在 request.state.deadline 上，供下游在阻塞点主动检查；
    整体超时后直接返回 504，仍在执行的阻塞调用在下一次检查时放弃。
    """

    def __init__(self, app, timeout: float = 60.0):
        super().__init__(app)
        self.timeout = timeout

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.deadline = Deadline(self.timeout)
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error("请求超时: %s %s", request.method, request.url.path)
            return JSONResponse(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                content={"detail": DeadlineExceededError.public_detail},
            )
