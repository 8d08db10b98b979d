"""请求级上下文：已认证的用户 id 与请求截止时间，显式地沿调用链传递。"""
import time
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Header, Request

from .config import get_settings
from .errors import DeadlineExceededError, UnauthorizedError


class Deadline:
    def __init__(self, timeout: Optional[float] = None, expires_at: Optional[float] = None):
        if expires_at is None and timeout is not None:
            expires_at = time.monotonic() + timeout
        self.expires_at = expires_at

    @classmethod
    def never(cls) -> "Deadline":
        return cls()

    def remaining(self) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at

    def check(self, where: str = "") -> None:
        if self.expired():
            raise DeadlineExceededError(f"请求已超时: {where}" if where else "")


@dataclass(frozen=True)
class RequestContext:
    user_id: int
    deadline: Deadline = field(default_factory=Deadline.never)


def get_request_context(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="网关认证后注入的用户 id"),
) -> RequestContext:
    # 认证在上游完成，这里只接收结果
    if not x_user_id:
        raise UnauthorizedError("缺少 X-User-Id")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise UnauthorizedError("X-User-Id 格式错误")
    if user_id <= 0:
        raise UnauthorizedError("X-User-Id 格式错误")

    deadline = getattr(request.state, "deadline", None)
    if deadline is None:
        deadline = Deadline(get_settings().REQUEST_TIMEOUT)
    return RequestContext(user_id=user_id, deadline=deadline)
