from dataclasses import dataclass
from typing import Mapping

from .errors import MalformedQueryError, ValidationError


@dataclass(frozen=True)
class PaginationParams:
    page: int = 1
    limit: int = 10


def parse_pagination(query: Mapping[str, str]) -> PaginationParams:
    """严格解析分页参数：必须恰好是 page 和 limit 两个，多一个少一个都不行。"""
    if len(query) != 2 or set(query) != {"page", "limit"}:
        raise MalformedQueryError("分页参数必须且只能包含 page 和 limit")

    values = {}
    for name in ("page", "limit"):
        try:
            values[name] = int(query[name])
        except (TypeError, ValueError):
            raise ValidationError(f"{name} 必须是整数")
        if values[name] < 1:
            raise ValidationError(f"{name} 必须大于等于 1")
    return PaginationParams(page=values["page"], limit=values["limit"])
