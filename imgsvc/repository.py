"""元数据存储：images 表的增查改，驱动层异常统一转成 UpstreamError。"""
import logging
from typing import List, Optional

from sqlalchemy import asc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import NotFoundError, UpstreamError
from .models import Image
from .pagination import PaginationParams

logger = logging.getLogger(__name__)


class MetadataStore:
    def __init__(self, db: Session):
        self.db = db

    def _fail(self, action: str, e: Exception) -> UpstreamError:
        self.db.rollback()
        logger.error("元数据存储%s失败: %s", action, e)
        return UpstreamError(f"元数据存储{action}失败: {e}")

    def create(self, *, url: str, filename: str, owner_id: int) -> Image:
        record = Image(url=url, filename=filename, owner_id=owner_id)
        try:
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
        except SQLAlchemyError as e:
            raise self._fail("写入", e) from e
        return record

    def get_by_id(self, image_id: int) -> Image:
        try:
            record = self.db.get(Image, image_id)
        except SQLAlchemyError as e:
            raise self._fail("查询", e) from e
        if record is None:
            raise NotFoundError(f"image {image_id} 不存在")
        return record

    def get_by_filename(self, filename: str) -> Optional[Image]:
        try:
            return self.db.execute(select(Image).where(Image.filename == filename)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._fail("查询", e) from e

    def get_by_owner(self, owner_id: int, pagination: PaginationParams) -> List[Image]:
        offset = (pagination.page - 1) * pagination.limit
        stmt = (
            select(Image)
            .where(Image.owner_id == owner_id)
            .order_by(asc(Image.created_at), asc(Image.id))
            .offset(offset)
            .limit(pagination.limit)
        )
        try:
            return list(self.db.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            raise self._fail("查询", e) from e

    def update(self, image_id: int, **fields) -> Image:
        """更新 url/filename/updated_at 等字段，行不存在时抛 NotFoundError。"""
        try:
            record = self.db.get(Image, image_id)
            if record is None:
                raise NotFoundError(f"image {image_id} 不存在")
            for key, value in fields.items():
                setattr(record, key, value)
            self.db.commit()
            self.db.refresh(record)
        except SQLAlchemyError as e:
            raise self._fail("更新", e) from e
        return record
