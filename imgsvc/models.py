from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, Integer, String

from .database import Base


class Image(Base):
    __tablename__ = "images"

    # sqlite 只对 INTEGER 主键自增
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    # 带签名的临时访问链接
    url = Column(String(2048), nullable=False)
    # OSS 中的对象 key
    filename = Column(String(512), nullable=False, unique=True)
    owner_id = Column(BigInteger, nullable=False, index=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
