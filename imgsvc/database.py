from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import get_settings


settings = get_settings()


def _engine_kwargs(uri: str) -> dict:
    if uri.startswith("sqlite"):
        # 内存库需要所有连接共享同一个连接
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    timeout = settings.METADATA_QUERY_TIMEOUT
    # pymysql 的读写超时即单次查询的超时，与请求截止时间无关
    return {
        "pool_pre_ping": True,
        "connect_args": {
            "connect_timeout": timeout,
            "read_timeout": timeout,
            "write_timeout": timeout,
        },
    }


engine = create_engine(settings.database_uri, future=True, **_engine_kwargs(settings.database_uri))

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)

Base = declarative_base()


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
