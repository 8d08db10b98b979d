import logging

from fastapi import FastAPI

from .config import get_settings
from .database import Base, engine
from .errors import setup_exception_handlers
from .middleware import RequestDeadlineMiddleware


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(title="图片处理服务 API", version="1.0.0")

    # 路由
    from . import models  # noqa: F401  注册表结构
    from .dependencies import get_executor
    from .routers import images, test  # 延迟导入以避免循环

    app.include_router(images.router, prefix="/images", tags=["images"])
    app.include_router(test.router, prefix="/test", tags=["test"])

    app.add_middleware(RequestDeadlineMiddleware, timeout=settings.REQUEST_TIMEOUT)
    setup_exception_handlers(app)

    @app.on_event("startup")
    def on_startup() -> None:
        # 初始化数据库表
        Base.metadata.create_all(bind=engine)

    @app.on_event("shutdown")
    def on_shutdown() -> None:
        get_executor().shutdown()

    return app


app = create_app()
