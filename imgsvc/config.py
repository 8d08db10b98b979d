from typing import Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """项目配置，支持从环境变量与.env文件加载。"""

    # MySQL（元数据存储）
    MYSQL_HOST: str = "localhost"
    MYSQL_PORT: int = 3306
    MYSQL_DB: str = "image_processing"
    MYSQL_USER: str = "root"
    MYSQL_PASSWORD: str = "password"
    # 可选：直接给出完整连接串（测试中用 sqlite://）
    DATABASE_URL: Optional[str] = None
    # 单次元数据读写的超时（秒），与请求自身的截止时间无关
    METADATA_QUERY_TIMEOUT: int = 5
    METADATA_UPDATE_ATTEMPTS: int = 3

    # OSS（阿里云，S3 兼容接口）
    OSS_ENDPOINT: str = "https://oss-your-endpoint.aliyuncs.com"
    OSS_ACCESS_KEY_ID: str = ""
    OSS_ACCESS_KEY_SECRET: str = ""
    OSS_REGION: str = "oss-cn-hangzhou"
    OSS_BUCKET: str = "transformed-images"
    OSS_TIMEOUT: float = 10.0
    IMAGE_KEY_PREFIX: str = "uploaded_"
    SIGNED_URL_TTL: int = 6 * 3600

    # Redis 缓存
    REDIS_ENABLED: bool = False
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_SOCKET_TIMEOUT: float = 5.0
    CACHE_TTL_SECONDS: int = 15 * 60

    # 图片处理线程池大小，不填则按 CPU 数
    PIPELINE_WORKERS: Optional[int] = None

    # 整个请求的截止时间（秒）
    REQUEST_TIMEOUT: float = 60.0

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def database_uri(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        password = quote_plus(self.MYSQL_PASSWORD)
        return (
            f"mysql+pymysql://{self.MYSQL_USER}:{password}@{self.MYSQL_HOST}:{self.MYSQL_PORT}/"
            f"{self.MYSQL_DB}?charset=utf8mb4"
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
