import os
import sys
from io import BytesIO
from types import SimpleNamespace
from datetime import datetime

# 测试使用内存 sqlite，不连 MySQL / Redis
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_ENABLED", "false")

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
import redis
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient
from PIL import Image as PILImage

from imgsvc.cache import ImageCache
from imgsvc.database import Base, engine
from imgsvc.dependencies import get_blob_store, get_image_cache
from imgsvc.main import app
from imgsvc.oss import BlobStore


def make_image(fmt: str = "jpeg", size=(64, 48), mode: str = "RGB") -> bytes:
    """生成带渐变的测试图片，保证有损压缩下质量参数有可见影响。"""
    width, height = size
    img = PILImage.new("RGB", size)
    img.putdata([
        ((x * 4) % 256, (y * 5) % 256, ((x + y) * 3) % 256)
        for y in range(height)
        for x in range(width)
    ])
    if mode != "RGB":
        img = img.convert(mode)
    out = BytesIO()
    img.save(out, format=fmt.upper())
    return out.getvalue()


def open_image(data: bytes) -> PILImage.Image:
    img = PILImage.open(BytesIO(data))
    img.load()
    return img


def make_record(image_id: int = 5, owner_id: int = 1, filename: str = "uploaded_cat.jpg"):
    now = datetime(2024, 1, 1, 12, 0, 0)
    return SimpleNamespace(
        id=image_id,
        url=f"https://bucket.example.com/{filename}?sig=abc",
        filename=filename,
        owner_id=owner_id,
        created_at=now,
        updated_at=now,
    )


class FakeS3Client:
    """模拟 boto3 S3 客户端，记录所有写操作。"""

    def __init__(self):
        self.objects = {}
        self.content_types = {}
        self.puts = []

    def put_object(self, Bucket, Key, Body, ContentType=None):
        self.puts.append(Key)
        self.objects[Key] = Body
        self.content_types[Key] = ContentType
        return {}

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": BytesIO(self.objects[Key])}

    def generate_presigned_url(self, ClientMethod, Params, ExpiresIn, HttpMethod=None):
        return f"https://{Params['Bucket']}.oss.example.com/{Params['Key']}?Expires={ExpiresIn}&Signature=test"


class FakeRedis:
    """只实现 get/setex/delete 的内存 Redis。"""

    def __init__(self):
        self.data = {}
        self.ttls = {}
        self.calls = []
        self.fail_reads = False
        self.fail_writes = False

    def get(self, key):
        self.calls.append(("get", key))
        if self.fail_reads:
            raise redis.ConnectionError("connection refused")
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self.calls.append(("setex", key))
        if self.fail_writes:
            raise redis.ConnectionError("connection refused")
        self.data[key] = value
        self.ttls[key] = ttl

    def delete(self, key):
        self.calls.append(("delete", key))
        if self.fail_writes:
            raise redis.ConnectionError("connection refused")
        self.data.pop(key, None)


@pytest.fixture
def s3():
    return FakeS3Client()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def db_tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_tables, s3):
    app.dependency_overrides[get_blob_store] = lambda: BlobStore(s3, bucket_name="test-bucket")
    app.dependency_overrides[get_image_cache] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def cached_client(client, fake_redis, monkeypatch):
    """开启缓存的客户端，缓存落在 FakeRedis 中。"""
    monkeypatch.setattr("imgsvc.dependencies.get_settings", lambda: SimpleNamespace(
        REDIS_ENABLED=True,
        METADATA_UPDATE_ATTEMPTS=3,
        PIPELINE_WORKERS=None,
    ))
    app.dependency_overrides[get_image_cache] = lambda: ImageCache(fake_redis, ttl_seconds=900)
    return client
