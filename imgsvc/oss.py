"""OSS 图片存储，走 S3 兼容接口（boto3）。"""
import logging
from typing import Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .config import get_settings
from .errors import UpstreamError
from .formats import FORMATS, FormatTable, detect_format

logger = logging.getLogger(__name__)


_client = None


def get_client():
    settings = get_settings()
    global _client
    if _client is None:
        _client = boto3.client(
            "s3",
            endpoint_url=settings.OSS_ENDPOINT,
            region_name=settings.OSS_REGION,
            aws_access_key_id=settings.OSS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.OSS_ACCESS_KEY_SECRET,
            config=Config(
                signature_version="s3v4",
                s3={"addressing_style": "virtual"},
                connect_timeout=settings.OSS_TIMEOUT,
                read_timeout=settings.OSS_TIMEOUT,
                retries={"max_attempts": 1},
            ),
        )
    return _client


def is_not_found_error(e: ClientError) -> bool:
    return e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey")


class BlobStore:
    """图片字节的持久化存储，对象 key 即元数据中的 filename。

    replace 原地覆盖，没有版本，旧内容无法找回。
    """

    def __init__(
        self,
        client=None,
        *,
        bucket_name: Optional[str] = None,
        formats: FormatTable = FORMATS,
        key_prefix: Optional[str] = None,
        url_ttl: Optional[int] = None,
    ):
        settings = get_settings()
        self._client = client
        self.bucket_name = bucket_name or settings.OSS_BUCKET
        self.formats = formats
        self.key_prefix = settings.IMAGE_KEY_PREFIX if key_prefix is None else key_prefix
        self.url_ttl = url_ttl or settings.SIGNED_URL_TTL

    @property
    def client(self):
        if self._client is None:
            self._client = get_client()
        return self._client

    def object_key(self, original_filename: str) -> str:
        return f"{self.key_prefix}{original_filename}"

    def put(self, original_filename: str, data: bytes) -> Tuple[str, str]:
        """上传新图片，返回 (对象 key, 签名 URL)。扩展名不支持时在发请求前就失败。"""
        content_type = self.formats.content_type_for(original_filename)
        key = self.object_key(original_filename)
        self._put(key, data, content_type)
        return key, self.signed_url(key)

    def get(self, key: str) -> bytes:
        try:
            resp = self.client.get_object(Bucket=self.bucket_name, Key=key)
            return resp["Body"].read()
        except ClientError as e:
            if is_not_found_error(e):
                logger.error("OSS 中缺少对象: %s", key)
            raise self._fail("下载", key, e) from e
        except BotoCoreError as e:
            raise self._fail("下载", key, e) from e

    def replace(self, key: str, data: bytes) -> None:
        # 转换格式后内容与扩展名可能不一致，以内容为准
        fmt = detect_format(data)
        if fmt in self.formats.supported:
            content_type = self.formats.mime_types[fmt]
        else:
            content_type = self.formats.content_type_for(key)
        self._put(key, data, content_type)

    def signed_url(self, key: str, ttl_seconds: Optional[int] = None) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": key},
                ExpiresIn=ttl_seconds or self.url_ttl,
                HttpMethod="GET",
            )
        except (ClientError, BotoCoreError) as e:
            raise self._fail("签名", key, e) from e

    def _put(self, key: str, data: bytes, content_type: str) -> None:
        try:
            self.client.put_object(Bucket=self.bucket_name, Key=key, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            raise self._fail("上传", key, e) from e

    def _fail(self, action: str, key: str, e: Exception) -> UpstreamError:
        error_msg = f"OSS{action}失败: {key}: {e}"
        logger.error(error_msg)
        return UpstreamError(error_msg)
