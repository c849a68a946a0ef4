"""
Object storage for uploaded content.

Two interchangeable backends: S3 (presigned PUT URLs) and a local
directory used when no bucket is configured. The backend is chosen once
at startup by build_storage().
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import NotFound, UpstreamError, ValidationFailed
from .utils import build_object_key

logger = logging.getLogger(__name__)

PRESIGN_EXPIRY_SECONDS = 60 * 5


@dataclass
class PresignedUpload:
    url: str
    key: str
    public_url: str
    fields: Dict[str, str] = field(default_factory=dict)


class StorageBackend:
    is_local = False

    def presign_upload(self, user_id: str, filename: str, content_type: str) -> PresignedUpload:
        raise NotImplementedError

    def read_object(self, key: str) -> bytes:
        raise NotImplementedError

    def public_url(self, key: str) -> str:
        raise NotImplementedError


class S3Storage(StorageBackend):
    def __init__(self, bucket: str, region: str, public_host: str = "", client=None,
                 timeout: float = 30.0, access_key_id: str = "", secret_access_key: str = ""):
        self.bucket = bucket
        self.region = region
        self.public_host = public_host
        if client is None:
            credentials = {}
            if access_key_id and secret_access_key:
                credentials = {
                    "aws_access_key_id": access_key_id,
                    "aws_secret_access_key": secret_access_key,
                }
            client = boto3.client(
                "s3",
                region_name=region,
                config=Config(connect_timeout=timeout, read_timeout=timeout),
                **credentials,
            )
        self.client = client

    def presign_upload(self, user_id: str, filename: str, content_type: str) -> PresignedUpload:
        key = build_object_key(user_id, filename)
        try:
            url = self.client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=PRESIGN_EXPIRY_SECONDS,
            )
        except (BotoCoreError, ClientError) as exc:
            raise UpstreamError("Failed to create upload URL") from exc
        return PresignedUpload(url=url, key=key, public_url=self.public_url(key))

    def read_object(self, key: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                raise NotFound("Uploaded object not found") from exc
            raise UpstreamError("Failed to read uploaded object") from exc
        except BotoCoreError as exc:
            raise UpstreamError("Failed to read uploaded object") from exc
        body = response.get("Body")
        if body is None:
            return b""
        return body.read()

    def public_url(self, key: str) -> str:
        host = self.public_host.rstrip("/")
        if host.startswith("http"):
            return f"{host}/{key}"
        if host:
            return f"https://{host}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"


class LocalStorage(StorageBackend):
    """Stores uploads under a local directory, keyed the same way as S3."""

    is_local = True
    upload_endpoint = "/upload/local"

    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path == self.root or self.root not in path.parents:
            raise ValidationFailed("Invalid storage key", errors={"key": ["must stay inside the upload root"]})
        return path

    def presign_upload(self, user_id: str, filename: str, content_type: str) -> PresignedUpload:
        key = build_object_key(user_id, filename)
        self._path_for(key).parent.mkdir(parents=True, exist_ok=True)
        return PresignedUpload(
            url=self.upload_endpoint,
            key=key,
            public_url=self.public_url(key),
            fields={"key": key},
        )

    def save_object(self, key: str, data: bytes) -> None:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def read_object(self, key: str) -> bytes:
        path = self._path_for(key)
        if not path.is_file():
            raise NotFound("Uploaded object not found")
        return path.read_bytes()

    def public_url(self, key: str) -> str:
        return f"/uploads/{key}"


def build_storage(settings) -> StorageBackend:
    if settings.use_s3:
        logger.info("using S3 storage bucket=%s region=%s", settings.s3_bucket_name, settings.aws_region)
        return S3Storage(
            bucket=settings.s3_bucket_name,
            region=settings.aws_region,
            public_host=settings.s3_public_host,
            timeout=settings.provider_timeout_seconds,
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
        )
    logger.info("using local storage at %s", settings.upload_dir)
    return LocalStorage(settings.upload_dir)
