"""S3-compatible object storage (DigitalOcean Spaces): config and asset store."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from mediadesk.content.models import AssetRef
from mediadesk.errors import StorageConfigError, TransientIOError
from mediadesk.integrations.base import AssetStore

logger = logging.getLogger(__name__)

CACHE_CONTROL = "max-age=31536000"

# Error codes that point at credentials or bucket setup; retrying cannot help.
_CONFIG_ERROR_CODES: dict[str, str] = {
    "NoSuchBucket": "Storage bucket not found",
    "AccessDenied": "Access denied to storage",
    "InvalidAccessKeyId": "Invalid access key",
    "SignatureDoesNotMatch": "Invalid credentials",
}
_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


class SpacesConfig(BaseModel):
    """Configuration for the Spaces bucket."""

    endpoint: str = ""
    bucket: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    public_base_url: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint and self.bucket and self.access_key and self.secret_key)

    @property
    def missing(self) -> list[str]:
        fields = ("endpoint", "bucket", "access_key", "secret_key")
        return [name for name in fields if not getattr(self, name)]


class SpacesAssetStore(AssetStore):
    """Public-read asset storage in a Spaces bucket via boto3."""

    def __init__(self, config: SpacesConfig, client: Any | None = None) -> None:
        if not config.is_configured and client is None:
            raise StorageConfigError(
                f"Missing required storage configuration: {', '.join(config.missing)}"
            )
        self.config = config
        self.bucket = config.bucket
        self._client = client

    @property
    def client(self) -> Any:
        """Lazy-create and cache the boto3 S3 client."""
        if self._client is None:
            import boto3
            from botocore.config import Config

            self._client = boto3.client(
                "s3",
                endpoint_url=f"https://{self.config.endpoint}",
                region_name=self.config.region or None,
                aws_access_key_id=self.config.access_key,
                aws_secret_access_key=self.config.secret_key,
                config=Config(signature_version="s3v4", s3={"addressing_style": "virtual"}),
            )
        return self._client

    def public_url(self, key: str) -> str:
        base = self.config.public_base_url.rstrip("/")
        if not base:
            base = f"https://{self.bucket}.{self.config.endpoint}"
        return f"{base}/{key.lstrip('/')}"

    def _translate(self, exc: Exception, action: str, key: str) -> Exception:
        """Map a boto/botocore failure onto the mediadesk taxonomy."""
        from botocore.exceptions import ClientError

        if isinstance(exc, ClientError):
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _CONFIG_ERROR_CODES:
                return StorageConfigError(f"{_CONFIG_ERROR_CODES[code]} ({action} {key})")
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
            if status and int(status) < 500 and code not in ("SlowDown", "RequestTimeout"):
                return StorageConfigError(f"Storage rejected {action} {key}: {code}")
        return TransientIOError(f"Storage {action} failed for {key}: {exc}")

    def put(self, key: str, data: bytes, content_type: str | None = None) -> AssetRef:
        from botocore.exceptions import BotoCoreError, ClientError

        key = key.lstrip("/")
        extra: dict[str, str] = {"ACL": "public-read", "CacheControl": CACHE_CONTROL}
        if content_type:
            extra["ContentType"] = content_type
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, "put", key) from exc
        logger.info("Uploaded %s (%d bytes) to bucket %s", key, len(data), self.bucket)
        return AssetRef(key=key, url=self.public_url(key))

    def get(self, key: str) -> bytes:
        from botocore.exceptions import BotoCoreError, ClientError

        key = key.lstrip("/")
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _NOT_FOUND_CODES:
                raise FileNotFoundError(f"Asset not found: {key}") from exc
            raise self._translate(exc, "get", key) from exc
        except BotoCoreError as exc:
            raise self._translate(exc, "get", key) from exc

    def exists(self, key: str) -> bool:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self.client.head_object(Bucket=self.bucket, Key=key.lstrip("/"))
            return True
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _NOT_FOUND_CODES:
                return False
            raise self._translate(exc, "head", key) from exc
        except BotoCoreError as exc:
            raise self._translate(exc, "head", key) from exc

    def delete(self, key: str) -> bool:
        """Delete an object; a missing key reports False."""
        from botocore.exceptions import BotoCoreError, ClientError

        key = key.lstrip("/")
        if not self.exists(key):
            logger.debug("Asset %s already absent", key)
            return False
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _NOT_FOUND_CODES:
                return False
            raise self._translate(exc, "delete", key) from exc
        except BotoCoreError as exc:
            raise self._translate(exc, "delete", key) from exc
        logger.info("Deleted %s from bucket %s", key, self.bucket)
        return True
