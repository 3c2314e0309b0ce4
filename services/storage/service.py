"""Invoice document store on an S3-compatible bucket (MinIO SDK).

Invoices are written under deterministic keys, so re-storing an invoice
replaces the previous object. The bucket is created on first write.
Throttling and server-side S3 errors are retried; permission and
configuration errors are reported immediately.

MinIO Python SDK reference:
https://min.io/docs/minio/linux/developers/python/API.html
"""

import io
import logging

from minio import Minio
from minio.error import S3Error
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.shared.config import Settings

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"

# S3 error codes that retrying cannot fix
PERMANENT_ERROR_CODES = frozenset(
    {
        "AccessDenied",
        "InvalidAccessKeyId",
        "SignatureDoesNotMatch",
        "InvalidBucketName",
        "InvalidObjectName",
        "EntityTooLarge",
    }
)
MISSING_OBJECT_CODES = frozenset({"NoSuchKey", "NoSuchObject", "ResourceNotFound"})


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, S3Error) and error.code not in PERMANENT_ERROR_CODES


class StorageResult(BaseModel):
    """Outcome of storing one invoice document.

    Attributes:
        success: Whether the object was written
        object_name: Key the document was (or would have been) written to
        bucket: Target bucket
        etag: ETag returned by the store
        size: Document size in bytes
        error: Failure description
    """

    success: bool
    object_name: str | None = None
    bucket: str | None = None
    etag: str | None = None
    size: int | None = None
    error: str | None = None


class StorageService:
    """Writes rendered invoices to the configured bucket."""

    def __init__(self, settings: Settings, client: Minio | None = None) -> None:
        self.settings = settings
        self.bucket = settings.storage_bucket
        self._client = client
        self._bucket_ready = False

    def missing_credentials(self) -> list[str]:
        """Environment variables that must be set before the store can be used."""
        missing = []
        if not self.settings.storage_access_key:
            missing.append("APP_STORAGE_ACCESS_KEY")
        if not self.settings.storage_secret_key:
            missing.append("APP_STORAGE_SECRET_KEY")
        return missing

    def is_available(self) -> bool:
        """True if storage is enabled and credentials are set."""
        return self.settings.storage_enabled and not self.missing_credentials()

    @property
    def client(self) -> Minio:
        """MinIO client, created on first use.

        Raises:
            RuntimeError: If storage credentials are not configured
        """
        if self._client is None:
            missing = self.missing_credentials()
            if missing:
                raise RuntimeError(f"Storage credentials not configured: set {', '.join(missing)}")
            self._client = Minio(
                endpoint=self.settings.storage_endpoint,
                access_key=self.settings.storage_access_key,
                secret_key=self.settings.storage_secret_key,
                secure=self.settings.storage_secure,
            )
            logger.info(f"Invoice store connected to {self.settings.storage_endpoint}")
        return self._client

    def health_check(self) -> bool:
        """True if the invoice bucket can be queried."""
        if not self.is_available():
            return False
        try:
            self.client.bucket_exists(self.bucket)
            return True
        except Exception as e:
            logger.warning(f"Invoice store health check failed: {e}")
            return False

    def _prepare_bucket(self) -> None:
        if self._bucket_ready:
            return
        if not self.client.bucket_exists(self.bucket):
            self.client.make_bucket(self.bucket)
            logger.info(f"Created invoice bucket {self.bucket}")
        self._bucket_ready = True

    @retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        reraise=True,
    )
    def _write(
        self, object_name: str, data: bytes, content_type: str, metadata: dict[str, str] | None
    ) -> str | None:
        self._prepare_bucket()
        written = self.client.put_object(
            bucket_name=self.bucket,
            object_name=object_name,
            data=io.BytesIO(data),
            length=len(data),
            content_type=content_type,
            metadata=metadata,
        )
        return written.etag

    def upload_bytes(
        self,
        data: bytes,
        object_name: str,
        content_type: str = PDF_CONTENT_TYPE,
        metadata: dict[str, str] | None = None,
    ) -> StorageResult:
        """Store a document under ``object_name``, replacing any previous version.

        Never raises; failures come back as an unsuccessful result.
        """
        result = StorageResult(
            success=False, object_name=object_name, bucket=self.bucket, size=len(data)
        )
        try:
            result.etag = self._write(object_name, data, content_type, metadata)
        except S3Error as e:
            logger.error(f"Storing {object_name} in {self.bucket} failed: {e.code} {e.message}")
            result.error = f"S3 error: {e.code} - {e.message}"
            return result
        except Exception as e:
            logger.error(f"Storing {object_name} in {self.bucket} failed: {e}")
            result.error = str(e)
            return result

        logger.info(f"Stored {object_name} in {self.bucket} ({len(data)} bytes)")
        result.success = True
        return result

    def object_exists(self, object_name: str) -> bool:
        """Whether a document is already stored under ``object_name``."""
        try:
            self.client.stat_object(bucket_name=self.bucket, object_name=object_name)
        except S3Error as e:
            if e.code not in MISSING_OBJECT_CODES:
                logger.warning(f"Could not check {object_name} in {self.bucket}: {e.code}")
            return False
        except Exception as e:
            logger.warning(f"Could not check {object_name} in {self.bucket}: {e}")
            return False
        return True
