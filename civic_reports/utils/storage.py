import os
import time
import uuid
import logging
import mimetypes
from functools import lru_cache
import boto3
from botocore.exceptions import BotoCoreError, ClientError
from civic_reports.config import settings
from civic_reports.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


def _object_key(folder: str, content_type: str) -> str:
    """Unique object key: {folder}/{timestamp}-{random}.{ext}"""
    extension = mimetypes.guess_extension(content_type) or ".jpg"
    if extension == ".jpe":
        extension = ".jpg"
    return f"{folder}/{int(time.time() * 1000)}-{uuid.uuid4().hex[:16]}{extension}"


class S3ImageStorage:
    """Report images in an S3-compatible bucket, publicly readable"""

    def __init__(self, bucket: str = None, region: str = None, public_base_url: str = None, client=None):
        self.bucket = bucket or settings.STORAGE_BUCKET
        self.region = region or settings.STORAGE_REGION
        self.public_base_url = (public_base_url or settings.STORAGE_PUBLIC_BASE_URL).rstrip("/")
        self.client = client or boto3.client(
            "s3",
            aws_access_key_id=settings.STORAGE_ACCESS_KEY,
            aws_secret_access_key=settings.STORAGE_SECRET_KEY,
            region_name=self.region
        )

    def get_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def upload(self, image_data: bytes, content_type: str = "image/jpeg", folder: str = "reports") -> str:
        """
        Upload an image to the bucket.

        Parameters:
            image_data: image bytes
            content_type: MIME type
            folder: key prefix

        Returns:
            str: public URL of the stored object

        Raises:
            ExternalServiceError: the storage service rejected the upload or was unreachable
        """
        key = _object_key(folder, content_type)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=image_data,
                ContentType=content_type,
                ACL="public-read"
            )
        except ClientError as e:
            error_code = e.response["Error"]["Code"]
            raise ExternalServiceError(f"Image upload failed: {error_code} - {e}") from e
        except BotoCoreError as e:
            raise ExternalServiceError(f"Image upload failed: {e}") from e

        return self.get_url(key)


class LocalImageStorage:
    """Images on local disk, served by the API under base_url"""

    def __init__(self, root: str = None, base_url: str = None):
        self.root = root or settings.LOCAL_UPLOAD_DIR
        self.base_url = (base_url or settings.LOCAL_UPLOAD_URL).rstrip("/")

    def get_url(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    def upload(self, image_data: bytes, content_type: str = "image/jpeg", folder: str = "reports") -> str:
        key = _object_key(folder, content_type)
        path = os.path.join(self.root, *key.split("/"))
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as f:
                f.write(image_data)
        except OSError as e:
            raise ExternalServiceError(f"Image upload failed: {e}") from e

        logger.debug("Stored image at %s", path)
        return self.get_url(key)


@lru_cache(maxsize=1)
def get_storage():
    """Storage backend selected by STORAGE_BACKEND"""
    if settings.STORAGE_BACKEND == "local":
        return LocalImageStorage()
    if settings.STORAGE_BACKEND == "s3":
        return S3ImageStorage()
    raise ValueError(f"Unknown storage backend: {settings.STORAGE_BACKEND}")
