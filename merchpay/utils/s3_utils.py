### merchpay/utils/s3_utils.py

# Standard library imports
from typing import Optional

# Third party imports
import boto3
from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import run_in_threadpool

# Local imports
from merchpay.core.config import settings
from merchpay.core.exceptions import ReceiptStorageError
from merchpay.utils.logger import get_logger

logger = get_logger(__name__)


class ReceiptStorage:
    """Receipt file store backed by an S3 bucket."""

    def __init__(self, bucket_name: Optional[str] = None, client=None):
        """Initialize S3 client with AWS credentials"""
        self.s3_client = client or boto3.client(
            "s3",
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
        )
        self.bucket_name = bucket_name or settings.receipts_bucket

    def public_url(self, key: str) -> str:
        if settings.receipts_public_base_url:
            return f"{settings.receipts_public_base_url.rstrip('/')}/{key}"
        return f"https://{self.bucket_name}.s3.{settings.aws_region}.amazonaws.com/{key}"

    async def upload(self, key: str, content: bytes, content_type: str) -> str:
        """
        Upload a receipt and return its public URL.

        Args:
            key: object key, ``{userId}/{userId}-{timestamp}.{ext}``
            content: file bytes
            content_type: MIME type stored with the object

        Raises:
            ReceiptStorageError: if the bucket rejects the write
        """
        try:
            # Receipts are capped at receipt_max_bytes, well under the single PUT limit
            await run_in_threadpool(
                self.s3_client.put_object,
                Bucket=self.bucket_name,
                Key=key,
                Body=content,
                ContentType=content_type,
                CacheControl="max-age=3600",
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Error uploading receipt %s to S3: %s", key, e)
            raise ReceiptStorageError(f"Failed to upload file: {e}") from e
        return self.public_url(key)

    async def remove(self, key: str) -> None:
        """Delete a receipt. Raises ReceiptStorageError on failure."""
        try:
            await run_in_threadpool(self.s3_client.delete_object, Bucket=self.bucket_name, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error("Error deleting receipt %s from S3: %s", key, e)
            raise ReceiptStorageError(f"Failed to remove file: {e}") from e


_storage: Optional[ReceiptStorage] = None


def get_receipt_storage() -> ReceiptStorage:
    """FastAPI dependency; the boto3 client is created on first use."""
    global _storage
    if _storage is None:
        _storage = ReceiptStorage()
    return _storage
