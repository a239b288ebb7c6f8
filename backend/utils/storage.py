import logging
from urllib.parse import quote, urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


def is_remote_url(reference: str) -> bool:
    return urlparse(reference).scheme in ("http", "https")


class StorageClient:
    """Thin wrapper around an S3-compatible object store."""

    def __init__(self, settings, s3_client=None):
        self.public_base_url = settings.storage_public_url
        if s3_client is not None:
            self.s3_client = s3_client
            return

        logger.info(f"Connecting to object store at {settings.storage_endpoint_url}")
        self.s3_client = boto3.client(
            "s3",
            endpoint_url=settings.storage_endpoint_url,
            aws_access_key_id=settings.storage_access_key_id,
            aws_secret_access_key=settings.storage_secret_access_key,
            region_name=settings.storage_region,
            config=Config(
                s3={"addressing_style": "path"},
                connect_timeout=30,
                read_timeout=120,
                # chunk retries are handled by ResumableUploader
                retries={"max_attempts": 1},
            ),
        )

    def public_url(self, bucket, key):
        return f"{self.public_base_url}/{bucket}/{quote(key)}"

    def presigned_get_url(self, bucket, key, expiration=3600):
        logger.info(f"Generating presigned URL for {bucket}/{key}, expiration {expiration}s")
        return self.s3_client.generate_presigned_url(
            "get_object",
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=expiration,
        )

    def object_exists(self, bucket, key):
        try:
            self.s3_client.head_object(Bucket=bucket, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
