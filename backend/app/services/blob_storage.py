# S3-backed blob storage for captured media.
import logging
from typing import Optional

from ..AWS_configuration import AWSConfig

logger = logging.getLogger(__name__)


class S3BlobStorage:
    """
    upload(path, data, content_type) -> {"url", "path"}

    Objects are private; the returned url is a pre-signed GET link. Upload
    errors (botocore ClientError / BotoCoreError) propagate to the caller.
    """

    def __init__(self, client=None, bucket: Optional[str] = None, url_expiration: int = 3600):
        self.client = client or AWSConfig.get_s3_client()
        self.bucket = bucket or AWSConfig.S3_BUCKET_NAME
        self.url_expiration = url_expiration

    def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> dict:
        if not self.bucket:
            raise RuntimeError("S3 bucket is not configured")
        self.client.put_object(Bucket=self.bucket, Key=path, Body=data, ContentType=content_type)
        return {"url": self.presigned_url(path), "path": path}

    def presigned_url(self, path: str) -> Optional[str]:
        """Generate a pre-signed URL to read an uploaded object."""
        try:
            return self.client.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket, 'Key': path},
                ExpiresIn=self.url_expiration
            )
        except Exception as e:
            logger.warning("Error generating pre-signed URL for %s: %s", path, e)
            return None
