import os
from threading import Lock

import boto3
from botocore.client import Config


# Configures the AWS S3 client to use globally (singleton).
class AWSConfig:
    AWS_ACCESS_KEY_ID = os.getenv('AWS_ACCESS_KEY_ID')
    AWS_SECRET_ACCESS_KEY = os.getenv('AWS_SECRET_ACCESS_KEY')
    AWS_REGION = os.getenv('AWS_REGION', 'us-east-1')
    S3_BUCKET_NAME = os.getenv('S3_BUCKET_NAME')
    S3_ENDPOINT_URL = os.getenv('S3_ENDPOINT_URL')  # MinIO / localstack in dev

    _instance = None
    # Only one thread may build the client.
    _lock = Lock()

    @classmethod
    def get_s3_client(cls):
        if not cls._instance:
            with cls._lock:
                if not cls._instance:
                    cls._instance = boto3.client(
                        's3',
                        aws_access_key_id=cls.AWS_ACCESS_KEY_ID,
                        aws_secret_access_key=cls.AWS_SECRET_ACCESS_KEY,
                        region_name=cls.AWS_REGION,
                        endpoint_url=cls.S3_ENDPOINT_URL,
                        config=Config(signature_version='s3v4', retries={'max_attempts': 1}),
                    )
        return cls._instance
