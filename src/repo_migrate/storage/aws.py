"""AWS S3 storage backend."""

from typing import BinaryIO, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from ..utils.logging import register_secret
from .base import AUTHORIZATION_TIMEOUT_HOURS, StorageError


class AwsS3Storage:
    """Stages archives in an S3 bucket and returns a pre-signed GET URL."""

    def __init__(
        self,
        bucket_name: str,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        session_token: Optional[str] = None,
        region: Optional[str] = None,
    ):
        """Initialize S3 storage.

        Args:
            bucket_name: Bucket archives are uploaded to
            access_key_id: AWS access key id
            secret_access_key: AWS secret access key
            session_token: Optional session token for temporary credentials
            region: AWS region of the bucket
        """
        for secret in (secret_access_key, session_token):
            register_secret(secret)

        self.bucket_name = bucket_name
        self.session = boto3.Session(
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            aws_session_token=session_token,
            region_name=region,
        )
        self.client = self.session.client(
            's3', config=BotoConfig(signature_version='s3v4')
        )
        self.logger = logger.bind(component='AwsS3Storage')

    def upload(self, archive_name: str, content: BinaryIO) -> str:
        self.logger.info(f'Uploading {archive_name} to S3 bucket {self.bucket_name}')

        try:
            self.client.upload_fileobj(content, self.bucket_name, archive_name)
            return self.client.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket_name, 'Key': archive_name},
                ExpiresIn=AUTHORIZATION_TIMEOUT_HOURS * 3600,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f'Upload of {archive_name} to AWS failed: {e}') from e
