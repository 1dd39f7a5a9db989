"""Azure Blob Storage backend."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import BinaryIO

from azure.core.exceptions import AzureError
from azure.storage.blob import BlobSasPermissions, BlobServiceClient, generate_blob_sas
from loguru import logger

from ..utils.logging import register_secret
from .base import AUTHORIZATION_TIMEOUT_HOURS, StorageError

CONTAINER_PREFIX = 'migration-archives'
BLOCK_SIZE = 4 * 1024 * 1024


class AzureBlobStorage:
    """Stages archives in a fresh container and returns a read-only SAS URL."""

    def __init__(self, connection_string: str):
        """Initialize Azure storage.

        Args:
            connection_string: Storage account connection string with account key
        """
        register_secret(connection_string)
        self.service_client = BlobServiceClient.from_connection_string(
            connection_string,
            max_single_put_size=BLOCK_SIZE,
            max_block_size=BLOCK_SIZE,
        )
        self.logger = logger.bind(component='AzureBlobStorage')

    def upload(self, archive_name: str, content: BinaryIO) -> str:
        container_name = f'{CONTAINER_PREFIX}-{uuid.uuid4()}'
        self.logger.info(f'Uploading {archive_name} to Azure Blob Storage')

        try:
            container = self.service_client.create_container(container_name)
            blob = container.get_blob_client(archive_name)
            blob.upload_blob(content, overwrite=True)
        except AzureError as e:
            raise StorageError(f'Upload of {archive_name} to Azure failed: {e}') from e

        credential = self.service_client.credential
        account_key = getattr(credential, 'account_key', None)
        if not account_key:
            raise StorageError(
                'Cannot generate a SAS URL: the Azure Storage connection string '
                'must include an account key'
            )

        sas_token = generate_blob_sas(
            account_name=self.service_client.account_name,
            container_name=container_name,
            blob_name=archive_name,
            account_key=account_key,
            permission=BlobSasPermissions(read=True),
            expiry=datetime.now(timezone.utc) + timedelta(hours=AUTHORIZATION_TIMEOUT_HOURS),
        )
        register_secret(sas_token)

        return f'{blob.url}?{sas_token}'
