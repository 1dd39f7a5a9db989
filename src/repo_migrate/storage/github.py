"""GitHub-owned storage backend."""

import os
from typing import BinaryIO
from urllib.parse import quote, urljoin

from loguru import logger

from ..api.exceptions import MigrationError
from ..api.github_client import GithubClient
from .base import StorageError

GITHUB_UPLOADS_URL = 'https://uploads.github.com'
BYTES_PER_MEBIBYTE = 1024 * 1024
MIN_MULTIPART_MEBIBYTES = 5
DEFAULT_MULTIPART_MEBIBYTES = 100


class GithubStorage:
    """Uploads archives into storage owned by the target organization.

    Archives up to the part size go up in a single POST; larger ones use
    the start / PATCH parts / PUT complete multipart protocol.
    """

    def __init__(
        self,
        client: GithubClient,
        org_database_id: str,
        uploads_url: str = GITHUB_UPLOADS_URL,
        multipart_mebibytes: int = DEFAULT_MULTIPART_MEBIBYTES,
    ):
        """Initialize GitHub storage.

        Args:
            client: Client authenticated against the target
            org_database_id: Database id of the target organization
            uploads_url: Uploads host root
            multipart_mebibytes: Part size and single-upload threshold in MiB
        """
        self.client = client
        self.org_database_id = org_database_id
        self.uploads_url = uploads_url.rstrip('/')
        self.part_size = self._part_size(multipart_mebibytes)
        self.logger = logger.bind(component='GithubStorage')

    def _part_size(self, mebibytes: int) -> int:
        if mebibytes < MIN_MULTIPART_MEBIBYTES:
            logger.warning(
                f'Multipart part size of {mebibytes} MiB is below the minimum of '
                f'{MIN_MULTIPART_MEBIBYTES} MiB. Using {DEFAULT_MULTIPART_MEBIBYTES} MiB.'
            )
            mebibytes = DEFAULT_MULTIPART_MEBIBYTES
        return mebibytes * BYTES_PER_MEBIBYTE

    @property
    def _org_url(self) -> str:
        return f'{self.uploads_url}/organizations/{quote(str(self.org_database_id), safe="")}'

    def upload(self, archive_name: str, content: BinaryIO) -> str:
        size = content.seek(0, os.SEEK_END)
        content.seek(0)

        if size > self.part_size:
            return self._upload_multipart(archive_name, content, size)

        self.logger.info(f'Uploading {archive_name} into GitHub owned storage')
        body = content.read()
        response = self.client.retry_policy.retry(
            lambda: self.client.post(
                f'{self._org_url}/gei/archive?name={quote(archive_name, safe="")}',
                body,
                headers={'Content-Type': 'application/octet-stream'},
            )
        )
        return response.data['uri']

    def _upload_multipart(self, archive_name: str, content: BinaryIO, size: int) -> str:
        retry = self.client.retry_policy.retry
        total_parts = -(-size // self.part_size)
        self.logger.info(
            f'Starting archive upload into GitHub owned storage: {archive_name}...'
        )

        try:
            response = retry(
                lambda: self.client.post(
                    f'{self._org_url}/gei/archive/blobs/uploads',
                    {
                        'content_type': 'application/octet-stream',
                        'name': archive_name,
                        'size': size,
                    },
                )
            )
            next_url = self._next_url(response)

            part_number = 0
            while True:
                part = content.read(self.part_size)
                if not part:
                    break
                part_number += 1
                self.logger.info(f'Uploading part {part_number}/{total_parts}...')
                response = retry(
                    lambda: self.client.patch(
                        next_url,
                        part,
                        headers={'Content-Type': 'application/octet-stream'},
                    )
                )
                next_url = self._next_url(response)

            response = retry(
                lambda: self.client.put(
                    next_url, b'', headers={'Content-Type': 'application/octet-stream'}
                )
            )
        except MigrationError as e:
            raise StorageError(f'Failed during multipart upload: {e}') from e

        self.logger.info('Finished uploading archive')
        return response.data['uri']

    def _next_url(self, response) -> str:
        location = response.header('Location')
        if not location:
            raise StorageError(
                'Location header is missing in the response, unable to retrieve '
                'next URL for multipart upload.'
            )
        return urljoin(self.uploads_url + '/', location)
