"""Blob storage interface and archive naming."""

from datetime import datetime
from typing import BinaryIO, Optional, Protocol, runtime_checkable

from ..api.exceptions import MigrationError

# Pre-signed URLs and SAS tokens stay valid this long
AUTHORIZATION_TIMEOUT_HOURS = 48


class StorageError(MigrationError):
    """Archive could not be staged in blob storage."""

    pass


@runtime_checkable
class BlobStorage(Protocol):
    """Somewhere an archive can be staged for the target platform to fetch."""

    def upload(self, archive_name: str, content: BinaryIO) -> str:
        """Upload content and return a URL the target platform can fetch."""
        ...


def _timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime('%Y-%m-%d_%H-%M-%S')


def git_archive_name(job_id, now: Optional[datetime] = None) -> str:
    return f'{_timestamp(now)}-{job_id}-git_archive.tar.gz'


def metadata_archive_name(job_id, now: Optional[datetime] = None) -> str:
    return f'{_timestamp(now)}-{job_id}-metadata_archive.tar.gz'


def shared_archive_name(now: Optional[datetime] = None) -> str:
    """Name used when the git and metadata archive are the same file."""
    return f'{_timestamp(now)}-archive.tar.gz'
