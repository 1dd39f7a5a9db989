"""Migration exceptions."""

from typing import Optional, Union

from ..api.exceptions import MigrationError
from ..storage.base import StorageError


class RemoteJobFailedError(MigrationError):
    """A remote long-running job reached the FAILED state."""

    def __init__(self, message: str, job_id: Optional[Union[str, int]] = None):
        super().__init__(message)
        self.job_id = job_id


class ArchiveGenerationError(RemoteJobFailedError):
    """Archive export failed on the source platform. Never retried."""

    pass


class MigrationTimeoutError(MigrationError):
    """Polling budget exhausted before the remote job reached a terminal state."""

    def __init__(self, message: str, job_id: Optional[Union[str, int]] = None):
        super().__init__(message)
        self.job_id = job_id


class DescriptorValidationError(MigrationError):
    """Descriptor cannot be executed with the current configuration."""

    pass


class InsufficientPermissionsError(MigrationError):
    """Remote rejected the call for missing permissions; message carries remediation."""

    pass


__all__ = [
    'MigrationError',
    'RemoteJobFailedError',
    'ArchiveGenerationError',
    'MigrationTimeoutError',
    'DescriptorValidationError',
    'InsufficientPermissionsError',
    'StorageError',
]
