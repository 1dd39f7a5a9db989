"""Data models for migrations and remote jobs."""

from .descriptor import (
    MigrationDescriptor,
    SourceLocator,
    SourcePlatform,
    StorageBackend,
)
from .job import JobState, RemoteJob

__all__ = [
    'MigrationDescriptor',
    'SourceLocator',
    'SourcePlatform',
    'StorageBackend',
    'JobState',
    'RemoteJob',
]
