"""Blob storage backends for staging migration archives."""

from .base import BlobStorage, StorageError
from .aws import AwsS3Storage
from .azure import AzureBlobStorage
from .github import GithubStorage

__all__ = [
    'BlobStorage',
    'StorageError',
    'AwsS3Storage',
    'AzureBlobStorage',
    'GithubStorage',
]
