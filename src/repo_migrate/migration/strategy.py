"""Per source platform migration strategies."""

import asyncio
import tempfile
import uuid
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import quote, urlparse

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from ..api.ado_client import ADO_SERVER_URL
from ..api.bbs_api import BbsApi
from ..api.download import HttpDownloadService
from ..api.github_api import GithubApi
from ..api.retry import RetryPolicy
from ..models.descriptor import MigrationDescriptor, SourcePlatform, StorageBackend
from ..storage.base import (
    BlobStorage,
    git_archive_name,
    metadata_archive_name,
    shared_archive_name,
)
from .archive import (
    ArchiveSide,
    ArchiveSource,
    ArchiveTransferPipeline,
    BbsArchiveSource,
    GhesArchiveSource,
)
from .exceptions import DescriptorValidationError

GITHUB_URL = 'https://github.com'

# Placeholders the migration API requires but never reads for Bitbucket sources
BBS_UNUSED_TOKEN = 'not-used'
BBS_UNUSED_METADATA_URL = 'https://not-used'

ArchiveUrls = Tuple[Optional[str], Optional[str]]


def _escape(value: str) -> str:
    return quote(value, safe='')


class MigrationContext(BaseModel):
    """Clients, credentials and settings shared by every migration."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    target_api: GithubApi = Field(..., description='API of the target GitHub instance')
    target_token: str = Field(..., description='Target personal access token')
    github_source_token: Optional[str] = Field(
        default=None, description='Source GitHub personal access token'
    )
    ado_token: Optional[str] = Field(default=None, description='Azure DevOps PAT')

    # Source APIs keyed by instance URL
    github_source_api: Optional[Callable[[str], GithubApi]] = Field(
        default=None, description='Builds the API of a GHES instance from its API URL'
    )
    bbs_api: Optional[Callable[[str], BbsApi]] = Field(
        default=None, description='Builds the API of a Bitbucket Server from its URL'
    )

    storage_factories: Dict[StorageBackend, Callable[[MigrationDescriptor], BlobStorage]] = Field(
        default_factory=dict, description='Configured storage backends'
    )
    downloader: HttpDownloadService = Field(
        default_factory=HttpDownloadService, description='Archive downloader'
    )
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy, description='Retry policy')

    # Polling
    poll_interval: float = Field(default=10, description='Seconds between migration polls')
    ado_poll_interval: float = Field(
        default=60, description='Seconds between polls of Azure DevOps migrations'
    )
    archive_poll_interval: float = Field(
        default=10, description='Seconds between archive generation polls'
    )
    max_poll_attempts: int = Field(default=7200, description='Polls before timing out')

    temp_dir: str = Field(
        default_factory=tempfile.gettempdir, description='Directory for staged archives'
    )

    def storage_for(self, descriptor: MigrationDescriptor) -> Optional[BlobStorage]:
        backend = descriptor.storage_backend
        if backend is None:
            return None
        factory = self.storage_factories.get(backend)
        if factory is None:
            raise DescriptorValidationError(
                f'{backend.value} storage was selected but is not configured'
            )
        return factory(descriptor)


PipelineFactory = Callable[[ArchiveSource, Optional[BlobStorage]], ArchiveTransferPipeline]


class MigrationStrategy(ABC):
    """How a repository on one source platform is handed to the migration API."""

    platform: SourcePlatform
    migration_source_type: str

    def __init__(self, context: MigrationContext):
        """Initialize migration strategy.

        Args:
            context: Shared clients and settings
        """
        self.context = context
        self.logger = logger.bind(strategy=self.__class__.__name__)

    @property
    def poll_interval(self) -> float:
        return self.context.poll_interval

    def validate(self, descriptor: MigrationDescriptor) -> None:
        """Reject descriptors this platform cannot run, without network calls."""
        backend = descriptor.storage_backend
        if backend is not None and backend not in self.context.storage_factories:
            raise DescriptorValidationError(
                f'{backend.value} storage was selected but is not configured'
            )

    @abstractmethod
    def create_migration_source(self, org_id: str, descriptor: MigrationDescriptor) -> str:
        """Create or reuse the migration source at the target."""
        pass

    @abstractmethod
    def source_repository_url(self, descriptor: MigrationDescriptor) -> str:
        """Canonical URL of the repository on its source platform."""
        pass

    @abstractmethod
    def source_token(self) -> str:
        """Credential the target uses to read from the source."""
        pass

    def needs_archive_transfer(self, descriptor: MigrationDescriptor) -> bool:
        return False

    def lock_source_on_start(self, descriptor: MigrationDescriptor) -> bool:
        """Sources without archive generation are locked by the migration itself."""
        return descriptor.lock_source

    def skip_releases(self, descriptor: MigrationDescriptor) -> bool:
        return False

    async def prepare_archives(
        self, descriptor: MigrationDescriptor, pipeline_factory: PipelineFactory
    ) -> ArchiveUrls:
        """Archive URLs to start the migration with, (None, None) when not needed."""
        return None, None


class GithubMigrationStrategy(MigrationStrategy):
    """github.com and GitHub Enterprise Server sources."""

    platform = SourcePlatform.GITHUB
    migration_source_type = 'GITHUB_ARCHIVE'

    def validate(self, descriptor: MigrationDescriptor) -> None:
        super().validate(descriptor)
        if not self.context.github_source_token:
            raise DescriptorValidationError(
                'A source GitHub personal access token is required (GH_SOURCE_PAT or GH_PAT)'
            )
        if descriptor.source.is_ghes and self.context.github_source_api is None:
            raise DescriptorValidationError('GHES sources are not configured')

    def create_migration_source(self, org_id: str, descriptor: MigrationDescriptor) -> str:
        return self.context.target_api.create_ghec_migration_source(org_id)

    def source_repository_url(self, descriptor: MigrationDescriptor) -> str:
        base_url = self.base_url(descriptor.source.api_url)
        return f'{base_url}/{_escape(descriptor.source.org)}/{_escape(descriptor.source.repo)}'

    @staticmethod
    def base_url(api_url: Optional[str]) -> str:
        """Web URL of a GitHub instance derived from its API URL."""
        if not api_url:
            return GITHUB_URL

        api_url = api_url.rstrip('/')
        if api_url.endswith('/api/v3'):
            return api_url[: -len('/api/v3')]

        parsed = urlparse(api_url)
        host = parsed.netloc
        if host.startswith('api.'):
            host = host[len('api.'):]
        return f'{parsed.scheme}://{host}'

    def source_token(self) -> str:
        return self.context.github_source_token

    def needs_archive_transfer(self, descriptor: MigrationDescriptor) -> bool:
        return descriptor.source.is_ghes and not descriptor.has_archive_urls

    def lock_source_on_start(self, descriptor: MigrationDescriptor) -> bool:
        # GHES exports lock the repository through the metadata archive
        if descriptor.source.is_ghes:
            return False
        return descriptor.lock_source

    def skip_releases(self, descriptor: MigrationDescriptor) -> bool:
        return descriptor.skip_releases

    async def prepare_archives(
        self, descriptor: MigrationDescriptor, pipeline_factory: PipelineFactory
    ) -> ArchiveUrls:
        if descriptor.has_archive_urls:
            return descriptor.git_archive_url, descriptor.metadata_archive_url

        if not descriptor.source.is_ghes and not descriptor.has_archive_paths:
            return None, None

        storage = await asyncio.to_thread(self.context.storage_for, descriptor)

        if descriptor.has_archive_paths:
            pipeline = pipeline_factory(None, storage)
            if descriptor.git_archive_path == descriptor.metadata_archive_path:
                url = await pipeline.upload_local_archive(
                    descriptor.git_archive_path, shared_archive_name()
                )
                return url, url

            archive_id = uuid.uuid4()
            git_url = await pipeline.upload_local_archive(
                descriptor.git_archive_path, git_archive_name(archive_id)
            )
            metadata_url = await pipeline.upload_local_archive(
                descriptor.metadata_archive_path, metadata_archive_name(archive_id)
            )
            return git_url, metadata_url

        source_api = self.context.github_source_api(descriptor.source.api_url)
        if storage is None:
            required = await asyncio.to_thread(source_api.are_blob_credentials_required)
            if required:
                raise DescriptorValidationError(
                    'GitHub Enterprise Server versions before 3.8.0 need a storage '
                    'backend: select Azure Blob Storage, AWS S3 or GitHub storage'
                )

        archive_source = GhesArchiveSource(
            source_api,
            descriptor.source.org,
            descriptor.source.repo,
            skip_releases=descriptor.skip_releases,
            lock_source=descriptor.lock_source,
        )
        pipeline = pipeline_factory(archive_source, storage)
        git, metadata = await pipeline.transfer_all([ArchiveSide.GIT, ArchiveSide.METADATA])
        return git.uploaded_url, metadata.uploaded_url


class AdoMigrationStrategy(MigrationStrategy):
    """Azure DevOps sources; the target pulls the repository directly."""

    platform = SourcePlatform.AZURE_DEVOPS
    migration_source_type = 'AZURE_DEVOPS'

    @property
    def poll_interval(self) -> float:
        return self.context.ado_poll_interval

    def validate(self, descriptor: MigrationDescriptor) -> None:
        super().validate(descriptor)
        if not self.context.ado_token:
            raise DescriptorValidationError(
                'An Azure DevOps personal access token is required (ADO_PAT)'
            )

    def _server_url(self, descriptor: MigrationDescriptor) -> str:
        return descriptor.source.server_url or ADO_SERVER_URL

    def create_migration_source(self, org_id: str, descriptor: MigrationDescriptor) -> str:
        return self.context.target_api.create_ado_migration_source(
            org_id, self._server_url(descriptor)
        )

    def source_repository_url(self, descriptor: MigrationDescriptor) -> str:
        source = descriptor.source
        return (
            f'{self._server_url(descriptor)}/{_escape(source.org)}/'
            f'{_escape(source.project)}/_git/{_escape(source.repo)}'
        )

    def source_token(self) -> str:
        return self.context.ado_token


class BbsMigrationStrategy(MigrationStrategy):
    """Bitbucket Server sources, migrated from a single export archive."""

    platform = SourcePlatform.BITBUCKET_SERVER
    migration_source_type = 'BITBUCKET_SERVER'

    def validate(self, descriptor: MigrationDescriptor) -> None:
        super().validate(descriptor)
        if not descriptor.archive_url and descriptor.storage_backend is None:
            raise DescriptorValidationError(
                'Bitbucket Server migrations need either archive_url or a storage backend'
            )
        if not descriptor.has_archive_urls and not descriptor.has_archive_paths:
            if self.context.bbs_api is None:
                raise DescriptorValidationError('Bitbucket Server credentials are not configured')

    def create_migration_source(self, org_id: str, descriptor: MigrationDescriptor) -> str:
        return self.context.target_api.create_bbs_migration_source(org_id)

    def source_repository_url(self, descriptor: MigrationDescriptor) -> str:
        source = descriptor.source
        return (
            f'{source.server_url}/projects/{_escape(source.project)}'
            f'/repos/{_escape(source.repo)}/browse'
        )

    def source_token(self) -> str:
        return BBS_UNUSED_TOKEN

    def needs_archive_transfer(self, descriptor: MigrationDescriptor) -> bool:
        return not descriptor.archive_url

    def lock_source_on_start(self, descriptor: MigrationDescriptor) -> bool:
        return False

    async def prepare_archives(
        self, descriptor: MigrationDescriptor, pipeline_factory: PipelineFactory
    ) -> ArchiveUrls:
        if descriptor.archive_url:
            return descriptor.archive_url, BBS_UNUSED_METADATA_URL

        storage = await asyncio.to_thread(self.context.storage_for, descriptor)

        if descriptor.archive_path:
            pipeline = pipeline_factory(None, storage)
            url = await pipeline.upload_local_archive(
                descriptor.archive_path, f'{uuid.uuid4()}.tar'
            )
            return url, BBS_UNUSED_METADATA_URL

        source = descriptor.source
        archive_source = BbsArchiveSource(
            self.context.bbs_api(source.server_url), source.project, source.repo
        )
        pipeline = pipeline_factory(archive_source, storage)
        handle = await pipeline.transfer(ArchiveSide.GIT)
        return handle.uploaded_url, BBS_UNUSED_METADATA_URL


STRATEGIES = {
    SourcePlatform.GITHUB: GithubMigrationStrategy,
    SourcePlatform.AZURE_DEVOPS: AdoMigrationStrategy,
    SourcePlatform.BITBUCKET_SERVER: BbsMigrationStrategy,
}
