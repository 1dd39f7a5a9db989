"""Input contract for a single repository migration."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

VALID_VISIBILITIES = ('public', 'private', 'internal')


class SourcePlatform(str, Enum):
    """Source control platform a repository is migrated from."""

    GITHUB = 'github'
    AZURE_DEVOPS = 'azure_devops'
    BITBUCKET_SERVER = 'bitbucket_server'


class StorageBackend(str, Enum):
    """Blob storage an archive is staged in for the target to fetch."""

    AZURE_BLOB = 'azure_blob'
    AWS_S3 = 'aws_s3'
    GITHUB_STORAGE = 'github_storage'


class SourceLocator(BaseModel):
    """Coordinates of the repository on its source platform."""

    platform: SourcePlatform = Field(..., description='Source platform')
    org: Optional[str] = Field(
        default=None, description='Organization (GitHub, Azure DevOps)'
    )
    project: Optional[str] = Field(
        default=None, description='Team project (Azure DevOps) or project key (Bitbucket)'
    )
    repo: str = Field(..., description='Repository name or slug')
    api_url: Optional[str] = Field(
        default=None, description='GitHub Enterprise Server API URL'
    )
    server_url: Optional[str] = Field(
        default=None, description='Azure DevOps or Bitbucket Server URL'
    )

    @field_validator('api_url', 'server_url')
    @classmethod
    def validate_url(cls, v):
        """Validate URL format."""
        if v is not None:
            if not v.startswith(('http://', 'https://')):
                raise ValueError('URL must start with http:// or https://')
            return v.rstrip('/')
        return v

    @model_validator(mode='after')
    def validate_coordinates(self):
        """Each platform needs its own set of coordinates."""
        if self.platform in (SourcePlatform.GITHUB, SourcePlatform.AZURE_DEVOPS):
            if not self.org:
                raise ValueError(f'{self.platform.value} source requires an org')
        if self.platform in (SourcePlatform.AZURE_DEVOPS, SourcePlatform.BITBUCKET_SERVER):
            if not self.project:
                raise ValueError(f'{self.platform.value} source requires a project')
        if self.platform == SourcePlatform.BITBUCKET_SERVER and not self.server_url:
            raise ValueError('bitbucket_server source requires a server_url')
        return self

    @property
    def is_ghes(self) -> bool:
        return self.platform == SourcePlatform.GITHUB and bool(self.api_url)

    def describe(self) -> str:
        """Human readable source path."""
        parts = [self.org, self.project, self.repo]
        return '/'.join(part for part in parts if part)


class MigrationDescriptor(BaseModel):
    """Everything needed to migrate one repository.

    Contradictory combinations are rejected at construction, before any
    remote call is made.
    """

    source: SourceLocator = Field(..., description='Source repository')
    target_org: str = Field(..., description='Target GitHub organization')
    target_repo: Optional[str] = Field(
        default=None, description='Target repository name, defaults to source repo'
    )

    # Storage selection, mutually exclusive
    use_azure_storage: bool = Field(
        default=False, description='Stage archives in Azure Blob Storage'
    )
    aws_bucket_name: Optional[str] = Field(
        default=None, description='Stage archives in this AWS S3 bucket'
    )
    use_github_storage: bool = Field(
        default=False, description='Stage archives in GitHub-owned storage'
    )

    # Pre-supplied archives
    git_archive_path: Optional[str] = Field(
        default=None, description='Local git archive to upload'
    )
    metadata_archive_path: Optional[str] = Field(
        default=None, description='Local metadata archive to upload'
    )
    git_archive_url: Optional[str] = Field(
        default=None, description='Already uploaded git archive URL'
    )
    metadata_archive_url: Optional[str] = Field(
        default=None, description='Already uploaded metadata archive URL'
    )
    archive_path: Optional[str] = Field(
        default=None, description='Local Bitbucket Server export archive to upload'
    )
    archive_url: Optional[str] = Field(
        default=None, description='Already uploaded Bitbucket Server export URL'
    )

    # Behaviour
    skip_releases: bool = Field(default=False, description='Do not migrate releases')
    lock_source: bool = Field(
        default=False, description='Lock the source repository while migrating'
    )
    queue_only: bool = Field(
        default=False, description='Return once the migration is queued'
    )
    target_repo_visibility: Optional[str] = Field(
        default=None, description='public, private or internal'
    )
    keep_archive: bool = Field(
        default=False, description='Keep downloaded archives on disk'
    )

    @field_validator('target_repo_visibility')
    @classmethod
    def validate_visibility(cls, v):
        """Validate visibility value."""
        if v is not None and v.lower() not in VALID_VISIBILITIES:
            raise ValueError(f'Visibility must be one of: {list(VALID_VISIBILITIES)}')
        return v.lower() if v else v

    @model_validator(mode='after')
    def validate_consistency(self):
        """Reject self-contradictory descriptors."""
        selected = [
            name
            for name, chosen in (
                ('Azure Blob Storage', self.use_azure_storage),
                ('AWS S3', bool(self.aws_bucket_name)),
                ('GitHub storage', self.use_github_storage),
            )
            if chosen
        ]
        if len(selected) > 1:
            raise ValueError(
                f'Only one storage backend can be selected, got: {", ".join(selected)}'
            )

        if bool(self.git_archive_path) != bool(self.metadata_archive_path):
            raise ValueError(
                'git_archive_path and metadata_archive_path must be passed together'
            )
        if bool(self.git_archive_url) != bool(self.metadata_archive_url):
            raise ValueError(
                'git_archive_url and metadata_archive_url must be passed together'
            )
        if self.git_archive_path and self.git_archive_url:
            raise ValueError('Archive paths and archive URLs cannot be combined')
        if self.archive_path and self.archive_url:
            raise ValueError('archive_path and archive_url cannot be combined')

        platform = self.source.platform
        if platform != SourcePlatform.GITHUB and (
            self.git_archive_path or self.git_archive_url
        ):
            raise ValueError('Git and metadata archives only apply to GitHub sources')
        if platform != SourcePlatform.BITBUCKET_SERVER and (
            self.archive_path or self.archive_url
        ):
            raise ValueError('archive_path and archive_url only apply to Bitbucket Server')

        if (self.git_archive_path or self.archive_path) and not selected:
            raise ValueError('Uploading a local archive requires a storage backend')

        if not self.target_repo:
            self.target_repo = self.source.repo
        return self

    @property
    def storage_backend(self) -> Optional[StorageBackend]:
        if self.use_azure_storage:
            return StorageBackend.AZURE_BLOB
        if self.aws_bucket_name:
            return StorageBackend.AWS_S3
        if self.use_github_storage:
            return StorageBackend.GITHUB_STORAGE
        return None

    @property
    def has_archive_urls(self) -> bool:
        return bool(self.git_archive_url or self.archive_url)

    @property
    def has_archive_paths(self) -> bool:
        return bool(self.git_archive_path or self.archive_path)
