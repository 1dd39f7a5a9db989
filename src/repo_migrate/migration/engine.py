"""Migration engine - main entry point for migration operations."""

import threading
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from loguru import logger

from ..api.ado_api import AdoApi
from ..api.ado_client import AdoClient
from ..api.bbs_api import BbsApi
from ..api.bbs_client import BbsClient
from ..api.client import ApiClient
from ..api.download import HttpDownloadService
from ..api.exceptions import MigrationError
from ..api.github_api import GithubApi
from ..api.github_client import GithubClient
from ..api.retry import RetryPolicy
from ..config.config import Config
from ..models.descriptor import MigrationDescriptor, StorageBackend
from ..models.job import RemoteJob
from ..storage.aws import AwsS3Storage
from ..storage.azure import AzureBlobStorage
from ..storage.base import BlobStorage
from ..storage.github import GithubStorage
from .orchestrator import MigrationOrchestrator, MigrationResult, MigrationSummary
from .strategy import MigrationContext


class MigrationEngine:
    """Builds clients and storage from configuration and runs migrations."""

    def __init__(self, config: Config):
        """Initialize migration engine.

        Args:
            config: Tool configuration
        """
        self.config = config
        self.logger = logger.bind(component='MigrationEngine')

        migration = config.migration
        self.retry_policy = RetryPolicy(
            max_attempts=migration.retry_max_attempts,
            retry_interval=migration.retry_interval,
            http_retry_interval=migration.http_retry_interval,
        )

        self._clients: List[ApiClient] = []
        self._clients_lock = threading.Lock()
        self._github_source_apis: Dict[str, GithubApi] = {}
        self._bbs_apis: Dict[str, BbsApi] = {}
        self._azure_storage: Optional[AzureBlobStorage] = None

        self.target_client: Optional[GithubClient] = None
        self.target_api: Optional[GithubApi] = None
        self._orchestrator: Optional[MigrationOrchestrator] = None

        if config.target.token:
            self.target_client = self._register(
                GithubClient(
                    config.target.token,
                    config.target.api_url,
                    retry_policy=self.retry_policy,
                    timeout=config.target.timeout,
                )
            )
            self.target_api = GithubApi(self.target_client)

    def _register(self, client):
        with self._clients_lock:
            self._clients.append(client)
        return client

    @property
    def orchestrator(self) -> MigrationOrchestrator:
        """Orchestrator bound to the target organization's GitHub instance."""
        if self.target_api is None:
            raise MigrationError(
                'A target GitHub personal access token is required (GH_PAT)'
            )
        if self._orchestrator is None:
            self._orchestrator = MigrationOrchestrator(self._build_context())
        return self._orchestrator

    def _build_context(self) -> MigrationContext:
        config = self.config
        source = config.source

        bbs_api = None
        if source.bbs_username:
            bbs_api = self._bbs_api

        return MigrationContext(
            target_api=self.target_api,
            target_token=config.target.token,
            github_source_token=config.source_github_token,
            ado_token=source.ado_token,
            github_source_api=self._github_source_api,
            bbs_api=bbs_api,
            storage_factories=self._storage_factories(),
            downloader=HttpDownloadService(
                timeout=source.timeout, verify_ssl=source.verify_ssl
            ),
            retry_policy=self.retry_policy,
            poll_interval=config.migration.poll_interval,
            ado_poll_interval=config.migration.ado_poll_interval,
            archive_poll_interval=config.migration.archive_poll_interval,
            max_poll_attempts=config.migration.max_poll_attempts,
            **({'temp_dir': config.migration.temp_dir} if config.migration.temp_dir else {}),
        )

    def _github_source_api(self, api_url: str) -> GithubApi:
        with self._clients_lock:
            if api_url not in self._github_source_apis:
                client = GithubClient(
                    self.config.source_github_token,
                    api_url,
                    retry_policy=self.retry_policy,
                    timeout=self.config.source.timeout,
                    verify_ssl=self.config.source.verify_ssl,
                )
                self._clients.append(client)
                self._github_source_apis[api_url] = GithubApi(client)
            return self._github_source_apis[api_url]

    def _bbs_api(self, server_url: str) -> BbsApi:
        with self._clients_lock:
            if server_url not in self._bbs_apis:
                client = BbsClient(
                    server_url,
                    self.config.source.bbs_username,
                    self.config.source.bbs_password,
                    retry_policy=self.retry_policy,
                    timeout=self.config.source.timeout,
                    verify_ssl=self.config.source.verify_ssl,
                )
                self._clients.append(client)
                self._bbs_apis[server_url] = BbsApi(client)
            return self._bbs_apis[server_url]

    def _storage_factories(
        self,
    ) -> Dict[StorageBackend, Callable[[MigrationDescriptor], BlobStorage]]:
        storage = self.config.storage
        factories: Dict[StorageBackend, Callable[[MigrationDescriptor], BlobStorage]] = {
            StorageBackend.GITHUB_STORAGE: self._github_storage,
        }
        if storage.azure_connection_string:
            factories[StorageBackend.AZURE_BLOB] = self._azure_blob_storage
        if storage.aws_configured:
            factories[StorageBackend.AWS_S3] = self._aws_s3_storage
        return factories

    def _azure_blob_storage(self, descriptor: MigrationDescriptor) -> BlobStorage:
        with self._clients_lock:
            if self._azure_storage is None:
                self._azure_storage = AzureBlobStorage(
                    self.config.storage.azure_connection_string
                )
            return self._azure_storage

    def _aws_s3_storage(self, descriptor: MigrationDescriptor) -> BlobStorage:
        storage = self.config.storage
        return AwsS3Storage(
            descriptor.aws_bucket_name,
            access_key_id=storage.aws_access_key_id,
            secret_access_key=storage.aws_secret_access_key,
            session_token=storage.aws_session_token,
            region=storage.aws_region,
        )

    def _github_storage(self, descriptor: MigrationDescriptor) -> BlobStorage:
        return GithubStorage(
            self.target_client,
            self.target_api.get_organization_database_id(descriptor.target_org),
            uploads_url=self.config.target.uploads_url,
            multipart_mebibytes=self.config.storage.github_multipart_mebibytes,
        )

    async def migrate_repository(self, descriptor: MigrationDescriptor) -> MigrationResult:
        """Migrate a single repository; errors propagate to the caller."""
        return await self.orchestrator.migrate_repository(descriptor)

    async def migrate(self, descriptors: Sequence[MigrationDescriptor]) -> MigrationSummary:
        """Migrate a batch of repositories.

        Args:
            descriptors: Repositories to migrate

        Returns:
            Migration summary
        """
        started_at = datetime.now()
        self.logger.info(f'Starting migration of {len(descriptors)} repositories')

        try:
            results = await self.orchestrator.migrate_repositories(
                descriptors, max_concurrent=self.config.migration.max_concurrent
            )
            summary = MigrationSummary.from_results(results, started_at)

            self.logger.info(
                f'Migration completed: {summary.succeeded} succeeded, '
                f'{summary.queued} queued, {summary.failed} failed, '
                f'{summary.skipped} skipped'
            )
            return summary

        except Exception as e:
            self.logger.error(f'Migration failed: {e}')
            raise
        finally:
            self.close()

    async def get_migration_status(self, migration_id: str) -> RemoteJob:
        return await self.orchestrator.get_migration_status(migration_id)

    async def wait_for_migration(self, migration_id: str) -> MigrationResult:
        return await self.orchestrator.wait_for_migration(migration_id)

    async def abort_migration(self, migration_id: str) -> bool:
        return await self.orchestrator.abort_migration(migration_id)

    def inventory(
        self,
        org: str,
        team_project: Optional[str] = None,
        since: Optional[date] = None,
    ) -> List[dict]:
        """List Azure DevOps repositories of an organization with activity counts.

        Args:
            org: Azure DevOps organization
            team_project: Restrict to one team project
            since: Start of the activity window, one year ago by default

        Returns:
            One row per enabled repository
        """
        since = since or (datetime.now() - timedelta(days=365)).date()

        if not self.config.source.ado_token:
            raise MigrationError('An Azure DevOps personal access token is required (ADO_PAT)')

        client = self._register(
            AdoClient(
                self.config.source.ado_token,
                self.config.source.ado_server_url,
                retry_policy=self.retry_policy,
                timeout=self.config.source.timeout,
            )
        )
        ado_api = AdoApi(client)

        team_projects = [team_project] if team_project else ado_api.get_team_projects(org)
        self.logger.info(f'Found {len(team_projects)} team projects in {org}')

        rows = []
        for project in team_projects:
            for repo in ado_api.get_enabled_repos(org, project):
                pushers = ado_api.get_pushers_since(org, project, repo.name, since)
                rows.append(
                    {
                        'org': org,
                        'team_project': project,
                        'repo': repo.name,
                        'size': repo.size,
                        'pull_requests': ado_api.get_pull_request_count(
                            org, project, repo.name
                        ),
                        'commits': ado_api.get_commit_count_since(
                            org, project, repo.name, since
                        ),
                        'pushers': len(set(pushers)),
                    }
                )
        return rows

    def bbs_inventory(self, server_url: str, project_key: Optional[str] = None) -> List[dict]:
        """List Bitbucket Server repositories, project by project.

        Args:
            server_url: Bitbucket Server URL
            project_key: Restrict to one project

        Returns:
            One row per repository
        """
        if not self.config.source.bbs_username:
            raise MigrationError(
                'Bitbucket Server credentials are required (BBS_USERNAME, BBS_PASSWORD)'
            )

        bbs_api = self._bbs_api(server_url)
        self.logger.info(f'Bitbucket Server version: {bbs_api.get_server_version()}')

        project_keys = (
            [project_key] if project_key else [key for _, key, _ in bbs_api.get_projects()]
        )
        self.logger.info(f'Found {len(project_keys)} projects on {server_url}')

        rows = []
        for key in project_keys:
            for repo_id, slug, name in bbs_api.get_repos(key):
                rows.append({'project': key, 'id': repo_id, 'slug': slug, 'name': name})
        return rows

    def close(self) -> None:
        """Close every client session opened by the engine."""
        with self._clients_lock:
            clients, self._clients = self._clients, []
        for client in clients:
            client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
