"""GitHub endpoints used by repository migrations."""

import threading
from typing import Dict, Optional, Tuple
from urllib.parse import quote

from loguru import logger
from pydantic import BaseModel

from ..models.job import RemoteJob
from .exceptions import ApiError, GraphQLError, MigrationError
from .github_client import GithubClient
from .retry import RetryPolicy

CREATE_MIGRATION_SOURCE_MUTATION = (
    'mutation createMigrationSource($name: String!, $url: String!, $ownerId: ID!, '
    '$type: MigrationSourceType!) { createMigrationSource(input: {name: $name, '
    'url: $url, ownerId: $ownerId, type: $type}) { migrationSource { id, name, url, type } } }'
)

START_REPOSITORY_MIGRATION_MUTATION = """
mutation startRepositoryMigration(
    $sourceId: ID!,
    $ownerId: ID!,
    $sourceRepositoryUrl: URI!,
    $repositoryName: String!,
    $continueOnError: Boolean!,
    $gitArchiveUrl: String,
    $metadataArchiveUrl: String,
    $accessToken: String!,
    $githubPat: String,
    $skipReleases: Boolean,
    $targetRepoVisibility: String,
    $lockSource: Boolean) {
  startRepositoryMigration(
    input: {
      sourceId: $sourceId,
      ownerId: $ownerId,
      sourceRepositoryUrl: $sourceRepositoryUrl,
      repositoryName: $repositoryName,
      continueOnError: $continueOnError,
      gitArchiveUrl: $gitArchiveUrl,
      metadataArchiveUrl: $metadataArchiveUrl,
      accessToken: $accessToken,
      githubPat: $githubPat,
      skipReleases: $skipReleases,
      targetRepoVisibility: $targetRepoVisibility,
      lockSource: $lockSource
    }
  ) {
    repositoryMigration {
      id,
      databaseId,
      migrationSource { id, name, type },
      sourceUrl,
      state,
      failureReason
    }
  }
}
"""

GET_MIGRATION_QUERY = """
query($id: ID!) {
  node(id: $id) {
    ... on Migration {
      id,
      sourceUrl,
      migrationLogUrl,
      migrationSource { name },
      state,
      warningsCount,
      failureReason,
      repositoryName
    }
  }
}
"""

ABORT_MIGRATION_MUTATION = """
mutation abortRepositoryMigration($migrationId: ID!) {
  abortRepositoryMigration(input: { migrationId: $migrationId }) { success }
}
"""

ORGANIZATION_QUERY = (
    'query($login: String!) {organization(login: $login) { login, id, databaseId, name } }'
)

# Minimum GHES version that uploads archives to its own blob storage
GHES_SELF_UPLOAD_VERSION = (3, 8, 0)


class MigrationSourceInput(BaseModel):
    """Variables of the createMigrationSource mutation."""

    name: str
    url: str
    ownerId: str
    type: str


class StartRepositoryMigrationInput(BaseModel):
    """Variables of the startRepositoryMigration mutation."""

    sourceId: str
    ownerId: str
    sourceRepositoryUrl: str
    repositoryName: str
    # Always sent as true; meaning of false unverified against the API
    continueOnError: bool = True
    gitArchiveUrl: Optional[str] = None
    metadataArchiveUrl: Optional[str] = None
    accessToken: str
    githubPat: Optional[str] = None
    skipReleases: bool = False
    targetRepoVisibility: Optional[str] = None
    lockSource: bool = False


def _escape(value: str) -> str:
    return quote(value, safe='')


def parse_version(version: str) -> Tuple[int, ...]:
    """Parse '3.9.1' (or '3.9.1.rc1') into a comparable tuple."""
    parts = []
    for part in (version or '').split('.'):
        digits = ''.join(ch for ch in part if ch.isdigit())
        if not digits:
            break
        parts.append(int(digits))
    return tuple(parts)


class GithubApi:
    """Typed wrappers over the GitHub REST and GraphQL endpoints."""

    def __init__(self, client: GithubClient, retry_policy: Optional[RetryPolicy] = None):
        """Initialize GitHub API.

        Args:
            client: Client bound to the instance's API URL
            retry_policy: Policy for idempotent GraphQL lookups
        """
        self.client = client
        self.retry_policy = retry_policy or client.retry_policy
        self._migration_sources: Dict[Tuple[str, str, str], str] = {}
        self._migration_sources_lock = threading.Lock()
        self.logger = logger.bind(component='GithubApi')

    # Organization

    def _get_organization(self, org: str) -> dict:
        payload = {'query': ORGANIZATION_QUERY, 'variables': {'login': org}}
        try:
            data = self.retry_policy.retry(lambda: self.client.post_graphql(payload))
        except MigrationError as e:
            raise MigrationError(
                f"Failed to lookup the Organization ID for organization '{org}': {e}"
            ) from e

        organization = (data.get('data') or {}).get('organization')
        if not organization:
            raise MigrationError(
                f"Failed to lookup the Organization ID for organization '{org}'"
            )
        return organization

    def get_organization_id(self, org: str) -> str:
        """GraphQL node id of an organization."""
        return self._get_organization(org)['id']

    def get_organization_database_id(self, org: str) -> str:
        """Numeric database id of an organization, as a string."""
        return str(self._get_organization(org)['databaseId'])

    # Repositories

    def does_repo_exist(self, org: str, repo: str) -> bool:
        """Check whether org/repo exists; a 301 (renamed/transferred) counts as absent."""
        url = f'/repos/{_escape(org)}/{_escape(repo)}'
        try:
            self.client.get_non_success(url, expected_status=404)
            return False
        except ApiError as e:
            if e.status_code == 200:
                return True
            if e.status_code == 301:
                return False
            raise

    # Migration sources

    def create_migration_source(
        self, org_id: str, name: str, url: str, source_type: str
    ) -> str:
        """Create a migration source, reusing one already created for the same key.

        Args:
            org_id: Target organization node id
            name: Display name
            url: Source system URL
            source_type: MigrationSourceType enum value

        Returns:
            Migration source id
        """
        key = (org_id, source_type, url)
        with self._migration_sources_lock:
            if key in self._migration_sources:
                return self._migration_sources[key]

            variables = MigrationSourceInput(
                name=name, url=url, ownerId=org_id, type=source_type
            )
            data = self.client.post_graphql(
                {
                    'query': CREATE_MIGRATION_SOURCE_MUTATION,
                    'variables': variables.model_dump(),
                    'operationName': 'createMigrationSource',
                }
            )
            source_id = data['data']['createMigrationSource']['migrationSource']['id']
            self._migration_sources[key] = source_id
            self.logger.debug(f'Created {source_type} migration source {source_id}')
            return source_id

    def create_ado_migration_source(self, org_id: str, ado_server_url: Optional[str] = None) -> str:
        return self.create_migration_source(
            org_id,
            'Azure DevOps Source',
            ado_server_url or 'https://dev.azure.com',
            'AZURE_DEVOPS',
        )

    def create_bbs_migration_source(self, org_id: str) -> str:
        # The API requires a URL but never reads it for Bitbucket sources
        return self.create_migration_source(
            org_id, 'Bitbucket Server Source', 'https://not-used', 'BITBUCKET_SERVER'
        )

    def create_ghec_migration_source(self, org_id: str) -> str:
        return self.create_migration_source(
            org_id, 'GHEC Source', 'https://github.com', 'GITHUB_ARCHIVE'
        )

    # Repository migrations

    def start_migration(self, migration: StartRepositoryMigrationInput) -> str:
        """Start a repository migration.

        Returns:
            Migration id
        """
        data = self.client.post_graphql(
            {
                'query': START_REPOSITORY_MIGRATION_MUTATION,
                'variables': migration.model_dump(),
                'operationName': 'startRepositoryMigration',
            }
        )
        return data['data']['startRepositoryMigration']['repositoryMigration']['id']

    def get_migration(self, migration_id: str) -> RemoteJob:
        """Current state of a repository migration."""
        payload = {'query': GET_MIGRATION_QUERY, 'variables': {'id': migration_id}}
        try:
            data = self.retry_policy.retry(lambda: self.client.post_graphql(payload))
        except MigrationError as e:
            raise MigrationError(
                f'Failed to get migration state for migration {migration_id}: {e}'
            ) from e

        node = (data.get('data') or {}).get('node')
        if not node:
            raise MigrationError(f'Migration {migration_id} not found')
        node.setdefault('id', migration_id)
        return RemoteJob.from_repository_migration(node)

    def abort_migration(self, migration_id: str) -> bool:
        """Abort a queued or running repository migration."""
        try:
            data = self.client.post_graphql(
                {
                    'query': ABORT_MIGRATION_MUTATION,
                    'variables': {'migrationId': migration_id},
                    'operationName': 'abortRepositoryMigration',
                }
            )
        except GraphQLError as e:
            if 'could not resolve to a node' in str(e).lower():
                raise MigrationError(f'Invalid migration id: {migration_id}') from e
            raise
        return bool(data['data']['abortRepositoryMigration']['success'])

    # GHES archive exports

    def start_git_archive_generation(self, org: str, repo: str) -> int:
        response = self.client.post(
            f'/orgs/{_escape(org)}/migrations',
            {'repositories': [repo], 'exclude_metadata': True},
        )
        return int(response.data['id'])

    def start_metadata_archive_generation(
        self, org: str, repo: str, skip_releases: bool, lock_source: bool
    ) -> int:
        response = self.client.post(
            f'/orgs/{_escape(org)}/migrations',
            {
                'repositories': [repo],
                'exclude_git_data': True,
                'exclude_releases': skip_releases,
                'lock_repositories': lock_source,
                'exclude_owner_projects': True,
            },
        )
        return int(response.data['id'])

    def get_archive_migration(self, org: str, archive_id: int) -> RemoteJob:
        response = self.client.get(f'/orgs/{_escape(org)}/migrations/{archive_id}')
        return RemoteJob.from_ghes_archive(archive_id, response.data.get('state'))

    def get_archive_migration_url(self, org: str, archive_id: int) -> str:
        """Issue a fresh, short-lived download URL for a finished export."""
        response = self.client.get_non_success(
            f'/orgs/{_escape(org)}/migrations/{archive_id}/archive', expected_status=302
        )
        location = response.header('Location')
        if not location:
            raise ApiError(
                f'No download location returned for archive {archive_id}',
                status_code=response.status_code,
            )
        return location

    # Instance

    def get_enterprise_server_version(self) -> str:
        response = self.client.get('/meta')
        return (response.data or {}).get('installed_version') or ''

    def are_blob_credentials_required(self) -> bool:
        """GHES before 3.8 cannot upload archives to its own blob storage."""
        version = parse_version(self.get_enterprise_server_version())
        self.logger.debug(f'GHES version: {".".join(map(str, version)) or "unknown"}')
        return not version or version < GHES_SELF_UPLOAD_VERSION
