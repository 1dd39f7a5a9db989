"""Migration orchestrator driving one repository migration to a terminal state."""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence

from loguru import logger
from pydantic import BaseModel, Field

from ..api.exceptions import MigrationError
from ..api.github_api import StartRepositoryMigrationInput
from ..api.retry import Backoff
from ..models.descriptor import MigrationDescriptor, SourcePlatform
from ..models.job import RemoteJob
from ..storage.base import BlobStorage
from .archive import ArchiveSource, ArchiveTransferPipeline
from .exceptions import MigrationTimeoutError
from .permissions import decorate_permission_error
from .strategy import STRATEGIES, MigrationContext, MigrationStrategy


class MigrationOutcome(str, Enum):
    """Final classification of one repository migration."""

    QUEUED = 'queued'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    SKIPPED = 'skipped'


class MigrationResult(BaseModel):
    """Result of a repository migration."""

    outcome: MigrationOutcome = Field(..., description='Migration outcome')
    source: str = Field(default='', description='Source repository')
    target: str = Field(default='', description='Target org/repo')
    migration_id: Optional[str] = Field(default=None, description='Remote migration id')
    reason: Optional[str] = Field(
        default=None, description='Failure reason or skip explanation'
    )
    warnings_count: int = Field(default=0, description='Number of migration warnings')
    migration_log_url: Optional[str] = Field(
        default=None, description='URL of the migration log'
    )

    # Timing information
    started_at: datetime = Field(default_factory=datetime.now, description='Start time')
    completed_at: Optional[datetime] = Field(default=None, description='Completion time')

    @property
    def success(self) -> bool:
        return self.outcome != MigrationOutcome.FAILED


class MigrationSummary(BaseModel):
    """Summary of a batch of repository migrations."""

    total: int = Field(..., description='Repositories processed')
    succeeded: int = Field(default=0, description='Migrations that succeeded')
    queued: int = Field(default=0, description='Migrations left queued')
    failed: int = Field(default=0, description='Migrations that failed')
    skipped: int = Field(default=0, description='Migrations skipped')

    started_at: datetime = Field(..., description='Batch start time')
    completed_at: Optional[datetime] = Field(default=None, description='Batch end time')

    results: List[MigrationResult] = Field(
        default_factory=list, description='All migration results'
    )

    @classmethod
    def from_results(
        cls, results: List[MigrationResult], started_at: datetime
    ) -> 'MigrationSummary':
        counts: Dict[MigrationOutcome, int] = {outcome: 0 for outcome in MigrationOutcome}
        for result in results:
            counts[result.outcome] += 1

        return cls(
            total=len(results),
            succeeded=counts[MigrationOutcome.SUCCEEDED],
            queued=counts[MigrationOutcome.QUEUED],
            failed=counts[MigrationOutcome.FAILED],
            skipped=counts[MigrationOutcome.SKIPPED],
            started_at=started_at,
            completed_at=datetime.now(),
            results=results,
        )


class MigrationOrchestrator:
    """Runs repository migrations against the target organization.

    Holds no per-migration state, so distinct descriptors can be migrated
    concurrently with one instance.
    """

    def __init__(self, context: MigrationContext):
        """Initialize migration orchestrator.

        Args:
            context: Clients, credentials and settings
        """
        self.context = context
        self.target_api = context.target_api
        self.logger = logger.bind(component='MigrationOrchestrator')

        self.strategies: Dict[SourcePlatform, MigrationStrategy] = {
            platform: strategy_class(context)
            for platform, strategy_class in STRATEGIES.items()
        }

    def _strategy(self, descriptor: MigrationDescriptor) -> MigrationStrategy:
        return self.strategies[descriptor.source.platform]

    async def migrate_repository(self, descriptor: MigrationDescriptor) -> MigrationResult:
        """Migrate one repository.

        Args:
            descriptor: What to migrate and how

        Returns:
            SKIPPED when the target repository exists, QUEUED for queue-only
            descriptors, otherwise SUCCEEDED or FAILED

        Raises:
            DescriptorValidationError: Descriptor cannot run with this configuration
            MigrationTimeoutError: Polling budget ran out
            MigrationError: Any other failure, decorated when caused by missing permissions
        """
        strategy = self._strategy(descriptor)
        strategy.validate(descriptor)

        org = descriptor.target_org
        repo = descriptor.target_repo
        target = f'{org}/{repo}'
        source = descriptor.source.describe()
        started_at = datetime.now()
        pipelines: List[ArchiveTransferPipeline] = []

        def build_pipeline(
            archive_source: Optional[ArchiveSource], storage: Optional[BlobStorage]
        ) -> ArchiveTransferPipeline:
            pipeline = ArchiveTransferPipeline(
                archive_source,
                storage,
                self.context.downloader,
                retry_policy=self.context.retry_policy,
                keep_archive=descriptor.keep_archive,
                poll_interval=self.context.archive_poll_interval,
                max_poll_attempts=self.context.max_poll_attempts,
                temp_dir=self.context.temp_dir,
            )
            pipelines.append(pipeline)
            return pipeline

        def skipped(reason: str) -> MigrationResult:
            self.logger.warning(reason)
            return MigrationResult(
                outcome=MigrationOutcome.SKIPPED,
                source=source,
                target=target,
                reason=reason,
                started_at=started_at,
                completed_at=datetime.now(),
            )

        self.logger.info(f'Migrating repo {source} to {target}...')

        try:
            if await asyncio.to_thread(self.target_api.does_repo_exist, org, repo):
                return skipped(
                    f'The Org \'{org}\' already contains a repository with the name '
                    f'\'{repo}\'. No operation will be performed'
                )

            org_id = await asyncio.to_thread(self.target_api.get_organization_id, org)
            migration_source_id = await asyncio.to_thread(
                strategy.create_migration_source, org_id, descriptor
            )

            if strategy.needs_archive_transfer(descriptor):
                self.logger.info(f'Generating archives for {source}')
            git_archive_url, metadata_archive_url = await strategy.prepare_archives(
                descriptor, build_pipeline
            )

            migration_input = StartRepositoryMigrationInput(
                sourceId=migration_source_id,
                ownerId=org_id,
                sourceRepositoryUrl=strategy.source_repository_url(descriptor),
                repositoryName=repo,
                gitArchiveUrl=git_archive_url,
                metadataArchiveUrl=metadata_archive_url,
                accessToken=strategy.source_token(),
                githubPat=self.context.target_token,
                skipReleases=strategy.skip_releases(descriptor),
                targetRepoVisibility=descriptor.target_repo_visibility,
                lockSource=strategy.lock_source_on_start(descriptor),
            )

            try:
                migration_id = await asyncio.to_thread(
                    self.target_api.start_migration, migration_input
                )
            except MigrationError as e:
                if f'A repository called {target} already exists' in str(e):
                    return skipped(
                        f'The Org \'{org}\' already contains a repository with the name '
                        f'\'{repo}\'. No operation will be performed'
                    )
                raise

            if descriptor.queue_only:
                self.logger.info(
                    f'A repository migration (ID: {migration_id}) was successfully queued.'
                )
                return MigrationResult(
                    outcome=MigrationOutcome.QUEUED,
                    source=source,
                    target=target,
                    migration_id=migration_id,
                    started_at=started_at,
                )

            result = await self.wait_for_migration(
                migration_id, poll_interval=strategy.poll_interval
            )
            result.source = source
            result.target = target
            result.started_at = started_at
            return result

        except Exception as e:
            decorated = decorate_permission_error(e, org)
            if decorated is e:
                raise
            raise decorated from e
        finally:
            for pipeline in pipelines:
                pipeline.cleanup_all()

    async def get_migration_status(self, migration_id: str) -> RemoteJob:
        """Current state of a repository migration as reported by the target."""
        return await asyncio.to_thread(self.target_api.get_migration, migration_id)

    async def wait_for_migration(
        self, migration_id: str, poll_interval: Optional[float] = None
    ) -> MigrationResult:
        """Poll a migration until it reaches a terminal state.

        Args:
            migration_id: Repository migration id
            poll_interval: Seconds between polls, the context default when None

        Returns:
            SUCCEEDED or FAILED result; a failure carries the remote reason verbatim

        Raises:
            MigrationTimeoutError: Polling budget ran out while still pending
        """
        interval = self.context.poll_interval if poll_interval is None else poll_interval

        async def poll() -> RemoteJob:
            job = await self.get_migration_status(migration_id)
            if job.is_pending:
                self.logger.info(
                    f'Migration in progress (ID: {migration_id}). State: {job.raw_state}. '
                    f'Waiting {interval:g} seconds...'
                )
            return job

        job = await self.context.retry_policy.retry_on_result_async(
            poll,
            is_retryable=lambda job: job.is_pending,
            max_attempts=self.context.max_poll_attempts,
            interval=interval,
            backoff=Backoff.CONSTANT,
            message=f'Migration {migration_id} still in progress',
        )
        if job.is_pending:
            raise MigrationTimeoutError(
                f'Timed out waiting for migration {migration_id} '
                f'(last state: {job.raw_state})',
                job_id=migration_id,
            )
        result = MigrationResult(
            outcome=MigrationOutcome.SUCCEEDED if job.succeeded else MigrationOutcome.FAILED,
            target=job.repository_name or '',
            migration_id=migration_id,
            reason=job.failure_reason,
            warnings_count=job.warnings_count,
            migration_log_url=job.migration_log_url,
            completed_at=datetime.now(),
        )

        if job.succeeded:
            self.logger.info(f'Migration completed (ID: {migration_id})! State: {job.raw_state}')
        else:
            self.logger.error(
                f'Migration Failed. Migration ID: {migration_id}. '
                f'Failure reason: {job.failure_reason}'
            )
        if job.warnings_count:
            self.logger.warning(f'{job.warnings_count} warnings encountered during this migration')
        if job.migration_log_url:
            self.logger.info(f'Migration log available at {job.migration_log_url}')

        return result

    async def abort_migration(self, migration_id: str) -> bool:
        """Abort a queued or running migration."""
        aborted = await asyncio.to_thread(self.target_api.abort_migration, migration_id)
        if aborted:
            self.logger.info(f'Migration {migration_id} was cancelled')
        else:
            self.logger.warning(f'Migration {migration_id} could not be cancelled')
        return aborted

    async def migrate_repositories(
        self, descriptors: Sequence[MigrationDescriptor], max_concurrent: int = 5
    ) -> List[MigrationResult]:
        """Migrate several repositories concurrently.

        Per repository errors become FAILED results instead of aborting the batch.
        """
        self.logger.info(f'Migrating {len(descriptors)} repositories')
        semaphore = asyncio.Semaphore(max_concurrent)

        async def migrate(descriptor: MigrationDescriptor) -> MigrationResult:
            async with semaphore:
                return await self.migrate_repository(descriptor)

        outcomes = await asyncio.gather(
            *(migrate(descriptor) for descriptor in descriptors), return_exceptions=True
        )

        results = []
        for descriptor, outcome in zip(descriptors, outcomes):
            if isinstance(outcome, Exception):
                self.logger.error(
                    f'Migration of {descriptor.source.describe()} failed: {outcome}'
                )
                outcome = MigrationResult(
                    outcome=MigrationOutcome.FAILED,
                    source=descriptor.source.describe(),
                    target=f'{descriptor.target_org}/{descriptor.target_repo}',
                    reason=str(outcome),
                    completed_at=datetime.now(),
                )
            elif isinstance(outcome, BaseException):
                raise outcome
            results.append(outcome)

        return results
