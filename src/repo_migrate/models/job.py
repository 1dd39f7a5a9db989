"""Remote job state as reported by the source and target platforms."""

from enum import Enum
from typing import Dict, Optional, Union

from pydantic import BaseModel, Field


class JobState(str, Enum):
    """Normalized state of a remote long-running job."""

    PENDING = 'pending'
    RUNNING = 'running'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


REPOSITORY_MIGRATION_STATES: Dict[str, JobState] = {
    'QUEUED': JobState.PENDING,
    'PENDING_VALIDATION': JobState.PENDING,
    'IN_PROGRESS': JobState.RUNNING,
    'SUCCEEDED': JobState.SUCCEEDED,
    'FAILED': JobState.FAILED,
    'FAILED_VALIDATION': JobState.FAILED,
}

GHES_ARCHIVE_STATES: Dict[str, JobState] = {
    'pending': JobState.PENDING,
    'exporting': JobState.RUNNING,
    'exported': JobState.SUCCEEDED,
    'failed': JobState.FAILED,
}

BBS_EXPORT_STATES: Dict[str, JobState] = {
    'INITIALISING': JobState.PENDING,
    'IN_PROGRESS': JobState.RUNNING,
    'RUNNING': JobState.RUNNING,
    'COMPLETED': JobState.SUCCEEDED,
    'FAILED': JobState.FAILED,
    'ABORTED': JobState.FAILED,
    'TIMED_OUT': JobState.FAILED,
}


class RemoteJob(BaseModel):
    """A long-running job owned by a remote platform.

    Instances are only ever built from remote responses; the remote side is
    the source of truth and nothing here is persisted.
    """

    id: Union[str, int] = Field(..., description='Remote job identifier')
    state: JobState = Field(..., description='Normalized job state')
    raw_state: str = Field(default='', description='State string as reported')
    failure_reason: Optional[str] = Field(
        default=None, description='Platform-reported failure reason'
    )
    warnings_count: int = Field(default=0, description='Number of warnings')
    migration_log_url: Optional[str] = Field(
        default=None, description='URL of the migration log'
    )
    repository_name: Optional[str] = Field(default=None, description='Repository name')
    progress: Optional[int] = Field(default=None, description='Completion percentage')

    @property
    def is_pending(self) -> bool:
        return self.state in (JobState.PENDING, JobState.RUNNING)

    @property
    def is_terminal(self) -> bool:
        return not self.is_pending

    @property
    def succeeded(self) -> bool:
        return self.state == JobState.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.state == JobState.FAILED

    @classmethod
    def from_repository_migration(cls, node: dict) -> 'RemoteJob':
        """Build from a GraphQL Migration node. Unknown states count as failed."""
        raw_state = (node.get('state') or '').upper()
        return cls(
            id=node.get('id'),
            state=REPOSITORY_MIGRATION_STATES.get(raw_state, JobState.FAILED),
            raw_state=raw_state,
            failure_reason=node.get('failureReason') or None,
            warnings_count=node.get('warningsCount') or 0,
            migration_log_url=node.get('migrationLogUrl') or None,
            repository_name=node.get('repositoryName'),
        )

    @classmethod
    def from_ghes_archive(cls, migration_id: int, state: str) -> 'RemoteJob':
        """Build from a GHES org migration (archive export) state.

        Unknown states keep the job running so polling carries on until a
        known terminal state or the polling budget runs out.
        """
        raw_state = (state or '').lower()
        return cls(
            id=migration_id,
            state=GHES_ARCHIVE_STATES.get(raw_state, JobState.RUNNING),
            raw_state=raw_state,
            failure_reason='Archive generation failed' if raw_state == 'failed' else None,
        )

    @classmethod
    def from_bbs_export(
        cls,
        export_id: int,
        state: str,
        message: Optional[str] = None,
        percentage: Optional[int] = None,
    ) -> 'RemoteJob':
        """Build from a Bitbucket Server export. Unknown states count as failed."""
        raw_state = (state or '').upper()
        job_state = BBS_EXPORT_STATES.get(raw_state, JobState.FAILED)
        return cls(
            id=export_id,
            state=job_state,
            raw_state=raw_state,
            failure_reason=message if job_state == JobState.FAILED else None,
            progress=percentage,
        )
