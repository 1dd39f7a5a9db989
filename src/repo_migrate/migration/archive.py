"""Archive transfer pipeline: generate, wait, download, stage and clean up."""

import asyncio
import tempfile
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Union

from loguru import logger

from ..api.bbs_api import BbsApi
from ..api.download import HttpDownloadService
from ..api.exceptions import ApiError, MigrationError
from ..api.github_api import GithubApi
from ..api.retry import Backoff, RetryPolicy
from ..models.job import RemoteJob
from ..storage.base import BlobStorage, git_archive_name, metadata_archive_name
from .exceptions import ArchiveGenerationError, MigrationTimeoutError

DEFAULT_POLL_INTERVAL = 10
DEFAULT_MAX_POLL_ATTEMPTS = 7200

# Download statuses that mean the short-lived URL expired or was consumed
STALE_LINK_STATUSES = (403, 404)


class ArchiveSide(str, Enum):
    """Which half of a repository an archive holds."""

    GIT = 'git'
    METADATA = 'metadata'


class ArchiveStage(str, Enum):
    """Lifecycle of one archive; FAILED is absorbing."""

    REQUESTED = 'requested'
    GENERATING = 'generating'
    READY = 'ready'
    DOWNLOADED = 'downloaded'
    UPLOADED = 'uploaded'
    FAILED = 'failed'


@dataclass
class ArchiveHandle:
    """One archive moving through the pipeline."""

    side: ArchiveSide
    job_id: Optional[Union[str, int]] = None
    download_url: Optional[str] = None
    local_path: Optional[Path] = None
    upload_name: Optional[str] = None
    uploaded_url: Optional[str] = None
    stage: ArchiveStage = ArchiveStage.REQUESTED
    retained: bool = False

    def advance(self, stage: ArchiveStage) -> None:
        if self.stage != ArchiveStage.FAILED:
            self.stage = stage


class ArchiveSource(Protocol):
    """A platform that can export repository archives."""

    def start_archive_generation(self, side: ArchiveSide) -> Union[str, int]:
        ...

    def get_archive_job(self, job_id: Union[str, int]) -> RemoteJob:
        ...

    def fetch_download_url(self, job_id: Union[str, int]) -> str:
        ...


class GhesArchiveSource:
    """GitHub Enterprise Server org migrations, one per archive side."""

    def __init__(
        self,
        api: GithubApi,
        org: str,
        repo: str,
        skip_releases: bool = False,
        lock_source: bool = False,
    ):
        self.api = api
        self.org = org
        self.repo = repo
        self.skip_releases = skip_releases
        self.lock_source = lock_source

    def start_archive_generation(self, side: ArchiveSide) -> int:
        if side == ArchiveSide.GIT:
            return self.api.start_git_archive_generation(self.org, self.repo)
        return self.api.start_metadata_archive_generation(
            self.org, self.repo, self.skip_releases, self.lock_source
        )

    def get_archive_job(self, job_id: int) -> RemoteJob:
        return self.api.get_archive_migration(self.org, job_id)

    def fetch_download_url(self, job_id: int) -> str:
        return self.api.get_archive_migration_url(self.org, job_id)


class BbsArchiveSource:
    """Bitbucket Server repository export, a single archive holding everything."""

    def __init__(self, api: BbsApi, project_key: str, slug: str):
        self.api = api
        self.project_key = project_key
        self.slug = slug
        self.logger = logger.bind(component='BbsArchiveSource')

    def start_archive_generation(self, side: ArchiveSide) -> int:
        return self.api.start_export(self.project_key, self.slug)

    def get_archive_job(self, job_id: int) -> RemoteJob:
        return self.api.get_export(job_id)

    def fetch_download_url(self, job_id: int) -> str:
        export_path = f'data/migration/export/Bitbucket_export_{job_id}.tar'
        self.logger.warning(
            f'Export {job_id} of {self.project_key}/{self.slug} is ready at '
            f'{export_path} in the Bitbucket Server shared home'
        )
        raise MigrationError(
            f'Bitbucket Server export {job_id} finished, but exports can only be '
            f'fetched from the server file system. Copy {export_path} from the shared '
            'home directory and re-run the migration with archive_path.'
        )


class ArchiveTransferPipeline:
    """Moves archives from a source platform into blob storage.

    Each side owns its local staging file; nothing is shared between
    concurrently transferred sides.
    """

    def __init__(
        self,
        source: ArchiveSource,
        storage: Optional[BlobStorage],
        downloader: HttpDownloadService,
        retry_policy: Optional[RetryPolicy] = None,
        keep_archive: bool = False,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        temp_dir: Optional[Union[str, Path]] = None,
    ):
        """Initialize archive pipeline.

        Args:
            source: Platform exporting the archives
            storage: Staging backend; None passes source URLs through untouched
            downloader: Service streaming archives to disk
            retry_policy: Policy used to poll generation jobs
            keep_archive: Keep staged files instead of deleting them
            poll_interval: Seconds between generation status checks
            max_poll_attempts: Status checks before giving up
            temp_dir: Directory for staged files
        """
        self.source = source
        self.storage = storage
        self.downloader = downloader
        self.retry_policy = retry_policy or RetryPolicy()
        self.keep_archive = keep_archive
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.temp_dir = Path(temp_dir or tempfile.gettempdir())
        self.handles: List[ArchiveHandle] = []
        self.logger = logger.bind(component='ArchiveTransferPipeline')

    async def generate(self, side: ArchiveSide) -> ArchiveHandle:
        """Ask the source to start exporting one side."""
        handle = ArchiveHandle(side=side)
        self.handles.append(handle)

        try:
            handle.job_id = await asyncio.to_thread(
                self.source.start_archive_generation, side
            )
        except Exception:
            handle.stage = ArchiveStage.FAILED
            raise

        handle.advance(ArchiveStage.GENERATING)
        self.logger.info(f'Archive generation of {side.value} archive started: {handle.job_id}')
        return handle

    async def wait_for_generation(self, handle: ArchiveHandle) -> ArchiveHandle:
        """Poll the export until it finishes, then fetch its download URL.

        Raises:
            ArchiveGenerationError: Export failed on the source; not retried
            MigrationTimeoutError: Polling budget ran out
        """

        async def poll() -> RemoteJob:
            return await asyncio.to_thread(self.source.get_archive_job, handle.job_id)

        job = await self.retry_policy.retry_on_result_async(
            poll,
            is_retryable=lambda job: job.is_pending,
            max_attempts=self.max_poll_attempts,
            interval=self.poll_interval,
            backoff=Backoff.CONSTANT,
            message=f'Waiting for {handle.side.value} archive generation',
        )

        if job.failed:
            handle.stage = ArchiveStage.FAILED
            raise ArchiveGenerationError(
                f'Archive generation failed for id: {handle.job_id}'
                + (f' ({job.failure_reason})' if job.failure_reason else ''),
                job_id=handle.job_id,
            )
        if job.is_pending:
            handle.stage = ArchiveStage.FAILED
            raise MigrationTimeoutError(
                f'Timed out waiting for {handle.side.value} archive {handle.job_id} '
                f'(last state: {job.raw_state or job.state.value})',
                job_id=handle.job_id,
            )

        handle.download_url = await asyncio.to_thread(
            self.source.fetch_download_url, handle.job_id
        )
        handle.advance(ArchiveStage.READY)
        self.logger.info(f'Archive ({handle.side.value}) download url: {handle.download_url}')
        return handle

    async def download(self, handle: ArchiveHandle) -> ArchiveHandle:
        """Download a ready archive, re-issuing a stale URL once."""
        handle.local_path = self.temp_dir / f'{uuid.uuid4()}.tar.gz'

        try:
            self.logger.info(f'Downloading archive from {handle.download_url}')
            try:
                await self.downloader.download_to_file(handle.download_url, handle.local_path)
            except ApiError as e:
                if e.status_code not in STALE_LINK_STATUSES:
                    raise
                self.logger.warning(
                    f'Download of {handle.side.value} archive returned {e.status_code}, '
                    'requesting a fresh URL'
                )
                handle.download_url = await asyncio.to_thread(
                    self.source.fetch_download_url, handle.job_id
                )
                self.logger.info(f'Downloading archive from fresh URL: {handle.download_url}')
                await self.downloader.download_to_file(handle.download_url, handle.local_path)
        except Exception:
            handle.stage = ArchiveStage.FAILED
            raise

        handle.advance(ArchiveStage.DOWNLOADED)
        return handle

    async def upload(self, handle: ArchiveHandle) -> ArchiveHandle:
        """Upload a downloaded archive; the staged file is removed on every exit path."""
        if handle.upload_name is None:
            if handle.side == ArchiveSide.GIT:
                handle.upload_name = git_archive_name(handle.job_id)
            else:
                handle.upload_name = metadata_archive_name(handle.job_id)

        try:
            self.logger.info(f'Uploading archive {handle.upload_name}')
            with open(handle.local_path, 'rb') as content:
                handle.uploaded_url = await asyncio.to_thread(
                    self.storage.upload, handle.upload_name, content
                )
        except Exception:
            handle.stage = ArchiveStage.FAILED
            raise
        finally:
            self.cleanup(handle)

        handle.advance(ArchiveStage.UPLOADED)
        return handle

    def cleanup(self, handle: ArchiveHandle) -> None:
        """Delete the staged file of handle. Safe to call repeatedly."""
        path = handle.local_path
        if path is None or not path.exists():
            return

        if self.keep_archive:
            if not handle.retained:
                self.logger.info(f'Keeping archive at {path}')
                handle.retained = True
            return

        try:
            path.unlink()
            self.logger.debug(f'Deleted archive {path}')
        except OSError as e:
            self.logger.warning(f'Couldn\'t delete the downloaded archive {path}: {e}')

    def cleanup_all(self) -> None:
        for handle in self.handles:
            if handle.stage != ArchiveStage.UPLOADED:
                self.cleanup(handle)

    async def transfer(self, side: ArchiveSide) -> ArchiveHandle:
        """Run one side through generate, wait, download and upload.

        Without a storage backend the source download URL is handed over
        as the uploaded URL.
        """
        handle = await self.generate(side)
        try:
            await self.wait_for_generation(handle)

            if self.storage is None:
                handle.uploaded_url = handle.download_url
                handle.advance(ArchiveStage.UPLOADED)
                return handle

            await self.download(handle)
            await self.upload(handle)
            return handle
        finally:
            if handle.stage != ArchiveStage.UPLOADED:
                self.cleanup(handle)

    async def transfer_all(self, sides: Sequence[ArchiveSide]) -> List[ArchiveHandle]:
        """Transfer sides concurrently; the first error is raised once all finished."""
        results = await asyncio.gather(
            *(self.transfer(side) for side in sides), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)

    async def upload_local_archive(self, path: Union[str, Path], archive_name: str) -> str:
        """Upload an operator supplied archive. The file is left in place."""
        self.logger.info(f'Uploading archive {path} as {archive_name}')
        with open(path, 'rb') as content:
            return await asyncio.to_thread(self.storage.upload, archive_name, content)
