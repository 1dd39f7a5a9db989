"""Tests for the archive transfer pipeline."""

import pytest
from loguru import logger
from unittest.mock import AsyncMock, Mock

from repo_migrate.api.exceptions import ApiError, MigrationError
from repo_migrate.api.retry import RetryPolicy
from repo_migrate.migration.archive import (
    ArchiveHandle,
    ArchiveSide,
    ArchiveStage,
    ArchiveTransferPipeline,
    BbsArchiveSource,
    GhesArchiveSource,
)
from repo_migrate.migration.exceptions import ArchiveGenerationError, MigrationTimeoutError
from repo_migrate.models.job import RemoteJob


def make_source(states=('exported',), urls=('https://blob/1',)):
    """Archive source whose jobs report the given states in order."""
    source = Mock()
    source.start_archive_generation.side_effect = lambda side: (
        1 if side == ArchiveSide.GIT else 2
    )
    job_states = iter(states)
    source.get_archive_job.side_effect = lambda job_id: RemoteJob.from_ghes_archive(
        job_id, next(job_states)
    )
    source.fetch_download_url.side_effect = list(urls)
    return source


def make_downloader(*outcomes):
    """Downloader writing a file per call, or raising the given exception."""
    outcomes = list(outcomes) or [b'archive']
    paths = []

    async def download(url, path):
        paths.append(path)
        outcome = outcomes.pop(0)
        path.write_bytes(b'partial')
        if isinstance(outcome, Exception):
            raise outcome
        path.write_bytes(outcome)
        return path

    downloader = Mock()
    downloader.download_to_file = AsyncMock(side_effect=download)
    downloader.paths = paths
    return downloader


def make_storage(url='https://storage/archive'):
    uploaded = {}

    def upload(name, content):
        uploaded[name] = content.read()
        return url

    storage = Mock()
    storage.upload.side_effect = upload
    storage.uploaded = uploaded
    return storage


def make_pipeline(source, storage, downloader, tmp_path, **kwargs):
    kwargs.setdefault('poll_interval', 0)
    return ArchiveTransferPipeline(
        source,
        storage,
        downloader,
        retry_policy=RetryPolicy(),
        temp_dir=tmp_path,
        **kwargs,
    )


class TestArchiveTransferPipeline:
    """Test archive transfers end to end."""

    @pytest.mark.asyncio
    async def test_transfer_success(self, tmp_path):
        """Test generate, poll, download and upload, then the staged file is gone."""
        source = make_source(states=['pending', 'exporting', 'exported'])
        storage = make_storage()
        downloader = make_downloader(b'git-data')
        pipeline = make_pipeline(source, storage, downloader, tmp_path)

        handle = await pipeline.transfer(ArchiveSide.GIT)

        assert handle.stage == ArchiveStage.UPLOADED
        assert handle.uploaded_url == 'https://storage/archive'
        assert source.get_archive_job.call_count == 3
        assert list(storage.uploaded.values()) == [b'git-data']
        assert handle.upload_name.endswith('-1-git_archive.tar.gz')
        assert not handle.local_path.exists()
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_stale_link_refetched_once(self, tmp_path):
        """Test an expired URL is re-issued once and the download succeeds."""
        source = make_source(urls=['https://blob/old', 'https://blob/new'])
        downloader = make_downloader(ApiError('expired', status_code=403), b'data')
        pipeline = make_pipeline(source, make_storage(), downloader, tmp_path)

        handle = await pipeline.transfer(ArchiveSide.METADATA)

        assert handle.stage == ArchiveStage.UPLOADED
        assert source.fetch_download_url.call_count == 2
        urls = [c.args[0] for c in downloader.download_to_file.call_args_list]
        assert urls == ['https://blob/old', 'https://blob/new']

    @pytest.mark.asyncio
    async def test_stale_link_twice_fails(self, tmp_path):
        """Test a second stale URL fails the side and removes the partial file."""
        source = make_source(urls=['https://blob/old', 'https://blob/new'])
        downloader = make_downloader(
            ApiError('expired', status_code=404), ApiError('expired', status_code=404)
        )
        storage = make_storage()
        pipeline = make_pipeline(source, storage, downloader, tmp_path)

        with pytest.raises(ApiError):
            await pipeline.transfer(ArchiveSide.GIT)

        handle = pipeline.handles[0]
        assert handle.stage == ArchiveStage.FAILED
        assert not handle.local_path.exists()
        storage.upload.assert_not_called()

    @pytest.mark.asyncio
    async def test_other_download_errors_not_refetched(self, tmp_path):
        source = make_source()
        downloader = make_downloader(ApiError('boom', status_code=500))
        pipeline = make_pipeline(source, make_storage(), downloader, tmp_path)

        with pytest.raises(ApiError):
            await pipeline.transfer(ArchiveSide.GIT)

        assert source.fetch_download_url.call_count == 1

    @pytest.mark.asyncio
    async def test_generation_failure(self, tmp_path):
        """Test a failed export raises without downloading."""
        source = make_source(states=['exporting', 'failed'])
        downloader = make_downloader()
        pipeline = make_pipeline(source, make_storage(), downloader, tmp_path)

        with pytest.raises(ArchiveGenerationError) as exc_info:
            await pipeline.transfer(ArchiveSide.GIT)

        assert 'Archive generation failed for id: 1' in str(exc_info.value)
        assert exc_info.value.job_id == 1
        downloader.download_to_file.assert_not_called()

    @pytest.mark.asyncio
    async def test_generation_timeout(self, tmp_path):
        source = make_source(states=['exporting'] * 3)
        pipeline = make_pipeline(
            source, make_storage(), make_downloader(), tmp_path, max_poll_attempts=3
        )

        with pytest.raises(MigrationTimeoutError):
            await pipeline.transfer(ArchiveSide.GIT)

        assert source.get_archive_job.call_count == 3
        assert pipeline.handles[0].stage == ArchiveStage.FAILED

    @pytest.mark.asyncio
    async def test_upload_failure_removes_file(self, tmp_path):
        """Test the staged file is deleted when the upload fails."""
        storage = Mock()
        storage.upload.side_effect = MigrationError('upload failed')
        pipeline = make_pipeline(make_source(), storage, make_downloader(), tmp_path)

        with pytest.raises(MigrationError):
            await pipeline.transfer(ArchiveSide.GIT)

        assert pipeline.handles[0].stage == ArchiveStage.FAILED
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_keep_archive(self, tmp_path):
        """Test keep_archive leaves the staged file on disk."""
        pipeline = make_pipeline(
            make_source(), make_storage(), make_downloader(b'data'), tmp_path, keep_archive=True
        )

        handle = await pipeline.transfer(ArchiveSide.GIT)
        pipeline.cleanup(handle)
        pipeline.cleanup_all()

        assert handle.local_path.read_bytes() == b'data'
        assert handle.retained is True

    @pytest.mark.asyncio
    async def test_no_storage_passes_url_through(self, tmp_path):
        downloader = make_downloader()
        pipeline = make_pipeline(make_source(), None, downloader, tmp_path)

        handle = await pipeline.transfer(ArchiveSide.GIT)

        assert handle.uploaded_url == 'https://blob/1'
        downloader.download_to_file.assert_not_called()

    @pytest.mark.asyncio
    async def test_transfer_all_raises_after_both_sides_finish(self, tmp_path):
        """Test one failing side does not leave the other side's file behind."""
        source = make_source(
            states=['exported', 'exported'], urls=['https://blob/git', 'https://blob/meta']
        )
        storage = Mock()
        storage.upload.side_effect = [MigrationError('denied'), 'https://storage/ok']
        pipeline = make_pipeline(source, storage, make_downloader(b'a', b'b'), tmp_path)

        with pytest.raises(MigrationError):
            await pipeline.transfer_all([ArchiveSide.GIT, ArchiveSide.METADATA])

        assert len(pipeline.handles) == 2
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_transfer_all(self, tmp_path):
        source = make_source(
            states=['exported', 'exported'], urls=['https://blob/a', 'https://blob/b']
        )
        pipeline = make_pipeline(source, None, make_downloader(), tmp_path)

        handles = await pipeline.transfer_all([ArchiveSide.GIT, ArchiveSide.METADATA])

        assert {h.side for h in handles} == {ArchiveSide.GIT, ArchiveSide.METADATA}
        assert all(h.stage == ArchiveStage.UPLOADED for h in handles)

    @pytest.mark.asyncio
    async def test_upload_local_archive_keeps_file(self, tmp_path):
        """Test operator supplied archives are never deleted."""
        archive = tmp_path / 'export.tar'
        archive.write_bytes(b'export')
        storage = make_storage()
        pipeline = make_pipeline(make_source(), storage, make_downloader(), tmp_path)

        url = await pipeline.upload_local_archive(archive, 'export.tar')

        assert url == 'https://storage/archive'
        assert storage.uploaded == {'export.tar': b'export'}
        assert archive.exists()

    def test_failed_stage_is_absorbing(self):
        handle = ArchiveHandle(side=ArchiveSide.GIT)
        handle.stage = ArchiveStage.FAILED

        handle.advance(ArchiveStage.UPLOADED)

        assert handle.stage == ArchiveStage.FAILED


class TestArchiveSources:
    """Test platform archive sources."""

    def test_ghes_source(self):
        api = Mock()
        api.start_git_archive_generation.return_value = 1
        api.start_metadata_archive_generation.return_value = 2
        source = GhesArchiveSource(api, 'acme', 'widgets', skip_releases=True)

        assert source.start_archive_generation(ArchiveSide.GIT) == 1
        assert source.start_archive_generation(ArchiveSide.METADATA) == 2
        api.start_metadata_archive_generation.assert_called_once_with(
            'acme', 'widgets', True, False
        )

    def test_bbs_source_download_requires_archive_path(self):
        """Test the finished export is logged before the operator is told to copy it."""
        source = BbsArchiveSource(Mock(), 'PROJ', 'widgets')
        warnings = []
        handler_id = logger.add(
            lambda message: warnings.append(message.record['message']), level='WARNING'
        )

        try:
            with pytest.raises(MigrationError) as exc_info:
                source.fetch_download_url(5)
        finally:
            logger.remove(handler_id)

        assert 'Bitbucket_export_5.tar' in str(exc_info.value)
        assert 'archive_path' in str(exc_info.value)
        assert len(warnings) == 1
        assert 'Export 5 of PROJ/widgets' in warnings[0]
        assert 'data/migration/export/Bitbucket_export_5.tar' in warnings[0]
