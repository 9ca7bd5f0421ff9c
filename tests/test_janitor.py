"""
Tests for per-request resource release.
"""

import pytest

from conftest import FakeWorker
from yks_ocr.services.janitor import RequestResources


class FailingWorker(FakeWorker):
    async def terminate(self) -> None:
        self.terminate_calls += 1
        raise RuntimeError("worker process already gone")


class TestReleaseWorker:
    @pytest.mark.asyncio
    async def test_terminates_once(self):
        resources = RequestResources()
        worker = FakeWorker()
        resources.track_worker(worker)

        assert await resources.release_worker() is True
        assert await resources.release_worker() is False
        assert worker.terminate_calls == 1
        assert resources.worker is None

    @pytest.mark.asyncio
    async def test_termination_error_is_not_retried(self):
        resources = RequestResources()
        worker = FailingWorker()
        resources.track_worker(worker)

        assert await resources.release_worker() is False
        await resources.release_worker()

        assert worker.terminate_calls == 1

    @pytest.mark.asyncio
    async def test_nothing_held(self):
        assert await RequestResources().release_worker() is False


class TestDiscardStagedFile:
    def test_removes_file_once(self, tmp_path):
        staged = tmp_path / "image-1.png"
        staged.write_bytes(b"png")
        resources = RequestResources()
        resources.track_staged_file(str(staged))

        assert resources.discard_staged_file() is True
        assert not staged.exists()
        assert resources.discard_staged_file() is False

    def test_missing_file_is_ignored(self, tmp_path):
        resources = RequestResources()
        resources.track_staged_file(str(tmp_path / "gone.png"))

        assert resources.discard_staged_file() is False


class TestScope:
    @pytest.mark.asyncio
    async def test_releases_everything_on_exception(self, tmp_path):
        staged = tmp_path / "image-2.jpg"
        staged.write_bytes(b"jpg")
        worker = FakeWorker()

        with pytest.raises(ValueError):
            async with RequestResources() as resources:
                resources.track_staged_file(str(staged))
                resources.track_worker(worker)
                raise ValueError("boom")

        assert worker.terminate_calls == 1
        assert not staged.exists()

    @pytest.mark.asyncio
    async def test_file_deleted_even_if_termination_fails(self, tmp_path):
        staged = tmp_path / "image-3.png"
        staged.write_bytes(b"png")
        worker = FailingWorker()

        async with RequestResources() as resources:
            resources.track_staged_file(str(staged))
            resources.track_worker(worker)

        assert worker.terminate_calls == 1
        assert not staged.exists()
