"""
Per-request resource tracking.

Keeps the two transient resources of one request: the staged upload and
the OCR worker handle. Both release operations are idempotent and never
raise, so they can run on every exit path, including after a failed
release attempt.

Usage:
    async with RequestResources() as resources:
        resources.track_staged_file(path)
        ...
    # worker terminated and staged file deleted here, whatever happened
"""

import logging
import os
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class TerminableWorker(Protocol):
    async def terminate(self) -> None: ...


class RequestResources:
    """
    Scoped owner of the staged file and the OCR worker of one request.

    Attributes:
        worker: OCR worker handle, None when not held
        staged_path: path of the staged upload, None when not held
    """

    def __init__(self) -> None:
        self.worker: Optional[TerminableWorker] = None
        self.staged_path: Optional[str] = None

    async def __aenter__(self) -> "RequestResources":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None and (self.worker or self.staged_path):
            logger.warning(
                f"Cleaning up after {exc_type.__name__}: "
                f"worker={'held' if self.worker else 'released'}, "
                f"staged_file={self.staged_path or 'none'}"
            )
        await self.release_worker()
        self.discard_staged_file()
        return False

    def track_worker(self, worker: TerminableWorker) -> None:
        self.worker = worker

    def track_staged_file(self, path: str) -> None:
        self.staged_path = path

    async def release_worker(self) -> bool:
        """
        Terminates the held worker, at most once.

        The handle is dropped before terminate() is awaited, so a failing
        termination is never retried and the handle is never reused.

        Returns:
            bool: True if a worker was held and terminated cleanly
        """
        worker, self.worker = self.worker, None
        if worker is None:
            return False

        try:
            await worker.terminate()
        except Exception as e:
            logger.error(f"Error terminating OCR worker: {e!r}")
            return False

        logger.debug("OCR worker terminated")
        return True

    def discard_staged_file(self) -> bool:
        """
        Deletes the staged upload if it still exists.

        Returns:
            bool: True if a file was removed
        """
        path, self.staged_path = self.staged_path, None
        if path is None or not os.path.exists(path):
            return False

        try:
            os.remove(path)
        except OSError as e:
            logger.error(f"Error deleting staged file {path}: {e!r}")
            return False

        logger.debug(f"Staged file deleted: {path}")
        return True
