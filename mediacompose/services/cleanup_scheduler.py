"""Periodic reclamation of expired composition artifacts.

Runs one sweep immediately when started, then one every interval. A sweep
deletes the artifact of every job whose expiration has elapsed and clears the
job's output fields; the job record itself is kept.
"""

import asyncio
import logging
import os
from datetime import datetime

from mediacompose.exceptions import CleanupError, MediaComposeError
from mediacompose.services.job_store import CompositionJob, CompositionJobStore

logger = logging.getLogger(__name__)


def delete_artifact(job: CompositionJob) -> bool:
    """Delete a job's artifact file.

    Returns:
        True if a file was removed, False if it was already gone

    Raises:
        CleanupError: The file exists but could not be removed
    """
    path = job.output_path
    if not path or not os.path.exists(path):
        logger.info(f"[CLEANUP] Artifact for {job.id} already gone: {path}")
        return False
    try:
        os.remove(path)
    except OSError as e:
        raise CleanupError(f"Could not delete {path}: {e}") from e
    logger.info(f"[CLEANUP] Deleted artifact {path}")
    return True


class CleanupScheduler:
    """asyncio task that sweeps expired artifacts at a fixed interval."""

    def __init__(self, store: CompositionJobStore, interval_s: float):
        self.store = store
        self.interval_s = interval_s
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()
        self._sweep_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self, now: datetime | None = None) -> int:
        """Reclaim every expired artifact once.

        File deletion failures are logged and the job's output fields are
        cleared anyway. Failures to query or update the store are logged and
        left for the next sweep.

        Returns:
            Number of jobs whose output fields were cleared
        """
        async with self._sweep_lock:
            try:
                await self.store.initialize()
                expired = await self.store.find_expired(now)
            except MediaComposeError as e:
                logger.error(f"[CLEANUP] Sweep failed, retrying in {self.interval_s:g}s: {e.message}")
                return 0

            if not expired:
                logger.info("[CLEANUP] No expired artifacts")
                return 0

            logger.info(f"[CLEANUP] Found {len(expired)} expired artifact(s)")
            reclaimed = 0
            for job in expired:
                try:
                    delete_artifact(job)
                except CleanupError as e:
                    logger.error(f"[CLEANUP] {e.message}")
                try:
                    await self.store.clear_output(job.id)
                except MediaComposeError as e:
                    logger.error(f"[CLEANUP] Could not clear output for {job.id}: {e.message}")
                    continue
                reclaimed += 1

            logger.info(f"[CLEANUP] Sweep complete, reclaimed {reclaimed} artifact(s)")
            return reclaimed

    async def _run(self) -> None:
        logger.info(f"[CLEANUP] Scheduler started, sweeping every {self.interval_s / 60:g} minutes")
        while not self._stopping.is_set():
            try:
                await self.sweep()
            except Exception as e:  # noqa: BLE001
                logger.exception(f"[CLEANUP] Unexpected sweep error: {e}")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_s)
            except asyncio.TimeoutError:
                pass
        logger.info("[CLEANUP] Scheduler stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="composition-cleanup")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        try:
            await asyncio.wait_for(self._task, timeout=5)
        except asyncio.TimeoutError:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
