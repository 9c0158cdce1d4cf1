"""
Composition orchestration.

Two end-to-end flows, both tracked as a CompositionJob:

- compile_sequence: ordered video/narration segments -> overlay chunks ->
  stream-copied concatenation, returned inline
- compose_timeline: assets + timeline -> trim/concat artifact kept under the
  composed-videos directory until its expiration

Every phase appends a step to the job. A failing phase appends
``<phase>_failure``, moves the job to ``failed`` and re-raises. The scratch
directory is removed on every exit path.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from mediacompose.config import Settings, get_settings
from mediacompose.exceptions import JobNotFoundError, JobStoreError, ValidationError
from mediacompose.models.base import utcnow
from mediacompose.models.composition import CompositionStatus
from mediacompose.render.composer import MediaComposer
from mediacompose.schemas.composition import ComposeRequest
from mediacompose.services.active_media import DefaultVideoProvider, run_sequence
from mediacompose.services.job_store import CompositionJob, CompositionJobStore
from mediacompose.services.segment_normalizer import materialize_segment, normalize_segments
from mediacompose.services.timeline_flattener import flatten_timeline
from mediacompose.services.workdir import new_scratch_id, scratch_directory

logger = logging.getLogger(__name__)

SEQUENCE_REQUEST_TYPE = "compile_sequential_video"

_UNSET = object()


class JobTracker:
    """Records step and status changes for one job, forward-only."""

    def __init__(self, store: CompositionJobStore, job: CompositionJob):
        self.store = store
        self.job = job

    @property
    def job_id(self) -> str:
        return self.job.id

    @property
    def status(self) -> CompositionStatus:
        return self.job.status

    async def record(
        self,
        *steps: str,
        status: CompositionStatus | None = None,
        output_path: str | None | object = _UNSET,
        expires_at: datetime | None | object = _UNSET,
    ) -> None:
        """Append steps and optionally move the job forward.

        Raises:
            ValueError: ``status`` would move the job backward
            JobStoreError: Persistence failed
        """
        if self.status is CompositionStatus.FAILED:
            logger.warning(f"[DB] Job {self.job_id} already failed, not recording {list(steps)}")
            return
        if status is not None and not self.status.can_transition_to(status):
            raise ValueError(
                f"Illegal status transition for {self.job_id}: {self.status.value} -> {status.value}"
            )

        fields: dict[str, Any] = {}
        if output_path is not _UNSET:
            fields["output_path"] = output_path
        if expires_at is not _UNSET:
            fields["expires_at"] = expires_at
        self.job = await self.store.update(self.job_id, status=status, steps=steps, **fields)

    async def record_safely(self, *steps: str, **kwargs: Any) -> bool:
        """Like record(), but a persistence failure is only logged.

        Used once the artifact exists, where a degraded audit trail must not
        turn a success into an error. Returns whether the write went through.
        """
        try:
            await self.record(*steps, **kwargs)
        except JobStoreError as e:
            logger.error(f"[DB] Could not record {list(steps)} for {self.job_id}: {e.message}")
            return False
        return True

    async def fail(self, step: str) -> None:
        """Append ``step`` and mark the job failed. No-op once terminal."""
        if self.status.is_terminal:
            return
        try:
            self.job = await self.store.update(
                self.job_id, status=CompositionStatus.FAILED, steps=[step]
            )
        except JobStoreError as e:
            logger.error(f"[DB] Could not mark {self.job_id} failed ({step}): {e.message}")
            return
        logger.warning(f"[DB] Job {self.job_id} failed at {step}")

    @asynccontextmanager
    async def phase(self, name: str) -> AsyncIterator[None]:
        """Fail the job with ``<name>_failure`` if the block raises."""
        try:
            yield
        except (Exception, asyncio.CancelledError):
            await self.fail(f"{name}_failure")
            raise


@dataclass
class SequenceResult:
    job_id: str
    video: bytes


@dataclass
class ComposeResult:
    job_id: str
    output_path: str
    expires_at: datetime


class CompositionService:
    """Runs composition flows against a job store and a media composer."""

    def __init__(
        self,
        store: CompositionJobStore,
        composer: MediaComposer,
        settings: Settings | None = None,
    ):
        self.store = store
        self.composer = composer
        self.settings = settings or get_settings()

    async def _start_job(self, job_id: str, work_dir: Path) -> JobTracker:
        await self.store.initialize()
        job = await self.store.create(
            CompositionJob(
                id=job_id,
                status=CompositionStatus.IN_PROGRESS,
                work_dir=str(work_dir),
                steps=["record_creation_success"],
            )
        )
        return JobTracker(self.store, job)

    async def compile_sequence(
        self, request_type: str, raw_segments: Iterable[Mapping[str, Any]] | None
    ) -> SequenceResult:
        """Compile ordered segments into one video, returned as bytes.

        Raises:
            ValidationError: Unsupported type, bad segments, or no narration
            SegmentProcessingError: A payload could not be decoded or written
            TranscodeError / TranscodeTimeoutError: An engine step failed
            JobStoreError: The job record could not be created
        """
        if request_type != SEQUENCE_REQUEST_TYPE:
            raise ValidationError(
                f"Unsupported type: {request_type!r}. Expected '{SEQUENCE_REQUEST_TYPE}'"
            )

        # Rejects empty and malformed input before any directory or job exists
        segments = normalize_segments(raw_segments)
        logger.info(f"[SEQUENCE] {len(segments)} segment(s) accepted")

        job_id = new_scratch_id()
        with scratch_directory(self.settings.sequence_scratch_root, job_id) as work_dir:
            tracker = await self._start_job(job_id, work_dir)
            try:
                async with tracker.phase("decode_segments"):
                    materialized = [(segment, materialize_segment(segment, work_dir)) for segment in segments]
                    await tracker.record("segments_decoded")

                async with tracker.phase("overlay"):
                    state = await run_sequence(
                        materialized,
                        work_dir,
                        self.composer,
                        DefaultVideoProvider(self.composer, work_dir),
                        on_overlay=lambda request, output: tracker.record("overlay_success"),
                    )

                if not state.outputs:
                    await tracker.fail("no_overlay_outputs")
                    raise ValidationError("No narration segments were provided, nothing to compile")

                async with tracker.phase("concat"):
                    final_path = await self.composer.concat_segments(
                        list(state.outputs), work_dir / "final_video.mp4"
                    )
                    video = final_path.read_bytes()
            except (Exception, asyncio.CancelledError):
                await tracker.fail("failed_in_general_catch")
                raise

            await tracker.record_safely(
                "concat_success", "sequence_compiled", status=CompositionStatus.COMPLETED
            )

        logger.info(f"[SEQUENCE] Compiled {job_id}: {len(state.outputs)} chunk(s), {len(video)} bytes")
        return SequenceResult(job_id=job_id, video=video)

    async def compose_timeline(self, request: ComposeRequest) -> ComposeResult:
        """Trim and join timeline clips into an artifact that expires later.

        Raises:
            ValidationError: No usable video/audio clips
            SegmentProcessingError: Inline asset data could not be decoded
            TranscodeError / TranscodeTimeoutError: The engine failed
            JobStoreError: The job record could not be created
        """
        job_id = new_scratch_id()
        output_format = request.global_settings.output_format

        with scratch_directory(self.settings.compose_scratch_root, job_id) as work_dir:
            tracker = await self._start_job(job_id, work_dir)
            try:
                async with tracker.phase("transform_clips"):
                    flattened = flatten_timeline(
                        request.assets, request.timeline, request.global_settings, work_dir
                    )
                    await tracker.record("transform_clips_success")

                if not flattened.clips:
                    await tracker.fail("no_valid_clips_found")
                    raise ValidationError("No video/audio clips to compose", code="NO_VALID_CLIPS")

                output_dir = self.settings.composed_videos_dir
                output_dir.mkdir(parents=True, exist_ok=True)
                output_path = output_dir / f"video-{job_id}.{output_format}"

                async with tracker.phase("compose_video"):
                    await self.composer.trim_concat(flattened.clips, output_path, output_format)
            except (Exception, asyncio.CancelledError):
                await tracker.fail("failed_in_general_catch")
                raise

            expires_at = utcnow() + timedelta(minutes=self.settings.output_expiration_minutes)
            await tracker.record_safely("compose_video_success")
            recorded = await tracker.record_safely(
                "video_composed",
                status=CompositionStatus.COMPLETED,
                output_path=str(output_path),
                expires_at=expires_at,
            )
            if not recorded:
                # Cleanup sweeps only see artifacts with a stored path
                logger.error(
                    f"[CLEANUP] Orphaned artifact for {job_id}, not scheduled for expiry: {output_path}"
                )

        logger.info(f"[COMPOSE] Composition {job_id} completed: {output_path}")
        return ComposeResult(job_id=job_id, output_path=str(output_path), expires_at=expires_at)

    async def get_composition(self, job_id: str) -> CompositionJob:
        """Raises JobNotFoundError for unknown ids."""
        await self.store.initialize()
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job
