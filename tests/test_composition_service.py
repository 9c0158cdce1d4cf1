"""
Tests for the composition flows.

Runs against a real SQLite job store and a fake composer, so the step log
and status of every job can be checked end to end.
"""

import base64
import logging
from datetime import timedelta

import pytest

from mediacompose.exceptions import (
    JobNotFoundError,
    JobStoreError,
    SegmentProcessingError,
    TranscodeError,
    TranscodeTimeoutError,
    ValidationError,
)
from mediacompose.models.base import utcnow
from mediacompose.models.composition import CompositionStatus
from mediacompose.schemas.composition import ComposeRequest
from mediacompose.services import composition_service
from mediacompose.services.composition_service import CompositionService, JobTracker
from mediacompose.services.job_store import CompositionJob

JOB_ID = "0123456789abcdef0123456789abcdef"


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.fixture(autouse=True)
def fixed_job_id(monkeypatch):
    monkeypatch.setattr(composition_service, "new_scratch_id", lambda: JOB_ID)


@pytest.fixture
def service(job_store, fake_composer, test_settings):
    return CompositionService(job_store, fake_composer, test_settings)


def scratch_entries(root):
    return list(root.iterdir()) if root.exists() else []


class TestCompileSequence:
    @pytest.mark.asyncio
    async def test_video_then_two_narrations(self, service, job_store, fake_composer, test_settings):
        result = await service.compile_sequence(
            "compile_sequential_video",
            [
                {"id": 2, "type": "tts", "base_64": b64(b"a2"), "content": "Second line"},
                {"id": 0, "type": "video", "base_64": b64(b"v1")},
                {"id": 1, "type": "tts", "base_64": b64(b"a1"), "content": "First line"},
            ],
        )

        assert result.job_id == JOB_ID
        # Fake overlays write "[video+audio]"; concat joins them in order
        assert result.video.count(b"[") == 2
        assert result.video.index(b"audio_1_") < result.video.index(b"audio_2_")
        assert len(fake_composer.concats[0]) == 2

        job = await job_store.get(JOB_ID)
        assert job.status is CompositionStatus.COMPLETED
        assert job.steps == [
            "record_creation_success",
            "segments_decoded",
            "overlay_success",
            "overlay_success",
            "concat_success",
            "sequence_compiled",
        ]
        assert job.output_path is None
        assert scratch_entries(test_settings.sequence_scratch_root) == []

    @pytest.mark.asyncio
    async def test_leading_narration_uses_blank_video(self, service, fake_composer):
        await service.compile_sequence(
            "compile_sequential_video",
            [{"id": 0, "type": "tts", "base_64": b64(b"a0")}],
        )
        assert len(fake_composer.blank_videos) == 1
        assert fake_composer.overlays[0][0] == fake_composer.blank_videos[0]

    @pytest.mark.asyncio
    async def test_unsupported_type(self, service, job_store):
        with pytest.raises(ValidationError, match="Unsupported type"):
            await service.compile_sequence("compile_everything", [{"id": 0, "type": "video", "base_64": b64(b"v")}])
        assert await job_store.get(JOB_ID) is None

    @pytest.mark.asyncio
    async def test_empty_segments_touch_nothing(self, service, job_store, test_settings):
        with pytest.raises(ValidationError):
            await service.compile_sequence("compile_sequential_video", [])

        assert await job_store.get(JOB_ID) is None
        assert scratch_entries(test_settings.sequence_scratch_root) == []

    @pytest.mark.asyncio
    async def test_bad_payload_creates_no_job(self, service, job_store):
        with pytest.raises(SegmentProcessingError):
            await service.compile_sequence(
                "compile_sequential_video", [{"id": 0, "type": "video", "base_64": "%%%"}]
            )
        assert await job_store.get(JOB_ID) is None

    @pytest.mark.asyncio
    async def test_overlay_failure_fails_job(self, service, job_store, fake_composer, test_settings):
        fake_composer.fail_overlay_at = 1
        fake_composer.overlay_error = TranscodeError("overlay failed", diagnostic="Invalid data found")

        with pytest.raises(TranscodeError):
            await service.compile_sequence(
                "compile_sequential_video",
                [
                    {"id": 0, "type": "video", "base_64": b64(b"v")},
                    {"id": 1, "type": "tts", "base_64": b64(b"a1")},
                    {"id": 2, "type": "tts", "base_64": b64(b"a2")},
                ],
            )

        job = await job_store.get(JOB_ID)
        assert job.status is CompositionStatus.FAILED
        assert job.steps == [
            "record_creation_success",
            "segments_decoded",
            "overlay_success",
            "overlay_failure",
        ]
        assert fake_composer.concats == []
        assert scratch_entries(test_settings.sequence_scratch_root) == []

    @pytest.mark.asyncio
    async def test_overlay_timeout_fails_job(self, service, job_store, fake_composer):
        fake_composer.fail_overlay_at = 0
        fake_composer.overlay_error = TranscodeTimeoutError(60, operation="overlay")

        with pytest.raises(TranscodeTimeoutError):
            await service.compile_sequence(
                "compile_sequential_video",
                [
                    {"id": 0, "type": "video", "base_64": b64(b"v")},
                    {"id": 1, "type": "tts", "base_64": b64(b"a1")},
                ],
            )

        job = await job_store.get(JOB_ID)
        assert job.status is CompositionStatus.FAILED
        assert job.steps[-1] == "overlay_failure"

    @pytest.mark.asyncio
    async def test_videos_only_is_a_validation_error(self, service, job_store):
        with pytest.raises(ValidationError):
            await service.compile_sequence(
                "compile_sequential_video",
                [{"id": 0, "type": "video", "base_64": b64(b"v")}],
            )

        job = await job_store.get(JOB_ID)
        assert job.status is CompositionStatus.FAILED
        assert job.steps[-1] == "no_overlay_outputs"

    @pytest.mark.asyncio
    async def test_store_failure_after_artifact_keeps_success(self, service, job_store, monkeypatch):
        real_update = job_store.update

        async def flaky_update(job_id, **kwargs):
            if "sequence_compiled" in list(kwargs.get("steps", ())):
                raise JobStoreError("database is locked")
            return await real_update(job_id, **kwargs)

        monkeypatch.setattr(job_store, "update", flaky_update)

        result = await service.compile_sequence(
            "compile_sequential_video",
            [
                {"id": 0, "type": "video", "base_64": b64(b"v")},
                {"id": 1, "type": "tts", "base_64": b64(b"a")},
            ],
        )

        assert result.video
        job = await job_store.get(JOB_ID)
        assert job.status is CompositionStatus.IN_PROGRESS


class TestComposeTimeline:
    def request(self, **global_settings) -> ComposeRequest:
        return ComposeRequest.model_validate({
            "assets": [
                {"id": "a1", "type": "video", "source": {"url": "https://cdn.example/a.mp4"},
                 "aspecs": {"startTrim": 0, "duration": 2000}},
                {"id": "a2", "type": "video", "source": {"url": "https://cdn.example/b.mp4"},
                 "aspecs": {"startTrim": 1000, "duration": 3000}},
            ],
            "timeline": [
                {"assetId": "a2", "startTime": 2000},
                {"assetId": "a1", "startTime": 0},
            ],
            "globalSettings": global_settings or {"outputFormat": "mp4"},
        })

    @pytest.mark.asyncio
    async def test_success(self, service, job_store, fake_composer, test_settings):
        before = utcnow()
        result = await service.compose_timeline(self.request())

        clips, output_path, output_format = fake_composer.trim_concats[0]
        assert [clip.source for clip in clips] == ["https://cdn.example/a.mp4", "https://cdn.example/b.mp4"]
        assert output_path.parent == test_settings.composed_videos_dir
        assert output_format == "mp4"
        assert output_path.exists()

        job = await job_store.get(JOB_ID)
        assert job.status is CompositionStatus.COMPLETED
        assert job.steps == [
            "record_creation_success",
            "transform_clips_success",
            "compose_video_success",
            "video_composed",
        ]
        assert job.output_path == result.output_path == str(output_path)
        expected = before + timedelta(minutes=test_settings.output_expiration_minutes)
        assert abs((job.expires_at - expected).total_seconds()) < 5
        assert scratch_entries(test_settings.compose_scratch_root) == []

    @pytest.mark.asyncio
    async def test_mov_output(self, service, fake_composer):
        result = await service.compose_timeline(self.request(outputFormat="mov"))
        assert result.output_path.endswith(".mov")

    @pytest.mark.asyncio
    async def test_no_valid_clips(self, service, job_store, fake_composer):
        request = ComposeRequest.model_validate({
            "assets": [{"id": "t", "type": "text", "source": {"content": "Title"}, "aspecs": {"duration": 1000}}],
            "timeline": [{"assetId": "t", "startTime": 0}],
        })

        with pytest.raises(ValidationError) as exc_info:
            await service.compose_timeline(request)

        assert exc_info.value.code == "NO_VALID_CLIPS"
        job = await job_store.get(JOB_ID)
        assert job.status is CompositionStatus.FAILED
        assert job.steps == ["record_creation_success", "transform_clips_success", "no_valid_clips_found"]
        assert fake_composer.trim_concats == []

    @pytest.mark.asyncio
    async def test_engine_failure(self, service, job_store, fake_composer):
        fake_composer.compose_error = TranscodeError("trim_concat failed", diagnostic="Connection refused")

        with pytest.raises(TranscodeError):
            await service.compose_timeline(self.request())

        job = await job_store.get(JOB_ID)
        assert job.status is CompositionStatus.FAILED
        assert job.steps[-1] == "compose_video_failure"
        assert job.output_path is None

    @pytest.mark.asyncio
    async def test_transform_failure(self, service, job_store):
        request = ComposeRequest.model_validate({
            "assets": [{"id": "a", "type": "video", "source": {"dataBase64": "%%%"}, "aspecs": {"duration": 1000}}],
            "timeline": [{"assetId": "a", "startTime": 0}],
        })

        with pytest.raises(SegmentProcessingError):
            await service.compose_timeline(request)

        job = await job_store.get(JOB_ID)
        assert job.status is CompositionStatus.FAILED
        assert job.steps == ["record_creation_success", "transform_clips_failure"]

    @pytest.mark.asyncio
    async def test_bad_override_fails_transform(self, service, job_store):
        request = ComposeRequest.model_validate({
            "assets": [{"id": "a", "type": "video", "source": {"url": "a.mp4"}, "aspecs": {"duration": 1000}}],
            "timeline": [{"assetId": "a", "startTime": 0, "override": {"duration": "long"}}],
        })

        with pytest.raises(ValidationError):
            await service.compose_timeline(request)

        job = await job_store.get(JOB_ID)
        assert job.status is CompositionStatus.FAILED
        assert job.steps[-1] == "transform_clips_failure"

    @pytest.mark.asyncio
    async def test_unrecorded_artifact_is_logged(self, service, job_store, monkeypatch, caplog):
        real_update = job_store.update

        async def flaky_update(job_id, **kwargs):
            if kwargs.get("output_path"):
                raise JobStoreError("database is locked")
            return await real_update(job_id, **kwargs)

        monkeypatch.setattr(job_store, "update", flaky_update)

        with caplog.at_level(logging.ERROR):
            result = await service.compose_timeline(self.request())

        assert "Orphaned artifact" in caplog.text
        assert result.output_path in caplog.text
        job = await job_store.get(JOB_ID)
        assert job.output_path is None
        assert job.status is CompositionStatus.IN_PROGRESS


class TestGetComposition:
    @pytest.mark.asyncio
    async def test_unknown_id(self, service):
        with pytest.raises(JobNotFoundError):
            await service.get_composition("does-not-exist")


class TestJobTracker:
    @pytest.mark.asyncio
    async def test_rejects_backward_transition(self, job_store):
        job = await job_store.create(
            CompositionJob(id="t1", status=CompositionStatus.COMPLETED, work_dir="/tmp/t1")
        )
        tracker = JobTracker(job_store, job)

        with pytest.raises(ValueError):
            await tracker.record("retry", status=CompositionStatus.IN_PROGRESS)

    @pytest.mark.asyncio
    async def test_failed_job_is_not_mutated(self, job_store):
        job = await job_store.create(
            CompositionJob(id="t2", status=CompositionStatus.IN_PROGRESS, work_dir="/tmp/t2")
        )
        tracker = JobTracker(job_store, job)

        await tracker.fail("overlay_failure")
        await tracker.record("late_step")
        await tracker.fail("another_failure")

        stored = await job_store.get("t2")
        assert stored.status is CompositionStatus.FAILED
        assert stored.steps == ["overlay_failure"]
