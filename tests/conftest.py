"""
Pytest fixtures for the composition service tests.

Settings are read once at import time, so the environment is pointed at a
throwaway data directory and database before any mediacompose module loads.
No test needs ffmpeg: engine tests run the Python interpreter in its place
and flow tests use a fake composer.
"""

import os
import tempfile
from pathlib import Path

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="mediacompose_tests_"))
os.environ.setdefault("DATA_DIR", str(_TEST_ROOT / "data"))
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_ROOT / 'compositions.db'}")
os.environ.setdefault("API_KEYS_RAW", "test-key,second-key")
os.environ.setdefault("DEV_MODE", "false")
os.environ.setdefault("CLEANUP_ENABLED", "false")

import pytest  # noqa: E402

from mediacompose.config import Settings  # noqa: E402
from mediacompose.models.database import SchemaInitializer, build_engine, build_session_maker  # noqa: E402
from mediacompose.services.job_store import CompositionJobStore  # noqa: E402

TEST_API_KEY = "test-key"


@pytest.fixture
async def job_store(tmp_path):
    """Job store backed by a fresh SQLite file."""
    db_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}")
    store = CompositionJobStore(build_session_maker(db_engine), SchemaInitializer(db_engine))
    await store.initialize()
    yield store
    await db_engine.dispose()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings rooted at the test's temp directory."""
    return Settings(
        data_dir=str(tmp_path / "data"),
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'unused.db'}",
        default_video_path="",
        blank_video_duration_s=5,
        output_expiration_minutes=60,
    )


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {TEST_API_KEY}"}


class FakeComposer:
    """Stands in for MediaComposer; writes small files instead of running ffmpeg."""

    def __init__(self):
        self.overlays: list[tuple[Path, Path, Path]] = []
        self.concats: list[list[Path]] = []
        self.trim_concats: list[tuple[list, Path, str]] = []
        self.blank_videos: list[Path] = []
        self.fail_overlay_at: int | None = None
        self.overlay_error: Exception | None = None
        self.compose_error: Exception | None = None

    async def overlay(self, video_path, audio_path, output_path, on_progress=None):
        if self.fail_overlay_at is not None and len(self.overlays) == self.fail_overlay_at:
            raise self.overlay_error
        self.overlays.append((Path(video_path), Path(audio_path), Path(output_path)))
        Path(output_path).write_bytes(f"[{Path(video_path).name}+{Path(audio_path).name}]".encode())
        return Path(output_path)

    async def concat_segments(self, files, output_path, manifest_path=None):
        self.concats.append([Path(f) for f in files])
        Path(output_path).write_bytes(b"".join(Path(f).read_bytes() for f in files))
        return Path(output_path)

    async def trim_concat(self, clips, output_path, output_format="mp4", on_progress=None):
        if self.compose_error is not None:
            raise self.compose_error
        self.trim_concats.append((list(clips), Path(output_path), output_format))
        Path(output_path).write_bytes(b"composed")
        return Path(output_path)

    async def synthesize_blank_video(self, output_path, duration_s=None, width=None, height=None):
        self.blank_videos.append(Path(output_path))
        Path(output_path).write_bytes(b"blank")
        return Path(output_path)


@pytest.fixture
def fake_composer() -> FakeComposer:
    return FakeComposer()
