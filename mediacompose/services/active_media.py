"""Active-media state machine for sequential compositions.

A video segment becomes the active video. A narration segment is overlaid
onto whatever video is active at that point, producing one output chunk.
If the sequence opens with narration, a default video is activated first.

``step()`` is pure: it returns the next state plus the overlay to run, if
any. ``run_sequence()`` executes those overlays in order and stops at the
first failure.
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, replace
from pathlib import Path

from mediacompose.config import get_settings
from mediacompose.render.composer import MediaComposer
from mediacompose.services.segment_normalizer import Segment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActiveMediaState:
    active_video: Path | None = None
    outputs: tuple[Path, ...] = ()

    @property
    def has_active_video(self) -> bool:
        return self.active_video is not None

    def activate(self, video: Path) -> "ActiveMediaState":
        return replace(self, active_video=video)

    def with_output(self, output: Path) -> "ActiveMediaState":
        return replace(self, outputs=self.outputs + (output,))


@dataclass(frozen=True)
class OverlayRequest:
    video_path: Path
    audio_path: Path
    segment: Segment


def step(
    state: ActiveMediaState, segment: Segment, segment_path: Path
) -> tuple[ActiveMediaState, OverlayRequest | None]:
    """Advance the machine by one materialized segment.

    Raises:
        RuntimeError: Narration arrives with no active video. The driver
            activates a default video before that can happen.
    """
    if segment.is_video:
        return state.activate(segment_path), None

    if not state.has_active_video:
        raise RuntimeError(f"No active video for narration segment {segment.order_key}")
    return state, OverlayRequest(
        video_path=state.active_video, audio_path=segment_path, segment=segment
    )


class DefaultVideoProvider:
    """Resolves the video used when narration precedes any video segment.

    The configured ``default_video_path`` wins when the file exists;
    otherwise a blank clip is synthesized into ``work_dir`` on first use.
    """

    def __init__(
        self,
        composer: MediaComposer,
        work_dir: Path,
        default_video_path: str | None = None,
        blank_duration_s: float | None = None,
    ):
        settings = get_settings()
        self.composer = composer
        self.work_dir = Path(work_dir)
        self.default_video_path = (
            default_video_path if default_video_path is not None else settings.default_video_path
        )
        self.blank_duration_s = (
            blank_duration_s if blank_duration_s is not None else settings.blank_video_duration_s
        )
        self._resolved: Path | None = None

    async def get(self) -> Path:
        if self._resolved is not None:
            return self._resolved

        configured = Path(self.default_video_path) if self.default_video_path else None
        if configured is not None and configured.is_file():
            logger.info(f"[SEQUENCE] Using configured default video {configured}")
            self._resolved = configured
        else:
            if configured is not None:
                logger.warning(f"[SEQUENCE] Default video {configured} not found, synthesizing blank video")
            blank = self.work_dir / "default_blank.mp4"
            await self.composer.synthesize_blank_video(blank, duration_s=self.blank_duration_s)
            self._resolved = blank
        return self._resolved


OverlayHook = Callable[[OverlayRequest, Path], Awaitable[None]]


async def run_sequence(
    materialized: Sequence[tuple[Segment, Path]],
    work_dir: Path,
    composer: MediaComposer,
    default_video: DefaultVideoProvider,
    on_overlay: OverlayHook | None = None,
) -> ActiveMediaState:
    """Fold ordered segments through the state machine, running each overlay.

    Args:
        materialized: (segment, file path) pairs in composition order
        work_dir: Directory receiving ``output_<n>.mp4`` chunks
        composer: Executes overlays
        default_video: Supplies the active video for leading narration
        on_overlay: Awaited after each successful overlay

    Returns:
        Final state; ``outputs`` lists chunks in production order

    Raises:
        TranscodeError / TranscodeTimeoutError: The first failed overlay
    """
    state = ActiveMediaState()
    for segment, path in materialized:
        if not segment.is_video and not state.has_active_video:
            state = state.activate(await default_video.get())

        state, request = step(state, segment, path)
        if request is None:
            logger.info(f"[SEQUENCE] Segment {segment.order_key}: active video -> {path.name}")
            continue

        output = Path(work_dir) / f"output_{len(state.outputs)}.mp4"
        logger.info(
            f"[SEQUENCE] Segment {segment.order_key}: overlaying {request.audio_path.name} "
            f"onto {request.video_path.name}"
        )
        await composer.overlay(request.video_path, request.audio_path, output)
        state = state.with_output(output)
        if on_overlay is not None:
            await on_overlay(request, output)

    return state
