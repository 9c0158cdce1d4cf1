"""
Media Composer - ffmpeg invocations used by the composition flows.

Each operation has a ``build_*_args`` method that returns the argument list
without running anything (the output destination is appended by the engine),
and an async method that runs it through FFmpegEngine under the configured
deadline.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from mediacompose.config import get_settings
from mediacompose.exceptions import ValidationError
from mediacompose.render.engine import FFmpegEngine, ProgressCallback

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class Clip:
    """A slice of a source file taken from ``start_seconds`` for ``duration_seconds``."""

    source: str
    start_seconds: float
    duration_seconds: float


# Output format -> ffmpeg muxer for piped audio conversion
AUDIO_MUXERS: dict[str, str] = {
    "mp3": "mp3",
    "wav": "wav",
    "ogg": "ogg",
    "flac": "flac",
    "aac": "adts",
    "opus": "opus",
}

VIDEO_OUTPUT_FORMATS = ("mp4", "mov")


def _fmt_seconds(value: float) -> str:
    # 1.5 -> "1.5", 2.0 -> "2"
    return f"{value:g}"


def escape_concat_path(path: str | Path) -> str:
    """Quote a path for an ffmpeg concat-demuxer manifest line."""
    escaped = str(path).replace("'", "'\\''")
    return f"file '{escaped}'"


def build_trim_concat_filter(clips: Sequence[Clip]) -> str:
    """Build the trim/atrim/concat filter graph for ``clips``.

    Example for two clips::

        [0:v]trim=start=0:duration=2,setpts=PTS-STARTPTS[v0];
        [0:a]atrim=start=0:duration=2,asetpts=PTS-STARTPTS[a0];
        ...
        [v0][v1][a0][a1]concat=n=2:v=1:a=1[outv][outa]
    """
    clip_count = len(clips)
    parts: list[str] = []
    for i, clip in enumerate(clips):
        start = _fmt_seconds(clip.start_seconds)
        duration = _fmt_seconds(clip.duration_seconds)
        parts.append(f"[{i}:v]trim=start={start}:duration={duration},setpts=PTS-STARTPTS[v{i}]")
        parts.append(f"[{i}:a]atrim=start={start}:duration={duration},asetpts=PTS-STARTPTS[a{i}]")

    video_labels = "".join(f"[v{i}]" for i in range(clip_count))
    audio_labels = "".join(f"[a{i}]" for i in range(clip_count))
    parts.append(f"{video_labels}{audio_labels}concat=n={clip_count}:v=1:a=1[outv][outa]")
    return ";".join(parts)


def build_normalize_filter(width: int, height: int) -> str:
    """Fit a video inside ``width`` x ``height``, padding the remainder."""
    return (
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1"
    )


class MediaComposer:
    """Thin, stateless wrapper around the transcoding operations."""

    def __init__(self, engine: FFmpegEngine | None = None):
        self.engine = engine or FFmpegEngine()

    # ------------------------------------------------------------------
    # Overlay
    # ------------------------------------------------------------------

    def build_overlay_args(self, video_path: str | Path, audio_path: str | Path) -> list[str]:
        """Replace the video's audio with ``audio_path``, ending with the shorter stream.

        Every chunk is letterboxed to the configured frame size and rate and
        re-encoded to H.264/AAC, so chunks from different sources can be
        stream-copied into the final concatenation.
        """
        return [
            "-y",
            "-i", str(video_path),
            "-i", str(audio_path),
            "-map", "0:v:0",
            "-map", "1:a:0",
            "-vf", build_normalize_filter(settings.blank_video_width, settings.blank_video_height),
            "-r", str(settings.blank_video_fps),
            "-c:v", "libx264",
            "-preset", "veryfast",
            "-pix_fmt", "yuv420p",
            "-c:a", "aac",
            "-ar", "44100",
            "-ac", "2",
            "-shortest",
        ]

    async def overlay(
        self,
        video_path: str | Path,
        audio_path: str | Path,
        output_path: str | Path,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        await self.engine.run(
            self.build_overlay_args(video_path, audio_path),
            timeout=settings.overlay_timeout_s,
            output_path=output_path,
            on_progress=on_progress,
            operation="overlay",
        )
        return Path(output_path)

    # ------------------------------------------------------------------
    # Trim + concat (timeline flow)
    # ------------------------------------------------------------------

    def build_trim_concat_args(self, clips: Sequence[Clip], output_format: str = "mp4") -> list[str]:
        if not clips:
            raise ValidationError("No clips to compose", code="NO_VALID_CLIPS")
        if output_format not in VIDEO_OUTPUT_FORMATS:
            raise ValidationError(
                f"Unsupported output format: {output_format}", code="UNSUPPORTED_FORMAT"
            )

        args = ["-y"]
        for clip in clips:
            args.extend(["-i", clip.source])
        args.extend([
            "-filter_complex", build_trim_concat_filter(clips),
            "-map", "[outv]",
            "-map", "[outa]",
            "-c:v", "libx264",
            "-pix_fmt", "yuv420p",
            "-c:a", "aac",
            "-f", output_format,
        ])
        if output_format == "mp4":
            args.extend(["-movflags", "+faststart"])
        return args

    async def trim_concat(
        self,
        clips: Sequence[Clip],
        output_path: str | Path,
        output_format: str = "mp4",
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        """Trim each clip and join them into one video.

        Raises:
            ValidationError: No clips, or an unsupported container
        """
        args = self.build_trim_concat_args(clips, output_format)
        logger.info(f"[COMPOSE] Composing {len(clips)} clip(s) into {output_path}")
        await self.engine.run(
            args,
            timeout=settings.compose_timeout_s,
            output_path=output_path,
            on_progress=on_progress,
            operation="trim_concat",
        )
        return Path(output_path)

    # ------------------------------------------------------------------
    # Manifest concat (sequential flow)
    # ------------------------------------------------------------------

    def write_concat_manifest(self, files: Sequence[str | Path], manifest_path: str | Path) -> Path:
        manifest = Path(manifest_path)
        with open(manifest, "w", encoding="utf-8") as f:
            for file_path in files:
                f.write(escape_concat_path(Path(file_path).resolve()) + "\n")
        return manifest

    def build_concat_args(self, manifest_path: str | Path) -> list[str]:
        return [
            "-y",
            "-f", "concat",
            "-safe", "0",
            "-i", str(manifest_path),
            "-c", "copy",
            "-movflags", "+faststart",
        ]

    async def concat_segments(
        self,
        files: Sequence[str | Path],
        output_path: str | Path,
        manifest_path: str | Path | None = None,
    ) -> Path:
        """Stream-copy ``files`` in order into ``output_path``.

        The manifest defaults to ``concat_list.txt`` beside the output.
        """
        if not files:
            raise ValidationError("No segments to concatenate", code="NO_SEGMENTS")
        output = Path(output_path)
        manifest = Path(manifest_path) if manifest_path else output.parent / "concat_list.txt"
        self.write_concat_manifest(files, manifest)
        logger.info(f"[FFMPEG] Concatenating {len(files)} file(s) via {manifest}")
        await self.engine.run(
            self.build_concat_args(manifest),
            timeout=settings.concat_timeout_s,
            output_path=output,
            operation="concat",
        )
        return output

    # ------------------------------------------------------------------
    # Blank video
    # ------------------------------------------------------------------

    def build_blank_video_args(
        self,
        duration_s: float,
        width: int | None = None,
        height: int | None = None,
        fps: int | None = None,
        color: str | None = None,
    ) -> list[str]:
        width = width or settings.blank_video_width
        height = height or settings.blank_video_height
        fps = fps or settings.blank_video_fps
        color = color or settings.blank_video_color
        duration = _fmt_seconds(duration_s)
        return [
            "-y",
            "-f", "lavfi",
            "-i", f"color=c={color}:s={width}x{height}:r={fps}:d={duration}",
            "-f", "lavfi",
            "-i", f"anullsrc=channel_layout=stereo:sample_rate=44100:d={duration}",
            "-map", "0:v:0",
            "-map", "1:a:0",
            "-c:v", "libx264",
            "-preset", "veryfast",
            "-pix_fmt", "yuv420p",
            "-c:a", "aac",
            "-shortest",
        ]

    async def synthesize_blank_video(
        self,
        output_path: str | Path,
        duration_s: float | None = None,
        width: int | None = None,
        height: int | None = None,
    ) -> Path:
        """Create a solid-color video with a silent audio track."""
        duration_s = duration_s if duration_s is not None else settings.blank_video_duration_s
        await self.engine.run(
            self.build_blank_video_args(duration_s, width, height),
            timeout=settings.blank_video_timeout_s,
            output_path=output_path,
            operation="blank_video",
        )
        return Path(output_path)

    # ------------------------------------------------------------------
    # Audio conversion
    # ------------------------------------------------------------------

    def build_convert_audio_args(self, output_format: str) -> list[str]:
        muxer = AUDIO_MUXERS.get(output_format.lower())
        if muxer is None:
            raise ValidationError(
                f"Unsupported output format: {output_format}. "
                f"Supported: {', '.join(AUDIO_MUXERS)}",
                code="UNSUPPORTED_FORMAT",
            )
        return ["-hide_banner", "-loglevel", "error", "-i", "pipe:0", "-vn", "-f", muxer, "pipe:1"]

    async def convert_audio(self, payload: bytes, output_format: str) -> bytes:
        """Transcode audio bytes in memory, returning the converted bytes."""
        if not payload:
            raise ValidationError("Audio payload is empty")
        args = self.build_convert_audio_args(output_format)
        result = await self.engine.run(
            args,
            timeout=settings.convert_timeout_s,
            input_data=payload,
            operation="convert_audio",
        )
        logger.info(
            f"[FFMPEG] Converted {len(payload)} bytes of audio to {output_format} "
            f"({len(result.stdout)} bytes)"
        )
        return result.stdout

