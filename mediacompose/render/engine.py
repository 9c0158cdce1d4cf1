"""
FFmpeg process runner.

Every invocation is an asyncio subprocess bounded by a wall-clock deadline:

- on timeout the process is killed and reaped before TranscodeTimeoutError
  is raised, so nothing keeps running in the background
- a non-zero exit raises TranscodeError carrying the engine's stderr
- file outputs are written to a ``.partial`` sibling and renamed into place
  only after a clean exit; failed runs leave no file behind
- ``-progress pipe:1`` lines are forwarded to an optional callback
"""

import asyncio
import logging
import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from mediacompose.config import get_settings
from mediacompose.exceptions import TranscodeError, TranscodeTimeoutError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[dict[str, str]], None]


@dataclass
class EngineResult:
    """Outcome of a successful engine run."""

    returncode: int
    stdout: bytes
    stderr: str
    output_path: Path | None = None


def partial_path_for(output_path: Path) -> Path:
    """Sibling path used while an output is being written.

    The real suffix is kept last so ffmpeg still infers the container.
    """
    return output_path.with_name(f"{output_path.stem}.partial{output_path.suffix}")


class FFmpegEngine:
    """Runs the external transcoder as a cancellable unit of work."""

    def __init__(self, binary: str | None = None):
        self.binary = binary or get_settings().ffmpeg_path

    async def run(
        self,
        args: Sequence[str],
        *,
        timeout: float,
        output_path: str | Path | None = None,
        input_data: bytes | None = None,
        on_progress: ProgressCallback | None = None,
        operation: str = "ffmpeg",
    ) -> EngineResult:
        """Run the engine with ``args``.

        Args:
            args: Arguments after the binary, without the output destination
            timeout: Wall-clock deadline in seconds
            output_path: File destination, appended as the last argument
            input_data: Bytes fed to stdin (for ``-i pipe:0`` invocations)
            on_progress: Called with each parsed ``-progress`` block
            operation: Label used in logs and errors

        Returns:
            EngineResult; stdout is only collected when no progress callback
            is attached

        Raises:
            TranscodeTimeoutError: Deadline elapsed; the process was killed
            TranscodeError: Engine could not start or exited non-zero
        """
        final_path = Path(output_path) if output_path is not None else None
        partial_path = partial_path_for(final_path) if final_path is not None else None

        cmd = [self.binary, *args]
        if on_progress is not None:
            cmd.extend(["-progress", "pipe:1", "-nostats"])
        if partial_path is not None:
            cmd.append(str(partial_path))

        logger.info(f"[FFMPEG] {operation}: starting ({len(cmd)} args)")
        logger.debug(f"[FFMPEG] {operation} command: {' '.join(cmd)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if input_data is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TranscodeError(f"{operation} could not start", diagnostic=str(e)) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                self._communicate(proc, input_data, on_progress),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            await self._terminate(proc, operation)
            _discard(partial_path)
            logger.error(f"[FFMPEG] {operation}: timed out after {timeout:g}s, process killed")
            raise TranscodeTimeoutError(timeout, operation=operation)
        except asyncio.CancelledError:
            await self._terminate(proc, operation)
            _discard(partial_path)
            raise

        stderr_text = stderr.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            _discard(partial_path)
            logger.error(f"[FFMPEG] {operation}: exited with {proc.returncode}: {stderr_text.strip()[-2000:]}")
            raise TranscodeError(
                f"{operation} failed",
                diagnostic=stderr_text.strip(),
                returncode=proc.returncode,
            )

        if partial_path is not None and final_path is not None:
            if not partial_path.exists():
                raise TranscodeError(f"{operation} produced no output", returncode=proc.returncode)
            os.replace(partial_path, final_path)
            logger.info(f"[FFMPEG] {operation}: output ready at {final_path}")
        else:
            logger.info(f"[FFMPEG] {operation}: finished")

        return EngineResult(
            returncode=proc.returncode,
            stdout=stdout,
            stderr=stderr_text,
            output_path=final_path,
        )

    async def _communicate(
        self,
        proc: asyncio.subprocess.Process,
        input_data: bytes | None,
        on_progress: ProgressCallback | None,
    ) -> tuple[bytes, bytes]:
        if on_progress is None:
            return await proc.communicate(input_data)

        # stderr is read alongside the progress stream
        stderr_task = asyncio.create_task(proc.stderr.read())
        try:
            if input_data is not None:
                proc.stdin.write(input_data)
                await proc.stdin.drain()
                proc.stdin.close()
            await _read_progress(proc.stdout, on_progress)
            stderr = await stderr_task
        finally:
            if not stderr_task.done():
                stderr_task.cancel()
        await proc.wait()
        return b"", stderr

    async def _terminate(self, proc: asyncio.subprocess.Process, operation: str) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=5)
        except asyncio.TimeoutError:
            logger.warning(f"[FFMPEG] {operation}: process {proc.pid} did not exit after kill")


async def _read_progress(stream: asyncio.StreamReader, on_progress: ProgressCallback) -> None:
    """Group ``key=value`` lines into blocks ending at ``progress=...``."""
    block: dict[str, str] = {}
    async for raw_line in stream:
        line = raw_line.decode("utf-8", errors="replace").strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        block[key] = value
        if key == "progress":
            try:
                on_progress(block)
            except Exception as e:  # noqa: BLE001
                logger.warning(f"[FFMPEG] Progress callback failed: {e}")
            block = {}


def _discard(path: Path | None) -> None:
    if path is None:
        return
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"[FFMPEG] Could not remove partial output {path}: {e}")
