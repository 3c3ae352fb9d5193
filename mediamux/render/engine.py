"""
FFmpeg transcoding engine handle.

The engine is the only place that spawns ffmpeg/ffprobe. Callers describe
*what* to run as a ``TranscodeCommand`` and await a single completion value:
the output path on success, or an ``EngineError`` carrying the exit code and
stderr tail. Progress is reported through an optional observer and is purely
informational.
"""

import asyncio
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from mediamux.exceptions import EngineError
from mediamux.utils.media_info import MediaInfo, parse_probe_output, probe_args

logger = logging.getLogger(__name__)

ProgressObserver = Callable[[float], None]

_TIME_RE = re.compile(r"time=(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")

# Lines of stderr kept for error reporting
_STDERR_TAIL_LINES = 40


@dataclass
class TranscodeCommand:
    """One ffmpeg invocation: inputs, optional filter graph, output options."""

    inputs: list[str]
    output_path: str
    output_args: list[str] = field(default_factory=list)
    filter_complex: str | None = None
    input_args: list[str] = field(default_factory=list)


def parse_progress_time(line: str) -> float | None:
    """Extract the ``time=HH:MM:SS.xx`` position (seconds) from an ffmpeg status line."""
    match = _TIME_RE.search(line)
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


class TranscodingEngine:
    """Explicit handle on the ffmpeg/ffprobe binaries plus a small process pool."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        max_processes: int = 2,
        threads: int = 0,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.threads = threads
        self._slots = asyncio.Semaphore(max(1, max_processes))

    def build_argv(self, command: TranscodeCommand) -> list[str]:
        """Build the full ffmpeg argv for ``command``."""
        argv = [self.ffmpeg_path, "-hide_banner", "-y"]
        for input_path in command.inputs:
            argv.extend([*command.input_args, "-i", str(input_path)])
        if command.filter_complex:
            argv.extend(["-filter_complex", command.filter_complex])
        argv.extend(command.output_args)
        if self.threads > 0:
            argv.extend(["-threads", str(self.threads)])
        argv.append(str(command.output_path))
        return argv

    async def run(
        self,
        command: TranscodeCommand,
        progress: Optional[ProgressObserver] = None,
    ) -> Path:
        """
        Execute ``command`` and wait for it to finish.

        Args:
            command: The invocation to run
            progress: Optional callback receiving the encoded position in seconds

        Returns:
            Path to the output file

        Raises:
            EngineError: If ffmpeg cannot be started or exits non-zero
        """
        argv = self.build_argv(command)
        async with self._slots:
            logger.debug(f"FFmpeg started: {' '.join(argv)}")
            try:
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as e:
                raise EngineError(-1, f"Failed to start ffmpeg: {e}") from e

            tail: deque[str] = deque(maxlen=_STDERR_TAIL_LINES)
            try:
                await self._read_stderr(process, tail, progress)
                returncode = await process.wait()
            finally:
                if process.returncode is None:
                    # Cancelled or failed mid-run
                    logger.warning(f"Killing unfinished ffmpeg (pid {process.pid})")
                    try:
                        process.kill()
                    except ProcessLookupError:
                        pass
                    await process.wait()

        if returncode != 0:
            stderr = "\n".join(tail)
            logger.warning(f"FFmpeg failed ({returncode}): {stderr[-500:]}")
            raise EngineError(returncode, stderr)

        logger.debug(f"FFmpeg completed: {command.output_path}")
        return Path(command.output_path)

    async def _read_stderr(
        self,
        process: asyncio.subprocess.Process,
        tail: deque[str],
        progress: Optional[ProgressObserver],
    ) -> None:
        if process.stderr is None:
            return
        # ffmpeg rewrites its status line with \r, so split on both
        buffer = b""
        while True:
            chunk = await process.stderr.read(4096)
            if not chunk:
                break
            buffer += chunk
            *lines, buffer = re.split(rb"[\r\n]", buffer)
            for raw in lines:
                self._handle_line(raw, tail, progress)
        if buffer:
            self._handle_line(buffer, tail, progress)

    def _handle_line(
        self,
        raw: bytes,
        tail: deque[str],
        progress: Optional[ProgressObserver],
    ) -> None:
        line = raw.decode(errors="replace").strip()
        if not line:
            return
        tail.append(line)
        if progress is not None:
            position = parse_progress_time(line)
            if position is not None:
                try:
                    progress(position)
                except Exception:
                    logger.exception("Progress observer raised; ignoring")

    async def probe(self, file_path: str | Path) -> MediaInfo:
        """
        Probe a media file with ffprobe.

        Raises:
            EngineError: If ffprobe fails or its output cannot be parsed
        """
        argv = [self.ffprobe_path, *probe_args(str(file_path))]
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EngineError(-1, f"Failed to start ffprobe: {e}") from e
        stdout, stderr = await process.communicate()

        if process.returncode != 0:
            raise EngineError(process.returncode or -1, stderr.decode(errors="replace"))

        try:
            return parse_probe_output(stdout.decode(errors="replace"))
        except ValueError as e:
            raise EngineError(0, str(e)) from e
