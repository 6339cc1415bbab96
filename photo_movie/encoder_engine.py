"""Local ffmpeg encoder engine with a private artifact directory."""

from __future__ import annotations

import codecs
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
import logging
from pathlib import Path
import re
import shlex
import shutil
import subprocess
import tempfile
import threading
from typing import Callable, Iterator, Sequence, Tuple

from photo_movie.domain.photo_movie import (
    ENGINE_NAME_CODE,
    FFMPEG_PROCESS_CODE,
    FFMPEG_TIMEOUT_CODE,
    EncodeError,
    EngineLoadError,
)

LOGGER = logging.getLogger("photo_movie.encoder_engine")

LogListener = Callable[[str], None]

EXEC_PREFIX = ("-hide_banner", "-nostdin", "-y")
REQUIRED_ENCODERS = ("libx264", "aac")
REQUIRED_FILTERS = ("zoompan",)
REQUIRED_PIXEL_FORMATS = ("yuv420p",)
STDERR_TAIL_LINES = 12
STDERR_READ_BYTES = 4096
LOG_LINE_PATTERN = re.compile(r"[\r\n]")


def split_log_lines(buffer: str) -> Tuple[list[str], str]:
    """Split buffered stderr into complete lines and an unfinished remainder."""
    parts = LOG_LINE_PATTERN.split(buffer)
    remainder = parts.pop()
    return [part for part in parts if part.strip()], remainder


@dataclass
class FfmpegEngine:
    """ffmpeg runner whose staged artifacts live in one private directory."""

    ffmpeg_path: str
    work_dir: Path
    job_lock: threading.Lock = field(default_factory=threading.Lock)
    listeners: list[LogListener] = field(default_factory=list)
    listeners_lock: threading.Lock = field(default_factory=threading.Lock)

    def artifact_path(self, name: str) -> Path:
        """Resolve an artifact name inside the work directory."""
        if not name or name in {".", ".."} or "/" in name or "\\" in name:
            raise EncodeError(ENGINE_NAME_CODE, f"invalid artifact name: {name!r}")
        return self.work_dir / name

    def write_file(self, name: str, data: bytes) -> None:
        """Stage bytes under an artifact name."""
        self.artifact_path(name).write_bytes(data)

    def read_file(self, name: str, encoding: str | None = None) -> bytes | str:
        """Read an artifact as bytes, or as text when an encoding is given."""
        path = self.artifact_path(name)
        if encoding is not None:
            return path.read_text(encoding=encoding)
        return path.read_bytes()

    def delete_file(self, name: str) -> None:
        """Delete an artifact; a missing artifact raises FileNotFoundError."""
        self.artifact_path(name).unlink()

    def on(self, listener: LogListener) -> None:
        """Register a log line listener."""
        with self.listeners_lock:
            self.listeners.append(listener)

    def off(self, listener: LogListener) -> None:
        """Remove a previously registered log line listener."""
        with self.listeners_lock:
            if listener in self.listeners:
                self.listeners.remove(listener)

    @contextmanager
    def listening(self, listener: LogListener) -> Iterator[None]:
        """Keep a listener registered for the duration of the block."""
        self.on(listener)
        try:
            yield
        finally:
            self.off(listener)

    def emit_log(self, line: str) -> None:
        with self.listeners_lock:
            listeners = list(self.listeners)
        for listener in listeners:
            listener(line)

    def exec(self, args: Sequence[str], timeout_seconds: float | None = None) -> None:
        """Run ffmpeg in the work directory, streaming stderr to listeners."""
        command = [self.ffmpeg_path, *EXEC_PREFIX, *args]
        LOGGER.debug("photo_movie.ffmpeg.exec %s", shlex.join(command))
        try:
            process = subprocess.Popen(
                command,
                cwd=self.work_dir,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            raise EncodeError(
                FFMPEG_PROCESS_CODE, f"ffmpeg execution failed: {exc}"
            ) from exc

        timed_out = threading.Event()
        timer = None
        if timeout_seconds:

            def expire() -> None:
                timed_out.set()
                process.kill()

            timer = threading.Timer(timeout_seconds, expire)
            timer.daemon = True
            timer.start()

        stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            assert process.stderr is not None
            pending = ""
            while True:
                chunk = process.stderr.read1(STDERR_READ_BYTES)
                if not chunk:
                    break
                pending += decoder.decode(chunk)
                lines, pending = split_log_lines(pending)
                for line in lines:
                    stderr_tail.append(line)
                    self.emit_log(line)
            pending += decoder.decode(b"", final=True)
            if pending.strip():
                stderr_tail.append(pending)
                self.emit_log(pending)
            return_code = process.wait()
        finally:
            if timer is not None:
                timer.cancel()
            if process.poll() is None:
                process.kill()
                process.wait()
            if process.stderr is not None:
                process.stderr.close()

        if timed_out.is_set():
            raise EncodeError(
                FFMPEG_TIMEOUT_CODE,
                f"ffmpeg exceeded {timeout_seconds} seconds and was stopped",
            )
        if return_code != 0:
            stderr_text = " | ".join(stderr_tail)
            raise EncodeError(
                FFMPEG_PROCESS_CODE,
                f"ffmpeg failed with exit code {return_code}. {stderr_text}",
            )

    def close(self) -> None:
        """Remove the work directory and everything still staged in it."""
        shutil.rmtree(self.work_dir, ignore_errors=True)


def run_ffmpeg_query(ffmpeg_path: str, *args: str) -> str:
    """Run an informational ffmpeg command and return its stdout."""
    try:
        result = subprocess.run(
            [ffmpeg_path, *args],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        raise EngineLoadError(
            f"ffmpeg query {' '.join(args)} failed: {exc}"
        ) from exc
    return result.stdout


def listing_contains(listing: str, name: str) -> bool:
    """Return True when a name appears as a whole token in ffmpeg output."""
    return re.search(rf"(?<!\S){re.escape(name)}(?!\S)", listing) is not None


def validate_ffmpeg_capabilities(ffmpeg_path: str) -> None:
    """Validate ffmpeg encoders, filters, and pixel formats for output."""
    version_output = run_ffmpeg_query(ffmpeg_path, "-version")
    if "ffmpeg version" not in version_output.lower():
        raise EngineLoadError("ffmpeg version output is unexpected")

    encoders = run_ffmpeg_query(ffmpeg_path, "-hide_banner", "-encoders")
    for encoder_name in REQUIRED_ENCODERS:
        if not listing_contains(encoders, encoder_name):
            raise EngineLoadError(f"ffmpeg does not support {encoder_name} encoder")

    filters = run_ffmpeg_query(ffmpeg_path, "-hide_banner", "-filters")
    for filter_name in REQUIRED_FILTERS:
        if not listing_contains(filters, filter_name):
            raise EngineLoadError(f"ffmpeg does not support {filter_name} filter")

    pixel_formats = run_ffmpeg_query(ffmpeg_path, "-hide_banner", "-pix_fmts")
    for pixel_format in REQUIRED_PIXEL_FORMATS:
        if not listing_contains(pixel_formats, pixel_format):
            raise EngineLoadError(
                f"ffmpeg does not support {pixel_format} pixel format"
            )


def load_ffmpeg_engine(
    ffmpeg_path: str = "ffmpeg", work_dir: Path | None = None
) -> FfmpegEngine:
    """Resolve and validate ffmpeg, then create a private work directory."""
    resolved_path = shutil.which(ffmpeg_path)
    if not resolved_path:
        raise EngineLoadError(f"ffmpeg not found: {ffmpeg_path}")
    validate_ffmpeg_capabilities(resolved_path)
    try:
        if work_dir is not None:
            work_dir.mkdir(parents=True, exist_ok=True)
        engine_dir = Path(tempfile.mkdtemp(prefix="photo_movie_", dir=work_dir))
    except OSError as exc:
        raise EngineLoadError(f"engine work directory unavailable: {exc}") from exc
    return FfmpegEngine(ffmpeg_path=resolved_path, work_dir=engine_dir)


@dataclass
class EngineLoader:
    """Process-wide, initialize-once holder for the encoder engine."""

    factory: Callable[[], FfmpegEngine]
    engine: FfmpegEngine | None = None
    lock: threading.Lock = field(default_factory=threading.Lock)

    def ensure_engine(self) -> FfmpegEngine:
        """Return the engine, initializing it on first use.

        Concurrent callers block on the same lock and share the single
        initialization. A failed initialization is not cached, so the next
        call retries.
        """
        with self.lock:
            if self.engine is not None:
                return self.engine
            try:
                engine = self.factory()
            except EngineLoadError:
                raise
            except Exception as exc:
                raise EngineLoadError(f"encoder engine failed to load: {exc}") from exc
            self.engine = engine
            LOGGER.info(
                "photo_movie.engine.loaded path=%s work_dir=%s",
                engine.ffmpeg_path,
                engine.work_dir,
            )
            return engine

    def close(self) -> None:
        """Release the engine and its work directory, if loaded."""
        with self.lock:
            if self.engine is None:
                return
            self.engine.close()
            self.engine = None
