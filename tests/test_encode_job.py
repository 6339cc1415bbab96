"""Unit tests for encode job orchestration against a fake engine."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
import logging
import threading
from typing import Callable, Iterator, Sequence

import pytest

from photo_movie.domain.photo_movie import (
    CompositedFrame,
    EncodeError,
    EncodeRequest,
    JobState,
)
from photo_movie.encode_job import EncodeJob, ProgressReporter, encode_video

VIDEO_BYTES = b"\x00\x00\x00\x18ftypmp42"


@dataclass
class FakeEngine:
    """In-memory engine recording staged files and exec calls."""

    files: dict[str, bytes] = field(default_factory=dict)
    exec_calls: list[tuple[str, ...]] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    listeners: list[Callable[[str], None]] = field(default_factory=list)
    log_lines: tuple[str, ...] = ()
    exec_error: Exception | None = None
    output: bytes | str = VIDEO_BYTES
    undeletable: frozenset[str] = frozenset()
    unwritable: frozenset[str] = frozenset()
    job_lock: threading.Lock = field(default_factory=threading.Lock)
    ffmpeg_path: str = "ffmpeg"

    def write_file(self, name: str, data: bytes) -> None:
        if name in self.unwritable:
            raise OSError(f"cannot write {name}")
        self.files[name] = data

    def read_file(self, name: str, encoding: str | None = None) -> bytes | str:
        if name not in self.files:
            raise FileNotFoundError(name)
        return self.files[name]

    def delete_file(self, name: str) -> None:
        self.deleted.append(name)
        if name in self.undeletable:
            raise OSError(f"cannot delete {name}")
        if name not in self.files:
            raise FileNotFoundError(name)
        del self.files[name]

    @contextmanager
    def listening(self, listener: Callable[[str], None]) -> Iterator[None]:
        self.listeners.append(listener)
        try:
            yield
        finally:
            self.listeners.remove(listener)

    def exec(self, args: Sequence[str], timeout_seconds: float | None = None) -> None:
        self.exec_calls.append(tuple(args))
        for line in self.log_lines:
            for listener in list(self.listeners):
                listener(line)
        if self.exec_error is not None:
            raise self.exec_error
        self.files[args[-1]] = self.output


def build_request(audio: bytes | None = None) -> EncodeRequest:
    return EncodeRequest(
        frame=CompositedFrame(data=b"frame-png"), audio=audio, duration_seconds=8
    )


def test_encode_without_audio_returns_video_and_cleans_up() -> None:
    engine = FakeEngine()
    job = EncodeJob()

    video_bytes = encode_video(engine, build_request(), job=job)

    assert video_bytes == VIDEO_BYTES
    assert len(engine.exec_calls) == 1
    assert "audio.mp3" not in engine.exec_calls[0]
    assert engine.files == {}
    assert engine.deleted == ["frame.png", "output.mp4"]
    assert job.history == [
        JobState.IDLE,
        JobState.PREPARING,
        JobState.ENCODING,
        JobState.COMPLETED,
        JobState.IDLE,
    ]


def test_encode_with_audio_stages_and_deletes_audio() -> None:
    engine = FakeEngine()

    encode_video(engine, build_request(audio=b"mp3-bytes"), job=EncodeJob())

    assert "audio.mp3" in engine.exec_calls[0]
    assert engine.deleted == ["frame.png", "output.mp4", "audio.mp3"]
    assert engine.files == {}


@pytest.mark.parametrize("audio", [None, b"mp3-bytes"])
def test_exec_failure_still_cleans_up(audio: bytes | None) -> None:
    engine = FakeEngine(
        exec_error=EncodeError("photo_movie.ffmpeg.process_failed", "exit 1")
    )
    job = EncodeJob()

    with pytest.raises(EncodeError) as exc_info:
        encode_video(engine, build_request(audio=audio), job=job)

    assert exc_info.value.code == "photo_movie.encode.failed"
    assert engine.files == {}
    assert "frame.png" in engine.deleted
    assert ("audio.mp3" in engine.deleted) == (audio is not None)
    assert job.history[-2:] == [JobState.FAILED, JobState.IDLE]
    assert engine.listeners == []


def test_text_output_is_rejected() -> None:
    engine = FakeEngine(output="not video")

    with pytest.raises(EncodeError) as exc_info:
        encode_video(engine, build_request())

    assert isinstance(exc_info.value.__cause__, EncodeError)
    assert exc_info.value.__cause__.code == "photo_movie.encode.invalid_output"
    assert engine.files == {}


def test_progress_lines_are_filtered() -> None:
    engine = FakeEngine(
        log_lines=(
            "Input #0, png_pipe, from 'frame.png':",
            "frame=   30 fps=0.0 q=28.0 size=0kB time=00:00:01.00",
            "  frame=  240 fps=90 q=-1.0 Lsize=120kB time=00:00:08.00  ",
            "video:118kB audio:0kB",
        )
    )
    progress: list[str] = []

    encode_video(engine, build_request(), on_progress=progress.append)

    assert progress == [
        "frame=   30 fps=0.0 q=28.0 size=0kB time=00:00:01.00",
        "frame=  240 fps=90 q=-1.0 Lsize=120kB time=00:00:08.00",
    ]
    assert engine.listeners == []


def test_progress_reporter_without_handler_is_silent() -> None:
    ProgressReporter(None)("frame=1")


def test_cleanup_failure_does_not_change_outcome(
    caplog: pytest.LogCaptureFixture,
) -> None:
    engine = FakeEngine(undeletable=frozenset({"frame.png"}))

    with caplog.at_level(logging.WARNING, logger="photo_movie.encode_job"):
        video_bytes = encode_video(engine, build_request())

    assert video_bytes == VIDEO_BYTES
    assert engine.deleted == ["frame.png", "output.mp4"]
    assert "photo_movie.cleanup.delete_failed" in caplog.text


def test_invalid_transition_is_rejected() -> None:
    job = EncodeJob()

    with pytest.raises(EncodeError):
        job.transition(JobState.COMPLETED)


def test_unstaged_audio_is_not_deleted() -> None:
    engine = FakeEngine(unwritable=frozenset({"audio.mp3"}))
    job = EncodeJob()

    with pytest.raises(EncodeError):
        encode_video(engine, build_request(audio=b"mp3-bytes"), job=job)

    assert job.staged == ["frame.png"]
    assert engine.deleted == ["frame.png", "output.mp4"]
    assert engine.exec_calls == []
    assert engine.files == {}


def test_missing_output_is_not_a_cleanup_warning(
    caplog: pytest.LogCaptureFixture,
) -> None:
    engine = FakeEngine(
        exec_error=EncodeError("photo_movie.ffmpeg.process_failed", "exit 1")
    )

    with caplog.at_level(logging.DEBUG, logger="photo_movie.encode_job"):
        with pytest.raises(EncodeError):
            encode_video(engine, build_request())

    assert "output.mp4" in engine.deleted
    warnings = [record for record in caplog.records if record.levelno == logging.WARNING]
    assert not [
        record
        for record in warnings
        if "photo_movie.cleanup.delete_failed" in record.getMessage()
    ]
    assert "photo_movie.cleanup.absent: output.mp4" in caplog.text
