"""Encode one composited frame (plus optional audio) into an MP4."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Callable, Sequence, Tuple

from photo_movie.domain.photo_movie import (
    CLEANUP_WARNING_CODE,
    ENCODE_JOB_CODE,
    ENCODE_OUTPUT_CODE,
    EncodeError,
    EncodeRequest,
    JobState,
)
from photo_movie.encoder_engine import FfmpegEngine
from photo_movie.service.encode_plan import (
    AUDIO_ARTIFACT,
    FRAME_ARTIFACT,
    OUTPUT_ARTIFACT,
    build_encoder_args,
)

LOGGER = logging.getLogger("photo_movie.encode_job")

PROGRESS_MARKER = "frame="

ProgressHandler = Callable[[str], None]

JOB_TRANSITIONS = {
    JobState.IDLE: {JobState.PREPARING},
    JobState.PREPARING: {JobState.ENCODING, JobState.FAILED},
    JobState.ENCODING: {JobState.COMPLETED, JobState.FAILED},
    JobState.COMPLETED: {JobState.IDLE},
    JobState.FAILED: {JobState.IDLE},
}


@dataclass
class ProgressReporter:
    """Forward encoder frame-progress lines to a caller handler."""

    handler: ProgressHandler | None

    def __call__(self, line: str) -> None:
        if self.handler is None:
            return
        stripped = line.strip()
        if stripped.startswith(PROGRESS_MARKER):
            self.handler(stripped)


@dataclass
class EncodeJob:
    """Transient state of one encode, owning its staged artifacts."""

    state: JobState = JobState.IDLE
    staged: list[str] = field(default_factory=list)
    history: list[JobState] = field(default_factory=lambda: [JobState.IDLE])

    def transition(self, next_state: JobState) -> None:
        if next_state not in JOB_TRANSITIONS[self.state]:
            raise EncodeError(
                ENCODE_JOB_CODE,
                f"invalid job transition {self.state.value} -> {next_state.value}",
            )
        LOGGER.debug(
            "photo_movie.encode.state %s -> %s", self.state.value, next_state.value
        )
        self.state = next_state
        self.history.append(next_state)


def cleanup_artifacts(engine: FfmpegEngine, names: Sequence[str]) -> Tuple[str, ...]:
    """Attempt to delete each artifact once; return the names that failed.

    An artifact that was never produced is not a failure.
    """
    failed: list[str] = []
    for name in names:
        try:
            engine.delete_file(name)
        except FileNotFoundError:
            LOGGER.debug("photo_movie.cleanup.absent: %s", name)
        except Exception as exc:
            LOGGER.warning(
                "%s: %s (%s)", CLEANUP_WARNING_CODE, name, str(exc).strip()
            )
            failed.append(name)
    return tuple(failed)


def cleanup_targets(job: EncodeJob) -> Tuple[str, ...]:
    """List the artifacts a job must try to delete, in deletion order."""
    if AUDIO_ARTIFACT in job.staged:
        return (FRAME_ARTIFACT, OUTPUT_ARTIFACT, AUDIO_ARTIFACT)
    return (FRAME_ARTIFACT, OUTPUT_ARTIFACT)


def encode_video(
    engine: FfmpegEngine,
    request: EncodeRequest,
    on_progress: ProgressHandler | None = None,
    timeout_seconds: float | None = None,
    job: EncodeJob | None = None,
) -> bytes:
    """Stage inputs, run the encoder, and return the MP4 bytes.

    Jobs against one engine are serialized on its job lock. Cleanup runs on
    every exit path, including interrupts; only ordinary exceptions are
    converted into a job-level EncodeError.
    """
    job = job if job is not None else EncodeJob()
    with engine.job_lock:
        try:
            job.transition(JobState.PREPARING)
            engine.write_file(FRAME_ARTIFACT, request.frame.data)
            job.staged.append(FRAME_ARTIFACT)
            if request.audio is not None:
                engine.write_file(AUDIO_ARTIFACT, request.audio)
                job.staged.append(AUDIO_ARTIFACT)

            job.transition(JobState.ENCODING)
            args = build_encoder_args(request)
            with engine.listening(ProgressReporter(on_progress)):
                engine.exec(args, timeout_seconds=timeout_seconds)

            payload = engine.read_file(OUTPUT_ARTIFACT)
            if isinstance(payload, str):
                raise EncodeError(
                    ENCODE_OUTPUT_CODE, "encoder returned text instead of video bytes"
                )
            video_bytes = bytes(payload)
            job.transition(JobState.COMPLETED)
            LOGGER.info(
                "photo_movie.encode.completed bytes=%d duration=%d audio=%s",
                len(video_bytes),
                request.duration_seconds,
                request.has_audio,
            )
            return video_bytes
        except Exception as exc:
            job.transition(JobState.FAILED)
            code = getattr(exc, "code", "photo_movie.encode.unhandled_error")
            LOGGER.error("%s: %s", code, str(exc).strip())
            raise EncodeError(
                ENCODE_JOB_CODE, "video generation failed; please try again"
            ) from exc
        finally:
            cleanup_artifacts(engine, cleanup_targets(job))
            if job.state in (JobState.PREPARING, JobState.ENCODING):
                # Interrupted before an outcome was recorded.
                job.transition(JobState.FAILED)
            if job.state in (JobState.COMPLETED, JobState.FAILED):
                job.transition(JobState.IDLE)
