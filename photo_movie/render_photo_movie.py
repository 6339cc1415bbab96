"""Turn one photo, optional audio, and a caption into a Ken Burns MP4."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
import functools
import logging
import mimetypes
import os
from pathlib import Path
import sys
from typing import Callable, Sequence

from photo_movie.domain.photo_movie import (
    DEFAULT_ACCENT_COLOR,
    DEFAULT_DURATION_SECONDS,
    DEFAULT_OUTPUT_FILENAME,
    INPUT_FILE_CODE,
    INVALID_CONFIG_CODE,
    OUTPUT_WRITE_CODE,
    EncodeRequest,
    GenerationStage,
    InputMissingError,
    MediaInput,
    MoviePipelineError,
    MovieValidationError,
    OverlaySpec,
    parse_hex_color_to_rgba,
    validate_duration_seconds,
)
from photo_movie.encode_job import ProgressHandler, encode_video
from photo_movie.encoder_engine import EngineLoader, load_ffmpeg_engine
from photo_movie.frame_compositor import compose_frame
from photo_movie.image_source import decode_with_ffmpeg, load_image_source

LOGGER = logging.getLogger("photo_movie")

FFMPEG_PATH_ENV = "PHOTO_MOVIE_FFMPEG_PATH"
FONT_FILE_ENV = "PHOTO_MOVIE_FONT_FILE"
WORK_DIR_ENV = "PHOTO_MOVIE_WORK_DIR"
ENCODE_TIMEOUT_ENV = "PHOTO_MOVIE_ENCODE_TIMEOUT_SECONDS"
LOG_LEVEL_ENV = "PHOTO_MOVIE_LOG_LEVEL"

DEFAULT_FFMPEG_PATH = "ffmpeg"
DEFAULT_LOG_LEVEL = "INFO"
LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

StageHandler = Callable[[GenerationStage], None]


@dataclass(frozen=True)
class MovieConfig:
    """Validated configuration for one CLI run."""

    image_path: str | None
    audio_path: str | None
    caption: str
    accent_color: str
    duration_seconds: int
    output_video_file: str
    font_path: str | None
    ffmpeg_path: str
    work_dir: Path | None
    encode_timeout_seconds: float
    log_level: str

    def __post_init__(self) -> None:
        if self.image_path is not None and not self.image_path.strip():
            raise MovieValidationError(
                INVALID_CONFIG_CODE, "image path must be non-empty"
            )
        if self.audio_path is not None and not self.audio_path.strip():
            raise MovieValidationError(
                INVALID_CONFIG_CODE, "audio path must be non-empty"
            )
        parse_hex_color_to_rgba(self.accent_color)
        validate_duration_seconds(self.duration_seconds)
        if not self.output_video_file.lower().endswith(".mp4"):
            raise MovieValidationError(
                INVALID_CONFIG_CODE, "output_video_file must end with .mp4"
            )
        if self.font_path is not None and not self.font_path.strip():
            raise MovieValidationError(
                INVALID_CONFIG_CODE, "font path must be non-empty"
            )
        if not self.ffmpeg_path.strip():
            raise MovieValidationError(
                INVALID_CONFIG_CODE, "ffmpeg path must be non-empty"
            )
        if self.encode_timeout_seconds < 0:
            raise MovieValidationError(
                INVALID_CONFIG_CODE, "encode timeout must be non-negative"
            )
        if self.log_level not in LOG_LEVELS:
            raise MovieValidationError(
                INVALID_CONFIG_CODE, f"unknown log level: {self.log_level!r}"
            )


def configure_logging(level_name: str) -> None:
    """Configure logging for CLI output."""
    level = LOG_LEVELS.get(level_name.strip().upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def parse_non_negative_float(raw_value: str, label: str) -> float:
    """Parse a non-negative float from a string."""
    try:
        value = float(raw_value)
    except ValueError as exc:
        raise MovieValidationError(
            INVALID_CONFIG_CODE, f"{label} must be a number"
        ) from exc
    if value < 0:
        raise MovieValidationError(
            INVALID_CONFIG_CODE, f"{label} must be non-negative"
        )
    return value


def read_utf8_text_strict(file_path: str) -> str:
    """Read a UTF-8 file with strict decoding."""
    try:
        with open(file_path, "rb") as file_handle:
            file_bytes = file_handle.read()
    except FileNotFoundError as exc:
        raise MovieValidationError(
            INPUT_FILE_CODE, f"text file not found: {file_path}"
        ) from exc

    try:
        return file_bytes.decode("utf-8", errors="strict")
    except UnicodeDecodeError as exc:
        raise MovieValidationError(
            INPUT_FILE_CODE,
            f"text file is not valid UTF-8 at byte offset {exc.start}",
        ) from exc


def read_media_input(file_path: str, kind: str) -> MediaInput:
    """Read a media file and declare its MIME type from the file name."""
    try:
        payload = Path(file_path).read_bytes()
    except OSError as exc:
        raise MovieValidationError(
            INPUT_FILE_CODE, f"{kind} file could not be read: {file_path}"
        ) from exc
    mime_type, _ = mimetypes.guess_type(file_path)
    media = MediaInput(
        data=payload, mime_type=mime_type, filename=os.path.basename(file_path)
    )
    media.require_kind(kind)
    return media


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(prog="render_photo_movie.py", add_help=True)
    parser.add_argument("--image", default=None)
    parser.add_argument("--audio", default=None)
    text_group = parser.add_mutually_exclusive_group()
    text_group.add_argument("--text", default=None)
    text_group.add_argument("--text-file", default=None)
    parser.add_argument("--accent-color", default=DEFAULT_ACCENT_COLOR)
    parser.add_argument(
        "--duration-seconds", type=int, default=DEFAULT_DURATION_SECONDS
    )
    parser.add_argument("--output-video-file", default=DEFAULT_OUTPUT_FILENAME)
    parser.add_argument("--font-file", default=None)
    parser.add_argument("--ffmpeg-path", default=None)
    parser.add_argument("--work-dir", default=None)
    parser.add_argument("--encode-timeout-seconds", type=float, default=None)
    parser.add_argument("--log-level", default=None)
    return parser.parse_args(list(argv))


def load_config(args: argparse.Namespace, env: dict[str, str]) -> MovieConfig:
    """Load configuration from args, falling back to the environment."""
    caption = ""
    if args.text is not None:
        caption = args.text
    elif args.text_file is not None:
        caption = read_utf8_text_strict(args.text_file)

    font_path = args.font_file
    if font_path is None:
        font_path = env.get(FONT_FILE_ENV, "").strip() or None
    ffmpeg_path = env.get(FFMPEG_PATH_ENV, DEFAULT_FFMPEG_PATH)
    if args.ffmpeg_path is not None:
        ffmpeg_path = args.ffmpeg_path
    work_dir_raw = env.get(WORK_DIR_ENV, "").strip()
    if args.work_dir is not None:
        work_dir_raw = args.work_dir
    timeout_seconds = 0.0
    timeout_raw = env.get(ENCODE_TIMEOUT_ENV, "").strip()
    if timeout_raw:
        timeout_seconds = parse_non_negative_float(
            timeout_raw, "encode-timeout-seconds"
        )
    if args.encode_timeout_seconds is not None:
        timeout_seconds = args.encode_timeout_seconds
    log_level = env.get(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL)
    if args.log_level is not None:
        log_level = args.log_level

    return MovieConfig(
        image_path=args.image,
        audio_path=args.audio,
        caption=caption,
        accent_color=args.accent_color,
        duration_seconds=args.duration_seconds,
        output_video_file=args.output_video_file,
        font_path=font_path,
        ffmpeg_path=str(ffmpeg_path),
        work_dir=Path(work_dir_raw) if work_dir_raw else None,
        encode_timeout_seconds=float(timeout_seconds),
        log_level=log_level.strip().upper(),
    )


def generate_movie(
    loader: EngineLoader,
    image: MediaInput | None,
    audio: MediaInput | None,
    caption: str,
    accent_color: str,
    duration_seconds: int,
    font_path: str | None = None,
    on_stage: StageHandler | None = None,
    on_progress: ProgressHandler | None = None,
    timeout_seconds: float | None = None,
) -> bytes:
    """Run the decode, compose, and encode pipeline for one movie."""

    def report(stage: GenerationStage) -> None:
        LOGGER.info("photo_movie.stage %s", stage.value)
        if on_stage is not None:
            on_stage(stage)

    try:
        if image is None:
            raise InputMissingError()
        image.require_kind("image")
        if audio is not None:
            audio.require_kind("audio")
        overlay = OverlaySpec.from_caption(caption, accent_color)
        duration = validate_duration_seconds(duration_seconds)

        report(GenerationStage.LOADING)
        engine = loader.ensure_engine()
        source = load_image_source(
            image.data,
            fallback_decoder=functools.partial(
                decode_with_ffmpeg, ffmpeg_path=engine.ffmpeg_path
            ),
        )
        frame = compose_frame(source, overlay, font_path)
        request = EncodeRequest(
            frame=frame,
            audio=audio.data if audio is not None else None,
            duration_seconds=duration,
        )

        report(GenerationStage.RENDERING)
        video_bytes = encode_video(
            engine, request, on_progress=on_progress, timeout_seconds=timeout_seconds
        )
    except Exception:
        report(GenerationStage.ERROR)
        raise

    report(GenerationStage.READY)
    return video_bytes


def write_output_video(output_path: str, video_bytes: bytes) -> None:
    """Write the finished video to disk."""
    try:
        Path(output_path).write_bytes(video_bytes)
    except OSError as exc:
        raise MoviePipelineError(
            OUTPUT_WRITE_CODE, f"output video could not be written: {exc}"
        ) from exc


def log_progress(line: str) -> None:
    LOGGER.info("photo_movie.encode.progress %s", line)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint."""
    env = dict(os.environ)
    args = parse_args(list(argv) if argv is not None else sys.argv[1:])
    configure_logging(args.log_level or env.get(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL))

    loader: EngineLoader | None = None
    try:
        config = load_config(args, env)
        loader = EngineLoader(
            factory=functools.partial(
                load_ffmpeg_engine, config.ffmpeg_path, config.work_dir
            )
        )
        image = (
            read_media_input(config.image_path, "image")
            if config.image_path is not None
            else None
        )
        audio = (
            read_media_input(config.audio_path, "audio")
            if config.audio_path is not None
            else None
        )
        video_bytes = generate_movie(
            loader,
            image,
            audio,
            config.caption,
            config.accent_color,
            config.duration_seconds,
            font_path=config.font_path,
            on_progress=log_progress,
            timeout_seconds=config.encode_timeout_seconds or None,
        )
        write_output_video(config.output_video_file, video_bytes)
        LOGGER.info(
            "photo_movie.output.written path=%s bytes=%d",
            config.output_video_file,
            len(video_bytes),
        )
        return 0
    except MovieValidationError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except MoviePipelineError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except Exception as exc:
        LOGGER.error("photo_movie.unhandled_error: %s", str(exc).strip())
        return 1
    finally:
        if loader is not None:
            loader.close()


if __name__ == "__main__":
    raise SystemExit(main())
