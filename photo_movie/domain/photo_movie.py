"""Domain types, error codes, and validation for render_photo_movie."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import re
from typing import Tuple

VIDEO_WIDTH = 1280
VIDEO_HEIGHT = 720
FRAME_RATE = 30
MIN_DURATION_SECONDS = 5
MAX_DURATION_SECONDS = 20
DEFAULT_DURATION_SECONDS = 8
DEFAULT_ACCENT_COLOR = "#ff7b7b"
DEFAULT_OUTPUT_FILENAME = "movie-from-photo.mp4"

FONT_SIZE_RATIO = 0.065
LINE_HEIGHT_RATIO = 1.35
MAX_TEXT_WIDTH_RATIO = 0.75

INPUT_MISSING_CODE = "photo_movie.input.image_missing"
INVALID_COLOR_CODE = "photo_movie.input.invalid_color"
INVALID_DURATION_CODE = "photo_movie.input.invalid_duration"
INVALID_MEDIA_TYPE_CODE = "photo_movie.input.invalid_media_type"
EMPTY_MEDIA_CODE = "photo_movie.input.empty_media"
INPUT_FILE_CODE = "photo_movie.input.file_error"
INVALID_CONFIG_CODE = "photo_movie.input.invalid_config"
ENGINE_LOAD_CODE = "photo_movie.engine.load_failed"
ENGINE_NAME_CODE = "photo_movie.engine.invalid_name"
IMAGE_DECODE_CODE = "photo_movie.image.decode_failed"
RENDER_BACKEND_CODE = "photo_movie.render.backend_unavailable"
FONT_LOAD_CODE = "photo_movie.render.font_unloadable"
ENCODE_JOB_CODE = "photo_movie.encode.failed"
ENCODE_OUTPUT_CODE = "photo_movie.encode.invalid_output"
FFMPEG_PROCESS_CODE = "photo_movie.ffmpeg.process_failed"
FFMPEG_TIMEOUT_CODE = "photo_movie.ffmpeg.timeout"
CLEANUP_WARNING_CODE = "photo_movie.cleanup.delete_failed"
OUTPUT_WRITE_CODE = "photo_movie.output.write_failed"

HEX_COLOR_PATTERN = re.compile(r"#([0-9a-fA-F]{6})")


class MovieValidationError(ValueError):
    """Validation error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class MoviePipelineError(RuntimeError):
    """Runtime error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class InputMissingError(MovieValidationError):
    """No image was supplied."""

    def __init__(self, message: str = "an image is required") -> None:
        super().__init__(INPUT_MISSING_CODE, message)


class EngineLoadError(MoviePipelineError):
    """The encoder engine could not be initialized."""

    def __init__(self, message: str) -> None:
        super().__init__(ENGINE_LOAD_CODE, message)


class ImageDecodeError(MoviePipelineError):
    """Both image decode strategies failed."""

    def __init__(self, message: str) -> None:
        super().__init__(IMAGE_DECODE_CODE, message)


class FrameRenderError(MoviePipelineError):
    """The raster backend could not produce a frame."""


class EncodeError(MoviePipelineError):
    """Staging, encoding, or output retrieval failed."""


class JobState(str, Enum):
    """Lifecycle states for a single encode job."""

    IDLE = "idle"
    PREPARING = "preparing"
    ENCODING = "encoding"
    COMPLETED = "completed"
    FAILED = "failed"


class GenerationStage(str, Enum):
    """Caller-visible stages of one movie generation."""

    IDLE = "idle"
    LOADING = "loading"
    RENDERING = "rendering"
    READY = "ready"
    ERROR = "error"


def parse_hex_color_to_rgba(color_value: str) -> Tuple[int, int, int, int]:
    """Parse a #RRGGBB token into an opaque RGBA tuple."""
    match_value = HEX_COLOR_PATTERN.fullmatch(color_value.strip())
    if not match_value:
        raise MovieValidationError(
            INVALID_COLOR_CODE,
            f"invalid color value: {color_value!r}",
        )

    rgb_hex = match_value.group(1)
    red_value = int(rgb_hex[0:2], 16)
    green_value = int(rgb_hex[2:4], 16)
    blue_value = int(rgb_hex[4:6], 16)
    return (red_value, green_value, blue_value, 255)


def validate_duration_seconds(duration_seconds: object) -> int:
    """Return the duration when it is an integer inside the allowed range."""
    if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, int):
        raise MovieValidationError(
            INVALID_DURATION_CODE, "duration_seconds must be an integer"
        )
    if (
        duration_seconds < MIN_DURATION_SECONDS
        or duration_seconds > MAX_DURATION_SECONDS
    ):
        raise MovieValidationError(
            INVALID_DURATION_CODE,
            f"duration_seconds must be between {MIN_DURATION_SECONDS} "
            f"and {MAX_DURATION_SECONDS}",
        )
    return duration_seconds


@dataclass(frozen=True)
class MediaInput:
    """Raw uploaded media with its declared type."""

    data: bytes
    mime_type: str | None = None
    filename: str | None = None

    def __post_init__(self) -> None:
        if not self.data:
            raise MovieValidationError(EMPTY_MEDIA_CODE, "media payload is empty")
        if self.mime_type is not None and not self.mime_type.strip():
            raise MovieValidationError(
                INVALID_MEDIA_TYPE_CODE, "mime_type must be non-empty"
            )

    def require_kind(self, kind: str) -> None:
        """Reject a declared MIME type outside the expected top-level kind."""
        if self.mime_type is None:
            return
        if not self.mime_type.strip().lower().startswith(f"{kind}/"):
            raise MovieValidationError(
                INVALID_MEDIA_TYPE_CODE,
                f"expected {kind} media, got {self.mime_type!r}",
            )


@dataclass(frozen=True)
class OverlaySpec:
    """Caption overlay settings; empty text means no overlay."""

    text: str
    accent_rgba: Tuple[int, int, int, int]
    font_size_ratio: float = FONT_SIZE_RATIO
    line_height_ratio: float = LINE_HEIGHT_RATIO
    max_width_ratio: float = MAX_TEXT_WIDTH_RATIO

    @classmethod
    def from_caption(cls, caption: str, accent_color: str) -> "OverlaySpec":
        """Build an overlay from free-form caption text and a hex color."""
        return cls(
            text=caption.strip(),
            accent_rgba=parse_hex_color_to_rgba(accent_color),
        )

    @property
    def has_text(self) -> bool:
        return bool(self.text.strip())


@dataclass(frozen=True)
class CompositedFrame:
    """Encoded still image at the fixed output resolution."""

    data: bytes
    width: int = VIDEO_WIDTH
    height: int = VIDEO_HEIGHT

    def __post_init__(self) -> None:
        if not self.data:
            raise MoviePipelineError(RENDER_BACKEND_CODE, "frame payload is empty")
        if self.width != VIDEO_WIDTH or self.height != VIDEO_HEIGHT:
            raise MoviePipelineError(
                RENDER_BACKEND_CODE,
                f"frame must be {VIDEO_WIDTH}x{VIDEO_HEIGHT}",
            )


@dataclass(frozen=True)
class EncodeRequest:
    """Everything needed for one encode job."""

    frame: CompositedFrame
    audio: bytes | None
    duration_seconds: int
    fps: int = FRAME_RATE
    width: int = VIDEO_WIDTH
    height: int = VIDEO_HEIGHT

    def __post_init__(self) -> None:
        validate_duration_seconds(self.duration_seconds)
        if self.fps != FRAME_RATE:
            raise MovieValidationError(
                INVALID_CONFIG_CODE, f"fps is fixed at {FRAME_RATE}"
            )
        if self.width != VIDEO_WIDTH or self.height != VIDEO_HEIGHT:
            raise MovieValidationError(
                INVALID_CONFIG_CODE,
                f"resolution is fixed at {VIDEO_WIDTH}x{VIDEO_HEIGHT}",
            )
        if self.audio is not None and not self.audio:
            raise MovieValidationError(EMPTY_MEDIA_CODE, "audio payload is empty")

    @property
    def has_audio(self) -> bool:
        return self.audio is not None
