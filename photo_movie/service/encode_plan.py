"""Encoder invocation planning for render_photo_movie."""

from __future__ import annotations

from typing import Tuple

from photo_movie.domain.photo_movie import (
    INVALID_CONFIG_CODE,
    EncodeRequest,
    MovieValidationError,
)

FRAME_ARTIFACT = "frame.png"
AUDIO_ARTIFACT = "audio.mp3"
OUTPUT_ARTIFACT = "output.mp4"

ZOOM_EXPRESSION = "min(zoom+0.0015,1.3)"
PAN_X_EXPRESSION = "(iw-iw/zoom)/2"
PAN_Y_EXPRESSION = "(ih-ih/zoom)/2"
OUTPUT_PIXEL_FORMAT = "yuv420p"
H264_CODEC = "libx264"
H264_PRESET = "veryfast"
AUDIO_CODEC = "aac"
AUDIO_BITRATE = "192k"


def compute_total_frames(duration_seconds: int, fps: int) -> int:
    """Compute total frames for a video duration."""
    total_frames = duration_seconds * fps
    if total_frames <= 0:
        raise MovieValidationError(
            INVALID_CONFIG_CODE, "duration and fps produce zero frames"
        )
    return total_frames


def build_video_filter(total_frames: int, width: int, height: int) -> str:
    """Build the pan/zoom plus pixel-format filter chain."""
    zoompan = (
        f"zoompan=z='{ZOOM_EXPRESSION}'"
        f":x='{PAN_X_EXPRESSION}'"
        f":y='{PAN_Y_EXPRESSION}'"
        f":d={total_frames}"
        f":s={width}x{height}"
    )
    return ",".join((zoompan, f"format={OUTPUT_PIXEL_FORMAT}"))


def build_encoder_args(request: EncodeRequest) -> Tuple[str, ...]:
    """Build the ffmpeg argument list for an encode request."""
    total_frames = compute_total_frames(request.duration_seconds, request.fps)
    args = [
        "-loop",
        "1",
        "-framerate",
        str(request.fps),
        "-i",
        FRAME_ARTIFACT,
    ]
    if request.has_audio:
        args.extend(["-i", AUDIO_ARTIFACT])

    args.extend(
        [
            "-t",
            str(request.duration_seconds),
            "-vf",
            build_video_filter(total_frames, request.width, request.height),
            "-c:v",
            H264_CODEC,
            "-preset",
            H264_PRESET,
            "-pix_fmt",
            OUTPUT_PIXEL_FORMAT,
        ]
    )
    if request.has_audio:
        args.extend(["-shortest", "-c:a", AUDIO_CODEC, "-b:a", AUDIO_BITRATE])

    args.append(OUTPUT_ARTIFACT)
    return tuple(args)
