"""Decode arbitrary input images into drawable sources."""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
import logging
import subprocess
from typing import Callable

from PIL import Image, ImageOps

from photo_movie.domain.photo_movie import (
    IMAGE_DECODE_CODE,
    ImageDecodeError,
    MoviePipelineError,
)

LOGGER = logging.getLogger("photo_movie.image_source")

FallbackDecoder = Callable[[bytes], Image.Image]


@dataclass
class SourceImage:
    """Decoded image owned by a single compositing call."""

    image: Image.Image
    strategy: str
    released: bool = False

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    def draw_into(
        self,
        target: Image.Image,
        x: float,
        y: float,
        width: float,
        height: float,
    ) -> None:
        """Scale the image to width x height and composite it at (x, y)."""
        if self.released:
            raise MoviePipelineError(
                IMAGE_DECODE_CODE, "source image was already released"
            )
        draw_width = max(1, int(round(width)))
        draw_height = max(1, int(round(height)))
        resized = self.image.resize(
            (draw_width, draw_height), Image.Resampling.LANCZOS
        )
        try:
            target.alpha_composite(
                resized, dest=(int(round(x)), int(round(y)))
            )
        finally:
            resized.close()

    def release(self) -> None:
        """Free decoded pixel data; later calls are no-ops."""
        if self.released:
            return
        self.released = True
        self.image.close()


def decode_with_pillow(image_bytes: bytes) -> Image.Image:
    """Decode image bytes with Pillow, honoring EXIF orientation."""
    with Image.open(BytesIO(image_bytes)) as opened:
        opened.load()
        oriented = ImageOps.exif_transpose(opened)
        return oriented.convert("RGBA")


def decode_with_ffmpeg(image_bytes: bytes, ffmpeg_path: str) -> Image.Image:
    """Decode the first frame of any ffmpeg-readable image via a PNG pipe."""
    command = [
        ffmpeg_path,
        "-hide_banner",
        "-v",
        "error",
        "-i",
        "pipe:0",
        "-frames:v",
        "1",
        "-f",
        "image2pipe",
        "-vcodec",
        "png",
        "pipe:1",
    ]
    try:
        result = subprocess.run(
            command,
            input=image_bytes,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            check=False,
        )
    except OSError as exc:
        raise MoviePipelineError(
            IMAGE_DECODE_CODE, f"ffmpeg execution failed: {exc}"
        ) from exc
    if result.returncode != 0 or not result.stdout:
        stderr_text = result.stderr.decode("utf-8", errors="replace").strip()
        raise MoviePipelineError(
            IMAGE_DECODE_CODE,
            f"ffmpeg could not decode image: {stderr_text or 'no output'}",
        )
    with Image.open(BytesIO(result.stdout)) as decoded:
        decoded.load()
        return decoded.convert("RGBA")


def load_image_source(
    image_bytes: bytes,
    fallback_decoder: FallbackDecoder | None = None,
) -> SourceImage:
    """Decode image bytes, falling back once when Pillow rejects them."""
    try:
        return SourceImage(image=decode_with_pillow(image_bytes), strategy="pillow")
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        primary_error = exc

    LOGGER.info(
        "photo_movie.image.fallback: primary decoder rejected input (%s)",
        str(primary_error).strip(),
    )
    if fallback_decoder is None:
        raise ImageDecodeError(
            f"unsupported image format: {primary_error}"
        ) from primary_error
    try:
        fallback_image = fallback_decoder(image_bytes)
    except Exception as exc:
        raise ImageDecodeError(f"image could not be decoded: {exc}") from exc
    if fallback_image.mode != "RGBA":
        converted = fallback_image.convert("RGBA")
        fallback_image.close()
        fallback_image = converted
    return SourceImage(image=fallback_image, strategy="fallback")
