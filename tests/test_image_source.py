"""Unit tests for image decoding with fallback."""

from __future__ import annotations

from io import BytesIO

import pytest
from PIL import Image

from photo_movie.domain.photo_movie import ImageDecodeError, MoviePipelineError
from photo_movie.image_source import load_image_source


def encode_image(width: int, height: int, color: tuple[int, int, int], fmt: str) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format=fmt)
    return buffer.getvalue()


def test_primary_decoder_handles_png() -> None:
    calls: list[bytes] = []

    source = load_image_source(
        encode_image(40, 20, (10, 20, 30), "PNG"),
        fallback_decoder=lambda data: calls.append(data) or Image.new("RGBA", (1, 1)),
    )

    assert source.strategy == "pillow"
    assert (source.width, source.height) == (40, 20)
    assert source.image.mode == "RGBA"
    assert calls == []


def test_fallback_decoder_used_once_for_unknown_bytes() -> None:
    calls: list[bytes] = []

    def fallback(data: bytes) -> Image.Image:
        calls.append(data)
        return Image.new("RGB", (8, 6), (200, 0, 0))

    source = load_image_source(b"not an image", fallback_decoder=fallback)

    assert calls == [b"not an image"]
    assert source.strategy == "fallback"
    assert source.image.mode == "RGBA"
    assert (source.width, source.height) == (8, 6)


def test_decode_fails_when_both_strategies_fail() -> None:
    def fallback(data: bytes) -> Image.Image:
        raise MoviePipelineError("photo_movie.image.decode_failed", "boom")

    with pytest.raises(ImageDecodeError) as exc_info:
        load_image_source(b"garbage", fallback_decoder=fallback)

    assert exc_info.value.code == "photo_movie.image.decode_failed"


def test_decode_fails_without_fallback() -> None:
    with pytest.raises(ImageDecodeError):
        load_image_source(b"garbage")


def test_release_is_idempotent_and_blocks_drawing() -> None:
    source = load_image_source(encode_image(4, 4, (0, 0, 0), "PNG"))

    source.release()
    source.release()

    assert source.released
    with pytest.raises(MoviePipelineError):
        source.draw_into(Image.new("RGBA", (4, 4)), 0, 0, 4, 4)
