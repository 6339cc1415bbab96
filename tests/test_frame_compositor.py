"""Unit tests for still frame composition."""

from __future__ import annotations

from io import BytesIO

import pytest
from PIL import Image, ImageDraw

from photo_movie.domain.photo_movie import OverlaySpec
from photo_movie.frame_compositor import (
    BACKGROUND_RGBA,
    compose_frame,
    compute_font_size,
    compute_letterbox,
    compute_overlay_layout,
    compute_stroke_width,
    load_overlay_font,
    measure_text_width,
    render_frame_image,
)
from photo_movie.image_source import SourceImage


def solid_source(width: int, height: int, color: tuple[int, int, int, int]) -> SourceImage:
    return SourceImage(image=Image.new("RGBA", (width, height), color), strategy="pillow")


def test_letterbox_for_wide_image_fills_frame() -> None:
    letterbox = compute_letterbox(1920, 1080)

    assert letterbox.draw_width == pytest.approx(1280)
    assert letterbox.draw_height == pytest.approx(720)
    assert letterbox.offset_x == pytest.approx(0)
    assert letterbox.offset_y == pytest.approx(0)


def test_letterbox_for_square_image_is_pillarboxed() -> None:
    letterbox = compute_letterbox(800, 800)

    assert letterbox.scale == pytest.approx(0.9)
    assert letterbox.draw_width == pytest.approx(720)
    assert letterbox.draw_height == pytest.approx(720)
    assert letterbox.offset_x == pytest.approx(280)
    assert letterbox.offset_y == pytest.approx(0)


def test_font_and_stroke_sizes() -> None:
    font_size = compute_font_size(720, 0.065)

    assert font_size == 47
    assert compute_stroke_width(font_size) == 2


def test_three_line_overlay_geometry() -> None:
    font_size = 47
    line_height = font_size * 1.35

    layout = compute_overlay_layout(
        ("one", "two", "three"), font_size, line_height, 960.0, 1280, 720
    )

    assert layout.total_height == pytest.approx(190.35)
    assert layout.panel_height == pytest.approx(232.65)
    assert layout.panel_y == pytest.approx(439.35)
    assert layout.panel_x == pytest.approx(112)
    assert layout.panel_width == pytest.approx(1056)
    assert layout.line_centers_y == pytest.approx((492.225, 555.675, 619.125))


def test_empty_caption_draws_no_panel() -> None:
    source = solid_source(800, 800, (200, 0, 0, 255))
    overlay = OverlaySpec.from_caption("   ", "#ff7b7b")

    canvas, layout = render_frame_image(source, overlay)

    assert layout is None
    assert source.released
    assert canvas.getpixel((100, 360)) == BACKGROUND_RGBA
    assert canvas.getpixel((640, 360)) == (200, 0, 0, 255)
    assert canvas.getpixel((640, 700)) == (200, 0, 0, 255)


def test_caption_darkens_panel_area() -> None:
    source = solid_source(1920, 1080, (255, 255, 255, 255))
    overlay = OverlaySpec.from_caption("one\ntwo\nthree", "#ff7b7b")

    canvas, layout = render_frame_image(source, overlay)

    assert layout is not None
    assert layout.lines == ("one", "two", "three")
    assert layout.panel_y == pytest.approx(439.35)
    panel_pixel = canvas.getpixel((120, 460))
    assert panel_pixel[0] < 200
    assert canvas.getpixel((120, 100)) == (255, 255, 255, 255)


def test_compose_frame_encodes_png_at_output_size() -> None:
    source = solid_source(300, 500, (0, 120, 0, 255))
    overlay = OverlaySpec.from_caption("hello world", "#00ff00")

    frame = compose_frame(source, overlay)

    assert source.released
    assert (frame.width, frame.height) == (1280, 720)
    with Image.open(BytesIO(frame.data)) as decoded:
        assert decoded.format == "PNG"
        assert decoded.size == (1280, 720)


def test_long_caption_wraps_by_measured_width() -> None:
    source = solid_source(800, 800, (90, 90, 90, 255))
    caption = " ".join(
        "a quiet harbor at dawn with fishing boats drifting past the old stone"
        " lighthouse while gulls circle overhead and the first light spills"
        " across the water toward the sleeping town on the hill".split()
    )
    overlay = OverlaySpec.from_caption(caption, "#ff7b7b")

    canvas, layout = render_frame_image(source, overlay)

    assert layout is not None
    assert len(layout.lines) >= 3
    assert " ".join(layout.lines) == caption
    font = load_overlay_font(layout.font_size)
    measure_draw = ImageDraw.Draw(canvas)
    for line in layout.lines:
        assert measure_text_width(measure_draw, line, font) <= 960 or " " not in line
    font_size = layout.font_size
    assert font_size == 47
    assert layout.max_width == pytest.approx(960)
    assert layout.panel_height == pytest.approx(
        len(layout.lines) * font_size * 1.35 + font_size * 0.9
    )
    assert canvas.getpixel((100, 100)) == BACKGROUND_RGBA
