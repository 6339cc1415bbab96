"""Compose the fixed-resolution still frame for render_photo_movie."""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
import logging
from typing import Tuple

from PIL import Image, ImageDraw, ImageFilter, ImageFont

from photo_movie.domain.photo_movie import (
    FONT_LOAD_CODE,
    IMAGE_DECODE_CODE,
    RENDER_BACKEND_CODE,
    VIDEO_HEIGHT,
    VIDEO_WIDTH,
    CompositedFrame,
    FrameRenderError,
    MoviePipelineError,
    OverlaySpec,
)
from photo_movie.image_source import SourceImage
from photo_movie.service.text_layout import wrap_text

LOGGER = logging.getLogger("photo_movie.frame_compositor")

BACKGROUND_RGBA = (5, 5, 5, 255)
PANEL_RGBA = (0, 0, 0, 115)
SHADOW_RGBA = (0, 0, 0, 115)
TEXT_FILL_RGBA = (255, 255, 255, 255)
SHADOW_BLUR_PIXELS = 12
PANEL_BOTTOM_MARGIN = 48
PANEL_SIDE_PADDING = 48
PANEL_VERTICAL_PADDING_RATIO = 0.9
STROKE_LINE_RATIO = 0.08
STROKE_LINE_MIN = 4


@dataclass(frozen=True)
class Letterbox:
    """Placement of a source image inside the output frame."""

    scale: float
    draw_width: float
    draw_height: float
    offset_x: float
    offset_y: float


@dataclass(frozen=True)
class OverlayLayout:
    """Resolved caption geometry for one frame."""

    font_size: int
    line_height: float
    max_width: float
    lines: Tuple[str, ...]
    total_height: float
    panel_x: float
    panel_y: float
    panel_width: float
    panel_height: float
    line_centers_y: Tuple[float, ...]


def compute_letterbox(
    source_width: int,
    source_height: int,
    frame_width: int = VIDEO_WIDTH,
    frame_height: int = VIDEO_HEIGHT,
) -> Letterbox:
    """Fit the source inside the frame, preserving aspect ratio, centered."""
    if source_width <= 0 or source_height <= 0:
        raise MoviePipelineError(
            IMAGE_DECODE_CODE, "source image has no pixels"
        )
    scale = min(frame_width / source_width, frame_height / source_height)
    draw_width = source_width * scale
    draw_height = source_height * scale
    return Letterbox(
        scale=scale,
        draw_width=draw_width,
        draw_height=draw_height,
        offset_x=(frame_width - draw_width) / 2,
        offset_y=(frame_height - draw_height) / 2,
    )


def compute_font_size(frame_height: int, font_size_ratio: float) -> int:
    """Compute the caption font size from the frame height."""
    return int(round(frame_height * font_size_ratio))


def compute_stroke_width(font_size: int) -> int:
    """Compute the outward stroke width for the accent outline."""
    line_width = max(STROKE_LINE_MIN, font_size * STROKE_LINE_RATIO)
    # Canvas-style strokes straddle the outline; Pillow strokes grow outward.
    return max(1, int(round(line_width / 2)))


def compute_overlay_layout(
    lines: Tuple[str, ...],
    font_size: int,
    line_height: float,
    max_width: float,
    frame_width: int = VIDEO_WIDTH,
    frame_height: int = VIDEO_HEIGHT,
) -> OverlayLayout:
    """Compute the caption panel and per-line vertical centers."""
    line_count = len(lines)
    total_height = line_count * line_height
    panel_height = total_height + font_size * PANEL_VERTICAL_PADDING_RATIO
    panel_y = frame_height - panel_height - PANEL_BOTTOM_MARGIN
    panel_x = (frame_width - max_width) / 2 - PANEL_SIDE_PADDING
    panel_width = max_width + PANEL_SIDE_PADDING * 2
    first_center = panel_y + panel_height / 2 - (line_count - 1) * line_height * 0.5
    line_centers = tuple(
        first_center + index_value * line_height for index_value in range(line_count)
    )
    return OverlayLayout(
        font_size=font_size,
        line_height=line_height,
        max_width=max_width,
        lines=lines,
        total_height=total_height,
        panel_x=panel_x,
        panel_y=panel_y,
        panel_width=panel_width,
        panel_height=panel_height,
        line_centers_y=line_centers,
    )


def load_overlay_font(
    font_size: int, font_path: str | None = None
) -> ImageFont.FreeTypeFont:
    """Load the configured caption font, or Pillow's bundled scalable font."""
    if font_path is not None:
        try:
            return ImageFont.truetype(font_path, size=font_size)
        except OSError as exc:
            raise FrameRenderError(
                FONT_LOAD_CODE, f"failed to load font {font_path} at size {font_size}"
            ) from exc

    font = ImageFont.load_default(size=font_size)
    if not isinstance(font, ImageFont.FreeTypeFont):
        raise FrameRenderError(
            RENDER_BACKEND_CODE, "Pillow was built without FreeType support"
        )
    return font


def measure_text_width(
    draw_context: ImageDraw.ImageDraw,
    text_value: str,
    font: ImageFont.FreeTypeFont,
) -> float:
    """Measure text advance width using font metrics."""
    if not text_value:
        return 0.0
    return float(draw_context.textlength(text_value, font=font))


def build_text_options(font: ImageFont.FreeTypeFont) -> dict[str, object]:
    """Build centered text options, right-to-left when Raqm is available."""
    options: dict[str, object] = {"font": font, "anchor": "mm", "align": "center"}
    if font.layout_engine == ImageFont.Layout.RAQM:
        options["direction"] = "rtl"
    return options


def draw_overlay(
    canvas: Image.Image,
    overlay: OverlaySpec,
    font_path: str | None = None,
) -> OverlayLayout:
    """Draw the caption panel and outlined text onto the canvas."""
    frame_width, frame_height = canvas.size
    font_size = compute_font_size(frame_height, overlay.font_size_ratio)
    line_height = font_size * overlay.line_height_ratio
    max_width = frame_width * overlay.max_width_ratio
    font = load_overlay_font(font_size, font_path)

    measure_draw = ImageDraw.Draw(canvas)
    lines = wrap_text(
        overlay.text,
        max_width,
        lambda candidate: measure_text_width(measure_draw, candidate, font),
    )
    layout = compute_overlay_layout(
        lines, font_size, line_height, max_width, frame_width, frame_height
    )

    panel_layer = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    ImageDraw.Draw(panel_layer).rectangle(
        (
            int(round(layout.panel_x)),
            int(round(layout.panel_y)),
            int(round(layout.panel_x + layout.panel_width)),
            int(round(layout.panel_y + layout.panel_height)),
        ),
        fill=PANEL_RGBA,
    )
    canvas.alpha_composite(panel_layer)

    text_options = build_text_options(font)
    stroke_width = compute_stroke_width(font_size)
    center_x = frame_width / 2

    shadow_layer = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    stroke_layer = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    shadow_draw = ImageDraw.Draw(shadow_layer)
    stroke_draw = ImageDraw.Draw(stroke_layer)
    for line, center_y in zip(layout.lines, layout.line_centers_y):
        shadow_draw.text(
            (center_x, center_y),
            line,
            fill=SHADOW_RGBA,
            stroke_width=stroke_width,
            stroke_fill=SHADOW_RGBA,
            **text_options,
        )
        stroke_draw.text(
            (center_x, center_y),
            line,
            fill=overlay.accent_rgba,
            stroke_width=stroke_width,
            stroke_fill=overlay.accent_rgba,
            **text_options,
        )
    # Canvas shadowBlur is twice the Gaussian sigma.
    canvas.alpha_composite(
        shadow_layer.filter(ImageFilter.GaussianBlur(SHADOW_BLUR_PIXELS / 2))
    )
    canvas.alpha_composite(stroke_layer)

    fill_draw = ImageDraw.Draw(canvas)
    for line, center_y in zip(layout.lines, layout.line_centers_y):
        fill_draw.text((center_x, center_y), line, fill=TEXT_FILL_RGBA, **text_options)

    return layout


def render_frame_image(
    source: SourceImage,
    overlay: OverlaySpec,
    font_path: str | None = None,
) -> Tuple[Image.Image, OverlayLayout | None]:
    """Render the frame as an RGBA image; the source is released here."""
    try:
        try:
            canvas = Image.new("RGBA", (VIDEO_WIDTH, VIDEO_HEIGHT), BACKGROUND_RGBA)
        except Exception as exc:
            raise FrameRenderError(
                RENDER_BACKEND_CODE, f"raster canvas unavailable: {exc}"
            ) from exc
        letterbox = compute_letterbox(source.width, source.height)
        source.draw_into(
            canvas,
            letterbox.offset_x,
            letterbox.offset_y,
            letterbox.draw_width,
            letterbox.draw_height,
        )
    finally:
        source.release()

    if not overlay.has_text:
        return canvas, None
    layout = draw_overlay(canvas, overlay, font_path)
    LOGGER.debug(
        "photo_movie.frame.overlay lines=%d panel_height=%.2f",
        len(layout.lines),
        layout.panel_height,
    )
    return canvas, layout


def encode_png(canvas: Image.Image) -> bytes:
    """Encode a canvas as lossless PNG bytes."""
    buffer = BytesIO()
    try:
        canvas.convert("RGB").save(buffer, format="PNG")
    except (OSError, ValueError) as exc:
        raise FrameRenderError(
            RENDER_BACKEND_CODE, f"frame encoding failed: {exc}"
        ) from exc
    return buffer.getvalue()


def compose_frame(
    source: SourceImage,
    overlay: OverlaySpec,
    font_path: str | None = None,
) -> CompositedFrame:
    """Compose the letterboxed image and caption into encoded frame bytes."""
    canvas, _ = render_frame_image(source, overlay, font_path)
    try:
        return CompositedFrame(data=encode_png(canvas))
    finally:
        canvas.close()
