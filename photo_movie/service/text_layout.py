"""Caption line wrapping for render_photo_movie."""

from __future__ import annotations

import re
from typing import Callable, Tuple

PARAGRAPH_SEPARATOR_PATTERN = re.compile(r"\s*\n+\s*")


def split_paragraphs(text_value: str) -> Tuple[str, ...]:
    """Split text on newline runs, trimming whitespace around each break."""
    stripped_text = text_value.strip()
    if not stripped_text:
        return tuple()
    return tuple(PARAGRAPH_SEPARATOR_PATTERN.split(stripped_text))


def wrap_text(
    text_value: str,
    max_width: float,
    measure: Callable[[str], float],
) -> Tuple[str, ...]:
    """Greedily wrap text into lines no wider than max_width.

    Paragraphs are laid out in order. A single word wider than max_width is
    kept whole on its own line. Paragraphs with no words are dropped rather
    than emitted as blank lines.
    """
    lines: list[str] = []
    for paragraph in split_paragraphs(text_value):
        words = paragraph.split()
        if not words:
            continue

        current_line = words[0]
        for word in words[1:]:
            candidate_line = f"{current_line} {word}"
            if measure(candidate_line) > max_width:
                lines.append(current_line)
                current_line = word
            else:
                current_line = candidate_line

        lines.append(current_line)

    return tuple(lines)
