#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "pillow>=10.1"
# ]
# ///
"""Render a single photo into a slow-zoom MP4 with an optional caption."""

from __future__ import annotations

import sys

from photo_movie.render_photo_movie import main

if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
