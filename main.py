#!/usr/bin/env python3
"""
main.py — Quick-start entry point.

    python main.py create my_photo.png --shape square --variation 4x
    python main.py detect-size my_pixel_art.png

Or use the installed CLI:

    shape-mosaic create --help
"""

from shape_mosaic.cli import app

if __name__ == "__main__":
    app()
