"""Small command-line tools: a greeting and basic image information."""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

_GREETING = "Hello SLAM"


def hello() -> str:
    """Print the library greeting and return it."""
    message = _GREETING
    print(message)
    return message


def _load_rgb(path) -> np.ndarray:
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"file {p} does not exist")
    with Image.open(p) as img:
        return np.array(img.convert("RGB"))


def image_info(path) -> tuple[int, int, int]:
    """Width, height and channel count of an image read as 8-bit colour."""
    arr = _load_rgb(path)
    height, width, channels = arr.shape
    return width, height, channels


def main(argv=None) -> int:
    """Greet, or report on an image given with the ``image`` command."""
    parser = argparse.ArgumentParser(description="SLAM toolkit utilities.")
    commands = parser.add_subparsers(dest="command")
    commands.add_parser("hello", help="print the library greeting")
    image_cmd = commands.add_parser("image", help="show basic information on an image")
    image_cmd.add_argument("path")
    args = parser.parse_args(argv)

    if args.command is None:
        print("Hello SLAM!")
        return 0
    if args.command == "hello":
        hello()
        return 0

    try:
        width, height, channels = image_info(args.path)
        pixels = _load_rgb(args.path)
    except (FileNotFoundError, UnidentifiedImageError):
        print(f"file {args.path} does not exist or is not an image.", file=sys.stderr)
        return 1
    print(f"image width {width}, height {height}, channels {channels}")
    start = time.perf_counter()
    for row in pixels:
        for pixel in row:
            for _channel in pixel:
                pass
    elapsed = time.perf_counter() - start
    print(f"traversing the image took {elapsed:g} seconds.")
    return 0