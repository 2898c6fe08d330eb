#!/usr/bin/env python3
"""
Extract a median-cut palette from an image file.

Usage: python extract_palette.py -i photo.jpg [-n 16] [-o swatches.png]
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import numpy as np
from PIL import Image

from color_convert import QUANTIZE_WORD_WIDTH
from color_cut import DEFAULT_MAX_COLORS, ColorCutQuantizer, QuantizerConfig, Swatch

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_RESIZE_MAX_DIMENSION = 192  # Largest side after downscaling

# Image size limits (security: prevent decompression bombs)
MAX_IMAGE_PIXELS = 50_000_000  # 50 megapixels
MAX_IMAGE_DIMENSION = 10_000  # 10k pixels per side


# =============================================================================
# Image Loading
# =============================================================================

def load_pixels(image_path: str,
                max_dimension: Optional[int] = DEFAULT_RESIZE_MAX_DIMENSION) -> np.ndarray:
    """
    Load an image as an (n, 3) uint8 array of RGB pixels.

    The image is scaled down so its largest side is at most `max_dimension`
    (None keeps full resolution).

    Raises:
        FileNotFoundError: If image file doesn't exist
        ValueError: If file is not a valid image or exceeds size limits
    """
    try:
        img = Image.open(image_path)
    except FileNotFoundError:
        raise FileNotFoundError(f"Image not found: {image_path}")
    except Exception as e:
        raise ValueError(f"Could not open image: {e}")

    width, height = img.size
    if width > MAX_IMAGE_DIMENSION or height > MAX_IMAGE_DIMENSION:
        raise ValueError(
            f"Image dimensions {width}x{height} exceed maximum "
            f"{MAX_IMAGE_DIMENSION}x{MAX_IMAGE_DIMENSION}"
        )
    if width * height > MAX_IMAGE_PIXELS:
        raise ValueError(
            f"Image has {width * height:,} pixels, exceeding maximum {MAX_IMAGE_PIXELS:,}"
        )

    img = img.convert('RGB')

    if max_dimension is not None and max(width, height) > max_dimension:
        scale = max_dimension / max(width, height)
        size = (max(1, round(width * scale)), max(1, round(height * scale)))
        img = img.resize(size, Image.LANCZOS)
        logger.debug("Scaled %dx%d image to %dx%d", width, height, *size)

    return np.array(img).reshape(-1, 3)


def extract_palette(image_path: str,
                    max_colors: int = DEFAULT_MAX_COLORS,
                    min_brightness: Optional[float] = None,
                    min_saturation: Optional[float] = None,
                    distance_weighting: bool = False,
                    word_width: int = QUANTIZE_WORD_WIDTH,
                    max_dimension: Optional[int] = DEFAULT_RESIZE_MAX_DIMENSION) -> list[Swatch]:
    """Load an image and quantize it. Swatches are sorted by population descending."""
    config = QuantizerConfig(
        max_colors=max_colors,
        min_brightness=min_brightness,
        min_saturation=min_saturation,
        distance_weighting=distance_weighting,
        word_width=word_width,
    )
    pixels = load_pixels(image_path, max_dimension=max_dimension)
    quantizer = ColorCutQuantizer(pixels, config)
    return sorted(quantizer.quantized_colors, key=lambda s: s.population, reverse=True)


# =============================================================================
# Render
# =============================================================================

def swatches_to_dict(swatches: list[Swatch]) -> list[dict]:
    total = sum(s.population for s in swatches)
    return [
        {
            'hex': s.hex,
            'rgb': list(s.color),
            'population': s.population,
            'percentage': round(s.population / total * 100, 2) if total else 0.0,
        }
        for s in swatches
    ]


def visualize_swatches(swatches: list[Swatch], output_path: str) -> None:
    """
    Create a swatch image with population percentages.

    Args:
        swatches: Swatches to draw, in display order
        output_path: Path to save the output image
    """
    from PIL import ImageDraw

    if not swatches:
        raise ValueError("No swatches to visualize")

    total_pixels = sum(s.population for s in swatches)
    swatch_size = 80
    padding = 10
    text_height = 25
    cols = min(len(swatches), 6)
    rows = (len(swatches) + cols - 1) // cols

    img_width = cols * (swatch_size + padding) + padding
    img_height = rows * (swatch_size + text_height + padding) + padding

    img = Image.new('RGB', (img_width, img_height), (240, 240, 240))
    draw = ImageDraw.Draw(img)

    for i, swatch in enumerate(swatches):
        row = i // cols
        col = i % cols

        x = padding + col * (swatch_size + padding)
        y = padding + row * (swatch_size + text_height + padding)

        draw.rectangle([x, y, x + swatch_size, y + swatch_size], fill=tuple(swatch.color))

        # Center percentage under swatch
        text = f"{swatch.population / total_pixels * 100:.1f}%"
        bbox = draw.textbbox((0, 0), text)
        text_width = bbox[2] - bbox[0]
        text_x = x + (swatch_size - text_width) // 2
        draw.text((text_x, y + swatch_size + 4), text, fill=(0, 0, 0))

    img.save(output_path)


def render(swatches: list[Swatch]) -> str:
    """Plain-text palette listing."""
    total = sum(s.population for s in swatches)
    lines = [f"Palette: {len(swatches)} colors, {total} pixels"]
    for i, swatch in enumerate(swatches, 1):
        percentage = swatch.population / total * 100 if total else 0.0
        lines.append(f"  {i:2d}. {swatch.hex}  {swatch.population:8d}  {percentage:5.1f}%")
    return "\n".join(lines)


# =============================================================================
# CLI
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Extract a median-cut color palette from an image.'
    )
    parser.add_argument(
        '--input', '-i',
        required=True,
        help='Path to the image file'
    )
    parser.add_argument(
        '--colors', '-n',
        type=int,
        default=DEFAULT_MAX_COLORS,
        help=f'Maximum number of palette colors (default: {DEFAULT_MAX_COLORS})'
    )
    parser.add_argument(
        '--min-brightness',
        type=float,
        default=None,
        help='Drop colors with HSB brightness at or below this value (0-1)'
    )
    parser.add_argument(
        '--min-saturation',
        type=float,
        default=None,
        help='Drop colors with HSB saturation at or below this value (0-1)'
    )
    parser.add_argument(
        '--distance-weighting',
        action='store_true',
        help='Collapse near-duplicate colors and favor isolated ones'
    )
    parser.add_argument(
        '--word-width',
        type=int,
        default=QUANTIZE_WORD_WIDTH,
        help=f'Bits kept per channel when bucketing colors, 1-8 (default: {QUANTIZE_WORD_WIDTH})'
    )
    parser.add_argument(
        '--no-downscale',
        action='store_true',
        help=f'Process at full resolution instead of downscaling to {DEFAULT_RESIZE_MAX_DIMENSION}px'
    )
    parser.add_argument(
        '--json',
        action='store_true',
        help='Print the palette as JSON'
    )
    parser.add_argument(
        '--output', '-o',
        default=None,
        help='Write a swatch image to this path'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Log quantization stages'
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format='%(name)s: %(message)s')

    try:
        swatches = extract_palette(
            args.input,
            max_colors=args.colors,
            min_brightness=args.min_brightness,
            min_saturation=args.min_saturation,
            distance_weighting=args.distance_weighting,
            word_width=args.word_width,
            max_dimension=None if args.no_downscale else DEFAULT_RESIZE_MAX_DIMENSION,
        )
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(swatches_to_dict(swatches), indent=2))
    else:
        print(render(swatches))

    if args.output:
        output_path = Path(args.output)
        try:
            visualize_swatches(swatches, str(output_path))
            print(f"\nWrote: {output_path}", file=sys.stderr if args.json else sys.stdout)
        except (OSError, ValueError) as e:
            print(f"Error writing output: {e}", file=sys.stderr)
            return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
