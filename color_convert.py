#!/usr/bin/env python3
"""
Color packing and color-space helpers for the median-cut quantizer.

Quantized colors are plain integers holding three reduced-width channels,
laid out as red << 2w | green << w | blue.
"""

from enum import Enum

import numpy as np


QUANTIZE_WORD_WIDTH = 5  # Bits kept per channel in a quantized color


class Dimension(Enum):
    """Color channel a box can be split along."""
    RED = 0
    GREEN = 1
    BLUE = 2


# =============================================================================
# Packing
# =============================================================================

def _word_mask(width: int) -> int:
    return (1 << width) - 1


def modify_word_width(value: int, current_width: int, target_width: int) -> int:
    """Shift a channel value between word widths, keeping the MSBs."""
    if target_width > current_width:
        value = value << (target_width - current_width)
    else:
        value = value >> (current_width - target_width)
    return value & _word_mask(target_width)


def pack(r: int, g: int, b: int, width: int = QUANTIZE_WORD_WIDTH) -> int:
    """Quantize an 8-bit RGB color to a packed key of `width` bits per channel."""
    r = modify_word_width(r, 8, width)
    g = modify_word_width(g, 8, width)
    b = modify_word_width(b, 8, width)
    return r << (width + width) | g << width | b


def unpack(key: int, width: int = QUANTIZE_WORD_WIDTH) -> tuple[int, int, int]:
    """Split a packed key into its reduced-width (r, g, b) channels."""
    mask = _word_mask(width)
    return (key >> (width + width)) & mask, (key >> width) & mask, key & mask


def widen(value: int, width: int = QUANTIZE_WORD_WIDTH) -> int:
    """Expand a reduced channel back to 8 bits. Lossy: low bits become zero."""
    return modify_word_width(value, width, 8)


def approximate_rgb(key: int, width: int = QUANTIZE_WORD_WIDTH) -> tuple[int, int, int]:
    """8-bit approximation of a packed key."""
    r, g, b = unpack(key, width)
    return widen(r, width), widen(g, width), widen(b, width)


def pack_array(rgb: np.ndarray, width: int = QUANTIZE_WORD_WIDTH) -> np.ndarray:
    """Vectorized `pack` over an (..., 3) array of 8-bit channels."""
    channels = rgb.astype(np.int64) >> (8 - width)
    return (channels[..., 0] << (width + width)) | (channels[..., 1] << width) | channels[..., 2]


def unpack_array(keys: np.ndarray, width: int = QUANTIZE_WORD_WIDTH) -> np.ndarray:
    """Vectorized `unpack`. Returns an (n, 3) array of reduced channels."""
    keys = np.asarray(keys, dtype=np.int64)
    mask = _word_mask(width)
    return np.column_stack([
        (keys >> (width + width)) & mask,
        (keys >> width) & mask,
        keys & mask,
    ])


def approximate_rgb_array(keys: np.ndarray, width: int = QUANTIZE_WORD_WIDTH) -> np.ndarray:
    """Vectorized `approximate_rgb`. Returns an (n, 3) array of 8-bit channels."""
    return (unpack_array(keys, width) << (8 - width)) & 0xFF


def swap_significant_component(keys: np.ndarray, dimension: Dimension,
                               width: int = QUANTIZE_WORD_WIDTH) -> np.ndarray:
    """
    Move `dimension` into the most significant field of each packed key.

    Sorting the result as plain integers orders colors by that channel, with
    ties broken by the other two channels in packed order. The swap is its own
    inverse, so calling it again on sorted keys restores RGB packing.
    """
    keys = np.asarray(keys, dtype=np.int64)
    if dimension is Dimension.RED:
        return keys.copy()

    channels = unpack_array(keys, width)
    r, g, b = channels[:, 0], channels[:, 1], channels[:, 2]
    if dimension is Dimension.GREEN:
        # RGB <-> GRB
        return g << (width + width) | r << width | b
    # RGB <-> BGR
    return b << (width + width) | g << width | r


# =============================================================================
# Color Conversion
# =============================================================================

def rgb_to_hsb(rgb: np.ndarray) -> np.ndarray:
    """Convert RGB array (0-255) to HSB with all components in [0, 1]."""
    rgb_norm = np.atleast_2d(rgb).astype(np.float64) / 255.0
    c_max = rgb_norm.max(axis=1)
    c_min = rgb_norm.min(axis=1)
    delta = c_max - c_min

    brightness = c_max
    saturation = np.divide(delta, c_max, out=np.zeros_like(delta), where=c_max > 0)

    r, g, b = rgb_norm[:, 0], rgb_norm[:, 1], rgb_norm[:, 2]
    safe_delta = np.where(delta > 0, delta, 1.0)
    hue = np.where(
        c_max == r, ((g - b) / safe_delta) % 6,
        np.where(c_max == g, (b - r) / safe_delta + 2, (r - g) / safe_delta + 4)
    )
    hue = np.where(delta > 0, hue / 6.0, 0.0)

    return np.column_stack([hue, saturation, brightness])


def rgb_to_xyz(rgb: np.ndarray) -> np.ndarray:
    """Convert RGB array (0-255) to CIE XYZ (D65), scaled to 0-100."""
    rgb_norm = np.atleast_2d(rgb).astype(np.float64) / 255.0

    # Apply gamma correction
    mask = rgb_norm > 0.04045
    rgb_linear = np.where(mask, ((rgb_norm + 0.055) / 1.055) ** 2.4, rgb_norm / 12.92)

    # RGB to XYZ matrix
    r, g, b = rgb_linear[:, 0], rgb_linear[:, 1], rgb_linear[:, 2]
    x = r * 0.4124564 + g * 0.3575761 + b * 0.1804375
    y = r * 0.2126729 + g * 0.7151522 + b * 0.0721750
    z = r * 0.0193339 + g * 0.1191920 + b * 0.9503041

    return np.column_stack([x, y, z]) * 100.0


def rgb_to_hex(rgb: tuple) -> str:
    """Convert an (r, g, b) tuple to a hex string."""
    r, g, b = (int(c) for c in rgb)
    return f"#{r:02x}{g:02x}{b:02x}"
