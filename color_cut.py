#!/usr/bin/env python3
"""
Median-cut color quantization.

Builds a reduced-precision color histogram from a pixel stream and splits the
color space into boxes until the requested number of colors is reached.
Five stages: Histogram → Perceptual Filter → Similarity Collapse →
Box Partitioning → Swatch Synthesis
"""

import heapq
import itertools
import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.spatial.distance import cdist

from color_convert import (
    QUANTIZE_WORD_WIDTH,
    Dimension,
    approximate_rgb,
    approximate_rgb_array,
    pack_array,
    rgb_to_hex,
    rgb_to_hsb,
    rgb_to_xyz,
    swap_significant_component,
    unpack_array,
    widen,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_MAX_COLORS = 16  # Number of colors in a generated palette
COLLAPSE_RADIUS_DIVISOR = 5  # Collapse radius = mean pairwise XYZ distance / 5
COLLAPSE_BLOCK_ROWS = 256  # Distance matrix rows computed at once


class QuantizationError(RuntimeError):
    """Raised when box or histogram bookkeeping breaks an invariant."""


@dataclass
class QuantizerConfig:
    """Run parameters for a single quantization.

    A threshold of None disables that half of the perceptual filter.
    """
    max_colors: int = DEFAULT_MAX_COLORS
    min_brightness: Optional[float] = None
    min_saturation: Optional[float] = None
    distance_weighting: bool = False
    word_width: int = QUANTIZE_WORD_WIDTH

    def __post_init__(self):
        if self.max_colors <= 0:
            raise ValueError(f"max_colors must be positive, got {self.max_colors}")
        for name in ('min_brightness', 'min_saturation'):
            value = getattr(self, name)
            if value is not None and not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if not 1 <= self.word_width <= 8:
            raise ValueError(f"word_width must be between 1 and 8, got {self.word_width}")


@dataclass(frozen=True)
class Swatch:
    """A representative color and the number of pixels it stands for."""
    color: tuple  # (r, g, b), 0-255
    population: int

    @property
    def hex(self) -> str:
        return rgb_to_hex(self.color)

    def __str__(self) -> str:
        return f"Color: {self.hex} Population: {self.population}"


# =============================================================================
# Stage 1: Histogram
# =============================================================================

def _as_pixel_array(pixels) -> np.ndarray:
    """Normalize a pixel sequence to an (n, 3) integer array, dropping alpha."""
    if not isinstance(pixels, np.ndarray):
        pixels = np.asarray(list(pixels))
    if pixels.size == 0:
        return np.empty((0, 3), dtype=np.uint8)

    if pixels.ndim == 0 or pixels.shape[-1] not in (3, 4):
        raise ValueError(f"Pixels must have 3 or 4 channels, got shape {pixels.shape}")
    if pixels.dtype != np.uint8:
        if not np.issubdtype(pixels.dtype, np.integer):
            raise ValueError(f"Pixels must be integers, got dtype {pixels.dtype}")
        if pixels.min() < 0 or pixels.max() > 255:
            raise ValueError("Pixel channels must be within 0-255")

    return pixels.reshape(-1, pixels.shape[-1])[:, :3]


def build_histogram(pixels, width: int = QUANTIZE_WORD_WIDTH) -> dict[int, int]:
    """
    Count pixels per quantized color.

    Args:
        pixels: Array of shape (..., 3) or (..., 4), or a sequence of RGB(A) tuples
        width: Bits kept per channel

    Returns:
        Dict of packed color -> pixel count, keyed in ascending packed order.
    """
    rgb = _as_pixel_array(pixels)
    keys, counts = np.unique(pack_array(rgb, width), return_counts=True)
    return {int(key): int(count) for key, count in zip(keys, counts)}


# =============================================================================
# Stage 2: Perceptual Filter
# =============================================================================

def filter_histogram(histogram: dict[int, int],
                     min_brightness: Optional[float] = None,
                     min_saturation: Optional[float] = None,
                     width: int = QUANTIZE_WORD_WIDTH) -> dict[int, int]:
    """
    Drop colors that are too dark or too grey.

    A color survives only if its brightness is above `min_brightness` and its
    saturation is above `min_saturation`, both measured on the 8-bit
    approximation of the packed color. Dropped populations are discarded.
    """
    if not histogram or (min_brightness is None and min_saturation is None):
        return dict(histogram)

    keys = np.fromiter(histogram.keys(), dtype=np.int64, count=len(histogram))
    hsb = rgb_to_hsb(approximate_rgb_array(keys, width))

    keep = np.ones(len(keys), dtype=bool)
    if min_brightness is not None:
        keep &= hsb[:, 2] > min_brightness
    if min_saturation is not None:
        keep &= hsb[:, 1] > min_saturation

    return {int(key): histogram[int(key)] for key in keys[keep]}


# =============================================================================
# Stage 3: Similarity Collapse
# =============================================================================

def collapse_similar_colors(histogram: dict[int, int],
                            width: int = QUANTIZE_WORD_WIDTH) -> dict[int, int]:
    """
    Merge near-duplicate colors and boost the weight of isolated ones.

    Colors are scanned in histogram order; a color is kept only if its XYZ
    distance to every color kept so far is at least the collapse radius (the
    mean pairwise distance divided by COLLAPSE_RADIUS_DIVISOR). Each kept color
    gains `max_population * floor(mean_distance / radius) * 2`.
    """
    if len(histogram) < 2:
        return dict(histogram)

    keys = list(histogram)
    n = len(keys)
    xyz = rgb_to_xyz(approximate_rgb_array(np.array(keys, dtype=np.int64), width))

    # Row blocks keep memory linear in n; sums include each color's zero self-distance
    row_sums = np.concatenate([
        cdist(xyz[start:start + COLLAPSE_BLOCK_ROWS], xyz).sum(axis=1)
        for start in range(0, n, COLLAPSE_BLOCK_ROWS)
    ])
    mean_distances = row_sums / n
    collapse_radius = row_sums.sum() / (n * n) / COLLAPSE_RADIUS_DIVISOR
    if collapse_radius <= 0:
        raise QuantizationError("Collapse radius is zero for a set of distinct colors")

    max_population = max(histogram.values())
    logger.debug("Collapse radius %.3f over %d colors", collapse_radius, n)

    collapsed = {}
    kept = []
    for i, key in enumerate(keys):
        if kept and (cdist(xyz[i:i + 1], xyz[kept]) < collapse_radius).any():
            continue
        kept.append(i)
        boost = max_population * math.floor(mean_distances[i] / collapse_radius) * 2
        collapsed[key] = histogram[key] + boost

    logger.debug("Collapsed %d colors to %d", len(keys), len(collapsed))
    return collapsed


# =============================================================================
# Stage 4: Box Partitioning
# =============================================================================

@dataclass
class QuantizationContext:
    """Color state owned by one quantization run."""
    colors: np.ndarray  # Packed colors; boxes reorder sub-ranges in place
    histogram: dict  # packed color -> population
    width: int = QUANTIZE_WORD_WIDTH

    def channels(self, lower: int, upper: int) -> np.ndarray:
        """Reduced (r, g, b) channels of colors[lower..upper], inclusive."""
        return unpack_array(self.colors[lower:upper + 1], self.width)

    def populations(self, lower: int, upper: int) -> np.ndarray:
        """Histogram counts of colors[lower..upper], inclusive."""
        return np.array([self.histogram[int(c)] for c in self.colors[lower:upper + 1]],
                        dtype=np.int64)


class Vbox:
    """A tightly fitting box around an inclusive range of the context's colors."""

    def __init__(self, context: QuantizationContext, lower: int, upper: int):
        self.context = context
        self.lower = lower
        self.upper = upper
        self.fit()

    def __repr__(self) -> str:
        return (f"Vbox([{self.lower}, {self.upper}], volume={self.volume}, "
                f"population={self.population})")

    @property
    def volume(self) -> int:
        return ((self.max_red - self.min_red + 1)
                * (self.max_green - self.min_green + 1)
                * (self.max_blue - self.min_blue + 1))

    @property
    def color_count(self) -> int:
        return 1 + self.upper - self.lower

    def can_split(self) -> bool:
        return self.color_count > 1

    def fit(self):
        """Recompute bounds and population to tightly fit the colors in range."""
        if not 0 <= self.lower <= self.upper < len(self.context.colors):
            raise QuantizationError(
                f"Invalid box range [{self.lower}, {self.upper}] over "
                f"{len(self.context.colors)} colors"
            )
        channels = self.context.channels(self.lower, self.upper)
        self.min_red, self.min_green, self.min_blue = (int(v) for v in channels.min(axis=0))
        self.max_red, self.max_green, self.max_blue = (int(v) for v in channels.max(axis=0))
        self.population = int(self.context.populations(self.lower, self.upper).sum())

    def longest_dimension(self) -> Dimension:
        """Channel with the widest range. Ties prefer red, then green."""
        red_length = self.max_red - self.min_red
        green_length = self.max_green - self.min_green
        blue_length = self.max_blue - self.min_blue

        if red_length >= green_length and red_length >= blue_length:
            return Dimension.RED
        if green_length >= red_length and green_length >= blue_length:
            return Dimension.GREEN
        return Dimension.BLUE

    def find_split_point(self) -> int:
        """
        Sort the range along the longest dimension and find the weighted median.

        Returns the first index whose cumulative population reaches half of the
        box population, never the upper index so both halves stay non-empty.
        """
        dimension = self.longest_dimension()
        context = self.context
        lower, end = self.lower, self.upper + 1

        swapped = swap_significant_component(context.colors[lower:end], dimension, context.width)
        context.colors[lower:end] = swap_significant_component(
            np.sort(swapped), dimension, context.width
        )

        mid_point = self.population // 2
        cumulative = np.cumsum(context.populations(self.lower, self.upper))
        offset = int(np.argmax(cumulative >= mid_point))
        return min(self.lower + offset, self.upper - 1)

    def split(self) -> 'Vbox':
        """
        Split this box at the weighted median of its longest dimension.

        This box shrinks to [lower, split] and the returned box covers
        [split + 1, upper].
        """
        if not self.can_split():
            raise QuantizationError("Cannot split a box holding a single color")

        split_point = self.find_split_point()
        new_box = Vbox(self.context, split_point + 1, self.upper)

        self.upper = split_point
        self.fit()
        return new_box

    def average_color(self) -> Swatch:
        """Population-weighted mean color of the box."""
        channels = self.context.channels(self.lower, self.upper)
        populations = self.context.populations(self.lower, self.upper)
        total = int(populations.sum())
        if total <= 0:
            raise QuantizationError(f"{self!r} has no population to average")

        means = (channels * populations[:, None]).sum(axis=0) / total
        width = self.context.width
        color = tuple(widen(math.floor(mean + 0.5), width) for mean in means)
        return Swatch(color=color, population=total)


def split_boxes(initial: Vbox, max_size: int) -> list[Vbox]:
    """
    Split boxes, largest volume first, until there are `max_size` of them or
    none can be split further.

    Equal volumes pop in insertion order. Returns the boxes by descending volume.
    """
    queue = []
    counter = itertools.count()

    def offer(box: Vbox):
        heapq.heappush(queue, (-box.volume, next(counter), box))

    offer(initial)
    while len(queue) < max_size:
        _, _, vbox = heapq.heappop(queue)
        if not vbox.can_split():
            # Every remaining box holds a single color
            offer(vbox)
            break
        offer(vbox.split())
        offer(vbox)

    return [box for _, _, box in sorted(queue)]


# =============================================================================
# Stage 5: Quantizer
# =============================================================================

class ColorCutQuantizer:
    """
    Reduce a pixel stream to at most `config.max_colors` swatches.

    Attributes:
        histogram: Packed color -> population after filtering and collapse
        colors: Packed colors in partition order
        quantized_colors: Resulting swatches, in no particular order
    """

    def __init__(self, pixels, config: Optional[QuantizerConfig] = None):
        self.config = config or QuantizerConfig()
        width = self.config.word_width

        histogram = build_histogram(pixels, width)
        self.pixel_count = sum(histogram.values())
        logger.debug("Histogram: %d pixels, %d distinct colors", self.pixel_count, len(histogram))

        histogram = filter_histogram(
            histogram, self.config.min_brightness, self.config.min_saturation, width
        )
        logger.debug("Colors after filtering: %d", len(histogram))

        if self.config.distance_weighting:
            histogram = collapse_similar_colors(histogram, width)

        self.histogram = histogram
        self.colors = np.fromiter(histogram.keys(), dtype=np.int64, count=len(histogram))

        if len(histogram) <= self.config.max_colors:
            # Fewer colors than requested, so use them directly
            self.quantized_colors = [
                Swatch(color=approximate_rgb(key, width), population=count)
                for key, count in histogram.items()
            ]
        else:
            self.quantized_colors = self._quantize_pixels()

    def _quantize_pixels(self) -> list[Swatch]:
        context = QuantizationContext(self.colors, self.histogram, self.config.word_width)
        initial = Vbox(context, 0, len(self.colors) - 1)
        boxes = split_boxes(initial, self.config.max_colors)
        logger.debug("Split %d colors into %d boxes", len(self.colors), len(boxes))
        return [box.average_color() for box in boxes]


def quantize(pixels, max_colors: int = DEFAULT_MAX_COLORS,
             min_brightness: Optional[float] = None,
             min_saturation: Optional[float] = None,
             distance_weighting: bool = False,
             word_width: int = QUANTIZE_WORD_WIDTH) -> list[Swatch]:
    """Quantize pixels and return the palette swatches."""
    config = QuantizerConfig(
        max_colors=max_colors,
        min_brightness=min_brightness,
        min_saturation=min_saturation,
        distance_weighting=distance_weighting,
        word_width=word_width,
    )
    return ColorCutQuantizer(pixels, config).quantized_colors
