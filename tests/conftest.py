"""
pytest configuration and shared fixtures for the palette extractor test suite
"""

import tempfile
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from color_convert import pack
from color_cut import QuantizationContext


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def black_image():
    """A 2x2 all-black RGB image."""
    return np.zeros((2, 2, 3), dtype=np.uint8)


@pytest.fixture
def saturated_pixels():
    """20 distinct fully saturated colors with uneven pixel counts."""
    pixels = []
    for i in range(20):
        pixels.extend([(255, 8 * i, 0)] * (i + 1))
    return np.array(pixels, dtype=np.uint8)


@pytest.fixture
def sample_image_rgb():
    """A simple 10x10 RGB image with known colors."""
    image = np.zeros((10, 10, 3), dtype=np.uint8)

    image[0:3, 0:3] = [255, 0, 0]       # Red
    image[0:3, 3:6] = [0, 255, 0]       # Green
    image[0:3, 6:10] = [0, 0, 255]      # Blue
    image[3:6, 0:3] = [255, 255, 0]     # Yellow
    image[3:6, 3:6] = [255, 0, 255]     # Magenta
    image[3:6, 6:10] = [0, 255, 255]    # Cyan
    image[6:10, 0:10] = [128, 128, 128] # Gray

    return image


@pytest.fixture
def sample_image_path(sample_image_rgb, temp_dir):
    """Save the sample RGB image to a temporary PNG and return the path."""
    image_path = temp_dir / "sample_image.png"
    Image.fromarray(sample_image_rgb).save(image_path)
    return str(image_path)


@pytest.fixture
def gradient_image():
    """A 64x64 diagonal gradient with many distinct colors."""
    height, width = 64, 64
    y, x = np.mgrid[0:height, 0:width]
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[..., 0] = 255 * x // width
    image[..., 1] = 255 * y // height
    image[..., 2] = 255 * (x + y) // (width + height)
    return image


@pytest.fixture
def random_context():
    """A quantization context over 200 distinct random colors."""
    rng = np.random.default_rng(42)
    keys = rng.choice(1 << 15, size=200, replace=False).astype(np.int64)
    counts = rng.integers(1, 50, size=200)
    histogram = {int(k): int(c) for k, c in zip(keys, counts)}
    return QuantizationContext(colors=keys, histogram=histogram)


@pytest.fixture
def make_context():
    """Factory building a context from [((r, g, b), count), ...] with 8-bit colors."""
    def _make(colors_with_counts):
        keys = [pack(*rgb) for rgb, _ in colors_with_counts]
        histogram = {key: count for key, (_, count) in zip(keys, colors_with_counts)}
        return QuantizationContext(colors=np.array(keys, dtype=np.int64), histogram=histogram)
    return _make
