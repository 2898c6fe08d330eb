"""
Test the similarity collapse (distance weighting) pass.
"""

import tracemalloc

import numpy as np
import pytest
from scipy.spatial.distance import cdist

import color_cut
from color_convert import approximate_rgb_array, pack, rgb_to_xyz


BLUE = pack(0, 0, 255)
GREEN = pack(0, 255, 0)
RED = pack(255, 0, 0)
NEAR_RED = pack(248, 8, 0)


@pytest.fixture
def histogram():
    return {BLUE: 4, GREEN: 6, RED: 20, NEAR_RED: 9}


class TestCollapseSimilarColors:
    """Test merging near-duplicate colors and boosting isolated ones."""

    @pytest.mark.parametrize("histogram", [{}, {RED: 3}])
    def test_fewer_than_two_colors_is_noop(self, histogram):
        assert color_cut.collapse_similar_colors(histogram) == histogram

    def test_near_duplicate_is_dropped(self, histogram):
        collapsed = color_cut.collapse_similar_colors(histogram)
        assert set(collapsed) == {BLUE, GREEN, RED}

    def test_first_color_in_order_wins(self):
        histogram = {NEAR_RED: 9, RED: 20, BLUE: 4, GREEN: 6}
        collapsed = color_cut.collapse_similar_colors(histogram)
        assert set(collapsed) == {NEAR_RED, BLUE, GREEN}

    def test_kept_colors_are_boosted(self, histogram):
        collapsed = color_cut.collapse_similar_colors(histogram)
        max_population = max(histogram.values())
        for key, population in collapsed.items():
            boost = population - histogram[key]
            assert boost > 0
            assert boost % (2 * max_population) == 0

    def test_boost_matches_mean_distance_ratio(self, histogram):
        keys = list(histogram)
        xyz = rgb_to_xyz(approximate_rgb_array(np.array(keys)))
        distances = cdist(xyz, xyz)
        radius = distances.mean() / color_cut.COLLAPSE_RADIUS_DIVISOR

        collapsed = color_cut.collapse_similar_colors(histogram)
        for i, key in enumerate(keys):
            if key in collapsed:
                expected = histogram[key] + 20 * int(np.floor(distances[i].mean() / radius)) * 2
                assert collapsed[key] == expected

    def test_does_not_mutate_input(self, histogram):
        original = dict(histogram)
        color_cut.collapse_similar_colors(histogram)
        assert histogram == original

    def test_quantizer_applies_collapse(self, histogram):
        pixels = []
        for key, count in histogram.items():
            rgb = tuple(int(c) for c in approximate_rgb_array(np.array([key]))[0])
            pixels.extend([rgb] * count)

        config = color_cut.QuantizerConfig(distance_weighting=True)
        quantizer = color_cut.ColorCutQuantizer(pixels, config)

        assert set(quantizer.histogram) == {BLUE, GREEN, RED}
        assert len(quantizer.quantized_colors) == 3
        assert quantizer.pixel_count == sum(histogram.values())


class TestCollapseLargeHistograms:
    """Test collapsing histograms with thousands of colors."""

    @pytest.fixture
    def large_histogram(self):
        rng = np.random.default_rng(5)
        keys = rng.choice(1 << 15, size=4000, replace=False)
        counts = rng.integers(1, 100, size=4000)
        return {int(k): int(c) for k, c in zip(keys, counts)}

    def test_peak_memory_stays_linear(self, large_histogram):
        # A dense 4000x4000 distance matrix alone would take 128 MB
        tracemalloc.start()
        try:
            color_cut.collapse_similar_colors(large_histogram)
            _, peak = tracemalloc.get_traced_memory()
        finally:
            tracemalloc.stop()
        assert peak < 40_000_000

    def test_matches_dense_computation(self, monkeypatch):
        rng = np.random.default_rng(9)
        keys = [int(k) for k in rng.choice(1 << 15, size=700, replace=False)]
        histogram = {k: int(c) for k, c in zip(keys, rng.integers(1, 100, size=700))}
        monkeypatch.setattr(color_cut, 'COLLAPSE_BLOCK_ROWS', 64)

        xyz = rgb_to_xyz(approximate_rgb_array(np.array(keys)))
        distances = cdist(xyz, xyz)
        row_sums = distances.sum(axis=1)
        radius = row_sums.sum() / (700 * 700) / color_cut.COLLAPSE_RADIUS_DIVISOR
        max_population = max(histogram.values())

        expected = {}
        kept = []
        for i, key in enumerate(keys):
            if kept and (distances[i, kept] < radius).any():
                continue
            kept.append(i)
            ratio = int(np.floor(row_sums[i] / 700 / radius))
            expected[key] = histogram[key] + max_population * ratio * 2

        assert color_cut.collapse_similar_colors(histogram) == expected
