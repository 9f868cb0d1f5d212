"""
Tests for pixel buffer preprocessing module.
"""

import pytest
import numpy as np
import sys
from pathlib import Path

# Add package to path
sys.path.insert(0, str(Path(__file__).parent.parent / "qrharvest"))


def _gray_buffer(values: np.ndarray) -> np.ndarray:
    """Build an opaque RGBA buffer with R=G=B=values."""
    values = values.astype(np.uint8)
    buf = np.empty(values.shape + (4,), dtype=np.uint8)
    buf[..., :3] = values[..., None]
    buf[..., 3] = 255
    return buf


class TestBufferHelpers:
    """Test conversion and validation helpers."""

    def test_to_rgba_from_gray(self):
        from utils.images import to_rgba

        gray = np.full((20, 30), 77, dtype=np.uint8)
        result = to_rgba(gray)

        assert result.shape == (20, 30, 4)
        assert np.all(result[..., :3] == 77)
        assert np.all(result[..., 3] == 255)

    def test_to_rgba_from_bgr(self):
        from utils.images import to_rgba

        bgr = np.zeros((10, 10, 3), dtype=np.uint8)
        bgr[..., 0] = 200  # blue in OpenCV order

        result = to_rgba(bgr)

        assert result.shape == (10, 10, 4)
        assert np.all(result[..., 2] == 200)
        assert np.all(result[..., 0] == 0)

    def test_to_rgba_rejects_bad_shape(self):
        from utils.images import to_rgba

        with pytest.raises(ValueError):
            to_rgba(np.zeros((4, 4, 2), dtype=np.uint8))

    def test_validate_buffer(self):
        from utils.images import validate_buffer

        with pytest.raises(ValueError):
            validate_buffer(np.zeros((10, 10, 3), dtype=np.uint8))
        with pytest.raises(ValueError):
            validate_buffer(np.zeros((10, 10, 4), dtype=np.float32))
        with pytest.raises(ValueError):
            validate_buffer([[0, 0, 0, 0]])

    def test_luminance_weights(self):
        from utils.images import luminance

        buf = np.zeros((1, 3, 4), dtype=np.uint8)
        buf[0, 0, :3] = (255, 0, 0)
        buf[0, 1, :3] = (0, 255, 0)
        buf[0, 2, :3] = (0, 0, 255)

        lum = luminance(buf)

        assert lum.tolist() == [[76, 150, 29]]


class TestFiltering:
    """Test blur, sharpen and local equalization."""

    @pytest.fixture
    def edge_buffer(self):
        values = np.full((40, 40), 200, dtype=np.uint8)
        values[:, :20] = 50
        return _gray_buffer(values)

    @pytest.mark.parametrize("name,kwargs", [
        ("blur", {"radius": 2}),
        ("sharpen", {"amount": 0.7, "radius": 1}),
        ("local_histogram_equalize", {"tile_size": 16}),
        ("dilate", {"kernel_size": 3}),
        ("erode", {"kernel_size": 3}),
        ("close", {"kernel_size": 3}),
        ("adaptive_threshold", {"window_size": 15}),
        ("otsu_threshold", {}),
    ])
    def test_transforms_are_pure(self, edge_buffer, name, kwargs):
        """Every transform keeps dimensions and leaves its input untouched."""
        import utils.images as images

        original = edge_buffer.copy()
        result = getattr(images, name)(edge_buffer, **kwargs)

        assert result.shape == edge_buffer.shape
        assert result.dtype == np.uint8
        assert result is not edge_buffer
        np.testing.assert_array_equal(edge_buffer, original)

    def test_blur_uniform_is_unchanged(self):
        from utils.images import blur

        buf = _gray_buffer(np.full((25, 25), 123))
        np.testing.assert_array_equal(blur(buf, 2), buf)

    def test_blur_softens_edges(self, edge_buffer):
        from utils.images import blur

        result = blur(edge_buffer, 3)

        # pixels next to the edge move towards each other
        assert result[20, 19, 0] > 50
        assert result[20, 20, 0] < 200

    def test_sharpen_increases_edge_contrast(self, edge_buffer):
        from utils.images import sharpen

        result = sharpen(edge_buffer, amount=1.0, radius=2)

        assert result[20, 19, 0] < 50
        assert result[20, 20, 0] > 200
        assert np.all(result[..., 3] == 255)

    def test_local_histogram_equalize_stretches_low_contrast(self):
        from utils.images import local_histogram_equalize

        values = np.full((32, 32), 120, dtype=np.uint8)
        values[:, :16] = 100
        buf = _gray_buffer(values)

        result = local_histogram_equalize(buf, tile_size=32)

        assert result[0, 0, 0] == 128
        assert result[0, 31, 0] == 255

    def test_local_histogram_equalize_preserves_alpha(self):
        from utils.images import local_histogram_equalize

        buf = _gray_buffer(np.full((16, 16), 90))
        buf[..., 3] = 42

        result = local_histogram_equalize(buf, tile_size=8)

        assert np.all(result[..., 3] == 42)


class TestMorphology:
    """Test luminance morphology."""

    @pytest.fixture
    def speck_buffer(self):
        values = np.full((15, 15), 255, dtype=np.uint8)
        values[7, 7] = 0
        return _gray_buffer(values)

    def test_dilate_removes_dark_speck(self, speck_buffer):
        from utils.images import dilate

        result = dilate(speck_buffer, 3)

        assert np.all(result[..., :3] == 255)

    def test_erode_grows_dark_speck(self, speck_buffer):
        from utils.images import erode

        result = erode(speck_buffer, 3)

        assert np.all(result[6:9, 6:9, :3] == 0)
        assert result[5, 5, 0] == 255

    def test_close_fills_isolated_hole(self, speck_buffer):
        from utils.images import close

        result = close(speck_buffer, 3)

        assert np.all(result[..., :3] == 255)


class TestBinarization:
    """Test fixed, Otsu and adaptive thresholding."""

    @pytest.fixture
    def bimodal_values(self):
        rng = np.random.default_rng(0)
        values = np.full((60, 60), 180, dtype=np.int16)
        values[15:45, 15:45] = 60
        noise = rng.integers(-10, 11, size=values.shape)
        return (values + noise).astype(np.uint8)

    def test_threshold(self):
        from utils.images import threshold

        buf = _gray_buffer(np.array([[10, 127, 128, 200]]))
        result = threshold(buf, 128)

        assert result[0, :, 0].tolist() == [0, 0, 255, 255]

    def test_threshold_uses_unrounded_luminance(self):
        from utils.images import luminance, threshold

        buf = np.zeros((1, 1, 4), dtype=np.uint8)
        buf[0, 0] = (85, 85, 84, 255)  # luminance 84.886

        assert luminance(buf)[0, 0] == 85
        assert threshold(buf, 85)[0, 0, 0] == 0
        assert threshold(buf, 84)[0, 0, 0] == 255

    def test_otsu_threshold_matches_level_partition(self, bimodal_values):
        from utils.images import luminance, otsu_level, otsu_threshold

        buf = _gray_buffer(bimodal_values)
        dark = luminance(buf) <= otsu_level(buf)

        np.testing.assert_array_equal(otsu_threshold(buf)[..., 0] == 0, dark)

    def test_otsu_level_two_levels(self):
        from utils.images import otsu_level

        values = np.full((20, 20), 180, dtype=np.uint8)
        values[:, :10] = 60

        assert otsu_level(_gray_buffer(values)) == 60

    def test_otsu_threshold_separates_regions(self):
        from utils.images import otsu_threshold

        values = np.full((20, 20), 180, dtype=np.uint8)
        values[:, :10] = 60
        result = otsu_threshold(_gray_buffer(values))

        assert np.all(result[:, :10, 0] == 0)
        assert np.all(result[:, 10:, 0] == 255)

    def test_otsu_tracks_brightness_shift(self, bimodal_values):
        """A global shift moves the level by the same amount and keeps the partition."""
        from utils.images import otsu_level, otsu_threshold

        base = _gray_buffer(bimodal_values)
        shifted = _gray_buffer(bimodal_values.astype(np.int16) + 30)

        assert otsu_level(shifted) == otsu_level(base) + 30
        np.testing.assert_array_equal(otsu_threshold(shifted), otsu_threshold(base))

    def test_otsu_uniform_image(self):
        from utils.images import otsu_level

        assert otsu_level(_gray_buffer(np.full((10, 10), 200))) == 0

    def test_adaptive_threshold_matches_naive_window_mean(self):
        from utils.images import adaptive_threshold

        rng = np.random.default_rng(1)
        values = rng.integers(0, 256, size=(18, 23)).astype(np.uint8)
        window, sensitivity = 5, 0.85

        result = adaptive_threshold(_gray_buffer(values), window, sensitivity)

        half = window // 2
        h, w = values.shape
        expected = np.zeros_like(values)
        for y in range(h):
            for x in range(w):
                patch = values[max(0, y - half):min(h, y + half + 1),
                               max(0, x - half):min(w, x + half + 1)]
                mean = patch.astype(np.float64).mean()
                expected[y, x] = 255 if values[y, x] > mean * sensitivity else 0

        np.testing.assert_array_equal(result[..., 0], expected)

    def test_adaptive_threshold_black_square(self):
        from utils.images import adaptive_threshold

        values = np.full((60, 60), 255, dtype=np.uint8)
        values[20:40, 20:40] = 0

        result = adaptive_threshold(_gray_buffer(values), 15, 0.85)

        assert np.all(result[25:35, 25:35, 0] == 0)
        assert np.all(result[:10, :, 0] == 255)

    def test_binary_outputs_only_two_levels(self, bimodal_values):
        from utils.images import adaptive_threshold, otsu_threshold, threshold

        buf = _gray_buffer(bimodal_values)
        for result in (otsu_threshold(buf), adaptive_threshold(buf), threshold(buf, 128)):
            assert set(np.unique(result[..., :3])) <= {0, 255}


class TestResize:

    def test_resize_dimensions(self):
        from utils.images import resize

        buf = _gray_buffer(np.full((100, 200), 255))

        assert resize(buf, 0.5).shape == (50, 100, 4)
        assert resize(buf, 1.5).shape == (150, 300, 4)

    def test_resize_collapse_raises(self):
        from utils.images import resize

        with pytest.raises(ValueError):
            resize(_gray_buffer(np.full((4, 4), 255)), 0.1)
