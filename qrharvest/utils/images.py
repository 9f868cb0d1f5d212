"""
Pixel buffer preprocessing utilities for the QR extraction pipeline.

All transforms take an RGBA ``uint8`` buffer of shape (height, width, 4) and
return a new buffer with the same dimensions. Inputs are never modified.

Provides:
- Buffer conversion and validation
- Blur and unsharp masking
- Local (tiled) histogram equalization
- Luminance morphology (dilate, erode, close)
- Binarization (fixed, Otsu, adaptive/integral-image)
- Resampling
"""

import logging
from typing import Tuple
import numpy as np

logger = logging.getLogger(__name__)

# ITU-R BT.601 luma weights in thousandths, RGB order
LUMA_WEIGHTS = (299, 587, 114)
WHITE = 255
BLACK = 0


# ============================================================================
# Buffer Helpers
# ============================================================================

def validate_buffer(image: np.ndarray) -> np.ndarray:
    """
    Check that an array is a usable RGBA pixel buffer.

    Args:
        image: Candidate buffer

    Returns:
        The same array

    Raises:
        ValueError: If the array is not a non-empty (H, W, 4) uint8 array
    """
    if not isinstance(image, np.ndarray):
        raise ValueError(f"Expected numpy array, got {type(image).__name__}")
    if image.dtype != np.uint8:
        raise ValueError(f"Expected uint8 buffer, got {image.dtype}")
    if image.ndim != 3 or image.shape[2] != 4:
        raise ValueError(f"Expected RGBA buffer of shape (H, W, 4), got {image.shape}")
    if image.shape[0] == 0 or image.shape[1] == 0:
        raise ValueError(f"Empty buffer: {image.shape}")
    return image


def to_rgba(image: np.ndarray) -> np.ndarray:
    """
    Convert an OpenCV-style image to an RGBA pixel buffer.

    Args:
        image: Grayscale (H, W), BGR (H, W, 3), single channel (H, W, 1)
            or RGBA (H, W, 4) uint8 image

    Returns:
        New RGBA buffer
    """
    import cv2

    if not isinstance(image, np.ndarray) or image.dtype != np.uint8:
        raise ValueError("Expected a uint8 numpy array")

    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
    elif image.ndim == 3:
        if image.shape[2] == 1:
            return cv2.cvtColor(image[:, :, 0], cv2.COLOR_GRAY2RGBA)
        elif image.shape[2] == 3:
            return cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)
        elif image.shape[2] == 4:
            return image.copy()

    raise ValueError(f"Unexpected image shape: {image.shape}")


def luminance_plane(image: np.ndarray) -> np.ndarray:
    """Unrounded luminance of an RGBA buffer as float64, shape (H, W)."""
    rgb = image[..., :3].astype(np.int32)
    weighted = (
        rgb[..., 0] * LUMA_WEIGHTS[0]
        + rgb[..., 1] * LUMA_WEIGHTS[1]
        + rgb[..., 2] * LUMA_WEIGHTS[2]
    )
    return weighted / 1000.0


def luminance(image: np.ndarray) -> np.ndarray:
    """
    Compute the per-pixel luminance plane of an RGBA buffer.

    Returns:
        uint8 array of shape (H, W), rounded to the nearest level
    """
    return np.clip(np.rint(luminance_plane(image)), 0, 255).astype(np.uint8)


def _from_gray(values: np.ndarray, alpha: np.ndarray) -> np.ndarray:
    """Build an RGBA buffer with R=G=B=values and the given alpha plane."""
    out = np.empty(values.shape + (4,), dtype=np.uint8)
    out[..., 0] = values
    out[..., 1] = values
    out[..., 2] = values
    out[..., 3] = alpha
    return out


def dimensions(image: np.ndarray) -> Tuple[int, int]:
    """Return (width, height) of a buffer."""
    return int(image.shape[1]), int(image.shape[0])


# ============================================================================
# Filtering
# ============================================================================

def blur(image: np.ndarray, radius: int = 1) -> np.ndarray:
    """
    Gaussian blur with a (2r+1)-square kernel and sigma r/3.

    Args:
        image: RGBA buffer
        radius: Kernel radius in pixels (0 returns a copy)

    Returns:
        Blurred buffer
    """
    import cv2

    validate_buffer(image)
    if radius < 1:
        return image.copy()

    size = 2 * radius + 1
    sigma = radius / 3.0
    return cv2.GaussianBlur(
        image,
        (size, size),
        sigmaX=sigma,
        sigmaY=sigma,
        borderType=cv2.BORDER_REPLICATE
    )


def sharpen(image: np.ndarray, amount: float = 0.5, radius: int = 1) -> np.ndarray:
    """
    Unsharp masking: ``original + amount * (original - blurred)``.

    Args:
        image: RGBA buffer
        amount: Strength of the edge boost
        radius: Blur radius used for the mask

    Returns:
        Sharpened buffer (alpha preserved)
    """
    blurred = blur(image, radius)

    original = image[..., :3].astype(np.float32)
    enhanced = original + amount * (original - blurred[..., :3].astype(np.float32))

    out = image.copy()
    out[..., :3] = np.clip(np.rint(enhanced), 0, 255).astype(np.uint8)
    return out


def local_histogram_equalize(image: np.ndarray, tile_size: int = 64) -> np.ndarray:
    """
    Equalize luminance independently inside each non-overlapping tile.

    Each pixel's luminance is remapped through its tile's cumulative
    distribution; the RGB channels are scaled by the same ratio so hue is
    kept.

    Args:
        image: RGBA buffer
        tile_size: Edge length of the square tiles

    Returns:
        Equalized buffer (alpha preserved)
    """
    validate_buffer(image)
    if tile_size < 1:
        raise ValueError(f"tile_size must be positive, got {tile_size}")

    lum = luminance(image)
    rgb = image[..., :3].astype(np.float32)
    out = image.copy()
    h, w = lum.shape

    for ty in range(0, h, tile_size):
        for tx in range(0, w, tile_size):
            tile = lum[ty:ty + tile_size, tx:tx + tile_size]

            histogram = np.bincount(tile.ravel(), minlength=256)
            cdf = np.cumsum(histogram)
            mapping = np.rint(cdf / tile.size * 255.0)

            new_lum = mapping[tile]
            ratio = new_lum / np.maximum(tile, 1)

            region = rgb[ty:ty + tile_size, tx:tx + tile_size]
            scaled = np.clip(np.rint(region * ratio[..., None]), 0, 255)
            out[ty:ty + tile_size, tx:tx + tile_size, :3] = scaled.astype(np.uint8)

    return out


# ============================================================================
# Morphology
# ============================================================================

def _square_kernel(kernel_size: int) -> np.ndarray:
    if kernel_size < 1:
        raise ValueError(f"kernel_size must be positive, got {kernel_size}")
    # window spans -k//2..k//2, so even sizes round up to the next odd size
    size = 2 * (kernel_size // 2) + 1
    return np.ones((size, size), dtype=np.uint8)


def dilate(image: np.ndarray, kernel_size: int = 3) -> np.ndarray:
    """
    Luminance dilation: each pixel becomes the brightest luminance in its window.

    Returns:
        Gray RGBA buffer (alpha preserved)
    """
    import cv2

    validate_buffer(image)
    result = cv2.dilate(
        luminance(image),
        _square_kernel(kernel_size),
        borderType=cv2.BORDER_REPLICATE
    )
    return _from_gray(result, image[..., 3])


def erode(image: np.ndarray, kernel_size: int = 3) -> np.ndarray:
    """
    Luminance erosion: each pixel becomes the darkest luminance in its window.

    Returns:
        Gray RGBA buffer (alpha preserved)
    """
    import cv2

    validate_buffer(image)
    result = cv2.erode(
        luminance(image),
        _square_kernel(kernel_size),
        borderType=cv2.BORDER_REPLICATE
    )
    return _from_gray(result, image[..., 3])


def close(image: np.ndarray, kernel_size: int = 3) -> np.ndarray:
    """Morphological closing (dilate, then erode)."""
    return erode(dilate(image, kernel_size), kernel_size)


# ============================================================================
# Binarization
# ============================================================================

def threshold(image: np.ndarray, value: int) -> np.ndarray:
    """
    Fixed global binarization.

    Args:
        image: RGBA buffer
        value: Pixels whose unrounded luminance is below this become black,
            others white

    Returns:
        Binary RGBA buffer (alpha preserved)
    """
    validate_buffer(image)
    binary = np.where(luminance_plane(image) < value, BLACK, WHITE).astype(np.uint8)
    return _from_gray(binary, image[..., 3])


def otsu_level(image: np.ndarray) -> int:
    """
    Pick a global threshold with Otsu's method.

    Builds a 256-bin luminance histogram and returns the level ``t`` that
    maximises the between-class variance of the partitions ``[0..t]`` and
    ``[t+1..255]``. The first maximum wins; a histogram with a single
    populated level yields 0.

    Args:
        image: RGBA buffer

    Returns:
        Threshold level in [0, 255]
    """
    validate_buffer(image)

    histogram = np.bincount(luminance(image).ravel(), minlength=256).astype(np.float64)
    levels = np.arange(256, dtype=np.float64)
    total = histogram.sum()

    weight_bg = np.cumsum(histogram)
    sum_bg = np.cumsum(histogram * levels)
    weight_fg = total - weight_bg
    sum_total = sum_bg[-1]

    valid = (weight_bg > 0) & (weight_fg > 0)
    if not valid.any():
        return 0

    mean_bg = sum_bg / np.maximum(weight_bg, 1)
    mean_fg = (sum_total - sum_bg) / np.maximum(weight_fg, 1)
    variance = np.where(valid, weight_bg * weight_fg * (mean_bg - mean_fg) ** 2, 0.0)

    level = int(np.argmax(variance))
    if variance[level] <= 0:
        return 0

    logger.debug(f"Otsu threshold selected: {level}")
    return level


def otsu_threshold(image: np.ndarray) -> np.ndarray:
    """Binarize with the Otsu level; luminance at or below it becomes black."""
    level = otsu_level(image)
    binary = np.where(luminance(image) <= level, BLACK, WHITE).astype(np.uint8)
    return _from_gray(binary, image[..., 3])


def adaptive_threshold(
    image: np.ndarray,
    window_size: int = 15,
    sensitivity: float = 0.85
) -> np.ndarray:
    """
    Local-mean binarization backed by an integral image.

    The luminance integral image is built once; each pixel's window mean is
    then read in constant time. A pixel is white when its luminance exceeds
    ``local_mean * sensitivity``.

    Args:
        image: RGBA buffer
        window_size: Edge length of the averaging window (clamped at borders)
        sensitivity: Fraction of the local mean a pixel must exceed

    Returns:
        Binary RGBA buffer (alpha preserved)
    """
    import cv2

    validate_buffer(image)
    if window_size < 1:
        raise ValueError(f"window_size must be positive, got {window_size}")

    lum = luminance(image)
    h, w = lum.shape
    integral = cv2.integral(lum, sdepth=cv2.CV_64F)

    half = window_size // 2
    rows = np.arange(h)
    cols = np.arange(w)

    # inclusive window bounds translated to integral-image coordinates
    top = np.clip(rows - half, 0, h - 1)[:, None]
    bottom = (np.clip(rows + half, 0, h - 1) + 1)[:, None]
    left = np.clip(cols - half, 0, w - 1)[None, :]
    right = (np.clip(cols + half, 0, w - 1) + 1)[None, :]

    window_sum = (
        integral[bottom, right]
        - integral[top, right]
        - integral[bottom, left]
        + integral[top, left]
    )
    count = (bottom - top) * (right - left)
    local_mean = window_sum / count

    binary = np.where(lum > local_mean * sensitivity, WHITE, BLACK).astype(np.uint8)
    return _from_gray(binary, image[..., 3])


# ============================================================================
# Geometry
# ============================================================================

def resize(image: np.ndarray, scale: float) -> np.ndarray:
    """
    Resample a buffer by a uniform factor.

    Args:
        image: RGBA buffer
        scale: Resize factor (area interpolation when shrinking, cubic when enlarging)

    Returns:
        Resized buffer
    """
    import cv2

    validate_buffer(image)
    if scale == 1.0:
        return image.copy()

    width, height = dimensions(image)
    new_width = int(width * scale)
    new_height = int(height * scale)
    if new_width < 1 or new_height < 1:
        raise ValueError(f"Scale {scale} collapses {width}x{height} buffer")

    interpolation = cv2.INTER_CUBIC if scale > 1 else cv2.INTER_AREA
    resized = cv2.resize(image, (new_width, new_height), interpolation=interpolation)

    logger.debug(f"Resized buffer: {width}x{height} -> {new_width}x{new_height} (scale={scale:.2f})")
    return resized
