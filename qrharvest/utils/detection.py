"""
QR detection engine.

Combines a primitive locate-and-decode step (OpenCV's QRCodeDetector) with a
scan-and-clear loop that paints over each decoded symbol so further symbols
in the same frame become visible. Four strategies build on the preprocessing
toolkit and run concurrently on private copies of the input buffer:

- multi_scale: resample at several factors, stop at the first hit
- enhanced_preprocessing: blur/sharpen/equalize/close pipeline, stop at first hit
- binarization: Otsu, adaptive and fixed thresholds, stop at first hit
- region_based: overlapping tiles scanned independently, all hits kept

Results are merged as a union of payload strings.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from .errors import BufferAcquisitionError, StrategyError
from .images import (
    adaptive_threshold,
    blur,
    close,
    dimensions,
    local_histogram_equalize,
    luminance,
    otsu_threshold,
    resize,
    sharpen,
    threshold,
    validate_buffer,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Defaults
# ============================================================================

MAX_SCAN_ATTEMPTS = 10
MIN_DIMENSION = 50
DEFAULT_SCALES = (1.0, 0.8, 1.2, 0.6, 1.5, 0.4)
# (window size, sensitivity) pairs
DEFAULT_ADAPTIVE_WINDOWS = ((15, 0.85), (25, 0.90), (35, 0.80))
DEFAULT_FIXED_THRESHOLDS = (85, 128, 170)
REGION_MAX_SIZE = 512
REGION_OVERLAP = 0.2
MIN_REGION_SIZE = 100
CLEAR_PADDING = 0.05

STRATEGY_NAMES = (
    "multi_scale",
    "enhanced_preprocessing",
    "binarization",
    "region_based",
)

WHITE_RGBA = (255, 255, 255, 255)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class StrategyResult:
    """Outcome of one detection strategy."""
    strategy: str
    payloads: List[str] = field(default_factory=list)
    processing_time: float = 0.0
    stage: Optional[str] = None  # scale/stage/method that produced the hit

    @property
    def found(self) -> bool:
        return bool(self.payloads)


@dataclass
class DetectionReport:
    """Merged outcome of all strategies for one buffer."""
    payloads: List[str] = field(default_factory=list)
    strategy_results: List[StrategyResult] = field(default_factory=list)
    failed_strategies: List[str] = field(default_factory=list)
    processing_time: float = 0.0
    skipped: bool = False

    @property
    def payload_set(self) -> Set[str]:
        return set(self.payloads)


# ============================================================================
# Primitives
# ============================================================================

def merge_payloads(groups: Iterable[Iterable[str]]) -> List[str]:
    """Union of payload groups, deduplicated by string equality in first-seen order."""
    seen = set()
    merged = []
    for group in groups:
        for payload in group:
            if payload not in seen:
                seen.add(payload)
                merged.append(payload)
    return merged


def locate_and_decode(image: np.ndarray) -> Optional[Tuple[str, np.ndarray]]:
    """
    Find and decode one QR symbol.

    The single-symbol detector gives up when several codes share the frame,
    so the multi-symbol detector is tried next and its first decoded entry
    is returned.

    Args:
        image: RGBA buffer

    Returns:
        (payload, quad) where quad is a (4, 2) float array of corner points,
        or None if nothing was decoded
    """
    import cv2

    gray = luminance(image)
    detector = cv2.QRCodeDetector()

    data, points, _ = detector.detectAndDecode(gray)
    if data and points is not None:
        return data, np.asarray(points, dtype=np.float32).reshape(-1, 2)

    found, decoded, multi_points, _ = detector.detectAndDecodeMulti(gray)
    if not found or multi_points is None:
        return None

    quads = np.asarray(multi_points, dtype=np.float32).reshape(-1, 4, 2)
    for payload, quad in zip(decoded, quads):
        if payload:
            return payload, quad
    return None


def clear_quad(image: np.ndarray, quad: np.ndarray, padding: float = CLEAR_PADDING) -> None:
    """
    Paint a quadrilateral white in place.

    The quad is grown about its centroid by ``padding`` (fraction of its size)
    so anti-aliased module edges are covered too.
    """
    import cv2

    centroid = quad.mean(axis=0)
    expanded = centroid + (quad - centroid) * (1.0 + padding)
    cv2.fillConvexPoly(image, np.rint(expanded).astype(np.int32), WHITE_RGBA)


def scan_and_clear(
    image: np.ndarray,
    max_attempts: int = MAX_SCAN_ATTEMPTS,
    clear_padding: float = CLEAR_PADDING
) -> List[str]:
    """
    Repeatedly decode a buffer, clearing each found symbol before rescanning.

    The buffer is modified in place; callers pass a copy they own.

    Args:
        image: RGBA buffer
        max_attempts: Upper bound on decode attempts
        clear_padding: Growth factor applied to each cleared quad

    Returns:
        Payloads in the order they were found
    """
    found = []
    for _ in range(max_attempts):
        hit = locate_and_decode(image)
        if hit is None:
            break
        payload, quad = hit
        found.append(payload)
        clear_quad(image, quad, clear_padding)
    return found


# ============================================================================
# Detection Engine
# ============================================================================

class QRDetectionEngine:
    """
    Runs the detection strategies concurrently and merges their payloads.

    A strategy that raises is logged and excluded; the remaining strategies
    still contribute to the result.
    """

    def __init__(
        self,
        max_scan_attempts: int = MAX_SCAN_ATTEMPTS,
        min_dimension: int = MIN_DIMENSION,
        scales: Sequence[float] = DEFAULT_SCALES,
        adaptive_windows: Sequence[Tuple[int, float]] = DEFAULT_ADAPTIVE_WINDOWS,
        fixed_thresholds: Sequence[int] = DEFAULT_FIXED_THRESHOLDS,
        region_max_size: int = REGION_MAX_SIZE,
        region_overlap: float = REGION_OVERLAP,
        min_region_size: int = MIN_REGION_SIZE,
        clear_padding: float = CLEAR_PADDING,
        strategies: Sequence[str] = STRATEGY_NAMES,
        max_workers: Optional[int] = None
    ):
        if max_scan_attempts < 1:
            raise ValueError(f"max_scan_attempts must be >= 1, got {max_scan_attempts}")
        if not 0.0 <= region_overlap < 1.0:
            raise ValueError(f"region_overlap must be in [0, 1), got {region_overlap}")

        self.max_scan_attempts = max_scan_attempts
        self.min_dimension = min_dimension
        self.scales = tuple(scales)
        self.adaptive_windows = tuple(tuple(w) for w in adaptive_windows)
        self.fixed_thresholds = tuple(fixed_thresholds)
        self.region_max_size = region_max_size
        self.region_overlap = region_overlap
        self.min_region_size = min_region_size
        self.clear_padding = clear_padding

        registry: Dict[str, Callable[[np.ndarray], StrategyResult]] = {
            "multi_scale": self._multi_scale,
            "enhanced_preprocessing": self._enhanced_preprocessing,
            "binarization": self._binarization,
            "region_based": self._region_based,
        }
        unknown = [name for name in strategies if name not in registry]
        if unknown:
            raise ValueError(f"Unknown detection strategies: {unknown}")

        self.strategies: Dict[str, Callable[[np.ndarray], StrategyResult]] = {
            name: registry[name] for name in strategies
        }
        self.max_workers = max_workers or max(1, len(self.strategies))

    def detect(self, image: np.ndarray) -> Set[str]:
        """Return the set of payloads found in a buffer."""
        return self.detect_detailed(image).payload_set

    def detect_detailed(self, image: np.ndarray) -> DetectionReport:
        """
        Run every strategy on a buffer and merge the results.

        Args:
            image: RGBA buffer; not modified

        Returns:
            DetectionReport with merged payloads and per-strategy results

        Raises:
            BufferAcquisitionError: If the buffer is not a usable RGBA array
        """
        start_time = time.perf_counter()

        try:
            validate_buffer(image)
        except ValueError as e:
            raise BufferAcquisitionError(f"Unusable pixel buffer: {e}") from e

        width, height = dimensions(image)
        if width < self.min_dimension or height < self.min_dimension:
            logger.debug(
                f"Buffer {width}x{height} below {self.min_dimension}px floor, skipping detection"
            )
            return DetectionReport(skipped=True)

        results, failures = self._run_strategies(image)
        payloads = merge_payloads(r.payloads for r in results)
        elapsed = time.perf_counter() - start_time

        strategy_time = sum(r.processing_time for r in results)
        logger.debug(
            f"QR detection on {width}x{height}: {len(results)} strategies ran, "
            f"{len(failures)} failed, strategy time {strategy_time:.2f}s, "
            f"{len(payloads)} unique codes"
        )

        return DetectionReport(
            payloads=payloads,
            strategy_results=results,
            failed_strategies=[f.strategy for f in failures],
            processing_time=elapsed
        )

    def _run_strategies(self, image: np.ndarray) -> Tuple[List[StrategyResult], List[StrategyError]]:
        """Fan strategies out to a thread pool and wait for all of them."""
        results: List[StrategyResult] = []
        failures: List[StrategyError] = []

        with ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix="qr-strategy"
        ) as executor:
            futures = {
                name: executor.submit(strategy, image.copy())
                for name, strategy in self.strategies.items()
            }
            for name, future in futures.items():
                try:
                    results.append(future.result())
                except Exception as e:
                    error = StrategyError(name, e)
                    logger.warning(str(error))
                    failures.append(error)

        return results, failures

    def _scan(self, image: np.ndarray) -> List[str]:
        return scan_and_clear(image, self.max_scan_attempts, self.clear_padding)

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _multi_scale(self, image: np.ndarray) -> StrategyResult:
        start_time = time.perf_counter()
        width, height = dimensions(image)

        for scale in self.scales:
            if int(width * scale) < self.min_dimension or int(height * scale) < self.min_dimension:
                continue

            codes = self._scan(resize(image, scale))
            if codes:
                return StrategyResult(
                    strategy="multi_scale",
                    payloads=merge_payloads([codes]),
                    processing_time=time.perf_counter() - start_time,
                    stage=f"scale-{scale}"
                )

        return StrategyResult("multi_scale", processing_time=time.perf_counter() - start_time)

    def _preprocessing_stages(self) -> List[Tuple[str, Callable[[np.ndarray], np.ndarray]]]:
        return [
            ("original", lambda img: img.copy()),
            ("gaussian-blur", lambda img: blur(img, 1)),
            ("unsharp-mask", lambda img: sharpen(img, 0.7, 1)),
            ("local-histogram", lambda img: local_histogram_equalize(img, 64)),
            ("morphological-close", lambda img: close(img, 3)),
        ]

    def _enhanced_preprocessing(self, image: np.ndarray) -> StrategyResult:
        start_time = time.perf_counter()

        for name, processor in self._preprocessing_stages():
            codes = self._scan(processor(image))
            if codes:
                return StrategyResult(
                    strategy="enhanced_preprocessing",
                    payloads=merge_payloads([codes]),
                    processing_time=time.perf_counter() - start_time,
                    stage=name
                )

        return StrategyResult("enhanced_preprocessing", processing_time=time.perf_counter() - start_time)

    def _binarization_methods(self) -> List[Tuple[str, Callable[[np.ndarray], np.ndarray]]]:
        methods = [("otsu", otsu_threshold)]
        for window, sensitivity in self.adaptive_windows:
            methods.append((
                f"adaptive-{window}",
                lambda img, w=window, s=sensitivity: adaptive_threshold(img, w, s)
            ))
        for value in self.fixed_thresholds:
            methods.append((f"threshold-{value}", lambda img, v=value: threshold(img, v)))
        return methods

    def _binarization(self, image: np.ndarray) -> StrategyResult:
        start_time = time.perf_counter()

        for name, method in self._binarization_methods():
            codes = self._scan(method(image))
            if codes:
                return StrategyResult(
                    strategy="binarization",
                    payloads=merge_payloads([codes]),
                    processing_time=time.perf_counter() - start_time,
                    stage=name
                )

        return StrategyResult("binarization", processing_time=time.perf_counter() - start_time)

    def region_boxes(self, width: int, height: int) -> List[Tuple[int, int, int, int]]:
        """
        Overlapping square tiles covering a width x height frame.

        Returns:
            List of (x, y, tile_width, tile_height); tiles smaller than
            ``min_region_size`` in either direction are left out
        """
        region = int(min(self.region_max_size, max(width, height) / 2))
        step = max(1, int(region - region * self.region_overlap))

        boxes = []
        for y in range(0, height, step):
            for x in range(0, width, step):
                tile_w = min(region, width - x)
                tile_h = min(region, height - y)
                if tile_w < self.min_region_size or tile_h < self.min_region_size:
                    continue
                boxes.append((x, y, tile_w, tile_h))
        return boxes

    def _region_based(self, image: np.ndarray) -> StrategyResult:
        start_time = time.perf_counter()
        width, height = dimensions(image)

        groups = []
        for x, y, tile_w, tile_h in self.region_boxes(width, height):
            tile = image[y:y + tile_h, x:x + tile_w].copy()
            groups.append(self._scan(tile))

        payloads = merge_payloads(groups)
        return StrategyResult(
            strategy="region_based",
            payloads=payloads,
            processing_time=time.perf_counter() - start_time,
            stage="tiles" if payloads else None
        )
