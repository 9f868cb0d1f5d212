"""
Configuration and constants for the QR extraction pipeline.

This module provides:
- Logging setup
- Detection engine parameters
- Scheduler priorities
- Input decoding / PDF rendering parameters
- Environment overrides
"""

import os
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple
import logging

# ============================================================================
# Logging Configuration
# ============================================================================

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logging.basicConfig(
    level=logging.INFO,
    format=LOG_FORMAT
)
logger = logging.getLogger("qrharvest")


# ============================================================================
# Processing Configuration
# ============================================================================

@dataclass
class DetectionConfig:
    """QR detection engine configuration."""
    # Scan-and-clear attempts per buffer; fixed regardless of image size
    max_scan_attempts: int = 10
    # Buffers (and rescaled variants) smaller than this are not scanned
    min_dimension: int = 50
    scales: Tuple[float, ...] = (1.0, 0.8, 1.2, 0.6, 1.5, 0.4)
    adaptive_windows: Tuple[Tuple[int, float], ...] = ((15, 0.85), (25, 0.90), (35, 0.80))
    fixed_thresholds: Tuple[int, ...] = (85, 128, 170)
    region_max_size: int = 512
    region_overlap: float = 0.2
    min_region_size: int = 100
    clear_padding: float = 0.05
    strategies: Tuple[str, ...] = (
        "multi_scale",
        "enhanced_preprocessing",
        "binarization",
        "region_based",
    )
    max_workers: Optional[int] = None  # None = one thread per strategy


@dataclass
class SchedulerConfig:
    """Task scheduler configuration."""
    image_priority: int = 2
    # Page fragments preempt whole images
    page_priority: int = 3


@dataclass
class InputConfig:
    """Input decoding and PDF rendering configuration."""
    pdf_dpi: int = 216
    max_dimension: int = 4096
    upscale_threshold: int = 2048
    max_upscale: float = 2.0


@dataclass
class ExportConfig:
    """Export configuration."""
    formats: List[str] = field(default_factory=lambda: ["csv", "json"])
    csv_name: str = "qr_codes.csv"
    json_name: str = "qr_codes.json"


@dataclass
class PipelineConfig:
    """Main pipeline configuration."""
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    input: InputConfig = field(default_factory=InputConfig)
    export: ExportConfig = field(default_factory=ExportConfig)

    debug_mode: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# Default Configuration Instance
# ============================================================================

def _int_from_env(name: str) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}")
        return None


def get_config() -> PipelineConfig:
    """Get the default pipeline configuration with environment overrides."""
    config = PipelineConfig()

    if os.environ.get("QRHARVEST_DEBUG", "").lower() == "true":
        config.debug_mode = True

    attempts = _int_from_env("QRHARVEST_MAX_SCAN_ATTEMPTS")
    if attempts is not None and attempts > 0:
        config.detection.max_scan_attempts = attempts

    workers = _int_from_env("QRHARVEST_WORKERS")
    if workers is not None and workers > 0:
        config.detection.max_workers = workers

    dpi = _int_from_env("QRHARVEST_DPI")
    if dpi is not None and dpi > 0:
        config.input.pdf_dpi = dpi

    return config
