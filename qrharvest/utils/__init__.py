"""
Utility modules for the QR extraction pipeline.
"""

from .errors import BufferAcquisitionError, StrategyError, DecodeTaskError
from .images import (
    blur, sharpen, local_histogram_equalize, dilate, erode, close,
    threshold, otsu_level, otsu_threshold, adaptive_threshold, to_rgba
)
from .io import decode_image_bytes, load_image, render_pdf_pages, save_json
from .detection import QRDetectionEngine, scan_and_clear, StrategyResult, DetectionReport
from .scheduler import TaskScheduler, SchedulerListener, TaskResult, CorrelationKey
from .export import ResultAggregator, export_csv, export_json, classify_payload

__all__ = [
    # Errors
    "BufferAcquisitionError", "StrategyError", "DecodeTaskError",
    # Images
    "blur", "sharpen", "local_histogram_equalize", "dilate", "erode", "close",
    "threshold", "otsu_level", "otsu_threshold", "adaptive_threshold", "to_rgba",
    # IO
    "decode_image_bytes", "load_image", "render_pdf_pages", "save_json",
    # Detection
    "QRDetectionEngine", "scan_and_clear", "StrategyResult", "DetectionReport",
    # Scheduling
    "TaskScheduler", "SchedulerListener", "TaskResult", "CorrelationKey",
    # Export
    "ResultAggregator", "export_csv", "export_json", "classify_payload",
]
