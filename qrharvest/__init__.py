"""
QR Harvest
==========

Extracts every QR code from raster images and multi-page PDF documents.

Main components:
- Pixel buffer preprocessing (blur, sharpen, equalize, morphology, binarize)
- Detection engine with concurrent multi-scale, preprocessing,
  binarization and region-based strategies
- Priority task scheduler with per-file progress reporting
- Result aggregation and CSV/JSON export
"""

__version__ = "1.0.0"
__author__ = "QR Harvest Team"
