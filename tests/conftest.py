"""
Shared fixtures for the QR extraction tests.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add package directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "qrharvest"))


def _render_qr(text: str, module_px: int = 6, quiet_zone: int = 4) -> np.ndarray:
    """Render a QR symbol as a grayscale image with a white quiet zone."""
    import cv2

    encoder = cv2.QRCodeEncoder.create()
    symbol = encoder.encode(text)
    if symbol.ndim == 3:
        symbol = cv2.cvtColor(symbol, cv2.COLOR_BGR2GRAY)

    symbol = cv2.resize(
        symbol, None, fx=module_px, fy=module_px, interpolation=cv2.INTER_NEAREST
    )
    pad = quiet_zone * module_px
    return cv2.copyMakeBorder(symbol, pad, pad, pad, pad, cv2.BORDER_CONSTANT, value=255)


def _blank_page(width: int, height: int, value: int = 255) -> np.ndarray:
    page = np.full((height, width, 4), value, dtype=np.uint8)
    page[..., 3] = 255
    return page


def _paste(page: np.ndarray, symbol: np.ndarray, x: int, y: int) -> np.ndarray:
    h, w = symbol.shape[:2]
    page[y:y + h, x:x + w, :3] = symbol[..., None]
    return page


@pytest.fixture
def render_qr():
    """Factory: text -> grayscale QR image."""
    return _render_qr


@pytest.fixture
def blank_page():
    """Factory: (width, height) -> white RGBA buffer."""
    return _blank_page


@pytest.fixture
def page_with_codes():
    """Factory: (width, height, [(text, x, y), ...]) -> RGBA buffer with QR codes."""
    def build(width, height, codes, module_px=6):
        page = _blank_page(width, height)
        for text, x, y in codes:
            _paste(page, _render_qr(text, module_px=module_px), x, y)
        return page
    return build
