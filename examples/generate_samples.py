#!/usr/bin/env python
"""
Generate synthetic sample pages for testing the QR extraction pipeline.

This script creates sample images with:
- A document page carrying a single QR code
- A label sheet with several codes
- A low contrast, noisy "photo" of a code

Usage:
    python examples/generate_samples.py
"""

import numpy as np
import json
from pathlib import Path
from typing import List, Optional, Tuple


def render_qr(text: str, module_px: int = 6, quiet_zone: int = 4) -> np.ndarray:
    """Render a QR symbol as a grayscale image with a white quiet zone."""
    import cv2

    symbol = cv2.QRCodeEncoder.create().encode(text)
    if symbol.ndim == 3:
        symbol = cv2.cvtColor(symbol, cv2.COLOR_BGR2GRAY)

    symbol = cv2.resize(symbol, None, fx=module_px, fy=module_px,
                        interpolation=cv2.INTER_NEAREST)
    pad = quiet_zone * module_px
    return cv2.copyMakeBorder(symbol, pad, pad, pad, pad, cv2.BORDER_CONSTANT, value=255)


def place(img: np.ndarray, symbol: np.ndarray, x: int, y: int) -> None:
    h, w = symbol.shape[:2]
    img[y:y + h, x:x + w] = symbol[..., None]


def create_single_code_page() -> Tuple[np.ndarray, List[str]]:
    """Create a letter-shaped page with a heading and one code."""
    import cv2

    # 850 x 1100 is letter size at 100 DPI
    img = np.ones((1100, 850, 3), dtype=np.uint8) * 255

    cv2.putText(img, "Invoice 1001", (300, 80),
                cv2.FONT_HERSHEY_DUPLEX, 1.0, (0, 0, 0), 2)
    y = 140
    for line in ["Scan the code below to pay online.",
                 "Payment is due within 30 days."]:
        cv2.putText(img, line, (60, y), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 0, 0), 1)
        y += 30

    payload = "https://example.com/invoice/1001"
    place(img, render_qr(payload), 330, 300)
    return img, [payload]


def create_label_sheet() -> Tuple[np.ndarray, List[str]]:
    """Create a sheet with a 2x2 grid of labels, one code each."""
    import cv2

    img = np.ones((1100, 850, 3), dtype=np.uint8) * 255
    payloads = []

    for row in range(2):
        for col in range(2):
            label = f"LABEL-{row * 2 + col + 1:02d}"
            x, y = 60 + col * 420, 80 + row * 520
            cv2.rectangle(img, (x - 20, y - 40), (x + 330, y + 420), (0, 0, 0), 1)
            cv2.putText(img, label, (x, y - 10),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.7, (0, 0, 0), 2)
            place(img, render_qr(label, module_px=8), x, y + 40)
            payloads.append(label)

    return img, payloads


def create_low_contrast_photo(seed: int = 0) -> Tuple[np.ndarray, List[str]]:
    """Create a dim, noisy capture of a Wi-Fi code."""
    payload = "WIFI:S:guest;T:WPA;P:welcome123;;"

    # Gray background, dark gray modules
    img = np.ones((700, 700, 3), dtype=np.uint8) * 180
    symbol = render_qr(payload, module_px=7)
    symbol = np.where(symbol < 128, 110, 180).astype(np.uint8)
    place(img, symbol, 150, 150)

    # Scanner noise
    rng = np.random.default_rng(seed)
    noise = rng.normal(0, 5, img.shape).astype(np.int16)
    img = np.clip(img.astype(np.int16) + noise, 0, 255).astype(np.uint8)

    return img, [payload]


def create_expected_output(filename: str, payloads: List[str]) -> dict:
    """Create the expected output for one sample image."""
    return {
        "source_file": f"{filename}.png",
        "qr_codes": [{"data": p, "page": 1} for p in payloads],
    }


def main(output_dir: Optional[Path] = None) -> List[Path]:
    import cv2

    # Create output directories
    base = Path(output_dir) if output_dir else Path(__file__).parent
    samples_dir = base / "sample_pages"
    expected_dir = base / "expected_outputs"
    samples_dir.mkdir(parents=True, exist_ok=True)
    expected_dir.mkdir(parents=True, exist_ok=True)

    samples = [
        ("sample_single", create_single_code_page()),
        ("sample_labels", create_label_sheet()),
        ("sample_low_contrast", create_low_contrast_photo()),
    ]

    written = []
    for name, (img, payloads) in samples:
        img_path = samples_dir / f"{name}.png"
        cv2.imwrite(str(img_path), img)
        print(f"Created: {img_path}")
        written.append(img_path)

        expected_path = expected_dir / f"{name}.json"
        with open(expected_path, 'w') as f:
            json.dump(create_expected_output(name, payloads), f, indent=2)
        print(f"Created: {expected_path}")

    print("\nSample generation complete!")
    return written


if __name__ == "__main__":
    main()
