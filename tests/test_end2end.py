"""
End-to-end integration tests for the QR extraction pipeline.
"""

import pytest
import numpy as np
import asyncio
import csv
import sys
import tempfile
from pathlib import Path

# Add package and sample generator to path
sys.path.insert(0, str(Path(__file__).parent.parent / "qrharvest"))
sys.path.insert(0, str(Path(__file__).parent.parent / "examples"))


class TestSamplePages:
    """Run the generated sample pages through the full pipeline."""

    @pytest.fixture(scope="class")
    def samples(self):
        import generate_samples

        with tempfile.TemporaryDirectory(prefix="qrharvest_test_") as tmp_dir:
            paths = generate_samples.main(Path(tmp_dir))
            yield {p.stem: p for p in paths}, Path(tmp_dir)

    @pytest.fixture(scope="class")
    def aggregator(self, samples):
        from cli import scan_files
        from config import get_config

        paths, _ = samples
        return asyncio.run(scan_files(sorted(paths.values()), get_config()))

    def test_every_sample_written(self, samples):
        paths, base = samples

        assert set(paths) == {"sample_single", "sample_labels", "sample_low_contrast"}
        for name in paths:
            assert (base / "expected_outputs" / f"{name}.json").exists()

    def test_single_code_page(self, samples, aggregator):
        from utils.io import load_json
        from utils.scheduler import ResultStatus

        paths, base = samples
        expected = load_json(base / "expected_outputs" / "sample_single.json")
        results = {Path(r.file_name).stem: r for r in aggregator.results()}

        single = results["sample_single"]
        assert single.status is ResultStatus.SUCCESS
        assert [{"data": qr.data, "page": qr.page} for qr in single.qrs] == expected["qr_codes"]

    def test_no_false_positives(self, samples, aggregator):
        from utils.io import load_json

        _, base = samples
        for result in aggregator.results():
            stem = Path(result.file_name).stem
            expected = load_json(base / "expected_outputs" / f"{stem}.json")
            assert {qr.data for qr in result.qrs} <= {c["data"] for c in expected["qr_codes"]}

    def test_completion_counts_every_image(self, aggregator):
        assert aggregator.done
        assert aggregator.completion.total_processed == 3
        assert len(aggregator.results()) == 3


class TestMultiPageDocument:
    """Paged documents, with PDF rendering replaced by in-memory pages."""

    @pytest.fixture
    def fake_pdf(self, tmp_path, monkeypatch, page_with_codes, blank_page):
        import utils.io as io

        pdf_path = tmp_path / "tickets.pdf"
        pdf_path.write_bytes(b"%PDF-1.4 stub")
        pages = [
            page_with_codes(400, 400, [("TICKET-A", 100, 100)]),
            blank_page(400, 400),
            page_with_codes(400, 400, [("TICKET-C", 100, 100)]),
        ]

        def render(path, dpi=216, max_dimension=4096, page_count=0):
            for number, page in enumerate(pages, start=1):
                yield number, page

        monkeypatch.setattr(io, "get_pdf_page_count", lambda path: len(pages))
        monkeypatch.setattr(io, "render_pdf_pages", render)
        return pdf_path

    def test_multi_page_processing(self, fake_pdf):
        from cli import scan_files
        from config import get_config
        from utils.scheduler import ResultStatus

        aggregator = asyncio.run(scan_files([fake_pdf], get_config()))

        result = aggregator.results()[0]
        assert result.file_name == str(fake_pdf)
        assert result.status is ResultStatus.SUCCESS
        assert [(qr.page, qr.data) for qr in result.qrs] == [(1, "TICKET-A"), (3, "TICKET-C")]
        assert result.pages_processed == 3
        assert aggregator.last_progress.processed == 3
        assert aggregator.last_progress.expected_total == 3

    def test_unreadable_pdf_reported(self, tmp_path, monkeypatch):
        import utils.io as io
        from cli import scan_files
        from config import get_config
        from utils.scheduler import ResultStatus

        def fail(path):
            raise RuntimeError("Failed to parse PDF: broken xref")

        monkeypatch.setattr(io, "get_pdf_page_count", fail)
        pdf_path = tmp_path / "broken.pdf"
        pdf_path.write_bytes(b"garbage")

        aggregator = asyncio.run(scan_files([pdf_path], get_config()))

        result = aggregator.results()[0]
        assert result.status is ResultStatus.ERROR
        assert "broken xref" in result.error
        assert aggregator.completion.total_processed == 0


class TestUnreadableInputs:

    def test_unreadable_image_does_not_abort_batch(self, tmp_path, monkeypatch, page_with_codes):
        import cv2
        from cli import scan_files
        from config import get_config
        from utils.scheduler import ResultStatus

        good = tmp_path / "good.png"
        cv2.imwrite(str(good), cv2.cvtColor(
            page_with_codes(400, 400, [("GOOD", 100, 100)]), cv2.COLOR_RGBA2BGR
        ))
        bad = tmp_path / "bad.png"
        bad.write_bytes(b"x")

        read_bytes = Path.read_bytes

        def guarded_read(self):
            if self.name == "bad.png":
                raise PermissionError("Permission denied")
            return read_bytes(self)

        monkeypatch.setattr(Path, "read_bytes", guarded_read)

        aggregator = asyncio.run(scan_files([bad, good], get_config()))

        results = {Path(r.file_name).name: r for r in aggregator.results()}
        assert results["bad.png"].status is ResultStatus.ERROR
        assert "Permission denied" in results["bad.png"].error
        assert results["good.png"].status is ResultStatus.SUCCESS
        assert [qr.data for qr in results["good.png"].qrs] == ["GOOD"]
        assert aggregator.completion.total_processed == 1


class TestCommandLine:

    def test_run_pipeline_writes_exports(self, tmp_path, page_with_codes):
        import cv2
        from cli import run_pipeline, setup_argparser
        from utils.io import load_json

        page = page_with_codes(400, 400, [("CLI-CODE", 100, 100)])
        image_path = tmp_path / "inputs" / "code.png"
        image_path.parent.mkdir()
        cv2.imwrite(str(image_path), cv2.cvtColor(page, cv2.COLOR_RGBA2BGR))
        (tmp_path / "inputs" / "broken.png").write_bytes(b"not an image")
        output_dir = tmp_path / "out"

        args = setup_argparser().parse_args([
            "--input", str(image_path.parent),
            "--output", str(output_dir),
            "--quiet"
        ])

        assert run_pipeline(args) == 0

        with open(output_dir / "qr_codes.csv", newline="", encoding="utf-8") as f:
            rows = list(csv.reader(f))
        assert rows == [
            ["File Name", "Page", "QR Code Data"],
            [str(image_path), "1", "CLI-CODE"],
        ]

        document = load_json(output_dir / "qr_codes.json")
        statuses = {Path(f["file_name"]).name: f["status"] for f in document["files"]}
        assert statuses == {"broken.png": "error", "code.png": "success"}
        assert document["summary"]["qr_codes_found"] == 1

    def test_run_pipeline_without_inputs(self, tmp_path):
        from cli import run_pipeline, setup_argparser

        args = setup_argparser().parse_args([
            "--input", str(tmp_path / "missing.pdf"),
            "--output", str(tmp_path / "out"),
            "--quiet"
        ])

        assert run_pipeline(args) == 1


class TestEdgeCases:
    """Test edge cases and error handling."""

    def test_noisy_blank_image(self):
        from utils.detection import QRDetectionEngine

        rng = np.random.default_rng(3)
        noisy = rng.integers(0, 256, size=(300, 300, 4), dtype=np.uint8)
        noisy[..., 3] = 255

        report = QRDetectionEngine().detect_detailed(noisy)

        assert report.payloads == []
