#!/usr/bin/env python
"""
Command-line interface for the QR extraction pipeline.

Usage:
    python qrharvest/cli.py --input <files_or_folders> --output <output_dir> [options]

Examples:
    # Scan a PDF and a folder of photos
    python qrharvest/cli.py --input invoices.pdf ./photos --output ./output

    # CSV only, more scan-and-clear attempts per frame
    python qrharvest/cli.py --input sheet.png --output ./output --format csv --max-attempts 20
"""

import sys
from pathlib import Path

# Add package directory to path for imports when running as script
_pkg_dir = Path(__file__).parent
if str(_pkg_dir) not in sys.path:
    sys.path.insert(0, str(_pkg_dir))

import argparse
import asyncio
import functools
import logging
import time
from typing import List

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("qrharvest")

__version__ = "1.0.0"


def setup_argparser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        description="QR Harvest - Extract every QR code from images and PDF documents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Scan a PDF and export CSV and JSON:
    python -m qrharvest.cli --input document.pdf --output ./output

  Scan every image in a folder:
    python -m qrharvest.cli --input ./scans --output ./output --format csv

  Render PDF pages at a higher resolution:
    python -m qrharvest.cli --input tickets.pdf --output ./output --dpi 300
        """
    )

    # Required arguments
    parser.add_argument(
        "--input", "-i",
        required=True,
        nargs="+",
        help="Input image/PDF files or folders"
    )

    parser.add_argument(
        "--output", "-o",
        required=True,
        help="Output directory for exported results"
    )

    # Optional arguments
    parser.add_argument(
        "--format", "-f",
        nargs="+",
        default=None,
        choices=["csv", "json", "all"],
        help="Export format(s) (default: csv json)"
    )

    parser.add_argument(
        "--dpi",
        type=int,
        default=None,
        help="DPI for PDF page rendering (default: 216)"
    )

    parser.add_argument(
        "--max-attempts",
        type=int,
        default=None,
        help="Scan-and-clear attempts per frame (default: 10)"
    )

    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Threads for concurrent strategies (default: one per strategy)"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode (re-raise unexpected errors)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def check_dependencies() -> bool:
    """Check if required dependencies are available."""
    missing = []
    optional_missing = []

    try:
        import cv2
        if not hasattr(cv2, "QRCodeDetector"):
            missing.append("opencv-python with QRCodeDetector")
    except ImportError:
        missing.append("opencv-python")

    try:
        import numpy
    except ImportError:
        missing.append("numpy")

    try:
        import pdf2image
    except ImportError:
        optional_missing.append("pdf2image (for PDF support)")

    if missing:
        logger.error("Missing required dependencies:")
        for dep in missing:
            logger.error(f"  - {dep}")
        logger.error("\nInstall with: pip install -e .")
        return False

    if optional_missing:
        logger.warning("Missing optional dependencies (some features may be limited):")
        for dep in optional_missing:
            logger.warning(f"  - {dep}")

    return True


def apply_overrides(config, args):
    """Fold command-line options into the pipeline configuration."""
    if args.dpi:
        config.input.pdf_dpi = args.dpi
    if args.max_attempts:
        config.detection.max_scan_attempts = args.max_attempts
    if args.workers:
        config.detection.max_workers = args.workers
    if args.format:
        config.export.formats = ["csv", "json"] if "all" in args.format else list(args.format)
    if args.debug:
        config.debug_mode = True
    return config


async def produce_tasks(scheduler, aggregator, files: List[Path], config) -> None:
    """Feed images and rendered PDF pages to the scheduler, then signal completion."""
    from utils.io import detect_input_type, get_pdf_page_count, render_pdf_pages

    try:
        for path in files:
            file_id = str(path)
            input_type = detect_input_type(path)

            if input_type == "image":
                aggregator.expect_file(file_id, 1)
                try:
                    data = await asyncio.to_thread(path.read_bytes)
                except OSError as e:
                    logger.error(f"Could not read {path}: {e}")
                    aggregator.file_error(file_id, str(e))
                    continue
                scheduler.submit_image_task(file_id, data)
                continue

            try:
                page_count = await asyncio.to_thread(get_pdf_page_count, path)
            except Exception as e:
                logger.error(f"Could not open {path}: {e}")
                aggregator.file_error(file_id, str(e))
                continue

            if page_count < 1:
                aggregator.file_error(file_id, "PDF has no pages")
                continue

            scheduler.declare_page_count(file_id, page_count)
            aggregator.expect_file(file_id, page_count)

            pages = render_pdf_pages(
                path,
                dpi=config.input.pdf_dpi,
                max_dimension=config.input.max_dimension,
                page_count=page_count
            )
            try:
                while True:
                    item = await asyncio.to_thread(next, pages, None)
                    if item is None:
                        break
                    page_number, buffer = item
                    scheduler.submit_page_task(file_id, page_number, buffer)
            except Exception as e:
                logger.error(f"Rendering failed for {path}: {e}")
                aggregator.file_error(file_id, f"Rendering failed: {e}")
    finally:
        scheduler.signal_no_more_tasks()


async def scan_files(files: List[Path], config):
    """Run producer and scheduler on one event loop; returns the aggregator."""
    from utils.detection import QRDetectionEngine
    from utils.export import ResultAggregator
    from utils.io import decode_image_bytes
    from utils.scheduler import TaskScheduler
    from dataclasses import asdict

    engine = QRDetectionEngine(**asdict(config.detection))
    aggregator = ResultAggregator()
    loader = functools.partial(
        decode_image_bytes,
        max_dimension=config.input.max_dimension,
        upscale_threshold=config.input.upscale_threshold,
        max_upscale=config.input.max_upscale
    )
    scheduler = TaskScheduler(
        engine=engine,
        listener=aggregator,
        image_priority=config.scheduler.image_priority,
        page_priority=config.scheduler.page_priority,
        image_loader=loader
    )

    await asyncio.gather(
        produce_tasks(scheduler, aggregator, files, config),
        scheduler.run()
    )
    return aggregator


def run_pipeline(args) -> int:
    """Run the QR extraction pipeline."""
    from utils.io import collect_inputs, ensure_dir
    from utils.export import export_csv, export_json
    from config import get_config

    start_time = time.time()
    config = apply_overrides(get_config(), args)

    output_dir = ensure_dir(Path(args.output))

    files = collect_inputs(args.input)
    if not files:
        logger.error("No supported input files found")
        return 1

    logger.info(f"Scanning {len(files)} file(s)")
    aggregator = asyncio.run(scan_files(files, config))

    results = aggregator.results()
    summary = aggregator.summary()

    if "csv" in config.export.formats:
        export_csv(results, output_dir / config.export.csv_name)
    if "json" in config.export.formats:
        export_json(results, output_dir / config.export.json_name, summary=summary)

    elapsed = time.time() - start_time

    if not args.quiet:
        print("\n" + "="*60)
        print("QR EXTRACTION COMPLETE")
        print("="*60)
        print(f"Output: {output_dir}")
        print(f"Files processed: {summary['files_processed']}")
        print(f"Pages/images scanned: {summary['pages_processed']}")
        print(f"QR codes found: {summary['qr_codes_found']}")
        print(f"Processing time: {elapsed:.2f}s")
        print()
        for result in results:
            print(f"  {result.file_name}: {result.status.value} ({len(result.qrs)} code(s))")
            for qr in result.qrs:
                print(f"    [page {qr.page}] {qr.data}")
            if result.error:
                print(f"    error: {result.error}")
        print("="*60)

    return 0


def main():
    """Main entry point."""
    parser = setup_argparser()
    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    elif args.quiet:
        logging.getLogger().setLevel(logging.ERROR)

    if not check_dependencies():
        sys.exit(1)

    try:
        exit_code = run_pipeline(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        if args.debug:
            raise
        sys.exit(1)


if __name__ == "__main__":
    main()
