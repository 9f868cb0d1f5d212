"""
Result aggregation and export for the QR extraction pipeline.

Provides:
- ResultAggregator: merges per-page scheduler results into per-file results
- Payload classification (URL, e-mail, phone, Wi-Fi, plain text)
- CSV export
- JSON export
"""

import csv
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .io import save_json
from .scheduler import (
    CompletionEvent,
    ProgressEvent,
    ResultStatus,
    SchedulerListener,
    TaskResult,
)

logger = logging.getLogger(__name__)

CSV_HEADERS = ['File Name', 'Page', 'QR Code Data']


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class DecodedQR:
    """One decoded code; ``page`` is 1 for standalone images."""
    data: str
    page: int = 1


@dataclass
class FileResult:
    """All codes found in one input file."""
    file_name: str
    status: ResultStatus = ResultStatus.NO_CODE_FOUND
    qrs: List[DecodedQR] = field(default_factory=list)
    error: Optional[str] = None
    pages_processed: int = 0
    pages_failed: int = 0
    total_pages: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_name": self.file_name,
            "status": self.status.value,
            "qrs": [
                {"data": qr.data, "page": qr.page, "kind": classify_payload(qr.data)["kind"]}
                for qr in self.qrs
            ],
            "error": self.error,
            "pages_processed": self.pages_processed,
            "pages_failed": self.pages_failed,
            "total_pages": self.total_pages,
        }


# ============================================================================
# Payload Classification
# ============================================================================

_WIFI_FIELD = re.compile(r'(?<![\\])([STPH]):((?:\\.|[^;])*);')


def classify_payload(data: str) -> Dict[str, Any]:
    """
    Recognise common QR payload conventions.

    Returns:
        Dict with a ``kind`` key ('url', 'email', 'phone', 'wifi' or 'text')
        plus the fields parsed for that kind
    """
    if data.startswith('http://') or data.startswith('https://'):
        return {"kind": "url", "url": data}

    if data.startswith('mailto:'):
        return {"kind": "email", "address": data[len('mailto:'):]}

    if data.startswith('tel:'):
        return {"kind": "phone", "number": data[len('tel:'):]}

    if data.startswith('WIFI:'):
        fields = dict(_WIFI_FIELD.findall(data[len('WIFI:'):]))
        return {
            "kind": "wifi",
            "ssid": fields.get('S'),
            "password": fields.get('P'),
            "security": fields.get('T'),
        }

    return {"kind": "text", "text": data}


# ============================================================================
# Aggregator
# ============================================================================

class ResultAggregator(SchedulerListener):
    """
    Collects scheduler events into per-file results.

    Page results may arrive in any order; they are merged by file id, and the
    codes of each file are kept sorted by page number.
    """

    def __init__(self, expected_pages: Optional[Dict[str, int]] = None):
        self._files: Dict[str, FileResult] = {}
        self._expected_pages = dict(expected_pages or {})
        self._started = time.time()
        self.last_progress: Optional[ProgressEvent] = None
        self.completion: Optional[CompletionEvent] = None
        self.events: List[Any] = []

    def expect_file(self, file_name: str, total_pages: Optional[int] = None) -> FileResult:
        """Register a file up front so it is reported even if nothing arrives."""
        if total_pages is not None:
            self._expected_pages[file_name] = total_pages
        return self._entry(file_name)

    def file_error(self, file_name: str, message: str) -> FileResult:
        """Record a failure that happened before any page reached the scheduler."""
        entry = self._entry(file_name)
        entry.status = ResultStatus.ERROR
        entry.error = message
        return entry

    def _entry(self, file_name: str) -> FileResult:
        entry = self._files.get(file_name)
        if entry is None:
            entry = FileResult(
                file_name=file_name,
                total_pages=self._expected_pages.get(file_name)
            )
            self._files[file_name] = entry
        return entry

    # SchedulerListener -------------------------------------------------

    def task_result(self, result: TaskResult) -> None:
        self.events.append(result)
        entry = self._entry(result.key.source_id)
        page = result.key.page_number or 1
        entry.pages_processed += 1

        if result.status is ResultStatus.ERROR:
            entry.pages_failed += 1
            entry.error = result.error_message
        else:
            entry.qrs.extend(DecodedQR(data=payload, page=page) for payload in result.payloads)
            entry.qrs.sort(key=lambda qr: qr.page)

        entry.status = self._file_status(entry)

    def progress(self, event: ProgressEvent) -> None:
        self.events.append(event)
        self.last_progress = event
        logger.info(
            f"{event.file_id}: page {event.current_page} done "
            f"({event.processed}/{event.expected_total})"
        )

    def all_done(self, event: CompletionEvent) -> None:
        self.events.append(event)
        self.completion = event

    @staticmethod
    def _file_status(entry: FileResult) -> ResultStatus:
        if entry.qrs:
            return ResultStatus.SUCCESS
        if entry.pages_processed and entry.pages_failed == entry.pages_processed:
            return ResultStatus.ERROR
        return ResultStatus.NO_CODE_FOUND

    # Reporting ---------------------------------------------------------

    @property
    def done(self) -> bool:
        return self.completion is not None

    def results(self) -> List[FileResult]:
        """Per-file results in order of first appearance."""
        return list(self._files.values())

    def summary(self) -> Dict[str, Any]:
        results = self.results()
        elapsed = time.time() - self._started
        return {
            "files_processed": len(results),
            "pages_processed": self.completion.total_processed if self.completion else
            sum(r.pages_processed for r in results),
            "qr_codes_found": sum(len(r.qrs) for r in results),
            "files_with_codes": sum(1 for r in results if r.status is ResultStatus.SUCCESS),
            "files_failed": sum(1 for r in results if r.status is ResultStatus.ERROR),
            "total_processing_time": round(elapsed, 3),
            "average_processing_time": round(elapsed / max(len(results), 1), 3),
        }


# ============================================================================
# Exporters
# ============================================================================

def export_csv(results: List[FileResult], output_path: Union[str, Path]) -> Path:
    """
    Write one row per decoded code of every successful file.

    Returns:
        Path to the CSV file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    rows = 0
    with open(output_path, 'w', encoding='utf-8', newline='') as f:
        writer = csv.writer(f, quoting=csv.QUOTE_MINIMAL)
        writer.writerow(CSV_HEADERS)
        for result in results:
            if result.status is not ResultStatus.SUCCESS:
                continue
            for qr in result.qrs:
                writer.writerow([result.file_name, qr.page, qr.data])
                rows += 1

    logger.info(f"Exported {rows} code(s) to CSV: {output_path}")
    return output_path


def export_json(
    results: List[FileResult],
    output_path: Union[str, Path],
    summary: Optional[Dict[str, Any]] = None
) -> Path:
    """Write results (and an optional summary block) as JSON."""
    document = {
        "summary": summary or {},
        "files": [r.to_dict() for r in results],
    }
    path = save_json(document, output_path)
    logger.info(f"Exported JSON: {path}")
    return path
