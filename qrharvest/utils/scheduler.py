"""
Priority task scheduler for QR detection.

A producer submits whole images and rendered document pages; the scheduler
keeps them in a priority queue (higher priority first, FIFO among equals) and
runs one task at a time through the detection engine. Results, per-file
progress and a single completion event are delivered to a listener.

Global lifecycle:
    OPEN      accepting tasks
    DRAINING  producer signalled done, work still queued or in flight
    CLOSED    producer done and queue empty; ``all_done`` has fired
"""

import asyncio
import heapq
import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import numpy as np

from .detection import QRDetectionEngine
from .errors import BufferAcquisitionError, DecodeTaskError
from .images import to_rgba, validate_buffer
from .io import decode_image_bytes

logger = logging.getLogger(__name__)

IMAGE_PRIORITY = 2
PAGE_PRIORITY = 3


# ============================================================================
# Enumerations
# ============================================================================

class TaskState(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SchedulerState(str, Enum):
    OPEN = "open"
    DRAINING = "draining"
    CLOSED = "closed"


class ResultStatus(str, Enum):
    SUCCESS = "success"
    NO_CODE_FOUND = "no_code_found"
    ERROR = "error"


# ============================================================================
# Tasks and Events
# ============================================================================

@dataclass(frozen=True)
class CorrelationKey:
    """Identifies the image or (file, page) a result belongs to."""
    source_id: str
    page_number: Optional[int] = None

    @property
    def is_page(self) -> bool:
        return self.page_number is not None

    def __str__(self) -> str:
        if self.page_number is None:
            return self.source_id
        return f"{self.source_id}#page{self.page_number}"


@dataclass
class SingleImageTask:
    """A standalone image; ``data`` is encoded bytes or a decoded array."""
    source_id: str
    data: Union[bytes, np.ndarray, None]
    state: TaskState = TaskState.QUEUED

    @property
    def key(self) -> CorrelationKey:
        return CorrelationKey(self.source_id)


@dataclass
class PageFragmentTask:
    """One rendered page of a multi-page document."""
    file_id: str
    page_number: int
    total_pages: int
    buffer: Optional[np.ndarray]
    state: TaskState = TaskState.QUEUED

    @property
    def key(self) -> CorrelationKey:
        return CorrelationKey(self.file_id, self.page_number)


DetectionTask = Union[SingleImageTask, PageFragmentTask]


@dataclass(order=True)
class ScheduleEntry:
    """Queue entry; sorts by (-priority, arrival sequence)."""
    sort_key: Tuple[int, int]
    task: Any = field(compare=False)
    priority: int = field(compare=False, default=0)
    arrived_at: float = field(compare=False, default=0.0)


@dataclass
class TaskResult:
    """Outcome of a single task, as delivered to the aggregator."""
    key: CorrelationKey
    status: ResultStatus
    payloads: List[str] = field(default_factory=list)
    error_message: Optional[str] = None
    processing_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.key.source_id,
            "page_number": self.key.page_number,
            "status": self.status.value,
            "payloads": list(self.payloads),
            "error_message": self.error_message,
            "processing_time": round(self.processing_time, 4),
        }


@dataclass
class ProgressEvent:
    file_id: str
    processed: int
    expected_total: int
    current_page: int


@dataclass
class CompletionEvent:
    total_processed: int


class SchedulerListener:
    """Receives scheduler events. Override the methods you need."""

    def task_result(self, result: TaskResult) -> None:
        pass

    def progress(self, event: ProgressEvent) -> None:
        pass

    def all_done(self, event: CompletionEvent) -> None:
        pass


@dataclass
class _FileProgress:
    total_pages: int
    processed: int = 0


# ============================================================================
# Scheduler
# ============================================================================

class TaskScheduler:
    """
    Single-consumer priority scheduler for detection tasks.

    All methods must be called from the thread running the event loop; only
    detection itself is pushed to a worker thread.
    """

    def __init__(
        self,
        engine: Optional[QRDetectionEngine] = None,
        listener: Optional[SchedulerListener] = None,
        image_priority: int = IMAGE_PRIORITY,
        page_priority: int = PAGE_PRIORITY,
        image_loader: Callable[[bytes], np.ndarray] = decode_image_bytes
    ):
        self.engine = engine or QRDetectionEngine()
        self.listener = listener or SchedulerListener()
        self.image_priority = image_priority
        self.page_priority = page_priority
        self.image_loader = image_loader

        self._heap: List[ScheduleEntry] = []
        self._sequence = itertools.count()
        self._files: Dict[str, _FileProgress] = {}
        self._state = SchedulerState.OPEN
        self._producer_done = False
        self._active: Optional[DetectionTask] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._running = False

        self._processed = 0
        self._failed = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def processed_count(self) -> int:
        return self._processed

    def __len__(self) -> int:
        return len(self._heap)

    def stats(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "queued": len(self._heap),
            "processed": self._processed,
            "failed": self._failed,
            "files": {
                file_id: {"processed": p.processed, "total_pages": p.total_pages}
                for file_id, p in self._files.items()
            },
        }

    # ------------------------------------------------------------------
    # Producer API
    # ------------------------------------------------------------------

    def enqueue(self, task: DetectionTask, priority: int) -> ScheduleEntry:
        """
        Add a task to the queue.

        A page fragment declares its file's page count from
        ``task.total_pages`` if the file has not been declared yet.

        Raises:
            RuntimeError: If the scheduler has already closed
            ValueError: If a page fragment conflicts with its file's page count
        """
        if self._state is SchedulerState.CLOSED:
            raise RuntimeError("Scheduler is closed; no further tasks accepted")

        if isinstance(task, PageFragmentTask):
            self.declare_page_count(task.file_id, task.total_pages)
            if not 1 <= task.page_number <= task.total_pages:
                raise ValueError(
                    f"Page {task.page_number} out of range for {task.file_id} "
                    f"({task.total_pages} pages)"
                )

        entry = ScheduleEntry(
            sort_key=(-priority, next(self._sequence)),
            task=task,
            priority=priority,
            arrived_at=time.monotonic()
        )
        task.state = TaskState.QUEUED
        heapq.heappush(self._heap, entry)
        logger.debug(f"Queued {task.key} (priority {priority}, {len(self._heap)} waiting)")

        self._wake()
        return entry

    def declare_page_count(self, file_id: str, total_pages: int) -> None:
        """Declare how many pages a document has, before its pages arrive."""
        if total_pages < 1:
            raise ValueError(f"total_pages must be >= 1, got {total_pages}")

        existing = self._files.get(file_id)
        if existing is not None:
            if existing.total_pages != total_pages:
                raise ValueError(
                    f"Page count for {file_id} already declared as "
                    f"{existing.total_pages}, got {total_pages}"
                )
            return

        self._files[file_id] = _FileProgress(total_pages=total_pages)
        logger.info(f"Expecting {total_pages} page(s) from {file_id}")

    def submit_image_task(self, source_id: str, data: Union[bytes, np.ndarray]) -> ScheduleEntry:
        return self.enqueue(SingleImageTask(source_id, data), self.image_priority)

    def submit_page_task(
        self,
        file_id: str,
        page_number: int,
        buffer: np.ndarray,
        total_pages: Optional[int] = None
    ) -> ScheduleEntry:
        """
        Queue one rendered page.

        ``total_pages`` declares the file's page count on first use; it may be
        omitted once ``declare_page_count`` has been called.
        """
        if total_pages is not None:
            self.declare_page_count(file_id, total_pages)
        elif file_id not in self._files:
            raise ValueError(f"Page count for {file_id} has not been declared")

        declared = self._files[file_id].total_pages
        if not 1 <= page_number <= declared:
            raise ValueError(f"Page {page_number} out of range for {file_id} ({declared} pages)")

        task = PageFragmentTask(file_id, page_number, declared, buffer)
        return self.enqueue(task, self.page_priority)

    def signal_no_more_tasks(self) -> None:
        """Latch the producer-done flag; completion fires once the queue drains."""
        if self._producer_done:
            return
        self._producer_done = True
        if self._heap or self._active is not None:
            self._state = SchedulerState.DRAINING
        logger.debug(f"Producer finished, {len(self._heap)} task(s) still queued")
        self._wake()

    # ------------------------------------------------------------------
    # Consumer loop
    # ------------------------------------------------------------------

    async def run(self) -> int:
        """
        Process tasks until the producer is done and the queue is empty.

        Returns:
            Total number of processed tasks
        """
        if self._running:
            raise RuntimeError("Scheduler is already running")
        self._running = True
        self._wakeup = asyncio.Event()

        try:
            while self._state is not SchedulerState.CLOSED:
                if self._heap:
                    entry = heapq.heappop(self._heap)
                    await self._process(entry)
                    self._check_completion()
                    # let producers enqueue between tasks
                    await asyncio.sleep(0)
                elif self._producer_done:
                    self._check_completion()
                else:
                    self._wakeup.clear()
                    await self._wakeup.wait()
        finally:
            self._running = False

        return self._processed

    def _wake(self) -> None:
        if self._wakeup is not None:
            self._wakeup.set()

    def _check_completion(self) -> None:
        if self._state is SchedulerState.CLOSED or not self._producer_done:
            return
        if self._heap or self._active is not None:
            self._state = SchedulerState.DRAINING
            return

        self._state = SchedulerState.CLOSED
        logger.info(f"All tasks complete: {self._processed} processed, {self._failed} failed")
        self._emit("all_done", CompletionEvent(total_processed=self._processed))

    async def _process(self, entry: ScheduleEntry) -> None:
        task = entry.task
        key = task.key
        self._active = task
        task.state = TaskState.PROCESSING
        start_time = time.perf_counter()

        try:
            payloads = await asyncio.to_thread(self._detect, task)
        except BufferAcquisitionError as e:
            result = self._failure(task, key, str(e))
        except Exception as e:
            error = DecodeTaskError(key, e)
            logger.debug("Task failure details", exc_info=True)
            result = self._failure(task, key, str(error))
        else:
            task.state = TaskState.COMPLETED
            status = ResultStatus.SUCCESS if payloads else ResultStatus.NO_CODE_FOUND
            result = TaskResult(key=key, status=status, payloads=payloads)
        finally:
            self._release(task)
            self._active = None

        result.processing_time = time.perf_counter() - start_time
        self._processed += 1
        logger.info(
            f"{key}: {result.status.value} "
            f"({len(result.payloads)} code(s), {result.processing_time:.2f}s)"
        )
        self._emit("task_result", result)

        if isinstance(task, PageFragmentTask):
            progress = self._files.setdefault(task.file_id, _FileProgress(task.total_pages))
            progress.processed += 1
            self._emit("progress", ProgressEvent(
                file_id=task.file_id,
                processed=progress.processed,
                expected_total=progress.total_pages,
                current_page=task.page_number
            ))

    def _failure(self, task: DetectionTask, key: CorrelationKey, message: str) -> TaskResult:
        task.state = TaskState.FAILED
        self._failed += 1
        logger.error(f"{key}: {message}")
        return TaskResult(key=key, status=ResultStatus.ERROR, error_message=message)

    def _detect(self, task: DetectionTask) -> List[str]:
        """Runs in a worker thread; acquires the buffer and detects codes."""
        buffer = self._acquire(task)
        return self.engine.detect_detailed(buffer).payloads

    def _acquire(self, task: DetectionTask) -> np.ndarray:
        if isinstance(task, SingleImageTask):
            if isinstance(task.data, (bytes, bytearray, memoryview)):
                return self.image_loader(bytes(task.data))
            return self._checked(task.data, task.key)
        elif isinstance(task, PageFragmentTask):
            return self._checked(task.buffer, task.key)
        raise TypeError(f"Unknown task type: {type(task).__name__}")

    @staticmethod
    def _checked(buffer: Any, key: CorrelationKey) -> np.ndarray:
        try:
            if isinstance(buffer, np.ndarray) and buffer.ndim == 3 and buffer.shape[2] == 4:
                return validate_buffer(buffer)
            return validate_buffer(to_rgba(buffer))
        except ValueError as e:
            raise BufferAcquisitionError(f"No usable pixel buffer for {key}: {e}") from e

    @staticmethod
    def _release(task: DetectionTask) -> None:
        if isinstance(task, SingleImageTask):
            task.data = None
        elif isinstance(task, PageFragmentTask):
            task.buffer = None

    def _emit(self, event: str, payload: Any) -> None:
        handler = getattr(self.listener, event)
        try:
            handler(payload)
        except Exception as e:
            logger.error(f"Listener failed handling {event}: {e}")
