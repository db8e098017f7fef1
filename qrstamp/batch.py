"""
Multi-threaded batch processing: one output document per record.

A batch splits the selected index range over a fixed number of worker
threads using a stride partition (worker ``k`` of ``n`` handles indices
``start + k``, ``start + k + n``, ...). Workers check a shared stop flag
before every record, so a batch can be stopped cooperatively and resumed
later. Records whose output file already exists are skipped, which makes
re-running a batch idempotent.

Progress is reported through a :class:`ProgressSink`. The
:class:`FileProgressSink` writes small sidecar files that other processes
(e.g. a GUI or the ``status`` command) can poll.
"""

import enum
import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Set, Tuple, Union

from .document import DocumentStamper
from .errors import BatchError, StampError
from .geometry import GeometrySpec
from .records import Record
from .templates import SidecarPaths, TemplateInfo, output_filename

__all__ = [
    'BatchStatus',
    'BatchJob',
    'BatchResult',
    'BatchCoordinator',
    'ProgressSink',
    'MemoryProgressSink',
    'FileProgressSink',
    'ResumeInfo',
    'default_thread_count',
    'effective_bounds',
    'stride_partition',
    'format_duration',
    'MAX_THROTTLE_MS',
]

logger = logging.getLogger(__name__)

MAX_THROTTLE_MS = 2
DEFAULT_COMPLETION_LINGER = 0.5


def default_thread_count() -> int:
    """
    Three quarters of the available CPU cores, and at least one.
    """
    return max(1, ((os.cpu_count() or 1) * 3) // 4)


def effective_bounds(
    total: int,
    start_from: int = 0,
    index_range: Optional[Tuple[int, int]] = None,
) -> Optional[Tuple[int, int]]:
    """
    Compute the inclusive index range a batch should process.

    :param total:
        Number of records.
    :param start_from:
        First index to process.
    :param index_range:
        Optional inclusive ``(first, last)`` restriction.
    :return:
        A tuple ``(start, end)`` of inclusive bounds, or ``None`` if there
        is nothing to process.
    """
    start = max(0, start_from)
    end = total - 1
    if index_range is not None:
        first, last = index_range
        start = max(start, first)
        end = min(end, last)
    if end < start:
        return None
    return start, end


def stride_partition(
    start: int, end: int, threads: int, worker_index: int
) -> range:
    """
    Indices handled by one worker. The partitions of all workers
    ``0 <= worker_index < threads`` are disjoint and together cover
    ``[start, end]``.
    """
    if not (0 <= worker_index < threads):
        raise ValueError(
            f"Worker index {worker_index} out of range for {threads} threads"
        )
    return range(start + worker_index, end + 1, threads)


def format_duration(seconds: float) -> str:
    """
    Human-readable duration, e.g. ``1h 2m 3s``.
    """
    total = int(round(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


@dataclass(frozen=True)
class ResumeInfo:
    """
    Position from which a stopped batch can be resumed.
    """

    index: int
    """
    First record index that was not processed.
    """

    total: int
    """
    Total number of records in the batch.
    """

    elapsed: float = 0.0
    """
    Time spent in the stopped run, in seconds.
    """

    def serialise(self) -> str:
        return f"{self.index}|{self.total}|{int(self.elapsed)}"

    @classmethod
    def parse(cls, text: str) -> 'ResumeInfo':
        try:
            index, total, elapsed = text.strip().split('|')
            return cls(
                index=int(index), total=int(total), elapsed=float(elapsed)
            )
        except ValueError as e:
            raise ValueError(f"Malformed resume information: {text!r}") from e

    def write(self, path: Union[str, Path]):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.serialise(), encoding='utf-8')

    @classmethod
    def read(cls, path: Union[str, Path]) -> Optional['ResumeInfo']:
        try:
            text = Path(path).read_text(encoding='utf-8')
        except FileNotFoundError:
            return None
        return cls.parse(text)

    @staticmethod
    def clear(path: Union[str, Path]):
        try:
            Path(path).unlink()
        except FileNotFoundError:
            pass


class ProgressSink:
    """
    Receives progress notifications from a batch.

    Implementations must be thread-safe: :meth:`publish` and
    :meth:`mark_stopped` are called from worker threads. Workers publish
    without coordinating with each other, so a value may arrive after a
    larger one; implementations should keep the largest.
    """

    def reset(self):
        """Called once when a batch run starts."""
        pass

    def publish(self, fraction: float):
        """Report the completed fraction, between 0 and 1."""
        raise NotImplementedError

    def mark_stopped(self):
        """Report that the batch was stopped or failed before completion."""
        raise NotImplementedError

    def save_resume(self, info: ResumeInfo):
        """Record where a stopped batch should be resumed."""
        pass

    def finish(self):
        """Called once when a batch run completes."""
        self.publish(1.0)


class MemoryProgressSink(ProgressSink):
    """
    Keeps progress in memory, for embedding and tests.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.value = 0.0
        self.stopped = False
        self.finished = False
        self.resume: Optional[ResumeInfo] = None
        self.updates = 0

    def reset(self):
        with self._lock:
            self.value = 0.0
            self.stopped = False
            self.finished = False
            self.updates = 0

    def publish(self, fraction: float):
        with self._lock:
            self.value = max(self.value, fraction)
            self.updates += 1

    def mark_stopped(self):
        with self._lock:
            self.stopped = True

    def save_resume(self, info: ResumeInfo):
        with self._lock:
            self.resume = info

    def finish(self):
        with self._lock:
            self.value = 1.0
            self.finished = True
            self.resume = None


class FileProgressSink(ProgressSink):
    """
    Reports progress through sidecar files.

    While the batch runs, the progress file holds the completed fraction.
    When the batch completes, the value 1.0 is written, and the file is
    removed after a short delay, so that pollers get a chance to see it.
    A stopped or failed batch leaves its progress file in place, writes
    the stop marker and saves the resume position.

    :param paths:
        Sidecar file locations.
    :param linger:
        Seconds to wait between writing the final value and removing the
        progress file.
    """

    def __init__(
        self, paths: SidecarPaths, linger: float = DEFAULT_COMPLETION_LINGER
    ):
        self.paths = paths
        self.linger = linger
        self._lock = threading.Lock()
        self._published = 0.0

    @staticmethod
    def _unlink(path: Path):
        try:
            path.unlink()
        except FileNotFoundError:
            pass

    def reset(self):
        with self._lock:
            self.paths.progress.parent.mkdir(parents=True, exist_ok=True)
            self._unlink(self.paths.stop_marker)
            self._published = 0.0
            self.paths.progress.write_text('0.0', encoding='utf-8')

    def publish(self, fraction: float):
        with self._lock:
            if fraction < self._published:
                return
            self._published = fraction
            self.paths.progress.write_text(
                f"{fraction:.4f}", encoding='utf-8'
            )

    def mark_stopped(self):
        with self._lock:
            if not self.paths.stop_marker.exists():
                self.paths.stop_marker.write_text('stopped', encoding='utf-8')

    def save_resume(self, info: ResumeInfo):
        with self._lock:
            info.write(self.paths.resume)

    def finish(self):
        self.publish(1.0)
        if self.linger > 0:
            time.sleep(self.linger)
        with self._lock:
            self._unlink(self.paths.progress)
            ResumeInfo.clear(self.paths.resume)

    def read_progress(self) -> Optional[float]:
        try:
            return float(self.paths.progress.read_text(encoding='utf-8'))
        except (FileNotFoundError, ValueError):
            return None


class BatchStatus(enum.Enum):
    IDLE = enum.auto()
    RUNNING = enum.auto()
    STOPPED = enum.auto()
    COMPLETED = enum.auto()
    FAILED = enum.auto()


@dataclass(frozen=True)
class BatchJob:
    """
    Everything that identifies the work of a batch.
    """

    template_path: Path
    """
    Template PDF.
    """

    records: Sequence[Record]
    """
    Records to process, one output document each.
    """

    geometry: GeometrySpec
    """
    Placement specification.
    """

    output_dir: Path
    """
    Folder in which output documents are written.
    """

    language: Optional[str] = None
    """
    Language selector; defaults to the language inferred from the
    template's file name.
    """

    @property
    def template_info(self) -> TemplateInfo:
        return TemplateInfo.from_path(self.template_path)

    @property
    def effective_language(self) -> str:
        return self.language or self.template_info.language

    def output_path(self, record: Record) -> Path:
        return Path(self.output_dir) / output_filename(
            self.template_info, record.id
        )


@dataclass(frozen=True)
class BatchResult:
    """
    Outcome of a batch run.
    """

    status: BatchStatus
    total: int
    """
    Number of indices selected for this run.
    """

    processed: int
    """
    Number of indices that were dealt with (generated, skipped or failed).
    """

    generated: int
    skipped: int
    failed: int

    resume_offset: int
    """
    Lowest index that was not processed. Passing this value as
    ``start_from`` to a new run is always safe: everything before it is
    done, and anything after it that is done will be skipped.
    """

    elapsed: float
    """
    Wall clock time of the run, in seconds.
    """


class BatchCoordinator:
    """
    Runs a batch job over several worker threads.

    A coordinator moves from ``IDLE`` to ``RUNNING``, and from there to
    ``COMPLETED``, ``STOPPED`` or ``FAILED``. Stopped and failed batches
    can be run again (typically with ``start_from`` set to the resume
    offset); completed batches cannot.

    :param job:
        The job to run.
    :param stamper:
        Object with a ``stamp_document`` method compatible with
        :meth:`.DocumentStamper.stamp_document`. Defaults to a
        :class:`.DocumentStamper` with default settings.
    :param sink:
        Progress sink. Defaults to a :class:`MemoryProgressSink`.
    :param threads:
        Number of worker threads. Defaults to
        :func:`default_thread_count`.
    :param throttle_ms:
        Milliseconds to sleep after each record, between 0 and
        :const:`MAX_THROTTLE_MS`.
    """

    def __init__(
        self,
        job: BatchJob,
        stamper=None,
        sink: Optional[ProgressSink] = None,
        threads: Optional[int] = None,
        throttle_ms: int = 0,
    ):
        if threads is None:
            threads = default_thread_count()
        if threads < 1:
            raise ValueError(f"Thread count must be positive, not {threads}")
        if not (0 <= throttle_ms <= MAX_THROTTLE_MS):
            raise ValueError(
                f"Throttle must be between 0 and {MAX_THROTTLE_MS} ms, "
                f"not {throttle_ms}"
            )
        self.job = job
        self.stamper = stamper if stamper is not None else DocumentStamper()
        self.sink = sink if sink is not None else MemoryProgressSink()
        self.threads = threads
        self.throttle_ms = throttle_ms

        self._stop = threading.Event()
        self._state_lock = threading.Lock()
        self._status = BatchStatus.IDLE
        self._progress_lock = threading.Lock()
        self._done: Set[int] = set()
        self._generated = self._skipped = self._failed = 0
        self._progress_base = 0
        self._progress_span = 1

    @property
    def status(self) -> BatchStatus:
        with self._state_lock:
            return self._status

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    @property
    def completed(self) -> int:
        """Number of indices processed in the current run so far."""
        with self._progress_lock:
            return len(self._done)

    def stop(self):
        """
        Ask all workers to stop. Workers finish the record they are
        working on, and then exit.
        """
        if not self._stop.is_set():
            logger.info("Stop requested")
        self._stop.set()

    def _set_status(self, status: BatchStatus):
        with self._state_lock:
            self._status = status

    def _begin(self):
        with self._state_lock:
            if self._status is BatchStatus.RUNNING:
                raise BatchError("Batch is already running")
            if self._status is BatchStatus.COMPLETED:
                raise BatchError("Batch has already completed")
            self._status = BatchStatus.RUNNING
        self._stop.clear()
        with self._progress_lock:
            self._done = set()
            self._generated = self._skipped = self._failed = 0

    def _record_outcome(self, index: int, outcome: str):
        with self._progress_lock:
            self._done.add(index)
            if outcome == 'generated':
                self._generated += 1
            elif outcome == 'skipped':
                self._skipped += 1
            else:
                self._failed += 1
            fraction = (self._progress_base + len(self._done)) / (
                self._progress_span
            )
        # sinks serialise their own output
        if not self._stop.is_set():
            self.sink.publish(min(fraction, 1.0))

    def _process(self, index: int) -> str:
        job = self.job
        record = job.records[index]
        output_path = job.output_path(record)
        if output_path.exists():
            logger.debug(f"Skipping record {record.id}: {output_path} exists")
            return 'skipped'
        try:
            self.stamper.stamp_document(
                job.template_path,
                record,
                job.geometry,
                output_path,
                language=job.effective_language,
            )
        except StampError as e:
            logger.error(f"Failed to produce document for record {record.id}")
            logger.debug(e.msg, exc_info=e)
            return 'failed'
        return 'generated'

    def _work(self, worker_index: int, threads: int, start: int, end: int):
        throttle = self.throttle_ms / 1000
        for index in stride_partition(start, end, threads, worker_index):
            if self._stop.is_set():
                self.sink.mark_stopped()
                logger.debug(f"Worker {worker_index} stopping at {index}")
                return
            self._record_outcome(index, self._process(index))
            if throttle:
                time.sleep(throttle)

    def run(
        self,
        start_from: int = 0,
        index_range: Optional[Tuple[int, int]] = None,
    ) -> BatchResult:
        """
        Process the job's records.

        :param start_from:
            First record index to process.
        :param index_range:
            Optional inclusive ``(first, last)`` restriction of the record
            indices to process.
        :return:
            A :class:`BatchResult`. Stopping the batch is not an error: the
            result has status ``STOPPED``.
        :raises BatchError:
            if a worker terminated abnormally. The other workers are
            allowed to finish first.
        """
        self._begin()
        total = len(self.job.records)
        bounds = effective_bounds(total, start_from, index_range)
        self.sink.reset()
        started = time.monotonic()

        if bounds is None:
            logger.info("Nothing to do")
            self.sink.finish()
            self._set_status(BatchStatus.COMPLETED)
            return BatchResult(
                status=BatchStatus.COMPLETED,
                total=0,
                processed=0,
                generated=0,
                skipped=0,
                failed=0,
                resume_offset=max(start_from, 0),
                elapsed=0.0,
            )

        start, end = bounds
        threads = min(self.threads, end - start + 1)
        # indices before the start are considered done for progress purposes
        self._progress_base = start
        self._progress_span = end + 1
        logger.info(
            f"Processing records {start}..{end} of {total} "
            f"from {self.job.template_path} with {threads} thread(s)"
        )

        with ThreadPoolExecutor(
            max_workers=threads, thread_name_prefix='qrstamp-worker'
        ) as executor:
            futures = [
                executor.submit(self._work, worker_index, threads, start, end)
                for worker_index in range(threads)
            ]
            try:
                wait(futures)
            except KeyboardInterrupt:
                logger.warning("Interrupted; waiting for workers to stop")
                self.stop()
                wait(futures)

        elapsed = time.monotonic() - started
        errors: List[BaseException] = [
            exc for exc in (f.exception() for f in futures) if exc is not None
        ]
        result = self._summarise(start, end, elapsed, bool(errors))

        if errors:
            for exc in errors:
                logger.error("Batch worker failed", exc_info=exc)
            self.sink.mark_stopped()
            self.sink.save_resume(
                ResumeInfo(result.resume_offset, total, elapsed)
            )
            raise BatchError(
                f"{len(errors)} worker(s) terminated abnormally; "
                f"resume from index {result.resume_offset}",
                errors,
            )
        if result.status is BatchStatus.COMPLETED:
            self.sink.finish()
            logger.info(
                f"Batch completed in {format_duration(elapsed)}: "
                f"{result.generated} generated, {result.skipped} skipped, "
                f"{result.failed} failed"
            )
        else:
            self.sink.mark_stopped()
            self.sink.save_resume(
                ResumeInfo(result.resume_offset, total, elapsed)
            )
            logger.info(
                f"Batch stopped after {format_duration(elapsed)}; "
                f"resume from index {result.resume_offset}"
            )
        return result

    def _summarise(self, start, end, elapsed, failed) -> BatchResult:
        with self._progress_lock:
            resume_offset = start
            while resume_offset <= end and resume_offset in self._done:
                resume_offset += 1
            if failed:
                status = BatchStatus.FAILED
            elif resume_offset > end:
                status = BatchStatus.COMPLETED
            else:
                status = BatchStatus.STOPPED
            self._set_status(status)
            return BatchResult(
                status=status,
                total=end - start + 1,
                processed=len(self._done),
                generated=self._generated,
                skipped=self._skipped,
                failed=self._failed,
                resume_offset=resume_offset,
                elapsed=elapsed,
            )
