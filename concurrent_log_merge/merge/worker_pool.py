"""
Worker Pool - Fixed-size thread pool that merges one log file per task

Each task reads one file and feeds its lines into the shared
OrderedMergeBuffer. Tasks run independently and in no particular order
relative to each other; the buffer alone decides the output order.

SHUTDOWN
========

After all tasks are submitted the pool stops accepting work and waits:

    1. up to ``shutdown_timeout`` seconds for the tasks to finish
    2. if they have not, it sets the cancel event (workers stop at their next
       line or pause) and drops tasks that never started
    3. waits up to ``force_timeout`` seconds more, then gives up with a
       warning

A KeyboardInterrupt while waiting cancels the tasks and is re-raised.

A pool serves exactly one merge run. Create a new one for the next run.
"""

import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple

from ..reader import DEFAULT_ENCODINGS, LogLineParseError, parse_log_line, read_log_lines
from ..utils import log_progress
from .merge_buffer import DuplicateTimestampError, OrderedMergeBuffer

DEFAULT_WORKERS = 15

# Seconds each worker waits after every line. Keeps all files advancing at a
# comparable pace, which the merge buffer's ordering relies on.
DEFAULT_PACE = 1.0

DEFAULT_SHUTDOWN_TIMEOUT = 150 * 60
DEFAULT_FORCE_TIMEOUT = 10

STATUS_OK = "ok"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"
STATUS_RUNNING = "running"


class TaskResult(NamedTuple):
    """Outcome of merging one log file."""

    path: str
    status: str
    lines_merged: int = 0
    encoding: Optional[str] = None
    error: Optional[BaseException] = None


def merge_log_file(
    path: str,
    buffer: OrderedMergeBuffer,
    pace: float = DEFAULT_PACE,
    encodings: Sequence[str] = DEFAULT_ENCODINGS,
    cancel_event: Optional[threading.Event] = None,
    verbose: bool = False,
) -> TaskResult:
    """
    Merge every line of one log file into the shared buffer.

    Lines are inserted in file order. After each line the worker waits
    ``pace`` seconds; the wait ends early if the pool is cancelled.

    A parse error (blank lines included), a duplicate timestamp, a second
    decoding failure or an error reading the file stops this file only. Lines
    merged before the error stay merged.

    Args:
        path: Log file to read
        buffer: Merge buffer shared by the run
        pace: Seconds to wait after each line (default: 1.0)
        encodings: Encodings to try, in order
        cancel_event: Event set by the pool to stop the task
        verbose: Print progress to stderr

    Returns:
        TaskResult with status "ok", "failed" or "cancelled"

    Raises:
        MergeOutputError: If the merged output cannot be written
    """
    if cancel_event is None:
        cancel_event = threading.Event()

    name = os.path.basename(path)
    log_progress(f"[READ] Reading file {name}", verbose)

    encoding = encodings[0]
    lines_merged = 0

    def on_fallback(_path, next_encoding, _error):
        nonlocal encoding
        encoding = next_encoding

    lines = read_log_lines(path, encodings, on_fallback=on_fallback, verbose=verbose)
    try:
        for line_number, text in enumerate(lines, 1):
            if cancel_event.is_set():
                return TaskResult(path, STATUS_CANCELLED, lines_merged, encoding)

            try:
                log_line = parse_log_line(text)
            except LogLineParseError as e:
                raise LogLineParseError(f"line {line_number}: {e}") from e

            buffer.insert(log_line)
            lines_merged += 1

            if pace > 0 and cancel_event.wait(pace):
                return TaskResult(path, STATUS_CANCELLED, lines_merged, encoding)

    except (LogLineParseError, DuplicateTimestampError, UnicodeDecodeError, OSError) as e:
        return TaskResult(path, STATUS_FAILED, lines_merged, encoding, e)
    finally:
        lines.close()

    return TaskResult(path, STATUS_OK, lines_merged, encoding)


class WorkerPool:
    """
    Thread pool for one merge run.

    Every task receives the pool's cancel event as the ``cancel_event``
    keyword argument and is expected to return a TaskResult.

    Example:
        >>> pool = WorkerPool(workers=4)
        >>> for path in files:
        ...     pool.submit(merge_log_file, path, buffer, pace=1.0)
        >>> pool.shutdown_and_await_termination(shutdown_timeout=600, force_timeout=10)
        True
        >>> failed = [r for r in pool.results() if r.status == "failed"]
    """

    def __init__(self, workers: int = DEFAULT_WORKERS, verbose: bool = False):
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.workers = workers
        self.verbose = verbose
        self.cancel_event = threading.Event()
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="log-merge")
        self._tasks: List[Tuple[Future, str]] = []

    def submit(self, fn: Callable[..., TaskResult], path: str, *args, **kwargs) -> Future:
        """
        Submit a task for one file.

        Args:
            fn: Task function, called as fn(path, *args, cancel_event=..., **kwargs)
            path: File the task works on

        Returns:
            The task's Future

        Raises:
            RuntimeError: If the pool was already shut down
        """
        future = self._executor.submit(
            self._run_task, fn, path, *args, cancel_event=self.cancel_event, **kwargs
        )
        self._tasks.append((future, path))
        return future

    def _run_task(self, fn, path, *args, **kwargs):
        # Reports before the future completes, so waiters see the diagnostics
        name = os.path.basename(path)
        try:
            result = fn(path, *args, **kwargs)
        except Exception as e:
            log_progress(f"[ERROR] {name}: {e}", verbose=True)
            raise

        if result.status == STATUS_FAILED:
            log_progress(f"[ERROR] {name}: {result.error}", verbose=True)
        else:
            log_progress(
                f"[READ] Finished {name}: {result.lines_merged} lines ({result.status})",
                self.verbose,
            )
        return result

    def await_termination(self, timeout: Optional[float]) -> bool:
        """
        Wait for all submitted tasks to finish.

        Args:
            timeout: Seconds to wait, or None to wait forever

        Returns:
            True if every task is done
        """
        _, not_done = wait([future for future, _ in self._tasks], timeout=timeout)
        return not not_done

    def shutdown_now(self):
        """Cancel the run: signal running tasks and drop the ones not started."""
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.cancel_event.set()

    def shutdown_and_await_termination(
        self,
        shutdown_timeout: Optional[float] = DEFAULT_SHUTDOWN_TIMEOUT,
        force_timeout: Optional[float] = DEFAULT_FORCE_TIMEOUT,
    ) -> bool:
        """
        Stop accepting tasks and wait for the submitted ones to finish.

        Args:
            shutdown_timeout: Seconds to wait before cancelling the tasks
            force_timeout: Seconds to wait after cancelling

        Returns:
            True if every task finished, False if some did not stop in time

        Raises:
            KeyboardInterrupt: If interrupted while waiting (tasks are cancelled first)
        """
        log_progress(
            f"[SHUTDOWN] Waiting up to {shutdown_timeout}s for {len(self._tasks)} tasks",
            self.verbose,
        )
        self._executor.shutdown(wait=False)

        try:
            if not self.await_termination(shutdown_timeout):
                log_progress(
                    f"[WARNING] Tasks still running after {shutdown_timeout}s, cancelling",
                    verbose=True,
                )
                self.shutdown_now()
                if not self.await_termination(force_timeout):
                    log_progress(
                        f"[WARNING] Pool did not terminate within {force_timeout}s",
                        verbose=True,
                    )
                    return False
        except KeyboardInterrupt:
            self.shutdown_now()
            raise

        log_progress("[SHUTDOWN] Pool is shut down", self.verbose)
        return True

    def results(self) -> List[TaskResult]:
        """
        Collect the outcome of every submitted task, in submission order.

        Tasks that raised are reported as "failed" with the exception, tasks
        that never started as "cancelled", and tasks still executing as
        "running".
        """
        results = []
        for future, path in self._tasks:
            if future.cancelled():
                results.append(TaskResult(path, STATUS_CANCELLED))
            elif not future.done():
                results.append(TaskResult(path, STATUS_RUNNING))
            elif future.exception() is not None:
                results.append(TaskResult(path, STATUS_FAILED, error=future.exception()))
            else:
                results.append(future.result())
        return results
