#!/usr/bin/env python3
"""
Test Suite for worker_pool.py - Per-File Merge Tasks and Their Thread Pool
===========================================================================

Validates the task that merges one log file into the shared buffer and the
pool that runs those tasks, including its shutdown discipline.

RUNNING THE TESTS
=================
    # Run all tests with pytest (recommended)
    pytest tests/test_worker_pool.py -v

    # Run specific test class
    pytest tests/test_worker_pool.py::TestWorkerPoolShutdown -v

TEST COVERAGE SUMMARY
=====================
1. TestMergeLogFile - one file into one buffer: ordering, errors, fallback
2. TestWorkerPool - submission, result collection, error reporting
3. TestWorkerPoolShutdown - orderly, forced and interrupted shutdown

TIMING
======
Tasks that must block wait on threading.Event objects with generous
timeouts, and every test releases them in a finally block, so a failing
assertion never leaves a worker thread hanging.
"""

import tempfile
import threading
import time
import unittest
from io import StringIO
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from concurrent_log_merge.merge.merge_buffer import (
    DuplicateTimestampError,
    MergeOutputError,
    OrderedMergeBuffer,
)
from concurrent_log_merge.merge.worker_pool import (
    STATUS_CANCELLED,
    STATUS_FAILED,
    STATUS_OK,
    STATUS_RUNNING,
    TaskResult,
    WorkerPool,
    merge_log_file,
)
from concurrent_log_merge.reader import LogLineParseError, parse_log_line


def ts(seconds):
    """Helper to format 2024-11-05T10:00:00 + seconds"""
    return f"2024-11-05T10:{seconds // 60:02d}:{seconds % 60:02d}"


class TestMergeLogFile(unittest.TestCase):
    """Test cases for the merge_log_file task"""

    def setUp(self):
        self.test_dir = tempfile.TemporaryDirectory()
        self.test_path = Path(self.test_dir.name)
        self.output = StringIO()
        self.buffer = OrderedMergeBuffer(self.output)

    def tearDown(self):
        self.test_dir.cleanup()

    def create_test_file(self, filename, lines, encoding="utf-8"):
        """Helper to create a test file with given lines"""
        file_path = self.test_path / filename
        file_path.write_bytes(("\n".join(lines) + "\n" if lines else "").encode(encoding))
        return str(file_path)

    def merged(self):
        """Drain the buffer and return every line written"""
        self.buffer.drain()
        return self.output.getvalue().splitlines()

    def test_single_file_in_order(self):
        """Test that one file comes out unchanged and in order"""
        lines = [f"{ts(i)},web-01 request {i}" for i in range(10)]
        path = self.create_test_file("web-01.log", lines)

        result = merge_log_file(path, self.buffer, pace=0)

        self.assertEqual(result, TaskResult(path, STATUS_OK, 10, "utf-8"))
        self.assertEqual(self.merged(), lines)

    def test_blank_line_stops_file(self):
        """Test that an empty line is a parse error like any other bad line"""
        path = self.create_test_file("a.log", [f"{ts(0)},a", "", f"{ts(1)},b"])

        result = merge_log_file(path, self.buffer, pace=0)

        self.assertEqual(result.status, STATUS_FAILED)
        self.assertEqual(result.lines_merged, 1)
        self.assertIsInstance(result.error, LogLineParseError)
        self.assertIn("line 2", str(result.error))
        self.assertEqual(self.merged(), [f"{ts(0)},a"])

    def test_whitespace_line_stops_file(self):
        """Test that a line of spaces has no timestamp either"""
        path = self.create_test_file("a.log", ["   ", f"{ts(0)},a"])

        result = merge_log_file(path, self.buffer, pace=0)

        self.assertEqual(result.status, STATUS_FAILED)
        self.assertEqual(result.lines_merged, 0)
        self.assertIn("line 1", str(result.error))

    def test_output_error_is_not_a_file_error(self):
        """Test that a broken output propagates instead of failing the input file"""
        output = Mock()
        output.write.side_effect = BrokenPipeError("pipe closed")
        buffer = OrderedMergeBuffer(output)
        path = self.create_test_file("a.log", [f"{ts(0)},a", f"{ts(1)},b"])

        with pytest.raises(MergeOutputError):
            merge_log_file(path, buffer, pace=0)

        self.assertEqual(buffer.pending_timestamps(), [parse_log_line(f"{ts(0)},a").timestamp])

    def test_parse_error_stops_file(self):
        """Test that a bad line stops the file and keeps what was merged"""
        path = self.create_test_file(
            "a.log", [f"{ts(0)},a", f"{ts(1)},b", "garbage without timestamp", f"{ts(3)},d"]
        )

        result = merge_log_file(path, self.buffer, pace=0)

        self.assertEqual(result.status, STATUS_FAILED)
        self.assertEqual(result.lines_merged, 2)
        self.assertIsInstance(result.error, LogLineParseError)
        self.assertIn("line 3", str(result.error))
        self.assertEqual(self.merged(), [f"{ts(0)},a", f"{ts(1)},b"])

    def test_duplicate_timestamp_stops_file(self):
        """Test that a timestamp already buffered by another file fails the task"""
        self.buffer.insert(parse_log_line(f"{ts(5)},other server"))
        path = self.create_test_file("a.log", [f"{ts(1)},a", f"{ts(5)},clash", f"{ts(9)},never"])

        result = merge_log_file(path, self.buffer, pace=0)

        self.assertEqual(result.status, STATUS_FAILED)
        self.assertIsInstance(result.error, DuplicateTimestampError)
        self.assertEqual(result.lines_merged, 1)
        self.assertEqual(self.merged(), [f"{ts(1)},a", f"{ts(5)},other server"])

    def test_cp1252_file(self):
        """Test that a Windows-1252 file is merged through the fallback"""
        lines = [f"{ts(0)},café", f"{ts(1)},€ 12"]
        path = self.create_test_file("legacy.log", lines, encoding="cp1252")

        result = merge_log_file(path, self.buffer, pace=0)

        self.assertEqual(result.status, STATUS_OK)
        self.assertEqual(result.encoding, "cp1252")
        self.assertEqual(self.merged(), lines)

    def test_undecodable_file_fails(self):
        """Test that a file invalid in every encoding fails the task"""
        path = self.test_path / "broken.log"
        path.write_bytes(b"2024-11-05T10:00:00,\x81\n")

        result = merge_log_file(str(path), self.buffer, pace=0)

        self.assertEqual(result.status, STATUS_FAILED)
        self.assertIsInstance(result.error, UnicodeDecodeError)

    def test_missing_file_fails(self):
        """Test that an unreadable file fails the task without raising"""
        result = merge_log_file(str(self.test_path / "gone.log"), self.buffer, pace=0)

        self.assertEqual(result.status, STATUS_FAILED)
        self.assertIsInstance(result.error, FileNotFoundError)

    def test_cancelled_before_start(self):
        """Test that a set cancel event stops the task before any line"""
        path = self.create_test_file("a.log", [f"{ts(0)},a"])
        cancel = threading.Event()
        cancel.set()

        result = merge_log_file(path, self.buffer, pace=0, cancel_event=cancel)

        self.assertEqual(result.status, STATUS_CANCELLED)
        self.assertEqual(result.lines_merged, 0)
        self.assertEqual(len(self.buffer), 0)

    def test_cancel_interrupts_pace(self):
        """Test that cancelling ends the per-line wait early"""
        path = self.create_test_file("a.log", [f"{ts(i)},x" for i in range(3)])
        cancel = threading.Event()
        threading.Timer(0.2, cancel.set).start()

        start = time.monotonic()
        result = merge_log_file(path, self.buffer, pace=30, cancel_event=cancel)

        self.assertLess(time.monotonic() - start, 10)
        self.assertEqual(result.status, STATUS_CANCELLED)
        self.assertEqual(result.lines_merged, 1)

    def test_pace_between_lines(self):
        """Test that the worker waits after every line"""
        path = self.create_test_file("a.log", [f"{ts(i)},x" for i in range(3)])

        start = time.monotonic()
        merge_log_file(path, self.buffer, pace=0.1)

        self.assertGreaterEqual(time.monotonic() - start, 0.25)


class TestWorkerPool(unittest.TestCase):
    """Test cases for WorkerPool submission and results"""

    def test_workers_must_be_positive(self):
        """Test that a pool needs at least one worker"""
        with pytest.raises(ValueError):
            WorkerPool(workers=0)

    def test_task_receives_cancel_event(self):
        """Test that tasks are called with the pool's cancel event"""
        pool = WorkerPool(workers=2)
        seen = []

        def task(path, cancel_event=None):
            seen.append(cancel_event)
            return TaskResult(path, STATUS_OK)

        pool.submit(task, "a.log")
        self.assertTrue(pool.shutdown_and_await_termination(5, 5))

        self.assertEqual(seen, [pool.cancel_event])

    def test_results_in_submission_order(self):
        """Test that results are listed in the order tasks were submitted"""
        pool = WorkerPool(workers=4)

        def task(path, delay, cancel_event=None):
            time.sleep(delay)
            return TaskResult(path, STATUS_OK, lines_merged=1)

        pool.submit(task, "slow.log", 0.2)
        pool.submit(task, "fast.log", 0)
        pool.shutdown_and_await_termination(5, 5)

        self.assertEqual([r.path for r in pool.results()], ["slow.log", "fast.log"])

    def test_raising_task_is_reported(self):
        """Test that an exception escaping a task becomes a failed result"""
        pool = WorkerPool(workers=1)

        def task(path, cancel_event=None):
            raise RuntimeError("disk on fire")

        with patch("sys.stderr", new_callable=StringIO) as mock_stderr:
            pool.submit(task, "/var/log/a.log")
            pool.shutdown_and_await_termination(5, 5)

        (result,) = pool.results()
        self.assertEqual(result.status, STATUS_FAILED)
        self.assertIsInstance(result.error, RuntimeError)
        self.assertIn("[ERROR] a.log: disk on fire", mock_stderr.getvalue())

    def test_failed_result_is_reported(self):
        """Test that a failed TaskResult is reported on stderr"""
        pool = WorkerPool(workers=1)

        def task(path, cancel_event=None):
            return TaskResult(path, STATUS_FAILED, error=ValueError("bad line"))

        with patch("sys.stderr", new_callable=StringIO) as mock_stderr:
            pool.submit(task, "b.log")
            pool.shutdown_and_await_termination(5, 5)

        self.assertIn("[ERROR] b.log: bad line", mock_stderr.getvalue())

    def test_submit_after_shutdown_raises(self):
        """Test that a shut-down pool accepts no new tasks"""
        pool = WorkerPool(workers=1)
        pool.shutdown_and_await_termination(5, 5)

        with self.assertRaises(RuntimeError):
            pool.submit(lambda path, cancel_event=None: None, "a.log")


class TestWorkerPoolShutdown(unittest.TestCase):
    """Test cases for the shutdown discipline"""

    def setUp(self):
        self.release = threading.Event()

    def tearDown(self):
        self.release.set()

    def cooperative_task(self, path, cancel_event=None):
        """Task that runs until the pool cancels it"""
        cancel_event.wait(30)
        return TaskResult(path, STATUS_CANCELLED)

    def hung_task(self, path, cancel_event=None):
        """Task that ignores cancellation until the test releases it"""
        self.release.wait(30)
        return TaskResult(path, STATUS_OK)

    def test_orderly_shutdown(self):
        """Test that finished tasks shut down without cancelling"""
        pool = WorkerPool(workers=2)
        pool.submit(lambda path, cancel_event=None: TaskResult(path, STATUS_OK), "a.log")

        self.assertTrue(pool.shutdown_and_await_termination(5, 5))
        self.assertFalse(pool.cancel_event.is_set())

    def test_timeout_escalates_to_cancel(self):
        """Test that slow tasks are cancelled once the shutdown timeout expires"""
        pool = WorkerPool(workers=2)
        pool.submit(self.cooperative_task, "a.log")

        with patch("sys.stderr", new_callable=StringIO) as mock_stderr:
            terminated = pool.shutdown_and_await_termination(0.1, 5)

        self.assertTrue(terminated)
        self.assertTrue(pool.cancel_event.is_set())
        self.assertEqual(pool.results()[0].status, STATUS_CANCELLED)
        self.assertIn("cancelling", mock_stderr.getvalue())

    def test_queued_tasks_are_dropped(self):
        """Test that tasks still waiting for a worker are cancelled"""
        pool = WorkerPool(workers=1)
        pool.submit(self.cooperative_task, "running.log")
        pool.submit(self.cooperative_task, "queued.log")

        with patch("sys.stderr", new_callable=StringIO):
            pool.shutdown_and_await_termination(0.1, 5)

        statuses = [r.status for r in pool.results()]
        self.assertEqual(statuses, [STATUS_CANCELLED, STATUS_CANCELLED])

    def test_shutdown_bound_with_hung_task(self):
        """Test that a task that never completes cannot hang the shutdown"""
        pool = WorkerPool(workers=1)
        pool.submit(self.hung_task, "hung.log")

        start = time.monotonic()
        with patch("sys.stderr", new_callable=StringIO) as mock_stderr:
            terminated = pool.shutdown_and_await_termination(0.1, 0.2)
        elapsed = time.monotonic() - start

        self.assertFalse(terminated)
        self.assertLess(elapsed, 5)
        self.assertIn("Pool did not terminate", mock_stderr.getvalue())
        self.assertEqual(pool.results()[0].status, STATUS_RUNNING)

    def test_interrupt_cancels_and_propagates(self):
        """Test that an interrupted wait cancels the tasks and re-raises"""
        pool = WorkerPool(workers=1)
        pool.submit(self.cooperative_task, "a.log")

        with patch.object(pool, "await_termination", side_effect=KeyboardInterrupt):
            with pytest.raises(KeyboardInterrupt):
                pool.shutdown_and_await_termination(60, 5)

        self.assertTrue(pool.cancel_event.is_set())
        self.assertTrue(pool.await_termination(5))


if __name__ == "__main__":
    unittest.main()
