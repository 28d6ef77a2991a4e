"""
Ordered Merge Buffer - Shared timestamp-ordered buffer for concurrent merging

Every worker thread inserts the lines of its own log file into one shared
buffer. Inserting a line flushes, in timestamp order, every buffered line
strictly older than it, then keeps the new line buffered. The output therefore
advances as fast as the slowest file without waiting for any file to finish.

HOW ORDERING WORKS
==================

Within one file, each line is older than the next. Across files nothing is
known, so the buffer assumes that all files advance through time at about
the same pace (workers wait a fixed interval after each line to keep it
that way). Under that assumption, everything older than the newest line just
seen is very likely final and can be written out:

    buffer: 10:00:01(b)  10:00:03(b)
    insert: 10:00:02(a)  -> writes 10:00:01(b)
    buffer: 10:00:02(a)  10:00:03(b)

A file that lags far behind the others can still deliver lines older than
what was already written; those lines are written late. Two buffered lines
can never share a timestamp: the second insert fails with
DuplicateTimestampError.

Data structure:
    - min-heap of timestamps (heapq), so flushing pops while the head is older
    - dict timestamp -> line text, for the duplicate check and the text lookup
    - one lock around the whole check, flush and add sequence
"""

import heapq
import sys
import threading
from datetime import datetime
from typing import Dict, List, Optional, TextIO

from ..reader import LogLine


class DuplicateTimestampError(KeyError):
    """Raised when a line is inserted with a timestamp that is already buffered."""

    def __init__(self, timestamp: datetime, buffered: str, rejected: str):
        super().__init__(timestamp)
        self.timestamp = timestamp
        self.buffered = buffered
        self.rejected = rejected

    def __str__(self):
        return (
            f"Duplicate timestamp {self.timestamp.isoformat()} for lines "
            f"{self.buffered!r} and {self.rejected!r}"
        )


class MergeOutputError(RuntimeError):
    """
    Raised when merged lines cannot be written to the output.

    The line being written stays buffered. Wraps the OSError from the output
    stream (e.g. BrokenPipeError when the reader of stdout went away) so it is
    not mistaken for a failure to read an input file.
    """


class OrderedMergeBuffer:
    """
    Timestamp-ordered buffer shared by all workers of one merge run.

    The only mutating operations are insert() and drain(); both run entirely
    under the buffer lock, so no line can be written twice or read after it
    was removed.

    Attributes:
        lines_emitted: Number of lines written to the output so far

    Example:
        >>> buffer = OrderedMergeBuffer()
        >>> buffer.insert(parse_log_line("2024-11-05T10:00:02,a"))
        0
        >>> buffer.insert(parse_log_line("2024-11-05T10:00:03,b"))
        2024-11-05T10:00:02,a
        1
    """

    def __init__(self, output: Optional[TextIO] = None):
        """
        Args:
            output: Text stream for merged lines. None means sys.stdout,
                looked up at write time.
        """
        self._output = output
        self._lock = threading.Lock()
        self._heap: List[datetime] = []
        self._lines: Dict[datetime, str] = {}
        self.lines_emitted = 0

    def __len__(self):
        with self._lock:
            return len(self._lines)

    def pending_timestamps(self) -> List[datetime]:
        """Return a sorted snapshot of the buffered timestamps."""
        with self._lock:
            return sorted(self._lines)

    def insert(self, line: LogLine) -> int:
        """
        Insert a line, first writing out every buffered line older than it.

        Args:
            line: Parsed log line to buffer

        Returns:
            Number of lines written to the output by this insert

        Raises:
            DuplicateTimestampError: If a line with the same timestamp is
                buffered. The buffer is left unchanged.
            MergeOutputError: If the output cannot be written. Lines written
                before the failure are removed, the rest stay buffered and
                the new line is not added.
        """
        with self._lock:
            if line.timestamp in self._lines:
                raise DuplicateTimestampError(
                    line.timestamp, self._lines[line.timestamp], line.text
                )

            flushed = self._flush_older_than(line.timestamp)

            heapq.heappush(self._heap, line.timestamp)
            self._lines[line.timestamp] = line.text
            return flushed

    def drain(self) -> int:
        """
        Write out and remove every buffered line, oldest first.

        Meant for the end of a run, once no worker can insert anymore.

        Returns:
            Number of lines written

        Raises:
            MergeOutputError: If the output cannot be written
        """
        with self._lock:
            return self._flush_older_than(None)

    def _flush_older_than(self, timestamp: Optional[datetime]) -> int:
        # Caller holds the lock. None flushes everything.
        out = self._output if self._output is not None else sys.stdout
        flushed = 0
        try:
            while self._heap and (timestamp is None or self._heap[0] < timestamp):
                oldest = self._heap[0]
                out.write(self._lines[oldest] + "\n")
                heapq.heappop(self._heap)
                del self._lines[oldest]
                flushed += 1
                self.lines_emitted += 1

            if flushed:
                out.flush()
        except OSError as e:
            raise MergeOutputError(e) from e
        return flushed
