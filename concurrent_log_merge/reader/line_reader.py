"""
Line reader for per-server log files.

LOG LINE FORMAT
===============

Every line starts with an ISO-8601 date-time followed by a comma:

    2024-11-05T10:15:30,web-01 GET /index.html 200
    2024-11-05T10:15:31.250+01:00,web-02 worker restarted
    2024-11-05T10:15:32Z[Europe/Lisbon],db-01 checkpoint complete

Fractional seconds and a ``Z`` or numeric offset are optional; a bracketed
region id may follow an offset. Blank lines and any other prefix are parse
errors. The offset is dropped after parsing: lines are ordered by their
wall-clock value, so logs from servers writing different offsets compare
as written.

ENCODINGS
=========

Files are decoded as UTF-8 first. Servers with a legacy locale write
Windows-1252, so on a decoding error the file is read again from the start
with the next encoding in the list. Only the encodings listed are tried.
"""

import re
from datetime import datetime
from typing import Callable, Iterator, NamedTuple, Optional, Sequence

from ..utils import log_progress

DEFAULT_ENCODINGS = ("utf-8", "cp1252")

FIELD_SEPARATOR = ","

# Extended ISO-8601 date-time; a region id such as "[Europe/Lisbon]" may only
# follow an offset
_DATE_TIME = re.compile(
    r"(?P<local>[0-9]{4}-[0-9]{2}-[0-9]{2}T[0-9]{2}:[0-9]{2}(?::[0-9]{2}(?:\.[0-9]{1,9})?)?)"
    r"(?:(?P<offset>Z|[+-][0-9]{2}:[0-9]{2}(?::[0-9]{2})?)(?:\[[^\[\]]+\])?)?"
)


class LogLineParseError(ValueError):
    """Raised when a line does not start with a parseable timestamp."""


class LogLine(NamedTuple):
    """One log line: its parsed timestamp and the original text."""

    timestamp: datetime
    text: str


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 date-time into a naive datetime.

    Only the extended format is accepted: ``YYYY-MM-DDTHH:MM`` with optional
    seconds and fraction, an optional ``Z`` or ``+HH:MM[:SS]`` offset, and a
    region id in brackets only after an offset.

    Args:
        value: Date-time text, e.g. "2024-11-05T10:15:30.250+01:00"

    Returns:
        The parsed datetime with any UTC offset discarded

    Raises:
        LogLineParseError: If the value is not an ISO-8601 date-time
    """
    match = _DATE_TIME.fullmatch(value)
    if match is None:
        raise LogLineParseError(f"Not an ISO-8601 date-time: {value!r}")
    try:
        parsed = datetime.fromisoformat(match.group("local") + (match.group("offset") or ""))
    except ValueError as e:
        raise LogLineParseError(f"Not an ISO-8601 date-time: {value!r}") from e
    return parsed.replace(tzinfo=None)


def parse_log_line(text: str) -> LogLine:
    """
    Parse a log line into a LogLine.

    The timestamp is the text before the first comma. The original text is
    kept as-is for output.

    Args:
        text: Log line without its line terminator

    Returns:
        LogLine with the parsed timestamp and the original text

    Raises:
        LogLineParseError: If the line has no parseable timestamp

    Example:
        >>> parse_log_line("2024-11-05T10:15:30,web-01 started").timestamp
        datetime.datetime(2024, 11, 5, 10, 15, 30)
    """
    prefix = text.split(FIELD_SEPARATOR, 1)[0]
    return LogLine(parse_timestamp(prefix), text)


def read_log_lines(
    path: str,
    encodings: Sequence[str] = DEFAULT_ENCODINGS,
    on_fallback: Optional[Callable[[str, str, UnicodeDecodeError], None]] = None,
    verbose: bool = False,
) -> Iterator[str]:
    """
    Read a log file line by line, retrying with a fallback encoding.

    Each encoding is tried in order. When decoding fails, the file is opened
    again and read from its first byte with the next encoding. Lines already
    yielded by a failed attempt are read again but not yielded twice, so a
    caller that consumed them keeps a consistent view of the file.

    Args:
        path: Path to the log file
        encodings: Encodings to try, in order (default: utf-8, cp1252)
        on_fallback: Optional callback(path, next_encoding, error) invoked
            before each retry
        verbose: Print fallback info to stderr

    Yields:
        str: Decoded lines without line terminators

    Raises:
        UnicodeDecodeError: If the last encoding fails too
        OSError: If the file cannot be read (no retry)
    """
    if not encodings:
        raise ValueError("At least one encoding is required")

    delivered = 0
    for attempt, encoding in enumerate(encodings):
        try:
            with open(path, "r", encoding=encoding) as fh:
                for index, line in enumerate(fh):
                    if index < delivered:
                        continue
                    delivered += 1
                    yield line.rstrip("\r\n")
            return
        except UnicodeDecodeError as e:
            if attempt + 1 >= len(encodings):
                raise
            next_encoding = encodings[attempt + 1]
            log_progress(
                f"[ENCODING] {path}: cannot decode as {encoding} ({e.reason}), "
                f"restarting with {next_encoding}",
                verbose,
            )
            if on_fallback is not None:
                on_fallback(path, next_encoding, e)
