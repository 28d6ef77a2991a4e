"""Reader module - Decode server log files and parse their timestamps."""

from .line_reader import (
    DEFAULT_ENCODINGS,
    LogLine,
    LogLineParseError,
    parse_log_line,
    parse_timestamp,
    read_log_lines,
)

__all__ = [
    "DEFAULT_ENCODINGS",
    "LogLine",
    "LogLineParseError",
    "parse_log_line",
    "parse_timestamp",
    "read_log_lines",
]
