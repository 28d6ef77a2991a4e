"""
Concurrent Log Merge

A Python package for merging the log files of many servers into one
chronologically ordered stream.
Reads every file of a directory in parallel and writes their lines in
timestamp order while the files are still being read.

Modules:
    discovery: Find the log files of an input directory
    reader: Decode log files (with encoding fallback) and parse timestamps
    merge: Ordered merge buffer, worker pool and the merge-server-logs tool
    utils: Shared utilities
"""

__version__ = "1.0.0"

from .discovery import discover_log_files
from .merge import OrderedMergeBuffer, merge_log_directory

__all__ = [
    "merge_log_directory",
    "discover_log_files",
    "OrderedMergeBuffer",
    "__version__",
]
