"""Merge module - Concurrent time-ordered merging of per-server log files."""

from .merge_buffer import DuplicateTimestampError, MergeOutputError, OrderedMergeBuffer
from .merge_log_directory import RunSummary, merge_files, merge_log_directory
from .worker_pool import TaskResult, WorkerPool, merge_log_file

__all__ = [
    "OrderedMergeBuffer",
    "DuplicateTimestampError",
    "MergeOutputError",
    "WorkerPool",
    "TaskResult",
    "merge_log_file",
    "merge_files",
    "merge_log_directory",
    "RunSummary",
]
