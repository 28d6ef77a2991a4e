"""Discovery module - Find the per-server log files of an input directory."""

from .file_discovery import discover_log_files, ensure_log_directory, has_extension

__all__ = ["discover_log_files", "ensure_log_directory", "has_extension"]
