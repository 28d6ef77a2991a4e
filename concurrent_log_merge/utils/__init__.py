"""Utils module - Shared helpers for the merge tools."""

from .progress import log_progress

__all__ = ["log_progress"]
