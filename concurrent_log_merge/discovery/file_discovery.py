"""
File discovery utilities for finding per-server log files.

Only the top level of the input directory is scanned: servers drop their
logs side by side into one folder, so there is nothing to recurse into.
"""

import os
from typing import List

from ..utils import log_progress

DEFAULT_EXTENSION = "log"


def has_extension(filename: str, extension: str) -> bool:
    """
    Check if a file name ends with the given extension.

    The extension is the text after the last dot of the file name and must
    match exactly (case-sensitive). A leading dot in ``extension`` is ignored,
    so ``"log"`` and ``".log"`` are equivalent.

    Args:
        filename: File name or path to check
        extension: Extension to match, with or without the leading dot

    Returns:
        True if the file has exactly that extension
    """
    basename = os.path.basename(filename)
    wanted = extension.lstrip(".")
    if "." not in basename:
        return wanted == ""
    return basename.rsplit(".", 1)[1] == wanted


def ensure_log_directory(directory: str, verbose: bool = False) -> bool:
    """
    Create the input directory if it does not exist yet.

    Args:
        directory: Path of the input directory
        verbose: If True, print creation info to stderr

    Returns:
        True if the directory was created, False if something already existed
        at that path
    """
    if os.path.exists(directory):
        return False

    os.makedirs(directory, exist_ok=True)
    log_progress(f"[DISCOVER] Created missing directory: {directory}", verbose)
    return True


def discover_log_files(
    directory: str, extension: str = DEFAULT_EXTENSION, verbose: bool = False
) -> List[str]:
    """
    Discover the log files directly inside a directory.

    Args:
        directory: Directory to scan (not recursive)
        extension: File extension to select (default: "log")
        verbose: If True, print discovery info to stderr

    Returns:
        Sorted list of absolute paths to regular files with the extension

    Raises:
        OSError: If the directory cannot be listed
    """
    log_progress(f"[DISCOVER] Scanning directory: {directory}", verbose)

    files = []
    skipped = 0
    with os.scandir(directory) as entries:
        for entry in entries:
            # is_file() follows symlinks, so a link to a regular file counts
            if entry.is_file() and has_extension(entry.name, extension):
                files.append(os.path.abspath(entry.path))
            else:
                skipped += 1
                log_progress(f"[EXCLUDE] {entry.name}", verbose)

    sorted_files = sorted(files)

    log_progress(
        f"[DISCOVER] Found {len(sorted_files)} .{extension.lstrip('.')} files "
        f"({skipped} other entries ignored)",
        verbose,
    )

    return sorted_files
