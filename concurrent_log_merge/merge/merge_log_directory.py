#!/usr/bin/env python3
"""
Merge Server Logs - Concurrent time-ordered merge of a directory of log files

This script reads every log file of a directory in parallel and writes one
chronologically ordered stream of their lines. Files do not need to be
sorted against each other, and nothing has to be pre-processed or copied:
each worker streams its own file into a shared timestamp-ordered buffer, and
lines are written out as soon as a newer line from any file arrives.

Usage Examples:
    # Merge all .log files of a directory to stdout
    merge-server-logs /data/server-logs

    # Write the merged stream to a file, with progress on stderr
    merge-server-logs /data/server-logs -o merged.log -v

    # Fewer workers, faster pace (for files written at a higher rate)
    merge-server-logs /data/server-logs -w 4 --pace 0.1

    # Merge .txt files instead of .log files
    merge-server-logs /data/exports --extension txt

    # Pipe to other processes
    merge-server-logs /data/server-logs | grep ERROR
    merge-server-logs /data/server-logs 2> errors.log | gzip > merged.log.gz

Requirements:
    - Each line starts with an ISO-8601 date-time followed by a comma
    - Within one file, timestamps increase line by line
    - Files are UTF-8 or Windows-1252 encoded
    - No two lines may share the exact same timestamp

Ordering:
    Every worker waits ``--pace`` seconds after each line so that all files
    move forward in time together. The output is correctly ordered as long as
    no file lags far behind the others; a lagging file's older lines are
    written late rather than held back.

Exit codes:
    0   all files merged
    1   the directory could not be read, or at least one file failed
    130 interrupted by user
"""

import argparse
import os
import sys
from typing import List, NamedTuple, Optional, Sequence, TextIO

from ..discovery import discover_log_files, ensure_log_directory
from ..discovery.file_discovery import DEFAULT_EXTENSION
from ..reader import DEFAULT_ENCODINGS
from ..utils import log_progress
from .merge_buffer import OrderedMergeBuffer
from .worker_pool import (
    DEFAULT_FORCE_TIMEOUT,
    DEFAULT_PACE,
    DEFAULT_SHUTDOWN_TIMEOUT,
    DEFAULT_WORKERS,
    STATUS_CANCELLED,
    STATUS_FAILED,
    STATUS_RUNNING,
    TaskResult,
    WorkerPool,
    merge_log_file,
)


class RunSummary(NamedTuple):
    """Counts and task outcomes of one merge run."""

    files_found: int
    lines_emitted: int
    lines_drained: int
    failed: int
    cancelled: int
    terminated: bool
    results: List[TaskResult]


def merge_files(
    files: Sequence[str],
    out: Optional[TextIO] = None,
    workers: int = DEFAULT_WORKERS,
    pace: float = DEFAULT_PACE,
    shutdown_timeout: Optional[float] = DEFAULT_SHUTDOWN_TIMEOUT,
    force_timeout: Optional[float] = DEFAULT_FORCE_TIMEOUT,
    encodings: Sequence[str] = DEFAULT_ENCODINGS,
    verbose: bool = False,
) -> RunSummary:
    """
    Merge the given log files concurrently into one ordered stream.

    Args:
        files: Log files to merge, one worker task each
        out: Output stream, or None for sys.stdout
        workers: Number of worker threads (default: 15)
        pace: Seconds each worker waits after every line (default: 1.0)
        shutdown_timeout: Seconds to wait for the tasks before cancelling them
        force_timeout: Seconds to wait for cancelled tasks to stop
        encodings: Encodings to try for every file, in order
        verbose: Print progress to stderr

    Returns:
        RunSummary of the run

    Algorithm:
        1. Creates one merge buffer and one worker pool for this run
        2. Submits one task per file; each task inserts its lines into the buffer
        3. Shuts the pool down (forced if dispatching fails)
        4. Writes out what is left in the buffer, oldest first
    """
    buffer = OrderedMergeBuffer(out)
    pool = WorkerPool(workers, verbose=verbose)

    try:
        for path in files:
            pool.submit(merge_log_file, path, buffer, pace=pace, encodings=encodings, verbose=verbose)

        log_progress("[SHUTDOWN] Proceed to terminate all workers", verbose)
        terminated = pool.shutdown_and_await_termination(shutdown_timeout, force_timeout)
    except KeyboardInterrupt:
        pool.shutdown_now()
        raise
    except Exception as e:
        log_progress(f"[ERROR] Dispatch failed: {e}", verbose=True)
        pool.shutdown_now()
        if not pool.await_termination(force_timeout):
            log_progress(
                f"[WARNING] Pool did not terminate within {force_timeout}s", verbose=True
            )
        raise

    # A worker that did not stop could still insert, so only drain a stopped pool
    lines_drained = 0
    if terminated:
        lines_drained = buffer.drain()
        log_progress(f"[DRAIN] {lines_drained} buffered lines written", verbose)
    else:
        log_progress(
            f"[WARNING] {len(buffer)} buffered lines not written, workers still running",
            verbose=True,
        )

    results = pool.results()
    return RunSummary(
        files_found=len(files),
        lines_emitted=buffer.lines_emitted,
        lines_drained=lines_drained,
        failed=sum(1 for r in results if r.status == STATUS_FAILED),
        cancelled=sum(1 for r in results if r.status in (STATUS_CANCELLED, STATUS_RUNNING)),
        terminated=terminated,
        results=results,
    )


def merge_log_directory(
    directory: str,
    output: str = "-",
    workers: int = DEFAULT_WORKERS,
    extension: str = DEFAULT_EXTENSION,
    pace: float = DEFAULT_PACE,
    shutdown_timeout: Optional[float] = DEFAULT_SHUTDOWN_TIMEOUT,
    force_timeout: Optional[float] = DEFAULT_FORCE_TIMEOUT,
    encodings: Sequence[str] = DEFAULT_ENCODINGS,
    create_missing: bool = True,
    verbose: bool = False,
) -> RunSummary:
    """
    Merge every log file of a directory into one chronologically ordered stream.

    Args:
        directory: Directory holding the per-server log files
        output: Output file path, or '-' for stdout
        workers: Number of worker threads (default: 15)
        extension: Extension of the files to merge (default: "log")
        pace: Seconds each worker waits after every line (default: 1.0)
        shutdown_timeout: Seconds to wait for the workers before cancelling
            them (default: 150 minutes)
        force_timeout: Seconds to wait for cancelled workers (default: 10)
        encodings: Encodings to try for every file, in order
        create_missing: Create the directory if it does not exist
        verbose: Print progress to stderr

    Returns:
        RunSummary of the run

    Raises:
        OSError: If the directory cannot be listed
    """
    log_progress("[START] Entered to merge and print logs", verbose)

    if create_missing:
        ensure_log_directory(directory, verbose)
    files = discover_log_files(directory, extension, verbose)
    log_progress(f"[DISCOVER] Number of log files found: {len(files)}", verbose)

    options = dict(
        workers=workers,
        pace=pace,
        shutdown_timeout=shutdown_timeout,
        force_timeout=force_timeout,
        encodings=encodings,
        verbose=verbose,
    )
    if output == "-":
        summary = merge_files(files, None, **options)
    else:
        with open(output, "w", encoding="utf-8") as out:
            summary = merge_files(files, out, **options)

    log_progress(
        f"[DONE] Merge and print logs finished: {summary.files_found} files, "
        f"{summary.lines_emitted} lines written, {summary.failed} failed, "
        f"{summary.cancelled} cancelled",
        verbose,
    )
    return summary


def non_negative_float(value):
    number = float(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {value}")
    return number


def main(argv=None):
    """
    Main entry point for command-line usage.

    When cancelled workers did not stop within the force timeout, the process
    exits right after flushing stdout and stderr instead of waiting for their
    threads.
    """
    parser = argparse.ArgumentParser(
        description="Merge the log files of a directory into one time-ordered stream.",
        epilog="Examples:\n"
        "  merge-server-logs /data/server-logs\n"
        "  merge-server-logs /data/server-logs -o merged.log -v\n"
        "  merge-server-logs /data/server-logs -w 4 --pace 0.1 | grep ERROR",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("directory", help="Directory containing the server log files")
    parser.add_argument(
        "-o",
        "--output",
        default="-",
        help="Output file name (default: '-' for stdout)",
    )
    parser.add_argument(
        "-e",
        "--extension",
        default=DEFAULT_EXTENSION,
        help=f"Extension of the files to merge (default: {DEFAULT_EXTENSION})",
    )

    perf_group = parser.add_argument_group("Workers and timing")
    perf_group.add_argument(
        "-w",
        "--workers",
        type=int,
        default=DEFAULT_WORKERS,
        help=f"Number of files read in parallel (default: {DEFAULT_WORKERS})",
    )
    perf_group.add_argument(
        "--pace",
        type=non_negative_float,
        default=DEFAULT_PACE,
        help="Seconds each worker waits after every line; keeps files in step "
        f"so lines come out in order (default: {DEFAULT_PACE})",
    )
    perf_group.add_argument(
        "--shutdown-timeout",
        type=non_negative_float,
        default=DEFAULT_SHUTDOWN_TIMEOUT,
        help=f"Seconds to wait for all files before cancelling (default: {DEFAULT_SHUTDOWN_TIMEOUT})",
    )
    perf_group.add_argument(
        "--force-timeout",
        type=non_negative_float,
        default=DEFAULT_FORCE_TIMEOUT,
        help=f"Seconds to wait for cancelled workers to stop (default: {DEFAULT_FORCE_TIMEOUT})",
    )

    parser.add_argument(
        "--no-create-dir",
        action="store_true",
        help="Fail instead of creating the directory when it does not exist",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output to stderr (progress, files, statistics)",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress progress output on stderr (overrides --verbose)",
    )
    args = parser.parse_args(argv)

    if args.workers < 1:
        parser.error("Number of workers must be at least 1")

    # Determine verbosity (quiet overrides verbose)
    verbose = args.verbose and not args.quiet

    try:
        summary = merge_log_directory(
            args.directory,
            output=args.output,
            workers=args.workers,
            extension=args.extension,
            pace=args.pace,
            shutdown_timeout=args.shutdown_timeout,
            force_timeout=args.force_timeout,
            create_missing=not args.no_create_dir,
            verbose=verbose,
        )

        exit_code = 1 if summary.failed > 0 else 0

        # Threads of tasks that never stopped are joined at interpreter exit
        if not summary.terminated:
            log_progress("[WARNING] Exiting with worker threads still running", verbose=True)
            sys.stdout.flush()
            sys.stderr.flush()
            os._exit(exit_code)

        # Exit with error code if any file failed
        if exit_code:
            sys.exit(exit_code)

    except KeyboardInterrupt:
        print("\n# Interrupted by user", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
