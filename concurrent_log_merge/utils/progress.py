"""
Diagnostics helpers shared by the merge tools.

Everything here writes to stderr so that stdout stays reserved for merged
log lines and can be piped to other tools.
"""

import sys
import threading

# Worker threads report concurrently; one print per message at a time.
_stderr_lock = threading.Lock()


def log_progress(message, verbose=False):
    """
    Log progress message to stderr if verbose is enabled.

    Args:
        message: Message to log
        verbose: Whether to output the message
    """
    if verbose:
        with _stderr_lock:
            print(message, file=sys.stderr, flush=True)
