"""
Helpers for invoking external tools (tar, zstd, pigz, gpg, rclone).

Every collaborator is a blocking subprocess call. A missing binary, a timeout
or a non-zero exit is turned into the caller's exception class so the stage
that invoked the tool decides how fatal it is.
"""

import logging
import shlex
import shutil
import subprocess
from typing import List, Optional, Sequence, Type

from gpgbackup.exceptions import BackupError

logger = logging.getLogger(__name__)


def is_installed(binary: str) -> bool:
    """Check if a binary is on PATH."""
    return shutil.which(binary) is not None


def missing_binaries(binaries: Sequence[str]) -> List[str]:
    """Return the binaries from ``binaries`` that are not on PATH."""
    return [b for b in binaries if not is_installed(b)]


def run_command(
    args: Sequence[str],
    error_class: Type[BackupError],
    description: str,
    timeout: Optional[float] = None,
    capture_output: bool = True
) -> subprocess.CompletedProcess:
    """
    Run an external command and raise ``error_class`` if it fails.

    Args:
        args: Command and arguments
        error_class: Exception raised on failure
        description: What the command does, used in error messages
        timeout: Seconds before the command is killed (None waits forever)
        capture_output: Capture stdout/stderr instead of passing them through

    Returns:
        The completed process

    Raises:
        error_class: If the binary is missing, times out, or exits non-zero
    """
    logger.debug(f"Running: {' '.join(shlex.quote(str(a)) for a in args)}")

    try:
        result = subprocess.run(
            [str(a) for a in args],
            capture_output=capture_output,
            text=True,
            timeout=timeout
        )
    except FileNotFoundError:
        raise error_class(f"{description} failed: {args[0]} is not installed")
    except subprocess.TimeoutExpired:
        raise error_class(f"{description} timed out after {timeout}s")

    if result.returncode != 0:
        stderr = (result.stderr or '').strip()
        message = f"{description} failed (exit {result.returncode})"
        if stderr:
            message = f"{message}: {stderr}"
        raise error_class(message)

    return result
