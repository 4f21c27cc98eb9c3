"""
Binary execution.

The CLI replaces its own process with the binary so the caller sees the
binary's exit status directly. Library callers spawn it as a child and get
control back.
"""

import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import List, Sequence, Union

from .errors import BinaryNotFoundError, ExecutionError, ExitCodeError

logger = logging.getLogger(__name__)


def can_replace_process() -> bool:
    """True where ``exec`` replaces the process image (POSIX only)."""
    return os.name == "posix" and hasattr(os, "execve")


def locate_binary(path: Union[str, Path]) -> str:
    """
    Find an executable.

    A path containing a directory separator must name an executable file;
    a bare name is searched on PATH.

    Raises:
        BinaryNotFoundError: If nothing executable is found
    """
    path = str(path)
    if os.sep in path or (os.altsep and os.altsep in path):
        if os.path.isfile(path) and os.access(path, os.X_OK):
            return path
        raise BinaryNotFoundError(f"binary not found or not executable: {path}")

    found = shutil.which(path)
    if found is None:
        raise BinaryNotFoundError(f"binary not found: {path}")
    return found


def _spawn(binary: str, args: Sequence[str]) -> int:
    try:
        result = subprocess.run([binary] + list(args), env=os.environ.copy())
    except FileNotFoundError as e:
        raise BinaryNotFoundError(f"binary not found: {binary}") from e
    except OSError as e:
        raise ExecutionError(f"failed to execute {binary}: {e}") from e
    return result.returncode


def execute(path: Union[str, Path], args: Sequence[str] = (), replace_process: bool = False) -> int:
    """
    Run a binary.

    Args:
        path: Binary path or name
        args: Arguments passed to the binary
        replace_process: Replace the current process instead of spawning

    Returns:
        0 once a spawned binary exits successfully; in replace mode this
        function does not return

    Raises:
        BinaryNotFoundError: If the binary cannot be found
        ExitCodeError: If a spawned binary exits nonzero
        ExecutionError: For any other launch failure
    """
    binary = locate_binary(path)
    argv: List[str] = [binary] + list(args)

    if replace_process:
        if can_replace_process():
            logger.debug(f"Executing {binary} in place of the current process")
            sys.stdout.flush()
            sys.stderr.flush()
            try:
                os.execve(binary, argv, os.environ.copy())
            except OSError as e:
                raise ExecutionError(f"failed to execute {binary}: {e}") from e
        # no exec on this platform: run as a child and exit with its status
        sys.exit(_spawn(binary, args))

    logger.debug(f"Running {' '.join(argv)}")
    returncode = _spawn(binary, args)
    if returncode != 0:
        raise ExitCodeError(returncode)
    return 0
