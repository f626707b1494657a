"""
Child-process helper with an explicit timeout.

``subprocess.run`` kills the child when the timeout expires; the timeout is
surfaced as ``SubprocessTimeoutError`` so callers can record it as a note.
"""

import shutil
import subprocess
from typing import Optional, Sequence

from logging_setup import get_logger
from log_events import evt
from transcript_errors import SubprocessTimeoutError

logger = get_logger(__name__)


def run_command(cmd: Sequence[str], timeout: float, input_bytes: Optional[bytes] = None,
                check: bool = False) -> subprocess.CompletedProcess:
    """
    Run a command, capturing stdout/stderr as bytes.

    Raises:
        SubprocessTimeoutError: child exceeded ``timeout`` and was killed
        FileNotFoundError: executable does not exist
        subprocess.CalledProcessError: non-zero exit when ``check`` is set
    """
    try:
        return subprocess.run(
            list(cmd),
            input=input_bytes,
            capture_output=True,
            timeout=timeout,
            check=check,
        )
    except subprocess.TimeoutExpired:
        evt("subprocess_timeout", command=cmd[0] if cmd else None, timeout=timeout)
        raise SubprocessTimeoutError(cmd, timeout)


def resolve_executable(path_or_name: Optional[str]) -> Optional[str]:
    """Resolve a configured binary (absolute path or bare name on PATH) to an executable path."""
    if not path_or_name:
        return None
    return shutil.which(path_or_name)
