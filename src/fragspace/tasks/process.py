from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from ..errors import ExternalFitnessError, TaskCancelled
from .base import CancelToken

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str


def run_process(
    cmd: list[str],
    token: CancelToken,
    timeout: float | None = None,
    cwd: str | Path | None = None,
) -> ProcessResult:
    """Run ``cmd`` to completion; the child is killed if ``token`` is cancelled or on timeout."""
    token.check()
    logger.debug("Running %s", " ".join(cmd))
    try:
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            cwd=str(cwd) if cwd is not None else None,
        )
    except OSError as e:
        raise ExternalFitnessError(f"Cannot start '{cmd[0]}': {e}") from e
    unregister = token.add_callback(proc.kill)
    try:
        out, err = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired as e:
        proc.kill()
        proc.communicate()
        raise ExternalFitnessError(f"'{' '.join(cmd)}' timed out after {timeout}s") from e
    finally:
        unregister()
    if token.cancelled:
        raise TaskCancelled(f"Process '{cmd[0]}' killed on cancellation")
    return ProcessResult(returncode=proc.returncode, stdout=out or "", stderr=err or "")
