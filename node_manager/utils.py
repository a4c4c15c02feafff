# /*
# Copyright 2026 The Node Manager Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Utility functions for running external commands and checking tools."""

from __future__ import annotations

import subprocess
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

import sh

from node_manager import logger
from node_manager.models import CommandResult

# Exit code reported when a command cannot be started at all, as a shell would.
COMMAND_NOT_FOUND = 127


class Runner(Protocol):
    """Callable that runs one external command and captures its result."""

    def __call__(
        self,
        argv: Sequence[str],
        timeout: float | None = None,
        input_text: str | None = None,
        log_file: Path | None = None,
    ) -> CommandResult: ...


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value


def run_command(
    argv: Sequence[str],
    timeout: float | None = None,
    input_text: str | None = None,
    log_file: Path | None = None,
) -> CommandResult:
    """Run a command via subprocess and capture stdout and stderr separately.

    Uses subprocess instead of sh because every step needs the exit code and
    both streams to classify its result, and a timeout that does not raise.

    Args:
        argv: Command and arguments (e.g. ``["kubeadm", "reset", "--force"]``).
        timeout: Maximum seconds to wait for the command to complete.
        input_text: Text piped to the command's stdin.
        log_file: When set, stdout and stderr are also written to this file.

    Returns:
        The captured result; a timeout sets ``timed_out`` and a command that
        cannot be started reports exit code 127.
    """
    argv = tuple(str(arg) for arg in argv)
    logger.debug("Running: %s", " ".join(argv))
    started = time.monotonic()
    try:
        completed = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            input=input_text,
            timeout=timeout,
        )
        result = CommandResult(
            argv=argv,
            exit_code=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            elapsed=time.monotonic() - started,
        )
    except subprocess.TimeoutExpired as exc:
        result = CommandResult(
            argv=argv,
            exit_code=-1,
            stdout=_as_text(exc.stdout),
            stderr=_as_text(exc.stderr) or f"timed out after {timeout}s",
            elapsed=time.monotonic() - started,
            timed_out=True,
        )
    except (subprocess.SubprocessError, OSError) as exc:
        result = CommandResult(
            argv=argv,
            exit_code=COMMAND_NOT_FOUND,
            stderr=str(exc),
            elapsed=time.monotonic() - started,
        )

    if log_file is not None:
        _write_log(log_file, result)
    return result


def _write_log(log_file: Path, result: CommandResult) -> None:
    try:
        with open(log_file, "a") as f:
            f.write(f"$ {' '.join(result.argv)}\n")
            f.write(result.stdout)
            f.write(result.stderr)
    except OSError as exc:
        logger.warning("Could not write command log %s: %s", log_file, exc)


def command_exists(cmd: str) -> bool:
    """Return whether a command is on the system PATH."""
    try:
        sh.which(cmd)
    except (sh.ErrorReturnCode, sh.CommandNotFound):
        return False
    return True
