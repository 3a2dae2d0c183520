"""Blocking child-process execution with live output and cancellation."""

from __future__ import annotations

import logging
import subprocess
import sys
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Protocol

from krebuild.errors import BuildCancelled

LOGGER = logging.getLogger(__name__)

# Shell conventions for "not found" and "not executable".
RETURNCODE_NOT_FOUND = 127
RETURNCODE_NOT_EXECUTABLE = 126


class Runner(Protocol):
    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        stdin: IO[bytes] | None = None,
        cancel: threading.Event | None = None,
    ) -> int:
        """Run *argv* to completion and return its exit status."""


@dataclass(slots=True)
class SubprocessRunner:
    """Runs children with inherited stdout/stderr so their output streams live.

    When a *cancel* event is given, the wait is sliced into ``poll_interval``
    steps; once the event is set the child is terminated, killed after
    ``grace_period`` seconds if still alive, and :class:`BuildCancelled` is
    raised.
    """

    poll_interval: float = 0.2
    grace_period: float = 10.0

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        stdin: IO[bytes] | None = None,
        cancel: threading.Event | None = None,
    ) -> int:
        command = list(argv)
        if cancel is not None and cancel.is_set():
            raise BuildCancelled(
                "Build cancelled before command started.",
                context={"command": " ".join(command)},
            )

        sys.stdout.flush()
        sys.stderr.flush()
        try:
            proc = subprocess.Popen(
                command,
                cwd=str(cwd) if cwd is not None else None,
                env=dict(env) if env is not None else None,
                stdin=stdin,
            )
        except FileNotFoundError:
            LOGGER.error("command not found: %s", command[0])
            return RETURNCODE_NOT_FOUND
        except PermissionError:
            LOGGER.error("command not executable: %s", command[0])
            return RETURNCODE_NOT_EXECUTABLE

        if cancel is None:
            return proc.wait()

        while True:
            try:
                returncode = proc.wait(timeout=self.poll_interval)
            except subprocess.TimeoutExpired:
                if not cancel.is_set():
                    continue
                self._terminate(proc)
                raise BuildCancelled(
                    "Build cancelled while command was running.",
                    context={"command": " ".join(command), "pid": str(proc.pid)},
                ) from None
            # A terminal interrupt also reaches the child, which may exit first.
            if cancel.is_set():
                raise BuildCancelled(
                    "Build cancelled; command exited after the interrupt.",
                    context={"command": " ".join(command), "returncode": str(returncode)},
                )
            return returncode

    def _terminate(self, proc: subprocess.Popen[bytes]) -> None:
        proc.terminate()
        try:
            proc.wait(timeout=self.grace_period)
        except subprocess.TimeoutExpired:
            LOGGER.warning("child %d ignored SIGTERM, killing", proc.pid)
            proc.kill()
            proc.wait()
