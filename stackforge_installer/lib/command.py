from __future__ import annotations

import logging
import os
import shlex
import subprocess
import sys
from dataclasses import dataclass
from typing import Mapping, Sequence

logger = logging.getLogger(__name__)

# Command echo lives on its own logger so the fault path can silence it.
trace = logging.getLogger("stackforge_installer.trace")


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str


class CommandError(RuntimeError):
    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.argv = list(argv)
        self.returncode = int(returncode)
        self.stderr = stderr
        super().__init__(f"Command failed ({self.returncode}): {fmt_argv(self.argv)}")


def fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def set_tracing(enabled: bool) -> None:
    trace.disabled = not enabled


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    capture: bool = False,
    dry_run: bool = False,
) -> CmdResult:
    """Run a command with consistent tracing.

    - Always traces the command.
    - By default the child inherits stdout/stderr, which the output router
      points at the detail log; ``capture=True`` collects them instead.
    - dry_run traces but does not execute.
    """

    argv_list = list(argv)
    trace.info("+ %s", fmt_argv(argv_list))

    if dry_run:
        return CmdResult(argv=argv_list, returncode=0, stdout="", stderr="")

    # Keep our own buffered output ahead of the child's in the log.
    sys.stdout.flush()
    sys.stderr.flush()

    p = subprocess.run(
        argv_list,
        text=True,
        stdout=subprocess.PIPE if capture else None,
        stderr=subprocess.PIPE if capture else None,
        cwd=cwd,
        env=dict(os.environ, **(env or {})),
    )

    if capture and p.stderr:
        logger.debug("STDERR %s", p.stderr.strip())

    if check and p.returncode != 0:
        raise CommandError(argv_list, p.returncode, p.stderr or "")

    return CmdResult(argv=argv_list, returncode=p.returncode, stdout=p.stdout or "", stderr=p.stderr or "")
