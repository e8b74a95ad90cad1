from __future__ import annotations

import logging
import shutil
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional

from .lib.command import run_cmd, set_tracing

logger = logging.getLogger(__name__)

PROG = "stackforge-install"


def exit_status(rc: int) -> int:
    """Fold a raw status into a non-zero process exit code.

    Negative returncodes (child killed by signal N) become 128+N; anything
    that would wrap to 0 in an 8-bit exit code becomes 1.
    """
    rc = int(rc)
    if rc < 0:
        rc = 128 - rc
    return rc & 0xFF or 1


class InstallerError(RuntimeError):
    """Base for every fatal condition; ``status`` becomes the exit code."""

    status: int = 1

    def describe(self) -> str:
        return f"{PROG} failed: {self}"


class FetchError(InstallerError):
    def __init__(self, plugin: str, message: str, status: int = 1) -> None:
        self.plugin = plugin
        self.status = exit_status(status)
        super().__init__(message)

    def describe(self) -> str:
        return f"{PROG} failed fetching plugin {self.plugin} (status {self.status}): {self}"


class HookFailure(InstallerError):
    def __init__(self, phase: str, plugin: str, status: int, command: Optional[str] = None) -> None:
        self.phase = phase
        self.plugin = plugin
        self.status = exit_status(status)
        self.command = command
        super().__init__(f"hook {plugin}:{phase} failed with status {self.status}")

    def describe(self) -> str:
        msg = f"{PROG} failed in phase {self.phase} (plugin {self.plugin}, status {self.status})"
        if self.command:
            msg += f" running: {self.command}"
        return msg


class SignalInterrupt(InstallerError):
    def __init__(self, signum: int) -> None:
        self.signum = int(signum)
        self.status = 128 + self.signum
        super().__init__(f"interrupted by {_signame(self.signum)}")

    def describe(self) -> str:
        return f"{PROG} {self} (status {self.status})"


class SignalReceived(BaseException):
    """Raised by the signal handler.

    Like KeyboardInterrupt it is not an Exception, so hooks that catch
    Exception cannot swallow it.
    """

    def __init__(self, signum: int) -> None:
        self.signum = int(signum)
        super().__init__(_signame(self.signum))


class LoggingSetupError(InstallerError):
    pass


class PreflightError(InstallerError):
    pass


def _signame(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"


class FaultController:
    """The one path every run ends through.

    ``handle`` is the failure path and ``finish`` the success path; whichever
    fires first wins and later triggers just get the same status back.
    """

    def __init__(
        self,
        router: Any,
        supervisor: Any,
        *,
        diagnostics_command: Optional[str] = "worlddump",
        log_dir: Optional[str] = None,
        results_command: Optional[str] = "generate-subunit",
        results_output: Optional[str] = None,
        start_time: Optional[float] = None,
    ) -> None:
        self.router = router
        self.supervisor = supervisor
        self.diagnostics_command = diagnostics_command
        self.log_dir = log_dir
        self.results_command = results_command
        self.results_output = results_output
        self.start_time = time.time() if start_time is None else start_time
        self.result: Dict[str, Any] = {}
        # Set by the signal handler when it raises SignalReceived.
        self.interrupted: Optional[int] = None

        self._lock = threading.Lock()
        self._status: Optional[int] = None

    @property
    def triggered(self) -> bool:
        return self._status is not None

    @property
    def status(self) -> Optional[int]:
        return self._status

    def handle(self, error: InstallerError) -> int:
        with self._lock:
            if self._status is not None:
                logger.debug("Fault path already taken; ignoring %r", error)
                return self._status
            self._status = int(error.status)

        set_tracing(False)
        try:
            line = error.describe()
            detail = getattr(self.router, "detail", None)
            if detail is not None:
                line += f": full log in {detail.link}"
            self.router.announce(line, final=True)
            self._collect_diagnostics()
            self._record_result(passed=False)
        finally:
            self._cleanup()
        return self._status

    def finish(self) -> int:
        with self._lock:
            if self._status is not None:
                return self._status
            self._status = 0
        try:
            self._record_result(passed=True)
        finally:
            self._cleanup()
        return 0

    def _collect_diagnostics(self) -> None:
        cmd = self.diagnostics_command
        if not cmd or shutil.which(cmd) is None:
            logger.debug("No diagnostic collector available")
            return
        argv = [cmd]
        if self.log_dir:
            argv += ["-d", self.log_dir]
        try:
            run_cmd(argv, check=False)
        except OSError as e:
            logger.warning("Diagnostic collector %s failed: %s", cmd, e)

    def _record_result(self, *, passed: bool) -> None:
        elapsed = int(time.time() - self.start_time)
        self.result = {"passed": passed, "status": self._status, "elapsed": elapsed}

        cmd = self.results_command
        if not cmd or not self.results_output or shutil.which(cmd) is None:
            return
        argv = [cmd, str(int(self.start_time)), str(elapsed)]
        if not passed:
            argv.append("fail")
        try:
            Path(self.results_output).parent.mkdir(parents=True, exist_ok=True)
            with open(self.results_output, "ab") as fh:
                subprocess.run(argv, stdout=fh, check=False)
        except OSError as e:
            logger.warning("Could not record result with %s: %s", cmd, e)

    def _cleanup(self) -> None:
        try:
            self.router.shutdown()
        finally:
            self.supervisor.terminate_all()
