from __future__ import annotations

import glob
import logging
import os
import stat
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, TextIO, Tuple

from .faults import LoggingSetupError
from .supervisor import ROLE_COPIER, ROLE_PROGRESS, Job, ProcessSupervisor

logger = logging.getLogger(__name__)

DEFAULT_TIMESTAMP_FORMAT = "%Y-%m-%d-%H%M%S"
DEFAULT_LOG_DAYS = 7

HELPERS_DIR = Path(__file__).resolve().parent / "helpers"
OUTFILTER = HELPERS_DIR / "outfilter.py"
SPINNER = HELPERS_DIR / "spinner.py"


@dataclass(frozen=True)
class LogStream:
    kind: str  # "detail" | "summary"
    path: Path
    link: Path
    retention_days: int = DEFAULT_LOG_DAYS


def log_paths(base: Path, stamp: str) -> Tuple[Path, Path]:
    """Dated detail and summary file names for base path ``P``: ``P.T`` and ``P.summary.T``."""
    return base.with_name(f"{base.name}.{stamp}"), base.with_name(f"{base.name}.summary.{stamp}")


def sweep_old_logs(base: Path, days: int, *, now: Optional[float] = None) -> List[Path]:
    """Delete ``P.*`` entries whose age exceeds ``days``. Returns what was removed."""

    now = time.time() if now is None else now
    cutoff = now - days * 86400
    removed: List[Path] = []
    if not base.parent.is_dir():
        return removed
    for p in sorted(base.parent.glob(glob.escape(base.name) + ".*")):
        st = p.lstat()
        if stat.S_ISDIR(st.st_mode) or st.st_mtime >= cutoff:
            continue
        p.unlink()
        removed.append(p)
    if removed:
        logger.debug("Removed %d log file(s) older than %d days", len(removed), days)
    return removed


def point_link(link: Path, target: Path) -> None:
    """Atomically make ``link`` a symlink to ``target`` (same directory)."""

    tmp = link.with_name(f".{link.name}.{os.getpid()}.tmp")
    if tmp.is_symlink() or tmp.exists():
        tmp.unlink()
    os.symlink(target.name, tmp)
    os.replace(tmp, link)


class OutputRouter:
    """Fan process output out to the detail log, summary log and terminal.

    Each log file is written by exactly one stream-copier job. With
    ``capture_fds`` the process-level stdout/stderr are pointed at the detail
    copier so child commands and the stderr logging handler land there too.
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        *,
        log_file: Optional[str] = None,
        verbose: bool = True,
        verbose_no_timestamp: bool = False,
        log_days: int = DEFAULT_LOG_DAYS,
        timestamp_format: str = DEFAULT_TIMESTAMP_FORMAT,
        interactive: Optional[bool] = None,
        capture_fds: bool = True,
        python: str = sys.executable,
    ) -> None:
        self.supervisor = supervisor
        self.log_file = Path(log_file).expanduser() if log_file else None
        self.verbose = verbose
        self.verbose_no_timestamp = verbose_no_timestamp
        self.log_days = log_days
        self.timestamp_format = timestamp_format
        self.capture_fds = capture_fds
        self.python = python
        if interactive is None:
            interactive = os.isatty(1)
        self.interactive = interactive

        self.detail: Optional[LogStream] = None
        self.summary: Optional[LogStream] = None

        self._term: Optional[TextIO] = None
        self._saved_fds: Optional[Tuple[int, int]] = None
        self._detail_job: Optional[Job] = None
        self._summary_job: Optional[Job] = None
        self._spinner: Optional[Job] = None
        self._started = False
        self._closed = False

    @property
    def spinner_mode(self) -> bool:
        return self.interactive and not self.verbose

    @property
    def detail_stream(self) -> Optional[TextIO]:
        return self._detail_job.process.stdin if self._detail_job else None

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        try:
            self._start()
        except OSError as e:
            raise LoggingSetupError(f"cannot set up logging: {e}") from e

    def _start(self) -> None:
        sys.stdout.flush()
        sys.stderr.flush()
        term_fd = os.dup(1)
        self._term = open(term_fd, "w", encoding="utf-8", errors="replace", buffering=1)
        err_fd = 2

        if self.log_file is not None:
            base = self.log_file
            base.parent.mkdir(parents=True, exist_ok=True)
            sweep_old_logs(base, self.log_days)

            detail_path, summary_path = log_paths(base, time.strftime(self.timestamp_format))
            detail_path.touch()
            summary_path.touch()
            self.detail = LogStream("detail", detail_path, base, self.log_days)
            self.summary = LogStream("summary", summary_path, base.with_name(f"{base.name}.summary"), self.log_days)

            detail_args = ["-o", str(detail_path)]
            if self.verbose:
                detail_args.append("-v")
                if self.verbose_no_timestamp:
                    detail_args.append("--no-timestamp")
            self._detail_job = self._spawn_copier(detail_args, stdout=term_fd, stderr=err_fd)

            summary_args = ["-o", str(summary_path)]
            if not self.verbose and not self.spinner_mode:
                summary_args.append("-v")
            self._summary_job = self._spawn_copier(summary_args, stdout=term_fd, stderr=err_fd)

            point_link(self.detail.link, detail_path)
            point_link(self.summary.link, summary_path)

            if self.capture_fds:
                self._redirect(self._detail_job.process.stdin.fileno())
        else:
            if not self.spinner_mode:
                self._summary_job = self._spawn_copier(["-v"], stdout=term_fd, stderr=err_fd)
            if self.capture_fds and not self.verbose:
                devnull = os.open(os.devnull, os.O_WRONLY)
                try:
                    self._redirect(devnull)
                finally:
                    os.close(devnull)

    def _spawn_copier(self, args: List[str], *, stdout: int, stderr: int) -> Job:
        return self.supervisor.spawn(
            [self.python, str(OUTFILTER), *args],
            role=ROLE_COPIER,
            stdin=subprocess.PIPE,
            stdout=stdout,
            stderr=stderr,
            text=True,
            bufsize=1,
        )

    def _redirect(self, fd: int) -> None:
        sys.stdout.flush()
        sys.stderr.flush()
        self._saved_fds = (os.dup(1), os.dup(2))
        os.dup2(fd, 1)
        os.dup2(fd, 2)
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(line_buffering=True)

    def restore(self) -> None:
        """Point stdout/stderr back where they were before ``start``."""

        if self._saved_fds is None:
            return
        sys.stdout.flush()
        sys.stderr.flush()
        out, err = self._saved_fds
        self._saved_fds = None
        os.dup2(out, 1)
        os.dup2(err, 2)
        os.close(out)
        os.close(err)

    def announce(self, msg: str, *, final: bool = False) -> None:
        """Record a curated progress line in the summary stream.

        In spinner mode the line is drawn on the terminal followed by a fresh
        spinner. ``final`` ends spinner mode for good: the indicator is
        stopped first and the message gets a line of its own.
        """

        logger.info("%s", msg)
        if self.spinner_mode and self._term is not None:
            self.stop_spinner()
            self._write_summary(msg)
            if final:
                self.interactive = False
                self._term_write(msg + "\n")
                return
            self._term_write(msg)
            self._spinner = self.supervisor.spawn(
                [self.python, str(SPINNER)],
                role=ROLE_PROGRESS,
                stdin=subprocess.DEVNULL,
                stdout=self._term.fileno(),
                stderr=subprocess.DEVNULL,
            )
        else:
            self._write_summary(msg)

    def echo_nolog(self, msg: str) -> None:
        """Write to the original stdout only, bypassing every log."""
        self._term_write(msg + "\n")

    def stop_spinner(self) -> None:
        if self._spinner is None:
            return
        job, self._spinner = self._spinner, None
        self.supervisor.terminate(job)
        self._term_write("\b\b\bdone\n")

    def shutdown(self) -> None:
        """Stop the spinner, restore streams and let the copiers drain."""

        if self._closed:
            return
        self._closed = True
        self.stop_spinner()
        self.restore()
        for job in (self._detail_job, self._summary_job):
            if job is not None and job.process.stdin is not None and not job.process.stdin.closed:
                try:
                    job.process.stdin.close()
                except OSError as e:
                    logger.debug("Copier pipe already closed: %s", e)
        if self._term is not None:
            self._term.close()
            self._term = None

    def _write_summary(self, line: str) -> None:
        stdin = self._summary_job.process.stdin if self._summary_job else None
        if stdin is None or stdin.closed:
            return
        try:
            stdin.write(line + "\n")
            stdin.flush()
        except (BrokenPipeError, ValueError) as e:
            logger.warning("Summary log unavailable: %s", e)

    def _term_write(self, text: str) -> None:
        out = self._term if self._term is not None else sys.stdout
        out.write(text)
        out.flush()
