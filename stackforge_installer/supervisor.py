from __future__ import annotations

import logging
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import Any, List, Sequence

logger = logging.getLogger(__name__)

ROLE_PROGRESS = "progress-indicator"
ROLE_COPIER = "stream-copier"


@dataclass(frozen=True)
class Job:
    """A supervised helper process."""

    process: subprocess.Popen
    role: str
    created_at: float = field(default_factory=time.time)

    @property
    def pid(self) -> int:
        return self.process.pid

    def alive(self) -> bool:
        return self.process.poll() is None


class ProcessSupervisor:
    """Sole owner of helper processes spawned during a run.

    Nothing else terminates a Job; the output router asks here when it needs
    a spinner gone, and the fault path calls ``terminate_all`` on every exit.
    """

    def __init__(self) -> None:
        self._jobs: List[Job] = []
        self._lock = threading.RLock()

    @property
    def jobs(self) -> List[Job]:
        with self._lock:
            return list(self._jobs)

    def spawn(self, argv: Sequence[str], *, role: str, **popen_kwargs: Any) -> Job:
        # Own session: a terminal ^C reaches only the driver, which then
        # routes it through the fault path and stops helpers in order.
        popen_kwargs.setdefault("start_new_session", True)
        proc = subprocess.Popen(list(argv), **popen_kwargs)
        job = Job(process=proc, role=role)
        self.register(job)
        return job

    def register(self, job: Job) -> None:
        with self._lock:
            self._jobs.append(job)
        logger.debug("Registered %s job pid=%s", job.role, job.pid)

    def terminate(self, job: Job, *, grace: float = 0.0, timeout: float = 5.0) -> None:
        with self._lock:
            if job not in self._jobs:
                return
            try:
                self._stop(job, grace=grace, timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.error("%s job pid=%s still running after SIGKILL", job.role, job.pid)
            finally:
                self._jobs.remove(job)

    def terminate_all(self, *, grace: float = 5.0, timeout: float = 5.0) -> None:
        """Stop every registered job; safe to call any number of times."""

        with self._lock:
            jobs = list(self._jobs)
            if not jobs:
                return
            logger.debug("Cleaning up %d helper process(es)", len(jobs))

            # Close all pipes first so copiers drain in parallel.
            for job in jobs:
                _close_stdin(job)

            deadline = time.monotonic() + grace
            for job in jobs:
                try:
                    self._stop(job, grace=max(0.0, deadline - time.monotonic()), timeout=timeout)
                except subprocess.TimeoutExpired:
                    logger.error("%s job pid=%s still running after SIGKILL", job.role, job.pid)
                finally:
                    self._jobs.remove(job)

    def _stop(self, job: Job, *, grace: float, timeout: float) -> None:
        proc = job.process
        _close_stdin(job)
        if proc.poll() is not None:
            return
        if grace > 0:
            try:
                proc.wait(timeout=grace)
                return
            except subprocess.TimeoutExpired:
                pass
        try:
            proc.terminate()
            proc.wait(timeout=timeout)
        except ProcessLookupError:
            return
        except subprocess.TimeoutExpired:
            logger.warning("%s job pid=%s ignored SIGTERM, killing", job.role, job.pid)
            proc.kill()
            proc.wait(timeout=timeout)


def _close_stdin(job: Job) -> None:
    stdin = job.process.stdin
    if stdin is None or stdin.closed:
        return
    try:
        stdin.close()
    except OSError:
        # Reader already gone; nothing left to flush.
        pass
