from __future__ import annotations

import argparse
import logging
import platform
import signal
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .context import InstallContext
from .faults import PROG, FaultController, InstallerError, PreflightError, SignalInterrupt, SignalReceived
from .logging_utils import configure_logging
from .output import OutputRouter
from .pipeline import Phase, PhaseScheduler
from .plugins import PluginCatalog
from .preflight import check_preflight
from .run_config import DEFAULT_CONFIG_PATH, RunConfig, load_run_config
from .supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

ROUTED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


@contextmanager
def signals_routed(controller: FaultController) -> Iterator[None]:
    """Turn termination signals into SignalReceived for the enclosing scope.

    Only the first signal is raised. Later ones, and any that arrive once the
    fault path is running, are ignored so cleanup always completes.
    """

    def _handler(signum: int, frame: object) -> None:
        if controller.triggered or controller.interrupted is not None:
            logger.debug("Ignoring signal %s during shutdown", signum)
            return
        controller.interrupted = signum
        raise SignalReceived(signum)

    previous = {}
    for sig in ROUTED_SIGNALS:
        try:
            previous[sig] = signal.signal(sig, _handler)
        except ValueError:
            # Not the main thread: the embedding caller owns signals.
            logger.debug("Cannot route signal %s outside the main thread", sig)
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def run(
    cfg: RunConfig,
    *,
    catalog: Optional[PluginCatalog] = None,
    capture_fds: bool = True,
    interactive: Optional[bool] = None,
) -> int:
    """Run every phase for every plugin and return the exit status."""

    start = time.time()
    try:
        check_preflight(cfg)
    except PreflightError as e:
        print(f"{PROG}: {e}", file=sys.stderr)
        return e.status

    state_file = Path(cfg.state_file)
    if state_file.exists():
        state_file.unlink()

    supervisor = ProcessSupervisor()
    router = OutputRouter(
        supervisor,
        log_file=cfg.log_file,
        verbose=cfg.verbose,
        verbose_no_timestamp=cfg.verbose_no_timestamp,
        log_days=cfg.log_days,
        timestamp_format=cfg.timestamp_format,
        interactive=interactive,
        capture_fds=capture_fds,
    )
    controller = FaultController(
        router,
        supervisor,
        diagnostics_command=cfg.diagnostics_command,
        log_dir=cfg.log_dir,
        results_command=cfg.results_command,
        results_output=cfg.results_output,
        start_time=start,
    )

    ctx = InstallContext(cfg.settings, announce=router.announce)
    ctx["start_time"] = start
    ctx["dest"] = cfg.dest

    def _phase_done(phase: Phase, ctx: InstallContext) -> None:
        # Plugins may override defaults; keep them for later tooling.
        if phase.name == "override-defaults":
            ctx.save(str(state_file))

    status = 1
    with signals_routed(controller):
        try:
            try:
                router.start()
                if router.detail is not None:
                    router.announce(f"{PROG} log {router.detail.path}")
                logger.info("Host: %s", " ".join(platform.uname()))

                if catalog is None:
                    catalog = PluginCatalog.from_config(cfg)
                catalog.prepare()
                ctx["plugins"] = catalog.describe()

                PhaseScheduler(catalog, on_phase_done=_phase_done).run_phases(ctx)
                router.announce(f"{PROG} completed in {int(time.time() - start)} seconds.", final=True)
            except InstallerError as e:
                logger.error("%s", e)
                status = controller.handle(e)
            except KeyboardInterrupt:
                status = controller.handle(SignalInterrupt(signal.SIGINT))
            except Exception as e:
                logger.exception("Installer failed")
                status = controller.handle(InstallerError(str(e)))
            else:
                status = controller.finish()
        except SignalReceived as e:
            # Also reached when the signal lands while a failure is being routed.
            status = controller.handle(SignalInterrupt(e.signum))
        finally:
            if not controller.triggered:
                status = controller.handle(InstallerError("run aborted"))
            ctx["result"] = controller.result
            ctx.save(str(state_file))

    return status


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog=PROG)
    p.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Run settings (YAML)")
    p.add_argument("--log-file", default=None, help="Base path P for P.<timestamp> and P.summary.<timestamp>")
    p.add_argument("--log-days", type=int, default=None, help="Delete P.* files older than this many days")
    p.add_argument("--state", default=None, help="Where to save the installation context")
    p.add_argument("--dest", default=None, help="Base directory for plugin checkouts")
    p.add_argument("--offline", action="store_true", default=None, help="Never fetch plugin sources")
    p.add_argument("--reclone", action="store_true", default=None, help="Refresh existing plugin checkouts")
    p.add_argument("--debug", action="store_true", help="Debug-level logging")

    verbosity = p.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", dest="verbose", action="store_true", default=None)
    verbosity.add_argument("-q", "--quiet", dest="verbose", action="store_false")
    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    cfg = load_run_config(args.config).with_overrides(
        {
            "log_file": args.log_file,
            "log_days": args.log_days,
            "state_file": args.state,
            "dest": args.dest,
            "offline": args.offline,
            "reclone": args.reclone,
            "verbose": args.verbose,
        }
    )
    configure_logging(logging.DEBUG if args.debug else logging.INFO)
    return run(cfg)


if __name__ == "__main__":
    raise SystemExit(main())
