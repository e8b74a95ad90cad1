from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping

from .faults import PreflightError
from .run_config import RunConfig

logger = logging.getLogger(__name__)


def check_preflight(cfg: RunConfig, *, environ: Mapping[str, str] = os.environ) -> None:
    """Refuse to start on hosts where a run would do damage.

    Runs before logging is set up, so failures only reach stderr.
    """

    if hasattr(os, "geteuid") and os.geteuid() == 0 and not cfg.allow_root:
        raise PreflightError(
            "refusing to run as root; use a user with sudo rights "
            "(set preflight.allow_root to override)"
        )

    if environ.get("VIRTUAL_ENV") and not cfg.allow_virtualenv:
        raise PreflightError(
            f"running inside virtualenv {environ['VIRTUAL_ENV']}; system-level installs "
            "would break it (set preflight.allow_virtualenv to override)"
        )

    marker = Path(cfg.marker_file).expanduser()
    if marker.exists():
        raise PreflightError(f"{marker} exists: this host is marked as off-limits, remove it to proceed")

    dest = Path(cfg.dest)
    try:
        dest.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise PreflightError(f"cannot create destination {dest}: {e}") from e
    if not os.access(dest, os.W_OK | os.X_OK):
        raise PreflightError(f"destination {dest} is not writable")

    logger.debug("Preflight checks passed (dest=%s)", dest)
