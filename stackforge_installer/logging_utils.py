from __future__ import annotations

import logging
import sys


def configure_logging(level: int = logging.INFO) -> None:
    """Configure logging.

    Records go to stderr only. The output router points stderr at the
    detail log's copier, so the copier stays the only writer of that file
    and there is no FileHandler here.
    """

    logger = logging.getLogger()
    logger.setLevel(level)

    # Avoid duplicate handlers if configure_logging() is called multiple times.
    if getattr(logger, "_stackforge_configured", False):
        logging.getLogger("stackforge_installer.trace").disabled = False
        return

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(fmt)
    logger.addHandler(handler)

    setattr(logger, "_stackforge_configured", True)
    logging.getLogger("stackforge_installer.trace").disabled = False
