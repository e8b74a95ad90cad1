"""Progress indicator: a spinning ``[/]`` drawn in place on the terminal."""

from __future__ import annotations

import argparse
import itertools
import os
import signal
import sys
import time
from typing import Optional

FRAMES = "/-\\|"


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="spinner")
    p.add_argument("--delay", type=float, default=0.75)
    args = p.parse_args(argv)

    signal.signal(signal.SIGINT, signal.SIG_IGN)
    signal.signal(signal.SIGTERM, lambda *_: sys.exit(0))

    parent = os.getppid()
    out = sys.stdout
    out.write("...")
    out.flush()
    for frame in itertools.cycle(FRAMES):
        # Never outlive the driver that started us.
        if os.getppid() != parent:
            break
        out.write(f"[{frame}]")
        out.flush()
        time.sleep(args.delay)
        out.write("\b\b\b")
        out.flush()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
