"""Stream copier: append stdin lines to a log file, optionally echoing them.

Runs as a standalone helper process, one per log file, so every log has
exactly one writer. Exits when its input pipe reaches EOF.
"""

from __future__ import annotations

import argparse
import datetime
import signal
import sys
from typing import Optional, TextIO

TIMESTAMP = "%Y-%m-%d %H:%M:%S.%f"


def _stamp(line: str) -> str:
    ts = datetime.datetime.now().strftime(TIMESTAMP)[:-3]
    return f"{ts} | {line}"


def copy_stream(
    src: TextIO,
    *,
    out: Optional[TextIO],
    echo: Optional[TextIO],
    timestamps: bool = True,
) -> int:
    count = 0
    for line in src:
        if not line.endswith("\n"):
            line += "\n"
        if out is not None:
            out.write(_stamp(line) if timestamps else line)
            out.flush()
        if echo is not None:
            echo.write(line)
            echo.flush()
        count += 1
    return count


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="outfilter")
    p.add_argument("-o", "--outfile", default=None, help="Append output to this file")
    p.add_argument("-v", "--verbose", action="store_true", help="Echo lines to stdout")
    p.add_argument("--no-timestamp", action="store_true", help="Do not prefix lines with a timestamp")
    args = p.parse_args(argv)

    # Interrupts are the driver's business; we stop on EOF or SIGTERM.
    signal.signal(signal.SIGINT, signal.SIG_IGN)

    src = open(sys.stdin.fileno(), "r", encoding="utf-8", errors="replace", closefd=False)
    echo = sys.stdout if args.verbose else None
    if args.outfile:
        with open(args.outfile, "a", encoding="utf-8") as out:
            copy_stream(src, out=out, echo=echo, timestamps=not args.no_timestamp)
    else:
        copy_stream(src, out=None, echo=echo, timestamps=False)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
