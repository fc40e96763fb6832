"""Local demo skill CLI for executor integration tests."""

from __future__ import annotations

import argparse
import os
import signal
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Echo the input text, optionally sleeping or failing on request."""

    parser = argparse.ArgumentParser()
    parser.add_argument("text", nargs="?", default="")
    parser.add_argument("--yolo", action="store_true")
    parser.add_argument("--version", action="store_true")
    parser.add_argument("--reply", default=None, help="Fixed stdout instead of echoing the input.")
    parser.add_argument("--stderr", default="", help="Text written to stderr.")
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--sleep", type=float, default=0.0)
    parser.add_argument("--launch-log", default=None, help="Append one line per launch.")
    parser.add_argument("--signal-log", default=None, help="Append one line per SIGTERM.")
    parser.add_argument("--print-env", default=None, help="Print this environment variable.")
    args = parser.parse_args(argv)

    if args.version:
        sys.stdout.write("echo-agent 1.0\n")
        return 0

    if args.launch_log:
        _append_line(Path(args.launch_log), args.text)
    if args.signal_log:
        signal_log = Path(args.signal_log)

        def _on_sigterm(signum: int, _frame: object) -> None:
            _append_line(signal_log, str(signum))
            sys.exit(143)

        signal.signal(signal.SIGTERM, _on_sigterm)

    if args.sleep > 0:
        time.sleep(args.sleep)

    if args.print_env:
        sys.stdout.write(f"{args.print_env}={os.getenv(args.print_env, '')}\n")
    reply = args.reply if args.reply is not None else args.text
    if reply:
        sys.stdout.write(reply.replace("\\n", "\n") + "\n")
    if args.yolo:
        sys.stdout.write("(auto-confirm)\n")
    if args.stderr:
        sys.stderr.write(args.stderr + "\n")
    sys.stdout.flush()
    return args.exit_code


def _append_line(path: Path, line: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(line + "\n")


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
