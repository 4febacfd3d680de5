"""Deterministic stand-in agent used for local dry runs and tests.

Usage::

    python -m agent_dispatch.dispatch.spawner.echo_agent --prompt-file {prompt_file}
"""

from __future__ import annotations

import argparse
import os
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Echo agent for dispatch testing.")
    parser.add_argument("--prompt-file", type=Path, default=None)
    parser.add_argument("--say", action="append", default=[], help="Extra line to print.")
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--sleep", type=float, default=0.0)
    parser.add_argument("prompt", nargs="?", default=None)
    args = parser.parse_args(argv)

    session_id = os.getenv("AGENT_DISPATCH_SESSION_ID", "-")
    print(f"echo-agent session={session_id}", flush=True)
    if args.prompt_file is not None:
        print(args.prompt_file.read_text("utf-8").strip(), flush=True)
    elif args.prompt:
        print(args.prompt, flush=True)
    for line in args.say:
        print(line, flush=True)
    if args.sleep > 0:
        time.sleep(args.sleep)
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
