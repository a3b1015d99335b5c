#!/usr/bin/env python3
# Stub test client: prints a canned report for a relay so the runner can be
# exercised without docker or a network.
import argparse
import sys
import time

REPORTS = {
    "pass": "TAP version 14\n1..2\nok 1 - setup-only\nok 2 - announce-only\n",
    "fail": (
        "TAP version 14\n1..2\nok 1 - setup-only\nnot ok 2 - announce-only\n"
        "  ---\n  message: \"timeout\"\n  ...\n"
    ),
    "skip": "TAP version 14\n1..1\nok 1 - setup-only # SKIP not implemented\n",
    "legacy": "✓ setup-only (24 ms)\n✗ subscribe-error (timeout after 2000 ms)\n",
    "bail": "TAP version 14\n1..3\nok 1 - setup-only\nBail out! relay unreachable\n",
    "garbage": "connection refused\n",
    "empty": "",
}


def main(argv=None) -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--relay", required=True)
    ap.add_argument("--report", choices=sorted(REPORTS), default="pass")
    ap.add_argument("--prefix", default="", help="Prepend a compose style 'service  | ' prefix")
    ap.add_argument("--exit-code", type=int, default=None)
    ap.add_argument("--sleep", type=float, default=0.0)
    args = ap.parse_args(argv)

    if args.sleep:
        time.sleep(args.sleep)

    body = REPORTS[args.report]
    if body:
        sys.stdout.write(f"Running interop tests...\n  Relay: {args.relay}\n")
    for line in body.splitlines():
        sys.stdout.write((f"{args.prefix}  | " if args.prefix else "") + line + "\n")
    sys.stdout.flush()

    if args.exit_code is not None:
        return args.exit_code
    return 1 if args.report in ("fail", "legacy", "bail", "garbage") else 0


if __name__ == "__main__":
    raise SystemExit(main())
