#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import os

from conciliapp.assignment_runtime import create_assignment_runtime_from_env
from conciliapp.services import build_services


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the resident reviewer assignment loop.")
    parser.add_argument(
        "--iterations",
        type=int,
        default=0,
        help="Stop after N passes (0 means run forever).",
    )
    args = parser.parse_args()
    logging.basicConfig(level=os.environ.get("CONCILIA_LOG_LEVEL", "INFO").upper())

    services = build_services()
    runtime = create_assignment_runtime_from_env(engine=services.assignment)
    if args.iterations > 0:
        stats = runtime.run_forever(stop_after_iterations=args.iterations)
    else:
        stats = runtime.run_forever(stop_after_iterations=None)
    print(json.dumps({"success": True, "stats": stats}, ensure_ascii=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
