#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import os
from datetime import datetime

from conciliapp.services import build_services


def main() -> int:
    parser = argparse.ArgumentParser(description="Create the general partitions for the current and next month.")
    parser.add_argument(
        "--at",
        default="",
        help="ISO timestamp to rotate for (defaults to now in CONCILIA_TIMEZONE).",
    )
    args = parser.parse_args()
    logging.basicConfig(level=os.environ.get("CONCILIA_LOG_LEVEL", "INFO").upper())

    services = build_services()
    if args.at:
        now = datetime.fromisoformat(args.at)
        if now.tzinfo is None:
            now = now.replace(tzinfo=services.timezone)
    else:
        now = services.now_fn()
    prepared = services.store.prepare_monthly_partitions(now.astimezone(services.timezone))
    output = {
        "success": True,
        "partitions": [x["name"] for x in prepared],
        "created": [x["name"] for x in prepared if x.get("created")],
    }
    print(json.dumps(output, ensure_ascii=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
