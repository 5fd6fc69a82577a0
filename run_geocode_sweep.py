#!/usr/bin/env python3
"""Scheduler entry point: seed and process geocode jobs for one or more tenants.

Meant to run from cron every 15 minutes, e.g.::

    */15 * * * * python run_geocode_sweep.py --tenant acme
"""

import argparse
import json
import logging
import os
import sys

# Make the src layout importable when running from a checkout
src_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), "src")
if os.path.isdir(src_path) and src_path not in sys.path:
    sys.path.insert(0, src_path)

from dispatch_app.config import settings  # noqa: E402
from dispatch_app.persistence import get_dispatch_store  # noqa: E402
from dispatch_app.services.geocoding import build_geocode_commands  # noqa: E402


def parse_args(argv):
    parser = argparse.ArgumentParser(description="Queue and run due geocode jobs for dispatch stops.")
    parser.add_argument(
        "--tenant",
        action="append",
        required=True,
        help="Tenant id to sweep. Repeat for several tenants.",
    )
    parser.add_argument(
        "--seed-limit",
        type=int,
        default=settings.sweep_seed_limit,
        help="Maximum stops to queue per tenant.",
    )
    parser.add_argument(
        "--process-limit",
        type=int,
        default=settings.sweep_process_limit,
        help="Maximum due jobs to run per tenant.",
    )
    parser.add_argument(
        "--seed-only",
        action="store_true",
        help="Only queue jobs, do not call the geocoding provider.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="With --seed-only, report what would be queued without writing.",
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv if argv is not None else sys.argv[1:])
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if not settings.geocoding_configured and not args.seed_only:
        logging.warning("Geocoding token is not configured; due jobs will be rescheduled as provider_unavailable")

    commands = build_geocode_commands(get_dispatch_store())
    exit_code = 0
    for tenant_id in args.tenant:
        try:
            if args.seed_only:
                result = commands.seed(tenant_id, args.seed_limit, dry_run=args.dry_run).as_dict()
            else:
                result = commands.sweep(tenant_id, args.seed_limit, args.process_limit).as_dict()
        except Exception as e:
            logging.exception(f"Geocode sweep failed for tenant {tenant_id}: {e}")
            exit_code = 1
            continue
        print(json.dumps({"tenant": tenant_id, **result}))
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
