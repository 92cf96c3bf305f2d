# backend/territory/cli/__main__.py
from __future__ import annotations

import argparse

from territory.db import SessionLocal
from territory.logging_config import configure_logging
from territory.middleware.request_id import correlation_scope, new_id
from territory.services.activation import run_activation_sweep
from territory.services.resync import resync_all


def main(argv: list[str] | None = None) -> dict:
    p = argparse.ArgumentParser(prog="python -m territory.cli")
    sub = p.add_subparsers(dest="command", required=True)

    sweep = sub.add_parser("sweep", help="activate every due scheduled assignment once")
    sweep.add_argument("--limit", type=int, default=None)

    resync = sub.add_parser("resync", help="recompute agent/team status from the ledger")
    resync.add_argument("--owner-id", type=int, default=None, help="only agents/teams created by this admin")

    args = p.parse_args(argv)
    configure_logging()

    db = SessionLocal()
    try:
        with correlation_scope(new_id(args.command)):
            if args.command == "sweep":
                out = run_activation_sweep(db, limit=args.limit).as_dict()
            else:
                out = resync_all(db, scope_owner_id=args.owner_id).as_dict()
    finally:
        db.close()

    print({"ok": True, "command": args.command, **out})
    return out


if __name__ == "__main__":
    main()
