from __future__ import annotations

import argparse
import sys

from memlog.cli.commands import export_logs, promote_user, show_logs
from memlog.config import get_settings
from memlog.errors import NotFound
from memlog.storage.event_log import EventLogStore


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="python -m memlog.cli", description="Request memory log maintenance")
    parser.add_argument("--log-file", default=None, help="Path to the log file (defaults to LOG_DIR/LOG_FILENAME)")
    sub = parser.add_subparsers(dest="command", required=True)

    show = sub.add_parser("show", help="Print logged requests")
    show.add_argument("--limit", type=int, default=None, help="Only print the most recent N entries")

    export = sub.add_parser("export", help="Copy the raw log to a timestamped .json file")
    export.add_argument("--out-dir", default=".", help="Directory to write the export into")

    sub.add_parser("clear", help="Truncate the log")

    promote = sub.add_parser("promote", help="Grant (or revoke) admin access for a user")
    promote.add_argument("email")
    promote.add_argument("--revoke", action="store_true", help="Remove admin access instead")

    args = parser.parse_args(argv)

    settings = get_settings()
    store = EventLogStore(args.log_file or settings.log_path)

    if args.command == "show":
        show_logs(store, sys.stdout, limit=args.limit)
    elif args.command == "export":
        try:
            path = export_logs(store, args.out_dir)
        except NotFound as exc:
            print(str(exc), file=sys.stderr)
            return 1
        print(path)
    elif args.command == "clear":
        if not store.clear():
            print("Could not clear logs", file=sys.stderr)
            return 1
        print("Logs cleared.")
    elif args.command == "promote":
        if not promote_user(args.email, admin=not args.revoke):
            print(f"No user with email {args.email}", file=sys.stderr)
            return 1
        print("ok")
    return 0


if __name__ == "__main__":
    sys.exit(main())
