"""
Run the pipeline stages in-process and print their reports as JSON.

    python -m cardalerts.scripts.run_pipeline --user-id me@example.com --stage all
"""
import argparse
import json
import sys

from cardalerts.core.config import settings
from cardalerts.core.database import Base, SessionLocal, engine
from cardalerts.core.exceptions import FatalPipelineError
from cardalerts.models import email_message, transaction  # noqa: F401
from cardalerts.services.mailbox_client import build_mailbox_client
from cardalerts.services.promote_service import run_promote
from cardalerts.services.sync_service import run_sync


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync card alerts from the mailbox and promote them to the ledger.")
    parser.add_argument("--user-id", default=settings.DEFAULT_USER_ID, help="ledger owner (default: DEFAULT_USER_ID)")
    parser.add_argument("--days", type=int, default=settings.SYNC_DAYS, help="sync search window in days")
    parser.add_argument("--limit", type=int, default=None, help="max messages per stage")
    parser.add_argument("--stage", choices=("sync", "promote", "all"), default="all")
    parser.add_argument("--debug", action="store_true", help="include subjects and filtered messages in reports")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if not args.user_id:
        print("error: --user-id is required when DEFAULT_USER_ID is not set", file=sys.stderr)
        return 2

    Base.metadata.create_all(bind=engine)
    factory = lambda: build_mailbox_client(settings)
    output = {"ok": True}

    db = SessionLocal()
    try:
        if args.stage in ("sync", "all"):
            report = run_sync(
                db, factory, args.user_id,
                days=args.days,
                limit=args.limit or settings.SYNC_LIMIT,
                debug=args.debug,
            )
            output["sync"] = report.model_dump(mode="json", exclude_none=True)

        if args.stage in ("promote", "all"):
            report = run_promote(
                db, factory,
                user_id=args.user_id,
                limit=args.limit or settings.PROMOTE_LIMIT,
                debug=args.debug,
            )
            output["promote"] = report.model_dump(mode="json", exclude_none=True)

    except FatalPipelineError as e:
        output["ok"] = False
        output["error"] = str(e)

    finally:
        db.close()

    print(json.dumps(output, indent=2))
    return 0 if output["ok"] else 1


if __name__ == "__main__":
    sys.exit(main())
