"""
filedrop: file ingestion service

    python -m filedrop run      start the HTTP server
    python -m filedrop sweep    reclaim bytes left behind by crashed uploads
"""

import argparse
import logging
import sys
from datetime import timedelta

import uvicorn

from filedrop.core.config.settings import settings
from filedrop.core.database.connection import init_db
from filedrop.core.logging_config import setup_logging

logger = logging.getLogger("filedrop")


def run(args):
    if not settings.API_AUTH_KEY:
        logger.warning("API_AUTH_KEY is not set: every /api/v1 request will fail with 500")
    logger.info(f"Starting server at {args.host}:{args.port}, storage root {settings.STORAGE_ROOT}")
    uvicorn.run("filedrop.api:app", host=args.host, port=args.port, reload=args.reload)


def sweep(args):
    from filedrop.features.storage.service.janitor import StorageJanitor

    settings.ensure_dirs()
    init_db()
    summary = StorageJanitor().sweep(grace=timedelta(seconds=args.grace))

    print(f"Files scanned:      {summary.files_scanned}")
    print(f"Orphans removed:    {summary.orphans_removed}")
    print(f"Temp files removed: {summary.temp_files_removed}")
    print(f"Dangling records:   {len(summary.dangling_records)}")
    for file_id in summary.dangling_records:
        print(f"  - {file_id}")
    for error in summary.errors:
        print(f"ERROR: {error}", file=sys.stderr)

    if summary.errors or summary.dangling_records:
        sys.exit(1)


def main(args=None):
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    subparsers = parser.add_subparsers(dest="action", title="action", required=True)

    p = subparsers.add_parser("run", help="Run the filedrop server")
    p.add_argument("--host", default=settings.HOST)
    p.add_argument("-p", "--port", type=int, default=settings.PORT)
    p.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    p.set_defaults(func=run)

    p = subparsers.add_parser("sweep", help="Remove orphaned uploads and report dangling records")
    p.add_argument(
        "--grace",
        type=int,
        default=settings.ORPHAN_GRACE_SECONDS,
        help="Only touch files older than this many seconds",
    )
    p.set_defaults(func=sweep)

    args = parser.parse_args(args)
    setup_logging()
    args.func(args)


if __name__ == "__main__":
    main()
