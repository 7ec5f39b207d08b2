"""
sci-librarian command line
==========================

Entry point for syncing a Dropbox inbox of scientific papers into the local
record store, filing pending papers in batches, and regenerating folder
indexes.

Configuration comes from environment variables (optionally from a ``.env``
file in the current directory); see `sci_librarian.config.Settings`.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import structlog
from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError

from .batch import BatchOutcome, BatchRunner, ProgressEvent
from .classifier import ClassificationProvider
from .config import Settings
from .extract import build_extractor
from .indexing import generate_index
from .logging_config import configure_logging
from .models import FileStatus, load_rules
from .remote import DropboxClient
from .storage import RecordStore
from .sync import Synchronizer

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_BATCH_ABORTED = 2


def build_parser(settings: Settings | None = None) -> argparse.ArgumentParser:
    default_jobs = settings.DOCUMENT_WORKERS if settings else 4
    default_batch = settings.BATCH_SIZE if settings else 10

    parser = argparse.ArgumentParser(
        prog="sci-librarian", description="Organize scientific articles in Dropbox"
    )
    parser.add_argument("-w", "--work-directory", type=Path, default=Path("working"))
    parser.add_argument("-i", "--inbox", default="/0_inbox")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("sync", help="Only sync new files from Dropbox")
    for name, help_text in (
        ("process", "Process one batch of pending files"),
        ("run", "Sync, then process until the backlog is empty"),
    ):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("-j", "--jobs", type=int, default=default_jobs)
        command.add_argument("-b", "--batch-size", type=int, default=default_batch)
    index = commands.add_parser("index", help="Regenerate the README index of a folder")
    index.add_argument("-p", "--path", required=True)
    commands.add_parser("status", help="Show record counts and errors")
    return parser


def _print_progress(event: ProgressEvent) -> None:
    mark = "✔" if event.ok else "✘"
    line = f"[{event.completed}/{event.total}] {mark} {event.name} ({event.record_id})"
    if event.error:
        line += f": {event.error}"
    print(line, flush=True)


def _print_outcome(outcome: BatchOutcome) -> None:
    print(f"Processed: {outcome.processed}  Errors: {outcome.failed}")


def run_process(runner: BatchRunner, jobs: int, batch_size: int, *, until_empty: bool) -> BatchOutcome:
    """Run one batch, or batches until nothing is pending."""
    total = BatchOutcome()
    while True:
        outcome = runner.run_batch(batch_size, jobs, on_progress=_print_progress)
        total.dispatched += outcome.dispatched
        total.processed += outcome.processed
        total.failed += outcome.failed
        total.failures.extend(outcome.failures)
        if not until_empty or outcome.dispatched == 0:
            return total


def print_status(store: RecordStore) -> None:
    for status, count in store.count_by_status().items():
        print(f"{status.value:<10} {count}")
    for record in store.iter_records(FileStatus.ERROR):
        print(f"  {record.name} ({record.remote_id}): {record.last_error}")


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, wire the collaborators and run the chosen command."""
    load_dotenv()
    log = structlog.get_logger(__name__)

    try:
        settings = Settings()
        configure_logging(settings)
    except ValueError as e:
        log.error("Configuration error", error=str(e))
        return EXIT_CONFIG_ERROR

    args = build_parser(settings).parse_args(argv)
    if args.command in ("process", "run"):
        try:
            settings.require_llm()
        except ValueError as e:
            log.error("Configuration error", command=args.command, error=str(e))
            return EXIT_CONFIG_ERROR

    work_dir = args.work_directory.resolve()
    (work_dir / "raw").mkdir(parents=True, exist_ok=True)
    log.info("Using working directory", work_dir=str(work_dir), inbox=args.inbox)

    store = RecordStore.for_work_dir(work_dir)
    dropbox = DropboxClient(settings)
    try:
        if args.command == "status":
            print_status(store)
            return EXIT_OK

        if args.command == "index":
            generate_index(store, dropbox, args.path)
            return EXIT_OK

        if args.command in ("sync", "run"):
            Synchronizer(store, dropbox).sync(args.inbox)
            if args.command == "sync":
                return EXIT_OK

        try:
            rules = load_rules(settings.RULES_FILE)
        except (OSError, ValueError) as e:
            log.error("Failed to load rules", rules_file=settings.RULES_FILE, error=str(e))
            return EXIT_CONFIG_ERROR

        runner = BatchRunner(
            store=store,
            remote=dropbox,
            classifier=ClassificationProvider(settings),
            extractor=build_extractor(settings),
            rules=rules,
            work_dir=work_dir,
        )
        try:
            outcome = run_process(
                runner, args.jobs, args.batch_size, until_empty=args.command == "run"
            )
        except SQLAlchemyError as e:
            log.error("Batch aborted: record store unavailable", error=str(e))
            return EXIT_BATCH_ABORTED
        _print_outcome(outcome)
        return EXIT_OK
    finally:
        dropbox.close()
        store.close()


if __name__ == "__main__":
    sys.exit(main())
