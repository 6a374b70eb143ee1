#!/usr/bin/env python3
"""GuiaFlow - Payment guide intake and distribution."""

import argparse
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from guiaflow import GuiaFlow, setup_logging, __version__
from guiaflow.errors import GuiaFlowError, ConfigError, RunInProgressError
from storage import StorageDriver, create_storage, PROCESSED_FLAG
from workflows.folders import find_client_folder, pick_month_folder
from workflows.run_log import RunLog
from workflows.runner import RunGuard, guarded_run, intake_job, send_job

logger = logging.getLogger("guiaflow")


def print_status(run_log: RunLog) -> None:
    """Print the last run snapshot and its ledger entries."""
    state = run_log.get_last_run()
    if not state.kind:
        print("No run recorded yet")
        return

    running = "running" if state.running else "finished"
    if state.stale:
        running = "abandoned (stale)"
    print(f"Last run: {state.kind} ({running})")
    print(f"  Started:  {state.started_at}")
    print(f"  Finished: {state.finished_at or '-'}")
    if state.error:
        print(f"  Error:    {state.error}")
    if not state.entries:
        print("  No entries")
        return
    for entry in state.entries:
        who = entry.client or entry.document or "-"
        print(f"  {entry.status:6} {entry.reason:24} {who} {entry.period or ''}".rstrip())


def print_history(run_log: RunLog, limit: int) -> None:
    """Print the most recent audit trail entries, oldest first."""
    entries = run_log.read_history(limit=limit)
    if not entries:
        print("No history recorded yet")
        return
    for entry in entries:
        print(f"{entry.timestamp or '-'} {entry.status:6} {entry.reason:24} "
              f"{entry.client or '-'} {entry.period or ''}".rstrip())


def print_latest_month(driver: StorageDriver, client_name: str,
                       month: Optional[str] = None) -> int:
    """Print the period folder that would be picked for a client."""
    GuiaFlow.require(DRIVE_FOLDER_ID_CLIENTES="clients_folder_id")
    client_folder = find_client_folder(driver, GuiaFlow.clients_folder_id, client_name)
    if client_folder is None:
        print(f"Client folder not found: {client_name}")
        return 1

    folder = pick_month_folder(driver, client_folder.id, preferred_name=month)
    if folder is None:
        print(f"No period folders under {client_folder.name}")
        return 1

    files = [f for f in driver.list_files(folder.id) if f.is_pdf]
    print(f"{client_folder.name}/{folder.name}: {len(files)} PDF(s)")
    for f in files:
        marker = "sent" if f.has_flag(PROCESSED_FLAG) else "pending"
        print(f"  [{marker}] {f.name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="File and e-mail monthly payment guides")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    command = parser.add_mutually_exclusive_group(required=True)
    command.add_argument("--inbox", action="store_true",
                         help="File new PDFs from the staging folder by client and period")
    command.add_argument("--send", action="store_true",
                         help="E-mail last month's guides to every client in the registry")
    command.add_argument("--status", action="store_true",
                         help="Show the last run and its ledger entries")
    command.add_argument("--history", metavar="N", type=int, nargs="?", const=20,
                         help="Show the last N sent/skipped/failed entries across runs (default 20)")
    command.add_argument("--latest-month", metavar="CLIENT",
                         help="Show the period folder that would be picked for CLIENT")
    command.add_argument("--serve", action="store_true",
                         help="Run the HTTP control surface")

    parser.add_argument("--month", metavar="MM-YYYY",
                        help="Period to send (--send) or prefer (--latest-month)")
    parser.add_argument("--force", action="store_true",
                        help="Resend guides already marked as processed")
    parser.add_argument("--dry-run", action="store_true",
                        help="Go through a send run without sending or flagging anything")
    parser.add_argument("--local", metavar="PATH",
                        help="Use a local folder tree instead of Google Drive")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point. Returns the process exit code."""
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        GuiaFlow.configure(args)
    except ConfigError as e:
        setup_logging()
        logger.error("%s", e)
        return 2
    setup_logging(GuiaFlow.log_level, GuiaFlow.log_file)
    logger.debug("Configuration: %s", GuiaFlow.summary())

    run_log = RunLog.from_config()

    if args.status:
        print_status(run_log)
        return 0

    if args.history is not None:
        print_history(run_log, args.history)
        return 0

    if args.serve:
        from server import serve
        serve()
        return 0

    try:
        driver = create_storage(GuiaFlow.storage)
        logger.info("Storage: %s", driver.display_name)

        if args.latest_month:
            return print_latest_month(driver, args.latest_month, args.month)

        guard = RunGuard()
        if args.inbox:
            result = guarded_run("intake", guard, run_log, intake_job(driver, run_log))
            print(f"Sorted {result.sorted} of {result.pending} pending PDF(s); "
                  f"{result.skipped} unclassified, {result.failed} failed")
            return 1 if result.failed else 0

        if GuiaFlow.dry_run:
            logger.info("Dry run: nothing will be sent or flagged")
        result = guarded_run("send", guard, run_log, send_job(driver, run_log))
        print(f"Period {result.period}: {result.sent} sent, {result.skipped} skipped, "
              f"{result.failed} failed ({result.clients} clients)")
        return 1 if result.failed else 0

    except RunInProgressError as e:
        logger.error("%s", e)
        return 3
    except ConfigError as e:
        logger.error("%s", e)
        return 2
    except GuiaFlowError as e:
        logger.error("Run failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
