"""
jobledger CLI - drive a SQLite-backed job ledger from the shell.

Usage:
    jobledger init --admin ID [--max-applications N]
    jobledger transfer-admin --caller ID NEW_ADMIN
    jobledger set-max-applications --caller ID MAX
    jobledger create-job --caller ID --now T TITLE DESCRIPTION BUDGET DEADLINE --milestone DESC:AMOUNT...
    jobledger apply --now T JOB_ID FREELANCER PROPOSAL BID
    jobledger accept --caller ID --now T JOB_ID FREELANCER
    jobledger close --caller ID [--now T] JOB_ID
    jobledger show-job JOB_ID [--json]
    jobledger show-application JOB_ID FREELANCER [--json]
    jobledger applicants JOB_ID [--json]
    jobledger agreement JOB_ID [--json]
    jobledger history JOB_ID [--json]
    jobledger status [--json]
"""

import argparse
import json
import re
import sqlite3
import sys
from typing import List, Optional, Tuple

from jobledger.config import get_settings
from jobledger.errors import Result
from jobledger.ledger import JobLedger
from jobledger.logging_config import get_logger, setup_logging
from jobledger.sqlite_storage import SQLiteLedgerStorage

logger = get_logger("cli")

EXIT_OK = 0
EXIT_LEDGER_ERROR = 1
EXIT_USAGE = 2
EXIT_STORAGE_ERROR = 3


def validate_input(value: str, field_name: str, max_length: int = 1000) -> str:
    """Validate and sanitize CLI inputs."""
    if len(value) > max_length:
        raise ValueError(f"{field_name} too long (max {max_length} characters)")

    # Remove null bytes and control characters except newlines and tabs
    return re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", value)


def parse_milestone(raw: str) -> Tuple[str, int]:
    """Parse ``DESCRIPTION:AMOUNT`` (the description may itself contain colons)."""
    description, sep, amount = raw.rpartition(":")
    if not sep or not description:
        raise ValueError(f"Milestone must look like DESCRIPTION:AMOUNT, got {raw!r}")
    try:
        return validate_input(description, "milestone description", 200), int(amount)
    except ValueError:
        raise ValueError(f"Milestone amount must be an integer, got {amount!r}") from None


def _emit(args, payload) -> None:
    if args.json:
        print(json.dumps(payload, indent=2, default=str))
        return
    if isinstance(payload, dict):
        for key, value in payload.items():
            print(f"{key}: {value}")
    elif isinstance(payload, list):
        for item in payload:
            print(item)
    else:
        print(payload)


def _finish(args, result: Result, message: str) -> int:
    """Print a mutation result and map it to an exit code."""
    if not result.ok:
        if args.json:
            print(json.dumps(result.to_dict()))
        else:
            print(f"✗ {result.error.label} (code {int(result.error)})", file=sys.stderr)
        return EXIT_LEDGER_ERROR
    if args.json:
        print(json.dumps(result.to_dict()))
    else:
        print(f"✓ {message}")
    return EXIT_OK


def _open_ledger(args, storage: SQLiteLedgerStorage) -> JobLedger:
    config = storage.get_config()
    if config is None:
        raise LookupError(f"No ledger at {args.db}; run `jobledger init` first")
    return JobLedger(config.admin, storage=storage, null_identity=get_settings().null_identity)


# =============================================================================
# Commands
# =============================================================================


def cmd_init(args, storage: SQLiteLedgerStorage) -> int:
    """Create the ledger configuration."""
    existing = storage.get_config()
    if existing is not None:
        print(f"Ledger already initialized (admin: {existing.admin})")
        return EXIT_OK
    settings = get_settings()
    max_applications = args.max_applications or settings.max_applications_per_job
    ledger = JobLedger(
        args.admin,
        storage=storage,
        max_applications_per_job=max_applications,
        null_identity=settings.null_identity,
    )
    print(f"✓ Ledger initialized at {args.db}")
    print(f"  Admin: {ledger.get_admin()}")
    print(f"  Max applications per job: {ledger.get_max_applications()}")
    return EXIT_OK


def cmd_transfer_admin(args, ledger: JobLedger) -> int:
    result = ledger.transfer_admin(args.caller, args.new_admin)
    return _finish(args, result, f"Admin is now {args.new_admin}")


def cmd_set_max_applications(args, ledger: JobLedger) -> int:
    result = ledger.set_max_applications(args.caller, args.max)
    return _finish(args, result, f"Max applications per job: {args.max}")


def cmd_create_job(args, ledger: JobLedger) -> int:
    milestones = [parse_milestone(m) for m in (args.milestone or [])]
    result = ledger.create_job(
        args.caller,
        validate_input(args.title, "title", 200),
        validate_input(args.description, "description", 5000),
        args.budget,
        milestones,
        args.deadline,
        args.now,
    )
    return _finish(args, result, f"Created job {result.value}")


def cmd_apply(args, ledger: JobLedger) -> int:
    result = ledger.apply_to_job(
        args.job_id,
        args.freelancer,
        validate_input(args.proposal, "proposal", 5000),
        args.bid,
        args.now,
    )
    return _finish(args, result, f"{args.freelancer} applied to job {args.job_id}")


def cmd_accept(args, ledger: JobLedger) -> int:
    result = ledger.accept_application(args.caller, args.job_id, args.freelancer, args.now)
    return _finish(args, result, f"Job {args.job_id} accepted for {args.freelancer}")


def cmd_close(args, ledger: JobLedger) -> int:
    result = ledger.close_job(args.caller, args.job_id, args.now)
    return _finish(args, result, f"Job {args.job_id} closed")


def cmd_show_job(args, ledger: JobLedger) -> int:
    result = ledger.get_job(args.job_id)
    if not result.ok:
        return _finish(args, result, "")
    job = result.value
    if args.json:
        _emit(args, job.to_dict())
        return EXIT_OK
    print(f"Job {job.id}: {job.title} [{job.status.value}]")
    print(f"  Client: {job.client}")
    print(f"  Budget: {job.budget}")
    print(f"  Deadline: {job.deadline} (created at {job.created_at})")
    print("  Milestones:")
    for i, m in enumerate(job.milestones, 1):
        print(f"    {i}. {m.description} - {m.amount}")
    return EXIT_OK


def cmd_show_application(args, ledger: JobLedger) -> int:
    result = ledger.get_application(args.job_id, args.freelancer)
    if not result.ok:
        return _finish(args, result, "")
    _emit(args, result.value.to_dict())
    return EXIT_OK


def cmd_applicants(args, ledger: JobLedger) -> int:
    applicants = ledger.get_applicants(args.job_id)
    if not applicants and not args.json:
        print(f"No applicants for job {args.job_id}")
        return EXIT_OK
    _emit(args, applicants)
    return EXIT_OK


def cmd_agreement(args, ledger: JobLedger) -> int:
    agreement = ledger.get_agreement(args.job_id)
    if agreement is None:
        if args.json:
            print(json.dumps(None))
        else:
            print(f"No agreement for job {args.job_id}")
        return EXIT_OK
    _emit(args, agreement.to_dict())
    return EXIT_OK


def cmd_history(args, ledger: JobLedger) -> int:
    transitions = ledger.get_transitions(args.job_id)
    if args.json:
        _emit(args, [t.to_dict() for t in transitions])
        return EXIT_OK
    if not transitions:
        print(f"No history for job {args.job_id}")
        return EXIT_OK
    for t in transitions:
        before = t.from_status.value if t.from_status else "-"
        print(f"  #{t.sequence} @{t.at}: {before} -> {t.to_status.value} by {t.actor}")
    return EXIT_OK


def cmd_status(args, ledger: JobLedger) -> int:
    _emit(
        args,
        {
            "admin": ledger.get_admin(),
            "max_applications_per_job": ledger.get_max_applications(),
            "job_counter": ledger.get_job_counter(),
        },
    )
    return EXIT_OK


COMMANDS = {
    "transfer-admin": cmd_transfer_admin,
    "set-max-applications": cmd_set_max_applications,
    "create-job": cmd_create_job,
    "apply": cmd_apply,
    "accept": cmd_accept,
    "close": cmd_close,
    "show-job": cmd_show_job,
    "show-application": cmd_show_application,
    "applicants": cmd_applicants,
    "agreement": cmd_agreement,
    "history": cmd_history,
    "status": cmd_status,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jobledger",
        description="Job listings, applications and agreements ledger",
    )
    parser.add_argument("--db", help="SQLite database path (default: JOBLEDGER_DB_PATH)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--json", "-j", action="store_true", help="JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # init
    p_init = subparsers.add_parser("init", parents=[common], help="Initialize a new ledger")
    p_init.add_argument("--admin", required=True, help="Initial admin identity")
    p_init.add_argument("--max-applications", type=int, help="Initial application cap")

    # admin
    p_transfer = subparsers.add_parser("transfer-admin", parents=[common], help="Transfer admin rights")
    p_transfer.add_argument("--caller", required=True)
    p_transfer.add_argument("new_admin", help="New admin identity")

    p_max = subparsers.add_parser("set-max-applications", parents=[common], help="Change the application cap")
    p_max.add_argument("--caller", required=True)
    p_max.add_argument("max", type=int, help="New cap (positive)")

    # lifecycle
    p_create = subparsers.add_parser("create-job", parents=[common], help="Post a job")
    p_create.add_argument("--caller", required=True, help="Client identity")
    p_create.add_argument("--now", type=int, required=True, help="Current logical time")
    p_create.add_argument("title")
    p_create.add_argument("description")
    p_create.add_argument("budget", type=int)
    p_create.add_argument("deadline", type=int)
    p_create.add_argument(
        "--milestone", "-m", action="append", help="DESCRIPTION:AMOUNT (repeatable, 1-5)"
    )

    p_apply = subparsers.add_parser("apply", parents=[common], help="Apply to a job")
    p_apply.add_argument("--now", type=int, required=True)
    p_apply.add_argument("job_id", type=int)
    p_apply.add_argument("freelancer")
    p_apply.add_argument("proposal")
    p_apply.add_argument("bid", type=int)

    p_accept = subparsers.add_parser("accept", parents=[common], help="Accept an application")
    p_accept.add_argument("--caller", required=True)
    p_accept.add_argument("--now", type=int, required=True)
    p_accept.add_argument("job_id", type=int)
    p_accept.add_argument("freelancer")

    p_close = subparsers.add_parser("close", parents=[common], help="Close a job")
    p_close.add_argument("--caller", required=True)
    p_close.add_argument("--now", type=int)
    p_close.add_argument("job_id", type=int)

    # queries
    for name, help_text in (
        ("show-job", "Show a job"),
        ("applicants", "List a job's applicants"),
        ("agreement", "Show a job's agreement"),
        ("history", "Show a job's status history"),
    ):
        p = subparsers.add_parser(name, parents=[common], help=help_text)
        p.add_argument("job_id", type=int)

    p_app = subparsers.add_parser("show-application", parents=[common], help="Show an application")
    p_app.add_argument("job_id", type=int)
    p_app.add_argument("freelancer")

    subparsers.add_parser("status", parents=[common], help="Show ledger configuration")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging("DEBUG" if args.verbose else settings.log_level)
    args.db = args.db or settings.db_path

    try:
        storage = SQLiteLedgerStorage(args.db)
        if args.command == "init":
            return cmd_init(args, storage)
        ledger = _open_ledger(args, storage)
        return COMMANDS[args.command](args, ledger)
    except (ValueError, LookupError) as e:
        logger.debug(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE
    except sqlite3.Error as e:
        logger.debug(f"{args.command} failed on {args.db}: {e}", exc_info=True)
        print(f"Error: database {args.db}: {e}", file=sys.stderr)
        return EXIT_STORAGE_ERROR


if __name__ == "__main__":
    sys.exit(main())
