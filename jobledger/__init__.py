"""
jobledger - Job listings, applications and agreements for a peer-to-peer
freelance marketplace.

Models:
- Job, Application, Agreement: Ledger records
- JobStatus: Job lifecycle status
- JobStateTransition: Audit log entry for status changes

Ledger:
- JobLedger: Atomic, validated state transitions and queries
"""

from jobledger.errors import LedgerError, LedgerErrorCode, Result
from jobledger.ledger import JobLedger
from jobledger.models import (
    VALID_JOB_TRANSITIONS,
    Agreement,
    Application,
    Job,
    JobStateTransition,
    JobStatus,
    LedgerConfig,
    Milestone,
)
from jobledger.sqlite_storage import SQLiteLedgerStorage
from jobledger.storage import InMemoryLedgerStorage, LedgerStorage
from jobledger.types import NULL_IDENTITY

try:
    from importlib.metadata import version

    __version__ = version("jobledger")
except Exception:
    __version__ = "0.0.0"

__all__ = [
    # Ledger
    "JobLedger",
    "Result",
    "LedgerError",
    "LedgerErrorCode",
    # Models
    "Job",
    "Application",
    "Agreement",
    "Milestone",
    "JobStatus",
    "JobStateTransition",
    "LedgerConfig",
    "VALID_JOB_TRANSITIONS",
    # Storage
    "LedgerStorage",
    "InMemoryLedgerStorage",
    "SQLiteLedgerStorage",
    "NULL_IDENTITY",
]
