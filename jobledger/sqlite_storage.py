"""
SQLite ledger storage.

Durable backend for :class:`~jobledger.ledger.JobLedger`. A ledger
transaction maps onto one ``BEGIN IMMEDIATE`` ... ``COMMIT`` on a single
connection, so a failed operation leaves no trace and a second process
writing the same file is serialized by SQLite's write lock.
"""

import contextlib
import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Iterator, List, Optional, Union

from jobledger.models import (
    Agreement,
    Application,
    Job,
    JobStateTransition,
    LedgerConfig,
    Milestone,
)
from jobledger.types import Identity, JobId

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 1

SCHEMA = """
CREATE TABLE IF NOT EXISTS ledger_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS jobs (
    id INTEGER PRIMARY KEY,
    client TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    budget INTEGER NOT NULL,
    milestones TEXT NOT NULL,
    deadline INTEGER NOT NULL,
    status TEXT NOT NULL,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS applications (
    job_id INTEGER NOT NULL,
    freelancer TEXT NOT NULL,
    proposal TEXT NOT NULL,
    bid INTEGER NOT NULL,
    applied_at INTEGER NOT NULL,
    PRIMARY KEY (job_id, freelancer)
);

CREATE TABLE IF NOT EXISTS job_applicants (
    job_id INTEGER NOT NULL,
    position INTEGER NOT NULL,
    freelancer TEXT NOT NULL,
    PRIMARY KEY (job_id, position),
    UNIQUE (job_id, freelancer)
);

CREATE TABLE IF NOT EXISTS agreements (
    job_id INTEGER PRIMARY KEY,
    freelancer TEXT NOT NULL,
    accepted_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS job_transitions (
    job_id INTEGER NOT NULL,
    sequence INTEGER NOT NULL,
    from_status TEXT,
    to_status TEXT NOT NULL,
    actor TEXT NOT NULL,
    at INTEGER NOT NULL,
    PRIMARY KEY (job_id, sequence)
);
"""


class SQLiteLedgerStorage:
    """SQLite-backed ledger storage.

    Connections are opened per transaction (or per read outside one) and
    always closed; the active transaction connection is tracked per thread.
    """

    def __init__(self, db_path: Union[str, Path] = "jobledger.db"):
        """Open (creating if needed) the database at ``db_path``."""
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._init_db()

    def _init_db(self) -> None:
        """Create tables and record the schema version."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with contextlib.closing(self._get_conn()) as conn:
            conn.executescript(SCHEMA)
            row = conn.execute(
                "SELECT value FROM ledger_meta WHERE key = 'schema_version'"
            ).fetchone()
            if row is None:
                # Another process may be creating the same file
                conn.execute(
                    "INSERT OR IGNORE INTO ledger_meta (key, value) VALUES ('schema_version', ?)",
                    (str(SCHEMA_VERSION),),
                )
            elif int(row["value"]) != SCHEMA_VERSION:
                raise ValueError(
                    f"Unsupported schema version {row['value']} (expected {SCHEMA_VERSION})"
                )

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Context manager that handles transactions AND closes connection.

        Inside :meth:`transaction` the thread's open connection is reused and
        commit/rollback are left to the outer block.
        """
        active = getattr(self._local, "conn", None)
        if active is not None:
            yield active
            return

        conn = self._get_conn()
        try:
            conn.execute("BEGIN")
            yield conn
            conn.commit()
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed storage calls in one write transaction."""
        if getattr(self._local, "conn", None) is not None:
            # Nested: the outer transaction owns commit/rollback
            yield
            return

        conn = self._get_conn()
        self._local.conn = conn
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield
            conn.commit()
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            self._local.conn = None
            conn.close()

    # === Meta helpers ===

    def _get_meta(self, conn: sqlite3.Connection, key: str) -> Optional[str]:
        row = conn.execute("SELECT value FROM ledger_meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def _set_meta(self, conn: sqlite3.Connection, key: str, value: str) -> None:
        conn.execute(
            "INSERT INTO ledger_meta (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )

    # === Config ===

    def get_config(self) -> Optional[LedgerConfig]:
        with self._connect() as conn:
            raw = self._get_meta(conn, "config")
        if raw is None:
            return None
        return LedgerConfig.from_dict(json.loads(raw))

    def save_config(self, config: LedgerConfig) -> None:
        with self._connect() as conn:
            self._set_meta(conn, "config", json.dumps(config.to_dict()))

    # === Counter ===

    def get_job_counter(self) -> int:
        with self._connect() as conn:
            raw = self._get_meta(conn, "job_counter")
        return int(raw) if raw is not None else 0

    def set_job_counter(self, value: int) -> None:
        with self._connect() as conn:
            self._set_meta(conn, "job_counter", str(value))

    # === Jobs ===

    def _row_to_job(self, row: sqlite3.Row) -> Job:
        return Job(
            id=row["id"],
            client=row["client"],
            title=row["title"],
            description=row["description"],
            budget=row["budget"],
            milestones=[Milestone.from_dict(m) for m in json.loads(row["milestones"])],
            deadline=row["deadline"],
            status=row["status"],
            created_at=row["created_at"],
        )

    def get_job(self, job_id: JobId) -> Optional[Job]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return self._row_to_job(row) if row else None

    def save_job(self, job: Job) -> None:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO jobs
                   (id, client, title, description, budget, milestones,
                    deadline, status, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET status = excluded.status""",
                (
                    job.id,
                    job.client,
                    job.title,
                    job.description,
                    job.budget,
                    json.dumps([m.to_dict() for m in job.milestones]),
                    job.deadline,
                    job.status.value,
                    job.created_at,
                ),
            )

    # === Applications ===

    def get_application(self, job_id: JobId, freelancer: Identity) -> Optional[Application]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM applications WHERE job_id = ? AND freelancer = ?",
                (job_id, freelancer),
            ).fetchone()
        if row is None:
            return None
        return Application(
            job_id=row["job_id"],
            freelancer=row["freelancer"],
            proposal=row["proposal"],
            bid=row["bid"],
            applied_at=row["applied_at"],
        )

    def save_application(self, application: Application) -> None:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO applications (job_id, freelancer, proposal, bid, applied_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    application.job_id,
                    application.freelancer,
                    application.proposal,
                    application.bid,
                    application.applied_at,
                ),
            )

    def get_applicants(self, job_id: JobId) -> List[Identity]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT freelancer FROM job_applicants WHERE job_id = ? ORDER BY position",
                (job_id,),
            ).fetchall()
        return [row["freelancer"] for row in rows]

    def append_applicant(self, job_id: JobId, freelancer: Identity, limit: int) -> bool:
        with self._connect() as conn:
            count = conn.execute(
                "SELECT COUNT(*) FROM job_applicants WHERE job_id = ?", (job_id,)
            ).fetchone()[0]
            if count >= limit:
                return False
            conn.execute(
                "INSERT INTO job_applicants (job_id, position, freelancer) VALUES (?, ?, ?)",
                (job_id, count, freelancer),
            )
        return True

    # === Agreements ===

    def get_agreement(self, job_id: JobId) -> Optional[Agreement]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM agreements WHERE job_id = ?", (job_id,)
            ).fetchone()
        if row is None:
            return None
        return Agreement(
            job_id=row["job_id"],
            freelancer=row["freelancer"],
            accepted_at=row["accepted_at"],
        )

    def save_agreement(self, agreement: Agreement) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO agreements (job_id, freelancer, accepted_at) VALUES (?, ?, ?)",
                (agreement.job_id, agreement.freelancer, agreement.accepted_at),
            )

    # === Transitions ===

    def save_transition(self, transition: JobStateTransition) -> None:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO job_transitions
                   (job_id, sequence, from_status, to_status, actor, at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    transition.job_id,
                    transition.sequence,
                    transition.from_status.value if transition.from_status else None,
                    transition.to_status.value,
                    transition.actor,
                    transition.at,
                ),
            )

    def get_transitions(self, job_id: JobId) -> List[JobStateTransition]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM job_transitions WHERE job_id = ? ORDER BY sequence",
                (job_id,),
            ).fetchall()
        return [
            JobStateTransition(
                job_id=row["job_id"],
                sequence=row["sequence"],
                from_status=row["from_status"],
                to_status=row["to_status"],
                actor=row["actor"],
                at=row["at"],
            )
            for row in rows
        ]
