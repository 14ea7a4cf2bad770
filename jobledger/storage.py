"""
Ledger storage layer.

Defines the persistence protocol the ledger writes through, plus an
in-memory backend for tests and embedding. See ``sqlite_storage`` for the
durable backend.

Storage methods do no validation of ledger rules; :class:`JobLedger` checks
every precondition before it writes. The one exception is
:meth:`LedgerStorage.append_applicant`, which re-checks the applicant bound
at the moment of insertion.
"""

import contextlib
import logging
import threading
from typing import Callable, Dict, Iterator, List, Optional, Protocol

from jobledger.models import (
    Agreement,
    Application,
    Job,
    JobStateTransition,
    LedgerConfig,
)
from jobledger.types import ApplicationKey, Identity, JobId

logger = logging.getLogger(__name__)

_MISSING = object()


class LedgerStorage(Protocol):
    """Protocol for ledger persistence backends."""

    def transaction(self) -> contextlib.AbstractContextManager:
        """Context manager making the enclosed reads and writes one atomic unit.

        Excludes other writers for its whole duration, so checks made inside
        it still hold when its writes land.
        """
        ...

    # Config
    def get_config(self) -> Optional[LedgerConfig]:
        """Get the ledger configuration, or None before initialization."""
        ...

    def save_config(self, config: LedgerConfig) -> None:
        """Replace the ledger configuration."""
        ...

    # Counter
    def get_job_counter(self) -> int:
        """Get the id of the most recently created job (0 if none)."""
        ...

    def set_job_counter(self, value: int) -> None:
        """Set the job counter."""
        ...

    # Jobs
    def get_job(self, job_id: JobId) -> Optional[Job]:
        """Get a job by ID."""
        ...

    def save_job(self, job: Job) -> None:
        """Insert or replace a job."""
        ...

    # Applications
    def get_application(self, job_id: JobId, freelancer: Identity) -> Optional[Application]:
        """Get an application by (job, freelancer)."""
        ...

    def save_application(self, application: Application) -> None:
        """Insert an application."""
        ...

    def get_applicants(self, job_id: JobId) -> List[Identity]:
        """Get applicants for a job in application order."""
        ...

    def append_applicant(self, job_id: JobId, freelancer: Identity, limit: int) -> bool:
        """Append a freelancer to the applicant list if it holds fewer than ``limit``.

        Returns False, leaving the list untouched, when the list is full.
        """
        ...

    # Agreements
    def get_agreement(self, job_id: JobId) -> Optional[Agreement]:
        """Get the agreement for a job."""
        ...

    def save_agreement(self, agreement: Agreement) -> None:
        """Insert an agreement."""
        ...

    # Transitions (audit log)
    def save_transition(self, transition: JobStateTransition) -> None:
        """Append a state transition record."""
        ...

    def get_transitions(self, job_id: JobId) -> List[JobStateTransition]:
        """Get all state transitions for a job, oldest first."""
        ...


class InMemoryLedgerStorage:
    """In-memory ledger storage for testing and local development.

    A transaction holds the storage lock, so ledgers sharing one instance are
    serialized, and keeps an undo entry for each key it writes. Rollback
    replays the entries in reverse; nothing else is copied.
    """

    def __init__(self):
        """Initialize empty storage."""
        self._config: Optional[LedgerConfig] = None
        self._job_counter = 0
        self._jobs: Dict[JobId, Job] = {}
        self._applications: Dict[ApplicationKey, Application] = {}
        self._applicants: Dict[JobId, List[Identity]] = {}
        self._agreements: Dict[JobId, Agreement] = {}
        self._transitions: Dict[JobId, List[JobStateTransition]] = {}
        self._lock = threading.RLock()
        self._undo: Optional[List[Callable[[], None]]] = None
        self._undo_owner: Optional[int] = None

    # === Transactions ===

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """Undo the enclosed writes if the block raises."""
        with self._lock:
            if self._undo is not None:
                # Nested: the outer transaction owns rollback
                yield
                return

            self._undo = []
            self._undo_owner = threading.get_ident()
            try:
                yield
            except Exception as e:
                logger.debug(f"Transaction failed, rolling back {len(self._undo)} writes: {e}")
                for undo in reversed(self._undo):
                    undo()
                raise
            finally:
                self._undo = None
                self._undo_owner = None

    def _remember(self, undo: Callable[[], None]) -> None:
        if self._undo is not None and self._undo_owner == threading.get_ident():
            self._undo.append(undo)

    def _remember_key(self, mapping: dict, key) -> None:
        previous = mapping.get(key, _MISSING)

        def restore():
            if previous is _MISSING:
                mapping.pop(key, None)
            else:
                mapping[key] = previous

        self._remember(restore)

    # === Config ===

    def get_config(self) -> Optional[LedgerConfig]:
        return self._config

    def save_config(self, config: LedgerConfig) -> None:
        previous = self._config
        self._remember(lambda: setattr(self, "_config", previous))
        self._config = config

    # === Counter ===

    def get_job_counter(self) -> int:
        return self._job_counter

    def set_job_counter(self, value: int) -> None:
        previous = self._job_counter
        self._remember(lambda: setattr(self, "_job_counter", previous))
        self._job_counter = value

    # === Jobs ===

    def get_job(self, job_id: JobId) -> Optional[Job]:
        return self._jobs.get(job_id)

    def save_job(self, job: Job) -> None:
        self._remember_key(self._jobs, job.id)
        self._jobs[job.id] = job

    # === Applications ===

    def get_application(self, job_id: JobId, freelancer: Identity) -> Optional[Application]:
        return self._applications.get((job_id, freelancer))

    def save_application(self, application: Application) -> None:
        key = (application.job_id, application.freelancer)
        self._remember_key(self._applications, key)
        self._applications[key] = application

    def get_applicants(self, job_id: JobId) -> List[Identity]:
        return list(self._applicants.get(job_id, []))

    def append_applicant(self, job_id: JobId, freelancer: Identity, limit: int) -> bool:
        applicants = self._applicants.setdefault(job_id, [])
        if len(applicants) >= limit:
            return False
        applicants.append(freelancer)
        self._remember(applicants.pop)
        return True

    # === Agreements ===

    def get_agreement(self, job_id: JobId) -> Optional[Agreement]:
        return self._agreements.get(job_id)

    def save_agreement(self, agreement: Agreement) -> None:
        self._remember_key(self._agreements, agreement.job_id)
        self._agreements[agreement.job_id] = agreement

    # === Transitions ===

    def save_transition(self, transition: JobStateTransition) -> None:
        transitions = self._transitions.setdefault(transition.job_id, [])
        transitions.append(transition)
        self._remember(transitions.pop)

    def get_transitions(self, job_id: JobId) -> List[JobStateTransition]:
        transitions = self._transitions.get(job_id, [])
        return sorted(transitions, key=lambda t: t.sequence)
