"""
Job ledger: the job-listing state machine.

The ledger owns jobs, applications, applicant lists, agreements and the
ledger configuration. Every mutating operation:

1. takes the ledger lock (one writer at a time, readers never see a
   half-applied change),
2. opens one storage transaction, so reads, checks and writes see the same
   state even when another process shares the database,
3. checks all preconditions and returns a failed :class:`Result` on the first
   violation, before any write,
4. applies its writes inside that same transaction.

Caller identity and logical time are explicit parameters; the ledger reads
no ambient context. Per job the state machine is::

    Open --accept--> Active
    Open --close-->  Closed

Nothing leaves Active or Closed.
"""

import logging
import threading
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple, Union

from jobledger.errors import LedgerErrorCode, Result
from jobledger.models import (
    Agreement,
    Application,
    Job,
    JobStateTransition,
    JobStatus,
    LedgerConfig,
    Milestone,
)
from jobledger.storage import InMemoryLedgerStorage, LedgerStorage
from jobledger.types import (
    MAX_MILESTONES,
    NULL_IDENTITY,
    Identity,
    JobId,
    LogicalTime,
)

logger = logging.getLogger(__name__)

MilestoneInput = Union[Milestone, Tuple[str, int]]


class JobLedger:
    """Authoritative record of jobs, applications and agreements.

    Args:
        deployer: Identity that becomes the initial admin. Ignored when the
            storage already holds a configuration.
        storage: Persistence backend (in-memory by default).
        max_applications_per_job: Initial application cap for a new ledger.
        null_identity: Reserved identity that can never act.
    """

    def __init__(
        self,
        deployer: Identity,
        storage: Optional[LedgerStorage] = None,
        max_applications_per_job: int = 10,
        null_identity: Identity = NULL_IDENTITY,
    ):
        if deployer == null_identity:
            raise ValueError("Ledger deployer cannot be the null identity")
        self._storage = storage if storage is not None else InMemoryLedgerStorage()
        self._null_identity = null_identity
        self._lock = threading.RLock()
        self._last_seen_time: Optional[LogicalTime] = None

        with self._lock, self._storage.transaction():
            if self._storage.get_config() is None:
                self._storage.save_config(
                    LedgerConfig(
                        admin=deployer,
                        max_applications_per_job=max_applications_per_job,
                    )
                )
                logger.info(
                    f"Initialized ledger: admin={deployer}, "
                    f"max_applications_per_job={max_applications_per_job}"
                )

    @classmethod
    def from_settings(cls, deployer: Identity, storage: Optional[LedgerStorage] = None):
        """Create a ledger seeded from :func:`jobledger.config.get_settings`."""
        from jobledger.config import get_settings

        settings = get_settings()
        return cls(
            deployer,
            storage=storage,
            max_applications_per_job=settings.max_applications_per_job,
            null_identity=settings.null_identity,
        )

    @property
    def storage(self) -> LedgerStorage:
        return self._storage

    @property
    def null_identity(self) -> Identity:
        return self._null_identity

    # =========================================================================
    # Internals
    # =========================================================================

    def _config(self) -> LedgerConfig:
        config = self._storage.get_config()
        if config is None:
            raise RuntimeError("Ledger storage holds no configuration")
        return config

    def _observe_time(self, now: LogicalTime) -> None:
        """Track the host clock; a decreasing value is logged, not rejected."""
        if self._last_seen_time is not None and now < self._last_seen_time:
            logger.warning(
                f"Logical time went backwards: {now} < {self._last_seen_time}"
            )
            return
        self._last_seen_time = now

    def _reject(self, operation: str, code: LedgerErrorCode, **context) -> Result:
        details = ", ".join(f"{k}={v}" for k, v in context.items())
        logger.debug(f"{operation} rejected with {code.label}: {details}")
        return Result.failure(code)

    def _record_transition(
        self,
        job_id: JobId,
        from_status: Optional[JobStatus],
        to_status: JobStatus,
        actor: Identity,
        at: LogicalTime,
    ) -> None:
        sequence = len(self._storage.get_transitions(job_id)) + 1
        self._storage.save_transition(
            JobStateTransition(
                job_id=job_id,
                from_status=from_status,
                to_status=to_status,
                actor=actor,
                at=at,
                sequence=sequence,
            )
        )

    @staticmethod
    def _coerce_milestones(milestones: Sequence[MilestoneInput]) -> Optional[List[Milestone]]:
        """Build Milestone records; None if any entry is malformed or negative."""
        result = []
        for m in milestones:
            if isinstance(m, Milestone):
                result.append(m)
                continue
            try:
                description, amount = m
            except (TypeError, ValueError):
                return None
            if not isinstance(amount, int) or amount < 0:
                return None
            result.append(Milestone(description=description, amount=amount))
        return result

    # =========================================================================
    # Administrative operations
    # =========================================================================

    def transfer_admin(self, caller: Identity, new_admin: Identity) -> Result:
        """Hand admin rights to ``new_admin``.

        Errors:
            NOT_AUTHORIZED: caller is not the admin
            ZERO_ADDRESS: new_admin is the null identity
        """
        with self._lock, self._storage.transaction():
            config = self._config()
            if caller != config.admin:
                return self._reject("transfer_admin", LedgerErrorCode.NOT_AUTHORIZED, caller=caller)
            if new_admin == self._null_identity:
                return self._reject("transfer_admin", LedgerErrorCode.ZERO_ADDRESS, new_admin=new_admin)

            self._storage.save_config(replace(config, admin=new_admin))
            logger.info(f"Admin transferred: {caller} -> {new_admin}")
            return Result.success(True)

    def set_max_applications(self, caller: Identity, max_applications: int) -> Result:
        """Replace the per-job application cap.

        The cap is read live by every application, so raising or lowering it
        affects open jobs immediately. Existing applicants are never removed.

        Errors:
            NOT_AUTHORIZED: caller is not the admin
            INVALID_LIMIT: max_applications is not positive
        """
        with self._lock, self._storage.transaction():
            config = self._config()
            if caller != config.admin:
                return self._reject(
                    "set_max_applications", LedgerErrorCode.NOT_AUTHORIZED, caller=caller
                )
            if max_applications <= 0:
                return self._reject(
                    "set_max_applications", LedgerErrorCode.INVALID_LIMIT, max=max_applications
                )

            self._storage.save_config(
                replace(config, max_applications_per_job=max_applications)
            )
            logger.info(
                f"Application cap changed: {config.max_applications_per_job} -> {max_applications}"
            )
            return Result.success(True)

    # =========================================================================
    # Job lifecycle
    # =========================================================================

    def create_job(
        self,
        caller: Identity,
        title: str,
        description: str,
        budget: int,
        milestones: Sequence[MilestoneInput],
        deadline: LogicalTime,
        now: LogicalTime,
    ) -> Result:
        """Post a new job.

        Args:
            caller: Client creating the job
            title: Job title
            description: Job description
            budget: Total budget in the smallest currency unit
            milestones: 1-5 ``Milestone`` records or ``(description, amount)``
                pairs whose amounts sum to ``budget``
            deadline: Logical time at which applications close
            now: Current logical time

        Returns:
            Result holding the new job id.

        Errors:
            ZERO_ADDRESS, INVALID_BUDGET, INVALID_DEADLINE, INVALID_MILESTONES
        """
        with self._lock:
            self._observe_time(now)
            # Argument checks only; nothing here reads storage
            if caller == self._null_identity:
                return self._reject("create_job", LedgerErrorCode.ZERO_ADDRESS, caller=caller)
            if budget <= 0:
                return self._reject("create_job", LedgerErrorCode.INVALID_BUDGET, budget=budget)
            if deadline <= now:
                return self._reject(
                    "create_job", LedgerErrorCode.INVALID_DEADLINE, deadline=deadline, now=now
                )
            if not milestones or len(milestones) > MAX_MILESTONES:
                return self._reject(
                    "create_job", LedgerErrorCode.INVALID_MILESTONES, count=len(milestones)
                )
            records = self._coerce_milestones(milestones)
            if records is None:
                return self._reject("create_job", LedgerErrorCode.INVALID_MILESTONES)
            total = sum(m.amount for m in records)
            if total != budget:
                return self._reject(
                    "create_job", LedgerErrorCode.INVALID_MILESTONES, total=total, budget=budget
                )

            with self._storage.transaction():
                job_id = self._storage.get_job_counter() + 1
                job = Job(
                    id=job_id,
                    client=caller,
                    title=title,
                    description=description,
                    budget=budget,
                    milestones=records,
                    deadline=deadline,
                    created_at=now,
                    status=JobStatus.OPEN,
                )
                self._storage.save_job(job)
                self._storage.set_job_counter(job_id)
                self._record_transition(job_id, None, JobStatus.OPEN, caller, now)

            logger.info(f"Created job {job_id} for client {caller} (budget={budget})")
            return Result.success(job_id)

    def apply_to_job(
        self,
        job_id: JobId,
        freelancer: Identity,
        proposal: str,
        bid: int,
        now: LogicalTime,
    ) -> Result:
        """Submit a freelancer's application.

        The applicant bound is the cap configured *now*, not the one in force
        when the job was created.

        Errors:
            JOB_NOT_FOUND, JOB_CLOSED, JOB_EXPIRED, APPLICATION_LIMIT_REACHED,
            ALREADY_APPLIED, INVALID_BUDGET
        """
        with self._lock, self._storage.transaction():
            self._observe_time(now)
            job = self._storage.get_job(job_id)
            if job is None:
                return self._reject("apply_to_job", LedgerErrorCode.JOB_NOT_FOUND, job_id=job_id)
            if not job.is_open:
                return self._reject(
                    "apply_to_job", LedgerErrorCode.JOB_CLOSED, job_id=job_id, status=job.status.value
                )
            if job.is_expired(now):
                return self._reject(
                    "apply_to_job", LedgerErrorCode.JOB_EXPIRED, job_id=job_id, now=now
                )
            limit = self._config().max_applications_per_job
            if len(self._storage.get_applicants(job_id)) >= limit:
                return self._reject(
                    "apply_to_job", LedgerErrorCode.APPLICATION_LIMIT_REACHED, job_id=job_id, limit=limit
                )
            if self._storage.get_application(job_id, freelancer) is not None:
                return self._reject(
                    "apply_to_job", LedgerErrorCode.ALREADY_APPLIED, job_id=job_id, freelancer=freelancer
                )
            if bid < 0 or bid > job.budget:
                return self._reject(
                    "apply_to_job", LedgerErrorCode.INVALID_BUDGET, job_id=job_id, bid=bid
                )

            # Re-checked at insertion; nothing has been written if this fails
            if not self._storage.append_applicant(job_id, freelancer, limit):
                return self._reject(
                    "apply_to_job", LedgerErrorCode.APPLICATION_LIMIT_REACHED, job_id=job_id, limit=limit
                )
            self._storage.save_application(
                Application(
                    job_id=job_id,
                    freelancer=freelancer,
                    proposal=proposal,
                    bid=bid,
                    applied_at=now,
                )
            )

            logger.info(f"Freelancer {freelancer} applied to job {job_id} (bid={bid})")
            return Result.success(True)

    def accept_application(
        self,
        caller: Identity,
        job_id: JobId,
        freelancer: Identity,
        now: LogicalTime,
    ) -> Result:
        """Accept ``freelancer``'s application, activating the job.

        Creates the job's only agreement. A second call fails with JOB_CLOSED
        and leaves the agreement unchanged.

        Errors:
            JOB_NOT_FOUND, NOT_AUTHORIZED, JOB_CLOSED, NOT_APPLICANT
        """
        with self._lock, self._storage.transaction():
            self._observe_time(now)
            job = self._storage.get_job(job_id)
            if job is None:
                return self._reject(
                    "accept_application", LedgerErrorCode.JOB_NOT_FOUND, job_id=job_id
                )
            if caller != job.client:
                return self._reject(
                    "accept_application", LedgerErrorCode.NOT_AUTHORIZED, job_id=job_id, caller=caller
                )
            if not job.can_transition_to(JobStatus.ACTIVE):
                return self._reject(
                    "accept_application", LedgerErrorCode.JOB_CLOSED, job_id=job_id, status=job.status.value
                )
            if self._storage.get_application(job_id, freelancer) is None:
                return self._reject(
                    "accept_application", LedgerErrorCode.NOT_APPLICANT, job_id=job_id, freelancer=freelancer
                )

            self._storage.save_job(replace(job, status=JobStatus.ACTIVE))
            self._storage.save_agreement(
                Agreement(job_id=job_id, freelancer=freelancer, accepted_at=now)
            )
            self._record_transition(job_id, job.status, JobStatus.ACTIVE, caller, now)

            logger.info(f"Job {job_id} accepted: freelancer {freelancer} at {now}")
            return Result.success(True)

    def close_job(
        self,
        caller: Identity,
        job_id: JobId,
        now: Optional[LogicalTime] = None,
    ) -> Result:
        """Close an open job. Closed is terminal.

        ``now`` only timestamps the audit entry; when omitted the latest
        logical time seen by the ledger (or the job creation time) is used.

        Errors:
            JOB_NOT_FOUND, NOT_AUTHORIZED, JOB_CLOSED
        """
        with self._lock, self._storage.transaction():
            if now is not None:
                self._observe_time(now)
            job = self._storage.get_job(job_id)
            if job is None:
                return self._reject("close_job", LedgerErrorCode.JOB_NOT_FOUND, job_id=job_id)
            if caller != job.client:
                return self._reject(
                    "close_job", LedgerErrorCode.NOT_AUTHORIZED, job_id=job_id, caller=caller
                )
            if not job.can_transition_to(JobStatus.CLOSED):
                return self._reject(
                    "close_job", LedgerErrorCode.JOB_CLOSED, job_id=job_id, status=job.status.value
                )

            at = now
            if at is None:
                at = self._last_seen_time if self._last_seen_time is not None else job.created_at
            self._storage.save_job(replace(job, status=JobStatus.CLOSED))
            self._record_transition(job_id, job.status, JobStatus.CLOSED, caller, at)

            logger.info(f"Job {job_id} closed by {caller}")
            return Result.success(True)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_job(self, job_id: JobId) -> Result:
        """Get a job; fails with JOB_NOT_FOUND."""
        with self._lock:
            job = self._storage.get_job(job_id)
        if job is None:
            return Result.failure(LedgerErrorCode.JOB_NOT_FOUND)
        return Result.success(job)

    def get_application(self, job_id: JobId, freelancer: Identity) -> Result:
        """Get an application; fails with NOT_APPLICANT."""
        with self._lock:
            application = self._storage.get_application(job_id, freelancer)
        if application is None:
            return Result.failure(LedgerErrorCode.NOT_APPLICANT)
        return Result.success(application)

    def get_applicants(self, job_id: JobId) -> List[Identity]:
        """Get a job's applicants in application order (empty if none)."""
        with self._lock:
            return self._storage.get_applicants(job_id)

    def get_agreement(self, job_id: JobId) -> Optional[Agreement]:
        """Get a job's agreement, or None."""
        with self._lock:
            return self._storage.get_agreement(job_id)

    def get_transitions(self, job_id: JobId) -> List[JobStateTransition]:
        """Get a job's status history, oldest first."""
        with self._lock:
            return self._storage.get_transitions(job_id)

    def get_job_counter(self) -> int:
        with self._lock:
            return self._storage.get_job_counter()

    def get_max_applications(self) -> int:
        with self._lock:
            return self._config().max_applications_per_job

    def get_admin(self) -> Identity:
        with self._lock:
            return self._config().admin
