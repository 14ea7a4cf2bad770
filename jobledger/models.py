"""
Data models for the job ledger.

Models:
- JobStatus: Job lifecycle status
- Milestone: A payable slice of a job's budget
- Job: A work listing posted by a client
- Application: A freelancer's bid and proposal against a job
- Agreement: A client's acceptance of one application
- JobStateTransition: Audit log entry for status changes
- LedgerConfig: Admin identity and application cap
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from jobledger.types import (
    MAX_MILESTONES,
    MIN_MILESTONES,
    Identity,
    JobId,
    LogicalTime,
)


class JobStatus(str, Enum):
    """Status of a job listing."""

    OPEN = "open"  # Accepting applications
    CLOSED = "closed"  # Withdrawn by the client
    ACTIVE = "active"  # An application was accepted


# Open is the only state with outgoing edges.
VALID_JOB_TRANSITIONS: Dict[JobStatus, frozenset] = {
    JobStatus.OPEN: frozenset({JobStatus.ACTIVE, JobStatus.CLOSED}),
    JobStatus.CLOSED: frozenset(),
    JobStatus.ACTIVE: frozenset(),
}


@dataclass(frozen=True)
class Milestone:
    """A described share of the job budget."""

    description: str
    amount: int

    def __post_init__(self):
        if self.amount < 0:
            raise ValueError(f"Milestone amount must be non-negative, got {self.amount}")

    def to_dict(self) -> Dict[str, Any]:
        return {"description": self.description, "amount": self.amount}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Milestone":
        return cls(description=data["description"], amount=int(data["amount"]))


@dataclass(frozen=True)
class Job:
    """A job listing.

    Attributes:
        id: Sequential job id, starting at 1
        client: Identity of the client who posted the job
        title: Short job title
        description: Full job description
        budget: Total budget in the smallest currency unit
        milestones: Ordered milestones whose amounts sum to the budget
        deadline: Logical time after which applications are refused
        status: Current lifecycle status
        created_at: Logical time of creation
    """

    id: JobId
    client: Identity
    title: str
    description: str
    budget: int
    milestones: Tuple[Milestone, ...]
    deadline: LogicalTime
    created_at: LogicalTime
    status: JobStatus = JobStatus.OPEN

    def __post_init__(self):
        # Normalize status given as a plain string
        try:
            object.__setattr__(self, "status", JobStatus(self.status))
        except ValueError:
            raise ValueError(f"Invalid status: {self.status}") from None
        object.__setattr__(self, "milestones", tuple(self.milestones))

        if self.budget <= 0:
            raise ValueError("Budget must be positive")
        if not MIN_MILESTONES <= len(self.milestones) <= MAX_MILESTONES:
            raise ValueError(
                f"A job needs {MIN_MILESTONES}-{MAX_MILESTONES} milestones, "
                f"got {len(self.milestones)}"
            )
        if self.created_at < 0 or self.deadline < 0:
            raise ValueError("Logical times must be non-negative")

    @property
    def milestone_total(self) -> int:
        return sum(m.amount for m in self.milestones)

    @property
    def is_open(self) -> bool:
        """Check if job is accepting applications."""
        return self.status == JobStatus.OPEN

    def is_expired(self, now: LogicalTime) -> bool:
        """Check if the deadline has been reached at logical time ``now``."""
        return now >= self.deadline

    def can_transition_to(self, new_status: JobStatus) -> bool:
        """Check if transition to new status is valid."""
        return JobStatus(new_status) in VALID_JOB_TRANSITIONS[self.status]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "client": self.client,
            "title": self.title,
            "description": self.description,
            "budget": self.budget,
            "milestones": [m.to_dict() for m in self.milestones],
            "deadline": self.deadline,
            "status": self.status.value,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        """Create from dictionary."""
        return cls(
            id=int(data["id"]),
            client=data["client"],
            title=data["title"],
            description=data["description"],
            budget=int(data["budget"]),
            milestones=[Milestone.from_dict(m) for m in data["milestones"]],
            deadline=int(data["deadline"]),
            created_at=int(data["created_at"]),
            status=data.get("status", JobStatus.OPEN.value),
        )


@dataclass(frozen=True)
class Application:
    """A freelancer's application to a job."""

    job_id: JobId
    freelancer: Identity
    proposal: str
    bid: int
    applied_at: LogicalTime

    def __post_init__(self):
        if self.bid < 0:
            raise ValueError("Bid must be non-negative")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "freelancer": self.freelancer,
            "proposal": self.proposal,
            "bid": self.bid,
            "applied_at": self.applied_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Application":
        return cls(
            job_id=int(data["job_id"]),
            freelancer=data["freelancer"],
            proposal=data["proposal"],
            bid=int(data["bid"]),
            applied_at=int(data["applied_at"]),
        )


@dataclass(frozen=True)
class Agreement:
    """Record of a client accepting a freelancer for a job."""

    job_id: JobId
    freelancer: Identity
    accepted_at: LogicalTime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "freelancer": self.freelancer,
            "accepted_at": self.accepted_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Agreement":
        return cls(
            job_id=int(data["job_id"]),
            freelancer=data["freelancer"],
            accepted_at=int(data["accepted_at"]),
        )


@dataclass(frozen=True)
class JobStateTransition:
    """Audit log entry for a job status change.

    ``from_status`` is None for the creation entry.
    """

    job_id: JobId
    to_status: JobStatus
    actor: Identity
    at: LogicalTime
    from_status: Optional[JobStatus] = None
    sequence: int = 0

    def __post_init__(self):
        object.__setattr__(self, "to_status", JobStatus(self.to_status))
        if self.from_status is not None:
            object.__setattr__(self, "from_status", JobStatus(self.from_status))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "from_status": self.from_status.value if self.from_status else None,
            "to_status": self.to_status.value,
            "actor": self.actor,
            "at": self.at,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobStateTransition":
        return cls(
            job_id=int(data["job_id"]),
            from_status=data.get("from_status"),
            to_status=data["to_status"],
            actor=data["actor"],
            at=int(data["at"]),
            sequence=int(data.get("sequence", 0)),
        )


@dataclass(frozen=True)
class LedgerConfig:
    """Process-wide ledger configuration.

    Only changed through the ledger's admin operations.
    """

    admin: Identity
    max_applications_per_job: int = 10

    def __post_init__(self):
        if self.max_applications_per_job <= 0:
            raise ValueError("max_applications_per_job must be positive")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "admin": self.admin,
            "max_applications_per_job": self.max_applications_per_job,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerConfig":
        return cls(
            admin=data["admin"],
            max_applications_per_job=int(data["max_applications_per_job"]),
        )
