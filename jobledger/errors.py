"""
Error kinds and result values for the job ledger.

Every ledger operation returns a :class:`Result`. A failed result carries one
:class:`LedgerErrorCode` naming the violated precondition. Hosts that prefer
exceptions can call :meth:`Result.unwrap`, which raises the matching
:class:`LedgerError` subclass.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Generic, Optional, Type, TypeVar

T = TypeVar("T")


class LedgerErrorCode(IntEnum):
    """Closed enumeration of ledger failure kinds.

    Numeric values are stable and are what hosts should persist or put on
    the wire.
    """

    NOT_AUTHORIZED = 100
    JOB_NOT_FOUND = 101
    JOB_CLOSED = 102
    JOB_EXPIRED = 103
    APPLICATION_LIMIT_REACHED = 104
    ALREADY_APPLIED = 105
    INVALID_MILESTONES = 106
    INVALID_BUDGET = 107
    INVALID_DEADLINE = 108
    NOT_APPLICANT = 109
    NO_APPLICATIONS = 110  # reserved, no operation produces it yet
    INVALID_CLIENT = 111  # reserved, no operation produces it yet
    ZERO_ADDRESS = 112
    INVALID_LIMIT = 113

    @property
    def label(self) -> str:
        """CamelCase name, e.g. ``JobNotFound``."""
        return "".join(part.capitalize() for part in self.name.split("_"))


class LedgerError(Exception):
    """Base exception for ledger errors."""

    code: LedgerErrorCode

    def __init__(self, message: Optional[str] = None):
        if message is None and hasattr(self, "code"):
            message = f"{self.code.label} (code {int(self.code)})"
        super().__init__(message)


class NotAuthorizedError(LedgerError):
    """Caller lacks the rights for this operation."""

    code = LedgerErrorCode.NOT_AUTHORIZED


class JobNotFoundError(LedgerError):
    """No job exists with the given id."""

    code = LedgerErrorCode.JOB_NOT_FOUND


class JobClosedError(LedgerError):
    """Job is no longer open."""

    code = LedgerErrorCode.JOB_CLOSED


class JobExpiredError(LedgerError):
    """Job deadline has been reached."""

    code = LedgerErrorCode.JOB_EXPIRED


class ApplicationLimitReachedError(LedgerError):
    """Job already holds the maximum number of applications."""

    code = LedgerErrorCode.APPLICATION_LIMIT_REACHED


class AlreadyAppliedError(LedgerError):
    """Freelancer already applied to this job."""

    code = LedgerErrorCode.ALREADY_APPLIED


class InvalidMilestonesError(LedgerError):
    """Milestones are missing, too many, negative, or do not sum to the budget."""

    code = LedgerErrorCode.INVALID_MILESTONES


class InvalidBudgetError(LedgerError):
    """Budget or bid amount is out of range."""

    code = LedgerErrorCode.INVALID_BUDGET


class InvalidDeadlineError(LedgerError):
    """Deadline is not after the current logical time."""

    code = LedgerErrorCode.INVALID_DEADLINE


class NotApplicantError(LedgerError):
    """No application exists for the job/freelancer pair."""

    code = LedgerErrorCode.NOT_APPLICANT


class NoApplicationsError(LedgerError):
    """Job has no applications."""

    code = LedgerErrorCode.NO_APPLICATIONS


class InvalidClientError(LedgerError):
    """Client identity is invalid."""

    code = LedgerErrorCode.INVALID_CLIENT


class ZeroAddressError(LedgerError):
    """The null identity was supplied where a real actor is required."""

    code = LedgerErrorCode.ZERO_ADDRESS


class InvalidLimitError(LedgerError):
    """Application cap must be positive."""

    code = LedgerErrorCode.INVALID_LIMIT


_ERRORS_BY_CODE: Dict[LedgerErrorCode, Type[LedgerError]] = {
    cls.code: cls
    for cls in (
        NotAuthorizedError,
        JobNotFoundError,
        JobClosedError,
        JobExpiredError,
        ApplicationLimitReachedError,
        AlreadyAppliedError,
        InvalidMilestonesError,
        InvalidBudgetError,
        InvalidDeadlineError,
        NotApplicantError,
        NoApplicationsError,
        InvalidClientError,
        ZeroAddressError,
        InvalidLimitError,
    )
}


def error_for_code(code: LedgerErrorCode) -> Type[LedgerError]:
    """Get the exception class for an error code."""
    return _ERRORS_BY_CODE[LedgerErrorCode(code)]


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a ledger operation: a value or an error code, never both."""

    value: Optional[T] = None
    error: Optional[LedgerErrorCode] = None

    @classmethod
    def success(cls, value: Any = True) -> "Result":
        return cls(value=value)

    @classmethod
    def failure(cls, error: LedgerErrorCode) -> "Result":
        return cls(error=LedgerErrorCode(error))

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise the matching :class:`LedgerError`."""
        if self.error is not None:
            raise error_for_code(self.error)()
        return self.value

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        if self.error is not None:
            return {"error": int(self.error), "name": self.error.label}
        value = self.value
        if hasattr(value, "to_dict"):
            value = value.to_dict()
        return {"value": value}
