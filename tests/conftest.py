"""
Pytest fixtures and test configuration for jobledger tests.
"""

import pytest

from jobledger.ledger import JobLedger
from jobledger.sqlite_storage import SQLiteLedgerStorage
from jobledger.storage import InMemoryLedgerStorage

ADMIN = "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM"
CLIENT = "ST2CY5V39NHDPWSXMW9QDT3HC3GD6Q6XX4CFRK9AG"
FREELANCER = "ST3NBRSFKX28FQ2ZJ1MAKX58HKHSDGNV5N7R21XCP"
OTHER_FREELANCER = "ST4REPDNHYEF2S8E5MZ5JWE1VM1N2KDB5S9KH2K0E"

BUDGET = 1_000_000
MILESTONES = [("Complete frontend", 500_000), ("Complete backend", 500_000)]
DEADLINE = 1_000
CREATED_AT = 500


@pytest.fixture
def memory_storage():
    """Fresh in-memory storage."""
    return InMemoryLedgerStorage()


@pytest.fixture
def sqlite_storage(tmp_path):
    """Fresh SQLite storage in a temp directory."""
    return SQLiteLedgerStorage(tmp_path / "ledger.db")


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    """Each ledger test runs against both storage backends."""
    if request.param == "memory":
        return InMemoryLedgerStorage()
    return SQLiteLedgerStorage(tmp_path / "ledger.db")


@pytest.fixture
def ledger(storage):
    """Ledger deployed by ADMIN with the default cap of 10."""
    return JobLedger(ADMIN, storage=storage)


@pytest.fixture
def job_id(ledger):
    """An open job posted by CLIENT (deadline 1000, created at 500)."""
    result = ledger.create_job(
        CLIENT,
        "Web Developer Needed",
        "Build a decentralized app",
        BUDGET,
        MILESTONES,
        DEADLINE,
        CREATED_AT,
    )
    assert result.ok
    return result.value
