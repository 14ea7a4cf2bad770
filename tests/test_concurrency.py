"""Tests for serialized access to a shared ledger.

``TestConcurrent*`` classes share one ledger between threads. ``TestSharedStorage``
runs two independent ``JobLedger`` instances over the same store (one
in-memory storage object, or two SQLite storages on the same file), the way
separate CLI processes share a database.
"""

import sqlite3
import threading

import pytest

from jobledger.errors import LedgerErrorCode, Result
from jobledger.ledger import JobLedger
from jobledger.sqlite_storage import SQLiteLedgerStorage
from jobledger.storage import InMemoryLedgerStorage

ADMIN = "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM"
CLIENT = "ST2CY5V39NHDPWSXMW9QDT3HC3GD6Q6XX4CFRK9AG"
FREELANCER = "ST3NBRSFKX28FQ2ZJ1MAKX58HKHSDGNV5N7R21XCP"


def run_threads(target, count: int):
    """Run ``target(i)`` on ``count`` threads at once; exceptions are returned, not lost."""
    barrier = threading.Barrier(count)
    results = [None] * count

    def worker(i):
        barrier.wait()
        try:
            results[i] = target(i)
        except Exception as e:
            results[i] = e

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def assert_all_results(results):
    raised = [r for r in results if not isinstance(r, Result)]
    assert raised == []


# =============================================================================
# One ledger, many threads
# =============================================================================


class TestConcurrentApplications:
    def test_cap_never_exceeded(self, ledger, job_id):
        ledger.set_max_applications(ADMIN, 5)

        results = run_threads(
            lambda i: ledger.apply_to_job(job_id, f"freelancer-{i}", "p", 1, 600), 20
        )

        assert_all_results(results)
        accepted = [r for r in results if r.ok]
        rejected = [r for r in results if not r.ok]
        assert len(accepted) == 5
        assert all(r.error is LedgerErrorCode.APPLICATION_LIMIT_REACHED for r in rejected)
        assert len(ledger.get_applicants(job_id)) == 5

    def test_same_freelancer_applies_once(self, ledger, job_id):
        results = run_threads(
            lambda i: ledger.apply_to_job(job_id, FREELANCER, f"proposal {i}", 1, 600), 10
        )

        assert_all_results(results)
        assert sum(1 for r in results if r.ok) == 1
        assert ledger.get_applicants(job_id) == [FREELANCER]


class TestConcurrentAcceptance:
    def test_single_agreement(self, ledger, job_id):
        freelancers = [f"freelancer-{i}" for i in range(8)]
        for f in freelancers:
            ledger.apply_to_job(job_id, f, "p", 1, 600)

        results = run_threads(
            lambda i: ledger.accept_application(CLIENT, job_id, freelancers[i], 700), 8
        )

        assert_all_results(results)
        winners = [freelancers[i] for i, r in enumerate(results) if r.ok]
        assert len(winners) == 1
        assert ledger.get_agreement(job_id).freelancer == winners[0]
        assert all(r.error is LedgerErrorCode.JOB_CLOSED for r in results if not r.ok)


class TestConcurrentCreation:
    def test_ids_unique(self, ledger):
        results = run_threads(
            lambda i: ledger.create_job(CLIENT, f"Job {i}", "d", 10, [("all", 10)], 1_000, 500), 12
        )

        assert_all_results(results)
        ids = sorted(r.value for r in results)
        assert ids == list(range(1, 13))
        assert ledger.get_job_counter() == 12


# =============================================================================
# Two ledgers, one store
# =============================================================================


@pytest.fixture(params=["memory", "sqlite"])
def ledgers(request, tmp_path):
    """Two independent ledgers over the same underlying store."""
    if request.param == "memory":
        shared = InMemoryLedgerStorage()
        first, second = shared, shared
    else:
        path = tmp_path / "shared.db"
        first, second = SQLiteLedgerStorage(path), SQLiteLedgerStorage(path)
    return JobLedger(ADMIN, storage=first), JobLedger(ADMIN, storage=second)


@pytest.fixture
def shared_job(ledgers):
    first, _ = ledgers
    return first.create_job(CLIENT, "Shared", "d", 100, [("all", 100)], 1_000, 500).unwrap()


class TestSharedStorage:
    def test_second_ledger_sees_first_ledgers_writes(self, ledgers, shared_job):
        first, second = ledgers

        first.set_max_applications(ADMIN, 1)
        assert second.get_max_applications() == 1
        assert second.apply_to_job(shared_job, FREELANCER, "p", 1, 600).ok
        assert first.apply_to_job(shared_job, "late", "p", 1, 600).error is LedgerErrorCode.APPLICATION_LIMIT_REACHED

    def test_duplicate_apply_across_ledgers(self, ledgers, shared_job):
        results = run_threads(
            lambda i: ledgers[i % 2].apply_to_job(shared_job, FREELANCER, f"proposal {i}", 1, 600), 10
        )

        assert_all_results(results)
        assert sum(1 for r in results if r.ok) == 1
        assert all(r.error is LedgerErrorCode.ALREADY_APPLIED for r in results if not r.ok)
        assert ledgers[0].get_applicants(shared_job) == [FREELANCER]

    def test_cap_across_ledgers(self, ledgers, shared_job):
        ledgers[0].set_max_applications(ADMIN, 4)

        results = run_threads(
            lambda i: ledgers[i % 2].apply_to_job(shared_job, f"freelancer-{i}", "p", 1, 600), 16
        )

        assert_all_results(results)
        assert sum(1 for r in results if r.ok) == 4
        assert all(r.error is LedgerErrorCode.APPLICATION_LIMIT_REACHED for r in results if not r.ok)
        assert len(ledgers[1].get_applicants(shared_job)) == 4

    def test_single_agreement_across_ledgers(self, ledgers, shared_job):
        freelancers = [f"freelancer-{i}" for i in range(6)]
        for f in freelancers:
            ledgers[0].apply_to_job(shared_job, f, "p", 1, 600)

        results = run_threads(
            lambda i: ledgers[i % 2].accept_application(CLIENT, shared_job, freelancers[i], 700), 6
        )

        assert_all_results(results)
        winners = [freelancers[i] for i, r in enumerate(results) if r.ok]
        assert len(winners) == 1
        assert all(r.error is LedgerErrorCode.JOB_CLOSED for r in results if not r.ok)
        assert ledgers[1].get_agreement(shared_job).freelancer == winners[0]
        assert len(ledgers[1].get_transitions(shared_job)) == 2

    def test_cap_change_races_applications(self, ledgers, shared_job):
        """Lowering the cap from one ledger while the other takes applications."""
        first, second = ledgers

        def act(i):
            if i == 0:
                return first.set_max_applications(ADMIN, 3)
            return second.apply_to_job(shared_job, f"freelancer-{i}", "p", 1, 600)

        results = run_threads(act, 13)

        assert_all_results(results)
        assert results[0].ok
        applied = [r for r in results[1:] if r.ok]
        assert all(r.error is LedgerErrorCode.APPLICATION_LIMIT_REACHED for r in results[1:] if not r.ok)
        assert 3 <= len(applied) <= 10
        assert len(first.get_applicants(shared_job)) == len(applied)
        assert first.apply_to_job(shared_job, "after", "p", 1, 600).error is LedgerErrorCode.APPLICATION_LIMIT_REACHED


class TestSQLiteWriteLock:
    def test_checks_run_under_write_lock(self, tmp_path, monkeypatch):
        """Another connection cannot start a write while a ledger is still checking."""
        path = tmp_path / "shared.db"
        storage = SQLiteLedgerStorage(path)
        ledger = JobLedger(ADMIN, storage=storage)
        job_id = ledger.create_job(CLIENT, "T", "d", 100, [("all", 100)], 1_000, 500).unwrap()
        ledger.apply_to_job(job_id, FREELANCER, "p", 1, 600)

        original = storage.get_application
        seen = []

        def get_application(*args):
            other = sqlite3.connect(path, timeout=0, isolation_level=None)
            try:
                with pytest.raises(sqlite3.OperationalError, match="locked"):
                    other.execute("BEGIN IMMEDIATE")
            finally:
                other.close()
            seen.append(args)
            return original(*args)

        monkeypatch.setattr(storage, "get_application", get_application)

        assert ledger.accept_application(CLIENT, job_id, FREELANCER, 700).ok
        assert seen

    def test_losing_writer_gets_result_not_exception(self, tmp_path):
        path = tmp_path / "shared.db"
        first = JobLedger(ADMIN, storage=SQLiteLedgerStorage(path))
        second = JobLedger(ADMIN, storage=SQLiteLedgerStorage(path))
        job_id = first.create_job(CLIENT, "T", "d", 100, [("all", 100)], 1_000, 500).unwrap()
        first.apply_to_job(job_id, FREELANCER, "p", 1, 600)
        first.apply_to_job(job_id, "other", "p", 1, 600)

        assert first.accept_application(CLIENT, job_id, FREELANCER, 700).ok
        assert second.accept_application(CLIENT, job_id, "other", 700).error is LedgerErrorCode.JOB_CLOSED
        assert second.apply_to_job(job_id, FREELANCER, "again", 1, 600).error is LedgerErrorCode.JOB_CLOSED
        assert second.get_agreement(job_id).freelancer == FREELANCER
