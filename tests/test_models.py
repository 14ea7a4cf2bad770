"""Tests for ledger data models."""

import pytest

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


def make_job(**overrides) -> Job:
    fields = dict(
        id=1,
        client="client-1",
        title="Web Developer Needed",
        description="Build a decentralized app",
        budget=1_000_000,
        milestones=[Milestone("Frontend", 500_000), Milestone("Backend", 500_000)],
        deadline=1_000,
        created_at=500,
    )
    fields.update(overrides)
    return Job(**fields)


class TestJob:
    """Tests for Job dataclass."""

    def test_create_basic_job(self):
        job = make_job()

        assert job.id == 1
        assert job.client == "client-1"
        assert job.status == JobStatus.OPEN
        assert job.milestone_total == 1_000_000
        assert job.milestones == (Milestone("Frontend", 500_000), Milestone("Backend", 500_000))

    def test_status_from_string(self):
        job = make_job(status="active")
        assert job.status is JobStatus.ACTIVE

    def test_invalid_status(self):
        with pytest.raises(ValueError, match="Invalid status"):
            make_job(status="funded")

    def test_invalid_budget(self):
        with pytest.raises(ValueError, match="Budget must be positive"):
            make_job(budget=0)

    def test_milestone_count_bounds(self):
        with pytest.raises(ValueError, match="milestones"):
            make_job(milestones=[])
        with pytest.raises(ValueError, match="milestones"):
            make_job(milestones=[Milestone(f"m{i}", 1) for i in range(6)], budget=6)

    def test_is_frozen(self):
        job = make_job()
        with pytest.raises(AttributeError):
            job.budget = 5

    def test_is_expired(self):
        job = make_job(deadline=1_000)
        assert job.is_expired(999) is False
        assert job.is_expired(1_000) is True
        assert job.is_expired(1_001) is True

    def test_can_transition_to(self):
        job = make_job()
        assert job.can_transition_to(JobStatus.ACTIVE) is True
        assert job.can_transition_to(JobStatus.CLOSED) is True
        assert job.can_transition_to(JobStatus.OPEN) is False

        for terminal in (JobStatus.ACTIVE, JobStatus.CLOSED):
            done = make_job(status=terminal)
            assert not done.is_open
            for target in JobStatus:
                assert done.can_transition_to(target) is False

    def test_transition_table(self):
        assert VALID_JOB_TRANSITIONS[JobStatus.OPEN] == {JobStatus.ACTIVE, JobStatus.CLOSED}
        assert not VALID_JOB_TRANSITIONS[JobStatus.ACTIVE]
        assert not VALID_JOB_TRANSITIONS[JobStatus.CLOSED]

    def test_dict_roundtrip(self):
        job = make_job(status=JobStatus.CLOSED)
        data = job.to_dict()

        assert data["status"] == "closed"
        assert data["milestones"][0] == {"description": "Frontend", "amount": 500_000}
        assert Job.from_dict(data) == job


class TestMilestone:
    """Tests for Milestone dataclass."""

    def test_zero_amount_allowed(self):
        assert Milestone("Kickoff", 0).amount == 0

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            Milestone("Refund", -1)


class TestApplication:
    """Tests for Application dataclass."""

    def test_negative_bid_rejected(self):
        with pytest.raises(ValueError, match="Bid"):
            Application(job_id=1, freelancer="f", proposal="p", bid=-5, applied_at=1)

    def test_to_dict(self):
        app = Application(job_id=1, freelancer="f", proposal="Great proposal", bid=800_000, applied_at=600)
        assert app.to_dict() == {
            "job_id": 1,
            "freelancer": "f",
            "proposal": "Great proposal",
            "bid": 800_000,
            "applied_at": 600,
        }
        assert Application.from_dict(app.to_dict()) == app


class TestAgreement:
    def test_to_dict(self):
        agreement = Agreement(job_id=1, freelancer="f", accepted_at=600)
        assert agreement.to_dict() == {"job_id": 1, "freelancer": "f", "accepted_at": 600}
        assert Agreement.from_dict(agreement.to_dict()) == agreement


class TestJobStateTransition:
    """Tests for the transition audit record."""

    def test_creation_entry_has_no_from_status(self):
        t = JobStateTransition(job_id=1, to_status="open", actor="c", at=500, sequence=1)
        assert t.from_status is None
        assert t.to_status is JobStatus.OPEN
        assert t.to_dict()["from_status"] is None

    def test_dict_roundtrip(self):
        t = JobStateTransition(
            job_id=1,
            from_status=JobStatus.OPEN,
            to_status=JobStatus.ACTIVE,
            actor="c",
            at=600,
            sequence=2,
        )
        assert JobStateTransition.from_dict(t.to_dict()) == t


class TestLedgerConfig:
    def test_default_cap(self):
        assert LedgerConfig(admin="a").max_applications_per_job == 10

    def test_non_positive_cap_rejected(self):
        with pytest.raises(ValueError):
            LedgerConfig(admin="a", max_applications_per_job=0)
