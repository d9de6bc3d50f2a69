"""Tests for manual review of match results."""

import pytest
import pytest_asyncio
from pydantic import ValidationError

from app.db.models import AuditAction, ReconciliationStatus
from app.reconciliation.engine import ReconciliationEngine
from app.reconciliation.models import ResultReview
from app.reconciliation.review import ReviewService


@pytest_asyncio.fixture
async def unmatched_result(db_session, seed, config):
    batch = await seed.batch()
    record = await seed.record(batch, "T9", "50.00", reference_number="R9")
    await seed.commit()

    engine = ReconciliationEngine(db_session, config)
    await engine.reconcile_batch(batch.id)
    return await engine.results.get_by_record_id(record.id)


class TestResultReview:
    """Test review payload validation."""

    def test_requires_status_or_notes(self):
        with pytest.raises(ValidationError):
            ResultReview()

    def test_notes_length_limit(self):
        with pytest.raises(ValidationError):
            ResultReview(notes="x" * 1001)

    def test_unknown_status(self):
        with pytest.raises(ValidationError):
            ResultReview(status="APPROVED")

    def test_notes_only(self):
        review = ResultReview(notes="Checked against statement")
        assert review.status is None


@pytest.mark.asyncio
class TestReviewService:
    """Test the review mutation path."""

    async def test_review_updates_result(self, db_session, unmatched_result):
        service = ReviewService(db_session)

        updated = await service.review_result(
            unmatched_result.id,
            reviewer_id="auditor-1",
            review=ResultReview(status=ReconciliationStatus.MATCHED, notes="Paid in cash"),
        )

        assert updated is not None
        assert updated.status == ReconciliationStatus.MATCHED.value
        assert updated.notes == "Paid in cash"
        assert updated.manually_reviewed is True
        assert updated.reviewed_by == "auditor-1"
        assert updated.reviewed_at is not None
        # Engine fields are left alone
        assert updated.rule_name == "UNMATCHED"

    async def test_review_writes_audit_entry(self, db_session, unmatched_result):
        service = ReviewService(db_session)

        await service.review_result(
            unmatched_result.id,
            reviewer_id="auditor-1",
            review=ResultReview(status=ReconciliationStatus.DUPLICATE),
            source="API",
            ip_address="10.0.0.8",
            user_agent="pytest",
        )

        history = await service.history(unmatched_result.id)
        assert len(history) == 1
        entry = history[0]
        assert entry.action == AuditAction.REVIEW.value
        assert entry.entity_type == "MatchResult"
        assert entry.old_value == {"status": "UNMATCHED", "notes": None}
        assert entry.new_value == {"status": "DUPLICATE", "notes": None}
        assert entry.changed_by == "auditor-1"
        assert entry.source == "API"
        assert entry.ip_address == "10.0.0.8"

    async def test_notes_only_keeps_status(self, db_session, unmatched_result):
        service = ReviewService(db_session)

        updated = await service.review_result(
            unmatched_result.id,
            reviewer_id="auditor-2",
            review=ResultReview(notes="Waiting for bank"),
        )

        assert updated.status == ReconciliationStatus.UNMATCHED.value
        assert updated.notes == "Waiting for bank"

    async def test_history_is_oldest_first(self, db_session, unmatched_result):
        service = ReviewService(db_session)

        await service.review_result(
            unmatched_result.id, "auditor-1", ResultReview(notes="first")
        )
        await service.review_result(
            unmatched_result.id, "auditor-2", ResultReview(notes="second")
        )

        history = await service.history(unmatched_result.id)
        assert [entry.new_value["notes"] for entry in history] == ["first", "second"]
        assert history[1].old_value["notes"] == "first"

    async def test_missing_result(self, db_session):
        service = ReviewService(db_session)

        updated = await service.review_result(
            12345, "auditor-1", ResultReview(notes="nothing here")
        )

        assert updated is None
        assert await service.history(12345) == []

    async def test_list_results_filters(self, db_session, seed, config):
        batch = await seed.batch()
        await seed.record(batch, "T1", "10.00")
        await seed.record(batch, "T2", "20.00")
        await seed.commit()
        await ReconciliationEngine(db_session, config).reconcile_batch(batch.id)

        service = ReviewService(db_session)
        results = await service.list_results(batch.id)
        await service.review_result(results[0].id, "auditor-1", ResultReview(notes="ok"))

        reviewed = await service.list_results(batch.id, manually_reviewed=True)
        unreviewed = await service.list_results(batch.id, manually_reviewed=False)
        unmatched = await service.list_results(
            batch.id, status=ReconciliationStatus.UNMATCHED
        )
        matched = await service.list_results(batch.id, status=ReconciliationStatus.MATCHED)

        assert [r.id for r in reviewed] == [results[0].id]
        assert [r.id for r in unreviewed] == [results[1].id]
        assert len(unmatched) == 2
        assert matched == []
