"""Tests for database models and repositories."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import ResultConflictError
from app.db.models import (
    AuditAction,
    AuditLog,
    Batch,
    BatchStatus,
    MatchResult,
    ReconciliationStatus,
    Record,
)
from app.db.unit_of_work import UnitOfWork


@pytest.mark.asyncio
class TestRecordRepository:
    """Test the record lookups used by the rules."""

    async def test_metadata_round_trip(self, db_session, seed):
        batch = await seed.batch()
        record = await seed.record(
            batch,
            "T1",
            "12.34",
            extra={"branch": "Lagos", "channel": "POS", "tags": ["a", "b"]},
        )
        await seed.commit()

        loaded = await seed.records.get_by_id(record.id)
        assert list(loaded.extra) == ["branch", "channel", "tags"]
        assert loaded.extra["tags"] == ["a", "b"]
        assert loaded.amount == Decimal("12.34")

    async def test_transaction_lookup_excludes_own_batch(self, db_session, seed):
        batch_a = await seed.batch()
        batch_b = await seed.batch()
        await seed.record(batch_a, "T1", "100.00")
        other = await seed.record(batch_b, "T1", "100.00")
        await seed.record(batch_b, "T1", "99.00")

        candidates = await seed.records.find_by_transaction_id_and_amount(
            "T1", Decimal("100.00"), exclude_batch_id=batch_a.id
        )

        assert [c.id for c in candidates] == [other.id]

    async def test_lookups_are_capped_and_ordered(self, db_session, seed):
        batch_a = await seed.batch()
        batch_b = await seed.batch()
        created = [await seed.record(batch_b, f"T{i}", "1.00", "REF") for i in range(4)]

        candidates = await seed.records.find_by_reference_number(
            "REF", exclude_batch_id=batch_a.id, limit=3
        )

        assert [c.id for c in candidates] == [r.id for r in created[:3]]

    async def test_duplicates_exclude_the_record_itself(self, db_session, seed):
        batch = await seed.batch()
        first = await seed.record(batch, "T1", "1.00")
        second = await seed.record(batch, "T1", "2.00")
        await seed.record(batch, "T2", "1.00")

        siblings = await seed.records.find_duplicates_in_batch(
            "T1", batch.id, exclude_record_id=first.id
        )

        assert [s.id for s in siblings] == [second.id]

    async def test_iter_batch_chunks(self, db_session, seed):
        batch = await seed.batch()
        other = await seed.batch()
        for i in range(5):
            await seed.record(batch, f"T{i}", "1.00")
        await seed.record(other, "X", "1.00")

        chunks = [
            chunk async for chunk in seed.records.iter_batch_chunks(batch.id, chunk_size=2)
        ]

        assert [len(chunk) for chunk in chunks] == [2, 2, 1]
        ids = [record.id for chunk in chunks for record in chunk]
        assert ids == sorted(ids)
        assert await seed.records.count_for_batch(batch.id) == 5

    async def test_paginate_with_filter_operators(self, db_session, seed):
        batch = await seed.batch()
        await seed.record(batch, "T1", "10.00")
        await seed.record(batch, "T2", "20.00")
        await seed.record(batch, "T3", "30.00")

        rows, total = await seed.records.paginate(
            page=1,
            limit=1,
            order_by=[Record.amount.desc()],
            batch_id=batch.id,
            amount__gte=20,
        )
        assert total == 2
        assert [row.transaction_id for row in rows] == ["T3"]

        rows, total = await seed.records.paginate(
            page=2, limit=1, order_by=[Record.amount.desc()], amount__gte=20
        )
        assert [row.transaction_id for row in rows] == ["T2"]

        # None means "no filter"
        _, total = await seed.records.paginate(transaction_id=None)
        assert total == 3
        assert await seed.records.count(transaction_id__ne="T1") == 2

        with pytest.raises(ValueError):
            await seed.records.paginate(amount__between=10)


@pytest.mark.asyncio
class TestMatchResultRepository:
    """Test the one-result-per-record store."""

    async def test_second_result_for_record_conflicts(self, db_session, seed):
        batch = await seed.batch()
        record = await seed.record(batch, "T1", "1.00")

        await seed.results.create_result(
            record.id, batch.id, ReconciliationStatus.UNMATCHED, "UNMATCHED", "none"
        )

        with pytest.raises(ResultConflictError) as exc_info:
            await seed.results.create_result(
                record.id, batch.id, ReconciliationStatus.DUPLICATE, "X", "again"
            )
        assert exc_info.value.record_id == record.id

        # The session is still usable after the conflict
        existing = await seed.results.get_by_record_id(record.id)
        assert existing.status == "UNMATCHED"

    async def test_relink_requires_unreviewed_unmatched(self, db_session, seed):
        batch_a = await seed.batch()
        batch_b = await seed.batch()
        record_a = await seed.record(batch_a, "T1", "1.00")
        record_b = await seed.record(batch_b, "T1", "1.00")
        result = await seed.results.create_result(
            record_a.id, batch_a.id, ReconciliationStatus.MATCHED, "EXACT_MATCH", "x"
        )

        with pytest.raises(ResultConflictError):
            await seed.results.relink(
                result,
                status=ReconciliationStatus.MATCHED,
                matched_with_record_id=record_b.id,
                rule_name="EXACT_MATCH",
                reason="again",
                confidence=1.0,
            )

    async def test_relink_updates_unmatched(self, db_session, seed):
        batch_a = await seed.batch()
        batch_b = await seed.batch()
        record_a = await seed.record(batch_a, "T1", "1.00")
        record_b = await seed.record(batch_b, "T1", "1.00")
        result = await seed.results.create_result(
            record_a.id, batch_a.id, ReconciliationStatus.UNMATCHED, "UNMATCHED", "none"
        )

        relinked = await seed.results.relink(
            result,
            status=ReconciliationStatus.PARTIAL,
            matched_with_record_id=record_b.id,
            rule_name="PARTIAL_MATCH",
            reason="close enough",
            confidence=0.99,
            amount_variance=1.0,
        )

        assert relinked.status == "PARTIAL"
        assert relinked.matched_with_record_id == record_b.id
        assert relinked.confidence == pytest.approx(0.99)

    async def test_count_by_status(self, db_session, seed):
        batch = await seed.batch()
        records = [await seed.record(batch, f"T{i}", "1.00") for i in range(3)]
        for record, status in zip(records, ["UNMATCHED", "UNMATCHED", "DUPLICATE"]):
            await seed.results.create_result(record.id, batch.id, status, status, "x")

        assert await seed.results.count_by_status(batch.id) == {
            "UNMATCHED": 2,
            "DUPLICATE": 1,
        }


@pytest.mark.asyncio
class TestBatchAndAuditRepositories:
    """Test batch lifecycle and the append-only audit trail."""

    async def test_batch_lifecycle(self, test_db):
        async with UnitOfWork() as uow:
            batch = await uow.batches.create_batch("statement.csv")
            assert batch.status == BatchStatus.PROCESSING.value
            assert batch.started_at is not None

            await uow.batches.update_progress(batch.id, total_records=10)
            updated = await uow.batches.update_progress(batch.id, processed_records=8)
            assert (updated.total_records, updated.processed_records) == (10, 8)

            failed = await uow.batches.mark_failed(batch.id, "bad file")
            assert failed.status == BatchStatus.FAILED.value
            assert failed.error_message == "bad file"
            assert failed.completed_at is not None

        async with UnitOfWork() as uow:
            failed_batches = await uow.batches.get_by_status(BatchStatus.FAILED)
            assert [b.id for b in failed_batches] == [batch.id]
            assert await uow.batches.get_by_status(BatchStatus.COMPLETED) == []

    async def test_audit_log_is_append_only(self, test_db):
        async with UnitOfWork() as uow:
            entry = await uow.audit_logs.log_reconcile(
                "Batch", 1, {"total": 3}, changed_by="system", source="WORKER"
            )
            assert entry.action == AuditAction.RECONCILE.value
            assert entry.new_value == {"total": 3}

            with pytest.raises(PermissionError):
                await uow.audit_logs.update(entry.id, changed_by="someone-else")

    async def test_unit_of_work_rolls_back_on_error(self, test_db):
        with pytest.raises(RuntimeError):
            async with UnitOfWork() as uow:
                await uow.batches.create_batch("lost.csv")
                raise RuntimeError("boom")

        async with UnitOfWork() as uow:
            assert await uow.batches.count() == 0

    async def test_list_batches_and_counts(self, test_db):
        async with UnitOfWork() as uow:
            first = await uow.batches.create_batch("one.csv")
            second = await uow.batches.create_batch("two.csv")
            third = await uow.batches.create_batch("three.csv")
            await uow.batches.mark_completed(first.id)
            await uow.batches.mark_failed(second.id, "bad header")

        async with UnitOfWork() as uow:
            batches, total = await uow.batches.list_batches(page=1, limit=2)
            assert total == 3
            assert [b.id for b in batches] == [third.id, second.id]

            failed, total = await uow.batches.list_batches(status=BatchStatus.FAILED)
            assert total == 1
            assert failed[0].error_message == "bad header"

            assert await uow.batches.count_by_status() == {
                "PROCESSING": 1,
                "COMPLETED": 1,
                "FAILED": 1,
            }
            assert await uow.batches.completed_batch_ids() == [first.id]

    async def test_audit_search_filters_and_pages(self, test_db):
        now = datetime.now(timezone.utc)
        async with UnitOfWork() as uow:
            for days_ago, entity_id, user in [(3, 1, "ana"), (2, 1, "bo"), (1, 2, "ana")]:
                await uow.audit_logs.create(
                    entity_type="MatchResult",
                    entity_id=entity_id,
                    action=AuditAction.REVIEW.value,
                    changed_by=user,
                    source="API",
                    timestamp=now - timedelta(days=days_ago),
                )
            await uow.audit_logs.log_reconcile(
                "Batch", 1, {"total": 0}, changed_by="system", source="WORKER"
            )

        async with UnitOfWork() as uow:
            entries, total = await uow.audit_logs.search(entity_type="MatchResult")
            assert total == 3
            assert [e.changed_by for e in entries] == ["ana", "bo", "ana"]
            assert entries[0].entity_id == 2

            _, total = await uow.audit_logs.search(changed_by="ana", entity_id=1)
            assert total == 1

            _, total = await uow.audit_logs.search(action=AuditAction.RECONCILE)
            assert total == 1

            in_range, total = await uow.audit_logs.search(
                start_date=now - timedelta(days=2, hours=1),
                end_date=now - timedelta(hours=12),
            )
            assert total == 2
            assert {e.changed_by for e in in_range} == {"ana", "bo"}

            page_two, total = await uow.audit_logs.search(page=2, limit=3)
            assert total == 4
            assert len(page_two) == 1


@pytest.mark.asyncio
class TestForeignKeys:
    """SQLite connections enforce the model's foreign keys."""

    async def test_record_needs_existing_batch(self, db_session, seed):
        with pytest.raises(IntegrityError):
            await seed.records.create(
                batch_id=4242,
                transaction_id="T1",
                reference_number="T1",
                amount=Decimal("1.00"),
                date=datetime(2026, 1, 15, tzinfo=timezone.utc),
            )

    async def test_deleting_batch_cascades(self, db_session, seed):
        batch_a = await seed.batch()
        batch_b = await seed.batch()
        record_a = await seed.record(batch_a, "T1", "5.00")
        record_b = await seed.record(batch_b, "T1", "5.00")
        await seed.results.create_result(
            record_id=record_a.id,
            batch_id=batch_a.id,
            status=ReconciliationStatus.MATCHED,
            rule_name="EXACT_MATCH",
            reason="Exact match on transaction ID and amount",
            matched_with_record_id=record_b.id,
        )
        await seed.results.create_result(
            record_id=record_b.id,
            batch_id=batch_b.id,
            status=ReconciliationStatus.MATCHED,
            rule_name="EXACT_MATCH",
            reason="Exact match on transaction ID and amount",
            matched_with_record_id=record_a.id,
        )
        await seed.commit()
        batch_a_id = batch_a.id

        await db_session.execute(delete(Batch).where(Batch.id == batch_a_id))
        await db_session.commit()

        remaining = await db_session.execute(
            select(func.count(Record.id)).where(Record.batch_id == batch_a_id)
        )
        assert remaining.scalar() == 0
        link = await db_session.execute(
            select(MatchResult.record_id, MatchResult.matched_with_record_id)
        )
        # Only batch B's result is left, with its counterpart link cleared
        assert link.all() == [(record_b.id, None)]
