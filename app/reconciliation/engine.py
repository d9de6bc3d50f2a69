"""Reconciliation engine: decides the outcome of every record in a batch."""

from __future__ import annotations

from decimal import Decimal
from typing import Awaitable, Callable, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import InvalidRuleError, ResultConflictError, StorageError
from app.db.models.match_result import MatchResult, ReconciliationStatus
from app.db.models.record import Record
from app.db.repositories.match_result_repository import MatchResultRepository
from app.db.repositories.record_repository import RecordRepository
from app.reconciliation.config import ReconciliationConfig
from app.reconciliation.models import ReconciliationStats
from app.reconciliation.rules import (
    DUPLICATE_DETECTION,
    EXACT_MATCH,
    PARTIAL_MATCH,
    UNMATCHED_RULE,
    Rule,
    RuleRegistry,
)

logger = structlog.get_logger(__name__)

RuleHandler = Callable[[Record, int, Rule], Awaitable[Optional[MatchResult]]]

EXACT_MATCH_REASON = "Exact match on transaction ID and amount"
UNMATCHED_REASON = "No matching record found"


def _as_decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _is_claimable(result: Optional[MatchResult]) -> bool:
    """Whether a counterpart may still be linked to a new record.

    Records without an outcome are free. An UNMATCHED outcome the engine
    assigned earlier (and nobody reviewed) only meant "no counterpart yet",
    so it can be turned into a link. Anything else is taken.
    """
    if result is None:
        return True
    return (
        result.status == ReconciliationStatus.UNMATCHED.value
        and not result.manually_reviewed
    )


class ReconciliationEngine:
    """
    Rule-ordered, deterministic matcher for one batch at a time.

    Orchestrates:
    1. Chunked paging over the batch's records
    2. Idempotency guard (records with an outcome are skipped)
    3. Rules in priority order, first outcome wins
    4. Linked outcomes for both sides of a match
    5. Per-status totals

    The engine keeps no state between runs apart from its configuration, so
    one instance can serve any number of batches.
    """

    def __init__(
        self,
        session: AsyncSession,
        config: ReconciliationConfig | None = None,
        rules: RuleRegistry | None = None,
    ):
        """
        Initialize reconciliation engine.

        Args:
            session: Database session
            config: Engine configuration (defaults to application settings)
            rules: Rule registry (defaults to the built-in rules)

        Raises:
            InvalidRuleError: If an active rule has no handler
        """
        self.session = session
        if config is None:
            config = ReconciliationConfig.from_settings(get_settings())
        if rules is None:
            rules = RuleRegistry.default(
                partial_match_variance=config.partial_match_variance,
                disabled=config.disabled_rules,
            )
        self.config = config
        self.rules = rules

        self.records = RecordRepository(Record, session)
        self.results = MatchResultRepository(MatchResult, session)

        self._handlers: dict[str, RuleHandler] = {
            EXACT_MATCH: self._apply_exact_match,
            PARTIAL_MATCH: self._apply_partial_match,
            DUPLICATE_DETECTION: self._apply_duplicate_detection,
        }
        for rule in self.rules.active_rules():
            if rule.name not in self._handlers:
                raise InvalidRuleError(rule.name)

    async def reconcile_batch(self, batch_id: int) -> ReconciliationStats:
        """
        Reconcile every record of a batch.

        Records are paged in chunks of ``config.chunk_size`` and the work is
        committed after each chunk, so stopping between chunks is safe and a
        re-run picks up where the previous one stopped.

        Args:
            batch_id: Batch to reconcile

        Returns:
            Outcome counts for the records processed in this call

        Raises:
            StorageError: If reading or writing the stores fails
            ResultConflictError: If concurrent writers keep racing for a record
        """
        log = logger.bind(batch_id=batch_id)

        try:
            record_count = await self.records.count_for_batch(batch_id)
            if record_count == 0:
                log.warning("reconciliation.empty_batch")
                return ReconciliationStats()

            log.info(
                "reconciliation.started",
                records=record_count,
                rules=[rule.name for rule in self.rules.active_rules()],
                chunk_size=self.config.chunk_size,
            )

            stats = ReconciliationStats()
            chunk_number = 0
            async for chunk in self.records.iter_batch_chunks(
                batch_id, self.config.chunk_size
            ):
                chunk_number += 1
                for record in chunk:
                    result = await self.reconcile_record(record, batch_id)
                    stats.add(result.status)

                await self.session.commit()
                log.debug(
                    "reconciliation.chunk_processed",
                    chunk=chunk_number,
                    chunk_records=len(chunk),
                    processed=stats.total,
                )
        except SQLAlchemyError as e:
            await self.session.rollback()
            log.error("reconciliation.storage_failure", error=str(e))
            raise StorageError(
                f"Reconciliation of batch {batch_id} failed: {e}", batch_id=batch_id
            ) from e
        except Exception:
            await self.session.rollback()
            raise

        log.info("reconciliation.completed", **stats.model_dump())
        return stats

    async def reconcile_record(self, record: Record, batch_id: int) -> MatchResult:
        """
        Decide the outcome of one record.

        A record that already has an outcome gets it back unchanged. A
        conflict raised while writing means another run got there first; the
        existing outcome is returned, or, when it was the counterpart that got
        taken, the record is evaluated once more.

        Args:
            record: Record to reconcile
            batch_id: Batch being reconciled

        Returns:
            The record's outcome
        """
        existing = await self.results.get_by_record_id(record.id)
        if existing is not None:
            return existing

        try:
            return await self._evaluate(record, batch_id)
        except ResultConflictError:
            existing = await self.results.get_by_record_id(record.id)
            if existing is not None:
                logger.info(
                    "reconciliation.already_resolved",
                    record_id=record.id,
                    batch_id=batch_id,
                )
                return existing

            logger.info(
                "reconciliation.counterpart_taken",
                record_id=record.id,
                batch_id=batch_id,
            )
            return await self._evaluate(record, batch_id)

    async def _evaluate(self, record: Record, batch_id: int) -> MatchResult:
        for rule in self.rules.active_rules():
            handler = self._handlers.get(rule.name)
            if handler is None:
                raise InvalidRuleError(rule.name)

            result = await handler(record, batch_id, rule)
            if result is not None:
                return result

        return await self.results.create_result(
            record_id=record.id,
            batch_id=batch_id,
            status=ReconciliationStatus.UNMATCHED,
            rule_name=UNMATCHED_RULE,
            reason=UNMATCHED_REASON,
        )

    async def _apply_exact_match(
        self, record: Record, batch_id: int, rule: Rule
    ) -> Optional[MatchResult]:
        """Same transaction id and amount in another batch.

        Only the first candidate is considered. If it is already taken the
        rule yields nothing and lower priority rules get their turn.
        """
        candidates = await self.records.find_by_transaction_id_and_amount(
            record.transaction_id,
            record.amount,
            exclude_batch_id=batch_id,
            limit=self.config.candidate_limit,
        )
        if not candidates:
            return None

        return await self._link(
            record,
            batch_id,
            candidates[0],
            status=ReconciliationStatus.MATCHED,
            rule_name=rule.name,
            reason=EXACT_MATCH_REASON,
            confidence=1.0,
        )

    async def _apply_partial_match(
        self, record: Record, batch_id: int, rule: Rule
    ) -> Optional[MatchResult]:
        """Same reference number in another batch, amount within tolerance.

        The variance is relative to this record's own amount, so a zero
        amount never qualifies. The first candidate that is within tolerance
        and still free wins.
        """
        amount = _as_decimal(record.amount)
        if amount == 0:
            return None

        tolerance = rule.match_criteria.amount_variance
        if tolerance is None:
            tolerance = self.config.partial_match_variance
        max_variance = Decimal(str(tolerance))

        candidates = await self.records.find_by_reference_number(
            record.reference_number,
            exclude_batch_id=batch_id,
            limit=self.config.candidate_limit,
        )
        for candidate in candidates:
            difference = abs(_as_decimal(candidate.amount) - amount)
            variance = difference / abs(amount)
            if variance > max_variance:
                continue

            result = await self._link(
                record,
                batch_id,
                candidate,
                status=ReconciliationStatus.PARTIAL,
                rule_name=rule.name,
                reason=(
                    "Partial match on reference number with amount variance "
                    f"of {variance * 100:.2f}%"
                ),
                confidence=float(1 - variance),
                amount_variance=float(difference),
            )
            if result is not None:
                return result

        return None

    async def _apply_duplicate_detection(
        self, record: Record, batch_id: int, rule: Rule
    ) -> Optional[MatchResult]:
        """Other records of the same batch with this transaction id.

        Only the record being evaluated is marked; its siblings are decided
        on their own turn.
        """
        siblings = await self.records.find_duplicates_in_batch(
            record.transaction_id,
            batch_id,
            exclude_record_id=record.id,
            limit=self.config.duplicate_scan_limit,
        )
        if not siblings:
            return None

        return await self.results.create_result(
            record_id=record.id,
            batch_id=batch_id,
            status=ReconciliationStatus.DUPLICATE,
            rule_name=rule.name,
            reason=(
                f"Duplicate transaction ID found {len(siblings)} time(s) "
                "in the same upload"
            ),
            confidence=1.0,
        )

    async def _link(
        self,
        record: Record,
        batch_id: int,
        counterpart: Record,
        status: ReconciliationStatus,
        rule_name: str,
        reason: str,
        confidence: float,
        amount_variance: float = 0.0,
    ) -> Optional[MatchResult]:
        """
        Write both sides of a match, or nothing.

        Returns:
            The record's outcome, or None if the counterpart is already taken
        """
        counterpart_result = await self.results.get_by_record_id(counterpart.id)
        if not _is_claimable(counterpart_result):
            return None

        try:
            async with self.session.begin_nested():
                if counterpart_result is None:
                    await self.results.create_result(
                        record_id=counterpart.id,
                        batch_id=counterpart.batch_id,
                        status=status,
                        rule_name=rule_name,
                        reason=reason,
                        confidence=confidence,
                        matched_with_record_id=record.id,
                        amount_variance=amount_variance,
                    )
                else:
                    await self.results.relink(
                        counterpart_result,
                        status=status,
                        matched_with_record_id=record.id,
                        rule_name=rule_name,
                        reason=reason,
                        confidence=confidence,
                        amount_variance=amount_variance,
                    )
                    logger.info(
                        "reconciliation.retroactive_link",
                        record_id=counterpart.id,
                        batch_id=counterpart.batch_id,
                        linked_to=record.id,
                        status=status.value,
                    )

                return await self.results.create_result(
                    record_id=record.id,
                    batch_id=batch_id,
                    status=status,
                    rule_name=rule_name,
                    reason=reason,
                    confidence=confidence,
                    matched_with_record_id=counterpart.id,
                    amount_variance=amount_variance,
                )
        except ResultConflictError:
            # The savepoint rollback undid the relink; drop the refreshed copy
            if counterpart_result is not None:
                self.session.expire(counterpart_result)
            raise


async def reconcile_batch(
    session: AsyncSession,
    batch_id: int,
    config: ReconciliationConfig | None = None,
) -> ReconciliationStats:
    """
    Convenience function to reconcile one batch.

    Args:
        session: Database session
        batch_id: Batch to reconcile
        config: Engine configuration

    Returns:
        Outcome counts for the batch
    """
    engine = ReconciliationEngine(session, config)
    return await engine.reconcile_batch(batch_id)
