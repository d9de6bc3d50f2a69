"""Reconciliation engine module exports."""

from app.reconciliation.config import ReconciliationConfig

from app.reconciliation.models import (
    ReconciliationStats,
    ResultReview,
)

from app.reconciliation.rules import (
    DUPLICATE_DETECTION,
    EXACT_MATCH,
    PARTIAL_MATCH,
    UNMATCHED_RULE,
    MatchCriteria,
    Rule,
    RuleRegistry,
)

from app.reconciliation.engine import (
    ReconciliationEngine,
    reconcile_batch,
)

from app.reconciliation.stats import StatsAggregator
from app.reconciliation.review import ReviewService

__all__ = [
    # Config
    "ReconciliationConfig",
    # Models
    "ReconciliationStats",
    "ResultReview",
    # Rules
    "DUPLICATE_DETECTION",
    "EXACT_MATCH",
    "PARTIAL_MATCH",
    "UNMATCHED_RULE",
    "MatchCriteria",
    "Rule",
    "RuleRegistry",
    # Engine
    "ReconciliationEngine",
    "reconcile_batch",
    # Queries and review
    "StatsAggregator",
    "ReviewService",
]
