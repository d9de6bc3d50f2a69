"""Configuration for the reconciliation engine."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from app.core.config import Settings


class ReconciliationConfig(BaseModel):
    """Engine settings. Frozen so a run cannot change them half way."""

    model_config = ConfigDict(frozen=True)

    chunk_size: int = Field(
        default=1000, ge=1, le=100_000, description="Records reconciled per chunk"
    )
    partial_match_variance: float = Field(
        default=0.02,
        ge=0.0,
        le=1.0,
        description="Relative amount tolerance for PARTIAL_MATCH (2%)",
    )
    candidate_limit: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Cross-batch candidates scanned per rule",
    )
    duplicate_scan_limit: int = Field(
        default=5, ge=1, le=1000, description="Same-batch siblings scanned"
    )
    disabled_rules: tuple[str, ...] = Field(
        default=(), description="Built-in rules switched off for this deployment"
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReconciliationConfig":
        return cls(
            chunk_size=settings.RECONCILIATION_CHUNK_SIZE,
            partial_match_variance=settings.PARTIAL_MATCH_VARIANCE,
            candidate_limit=settings.MATCH_CANDIDATE_LIMIT,
            duplicate_scan_limit=settings.DUPLICATE_SCAN_LIMIT,
            disabled_rules=tuple(settings.RECONCILIATION_DISABLED_RULES),
        )
