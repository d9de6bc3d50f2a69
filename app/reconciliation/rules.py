"""Registry of the rules the reconciliation engine applies, in priority order.

Built-in rules
--------------
1. EXACT_MATCH          same transaction id AND amount, different batch
2. PARTIAL_MATCH        same reference number, different batch, amount within
                        the configured relative variance (default 2%)
3. DUPLICATE_DETECTION  same transaction id, same batch, another record

The registry is an immutable value built once from configuration and handed
to the engine. Enabling or disabling a rule is a configuration change, which
keeps every run reproducible from its configuration alone.
"""

from __future__ import annotations

from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

EXACT_MATCH = "EXACT_MATCH"
PARTIAL_MATCH = "PARTIAL_MATCH"
DUPLICATE_DETECTION = "DUPLICATE_DETECTION"

# rule_name given to outcomes no rule produced
UNMATCHED_RULE = "UNMATCHED"


class MatchCriteria(BaseModel):
    """Fields a rule compares, plus its amount tolerance if it has one."""

    model_config = ConfigDict(frozen=True)

    fields: tuple[str, ...]
    amount_variance: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class Rule(BaseModel):
    """A named, prioritized matching strategy."""

    model_config = ConfigDict(frozen=True)

    name: str
    priority: int = Field(..., ge=1, description="Lower runs first")
    enabled: bool = True
    match_criteria: MatchCriteria


def builtin_rules(partial_match_variance: float = 0.02) -> tuple[Rule, ...]:
    return (
        Rule(
            name=EXACT_MATCH,
            priority=1,
            match_criteria=MatchCriteria(fields=("transaction_id", "amount")),
        ),
        Rule(
            name=PARTIAL_MATCH,
            priority=2,
            match_criteria=MatchCriteria(
                fields=("reference_number",),
                amount_variance=partial_match_variance,
            ),
        ),
        Rule(
            name=DUPLICATE_DETECTION,
            priority=3,
            match_criteria=MatchCriteria(fields=("transaction_id",)),
        ),
    )


class RuleRegistry:
    """Ordered, read-only lookup over a fixed rule set."""

    def __init__(self, rules: Iterable[Rule]):
        self._rules = tuple(rules)
        names = [rule.name for rule in self._rules]
        if len(names) != len(set(names)):
            raise ValueError(f"Rule names must be unique: {names}")
        self._active = tuple(
            sorted((r for r in self._rules if r.enabled), key=lambda r: r.priority)
        )

    @classmethod
    def default(
        cls,
        partial_match_variance: float = 0.02,
        disabled: Iterable[str] = (),
    ) -> RuleRegistry:
        """
        Build the registry of built-in rules.

        Args:
            partial_match_variance: Tolerance for PARTIAL_MATCH
            disabled: Names of rules to switch off

        Raises:
            ValueError: If a disabled name is not a built-in rule
        """
        rules = builtin_rules(partial_match_variance)
        disabled = set(disabled)
        unknown = disabled - {rule.name for rule in rules}
        if unknown:
            raise ValueError(f"Unknown reconciliation rules: {sorted(unknown)}")
        return cls(
            rule.model_copy(update={"enabled": False}) if rule.name in disabled else rule
            for rule in rules
        )

    def active_rules(self) -> tuple[Rule, ...]:
        """Enabled rules, lowest priority number first."""
        return self._active

    def rule_by_name(self, name: str) -> Optional[Rule]:
        """Get an enabled rule by name."""
        for rule in self._active:
            if rule.name == name:
                return rule
        return None

    def __len__(self) -> int:
        return len(self._active)
