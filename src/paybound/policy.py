"""
Policy and transaction model.

A Policy binds an agent to a budget (per-transaction, rolling hourly,
rolling daily) and a resource allowlist. The evaluator turns a proposed
Transaction into a PolicyEvaluation against exactly one Policy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Callable, Mapping


WILDCARD_RESOURCE = "*"
DEFAULT_POLICY_NAME = "default"
DEFAULT_CURRENCY = "USDC"
DEFAULT_SCHEME = "exact"


class OnViolation(str, Enum):
    BLOCK = "block"
    ALERT = "alert"
    BLOCK_AND_ALERT = "block_and_alert"

    @property
    def alerts(self) -> bool:
        return self in (OnViolation.ALERT, OnViolation.BLOCK_AND_ALERT)


class Verdict(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class Budget:
    """Spend ceilings, each enforced independently."""

    max_per_transaction: float
    max_per_hour: float
    max_per_day: float


@dataclass(frozen=True)
class Policy:
    """Spending policy for one agent."""

    name: str
    budget: Budget
    allowed_resources: tuple[str, ...] = (WILDCARD_RESOURCE,)
    on_violation: OnViolation = OnViolation.BLOCK_AND_ALERT

    def allows_resource(self, resource_url: str) -> bool:
        # Plain case-sensitive prefix match; URLs are not normalized.
        return any(
            prefix == WILDCARD_RESOURCE or resource_url.startswith(prefix)
            for prefix in self.allowed_resources
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "budget": {
                "max_per_transaction": self.budget.max_per_transaction,
                "max_per_hour": self.budget.max_per_hour,
                "max_per_day": self.budget.max_per_day,
            },
            "allowed_resources": list(self.allowed_resources),
            "on_violation": self.on_violation.value,
        }


def make_default_policy() -> Policy:
    """Restrictive fallback for agents without a policy: $1/tx, $10/hr, $50/day."""
    return Policy(
        name=DEFAULT_POLICY_NAME,
        budget=Budget(max_per_transaction=1, max_per_hour=10, max_per_day=50),
        allowed_resources=(WILDCARD_RESOURCE,),
        on_violation=OnViolation.BLOCK_AND_ALERT,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Transaction:
    """A payment an agent is attempting."""

    agent_id: str
    resource_url: str
    amount: float
    currency: str = DEFAULT_CURRENCY
    scheme: str = DEFAULT_SCHEME
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class PolicyEvaluation:
    """Outcome of evaluating one transaction."""

    result: Verdict
    reason: str
    matched_policy: str
    on_violation: OnViolation = OnViolation.BLOCK_AND_ALERT

    @property
    def allowed(self) -> bool:
        return self.result is Verdict.ALLOW

    def to_dict(self) -> dict:
        return {
            "result": self.result.value,
            "reason": self.reason,
            "matchedPolicy": self.matched_policy,
        }


# Agent id -> Policy. Read-only once loaded.
PolicyTable = Mapping[str, Policy]

# (agent_id, window_ms) -> approved spend inside the trailing window.
SpendInWindow = Callable[[str, int], float]


def freeze_policies(policies: Mapping[str, Policy]) -> PolicyTable:
    """Return an immutable view so concurrent evaluations can share it."""
    return MappingProxyType(dict(policies))
