"""
Policy evaluation for proposed agent payments.

Rules run in a fixed order and the first failure wins:
1. Resolve the agent's policy (or the default policy)
2. Resource allowlist
3. Amount sanity, then the per-transaction limit
4. Rolling hourly spend
5. Rolling daily spend

Cheap checks come first; the window checks query the ledger.
"""

from __future__ import annotations

import math
from typing import Optional

from .money import amount_to_micros, format_amount, limit_to_micros
from .policy import (
    OnViolation,
    Policy,
    PolicyEvaluation,
    PolicyTable,
    SpendInWindow,
    Transaction,
    Verdict,
    make_default_policy,
)


HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

ALLOW_REASON = "transaction within policy limits"


class PolicyEvaluator:
    """Pure allow/deny decisions. Never writes to the ledger."""

    def __init__(self, default_policy: Optional[Policy] = None):
        self.default_policy = default_policy or make_default_policy()

    def resolve(self, agent_id: str, policies: PolicyTable) -> Policy:
        if agent_id in policies:
            return policies[agent_id]
        return self.default_policy

    def evaluate(
        self,
        tx: Transaction,
        policies: PolicyTable,
        spend_in_window: SpendInWindow,
    ) -> PolicyEvaluation:
        policy = self.resolve(tx.agent_id, policies)
        budget = policy.budget

        if not policy.allows_resource(tx.resource_url):
            return _deny(policy, f"resource {tx.resource_url} not allowed")

        if not math.isfinite(tx.amount) or tx.amount < 0:
            return _deny(policy, "amount must be a finite non-negative number")

        amount = amount_to_micros(tx.amount)
        max_per_tx = limit_to_micros(budget.max_per_transaction)
        if amount > max_per_tx:
            return _deny(
                policy,
                f"amount exceeds per-transaction limit "
                f"({format_amount(amount)} > {format_amount(max_per_tx)})",
            )

        hour_total = amount_to_micros(spend_in_window(tx.agent_id, HOUR_MS)) + amount
        max_per_hour = limit_to_micros(budget.max_per_hour)
        if hour_total > max_per_hour:
            return _deny(
                policy,
                f"hourly spend would exceed limit "
                f"({format_amount(hour_total)} > {format_amount(max_per_hour)})",
            )

        day_total = amount_to_micros(spend_in_window(tx.agent_id, DAY_MS)) + amount
        max_per_day = limit_to_micros(budget.max_per_day)
        if day_total > max_per_day:
            return _deny(
                policy,
                f"daily spend would exceed limit "
                f"({format_amount(day_total)} > {format_amount(max_per_day)})",
            )

        return PolicyEvaluation(
            result=Verdict.ALLOW,
            reason=ALLOW_REASON,
            matched_policy=policy.name,
            on_violation=policy.on_violation,
        )


def _deny(policy: Policy, reason: str) -> PolicyEvaluation:
    return PolicyEvaluation(
        result=Verdict.DENY,
        reason=reason,
        matched_policy=policy.name,
        on_violation=policy.on_violation,
    )
