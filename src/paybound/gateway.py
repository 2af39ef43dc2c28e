"""
Payment gateway orchestration.

Verify flow:
1. Build a Transaction from the inbound x402 payload
2. Evaluate it against the agent's policy and rolling ledger spend
3. Record the verdict (allowed or denied) before responding
4. Denied: reject immediately, upstream is never contacted
5. Allowed: forward to the facilitator and relay its answer verbatim

Settle calls skip evaluation and are forwarded as-is, trusting the
earlier verify.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from . import __version__
from .config import UPSTREAM_AUTH_CDP, GatewayConfig
from .errors import PolicyLoadError, UpstreamError
from .evaluator import PolicyEvaluator
from .facilitator import SETTLE, VERIFY, FacilitatorClient
from .ledger import Ledger, LedgerRecord
from .loader import load_policies
from .policy import (
    DEFAULT_CURRENCY,
    DEFAULT_SCHEME,
    PolicyEvaluation,
    PolicyTable,
    Transaction,
    freeze_policies,
)


logger = logging.getLogger(__name__)

AGENT_HEADER = "X-Paybound-Agent"
UNKNOWN_AGENT = "unknown"

# Fixed lock pool; each agent id hashes onto one stripe.
LOCK_STRIPES = 64

AlertHook = Callable[[Transaction, PolicyEvaluation], None]


@dataclass
class GatewayResponse:
    """What to send back to the caller."""

    status_code: int
    body: Any
    evaluation: Optional[PolicyEvaluation] = None
    record: Optional[LedgerRecord] = None


def parse_amount(value: Any) -> float:
    """Numeric or numeric-string amount; anything unparseable counts as 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if not isinstance(value, (int, float, str)):
        return 0.0
    try:
        amount = float(value.strip() if isinstance(value, str) else value)
    except ValueError:
        return 0.0
    except OverflowError:
        # Integers too large for a float; keep them over every limit.
        return math.inf
    return 0.0 if math.isnan(amount) else amount


def build_transaction(payload: Mapping[str, Any], agent_id: str) -> Transaction:
    """Extract the spend from a verify payload.

    Top-level resourceUrl/resource and amount/maxAmountRequired are read
    first; a nested x402 paymentRequirements object fills in what is missing.
    """
    requirements = payload.get("paymentRequirements")
    if not isinstance(requirements, Mapping):
        requirements = {}

    resource = _first_present(payload, "resourceUrl", "resource")
    if resource is None:
        resource = _first_present(requirements, "resource")
    amount = _first_present(payload, "amount", "maxAmountRequired")
    if amount is None:
        amount = _first_present(requirements, "maxAmountRequired", "amount")
    currency = _first_present(payload, "currency")
    scheme = _first_present(payload, "scheme")
    if scheme is None:
        scheme = _first_present(requirements, "scheme")

    return Transaction(
        agent_id=agent_id,
        resource_url="" if resource is None else str(resource),
        amount=parse_amount(amount),
        currency=DEFAULT_CURRENCY if currency is None else str(currency),
        scheme=DEFAULT_SCHEME if scheme is None else str(scheme),
    )


def _first_present(source: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if source.get(key) is not None:
            return source[key]
    return None


class PaymentGateway:
    """Sequences evaluate -> record -> forward for each inbound call."""

    def __init__(
        self,
        ledger: Ledger,
        facilitator: FacilitatorClient,
        policies: Optional[Mapping] = None,
        evaluator: Optional[PolicyEvaluator] = None,
        on_alert: Optional[AlertHook] = None,
        policy_load_error: Optional[str] = None,
    ):
        self.ledger = ledger
        self.facilitator = facilitator
        self.policies: PolicyTable = freeze_policies(policies or {})
        self.evaluator = evaluator or PolicyEvaluator()
        self.on_alert = on_alert
        self.policy_load_error = policy_load_error
        self._agent_locks = tuple(threading.Lock() for _ in range(LOCK_STRIPES))

    @classmethod
    def from_config(cls, config: GatewayConfig) -> PaymentGateway:
        """Wire ledger, policies and upstream client from configuration.

        A broken policy file does not stop startup: the failure is logged
        and every agent falls back to the default policy.
        """
        policies: PolicyTable = freeze_policies({})
        load_error: Optional[str] = None
        if config.policy_file is not None:
            try:
                policies = load_policies(config.policy_file)
            except PolicyLoadError as e:
                load_error = str(e)
                logger.error(
                    "Failed to load policies (%s); enforcing the default policy for all agents",
                    e,
                )
        else:
            logger.info("No policy file configured; enforcing the default policy for all agents")

        if config.upstream_auth == UPSTREAM_AUTH_CDP:
            from .upstream_auth import create_cdp_facilitator_config

            facilitator = FacilitatorClient.from_facilitator_config(
                create_cdp_facilitator_config(facilitator_url=config.upstream_url),
                timeout_seconds=config.upstream_timeout_seconds,
            )
        else:
            facilitator = FacilitatorClient(
                base_url=config.upstream_url,
                timeout_seconds=config.upstream_timeout_seconds,
            )

        return cls(
            ledger=Ledger(config.ledger_path),
            facilitator=facilitator,
            policies=policies,
            policy_load_error=load_error,
        )

    def _agent_lock(self, agent_id: str) -> threading.Lock:
        return self._agent_locks[hash(agent_id) % len(self._agent_locks)]

    def verify(
        self,
        payload: Mapping[str, Any],
        agent_id: Optional[str] = None,
        authorization: Optional[str] = None,
    ) -> GatewayResponse:
        agent_id = agent_id or UNKNOWN_AGENT
        tx = build_transaction(payload, agent_id)

        # Window check and write happen under one per-agent lock so two
        # concurrent requests cannot both spend the same remaining budget.
        # LedgerError propagates: an unrecorded decision is never approved.
        with self._agent_lock(agent_id):
            evaluation = self.evaluator.evaluate(tx, self.policies, self.ledger.spend_in_window)
            record = self.ledger.record(LedgerRecord.from_evaluation(tx, evaluation))

        if not evaluation.allowed:
            if evaluation.on_violation.alerts:
                self._alert(tx, evaluation)
            return GatewayResponse(
                status_code=403,
                body={
                    "error": "policy_violation",
                    "reason": evaluation.reason,
                    "policy": evaluation.matched_policy,
                    "agentId": agent_id,
                },
                evaluation=evaluation,
                record=record,
            )

        return self._forward(VERIFY, payload, authorization, evaluation, record)

    def settle(
        self,
        payload: Mapping[str, Any],
        agent_id: Optional[str] = None,
        authorization: Optional[str] = None,
    ) -> GatewayResponse:
        agent_id = agent_id or UNKNOWN_AGENT
        tx = build_transaction(payload, agent_id)
        response = self._forward(SETTLE, payload, authorization)
        logger.info(
            "Proxied settle for agent %s (resource=%s, amount=%s) -> %d",
            agent_id,
            tx.resource_url or "-",
            tx.amount,
            response.status_code,
        )
        return response

    def _forward(
        self,
        endpoint: str,
        payload: Mapping[str, Any],
        authorization: Optional[str],
        evaluation: Optional[PolicyEvaluation] = None,
        record: Optional[LedgerRecord] = None,
    ) -> GatewayResponse:
        send = self.facilitator.verify if endpoint == VERIFY else self.facilitator.settle
        try:
            upstream = send(payload, authorization)
        except UpstreamError as e:
            return GatewayResponse(
                status_code=502,
                body={"error": "upstream_error", "message": str(e)},
                evaluation=evaluation,
                record=record,
            )
        return GatewayResponse(
            status_code=upstream.status_code,
            body=upstream.body,
            evaluation=evaluation,
            record=record,
        )

    def _alert(self, tx: Transaction, evaluation: PolicyEvaluation) -> None:
        logger.warning(
            "Policy alert: agent %s denied by policy %s: %s",
            tx.agent_id,
            evaluation.matched_policy,
            evaluation.reason,
        )
        if self.on_alert is None:
            return
        try:
            self.on_alert(tx, evaluation)
        except Exception:
            # The denial is already recorded; the caller still gets its 403.
            logger.exception("Alert hook failed for agent %s", tx.agent_id)

    def health(self) -> dict:
        stats = self.ledger.stats()
        body = {
            "status": "ok",
            "version": __version__,
            "policies": len(self.policies),
            "transactions": stats.count,
            "totalVolume": stats.total_volume,
            "agents": stats.agents,
        }
        if self.policy_load_error:
            body["policyLoadError"] = self.policy_load_error
        return body

    def close(self) -> None:
        self.facilitator.close()
        self.ledger.close()
