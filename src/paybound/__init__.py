"""
Paybound — Budget policy gateway for AI agent payments.

Sits in front of an x402 facilitator:
Agent requests a payment → policy decides → ledger records → facilitator verifies.
"""

__version__ = "0.1.0"

from .errors import (
    LedgerError,
    PayboundError,
    PolicyLoadError,
    PolicyViolationError,
    UpstreamError,
    UpstreamTimeoutError,
)
from .policy import (
    Budget,
    OnViolation,
    Policy,
    PolicyEvaluation,
    Transaction,
    Verdict,
    make_default_policy,
)
from .evaluator import PolicyEvaluator
from .ledger import Ledger, LedgerRecord, LedgerStats
from .loader import load_policies
from .facilitator import FacilitatorClient
from .gateway import GatewayResponse, PaymentGateway
from .client import PayboundClient

__all__ = [
    "PayboundError", "LedgerError", "PolicyLoadError", "PolicyViolationError",
    "UpstreamError", "UpstreamTimeoutError",
    "Budget", "OnViolation", "Policy", "PolicyEvaluation", "Transaction", "Verdict",
    "make_default_policy", "PolicyEvaluator",
    "Ledger", "LedgerRecord", "LedgerStats", "load_policies",
    "FacilitatorClient", "GatewayResponse", "PaymentGateway", "PayboundClient",
]
