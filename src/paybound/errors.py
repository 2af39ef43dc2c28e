"""
Paybound error types.

Each failure category maps to a distinct response so callers can tell a
policy denial from a broken ledger or an unreachable facilitator.
"""


class PayboundError(Exception):
    """Base error for all Paybound operations."""
    pass


class ConfigError(PayboundError):
    """An environment or CLI setting could not be parsed."""
    pass


# Policy errors
class PolicyLoadError(PayboundError):
    """Policy file is missing, unparseable, or fails validation."""
    def __init__(self, message: str, path: str | None = None):
        self.path = path
        prefix = f"{path}: " if path else ""
        super().__init__(f"{prefix}{message}")


class PolicyViolationError(PayboundError):
    """Gateway denied a payment (raised client-side by the SDK)."""
    def __init__(self, reason: str, policy: str, agent_id: str):
        self.reason = reason
        self.policy = policy
        self.agent_id = agent_id
        super().__init__(f"Policy violation: {reason} (policy: {policy})")


# Storage errors
class LedgerError(PayboundError):
    """Ledger read or write failed; the decision was not durably recorded."""
    pass


# Upstream errors
class UpstreamError(PayboundError):
    """Facilitator could not be reached or returned an unusable response."""
    pass


class UpstreamTimeoutError(UpstreamError):
    """Facilitator did not answer within the configured timeout."""
    pass
