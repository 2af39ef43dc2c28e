"""
Client SDK for agents that pay through a Paybound gateway.

Adds the agent identity header to every call and turns gateway
rejections into exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .errors import LedgerError, PayboundError, PolicyViolationError, UpstreamError
from .gateway import AGENT_HEADER
from .policy import DEFAULT_CURRENCY, DEFAULT_SCHEME


DEFAULT_PROXY_URL = "http://localhost:4020"


@dataclass
class VerifyResult:
    allowed: bool
    reason: str
    policy: str
    upstream_response: Any = None


class PayboundClient:
    """Talks to the gateway on behalf of one agent."""

    def __init__(
        self,
        agent_id: str,
        proxy: str = DEFAULT_PROXY_URL,
        timeout_seconds: float = 30.0,
        http: Optional[httpx.Client] = None,
    ):
        if not agent_id:
            raise ValueError("agent_id is required")
        self.agent_id = agent_id
        self.proxy_url = proxy.rstrip("/")
        self._http = http or httpx.Client(timeout=timeout_seconds)

    def fetch(self, url: str, method: str = "GET", **kwargs) -> httpx.Response:
        """Plain HTTP request tagged with this agent's identity."""
        headers = dict(kwargs.pop("headers", None) or {})
        headers[AGENT_HEADER] = self.agent_id
        return self._http.request(method, url, headers=headers, **kwargs)

    def verify(
        self,
        resource_url: str,
        amount: float | str,
        currency: str = DEFAULT_CURRENCY,
        scheme: str = DEFAULT_SCHEME,
        payload: Any = None,
    ) -> VerifyResult:
        """Submit a payment for verification.

        Raises PolicyViolationError when the gateway denies the spend,
        UpstreamError when the facilitator could not be reached, LedgerError
        when the decision could not be recorded, and PayboundError for any
        other gateway failure. Upstream 4xx rejections are returned as-is.
        """
        body: dict[str, Any] = {
            "resourceUrl": resource_url,
            "amount": str(amount),
            "currency": currency,
            "scheme": scheme,
        }
        if payload is not None:
            body["payload"] = payload

        response = self._http.post(
            f"{self.proxy_url}/verify",
            json=body,
            headers={AGENT_HEADER: self.agent_id},
        )
        data = _json_or_empty(response)

        if response.status_code == 403:
            raise PolicyViolationError(
                reason=data.get("reason", "unknown"),
                policy=data.get("policy", "unknown"),
                agent_id=self.agent_id,
            )
        if response.status_code == 502 and data.get("error") == "upstream_error":
            raise UpstreamError(data.get("message", "upstream facilitator unavailable"))
        if response.status_code == 500 and data.get("error") == "ledger_error":
            raise LedgerError(data.get("message", "gateway could not record the decision"))
        if response.status_code == 422 or response.status_code >= 500:
            # Gateway-side failure: the payment was not approved.
            raise PayboundError(
                f"Gateway verify failed ({response.status_code}): {response.text[:200]}"
            )

        return VerifyResult(
            allowed=True,
            reason="within policy limits",
            policy=data.get("matchedPolicy", "unknown"),
            upstream_response=data,
        )

    def health(self) -> dict:
        response = self._http.get(f"{self.proxy_url}/health")
        response.raise_for_status()
        return response.json()

    def get_transactions(
        self,
        since: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """This agent's ledger records, newest first."""
        params: dict[str, Any] = {"agentId": self.agent_id}
        if since is not None:
            params["since"] = since
        if limit is not None:
            params["limit"] = limit
        response = self._http.get(f"{self.proxy_url}/transactions", params=params)
        response.raise_for_status()
        return response.json()["transactions"]

    def close(self):
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
