"""
Upstream x402 facilitator client.

Forwards verify/settle payloads with a bounded wait. Any transport
failure, timeout, or non-JSON answer becomes an UpstreamError; HTTP error
statuses are not failures and are passed back to the caller verbatim.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .errors import UpstreamError, UpstreamTimeoutError


logger = logging.getLogger(__name__)

DEFAULT_FACILITATOR_URL = "https://x402.org/facilitator"
DEFAULT_TIMEOUT_SECONDS = 30.0

VERIFY = "verify"
SETTLE = "settle"


@dataclass
class UpstreamResponse:
    status_code: int
    body: Any


class FacilitatorClient:
    """POSTs payloads to {base_url}/verify and {base_url}/settle."""

    def __init__(
        self,
        base_url: str = DEFAULT_FACILITATOR_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        auth_provider: Any = None,
        http: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.auth_provider = auth_provider
        self._http = http or httpx.Client(timeout=timeout_seconds)

    @classmethod
    def from_facilitator_config(
        cls,
        config: Any,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> "FacilitatorClient":
        """Build from an x402 FacilitatorConfig (url + optional auth_provider)."""
        return cls(
            base_url=config.url,
            timeout_seconds=timeout_seconds,
            auth_provider=getattr(config, "auth_provider", None),
        )

    def verify(self, payload: Any, authorization: Optional[str] = None) -> UpstreamResponse:
        return self._post(VERIFY, payload, authorization)

    def settle(self, payload: Any, authorization: Optional[str] = None) -> UpstreamResponse:
        return self._post(SETTLE, payload, authorization)

    def _headers(self, endpoint: str, authorization: Optional[str]) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if authorization:
            # The caller's credential always wins over our own.
            headers["Authorization"] = authorization
        elif self.auth_provider is not None:
            auth_headers = self.auth_provider.get_auth_headers()
            headers.update(getattr(auth_headers, endpoint, None) or {})
        return headers

    def _post(self, endpoint: str, payload: Any, authorization: Optional[str]) -> UpstreamResponse:
        url = f"{self.base_url}/{endpoint}"
        try:
            response = self._http.post(
                url,
                json=payload,
                headers=self._headers(endpoint, authorization),
                timeout=self.timeout_seconds,
            )
        except httpx.TimeoutException as e:
            logger.warning("Upstream %s timed out after %.1fs", url, self.timeout_seconds)
            raise UpstreamTimeoutError(
                f"Upstream {endpoint} timed out after {self.timeout_seconds}s"
            ) from e
        except httpx.HTTPError as e:
            logger.warning("Upstream %s failed: %s", url, e)
            raise UpstreamError(f"Upstream {endpoint} failed: {type(e).__name__}: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            logger.warning(
                "Upstream %s returned non-JSON body (status %d)", url, response.status_code
            )
            raise UpstreamError(
                f"Upstream {endpoint} returned a non-JSON response "
                f"({response.status_code}): {response.text[:200]}"
            ) from e

        return UpstreamResponse(status_code=response.status_code, body=body)

    def close(self):
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
