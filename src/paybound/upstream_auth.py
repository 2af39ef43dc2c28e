"""
CDP facilitator authentication for upstream calls.

When Paybound fronts the Coinbase CDP facilitator and the calling agent
did not bring its own Authorization header, each verify/settle request is
signed with a short-lived CDP API key JWT.
"""

from __future__ import annotations

import base64
import binascii
import os
import secrets
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, urlparse

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from x402.http import AuthHeaders, AuthProvider, FacilitatorConfig

from . import __version__
from .errors import ConfigError

CDP_FACILITATOR_URL = "https://api.cdp.coinbase.com/platform/v2/x402"
CDP_API_AUDIENCE = ["cdp_service"]

CDP_API_KEY_ID_ENV = "CDP_API_KEY_ID"
CDP_API_KEY_SECRET_ENV = "CDP_API_KEY_SECRET"

DEFAULT_TOKEN_TTL_SECONDS = 120


@dataclass(frozen=True)
class CDPCredentials:
    api_key_id: str
    api_key_secret: str


def load_cdp_credentials(
    api_key_id: Optional[str] = None,
    api_key_secret: Optional[str] = None,
) -> CDPCredentials:
    """Explicit arguments first, then CDP_API_KEY_ID / CDP_API_KEY_SECRET."""
    key_id = api_key_id or os.getenv(CDP_API_KEY_ID_ENV)
    key_secret = api_key_secret or os.getenv(CDP_API_KEY_SECRET_ENV)
    if not key_id or not key_secret:
        raise ConfigError(
            "CDP API credentials not found. Set CDP_API_KEY_ID and CDP_API_KEY_SECRET "
            "to use PAYBOUND_UPSTREAM_AUTH=cdp."
        )
    return CDPCredentials(api_key_id=key_id, api_key_secret=key_secret)


class CDPAuthProvider(AuthProvider):
    """Signs one JWT per facilitator endpoint, scoped to that method and path."""

    def __init__(
        self,
        credentials: CDPCredentials,
        facilitator_url: str = CDP_FACILITATOR_URL,
        token_ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
    ):
        parsed = urlparse(facilitator_url)
        if not parsed.scheme or not parsed.netloc:
            raise ConfigError(f"Invalid facilitator URL: {facilitator_url}")

        self._key_id = credentials.api_key_id
        self._private_key, self._algorithm = parse_cdp_private_key(credentials.api_key_secret)
        self._host = parsed.netloc
        self._base_path = parsed.path.rstrip("/")
        self._ttl = token_ttl_seconds

    def get_auth_headers(self) -> AuthHeaders:
        correlation = _correlation_context()
        endpoints = {
            "verify": ("POST", "verify"),
            "settle": ("POST", "settle"),
            "supported": ("GET", "supported"),
        }
        headers = {
            name: {
                "Correlation-Context": correlation,
                "Authorization": self._bearer(method, f"{self._base_path}/{suffix}"),
            }
            for name, (method, suffix) in endpoints.items()
        }
        return AuthHeaders(**headers)

    def _bearer(self, method: str, path: str) -> str:
        now = int(time.time())
        claims = {
            "sub": self._key_id,
            "iss": "cdp",
            "aud": CDP_API_AUDIENCE,
            "nbf": now,
            "exp": now + self._ttl,
            "uris": [f"{method} {self._host}{path}"],
        }
        token = jwt.encode(
            claims,
            self._private_key,
            algorithm=self._algorithm,
            headers={"kid": self._key_id, "typ": "JWT", "nonce": secrets.token_hex(8)},
        )
        return f"Bearer {token}"


def create_cdp_facilitator_config(
    facilitator_url: str = CDP_FACILITATOR_URL,
    api_key_id: Optional[str] = None,
    api_key_secret: Optional[str] = None,
) -> FacilitatorConfig:
    credentials = load_cdp_credentials(api_key_id, api_key_secret)
    return FacilitatorConfig(
        url=facilitator_url,
        auth_provider=CDPAuthProvider(credentials, facilitator_url=facilitator_url),
    )


def parse_cdp_private_key(
    key_data: str,
) -> tuple[ec.EllipticCurvePrivateKey | ed25519.Ed25519PrivateKey, str]:
    """Accept a PEM EC key (ES256) or a base64 64-byte Ed25519 key (EdDSA)."""
    # Env files often carry literal '\n' sequences inside the PEM.
    key_data = key_data.replace("\\n", "\n")

    if "-----BEGIN" in key_data:
        try:
            key = serialization.load_pem_private_key(key_data.encode("utf-8"), password=None)
        except ValueError as e:
            raise ConfigError(f"CDP API key secret is not a valid PEM key: {e}") from e
        if not isinstance(key, ec.EllipticCurvePrivateKey):
            raise ConfigError("CDP API key secret PEM must contain an EC private key")
        return key, "ES256"

    try:
        decoded = base64.b64decode(key_data, validate=True)
    except binascii.Error as e:
        raise ConfigError("CDP API key secret must be a PEM EC key or base64 Ed25519 key") from e
    if len(decoded) != 64:
        raise ConfigError("CDP Ed25519 key secret must decode to 64 bytes")
    return ed25519.Ed25519PrivateKey.from_private_bytes(decoded[:32]), "EdDSA"


def _correlation_context() -> str:
    data = {
        "sdk_version": __version__,
        "sdk_language": "python",
        "source": "paybound",
        "source_version": __version__,
    }
    return ",".join(f"{k}={quote(str(v), safe='')}" for k, v in data.items())
