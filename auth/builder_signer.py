"""Builder-attribution HMAC signing — local secrets or a remote signing service.

Both modes produce the same four headers for the same
``(method, path, body, timestamp)``:

- ``POLY_BUILDER_API_KEY``
- ``POLY_BUILDER_PASSPHRASE``
- ``POLY_BUILDER_SIGNATURE``  (urlsafe-b64 HMAC-SHA256)
- ``POLY_BUILDER_TIMESTAMP``  (unix seconds)

The mode is chosen once, at construction (``build_builder_signer``).
"""

from __future__ import annotations

import base64
import binascii
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog
from py_clob_client.signing.hmac import build_hmac_signature

from config.credentials import AuthConfig, BuilderCredentials
from core.errors import ConfigurationError, SignatureError, SigningServiceUnavailableError

logger = structlog.get_logger("auth.builder_signer")

HEADER_API_KEY = "POLY_BUILDER_API_KEY"
HEADER_PASSPHRASE = "POLY_BUILDER_PASSPHRASE"
HEADER_SIGNATURE = "POLY_BUILDER_SIGNATURE"
HEADER_TIMESTAMP = "POLY_BUILDER_TIMESTAMP"

BUILDER_HEADERS = (HEADER_API_KEY, HEADER_PASSPHRASE, HEADER_SIGNATURE, HEADER_TIMESTAMP)


class BuilderSigner(ABC):
    """Produces builder-attribution headers for one outgoing request."""

    @abstractmethod
    async def headers(
        self,
        method: str,
        path: str,
        body: str = "",
        timestamp: int | None = None,
    ) -> dict[str, str]:
        ...

    async def close(self) -> None:
        """Release transport resources, if any."""


class LocalBuilderSigner(BuilderSigner):
    """HMAC signer holding the builder secret in-process.

    Raises
    ------
    ConfigurationError
        If a credential is missing or the secret is not urlsafe base64.
    """

    def __init__(self, credentials: BuilderCredentials | None) -> None:
        if credentials is None or not (credentials.key and credentials.secret and credentials.passphrase):
            raise ConfigurationError("Builder credentials not configured")
        try:
            base64.urlsafe_b64decode(credentials.secret)
        except (binascii.Error, ValueError) as exc:
            raise ConfigurationError("Builder secret is not valid base64") from exc
        self._creds = credentials

    def sign(
        self,
        method: str,
        path: str,
        body: str = "",
        timestamp: int | None = None,
    ) -> dict[str, str]:
        """Synchronous header computation (used by the signing server)."""
        if not method or not path:
            raise SignatureError("method and path are required")
        ts = str(timestamp if timestamp is not None else int(time.time()))
        signature = build_hmac_signature(
            self._creds.secret,
            ts,
            method.upper(),
            path,
            body or None,
        )
        return {
            HEADER_API_KEY: self._creds.key,
            HEADER_PASSPHRASE: self._creds.passphrase,
            HEADER_SIGNATURE: signature,
            HEADER_TIMESTAMP: ts,
        }

    async def headers(
        self,
        method: str,
        path: str,
        body: str = "",
        timestamp: int | None = None,
    ) -> dict[str, str]:
        return self.sign(method, path, body, timestamp)


class RemoteBuilderSigner(BuilderSigner):
    """Delegates signing to a trusted service exposing ``POST /sign``.

    Parameters
    ----------
    url:
        Full URL of the signing endpoint.
    client:
        Optional shared ``httpx.AsyncClient``; one is created lazily
        otherwise and closed by ``close()``.
    timeout:
        Request timeout in seconds.
    """

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        if not url:
            raise ConfigurationError("Builder signing server URL not configured")
        self._url = url
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self._client

    async def headers(
        self,
        method: str,
        path: str,
        body: str = "",
        timestamp: int | None = None,
    ) -> dict[str, str]:
        if not method or not path:
            raise SignatureError("method and path are required")
        payload: dict[str, Any] = {"method": method.upper(), "path": path, "body": body}
        if timestamp is not None:
            payload["timestamp"] = timestamp

        try:
            resp = await self._http().post(self._url, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("builder_signer.remote_unreachable", url=self._url, error=str(exc))
            raise SigningServiceUnavailableError(f"Signing service unreachable: {exc}") from exc

        try:
            data = resp.json()
        except ValueError as exc:
            raise SigningServiceUnavailableError(
                f"Signing service returned non-JSON (HTTP {resp.status_code})"
            ) from exc
        if not isinstance(data, dict):
            raise SigningServiceUnavailableError(
                f"Signing service returned a non-object body (HTTP {resp.status_code})"
            )

        if resp.status_code == 503:
            raise ConfigurationError(data.get("error") or "Builder credentials not configured")
        if resp.status_code >= 400 or not data.get("success"):
            raise SignatureError(data.get("error") or f"Signing failed (HTTP {resp.status_code})")

        headers = data.get("headers") or {}
        if not isinstance(headers, dict):
            raise SignatureError("Signing service returned malformed headers")
        missing = [h for h in BUILDER_HEADERS if h not in headers]
        if missing:
            raise SignatureError(f"Signing service response missing headers: {missing}")
        return {h: str(headers[h]) for h in BUILDER_HEADERS}

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def build_builder_signer(auth: AuthConfig, client: httpx.AsyncClient | None = None) -> BuilderSigner:
    """Pick the signing mode from configuration.

    Local secrets win over a remote URL.  Neither configured raises
    ``ConfigurationError``.
    """
    if auth.builder is not None:
        logger.info("builder_signer.mode", mode="local")
        return LocalBuilderSigner(auth.builder)
    if auth.builder_signing_url:
        logger.info("builder_signer.mode", mode="remote", url=auth.builder_signing_url)
        return RemoteBuilderSigner(auth.builder_signing_url, client=client)
    raise ConfigurationError("Builder signing is not configured (no secret and no signing URL)")
