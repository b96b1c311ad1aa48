"""KalshiRequestSigner — RSA request authentication for the Kalshi REST API.

Every request is signed over ``timestamp_ms + METHOD + path`` (query string
stripped).  The venue requires RSA-PSS with SHA-256, MGF1(SHA-256) and a
salt as long as the digest; PKCS#1 v1.5 is kept as a selectable legacy
scheme for older key registrations.
"""

from __future__ import annotations

import base64
import time
from enum import Enum

import structlog
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from config.credentials import KalshiCredentials
from core.errors import ConfigurationError, SignatureError

logger = structlog.get_logger("auth.request_signer")

HEADER_KEY = "KALSHI-ACCESS-KEY"
HEADER_SIGNATURE = "KALSHI-ACCESS-SIGNATURE"
HEADER_TIMESTAMP = "KALSHI-ACCESS-TIMESTAMP"


class RsaScheme(str, Enum):
    PSS = "pss"
    PKCS1V15 = "pkcs1v15"


def normalize_pem(raw: str) -> bytes:
    """Undo the ``\\n`` escaping used when a PEM is stored in an env var."""
    return raw.strip().strip('"').replace("\\n", "\n").encode()


def canonical_message(timestamp_ms: int | str, method: str, path: str) -> str:
    """Bytes-to-sign for a request.  Deterministic; query string ignored."""
    return f"{timestamp_ms}{method.upper()}{path.split('?', 1)[0]}"


class KalshiRequestSigner:
    """Produce Kalshi authentication headers.

    Parameters
    ----------
    credentials:
        API key id and PEM-encoded RSA private key.
    scheme:
        ``RsaScheme.PSS`` (venue default) or ``RsaScheme.PKCS1V15``.

    Raises
    ------
    ConfigurationError
        If the key id or key is missing, the PEM does not parse, or the key
        is not RSA.  Raised at construction so no request is ever sent.
    """

    def __init__(
        self,
        credentials: KalshiCredentials | None,
        scheme: RsaScheme = RsaScheme.PSS,
    ) -> None:
        if credentials is None or not credentials.key_id or not credentials.private_key_pem:
            raise ConfigurationError("Kalshi API credentials are not configured", venue="kalshi")

        try:
            key = serialization.load_pem_private_key(
                normalize_pem(credentials.private_key_pem),
                password=None,
            )
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise ConfigurationError(f"Kalshi private key is malformed: {exc}", venue="kalshi") from exc

        if not isinstance(key, rsa.RSAPrivateKey):
            raise ConfigurationError("Kalshi private key must be an RSA key", venue="kalshi")

        self._key_id = credentials.key_id
        self._key = key
        self._scheme = scheme

    @property
    def key_id(self) -> str:
        return self._key_id

    def _padding(self) -> padding.AsymmetricPadding:
        if self._scheme is RsaScheme.PSS:
            return padding.PSS(
                mgf=padding.MGF1(hashes.SHA256()),
                salt_length=padding.PSS.DIGEST_LENGTH,
            )
        return padding.PKCS1v15()

    def sign(self, timestamp_ms: int | str, method: str, path: str) -> str:
        """Base64 RSA signature over the canonical message."""
        if not method or not path:
            raise SignatureError("method and path are required to sign a request")
        message = canonical_message(timestamp_ms, method, path).encode()
        signature = self._key.sign(message, self._padding(), hashes.SHA256())
        return base64.b64encode(signature).decode()

    def verify(self, signature_b64: str, timestamp_ms: int | str, method: str, path: str) -> bool:
        """Check *signature_b64* against the public half of the key."""
        message = canonical_message(timestamp_ms, method, path).encode()
        try:
            self._key.public_key().verify(
                base64.b64decode(signature_b64),
                message,
                self._padding(),
                hashes.SHA256(),
            )
        except (InvalidSignature, ValueError):
            return False
        return True

    def auth_headers(
        self,
        method: str,
        path: str,
        timestamp_ms: int | None = None,
    ) -> dict[str, str]:
        """Headers for one request.

        The same timestamp string is signed and sent in
        ``KALSHI-ACCESS-TIMESTAMP``.
        """
        ts = str(timestamp_ms if timestamp_ms is not None else int(time.time() * 1000))
        signature = self.sign(ts, method, path)
        logger.debug("request_signer.signed", method=method.upper(), path=path.split("?", 1)[0])
        return {
            HEADER_KEY: self._key_id,
            HEADER_SIGNATURE: signature,
            HEADER_TIMESTAMP: ts,
        }
