"""Immutable credential bundles, built once from settings and injected.

Components never read secrets from ``settings`` directly; they receive the
bundle they need.  A ``None`` bundle means the venue is unconfigured.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from config.settings import Settings


@dataclass(frozen=True)
class KalshiCredentials:
    key_id: str
    private_key_pem: str = field(repr=False)


@dataclass(frozen=True)
class BuilderCredentials:
    key: str
    secret: str = field(repr=False)
    passphrase: str = field(repr=False)


@dataclass(frozen=True)
class ClobApiCredentials:
    """Optional L2 user credentials for the Polymarket CLOB."""

    api_key: str
    api_secret: str = field(repr=False)
    api_passphrase: str = field(repr=False)


@dataclass(frozen=True)
class WalletCredentials:
    private_key: str = field(repr=False)


@dataclass(frozen=True)
class AuthConfig:
    """All credentials known to the process.

    Parameters
    ----------
    kalshi:
        Kalshi API key id and RSA private key.
    builder:
        Builder-attribution HMAC credentials (local signing mode).
    builder_signing_url:
        Remote signing service URL (remote signing mode).
    clob_api:
        Polymarket L2 user API credentials.
    wallet:
        EOA private key that controls the proxy wallet.
    """

    kalshi: KalshiCredentials | None = None
    builder: BuilderCredentials | None = None
    builder_signing_url: str | None = None
    clob_api: ClobApiCredentials | None = None
    wallet: WalletCredentials | None = None

    @classmethod
    def from_settings(cls, s: Settings) -> AuthConfig:
        kalshi = None
        if s.KALSHI_API_KEY_ID and s.KALSHI_PRIVATE_KEY:
            kalshi = KalshiCredentials(
                key_id=s.KALSHI_API_KEY_ID,
                private_key_pem=s.KALSHI_PRIVATE_KEY,
            )

        builder = None
        if s.POLY_BUILDER_API_KEY and s.POLY_BUILDER_SECRET and s.POLY_BUILDER_PASSPHRASE:
            builder = BuilderCredentials(
                key=s.POLY_BUILDER_API_KEY,
                secret=s.POLY_BUILDER_SECRET,
                passphrase=s.POLY_BUILDER_PASSPHRASE,
            )

        clob_api = None
        if s.POLYMARKET_API_KEY and s.POLYMARKET_SECRET and s.POLYMARKET_PASSPHRASE:
            clob_api = ClobApiCredentials(
                api_key=s.POLYMARKET_API_KEY,
                api_secret=s.POLYMARKET_SECRET,
                api_passphrase=s.POLYMARKET_PASSPHRASE,
            )

        wallet = None
        if s.POLYMARKET_PRIVATE_KEY:
            wallet = WalletCredentials(private_key=s.POLYMARKET_PRIVATE_KEY)

        return cls(
            kalshi=kalshi,
            builder=builder,
            builder_signing_url=s.BUILDER_SIGNING_SERVER_URL or None,
            clob_api=clob_api,
            wallet=wallet,
        )

    @property
    def builder_configured(self) -> bool:
        return self.builder is not None or bool(self.builder_signing_url)

    def venue_status(self) -> dict[str, bool]:
        """Which venues can actually trade with the loaded credentials."""
        return {
            "kalshi": self.kalshi is not None,
            "polymarket": self.wallet is not None and self.builder_configured,
        }
