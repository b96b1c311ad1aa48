"""Pydantic BaseSettings — all monetary values as Decimal, never float."""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration loaded from env / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ─────────────────────────────────────────────
    APP_ENV: Literal["dev", "paper", "prod"] = "dev"
    APP_NAME: str = "predmkt-core"
    LOG_LEVEL: str = "INFO"

    # ── Network / API ───────────────────────────────────────────
    KALSHI_API_URL: str = "https://trading-api.kalshi.com/trade-api/v2"
    POLY_CLOB_URL: str = "https://clob.polymarket.com"
    POLY_RELAYER_URL: str = "https://relayer-v2.polymarket.com"
    POLYGON_RPC_URL: str = "https://polygon-rpc.com"
    POLYGON_CHAIN_ID: int = 137
    # Empty -> builder headers are signed locally with POLY_BUILDER_SECRET
    BUILDER_SIGNING_SERVER_URL: str = ""
    HTTP_TIMEOUT_SECONDS: Decimal = Field(default=Decimal("10"))

    # ── Credentials (never commit real values) ──────────────────
    KALSHI_API_KEY_ID: str = ""
    KALSHI_PRIVATE_KEY: str = ""
    POLY_BUILDER_API_KEY: str = ""
    POLY_BUILDER_SECRET: str = ""
    POLY_BUILDER_PASSPHRASE: str = ""
    POLYMARKET_API_KEY: str = ""
    POLYMARKET_SECRET: str = ""
    POLYMARKET_PASSPHRASE: str = ""
    POLYMARKET_PRIVATE_KEY: str = ""

    # ── Relay polling ───────────────────────────────────────────
    RELAY_POLL_INTERVAL_SECONDS: Decimal = Field(default=Decimal("2"))
    RELAY_DEPLOY_MAX_ATTEMPTS: int = 30
    RELAY_APPROVE_MAX_ATTEMPTS: int = 20
    RELAY_QUICK_WAIT_ATTEMPTS: int = 3

    # ── Trading limits (all Decimal) ────────────────────────────
    MIN_ORDER_AMOUNT_USD: Decimal = Field(default=Decimal("1"))
    MAX_ORDER_AMOUNT_USD: Decimal = Field(default=Decimal("100000"))
    ORDER_EXPIRATION_SECONDS: int = 86400

    # ── Builder signing server ──────────────────────────────────
    SIGNER_HOST: str = "127.0.0.1"
    SIGNER_PORT: int = 8088


settings = Settings()
