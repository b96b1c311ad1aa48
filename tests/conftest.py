"""Shared fixtures: throwaway RSA keys, builder secrets and wallet keys."""

from __future__ import annotations

import base64

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from eth_account import Account

from config.credentials import (
    AuthConfig,
    BuilderCredentials,
    KalshiCredentials,
    WalletCredentials,
)

OWNER_KEY = "0x" + "4c" * 32
OTHER_KEY = "0x" + "8f" * 32


@pytest.fixture(scope="session")
def rsa_pem() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture
def kalshi_credentials(rsa_pem: str) -> KalshiCredentials:
    return KalshiCredentials(key_id="kalshi-key-id", private_key_pem=rsa_pem)


@pytest.fixture
def builder_credentials() -> BuilderCredentials:
    return BuilderCredentials(
        key="builder-key",
        secret=base64.urlsafe_b64encode(b"builder-secret-32-bytes-long!!!!").decode(),
        passphrase="builder-passphrase",
    )


@pytest.fixture
def wallet_credentials() -> WalletCredentials:
    return WalletCredentials(private_key=OWNER_KEY)


@pytest.fixture
def owner_address() -> str:
    return Account.from_key(OWNER_KEY).address


@pytest.fixture
def auth_config(
    kalshi_credentials: KalshiCredentials,
    builder_credentials: BuilderCredentials,
    wallet_credentials: WalletCredentials,
) -> AuthConfig:
    return AuthConfig(
        kalshi=kalshi_credentials,
        builder=builder_credentials,
        wallet=wallet_credentials,
    )
