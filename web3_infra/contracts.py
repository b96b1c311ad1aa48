"""Polygon contract addresses, EIP-712 domains and approval targets.

The risk category of an instrument selects both the verifying contract used
in the order-signing domain and the spender that must hold a USDC
allowance.  The two tables below are the only place that mapping lives.
"""

from __future__ import annotations

from typing import Any

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from models.order import RiskCategory

# ── Constants ────────────────────────────────────────────────────────

POLYGON_CHAIN_ID = 137

# USDC (bridged) on Polygon
USDC_ADDRESS = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"
USDC_DECIMALS = 6
SHARE_DECIMALS = 6

# Polymarket CTF Exchange (standard markets)
CTF_EXCHANGE_ADDRESS = "0x4bFb41d5B3570DeFd03C39a9A4D8dE6Bd8B8982E"

# Polymarket Neg Risk CTF Exchange (negRisk markets)
NEG_RISK_CTF_EXCHANGE_ADDRESS = "0xC5d563A36AE78145C45a50134d48A1215220f80a"

NEG_RISK_ADAPTER_ADDRESS = "0xd91E80cF2E7be2e162c6513ceD06f1dD0dA35296"
CONDITIONAL_TOKENS_ADDRESS = "0x4D97DCd97eC945f40cF65F87097ACe5EA0476045"

SAFE_PROXY_FACTORY_ADDRESS = "0xaacfeea03eb1561c4e67d661e40682bd20e3541b"
POLYMARKET_PROXY_FACTORY_ADDRESS = "0xaB45c54AB0c941a2F231C04C3f49182e1A254052"

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
MAX_UINT256 = 2**256 - 1

EXCHANGE_DOMAIN_NAME = "Polymarket CTF Exchange"
EXCHANGE_DOMAIN_VERSION = "1"

VERIFYING_CONTRACTS: dict[RiskCategory, str] = {
    RiskCategory.STANDARD: CTF_EXCHANGE_ADDRESS,
    RiskCategory.NEG_RISK: NEG_RISK_CTF_EXCHANGE_ADDRESS,
}

APPROVAL_TARGETS: dict[RiskCategory, str] = {
    RiskCategory.STANDARD: CONDITIONAL_TOKENS_ADDRESS,
    RiskCategory.NEG_RISK: NEG_RISK_ADAPTER_ADDRESS,
}

# ── ABI fragments ────────────────────────────────────────────────────

ERC20_ABI = [
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

ORDER_TYPES: dict[str, list[dict[str, str]]] = {
    "Order": [
        {"name": "salt", "type": "uint256"},
        {"name": "maker", "type": "address"},
        {"name": "signer", "type": "address"},
        {"name": "taker", "type": "address"},
        {"name": "tokenId", "type": "uint256"},
        {"name": "makerAmount", "type": "uint256"},
        {"name": "takerAmount", "type": "uint256"},
        {"name": "expiration", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "feeRateBps", "type": "uint256"},
        {"name": "side", "type": "uint8"},
        {"name": "signatureType", "type": "uint8"},
    ],
}

_APPROVE_SELECTOR = function_signature_to_4byte_selector("approve(address,uint256)")


def verifying_contract(category: RiskCategory) -> str:
    return VERIFYING_CONTRACTS[category]


def approval_target(category: RiskCategory) -> str:
    return APPROVAL_TARGETS[category]


def order_domain(category: RiskCategory, chain_id: int = POLYGON_CHAIN_ID) -> dict[str, Any]:
    """EIP-712 domain for an order in *category*."""
    return {
        "name": EXCHANGE_DOMAIN_NAME,
        "version": EXCHANGE_DOMAIN_VERSION,
        "chainId": chain_id,
        "verifyingContract": verifying_contract(category),
    }


def encode_approve(spender: str, amount: int = MAX_UINT256) -> str:
    """Calldata for ``USDC.approve(spender, amount)`` as a 0x-hex string."""
    args = encode(["address", "uint256"], [to_checksum_address(spender), amount])
    return "0x" + (_APPROVE_SELECTOR + args).hex()

