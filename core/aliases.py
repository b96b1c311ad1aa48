"""Response field aliases.

Upstream services name the same field differently across versions and
endpoints (``transactionID`` vs ``transactionId``, ``proxyAddress`` vs
``address``).  Each alias tuple lists candidate keys in priority order.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

TRANSACTION_ID_KEYS: tuple[str, ...] = ("transactionID", "transactionId", "id")
PROXY_ADDRESS_KEYS: tuple[str, ...] = ("proxyAddress", "proxyWallet", "address")
TX_HASH_KEYS: tuple[str, ...] = ("transactionHash", "hash", "txHash")
ORDER_ID_KEYS: tuple[str, ...] = ("orderID", "orderId", "order_id", "id")
ERROR_MESSAGE_KEYS: tuple[str, ...] = ("errorMsg", "error", "message")
STATE_KEYS: tuple[str, ...] = ("state", "status")


def resolve_alias(
    payload: Mapping[str, Any] | None,
    aliases: Sequence[str],
    default: Any = None,
) -> Any:
    """Return the first non-empty value among *aliases* in *payload*.

    Empty strings and ``None`` are skipped so ``{"id": "", "transactionId": "x"}``
    resolves to ``"x"``.
    """
    if not payload:
        return default
    for key in aliases:
        value = payload.get(key)
        if value is not None and value != "":
            return value
    return default


def error_message(payload: Any, default: str) -> str:
    """Upstream error text from *payload*, unwrapping ``{"error": {"message": ...}}``."""
    if not isinstance(payload, Mapping):
        return default
    msg = resolve_alias(payload, ERROR_MESSAGE_KEYS)
    if isinstance(msg, Mapping):
        msg = resolve_alias(msg, ("message", "code"))
    return str(msg) if msg else default
