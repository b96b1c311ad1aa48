"""predmkt-core — relayer package.

- RelayClient: submit / poll gasless transactions through the relay
- ProxyWalletManager: Safe proxy-wallet deploy / approve lifecycle
"""

from .client import RelayClient
from .proxy_wallet import ProxyWalletManager

__all__ = [
    "ProxyWalletManager",
    "RelayClient",
]
