"""predmkt-core — web3_infra package.

- EIP712Signer: off-thread EIP-712 signing for CLOB orders
- WalletSigner: EIP-191 message signing for relay authorisations
- CollateralReader: on-chain USDC balance / allowance reads
- contracts: addresses, domains and approval targets by risk category
"""

from .collateral import CollateralReader
from .eip712_signer import EIP712Signer, SignedOrder, WalletSigner

__all__ = [
    "CollateralReader",
    "EIP712Signer",
    "SignedOrder",
    "WalletSigner",
]
