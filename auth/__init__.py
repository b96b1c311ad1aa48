"""predmkt-core — auth package.

- KalshiRequestSigner: RSA-PSS request headers for the Kalshi API
- BuilderSigner: builder-attribution HMAC headers (local or remote)
"""

from .builder_signer import (
    BuilderSigner,
    LocalBuilderSigner,
    RemoteBuilderSigner,
    build_builder_signer,
)
from .request_signer import KalshiRequestSigner, RsaScheme

__all__ = [
    "BuilderSigner",
    "KalshiRequestSigner",
    "LocalBuilderSigner",
    "RemoteBuilderSigner",
    "RsaScheme",
    "build_builder_signer",
]
