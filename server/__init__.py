"""predmkt-core — server package."""

from .builder_sign_server import BuilderSignServer

__all__ = [
    "BuilderSignServer",
]
