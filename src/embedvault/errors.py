"""Error taxonomy shared by every component."""

from __future__ import annotations


class EmbedVaultError(RuntimeError):
    """Base class for engine errors."""


class ConfigurationError(EmbedVaultError):
    """Raised at construction time when credentials or settings are missing."""


class NotFoundError(EmbedVaultError):
    """Raised when a document or cluster id does not exist."""

    def __init__(self, kind: str, ident: str) -> None:
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


class StoreError(EmbedVaultError):
    """A storage or RPC call failed; wraps the underlying exception."""


class EmbeddingError(EmbedVaultError):
    """The embedding provider failed or returned malformed vectors."""


class ClusteringError(EmbedVaultError):
    """Cluster assignment, reassignment or rebalancing failed."""


class SearchError(EmbedVaultError):
    """A search strategy failed and no results could be produced."""


__all__ = [
    "EmbedVaultError",
    "ConfigurationError",
    "NotFoundError",
    "StoreError",
    "EmbeddingError",
    "ClusteringError",
    "SearchError",
]
