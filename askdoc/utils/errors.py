"""
Error taxonomy for AskDoc.

Components raise these (chained to the underlying library error) so that the
ingestion run and the query service can apply their own propagation policy
without knowing which provider failed.
"""


class AskDocError(Exception):
    """Base class for all AskDoc errors."""


class ConfigError(AskDocError):
    """Invalid chunk configuration or a missing/invalid required option."""


class FetchError(AskDocError):
    """The source document is unreachable or invalid."""


class EmbeddingError(AskDocError):
    """The embedding capability is unavailable, rate-limited or misbehaving."""


class StorageError(AskDocError):
    """Connection, schema or write failure in the vector store."""


class RetrievalError(AskDocError):
    """Similarity search failed."""


class GenerationError(AskDocError):
    """The generation capability failed or returned empty/invalid output."""


class TransportError(AskDocError):
    """A reply could not be delivered over the chat transport."""
