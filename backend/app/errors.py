"""Failure taxonomy shared by the source adapters and the aggregation cycle."""

from __future__ import annotations


class EngineError(Exception):
    """Base class for every error raised by the metrics engine."""


class SourceUnavailable(EngineError):
    """Raised when a log/provider query fails, times out, or cannot serve a range."""


class BlockHeightUnavailable(SourceUnavailable):
    """Raised when the current block height cannot be obtained; the cycle is abandoned."""


class PriceUnavailable(EngineError):
    """Raised when an oracle or reference price cannot be fetched."""


class MalformedExternalResponse(EngineError):
    """Raised when an external endpoint returns a payload of unexpected shape."""


class PersistenceFailure(EngineError):
    """Raised when the durable key-value store cannot be read or written."""


__all__ = [
    "EngineError",
    "SourceUnavailable",
    "BlockHeightUnavailable",
    "PriceUnavailable",
    "MalformedExternalResponse",
    "PersistenceFailure",
]
