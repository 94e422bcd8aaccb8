from __future__ import annotations


class ParseError(ValueError):
    """Raised when a feed frame or snapshot payload cannot be decoded."""


class FeedTransportError(RuntimeError):
    """Raised for connection-level failures of the live depth feed."""


class StoreError(RuntimeError):
    """Raised when the blob store cannot write or list keys."""


class SourceFetchError(RuntimeError):
    """Raised when the REST depth snapshot cannot be fetched or used."""
