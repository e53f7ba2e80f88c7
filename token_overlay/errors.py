"""Exception types raised by the token index and query surfaces."""

from __future__ import annotations


class TokenOverlayError(RuntimeError):
    """Base class for errors surfaced by the token overlay."""


class DuplicateOutputError(TokenOverlayError):
    """Raised when an output is admitted a second time."""

    def __init__(self, txid: str, output_index: int) -> None:
        super().__init__(f"Token output {txid}:{output_index} already admitted")
        self.txid = txid
        self.output_index = output_index


class RecordNotFoundError(TokenOverlayError):
    """Raised when a spend or eviction targets an unknown output."""

    def __init__(self, txid: str, output_index: int) -> None:
        super().__init__(f"Token output {txid}:{output_index} not found")
        self.txid = txid
        self.output_index = output_index


class StorageError(TokenOverlayError):
    """Raised when the backing store cannot complete a request."""


class UnsupportedQueryError(TokenOverlayError):
    """Raised for lookup questions the query engine does not understand."""
