"""Domain exceptions raised by the service layer."""

from __future__ import annotations


class LedgerMindError(Exception):
    """Base class for errors raised by LedgerMind services."""


class ProviderError(LedgerMindError):
    """A single attempt against an external AI/OCR/FX provider failed."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class OCRError(LedgerMindError):
    """Text extraction produced no usable text."""
