"""Failure classes raised by the assistant pipeline."""

from __future__ import annotations


class AssistantError(RuntimeError):
    """Base class for every failure the assistant knows how to report."""


class ConfigurationError(AssistantError):
    """The completion provider has no usable credential."""


class DataUnavailableError(AssistantError):
    """The knowledge index is still empty after a refresh attempt."""


class EmbeddingError(AssistantError):
    """An embedding call failed, either for a corpus entry or for a query."""


class CompletionError(AssistantError):
    def __init__(self, message: str, *, provider_message: str | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.provider_message = provider_message
        self.code = code


class ModelUnavailableError(CompletionError):
    """The requested chat model was removed or never existed."""


class CorpusBuildError(AssistantError):
    """Reading the catalog failed while rebuilding the corpus documents."""
