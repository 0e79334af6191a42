"""Exception hierarchy for the import pipeline.

Entry-level and book-level errors are recovered by the pipeline and folded
into session statistics; only ``ErrorBudgetExceededError`` and
``StoreUnavailableError`` fail a whole import.
"""


class KindleNotesError(Exception):
    """Base exception for kindle-notes errors."""

    pass


class MalformedEntryError(KindleNotesError):
    """A clippings block could not be parsed."""

    def __init__(self, message: str, block_index: int | None = None):
        self.block_index = block_index
        if block_index is not None:
            message = f"Block {block_index}: {message}"
        super().__init__(message)


class ErrorBudgetExceededError(KindleNotesError):
    """Too many malformed blocks in a single export."""

    def __init__(self, errors: list[str], max_errors: int):
        self.errors = list(errors)
        self.max_errors = max_errors
        super().__init__(
            f"Too many parsing errors ({len(errors)} > {max_errors}): " + "; ".join(errors)
        )


class UnparseableDateError(KindleNotesError):
    """A timestamp did not match any known format."""

    pass


class UnparseableLocationError(KindleNotesError):
    """A location string was not of the form N or N-M."""

    pass


class AmbiguousDuplicateError(KindleNotesError):
    """An entry matches more than one existing note equally well."""

    pass


class ProviderError(KindleNotesError):
    """Base exception for metadata provider failures."""

    pass


class ProviderUnavailableError(ProviderError):
    """The provider could not be reached or returned an error status."""

    pass


class ProviderTimeoutError(ProviderError):
    """The provider did not answer within the configured timeout."""

    pass


class RateLimitError(ProviderError):
    """The provider rejected the request because of rate limiting."""

    pass


class PersistenceError(KindleNotesError):
    """A record could not be written; fatal for the affected book only."""

    pass


class StoreUnavailableError(PersistenceError):
    """The record store itself is unreachable; fatal for the import."""

    pass


class InvalidTransitionError(KindleNotesError):
    """An import session was asked to move to a state it cannot reach."""

    pass
