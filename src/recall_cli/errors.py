"""Exception types for recall-cli."""


class RecallError(Exception):
    """Base class for all recall-cli errors."""


class ConfigError(RecallError):
    """config.toml could not be read or validated."""


class StoreError(RecallError):
    """Schema init, constraint violation or I/O failure in the event store."""


class SearchIndexError(StoreError):
    """A full-text shadow index write failed; the enclosing write is rolled back."""


class LLMError(RecallError):
    """The completion backend is misconfigured or returned an error."""
