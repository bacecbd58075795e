class TurnwiseError(Exception):
    """Base exception for turnwise errors."""

    pass


class ConfigurationError(TurnwiseError, ValueError):
    """Raised at construction time when a component is given unusable parameters."""

    pass


class StoreError(TurnwiseError):
    """Base exception for conversation store I/O failures."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(f"{message}: {path}" if path else message)


class StoreWriteError(StoreError):
    """A message could not be persisted. The message was NOT stored."""

    pass


class StoreReadError(StoreError):
    """The store directory or one of its records could not be read."""

    pass


class EnvelopeError(TurnwiseError):
    """A stored envelope could not be decoded or decrypted. Readers skip the record."""

    pass
