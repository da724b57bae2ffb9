"""Exceptions raised by the storage components."""


class BufferFullError(Exception):
    """Raised when no buffer frame can be freed to load another page."""

    def __init__(self, message: str = "buffer is full") -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class SchemaParseError(Exception):
    """Raised when a schema description cannot be parsed."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message