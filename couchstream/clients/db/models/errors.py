"""Exception types raised by the database clients.

Validation errors are raised synchronously when an operation is built.
Transport and conversion errors are only ever delivered through the async
sequence returned by the operation.
"""


class CouchError(Exception):
    """Base exception for all couchstream database errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class CouchValidationError(CouchError, ValueError):
    """Raised before any request is sent when arguments are missing or conflict."""

    def __init__(self, message: str, argument: str | None = None) -> None:
        super().__init__(message)
        self.argument = argument


class CouchTransportError(CouchError):
    """Raised when the server answers with a non-success status or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None, url: str | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url
        self.body = body


class CouchConversionError(CouchError, ValueError):
    """Raised when a response payload cannot be parsed or converted to the requested type."""

    pass
