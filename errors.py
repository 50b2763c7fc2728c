"""Domain errors raised by the library layer and mapped to HTTP responses in api.py."""


class LibraryError(Exception):
    """Base class for every error the API turns into an envelope."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(LibraryError):
    """Missing/empty field, duplicate natural key or missing referenced entity."""

    status_code = 400


class NotFoundError(LibraryError):
    status_code = 404


class StorageError(LibraryError):
    """Any failure coming from the database; the message stays generic."""

    status_code = 500
