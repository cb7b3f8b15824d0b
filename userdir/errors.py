from typing import Optional


class DirectoryError(Exception):
    """Base for failures a workflow turns into an inline message."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DirectoryError):
    """Client-side field check; never reaches the store."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class ConflictError(DirectoryError):
    """Account identity already taken."""


class StoreError(DirectoryError):
    """Store or network failure. The message is shown to the user verbatim."""


class MultipleRowsError(StoreError):
    pass


class NotFoundError(StoreError):
    pass
