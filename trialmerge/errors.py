"""Exception types shared by the merge core and the HTTP layer."""

from typing import Optional


class StoreError(Exception):
    """A gateway call against the relational store failed.

    ``cause`` holds the underlying driver exception (also chained as
    ``__cause__`` when raised with ``from``).
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class InputError(ValueError):
    """The merge request body is missing or malformed."""
