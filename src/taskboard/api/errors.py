from __future__ import annotations


class TaskboardError(Exception):
    """Base class for errors raised by the taskboard service layer."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# PUBLIC_INTERFACE
class DataAccessError(TaskboardError):
    """
    Store-level failure (connectivity, malformed query, constraint violation).

    The message is passed through to the client unchanged.
    """

    status_code = 400


# PUBLIC_INTERFACE
class ConstraintViolation(DataAccessError):
    """A write violated a unique or foreign-key constraint of the store."""


# PUBLIC_INTERFACE
class CollaboratorError(TaskboardError):
    """
    The AI collaborator failed, was not configured, or returned output that is
    not JSON matching the declared shape.
    """

    status_code = 502
