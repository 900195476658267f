"""Cloud Controller database exceptions."""

from typing import Optional


class RepositoryError(Exception):
    """Base exception for Cloud Controller database failures."""

    pass


class RecordNotFoundError(RepositoryError):
    """A row looked up by GUID does not exist."""

    pass


class SaltDiscoveryError(RepositoryError):
    """The salt length could not be read from existing rows."""

    pass


class UnsupportedOperationError(RepositoryError):
    """The requested change is not supported for this row."""

    pass


class TransactionError(RepositoryError):
    """A transaction failed and rolling it back failed as well."""

    def __init__(self, cause: Exception, rollback_error: Optional[Exception] = None):
        message = str(cause)
        if rollback_error is not None:
            message = f'{cause}; rollback failed: {rollback_error}'
        super().__init__(message)
        self.cause = cause
        self.rollback_error = rollback_error
