"""Cloud Controller database access."""

from .crypto import EncryptionError, decrypt, encrypt, generate_salt
from .exceptions import (
    RecordNotFoundError,
    RepositoryError,
    SaltDiscoveryError,
    TransactionError,
    UnsupportedOperationError,
)
from .repository import CloudControllerRepository

__all__ = [
    'CloudControllerRepository',
    'EncryptionError',
    'RecordNotFoundError',
    'RepositoryError',
    'SaltDiscoveryError',
    'TransactionError',
    'UnsupportedOperationError',
    'decrypt',
    'encrypt',
    'generate_salt',
]
