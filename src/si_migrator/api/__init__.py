"""Cloud Foundry API access."""

from .client import APIResponse, CloudFoundryClient
from .exceptions import (
    ClientConstructionError,
    CloudFoundryAPIError,
    CloudFoundryAuthenticationError,
    CloudFoundryNotFoundError,
    CloudFoundryServerError,
    RetryableError,
    RetryTimeoutError,
    is_params_not_supported,
)
from .retry import do_with_retry

__all__ = [
    'APIResponse',
    'ClientConstructionError',
    'CloudFoundryAPIError',
    'CloudFoundryAuthenticationError',
    'CloudFoundryClient',
    'CloudFoundryNotFoundError',
    'CloudFoundryServerError',
    'RetryTimeoutError',
    'RetryableError',
    'do_with_retry',
    'is_params_not_supported',
]
