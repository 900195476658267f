"""Cloud Foundry API exceptions."""

from typing import Optional


class CloudFoundryAPIError(Exception):
    """Base exception for Cloud Foundry API errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[dict] = None,
    ):
        """Initialize Cloud Foundry API error.

        Args:
            message: Error message
            status_code: HTTP status code
            response_data: Response data from API
        """
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data

    @property
    def error_code(self) -> Optional[str]:
        """The ``error_code`` field of a v2 error body, if any."""
        if isinstance(self.response_data, dict):
            return self.response_data.get('error_code')
        return None

    @property
    def code(self) -> Optional[int]:
        """The numeric ``code`` field of a v2 error body, if any."""
        if isinstance(self.response_data, dict):
            return self.response_data.get('code')
        return None


class CloudFoundryAuthenticationError(CloudFoundryAPIError):
    """Authentication error with the UAA or the Cloud Controller."""

    pass


class CloudFoundryNotFoundError(CloudFoundryAPIError):
    """Resource not found error."""

    pass


class RetryableError(CloudFoundryAPIError):
    """Marks a failure that is worth retrying."""

    pass


class CloudFoundryServerError(RetryableError):
    """The Cloud Controller answered with a 5xx status."""

    pass


class RetryTimeoutError(CloudFoundryAPIError):
    """Retrying an operation did not succeed before the deadline."""

    def __init__(self, last_error: Exception):
        super().__init__(f'timed out retrying operation: {last_error}')
        self.last_error = last_error


class ClientConstructionError(CloudFoundryAPIError):
    """The underlying HTTP client or its token could not be created."""

    pass


SERVICE_PARAMS_NOT_SUPPORTED_CODE = 120004
SERVICE_PARAMS_NOT_SUPPORTED_ERROR = 'CF-ServiceFetchInstanceParametersNotSupported'


def is_params_not_supported(error: Exception) -> bool:
    """Check whether an error says the broker cannot fetch instance parameters.

    Args:
        error: Error raised by the client

    Returns:
        True if the broker does not support fetching parameters
    """
    if not isinstance(error, CloudFoundryAPIError):
        return False
    return (
        error.code == SERVICE_PARAMS_NOT_SUPPORTED_CODE
        or error.error_code == SERVICE_PARAMS_NOT_SUPPORTED_ERROR
    )
