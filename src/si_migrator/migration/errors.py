"""Migration error taxonomy."""

from typing import Optional

from ..ccdb.exceptions import UnsupportedOperationError
from ..config.config import ConfigurationError
from ..models import ServiceInstance


class MigrationError(Exception):
    """A migration step failed."""

    pass


class MigrationValidationError(MigrationError):
    """An instance cannot be migrated as it is."""

    pass


def is_skippable(error: Exception, instance: Optional[ServiceInstance]) -> bool:
    """Decide whether a failed instance is reported as skipped.

    Validation and unsupported-operation errors are skips as long as the
    instance has no bindings that would be lost.

    Args:
        error: Error raised while migrating the instance
        instance: The instance, if it was built before the failure

    Returns:
        True to record a skip, False to record a failure
    """
    if not isinstance(error, (MigrationValidationError, UnsupportedOperationError)):
        return False
    return not (instance is not None and instance.service_bindings)


__all__ = [
    'ConfigurationError',
    'MigrationError',
    'MigrationValidationError',
    'UnsupportedOperationError',
    'is_skippable',
]
