"""Migration engine and strategies."""

from .engine import MigrationEngine
from .errors import MigrationError, MigrationValidationError
from .registry import MigratorFactory, MigratorRegistry
from .strategy import (
    ManagedServiceMigrator,
    MigrationContext,
    ServiceInstanceMigrator,
    UserProvidedServiceMigrator,
)
from .summary import MigrationResult, MigrationStatus, Summary

__all__ = [
    'ManagedServiceMigrator',
    'MigrationContext',
    'MigrationEngine',
    'MigrationError',
    'MigrationResult',
    'MigrationStatus',
    'MigrationValidationError',
    'MigratorFactory',
    'MigratorRegistry',
    'ServiceInstanceMigrator',
    'Summary',
    'UserProvidedServiceMigrator',
]
