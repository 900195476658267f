"""Configuration for the service instance migrator."""

from .config import (
    CloudControllerMigratorConfig,
    CloudFoundryConfig,
    Config,
    ConfigurationError,
    DatabaseConfig,
    FieldError,
    MigrationConfig,
    MigratorKind,
)

__all__ = [
    'CloudControllerMigratorConfig',
    'CloudFoundryConfig',
    'Config',
    'ConfigurationError',
    'DatabaseConfig',
    'FieldError',
    'MigrationConfig',
    'MigratorKind',
]
