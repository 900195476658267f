"""Configuration management for the service instance migrator."""

import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ConfigurationError(Exception):
    """Configuration is missing or invalid for the requested operation."""

    pass


class FieldError(ConfigurationError):
    """A required configuration field is empty."""

    def __init__(self, field: str):
        super().__init__(f"{field} can't be empty")
        self.field = field


class MigratorKind(str, Enum):
    """Closed set of dedicated migrators."""

    ECS = 'ecs'
    MYSQL = 'mysql'
    SQLSERVER = 'sqlserver'
    CREDHUB = 'credhub'

    @property
    def uses_ccdb(self) -> bool:
        """Whether the migrator writes straight into the Cloud Controller DB."""
        return self in (MigratorKind.ECS, MigratorKind.SQLSERVER)


class CloudFoundryConfig(BaseModel):
    """Connection settings for one Cloud Foundry API."""

    url: str = Field(..., description='Cloud Controller API URL')
    username: Optional[str] = Field(default=None, description='UAA username')
    password: Optional[str] = Field(default=None, description='UAA password')
    client_id: Optional[str] = Field(default=None, description='UAA client ID')
    client_secret: Optional[str] = Field(
        default=None, description='UAA client secret'
    )
    skip_ssl_validation: bool = Field(
        default=False, description='Skip TLS certificate verification'
    )
    timeout: int = Field(default=30, description='Request timeout in seconds')

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        """Validate API URL format."""
        if not v.startswith(('http://', 'https://')):
            raise ValueError('URL must start with http:// or https://')
        return v.rstrip('/')

    @model_validator(mode='after')
    def validate_auth(self):
        """Ensure user or client credentials are provided."""
        has_user = bool(self.username and self.password)
        has_client = bool(self.client_id and self.client_secret)
        if not has_user and not has_client:
            raise ValueError(
                'Either username/password or client_id/client_secret must be provided'
            )
        return self

    @property
    def uses_client_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)


class DatabaseConfig(BaseModel):
    """Cloud Controller database connection settings."""

    db_host: str = Field(default='', description='CCDB host')
    db_port: int = Field(default=3306, description='CCDB port')
    db_username: str = Field(default='', description='CCDB username')
    db_password: str = Field(default='', description='CCDB password')
    db_encryption_key: str = Field(default='', description='CCDB encryption key')
    ssh_host: str = Field(default='', description='Tunnel host')
    ssh_username: str = Field(default='', description='Tunnel user')
    ssh_password: str = Field(default='', description='Tunnel password')
    ssh_private_key: str = Field(default='', description='Tunnel private key file')
    ssh_tunnel: bool = Field(default=False, description='Reach the CCDB over SSH')

    def validate_connection(self) -> None:
        """Check that everything needed to connect is present.

        Raises:
            FieldError: For the first empty required field
        """
        if not self.db_host:
            raise FieldError('ccdb host')
        if not self.db_username:
            raise FieldError('ccdb username')
        if not self.db_password:
            raise FieldError('ccdb password')
        if not self.db_encryption_key:
            raise FieldError('ccdb encryption key')
        if self.ssh_tunnel:
            if not self.ssh_host:
                raise FieldError('ssh host')
            if not self.ssh_username:
                raise FieldError('ssh username')
            if not self.ssh_password and not self.ssh_private_key:
                raise FieldError('ssh password or private key')


class CloudControllerMigratorConfig(BaseModel):
    """Settings of a migrator that writes into the Cloud Controller DB."""

    source_ccdb: Optional[DatabaseConfig] = Field(
        default=None, description='Source foundation CCDB'
    )
    target_ccdb: Optional[DatabaseConfig] = Field(
        default=None, description='Target foundation CCDB'
    )

    def ccdb(self, is_export: bool) -> Optional[DatabaseConfig]:
        return self.source_ccdb if is_export else self.target_ccdb

    def validate_for(self, is_export: bool) -> DatabaseConfig:
        """Return the CCDB settings for a direction after validating them.

        Raises:
            ConfigurationError: If the settings are missing or incomplete
        """
        db = self.ccdb(is_export)
        if db is None:
            side = 'source' if is_export else 'target'
            raise ConfigurationError(f'{side} ccdb config is not set')
        db.validate_connection()
        return db


class CredHubConfig(BaseModel):
    """CredHub connection settings."""

    url: str = Field(..., description='CredHub URL')
    uaa_url: str = Field(..., description='UAA URL used to get CredHub tokens')
    client_id: str = Field(..., description='UAA client ID')
    client_secret: str = Field(..., description='UAA client secret')
    skip_ssl_validation: bool = Field(
        default=False, description='Skip TLS certificate verification'
    )


class CredHubMigratorConfig(BaseModel):
    """Settings of the CredHub service broker migrator."""

    source: Optional[CredHubConfig] = Field(default=None, description='Source CredHub')


class BackupMigratorConfig(BaseModel):
    """Settings of the backup and restore migrator."""

    poll_timeout: float = Field(
        default=900.0, description='Seconds to wait for a new instance'
    )
    poll_interval: float = Field(default=10.0, description='Seconds between polls')


class MigratorsConfig(BaseModel):
    """Typed settings of each dedicated migrator."""

    ecs: Optional[CloudControllerMigratorConfig] = Field(default=None)
    sqlserver: Optional[CloudControllerMigratorConfig] = Field(default=None)
    credhub: CredHubMigratorConfig = Field(default_factory=CredHubMigratorConfig)
    mysql: BackupMigratorConfig = Field(default_factory=BackupMigratorConfig)

    def cloud_controller(
        self, kind: MigratorKind
    ) -> Optional[CloudControllerMigratorConfig]:
        """Return the CCDB migrator settings for a kind."""
        if kind == MigratorKind.ECS:
            return self.ecs
        if kind == MigratorKind.SQLSERVER:
            return self.sqlserver
        return None


class MigrationConfig(BaseModel):
    """Migration-specific configuration."""

    dry_run: bool = Field(default=False, description='Perform dry run without changes')
    use_default_migrator: bool = Field(
        default=False, description='Migrate managed services with no dedicated migrator'
    )
    ignore_service_keys: bool = Field(
        default=False, description='Do not recreate service keys'
    )
    max_workers: int = Field(default=10, description='Maximum concurrent instances')
    retry_timeout: float = Field(
        default=60.0, description='Seconds to keep retrying transient failures'
    )
    retry_pause: float = Field(default=3.0, description='Seconds between retries')
    export_dir: str = Field(default='export', description='Export directory')

    services: List[str] = Field(
        default_factory=list, description='Services to migrate (empty means all)'
    )
    instances: List[str] = Field(
        default_factory=list, description='Instances to migrate (empty means all)'
    )
    include_orgs: List[str] = Field(
        default_factory=list, description='Org name patterns to include'
    )
    exclude_orgs: List[str] = Field(
        default_factory=list, description='Org name patterns to exclude'
    )
    domains_to_replace: Dict[str, str] = Field(
        default_factory=dict, description='Old domain to new domain mapping'
    )

    migrators: MigratorsConfig = Field(
        default_factory=MigratorsConfig, description='Per migrator settings'
    )

    @field_validator('max_workers')
    @classmethod
    def validate_max_workers(cls, v):
        """Validate max workers is positive."""
        if v <= 0:
            raise ValueError('Max workers must be positive')
        return v

    @field_validator('retry_timeout', 'retry_pause')
    @classmethod
    def validate_retry(cls, v):
        """Validate retry settings are not negative."""
        if v < 0:
            raise ValueError('Retry settings must not be negative')
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default='INFO', description='Log level')
    file: Optional[str] = Field(default=None, description='Log file path')
    format: Optional[str] = Field(default=None, description='Log format')

    @field_validator('level')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level must be one of: {valid_levels}')
        return v.upper()


class Config(BaseModel):
    """Main configuration class for the service instance migrator."""

    model_config = ConfigDict(extra='forbid')

    source_api: CloudFoundryConfig = Field(..., description='Source foundation API')
    target_api: CloudFoundryConfig = Field(..., description='Target foundation API')
    migration: MigrationConfig = Field(
        default_factory=MigrationConfig, description='Migration settings'
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description='Logging settings'
    )

    @classmethod
    def from_file(cls, config_path: str) -> 'Config':
        """Load configuration from YAML file."""
        config_file = Path(config_path)

        if not config_file.exists():
            raise FileNotFoundError(f'Configuration file not found: {config_path}')

        with open(config_file, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config_data = {
            'source_api': {
                'url': os.getenv('CF_SOURCE_API'),
                'username': os.getenv('CF_SOURCE_USERNAME'),
                'password': os.getenv('CF_SOURCE_PASSWORD'),
                'client_id': os.getenv('CF_SOURCE_CLIENT_ID'),
                'client_secret': os.getenv('CF_SOURCE_CLIENT_SECRET'),
            },
            'target_api': {
                'url': os.getenv('CF_TARGET_API'),
                'username': os.getenv('CF_TARGET_USERNAME'),
                'password': os.getenv('CF_TARGET_PASSWORD'),
                'client_id': os.getenv('CF_TARGET_CLIENT_ID'),
                'client_secret': os.getenv('CF_TARGET_CLIENT_SECRET'),
            },
            'migration': {
                'export_dir': os.getenv('SI_MIGRATOR_EXPORT_DIR', 'export'),
                'max_workers': int(os.getenv('SI_MIGRATOR_MAX_WORKERS', 10)),
                'dry_run': os.getenv('SI_MIGRATOR_DRY_RUN', 'false').lower() == 'true',
                'use_default_migrator': os.getenv(
                    'SI_MIGRATOR_USE_DEFAULT_MIGRATOR', 'false'
                ).lower()
                == 'true',
            },
            'logging': {
                'level': os.getenv('LOG_LEVEL', 'INFO'),
                'file': os.getenv('LOG_FILE'),
            },
        }

        config_data = cls._remove_none_values(config_data)

        return cls(**config_data)

    @staticmethod
    def _remove_none_values(data: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively remove None values from dictionary."""
        if isinstance(data, dict):
            return {
                k: Config._remove_none_values(v)
                for k, v in data.items()
                if v is not None
            }
        return data

    def to_file(self, config_path: str) -> None:
        """Save configuration to YAML file."""
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                self.model_dump(mode='json', exclude_none=True),
                f,
                default_flow_style=False,
                indent=2,
                sort_keys=False,
            )

    @staticmethod
    def create_template(output_path: str) -> None:
        """Create a configuration template file."""
        ccdb_template = {
            'db_host': '192.168.2.10',
            'db_username': 'ccadmin',
            'db_password': 'your-ccdb-password',
            'db_encryption_key': 'your-ccdb-encryption-key',
            'ssh_host': 'opsman.example.com',
            'ssh_username': 'ubuntu',
            'ssh_private_key': '/path/to/opsman.pem',
            'ssh_tunnel': True,
        }
        template_config = {
            'source_api': {
                'url': 'https://api.sys.cf1.example.com',
                'username': 'admin',
                'password': 'your-source-admin-password',
            },
            'target_api': {
                'url': 'https://api.sys.cf2.example.com',
                'username': 'admin',
                'password': 'your-target-admin-password',
            },
            'migration': {
                'dry_run': False,
                'use_default_migrator': False,
                'ignore_service_keys': False,
                'max_workers': 10,
                'export_dir': 'export',
                'services': [],
                'instances': [],
                'include_orgs': [],
                'exclude_orgs': ['^system$', '^p-'],
                'domains_to_replace': {'apps.cf1.example.com': 'apps.cf2.example.com'},
                'migrators': {
                    'ecs': {
                        'source_ccdb': ccdb_template,
                        'target_ccdb': dict(ccdb_template, db_host='192.168.3.10'),
                    },
                    'mysql': {'poll_timeout': 900, 'poll_interval': 10},
                },
            },
            'logging': {
                'level': 'INFO',
                'file': 'si-migrator.log',
            },
        }

        config_file = Path(output_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                template_config, f, default_flow_style=False, indent=2, sort_keys=False
            )
