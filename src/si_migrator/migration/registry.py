"""Picks the migrator for each service instance."""

from typing import Callable, Dict, List, Optional, Tuple

from loguru import logger

from ..ccdb.factory import DatabaseFactory
from ..config.config import (
    ConfigurationError,
    CredHubConfig,
    MigratorKind,
    MigratorsConfig,
)
from ..models import ServiceInstance
from .backup import BackupBackend, BackupRestoreMigrator
from .cc import CloudControllerMigrator, CloudControllerService
from .credhub import CredHubClient, CredHubMigrator, SecretStore
from .manifest import ManifestExporter
from .strategy import (
    ManagedServiceMigrator,
    MigrationContext,
    ServiceInstanceMigrator,
    UserProvidedServiceMigrator,
)

SERVICE_KINDS: Dict[str, MigratorKind] = {
    'ecs-bucket': MigratorKind.ECS,
    'p.mysql': MigratorKind.MYSQL,
    'SQLServer': MigratorKind.SQLSERVER,
    'MSSQL-Broker': MigratorKind.SQLSERVER,
    'credhub': MigratorKind.CREDHUB,
}


def migrator_kind(service: str) -> Optional[MigratorKind]:
    """Return the dedicated migrator kind of a service label, if any."""
    return SERVICE_KINDS.get(service)


class MigratorFactory:
    """Builds the migrator for an instance with its collaborators wired in."""

    def __init__(
        self,
        context: MigrationContext,
        migrators: MigratorsConfig,
        database_factory: DatabaseFactory,
        use_default_migrator: bool = False,
        backup_backend: Optional[BackupBackend] = None,
        secret_store_factory: Callable[[CredHubConfig], SecretStore] = CredHubClient,
    ):
        self.context = context
        self.migrators = migrators
        self.database_factory = database_factory
        self.use_default_migrator = use_default_migrator
        self.backup_backend = backup_backend
        self.secret_store_factory = secret_store_factory
        self.logger = logger.bind(component='MigratorFactory')

    async def new(
        self, org: str, space: str, instance: ServiceInstance, is_export: bool
    ) -> Optional[ServiceInstanceMigrator]:
        """Build a migrator, or return None if the instance is not supported.

        Raises:
            ConfigurationError: If a dedicated migrator is not configured
        """
        if instance.is_managed:
            kind = migrator_kind(instance.service)
            if kind is not None and kind.uses_ccdb:
                return await self._cloud_controller(kind, org, space, instance, is_export)
            if kind == MigratorKind.CREDHUB:
                return self._credhub(org, space, instance, is_export)
            if kind == MigratorKind.MYSQL:
                return self._backup(org, space, instance, is_export)
            if self.use_default_migrator:
                return ManagedServiceMigrator(org, space, instance, is_export)
        elif instance.is_user_provided:
            return UserProvidedServiceMigrator(org, space, instance, is_export)

        self.logger.warning(
            f'Service instance {instance.name!r} is not supported, '
            f'service: {instance.service!r}, type: {instance.type!r}'
        )
        return None

    async def _cloud_controller(
        self,
        kind: MigratorKind,
        org: str,
        space: str,
        instance: ServiceInstance,
        is_export: bool,
    ) -> CloudControllerMigrator:
        settings = self.migrators.cloud_controller(kind)
        if settings is None:
            raise ConfigurationError(f'ccdb config for {kind.value} is not set')
        db_config = settings.validate_for(is_export)

        client = self.context.source_client if is_export else self.context.target_client
        repository = await self.database_factory.new_ccdb(db_config)
        service = CloudControllerService(
            repository,
            client,
            ManifestExporter(client, self.context.domains_to_replace),
        )
        return CloudControllerMigrator(
            org, space, instance, service, db_config.db_encryption_key, is_export
        )

    def _credhub(
        self, org: str, space: str, instance: ServiceInstance, is_export: bool
    ) -> CredHubMigrator:
        secret_store = None
        if is_export:
            if self.migrators.credhub.source is None:
                raise ConfigurationError('credhub source config is not set')
            secret_store = self.secret_store_factory(self.migrators.credhub.source)
        return CredHubMigrator(org, space, instance, is_export, secret_store)

    def _backup(
        self, org: str, space: str, instance: ServiceInstance, is_export: bool
    ) -> BackupRestoreMigrator:
        if self.backup_backend is None:
            raise ConfigurationError(
                f'no backup backend configured for {instance.service}'
            )
        return BackupRestoreMigrator(
            org,
            space,
            instance,
            is_export,
            self.backup_backend,
            poll_timeout=self.migrators.mysql.poll_timeout,
            poll_interval=self.migrators.mysql.poll_interval,
        )


class MigratorRegistry:
    """Applies the service allow-list before asking the factory."""

    def __init__(self, factory: MigratorFactory, services: Optional[List[str]] = None):
        self.factory = factory
        self.services = [s.lower() for s in services or []]

    def should_migrate(self, instance: ServiceInstance) -> bool:
        if not self.services:
            return True
        kind = migrator_kind(instance.service)
        for selected in self.services:
            if selected == instance.service.lower():
                return True
            if kind is not None and selected == kind.value:
                return True
        return False

    async def lookup(
        self, org: str, space: str, instance: ServiceInstance, is_export: bool
    ) -> Tuple[Optional[ServiceInstanceMigrator], bool]:
        """Find the migrator for an instance.

        Returns:
            The migrator (None if unsupported) and whether the instance is in scope
        """
        if not self.should_migrate(instance):
            return None, False
        migrator = await self.factory.new(org, space, instance, is_export)
        return migrator, True
