"""Migration engine - main entry point for export and import runs."""

from pathlib import Path
from typing import Optional

from loguru import logger

from ..api.client import CloudFoundryClient
from ..ccdb.factory import DatabaseFactory
from ..config.config import Config
from ..utils.parser import ServiceInstanceParser
from .backup import BackupBackend
from .exporter import OrgExporter, ServiceInstanceExporter, SpaceExporter
from .filters import OrgFilter
from .importer import OrgImporter, ServiceInstanceImporter, SpaceImporter
from .registry import MigratorFactory, MigratorRegistry
from .strategy import MigrationContext
from .summary import Summary


class MigrationEngine:
    """Main migration engine that coordinates export and import runs."""

    def __init__(
        self,
        config: Config,
        backup_backend: Optional[BackupBackend] = None,
        database_factory: Optional[DatabaseFactory] = None,
    ):
        """Initialize migration engine.

        Args:
            config: Migrator configuration
            backup_backend: Backend used by the backup and restore migrator
            database_factory: Factory of CCDB repositories
        """
        self.config = config
        self.logger = logger.bind(component='MigrationEngine')

        migration = config.migration
        self.source_client = CloudFoundryClient(
            config.source_api, migration.retry_timeout, migration.retry_pause
        )
        self.target_client = CloudFoundryClient(
            config.target_api, migration.retry_timeout, migration.retry_pause
        )
        self.context = MigrationContext.from_config(
            migration, self.source_client, self.target_client
        )
        self.database_factory = database_factory or DatabaseFactory()

        factory = MigratorFactory(
            self.context,
            migration.migrators,
            self.database_factory,
            use_default_migrator=migration.use_default_migrator,
            backup_backend=backup_backend,
        )
        self.registry = MigratorRegistry(factory, migration.services)
        self.parser = ServiceInstanceParser()
        org_filter = OrgFilter(migration.include_orgs, migration.exclude_orgs)

        instance_exporter = ServiceInstanceExporter(self.context, self.registry, self.parser)
        self.space_exporter = SpaceExporter(instance_exporter)
        self.org_exporter = OrgExporter(instance_exporter, org_filter, migration.max_workers)

        instance_importer = ServiceInstanceImporter(self.context, self.registry)
        self.space_importer = SpaceImporter(self.context, instance_importer, self.parser)
        self.org_importer = OrgImporter(self.space_importer, org_filter)

    @property
    def summary(self) -> Summary:
        return self.context.summary

    def _directory(self, directory: Optional[Path]) -> Path:
        return Path(directory) if directory else self.context.export_dir

    async def export_orgs(self, *orgs: str, directory: Optional[Path] = None) -> Summary:
        """Export the service instances of the given orgs."""
        self.logger.info(f'Exporting orgs: {", ".join(orgs)}')
        await self.org_exporter.export_orgs(self._directory(directory), *orgs)
        return self.summary

    async def export_space(
        self, org: str, space: str, directory: Optional[Path] = None
    ) -> Summary:
        """Export the service instances of one space."""
        self.logger.info(f'Exporting space {org}/{space}')
        await self.space_exporter.export_space(self._directory(directory), org, space)
        return self.summary

    async def export_all(self, directory: Optional[Path] = None) -> Summary:
        """Export the service instances of every org."""
        self.logger.info('Exporting all orgs')
        await self.org_exporter.export_all(self._directory(directory))
        return self.summary

    async def import_orgs(self, *orgs: str, directory: Optional[Path] = None) -> Summary:
        """Import the exported service instances of the given orgs."""
        self.logger.info(f'Importing orgs: {", ".join(orgs)}')
        await self.org_importer.import_orgs(self._directory(directory), *orgs)
        return self.summary

    async def import_space(
        self, org: str, space: str, directory: Optional[Path] = None
    ) -> Summary:
        """Import the exported service instances of one space."""
        self.logger.info(f'Importing space {org}/{space}')
        await self.space_importer.import_space(self._directory(directory), org, space)
        return self.summary

    async def import_all(self, directory: Optional[Path] = None) -> Summary:
        """Import every exported service instance."""
        self.logger.info('Importing all orgs')
        await self.org_importer.import_all(self._directory(directory))
        return self.summary

    async def close(self) -> None:
        """Close API sessions, database connections and tunnels."""
        await self.source_client.close()
        await self.target_client.close()
        await self.database_factory.close()
