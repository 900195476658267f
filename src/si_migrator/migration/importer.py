"""Import of exported service instances into the target foundation."""

import asyncio
from pathlib import Path
from typing import Iterable, Optional

from loguru import logger

from ..models import ServiceInstance
from ..utils.parser import FileDescriptor, ServiceInstanceParser
from .exporter import record_error
from .filters import OrgFilter
from .group import gather_group
from .registry import MigratorRegistry
from .strategy import MigrationContext


class ServiceInstanceImporter:
    """Imports single service instances through their migrator."""

    def __init__(self, context: MigrationContext, registry: MigratorRegistry):
        self.context = context
        self.registry = registry
        self.semaphore = asyncio.Semaphore(context.max_workers)
        self.logger = logger.bind(component='ServiceInstanceImporter')

    async def import_managed_service(
        self, org: str, space: str, instance: ServiceInstance
    ) -> None:
        """Import one instance and record the outcome in the summary.

        Args:
            org: Target org name
            space: Target space name
            instance: Instance read from the export tree
        """
        async with self.semaphore:
            try:
                migrator, in_scope = await self.registry.lookup(
                    org, space, instance, False
                )
                if not in_scope or self.context.dry_run or migrator is None:
                    self.context.summary.add_skipped(
                        org, space, instance.name, instance.service
                    )
                    return

                migrator.validate(instance, False)

                self.logger.info(f'Importing {instance.name!r} to {org}/{space}')
                await migrator.migrate(self.context)
            except Exception as e:
                record_error(
                    self.context,
                    org,
                    space,
                    instance.name,
                    instance.service,
                    instance,
                    e,
                    action='importing',
                )
                return

            self.logger.debug(f'Finished importing {instance.name!r}')
            self.context.summary.add_successful(
                org, space, instance.name, instance.service
            )


class SpaceImporter:
    """Imports the records found under ``<dir>/<org>/<space>/``."""

    def __init__(
        self,
        context: MigrationContext,
        importer: ServiceInstanceImporter,
        parser: ServiceInstanceParser,
    ):
        self.context = context
        self.importer = importer
        self.parser = parser
        self.logger = logger.bind(component='SpaceImporter')

    async def import_space(self, directory: Path, org: str, space: str) -> None:
        """Import every record of a single space."""
        await self.import_records(self.parser.scan(directory, org=org, space=space))

    async def import_records(self, descriptors: Iterable[FileDescriptor]) -> None:
        """Load records and import them concurrently.

        Records missing a service, type or name are ignored, as are
        instances outside the instance allow-list.

        Raises:
            OSError: If a record cannot be read
            yaml.YAMLError: If a record is not valid YAML
        """
        work = []
        for descriptor in descriptors:
            instance = self.parser.unmarshal(descriptor.path)
            if not (instance.service and instance.type and instance.name):
                self.logger.debug(f'Ignoring incomplete record {descriptor.path}')
                continue
            if not self.context.should_migrate_instance(instance.name):
                continue
            work.append((descriptor, instance))

        await gather_group(
            self.importer.import_managed_service(d.org, d.space, instance)
            for d, instance in work
        )


class OrgImporter:
    """Imports whole orgs from the export tree."""

    def __init__(self, space_importer: SpaceImporter, org_filter: Optional[OrgFilter] = None):
        self.space_importer = space_importer
        self.org_filter = org_filter or OrgFilter()
        self.logger = logger.bind(component='OrgImporter')

    async def import_orgs(self, directory: Path, *orgs: str) -> None:
        """Import the named orgs that pass the include and exclude filters."""
        await self._import(directory, orgs)

    async def import_all(self, directory: Path) -> None:
        """Import every org directory that passes the filters."""
        await self._import(directory, list(self.space_importer.parser.orgs(directory)))

    async def _import(self, directory: Path, orgs: Iterable[str]) -> None:
        descriptors = []
        for org in orgs:
            if not self.org_filter.allows(org):
                self.logger.info(f'Excluding {org!r}')
                continue
            descriptors.extend(self.space_importer.parser.scan(directory, org=org))

        await self.space_importer.import_records(descriptors)
        self.logger.info('Finished importing services')
