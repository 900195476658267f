"""Export of service instances from the source foundation."""

import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml
from loguru import logger

from ..api.client import CloudFoundryClient
from ..api.exceptions import CloudFoundryAPIError, is_params_not_supported
from ..models import (
    USER_PROVIDED_SERVICE_INSTANCE,
    Manifest,
    Org,
    RemoteServiceInstance,
    ServiceInstance,
    Space,
)
from ..utils.parser import ServiceInstanceParser
from .errors import is_skippable
from .filters import OrgFilter
from .group import gather_group
from .registry import MigratorRegistry
from .strategy import MigrationContext

SPACES_PER_PAGE = 50


class ServiceInstanceExporter:
    """Exports the service instances of one space.

    Every instance is exported on its own. Its outcome goes to the run
    summary and never stops its siblings.
    """

    def __init__(
        self,
        context: MigrationContext,
        registry: MigratorRegistry,
        parser: ServiceInstanceParser,
    ):
        self.context = context
        self.registry = registry
        self.parser = parser
        self.semaphore = asyncio.Semaphore(context.max_workers)
        self.logger = logger.bind(component='ServiceInstanceExporter')

    @property
    def client(self) -> CloudFoundryClient:
        return self.context.source_client

    async def export_managed_services(
        self, org: Org, space: Space, directory: Path
    ) -> None:
        """Export every managed service instance of a space.

        Args:
            org: Source org
            space: Source space
            directory: Root of the export tree

        Raises:
            CloudFoundryAPIError: If the space's instances cannot be listed
        """
        try:
            instances = await self.client.list_space_service_instances(space.guid)
        except CloudFoundryAPIError as e:
            self.logger.error(
                f'Error getting managed service instances for {org.name}/{space.name}: {e}'
            )
            raise

        if not instances:
            self.logger.warning(
                f'No service instances found in org: {org.name!r}, space: {space.name!r}'
            )
            return

        await gather_group(
            self._export_managed_service(org, space, remote, directory)
            for remote in instances
        )

    async def _export_managed_service(
        self, org: Org, space: Space, remote: RemoteServiceInstance, directory: Path
    ) -> None:
        if not self.context.should_migrate_instance(remote.name):
            return

        async with self.semaphore:
            instance: Optional[ServiceInstance] = None
            try:
                instance = await self._build_service_instance(remote)
                migrator, in_scope = await self.registry.lookup(
                    org.name, space.name, instance, True
                )
                if not in_scope or self.context.dry_run or migrator is None:
                    self.context.summary.add_skipped(
                        org.name, space.name, instance.name, instance.service
                    )
                    return

                migrator.validate(instance, True)

                self.logger.info(
                    f'Exporting service {instance.service} from {org.name}/{space.name}'
                )
                migrated = await migrator.migrate(self.context)
                if migrated is not None:
                    instance = migrated
                    self._write_manifests(instance, directory, org.name, space.name)

                self.parser.marshal(instance, directory, org.name, space.name)
                await migrator.finalize(self.context)
            except Exception as e:
                record_error(
                    self.context,
                    org.name,
                    space.name,
                    instance.name if instance else remote.name,
                    instance.service if instance else '',
                    instance,
                    e,
                    action='exporting',
                )
                return

            self.logger.debug(f'Finished exporting {instance.name!r}')
            self.context.summary.add_successful(
                org.name, space.name, instance.name, instance.service
            )

    async def _build_service_instance(
        self, remote: RemoteServiceInstance
    ) -> ServiceInstance:
        query = f'service_instance_guid:{remote.guid}'
        bindings = await self.client.list_service_bindings_by_query(query)
        keys = await self.client.list_service_keys_by_query(query)

        try:
            params = await self.client.get_service_instance_params(remote.guid)
        except CloudFoundryAPIError as e:
            if not is_params_not_supported(e):
                raise
            params = None

        plan = await self.client.get_service_plan_by_guid(remote.service_plan_guid)
        service = await self.client.get_service_by_guid(plan.service_guid)

        return ServiceInstance(
            name=remote.name,
            guid=remote.guid,
            type=remote.type,
            tags=remote.tags,
            params=params or None,
            credentials=remote.credentials,
            plan=plan.name,
            service=service.label,
            dashboard_url=remote.dashboard_url,
            service_bindings=bindings,
            service_keys=keys,
        )

    def _write_manifests(
        self, instance: ServiceInstance, directory: Path, org: str, space: str
    ) -> None:
        for app in instance.app_manifest.applications:
            try:
                self.parser.marshal_manifest(
                    Manifest(applications=[app]), directory, org, space, app.name
                )
            except (OSError, yaml.YAMLError) as e:
                self.logger.error(f'Failed to save manifest of {app.name}: {e}')

    async def export_user_provided_services(
        self, org: Org, space: Space, directory: Path
    ) -> None:
        """Export every user provided service instance of a space.

        Raises:
            CloudFoundryAPIError: If the space's instances cannot be listed
        """
        upsis = await self.client.list_user_provided_service_instances_by_query(
            f'space_guid:{space.guid}'
        )

        for ups in upsis:
            if not self.context.should_migrate_instance(ups.name):
                continue

            instance = ServiceInstance(
                name=ups.name,
                guid=ups.guid,
                type=ups.type or USER_PROVIDED_SERVICE_INSTANCE,
                tags=ups.tags,
                credentials=ups.credentials,
                syslog_drain_url=ups.syslog_drain_url,
                route_service_url=ups.route_service_url,
                service=ups.name,
            )
            try:
                self.parser.marshal(instance, directory, org.name, space.name)
            except (OSError, yaml.YAMLError) as e:
                self.logger.warning(f'Cannot save instance {instance.name!r}: {e}')
                self.context.summary.add_failed(
                    org.name, space.name, instance.name, instance.service, e
                )
                continue

            self.context.summary.add_successful(
                org.name, space.name, instance.name, instance.service
            )


def record_error(
    context: MigrationContext,
    org: str,
    space: str,
    name: str,
    service: str,
    instance: Optional[ServiceInstance],
    error: Exception,
    action: str,
) -> None:
    """Record a failed instance as skipped or failed."""
    if is_skippable(error, instance):
        logger.warning(f'{error}, skipped {action} service instance {name}')
        context.summary.add_skipped(org, space, name, service, error)
        return
    logger.error(f'Error {action} service instance {name}: {error}')
    context.summary.add_failed(org, space, name, service, error)


class SpaceExporter:
    """Exports the managed and user provided instances of one space."""

    def __init__(self, exporter: ServiceInstanceExporter):
        self.exporter = exporter
        self.logger = logger.bind(component='SpaceExporter')

    async def export_space(self, directory: Path, org_name: str, space_name: str) -> None:
        """Export a single space.

        Raises:
            CloudFoundryNotFoundError: If the org or space does not exist
        """
        client = self.exporter.client
        org = await client.get_org_by_name(org_name)
        space = await client.get_space_by_name(space_name, org.guid)

        await export_org_space(self.exporter, org, space, directory)
        self.logger.info('Finished exporting services')


async def export_org_space(
    exporter: ServiceInstanceExporter, org: Org, space: Space, directory: Path
) -> None:
    """Export managed and user provided services of a space concurrently."""
    logger.info(f'Exporting {org.name}/{space.name}')
    await gather_group(
        [
            exporter.export_managed_services(org, space, directory),
            exporter.export_user_provided_services(org, space, directory),
        ]
    )


class OrgExporter:
    """Exports whole orgs, one task per space."""

    def __init__(
        self,
        exporter: ServiceInstanceExporter,
        org_filter: Optional[OrgFilter] = None,
        max_workers: int = 10,
    ):
        self.exporter = exporter
        self.org_filter = org_filter or OrgFilter()
        self.max_workers = max_workers
        self.logger = logger.bind(component='OrgExporter')

    async def export_orgs(self, directory: Path, *org_names: str) -> None:
        """Export the named orgs that pass the include and exclude filters."""
        client = self.exporter.client
        work = []

        for name in org_names:
            if not self.org_filter.allows(name):
                self.logger.debug(f'Excluding org {name!r}')
                continue

            self.logger.info(f'Exporting org {name!r}')
            org = await client.get_org_by_name(name)
            for space in await self._list_org_spaces(org):
                work.append((org, space))

        await self._run(work, directory)

    async def _list_org_spaces(self, org: Org) -> List[Space]:
        spaces: List[Space] = []
        page = 1
        while True:
            batch = await self.exporter.client.list_spaces_by_query(
                [
                    ('page', str(page)),
                    ('results-per-page', str(SPACES_PER_PAGE)),
                    ('q', f'organization_guid:{org.guid}'),
                ]
            )
            spaces.extend(batch)
            if len(batch) < SPACES_PER_PAGE:
                return spaces
            page += 1

    async def export_all(self, directory: Path) -> None:
        """Export every space of every org that passes the filters."""
        client = self.exporter.client
        orgs: Dict[str, Org] = {}
        work = []

        for space in await client.list_spaces():
            org = orgs.get(space.organization_guid)
            if org is None:
                org = await client.get_org_by_guid(space.organization_guid)
                orgs[space.organization_guid] = org

            if not self.org_filter.allows(org.name):
                self.logger.debug(f'Excluding {org.name}/{space.name}')
                continue
            work.append((org, space))

        await self._run(work, directory)

    async def _run(self, work: List[Tuple[Org, Space]], directory: Path) -> None:
        self.logger.debug('Waiting for export to finish...')
        await gather_group(
            (export_org_space(self.exporter, org, space, directory) for org, space in work),
            asyncio.Semaphore(self.max_workers),
        )
        self.logger.info('Finished exporting services')
