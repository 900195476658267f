"""Migration of services whose instances live only in the Cloud Controller DB.

Brokers such as ECS and SQL Server keep no state of their own about an
instance's bindings, so the rows are moved directly: exported from the
source platform, deleted from the source CCDB once the exported record is
saved, then inserted into the target CCDB with the same GUIDs.
"""

import asyncio
from typing import List

from loguru import logger

from ..api.client import CloudFoundryClient
from ..api.exceptions import CloudFoundryAPIError
from ..ccdb.exceptions import RepositoryError
from ..ccdb.repository import CloudControllerRepository
from ..config.config import ConfigurationError
from ..models import Manifest, ServiceBinding, ServiceInstance, ServiceKey
from .errors import MigrationError, MigrationValidationError
from .manifest import ManifestExporter
from .strategy import (
    MigrationContext,
    Sequence,
    SequenceMigrator,
    find_service,
    find_service_instance,
    find_service_plan,
    resolve_space,
)


class CloudControllerService:
    """Service instance operations backed by the CCDB and the platform API."""

    def __init__(
        self,
        repository: CloudControllerRepository,
        client: CloudFoundryClient,
        manifest_exporter: ManifestExporter,
    ):
        self.repository = repository
        self.client = client
        self.manifest_exporter = manifest_exporter
        self.logger = logger.bind(component='CloudControllerService')

    async def service_instance_exists(self, org: str, space: str, name: str) -> bool:
        target_space = await resolve_space(self.client, org, space)
        return await find_service_instance(self.client, target_space, name) is not None

    async def create(
        self, org: str, space: str, instance: ServiceInstance, key: str
    ) -> None:
        """Insert an instance into the CCDB unless its GUID is already there.

        Raises:
            MigrationValidationError: If the service or plan does not exist
        """
        target_space = await resolve_space(self.client, org, space)
        service = await find_service(self.client, instance.service)
        plan = await find_service_plan(
            self.client, instance.service, instance.plan, service=service
        )

        exists = await asyncio.to_thread(
            self.repository.service_instance_exists, instance.guid
        )
        if exists:
            self.logger.info(f'Service instance {instance.guid} already in ccdb')
            return

        await asyncio.to_thread(
            self.repository.create_service_instance,
            instance,
            target_space,
            plan,
            service,
            key,
        )

    async def delete(self, org: str, space: str, instance: ServiceInstance) -> None:
        """Remove an instance and its dependent rows from the CCDB.

        Raises:
            UnsupportedOperationError: If the instance is shared
        """
        source_space = await resolve_space(self.client, org, space)
        deleted = await asyncio.to_thread(
            self.repository.delete_service_instance, source_space.guid, instance.guid
        )
        if not deleted:
            raise RepositoryError(f'failed to delete service instance {instance.name}')

    async def create_service_key(self, instance: ServiceInstance, key: ServiceKey) -> None:
        await self.client.create_service_key(key.name, instance.guid, instance.params)

    async def create_app(self, org: str, space: str, name: str) -> str:
        """Return the GUID of an app, creating a stopped placeholder if missing."""
        target_space = await resolve_space(self.client, org, space)
        app = await self.client.find_app_by_name(name, target_space.guid)
        if app is not None:
            return app.guid
        self.logger.info(f'Creating placeholder app {name} in {org}/{space}')
        app = await self.client.create_app(name, target_space.guid, state='STOPPED')
        return app.guid

    async def create_service_binding(
        self, binding: ServiceBinding, app_guid: str, key: str
    ) -> None:
        await asyncio.to_thread(
            self.repository.create_service_binding, binding, app_guid, key
        )

    async def find_app_by_guid(self, guid: str) -> str:
        app = await self.client.get_app_by_guid(guid)
        return app.name

    async def download_manifest(self, org: str, space: str, app_name: str) -> Manifest:
        source_space = await resolve_space(self.client, org, space)
        app = await self.client.find_app_by_name(app_name, source_space.guid)
        if app is None:
            raise MigrationError(f'app {app_name} not found in {org}/{space}')
        return await self.manifest_exporter.export_app_manifest(app)


def export_from_ccdb(
    service: CloudControllerService, org: str, space: str, instance: ServiceInstance
):
    """Step: collect the names and manifests of the apps bound to the instance."""

    async def step(context: MigrationContext) -> ServiceInstance:
        instance.apps = {}
        for binding in instance.service_bindings:
            if not binding.app_guid:
                continue
            app_name = await service.find_app_by_guid(binding.app_guid)
            instance.apps[binding.guid] = app_name
            if instance.app_manifest.has_application(app_name):
                continue
            manifest = await service.download_manifest(org, space, app_name)
            instance.app_manifest.applications.extend(manifest.applications)
        return instance

    return step


def delete_from_ccdb(
    service: CloudControllerService, org: str, space: str, instance: ServiceInstance
):
    """Step: delete the exported instance from the source CCDB."""

    async def step(context: MigrationContext) -> None:
        await service.delete(org, space, instance)

    return step


def import_to_ccdb(
    service: CloudControllerService,
    org: str,
    space: str,
    instance: ServiceInstance,
    encryption_key: str,
):
    """Step: insert the instance, its bindings and its keys on the target."""

    async def step(context: MigrationContext) -> ServiceInstance:
        if await service.service_instance_exists(org, space, instance.name):
            raise MigrationValidationError(
                f'service instance name {instance.name} already exists'
            )
        if not encryption_key:
            raise ConfigurationError('ccdb encryption key is not set')

        await service.create(org, space, instance, encryption_key)

        for binding in instance.service_bindings:
            app_name = instance.apps.get(binding.guid)
            if not app_name:
                continue
            try:
                app_guid = await service.create_app(org, space, app_name)
            except CloudFoundryAPIError as e:
                logger.error(f'Failed to create app {app_name}, skipping binding: {e}')
                continue
            await service.create_service_binding(binding, app_guid, encryption_key)

        if context.ignore_service_keys:
            return instance

        errors: List[str] = []
        for key in instance.service_keys:
            try:
                await service.create_service_key(instance, key)
            except CloudFoundryAPIError as e:
                errors.append(f'{key.name}: {e}')
        if errors:
            raise MigrationError(f'failed to create service keys: {"; ".join(errors)}')

        return instance

    return step


class CloudControllerMigrator(SequenceMigrator):
    """Moves an instance between foundations through their CCDBs."""

    def __init__(
        self,
        org: str,
        space: str,
        instance: ServiceInstance,
        service: CloudControllerService,
        encryption_key: str,
        is_export: bool,
    ):
        cleanup = None
        if is_export:
            sequence = Sequence(
                f'Exporting {instance.name}',
                export_from_ccdb(service, org, space, instance),
            )
            cleanup = Sequence(
                f'Deleting {instance.name}',
                delete_from_ccdb(service, org, space, instance),
            )
        else:
            sequence = Sequence(
                f'Importing {instance.name}',
                import_to_ccdb(service, org, space, instance, encryption_key),
            )
        super().__init__(sequence, cleanup)

    def validate(self, instance: ServiceInstance, is_export: bool) -> None:
        if not instance.guid:
            raise MigrationValidationError(f'service instance {instance.name} has no guid')
        if not is_export and not instance.plan:
            raise MigrationValidationError(f'service instance {instance.name} has no plan')
