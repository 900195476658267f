"""Migration strategy interfaces and the generic create-or-update flows."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from ..api.client import CloudFoundryClient
from ..config.config import MigrationConfig
from ..models import (
    Org,
    RemoteServiceInstance,
    Service,
    ServiceInstance,
    ServicePlan,
    Space,
)
from .errors import MigrationValidationError
from .summary import Summary


class MigrationContext(BaseModel):
    """Context for migration operations."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    source_client: CloudFoundryClient = Field(..., description='Source foundation')
    target_client: CloudFoundryClient = Field(..., description='Target foundation')
    summary: Summary = Field(default_factory=Summary, description='Run outcomes')

    # Migration settings
    dry_run: bool = Field(default=False, description='Perform dry run without changes')
    ignore_service_keys: bool = Field(
        default=False, description='Do not recreate service keys'
    )
    export_dir: Path = Field(default=Path('export'), description='Export directory')
    instances: List[str] = Field(
        default_factory=list, description='Instance names to migrate'
    )
    domains_to_replace: Dict[str, str] = Field(
        default_factory=dict, description='Old domain to new domain mapping'
    )
    max_workers: int = Field(default=10, description='Maximum concurrent instances')

    @classmethod
    def from_config(
        cls,
        config: MigrationConfig,
        source_client: CloudFoundryClient,
        target_client: CloudFoundryClient,
    ) -> 'MigrationContext':
        return cls(
            source_client=source_client,
            target_client=target_client,
            dry_run=config.dry_run,
            ignore_service_keys=config.ignore_service_keys,
            export_dir=Path(config.export_dir),
            instances=config.instances,
            domains_to_replace=config.domains_to_replace,
            max_workers=config.max_workers,
        )

    def should_migrate_instance(self, name: str) -> bool:
        """Apply the instance name allow-list."""
        return not self.instances or name in self.instances


Step = Callable[[MigrationContext], Awaitable[Any]]


class Sequence:
    """Ordered steps run one after another.

    A failing step stops the sequence. The last step's result is the
    sequence's result.
    """

    def __init__(self, description: str, *steps: Step):
        self.description = description
        self.steps = steps
        self.logger = logger.bind(component='Sequence')

    async def run(self, context: MigrationContext) -> Any:
        result = None
        for index, step in enumerate(self.steps, start=1):
            self.logger.debug(f'{self.description}: step {index}/{len(self.steps)}')
            result = await step(context)
        return result


class ServiceInstanceMigrator(ABC):
    """Abstract base class for service instance migrators."""

    def __init__(self):
        self.logger = logger.bind(component=self.__class__.__name__)

    @abstractmethod
    def validate(self, instance: ServiceInstance, is_export: bool) -> None:
        """Reject an instance before anything is changed.

        Raises:
            MigrationValidationError: If the instance cannot be migrated
        """
        pass

    @abstractmethod
    async def migrate(self, context: MigrationContext) -> Optional[ServiceInstance]:
        """Run the migration.

        Returns:
            The migrated instance, or None if the input is unchanged
        """
        pass

    async def finalize(self, context: MigrationContext) -> None:
        """Run the steps that must wait until the exported record is saved."""
        pass


class SequenceMigrator(ServiceInstanceMigrator):
    """Migrator that runs a fixed sequence of steps.

    An optional cleanup sequence runs from :meth:`finalize`, once the
    exported record has been written to disk.
    """

    def __init__(self, sequence: Sequence, cleanup: Optional[Sequence] = None):
        super().__init__()
        self.sequence = sequence
        self.cleanup = cleanup

    def validate(self, instance: ServiceInstance, is_export: bool) -> None:
        pass

    async def migrate(self, context: MigrationContext) -> Optional[ServiceInstance]:
        result = await self.sequence.run(context)
        if isinstance(result, ServiceInstance):
            return result
        return None

    async def finalize(self, context: MigrationContext) -> None:
        if self.cleanup is not None:
            await self.cleanup.run(context)


def replace_domain(value: Optional[str], domains: Dict[str, str]) -> Optional[str]:
    """Swap the first configured old domain found in a value.

    Args:
        value: String that may contain an old domain
        domains: Old domain to new domain mapping

    Returns:
        The value with the domain replaced, or unchanged if none matched
    """
    if not value:
        return value
    for old, new in domains.items():
        if old and old in value:
            return value.replace(old, new)
    return value


def replace_domains_in_credentials(credentials: Any, domains: Dict[str, str]) -> Any:
    """Apply :func:`replace_domain` to every string in a credentials payload."""
    if isinstance(credentials, str):
        return replace_domain(credentials, domains)
    if isinstance(credentials, dict):
        return {
            k: replace_domains_in_credentials(v, domains) for k, v in credentials.items()
        }
    if isinstance(credentials, list):
        return [replace_domains_in_credentials(v, domains) for v in credentials]
    return credentials


def apply_domain_replacement(
    instance: ServiceInstance, domains: Dict[str, str]
) -> ServiceInstance:
    """Rewrite credentials and URLs of an instance for the target foundation."""
    if not domains:
        return instance
    instance.credentials = replace_domains_in_credentials(instance.credentials, domains)
    instance.syslog_drain_url = replace_domain(instance.syslog_drain_url, domains)
    instance.route_service_url = replace_domain(instance.route_service_url, domains)
    return instance


async def resolve_space(
    client: CloudFoundryClient, org_name: str, space_name: str
) -> Space:
    org: Org = await client.get_org_by_name(org_name)
    return await client.get_space_by_name(space_name, org.guid)


async def find_service(client: CloudFoundryClient, service_label: str) -> Service:
    """Find a service offering by label.

    Raises:
        MigrationValidationError: If the service does not exist
    """
    services = await client.list_services_by_query(f'label:{service_label}')
    if not services:
        raise MigrationValidationError(
            f'failed to find service {service_label!r} on target foundation'
        )
    return services[0]


async def find_service_plan(
    client: CloudFoundryClient,
    service_label: str,
    plan_name: str,
    service: Optional[Service] = None,
) -> ServicePlan:
    """Find a plan of a service by exact name.

    Raises:
        MigrationValidationError: If the service or the plan does not exist
    """
    if service is None:
        service = await find_service(client, service_label)
    plans = await client.list_service_plans_by_query(f'service_guid:{service.guid}')
    for plan in plans:
        if plan.name == plan_name:
            return plan
    raise MigrationValidationError(
        f'failed to find a service plan {plan_name!r} for service {service_label!r}'
    )


async def find_service_instance(
    client: CloudFoundryClient, space: Space, name: str, user_provided: bool = False
) -> Optional[RemoteServiceInstance]:
    filters = (f'name:{name}', f'space_guid:{space.guid}')
    if user_provided:
        found = await client.list_user_provided_service_instances_by_query(*filters)
    else:
        found = await client.list_service_instances_by_query(*filters)
    return found[0] if found else None


async def create_service_instance_if_missing(
    client: CloudFoundryClient,
    org: str,
    space: str,
    instance: ServiceInstance,
    parameters: Optional[Dict[str, Any]] = None,
) -> RemoteServiceInstance:
    """Create a managed instance unless one with the same name exists."""
    target_space = await resolve_space(client, org, space)
    existing = await find_service_instance(client, target_space, instance.name)
    if existing is not None:
        logger.info(f'Service instance {instance.name} already exists in {org}/{space}')
        return existing

    plan = await find_service_plan(client, instance.service, instance.plan)
    return await client.create_service_instance(
        instance.name, target_space.guid, plan.guid, parameters, instance.tags
    )


class ManagedServiceMigrator(SequenceMigrator):
    """Fallback for managed services without a dedicated migrator.

    Exporting writes the instance as is. Importing updates an existing
    instance with the same name or creates a new one.
    """

    def __init__(self, org: str, space: str, instance: ServiceInstance, is_export: bool):
        self.org = org
        self.space = space
        self.instance = instance
        if is_export:
            sequence = Sequence(f'Exporting {instance.name}', self._export)
        else:
            sequence = Sequence(f'Importing {instance.name}', self._create_or_update)
        super().__init__(sequence)

    async def _export(self, context: MigrationContext) -> ServiceInstance:
        return self.instance

    async def _create_or_update(self, context: MigrationContext) -> ServiceInstance:
        client = context.target_client
        instance = apply_domain_replacement(self.instance, context.domains_to_replace)

        target_space = await resolve_space(client, self.org, self.space)
        existing = await find_service_instance(client, target_space, instance.name)

        if existing is not None:
            if context.dry_run:
                self.logger.info(f'Would update service instance {instance.name}')
                return instance
            self.logger.info(f'Updating service instance {instance.name}')
            await client.update_service_instance(
                existing.guid,
                instance.name,
                existing.service_plan_guid,
                instance.params,
                instance.tags,
            )
            return instance

        plan = await find_service_plan(client, instance.service, instance.plan)
        if context.dry_run:
            self.logger.info(f'Would create service instance {instance.name}')
            return instance
        self.logger.info(f'Creating service instance {instance.name}')
        await client.create_service_instance(
            instance.name, target_space.guid, plan.guid, instance.params, instance.tags
        )
        return instance


class UserProvidedServiceMigrator(SequenceMigrator):
    """Creates or updates user-provided service instances."""

    def __init__(self, org: str, space: str, instance: ServiceInstance, is_export: bool):
        self.org = org
        self.space = space
        self.instance = instance
        if is_export:
            sequence = Sequence(f'Exporting {instance.name}', self._export)
        else:
            sequence = Sequence(f'Importing {instance.name}', self._create_or_update)
        super().__init__(sequence)

    async def _export(self, context: MigrationContext) -> ServiceInstance:
        return self.instance

    async def _create_or_update(self, context: MigrationContext) -> ServiceInstance:
        client = context.target_client
        instance = apply_domain_replacement(self.instance, context.domains_to_replace)

        target_space = await resolve_space(client, self.org, self.space)
        existing = await find_service_instance(
            client, target_space, instance.name, user_provided=True
        )

        if context.dry_run:
            action = 'update' if existing is not None else 'create'
            self.logger.info(f'Would {action} user provided service {instance.name}')
            return instance

        if existing is not None:
            self.logger.info(f'Updating user provided service {instance.name}')
            await client.update_user_provided_service_instance(
                existing.guid,
                instance.name,
                instance.credentials,
                instance.tags,
                instance.syslog_drain_url,
                instance.route_service_url,
            )
        else:
            self.logger.info(f'Creating user provided service {instance.name}')
            await client.create_user_provided_service_instance(
                instance.name,
                target_space.guid,
                instance.credentials,
                instance.tags,
                instance.syslog_drain_url,
                instance.route_service_url,
            )
        return instance
