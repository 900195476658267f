"""Backup and restore migration for database services.

Moving the data itself belongs to a backup backend. This module wires the
backend into export and import sequences and waits for the new instance.
"""

import asyncio
from typing import Optional, Protocol

from loguru import logger

from ..api.client import CloudFoundryClient
from ..models import RemoteServiceInstance, ServiceInstance
from .errors import MigrationError
from .strategy import (
    MigrationContext,
    Sequence,
    SequenceMigrator,
    create_service_instance_if_missing,
)

SUCCEEDED = 'succeeded'
FAILED = 'failed'


class BackupBackend(Protocol):
    """Takes and restores backups of service instances."""

    async def backup(self, org: str, space: str, instance: ServiceInstance) -> None:
        """Back up an instance and record the backup fields on it."""
        ...

    async def restore(self, org: str, space: str, instance: ServiceInstance) -> None:
        """Restore the backup recorded on an instance into it."""
        ...


async def wait_for_service_instance(
    client: CloudFoundryClient, guid: str, timeout: float, interval: float
) -> Optional[RemoteServiceInstance]:
    """Poll an instance until its last operation finishes.

    A timeout or cancellation is logged, and the last observed state is
    returned either way.

    Args:
        client: Client of the foundation holding the instance
        guid: Service instance GUID
        timeout: Seconds to keep polling
        interval: Seconds between polls

    Returns:
        The last observed instance, or None if it was never read

    Raises:
        MigrationError: If the last operation failed
    """
    observed: Optional[RemoteServiceInstance] = None

    async def poll() -> None:
        nonlocal observed
        while True:
            observed = await client.get_service_instance_by_guid(guid)
            state = observed.last_operation.state if observed.last_operation else SUCCEEDED
            if state == FAILED:
                raise MigrationError(f'service instance {observed.name} is in a failed state')
            if state == SUCCEEDED:
                return
            await asyncio.sleep(interval)

    try:
        await asyncio.wait_for(poll(), timeout)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        logger.warning(f'Gave up waiting for service instance {guid} after {timeout}s')
    return observed


class BackupRestoreMigrator(SequenceMigrator):
    """Exports with a backup, imports by creating the instance and restoring."""

    def __init__(
        self,
        org: str,
        space: str,
        instance: ServiceInstance,
        is_export: bool,
        backend: BackupBackend,
        poll_timeout: float = 900.0,
        poll_interval: float = 10.0,
    ):
        self.org = org
        self.space = space
        self.instance = instance
        self.backend = backend
        self.poll_timeout = poll_timeout
        self.poll_interval = poll_interval
        if is_export:
            sequence = Sequence(f'Exporting {instance.name}', self._backup)
        else:
            sequence = Sequence(
                f'Importing {instance.name}', self._create, self._restore
            )
        super().__init__(sequence)

    async def _backup(self, context: MigrationContext) -> ServiceInstance:
        await self.backend.backup(self.org, self.space, self.instance)
        return self.instance

    async def _create(self, context: MigrationContext) -> ServiceInstance:
        created = await create_service_instance_if_missing(
            context.target_client, self.org, self.space, self.instance
        )
        ready = await wait_for_service_instance(
            context.target_client, created.guid, self.poll_timeout, self.poll_interval
        )
        if ready is not None:
            self.instance.guid = ready.guid
        return self.instance

    async def _restore(self, context: MigrationContext) -> ServiceInstance:
        if not self.instance.backup_file:
            raise MigrationError(f'service instance {self.instance.name} has no backup')
        await self.backend.restore(self.org, self.space, self.instance)
        return self.instance
