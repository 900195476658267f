"""Migration of CredHub service broker instances.

The broker keeps the real credentials in CredHub and hands out a
``credhub-ref`` in every binding. Export resolves that reference, import
creates a fresh instance with the credentials as parameters.
"""

from typing import Any, Dict, Optional, Protocol

import aiohttp
from loguru import logger

from ..config.config import CredHubConfig
from ..models import ServiceInstance
from .errors import MigrationError, MigrationValidationError
from .strategy import (
    MigrationContext,
    Sequence,
    SequenceMigrator,
    apply_domain_replacement,
    create_service_instance_if_missing,
)

CREDHUB_REF = 'credhub-ref'


class SecretStore(Protocol):
    """Reads credentials stored under a name."""

    async def get_credentials(self, name: str) -> Dict[str, Any]:
        ...


class CredHubClient:
    """Minimal CredHub API client authenticated with UAA client credentials."""

    def __init__(self, config: CredHubConfig):
        self.config = config
        self.logger = logger.bind(component='CredHubClient')

    async def _token(self, session: aiohttp.ClientSession) -> str:
        async with session.post(
            f'{self.config.uaa_url.rstrip("/")}/oauth/token',
            data={'grant_type': 'client_credentials'},
            auth=aiohttp.BasicAuth(self.config.client_id, self.config.client_secret),
        ) as response:
            data = await response.json(content_type=None)
            if response.status >= 400 or not (data or {}).get('access_token'):
                raise MigrationError(
                    f'failed to authenticate with CredHub UAA: HTTP {response.status}'
                )
            return data['access_token']

    async def get_credentials(self, name: str) -> Dict[str, Any]:
        """Fetch the current value stored under a CredHub name.

        Args:
            name: CredHub credential name

        Returns:
            Credential value
        """
        connector = aiohttp.TCPConnector(ssl=False) if self.config.skip_ssl_validation else None
        async with aiohttp.ClientSession(connector=connector) as session:
            token = await self._token(session)
            async with session.get(
                f'{self.config.url.rstrip("/")}/api/v1/data',
                params={'name': name, 'current': 'true'},
                headers={'Authorization': f'Bearer {token}'},
            ) as response:
                body = await response.json(content_type=None)
                if response.status >= 400:
                    raise MigrationError(
                        f'failed to read {name} from CredHub: HTTP {response.status}'
                    )

        entries = (body or {}).get('data') or []
        if not entries:
            raise MigrationError(f'no credentials stored under {name}')
        value = entries[0].get('value')
        if not isinstance(value, dict):
            raise MigrationError(f'credentials under {name} are not a JSON object')
        return value


def lookup_credhub_ref(instance: ServiceInstance) -> str:
    """Find the CredHub reference in the instance's bindings.

    Raises:
        MigrationValidationError: If no binding carries a reference
    """
    for binding in instance.service_bindings:
        ref = (binding.credentials or {}).get(CREDHUB_REF)
        if ref:
            return ref
    raise MigrationValidationError(
        f"failed to find credhub-ref in service binding for instance guid '{instance.guid}'"
    )


class CredHubMigrator(SequenceMigrator):
    """Exports CredHub backed credentials and recreates the instance."""

    def __init__(
        self,
        org: str,
        space: str,
        instance: ServiceInstance,
        is_export: bool,
        secret_store: Optional[SecretStore] = None,
    ):
        self.org = org
        self.space = space
        self.instance = instance
        self.secret_store = secret_store
        if is_export:
            sequence = Sequence(f'Exporting {instance.name}', self._retrieve_credentials)
        else:
            sequence = Sequence(f'Importing {instance.name}', self._create)
        super().__init__(sequence)

    def validate(self, instance: ServiceInstance, is_export: bool) -> None:
        if is_export:
            lookup_credhub_ref(instance)
        elif not instance.credentials:
            raise MigrationValidationError(
                f'service instance {instance.name} has no credentials to import'
            )

    async def _retrieve_credentials(self, context: MigrationContext) -> ServiceInstance:
        if self.secret_store is None:
            raise MigrationError('no CredHub configured for the source foundation')
        ref = lookup_credhub_ref(self.instance)
        self.logger.debug(f'Retrieving credentials of {self.instance.name} from {ref}')
        self.instance.credentials = await self.secret_store.get_credentials(ref)
        return self.instance

    async def _create(self, context: MigrationContext) -> ServiceInstance:
        instance = apply_domain_replacement(self.instance, context.domains_to_replace)
        await create_service_instance_if_missing(
            context.target_client, self.org, self.space, instance, instance.credentials
        )
        return instance
