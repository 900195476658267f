"""Tests for migrator selection."""

from unittest.mock import MagicMock

import pytest

from si_migrator.api.client import CloudFoundryClient
from si_migrator.ccdb.factory import DatabaseFactory
from si_migrator.config.config import (
    CloudControllerMigratorConfig,
    ConfigurationError,
    CredHubConfig,
    CredHubMigratorConfig,
    DatabaseConfig,
    MigratorKind,
    MigratorsConfig,
)
from si_migrator.migration.backup import BackupRestoreMigrator
from si_migrator.migration.cc import CloudControllerMigrator
from si_migrator.migration.credhub import CredHubMigrator
from si_migrator.migration.registry import (
    MigratorFactory,
    MigratorRegistry,
    migrator_kind,
)
from si_migrator.migration.strategy import (
    ManagedServiceMigrator,
    MigrationContext,
    UserProvidedServiceMigrator,
)
from si_migrator.models import (
    MANAGED_SERVICE_INSTANCE,
    USER_PROVIDED_SERVICE_INSTANCE,
    ServiceInstance,
)


def managed(service, name='si'):
    return ServiceInstance(
        name=name, guid='guid', type=MANAGED_SERVICE_INSTANCE, service=service, plan='p'
    )


def make_context():
    return MigrationContext(
        source_client=MagicMock(spec=CloudFoundryClient),
        target_client=MagicMock(spec=CloudFoundryClient),
    )


def ccdb(host):
    return DatabaseConfig(
        db_host=host, db_username='u', db_password='p', db_encryption_key='enc'
    )


class TestMigratorKind:
    """Test service label mapping."""

    def test_known_labels(self):
        """Test that each broker label maps to its kind."""
        assert migrator_kind('ecs-bucket') == MigratorKind.ECS
        assert migrator_kind('SQLServer') == MigratorKind.SQLSERVER
        assert migrator_kind('MSSQL-Broker') == MigratorKind.SQLSERVER
        assert migrator_kind('p.mysql') == MigratorKind.MYSQL
        assert migrator_kind('credhub') == MigratorKind.CREDHUB
        assert migrator_kind('elephantsql') is None


class TestMigratorFactory:
    """Test migrator construction."""

    def setup_method(self):
        """Set up test fixtures."""
        self.database_factory = MagicMock(spec=DatabaseFactory)
        self.context = make_context()
        self.migrators = MigratorsConfig(
            ecs=CloudControllerMigratorConfig(
                source_ccdb=ccdb('source'), target_ccdb=ccdb('target')
            ),
            credhub=CredHubMigratorConfig(
                source=CredHubConfig(
                    url='https://credhub',
                    uaa_url='https://uaa',
                    client_id='id',
                    client_secret='secret',
                )
            ),
        )

    def make_factory(self, **kwargs):
        return MigratorFactory(
            self.context, self.migrators, self.database_factory, **kwargs
        )

    @pytest.mark.asyncio
    async def test_ccdb_migrator_uses_direction_database(self):
        """Test that export connects to the source CCDB."""
        migrator = await self.make_factory().new('o', 's', managed('ecs-bucket'), True)

        assert isinstance(migrator, CloudControllerMigrator)
        (config,), _ = self.database_factory.new_ccdb.await_args
        assert config.db_host == 'source'

    @pytest.mark.asyncio
    async def test_ccdb_migrator_not_configured(self):
        """Test that a CCDB kind without settings is a configuration error."""
        with pytest.raises(ConfigurationError, match='sqlserver'):
            await self.make_factory().new('o', 's', managed('SQLServer'), False)

    @pytest.mark.asyncio
    async def test_credhub_export_uses_secret_store(self):
        """Test that the source CredHub is wired into export."""
        secret_store_factory = MagicMock()
        factory = self.make_factory(secret_store_factory=secret_store_factory)

        migrator = await factory.new('o', 's', managed('credhub'), True)

        assert isinstance(migrator, CredHubMigrator)
        secret_store_factory.assert_called_once_with(self.migrators.credhub.source)

    @pytest.mark.asyncio
    async def test_mysql_without_backend(self):
        """Test that a backup kind without a backend is a configuration error."""
        with pytest.raises(ConfigurationError, match='no backup backend'):
            await self.make_factory().new('o', 's', managed('p.mysql'), True)

    @pytest.mark.asyncio
    async def test_mysql_with_backend(self):
        """Test that a backend enables the backup migrator."""
        factory = self.make_factory(backup_backend=MagicMock())

        migrator = await factory.new('o', 's', managed('p.mysql'), False)

        assert isinstance(migrator, BackupRestoreMigrator)
        assert migrator.poll_timeout == 900.0

    @pytest.mark.asyncio
    async def test_user_provided(self):
        """Test that user provided instances always have a migrator."""
        instance = ServiceInstance(name='ups', type=USER_PROVIDED_SERVICE_INSTANCE)

        migrator = await self.make_factory().new('o', 's', instance, False)

        assert isinstance(migrator, UserProvidedServiceMigrator)

    @pytest.mark.asyncio
    async def test_unsupported_service(self):
        """Test that an unknown service has no migrator by default."""
        assert await self.make_factory().new('o', 's', managed('elephantsql'), True) is None

    @pytest.mark.asyncio
    async def test_default_migrator(self):
        """Test the opt-in fallback for unknown managed services."""
        factory = self.make_factory(use_default_migrator=True)

        migrator = await factory.new('o', 's', managed('elephantsql'), True)

        assert isinstance(migrator, ManagedServiceMigrator)


class TestMigratorRegistry:
    """Test the service allow-list."""

    def test_no_allow_list(self):
        """Test that every service is in scope without an allow-list."""
        registry = MigratorRegistry(MagicMock())

        assert registry.should_migrate(managed('anything'))

    def test_allow_list_by_label_or_kind(self):
        """Test matching by label and by migrator kind."""
        registry = MigratorRegistry(MagicMock(), ['ECS', 'elephantsql'])

        assert registry.should_migrate(managed('ecs-bucket'))
        assert registry.should_migrate(managed('ElephantSQL'))
        assert not registry.should_migrate(managed('SQLServer'))

    @pytest.mark.asyncio
    async def test_lookup_out_of_scope(self):
        """Test that out of scope instances never reach the factory."""
        factory = MagicMock(spec=MigratorFactory)
        registry = MigratorRegistry(factory, ['sqlserver'])

        migrator, in_scope = await registry.lookup('o', 's', managed('ecs-bucket'), True)

        assert migrator is None
        assert in_scope is False
        factory.new.assert_not_called()

    @pytest.mark.asyncio
    async def test_lookup_in_scope(self):
        """Test that in scope instances are built by the factory."""
        factory = MagicMock(spec=MigratorFactory)
        factory.new.return_value = 'migrator'
        registry = MigratorRegistry(factory, ['sqlserver'])

        result = await registry.lookup('o', 's', managed('MSSQL-Broker'), False)

        assert result == ('migrator', True)
