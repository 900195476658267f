"""Tests for the generic create-or-update migration flows."""

from unittest.mock import MagicMock

import pytest

from si_migrator.api.client import CloudFoundryClient
from si_migrator.migration.errors import MigrationValidationError
from si_migrator.migration.strategy import (
    ManagedServiceMigrator,
    MigrationContext,
    UserProvidedServiceMigrator,
    find_service_plan,
    replace_domain,
    replace_domains_in_credentials,
)
from si_migrator.models import (
    MANAGED_SERVICE_INSTANCE,
    USER_PROVIDED_SERVICE_INSTANCE,
    Org,
    RemoteServiceInstance,
    Service,
    ServiceInstance,
    ServicePlan,
    Space,
)


def make_client():
    """Build a target client that resolves org1/space1."""
    client = MagicMock(spec=CloudFoundryClient)
    client.get_org_by_name.return_value = Org(guid='org-guid', name='org1')
    client.get_space_by_name.return_value = Space(
        guid='space-guid', name='space1', organization_guid='org-guid'
    )
    client.list_services_by_query.return_value = [Service(guid='svc-guid', label='elephantsql')]
    client.list_service_plans_by_query.return_value = [
        ServicePlan(guid='other-guid', name='panda', service_guid='svc-guid'),
        ServicePlan(guid='plan-guid', name='turtle', service_guid='svc-guid'),
    ]
    client.list_service_instances_by_query.return_value = []
    client.list_user_provided_service_instances_by_query.return_value = []
    return client


def make_context(client, **kwargs):
    return MigrationContext(
        source_client=MagicMock(spec=CloudFoundryClient),
        target_client=client,
        **kwargs,
    )


class TestDomainReplacement:
    """Test rewriting of old domains."""

    def test_first_match_wins(self):
        """Test that only the first matching domain is replaced."""
        domains = {'cf1.example.com': 'cf2.example.com', 'example.com': 'other.org'}

        result = replace_domain('https://app.cf1.example.com/path', domains)

        assert result == 'https://app.cf2.example.com/path'

    def test_no_match_is_unchanged(self):
        """Test that values without an old domain are returned as is."""
        assert replace_domain('https://elsewhere.net', {'cf1.example.com': 'x'}) == (
            'https://elsewhere.net'
        )
        assert replace_domain(None, {'cf1.example.com': 'x'}) is None
        assert replace_domain('', {'cf1.example.com': 'x'}) == ''

    def test_nested_credentials(self):
        """Test that strings are replaced at any depth."""
        credentials = {
            'uri': 'https://db.cf1.example.com',
            'port': 5432,
            'hosts': ['a.cf1.example.com', 'b.cf1.example.com'],
            'nested': {'url': 'http://cf1.example.com'},
        }

        result = replace_domains_in_credentials(
            credentials, {'cf1.example.com': 'cf2.example.com'}
        )

        assert result == {
            'uri': 'https://db.cf2.example.com',
            'port': 5432,
            'hosts': ['a.cf2.example.com', 'b.cf2.example.com'],
            'nested': {'url': 'http://cf2.example.com'},
        }


class TestFindServicePlan:
    """Test plan lookup."""

    @pytest.mark.asyncio
    async def test_exact_name(self):
        """Test that the plan is matched by exact name."""
        plan = await find_service_plan(make_client(), 'elephantsql', 'turtle')

        assert plan.guid == 'plan-guid'

    @pytest.mark.asyncio
    async def test_missing_plan(self):
        """Test that an unknown plan is a validation error."""
        with pytest.raises(MigrationValidationError, match="plan 'tiger'"):
            await find_service_plan(make_client(), 'elephantsql', 'tiger')

    @pytest.mark.asyncio
    async def test_missing_service(self):
        """Test that an unknown service is a validation error."""
        client = make_client()
        client.list_services_by_query.return_value = []

        with pytest.raises(MigrationValidationError, match="service 'elephantsql'"):
            await find_service_plan(client, 'elephantsql', 'turtle')


class TestManagedServiceMigrator:
    """Test the fallback managed service import."""

    def setup_method(self):
        """Set up test fixtures."""
        self.instance = ServiceInstance(
            name='db',
            guid='source-guid',
            type=MANAGED_SERVICE_INSTANCE,
            service='elephantsql',
            plan='turtle',
            tags=['sql'],
            params={'url': 'https://db.cf1.example.com'},
        )

    @pytest.mark.asyncio
    async def test_export_returns_instance(self):
        """Test that export writes the instance as is."""
        client = make_client()
        migrator = ManagedServiceMigrator('org1', 'space1', self.instance, is_export=True)

        result = await migrator.migrate(make_context(client))

        assert result is self.instance
        client.create_service_instance.assert_not_called()

    @pytest.mark.asyncio
    async def test_existing_instance_is_updated(self):
        """Test that an instance with the same name is updated only."""
        client = make_client()
        client.list_service_instances_by_query.return_value = [
            RemoteServiceInstance(
                guid='target-guid', name='db', service_plan_guid='target-plan'
            )
        ]
        migrator = ManagedServiceMigrator('org1', 'space1', self.instance, is_export=False)

        await migrator.migrate(make_context(client))

        client.update_service_instance.assert_awaited_once_with(
            'target-guid', 'db', 'target-plan', self.instance.params, ['sql']
        )
        client.create_service_instance.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_instance_is_created(self):
        """Test that a missing instance is created only."""
        client = make_client()
        migrator = ManagedServiceMigrator('org1', 'space1', self.instance, is_export=False)

        await migrator.migrate(make_context(client))

        client.create_service_instance.assert_awaited_once_with(
            'db', 'space-guid', 'plan-guid', self.instance.params, ['sql']
        )
        client.update_service_instance.assert_not_called()
        client.list_service_instances_by_query.assert_awaited_once_with(
            'name:db', 'space_guid:space-guid'
        )

    @pytest.mark.asyncio
    async def test_dry_run_changes_nothing(self):
        """Test that a dry run neither creates nor updates."""
        client = make_client()
        migrator = ManagedServiceMigrator('org1', 'space1', self.instance, is_export=False)

        await migrator.migrate(make_context(client, dry_run=True))

        client.create_service_instance.assert_not_called()
        client.update_service_instance.assert_not_called()


class TestUserProvidedServiceMigrator:
    """Test user provided service import."""

    def setup_method(self):
        """Set up test fixtures."""
        self.instance = ServiceInstance(
            name='ups',
            guid='ups-guid',
            type=USER_PROVIDED_SERVICE_INSTANCE,
            credentials={'uri': 'https://api.cf1.example.com'},
            syslog_drain_url='syslog://logs.cf1.example.com',
        )

    @pytest.mark.asyncio
    async def test_create_with_replaced_domains(self):
        """Test that a missing instance is created with new domains."""
        client = make_client()
        migrator = UserProvidedServiceMigrator(
            'org1', 'space1', self.instance, is_export=False
        )
        context = make_context(
            client, domains_to_replace={'cf1.example.com': 'cf2.example.com'}
        )

        await migrator.migrate(context)

        client.create_user_provided_service_instance.assert_awaited_once_with(
            'ups',
            'space-guid',
            {'uri': 'https://api.cf2.example.com'},
            [],
            'syslog://logs.cf2.example.com',
            None,
        )
        client.update_user_provided_service_instance.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_existing(self):
        """Test that an existing instance is updated in place."""
        client = make_client()
        client.list_user_provided_service_instances_by_query.return_value = [
            RemoteServiceInstance(guid='existing-guid', name='ups')
        ]
        migrator = UserProvidedServiceMigrator(
            'org1', 'space1', self.instance, is_export=False
        )

        await migrator.migrate(make_context(client))

        client.update_user_provided_service_instance.assert_awaited_once()
        args = client.update_user_provided_service_instance.await_args.args
        assert args[0] == 'existing-guid'
        client.create_user_provided_service_instance.assert_not_called()
