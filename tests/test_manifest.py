"""Tests for application manifest export."""

from unittest.mock import MagicMock

import pytest

from si_migrator.api.client import APIResponse, CloudFoundryClient
from si_migrator.api.exceptions import CloudFoundryNotFoundError
from si_migrator.migration.manifest import ManifestExporter
from si_migrator.models import App, get_size_string


def response(data):
    return APIResponse(status_code=200, data=data, headers={}, success=True)


class TestGetSizeString:
    """Test size normalization."""

    @pytest.mark.parametrize(
        'size, expected',
        [(None, None), (0, None), (512, '512M'), (1024, '1G'), (2048, '2G'), (1536, '1G')],
    )
    def test_sizes(self, size, expected):
        """Test megabyte and gigabyte rendering."""
        assert get_size_string(size) == expected


class TestManifestExporter:
    """Test building manifests from the platform."""

    def setup_method(self):
        """Set up test fixtures."""
        self.client = MagicMock(spec=CloudFoundryClient)
        self.app = App(
            guid='app-guid',
            name='app1',
            memory=1024,
            disk_quota=512,
            instances=2,
            environment={'MODE': 'prod'},
            health_check_type='http',
            health_check_http_endpoint='/health',
        )
        self.v3_app = response(
            {
                'lifecycle': {
                    'type': 'buildpack',
                    'data': {'buildpacks': ['java'], 'stack': 'cflinuxfs4'},
                }
            }
        )
        self.routes = response({'resources': [{'url': 'app1.apps.cf1.example.com'}]})
        self.client.get.side_effect = self.get
        self.client.get_all_resources.return_value = [
            {'entity': {'service_instance_url': '/v2/service_instances/si-guid'}}
        ]

    async def get(self, endpoint, params=None):
        if endpoint == '/v3/apps/app-guid':
            return self.v3_app
        if endpoint == '/v3/apps/app-guid/routes':
            return self.routes
        if endpoint == '/v2/service_instances/si-guid':
            return response({'entity': {'name': 'bucket'}})
        raise AssertionError(f'unexpected request {endpoint}')

    @pytest.mark.asyncio
    async def test_full_manifest(self):
        """Test settings, lifecycle, routes and services."""
        exporter = ManifestExporter(self.client, {'cf1.example.com': 'cf2.example.com'})

        manifest = await exporter.export_app_manifest(self.app)

        (application,) = manifest.applications
        assert application.name == 'app1'
        assert application.memory == '1G'
        assert application.disk_quota == '512M'
        assert application.instances == 2
        assert application.env == {'MODE': 'prod'}
        assert application.buildpacks == ['java']
        assert application.stack == 'cflinuxfs4'
        assert [r.route for r in application.routes] == ['app1.apps.cf2.example.com']
        assert application.no_route is None
        assert application.services == ['bucket']
        assert application.health_check_http_endpoint == '/health'

    @pytest.mark.asyncio
    async def test_no_routes(self):
        """Test that an app without routes is marked no-route."""
        self.routes = response({'resources': []})
        self.client.get_all_resources.return_value = []

        manifest = await ManifestExporter(self.client, {}).export_app_manifest(self.app)

        application = manifest.applications[0]
        assert application.no_route is True
        assert application.routes is None
        assert application.services is None

    @pytest.mark.asyncio
    async def test_missing_v3_app(self):
        """Test that a missing v3 app only drops the lifecycle."""
        self.v3_app = None
        original = self.get

        async def get(endpoint, params=None):
            if endpoint == '/v3/apps/app-guid':
                raise CloudFoundryNotFoundError('not found', status_code=404)
            return await original(endpoint, params)

        self.client.get.side_effect = get

        manifest = await ManifestExporter(self.client, {}).export_app_manifest(self.app)

        assert manifest.applications[0].buildpacks is None

    @pytest.mark.asyncio
    async def test_docker_app(self):
        """Test that docker settings are exported."""
        self.app.docker_image = 'nginx:latest'
        self.app.docker_username = 'robot'
        self.v3_app = response({'lifecycle': {'type': 'docker', 'data': {}}})

        manifest = await ManifestExporter(self.client, {}).export_app_manifest(self.app)

        application = manifest.applications[0]
        assert application.docker.image == 'nginx:latest'
        assert application.docker.username == 'robot'
        assert application.buildpacks is None
