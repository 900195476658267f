"""Builds application manifests from a running foundation."""

from typing import Dict, List, Optional

from loguru import logger

from ..api.client import CloudFoundryClient
from ..api.exceptions import CloudFoundryNotFoundError
from ..models import App, Application, Docker, Manifest, Route, get_size_string
from .strategy import replace_domain


class ManifestExporter:
    """Reads an app's settings, routes and bindings into a manifest."""

    def __init__(self, client: CloudFoundryClient, domains_to_replace: Dict[str, str]):
        self.client = client
        self.domains_to_replace = domains_to_replace
        self.logger = logger.bind(component='ManifestExporter')

    async def export_app_manifest(self, app: App) -> Manifest:
        """Build the manifest of one application.

        Args:
            app: Application read from the v2 API

        Returns:
            Manifest holding that application
        """
        application = Application(
            name=app.name,
            env=app.environment or None,
            health_check_type=app.health_check_type,
            health_check_http_endpoint=app.health_check_http_endpoint,
            instances=app.instances,
            command=app.command,
            memory=get_size_string(app.memory),
            disk_quota=get_size_string(app.disk_quota),
            timeout=app.health_check_timeout,
        )
        if app.docker_image:
            application.docker = Docker(image=app.docker_image, username=app.docker_username)

        await self._add_lifecycle(app, application)

        routes = await self._routes(app)
        if routes:
            application.routes = routes
        else:
            application.no_route = True

        services = await self._service_names(app)
        if services:
            application.services = services

        return Manifest(applications=[application])

    async def _add_lifecycle(self, app: App, application: Application) -> None:
        try:
            response = await self.client.get(f'/v3/apps/{app.guid}')
        except CloudFoundryNotFoundError:
            self.logger.warning(f'App {app.name} not found in v3 API')
            return

        lifecycle = (response.data or {}).get('lifecycle') or {}
        data = lifecycle.get('data') or {}
        if lifecycle.get('type') == 'buildpack':
            application.buildpacks = data.get('buildpacks') or None
            application.stack = data.get('stack')

    async def _routes(self, app: App) -> List[Route]:
        response = await self.client.get(f'/v3/apps/{app.guid}/routes')
        routes = []
        for resource in (response.data or {}).get('resources') or []:
            url = resource.get('url')
            if url:
                routes.append(Route(route=replace_domain(url, self.domains_to_replace)))
        return routes

    async def _service_names(self, app: App) -> List[str]:
        bindings = await self.client.get_all_resources(
            f'/v2/apps/{app.guid}/service_bindings'
        )
        names = []
        for binding in bindings:
            instance_url: Optional[str] = (binding.get('entity') or {}).get(
                'service_instance_url'
            )
            if not instance_url:
                continue
            response = await self.client.get(instance_url)
            name = ((response.data or {}).get('entity') or {}).get('name')
            if name:
                names.append(name)
        return names
