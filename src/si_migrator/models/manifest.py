"""Application manifest models."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Docker(BaseModel):
    """Docker image settings of an application."""

    image: Optional[str] = Field(default=None, description='Docker image')
    username: Optional[str] = Field(default=None, description='Registry username')


class Route(BaseModel):
    """A single route entry in a manifest."""

    route: str = Field(..., description='Route URL')


class Application(BaseModel):
    """Application entry of a Cloud Foundry manifest."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(default='', description='Application name')
    buildpacks: Optional[List[str]] = Field(default=None, description='Buildpacks')
    command: Optional[str] = Field(default=None, description='Start command')
    disk_quota: Optional[str] = Field(default=None, description='Disk quota, e.g. 1G')
    docker: Optional[Docker] = Field(default=None, description='Docker settings')
    env: Optional[Dict[str, Any]] = Field(
        default=None, description='Environment variables'
    )
    health_check_type: Optional[str] = Field(
        default=None, alias='health-check-type', description='Health check type'
    )
    health_check_http_endpoint: Optional[str] = Field(
        default=None,
        alias='health-check-http-endpoint',
        description='Health check endpoint',
    )
    instances: Optional[int] = Field(default=None, description='Instance count')
    memory: Optional[str] = Field(default=None, description='Memory, e.g. 512M')
    no_route: Optional[bool] = Field(
        default=None, alias='no-route', description='App has no routes'
    )
    routes: Optional[List[Route]] = Field(default=None, description='Routes')
    services: Optional[List[str]] = Field(
        default=None, description='Bound service instance names'
    )
    stack: Optional[str] = Field(default=None, description='Stack')
    timeout: Optional[int] = Field(
        default=None, description='Health check timeout in seconds'
    )


class Manifest(BaseModel):
    """Cloud Foundry application manifest."""

    applications: List[Application] = Field(
        default_factory=list, description='Applications'
    )

    def has_application(self, name: str) -> bool:
        """Check whether the manifest already holds an application."""
        return any(app.name == name for app in self.applications)


def get_size_string(size_mb: Optional[int]) -> Optional[str]:
    """Normalize a size in megabytes to ``<int><M|G>``.

    Args:
        size_mb: Size in megabytes

    Returns:
        Size string, or None if no size was given
    """
    if not size_mb:
        return None
    if size_mb >= 1024:
        return f'{size_mb // 1024}G'
    return f'{size_mb}M'
