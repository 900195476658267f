"""Cloud Foundry resource models read from the v2 API."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def _split(resource: Dict[str, Any]):
    return (resource.get('metadata') or {}).get('guid', ''), resource.get('entity') or {}


class Org(BaseModel):
    """Cloud Foundry organization."""

    guid: str = Field(..., description='Organization GUID')
    name: str = Field(..., description='Organization name')

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> 'Org':
        guid, entity = _split(resource)
        return cls(guid=guid, name=entity.get('name', ''))


class Space(BaseModel):
    """Cloud Foundry space."""

    guid: str = Field(..., description='Space GUID')
    name: str = Field(..., description='Space name')
    organization_guid: str = Field(default='', description='Owning org GUID')

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> 'Space':
        guid, entity = _split(resource)
        return cls(
            guid=guid,
            name=entity.get('name', ''),
            organization_guid=entity.get('organization_guid', ''),
        )


class ServicePlan(BaseModel):
    """Service plan offered by a broker."""

    guid: str = Field(..., description='Plan GUID')
    name: str = Field(..., description='Plan name')
    service_guid: str = Field(default='', description='Owning service GUID')

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> 'ServicePlan':
        guid, entity = _split(resource)
        return cls(
            guid=guid,
            name=entity.get('name', ''),
            service_guid=entity.get('service_guid', ''),
        )


class Service(BaseModel):
    """Service offering."""

    guid: str = Field(..., description='Service GUID')
    label: str = Field(..., description='Service label')

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> 'Service':
        guid, entity = _split(resource)
        return cls(guid=guid, label=entity.get('label', ''))


class App(BaseModel):
    """Application as described by the v2 API."""

    guid: str = Field(..., description='Application GUID')
    name: str = Field(..., description='Application name')
    space_guid: str = Field(default='', description='Owning space GUID')
    state: Optional[str] = Field(default=None, description='STARTED or STOPPED')
    memory: Optional[int] = Field(default=None, description='Memory in MB')
    disk_quota: Optional[int] = Field(default=None, description='Disk in MB')
    instances: Optional[int] = Field(default=None, description='Instance count')
    command: Optional[str] = Field(default=None, description='Start command')
    environment: Optional[Dict[str, Any]] = Field(
        default=None, description='Environment variables'
    )
    health_check_type: Optional[str] = Field(default=None, description='Health check')
    health_check_http_endpoint: Optional[str] = Field(
        default=None, description='Health check endpoint'
    )
    health_check_timeout: Optional[int] = Field(
        default=None, description='Health check timeout'
    )
    docker_image: Optional[str] = Field(default=None, description='Docker image')
    docker_username: Optional[str] = Field(
        default=None, description='Docker registry username'
    )

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> 'App':
        guid, entity = _split(resource)
        return cls(
            guid=guid,
            name=entity.get('name', ''),
            space_guid=entity.get('space_guid', ''),
            state=entity.get('state'),
            memory=entity.get('memory'),
            disk_quota=entity.get('disk_quota'),
            instances=entity.get('instances'),
            command=entity.get('command'),
            environment=entity.get('environment_json'),
            health_check_type=entity.get('health_check_type'),
            health_check_http_endpoint=entity.get('health_check_http_endpoint'),
            health_check_timeout=entity.get('health_check_timeout'),
            docker_image=entity.get('docker_image'),
            docker_username=(entity.get('docker_credentials') or {}).get('username'),
        )


class LastOperation(BaseModel):
    """Last asynchronous operation performed on a service instance."""

    type: Optional[str] = Field(default=None, description='create, update, delete')
    state: Optional[str] = Field(
        default=None, description='in progress, succeeded or failed'
    )
    description: Optional[str] = Field(default=None, description='Broker message')


class RemoteServiceInstance(BaseModel):
    """Managed or user provided service instance as stored on a foundation."""

    guid: str = Field(..., description='Service instance GUID')
    name: str = Field(..., description='Service instance name')
    type: str = Field(default='', description='Managed or user provided')
    tags: List[str] = Field(default_factory=list, description='Tags')
    credentials: Optional[Dict[str, Any]] = Field(
        default=None, description='Credentials'
    )
    service_plan_guid: str = Field(default='', description='Plan GUID')
    space_guid: str = Field(default='', description='Space GUID')
    dashboard_url: Optional[str] = Field(default=None, description='Dashboard URL')
    route_service_url: Optional[str] = Field(
        default=None, description='Route service URL'
    )
    syslog_drain_url: Optional[str] = Field(
        default=None, description='Syslog drain URL'
    )
    last_operation: Optional[LastOperation] = Field(
        default=None, description='Last operation'
    )

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> 'RemoteServiceInstance':
        guid, entity = _split(resource)
        return cls(
            guid=guid,
            name=entity.get('name', ''),
            type=entity.get('type', ''),
            tags=entity.get('tags') or [],
            credentials=entity.get('credentials'),
            service_plan_guid=entity.get('service_plan_guid', ''),
            space_guid=entity.get('space_guid', ''),
            dashboard_url=entity.get('dashboard_url'),
            route_service_url=entity.get('route_service_url'),
            syslog_drain_url=entity.get('syslog_drain_url'),
            last_operation=entity.get('last_operation'),
        )
