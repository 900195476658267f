"""Service instance, binding and key models."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .manifest import Manifest

MANAGED_SERVICE_INSTANCE = 'managed_service_instance'
USER_PROVIDED_SERVICE_INSTANCE = 'user_provided_service_instance'


def _entity(resource: Dict[str, Any]) -> Dict[str, Any]:
    return resource.get('entity') or {}


def _guid(resource: Dict[str, Any]) -> str:
    return (resource.get('metadata') or {}).get('guid', '')


class ServiceBinding(BaseModel):
    """Binding between a service instance and an application."""

    guid: str = Field(default='', description='Binding GUID')
    name: Optional[str] = Field(default=None, description='Binding name')
    app_guid: str = Field(default='', description='Bound application GUID')
    service_instance_guid: str = Field(
        default='', description='Owning service instance GUID'
    )
    credentials: Optional[Dict[str, Any]] = Field(
        default=None, description='Binding credentials'
    )
    binding_options: Optional[Dict[str, Any]] = Field(
        default=None, description='Binding options'
    )
    gateway_data: Optional[Any] = Field(default=None, description='Gateway data')
    gateway_name: Optional[str] = Field(default=None, description='Gateway name')
    syslog_drain_url: Optional[str] = Field(
        default=None, description='Syslog drain URL'
    )
    volume_mounts: Optional[List[Any]] = Field(
        default=None, description='Volume mount payload'
    )
    app_url: Optional[str] = Field(default=None, description='Application URL')
    service_instance_url: Optional[str] = Field(
        default=None, description='Service instance URL'
    )

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> 'ServiceBinding':
        """Build a binding from a v2 API resource."""
        entity = _entity(resource)
        return cls(
            guid=_guid(resource),
            name=entity.get('name'),
            app_guid=entity.get('app_guid', ''),
            service_instance_guid=entity.get('service_instance_guid', ''),
            credentials=entity.get('credentials'),
            binding_options=entity.get('binding_options'),
            gateway_data=entity.get('gateway_data'),
            gateway_name=entity.get('gateway_name'),
            syslog_drain_url=entity.get('syslog_drain_url'),
            volume_mounts=entity.get('volume_mounts'),
            app_url=entity.get('app_url'),
            service_instance_url=entity.get('service_instance_url'),
        )


class ServiceKey(BaseModel):
    """Credentials issued by a broker that are not bound to an application."""

    guid: str = Field(default='', description='Service key GUID')
    name: str = Field(default='', description='Service key name')
    service_instance_guid: str = Field(
        default='', description='Owning service instance GUID'
    )
    credentials: Optional[Dict[str, Any]] = Field(
        default=None, description='Key credentials'
    )
    service_instance_url: Optional[str] = Field(
        default=None, description='Service instance URL'
    )

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> 'ServiceKey':
        """Build a service key from a v2 API resource."""
        entity = _entity(resource)
        return cls(
            guid=_guid(resource),
            name=entity.get('name', ''),
            service_instance_guid=entity.get('service_instance_guid', ''),
            credentials=entity.get('credentials'),
            service_instance_url=entity.get('service_instance_url'),
        )


class ServiceInstance(BaseModel):
    """A service instance as it is exported to and imported from disk."""

    name: str = Field(default='', description='Service instance name')
    guid: str = Field(default='', description='Source service instance GUID')
    type: str = Field(default='', description='Managed or user provided')
    tags: List[str] = Field(default_factory=list, description='Instance tags')
    params: Optional[Dict[str, Any]] = Field(
        default=None, description='Instance parameters'
    )
    credentials: Optional[Dict[str, Any]] = Field(
        default=None, description='Instance credentials'
    )
    service: str = Field(default='', description='Service label')
    plan: str = Field(default='', description='Service plan name')
    dashboard_url: Optional[str] = Field(default=None, description='Dashboard URL')
    route_service_url: Optional[str] = Field(
        default=None, description='Route service URL'
    )
    syslog_drain_url: Optional[str] = Field(
        default=None, description='Syslog drain URL'
    )
    service_bindings: List[ServiceBinding] = Field(
        default_factory=list, description='Service bindings'
    )
    service_keys: List[ServiceKey] = Field(
        default_factory=list, description='Service keys'
    )
    apps: Dict[str, str] = Field(
        default_factory=dict, description='Application names keyed by binding GUID'
    )
    app_manifest: Manifest = Field(
        default_factory=Manifest, description='Manifest of the bound applications'
    )

    # Backup flow
    backup_id: Optional[str] = Field(default=None, description='Backup ID')
    backup_date: Optional[str] = Field(default=None, description='Backup date')
    backup_time: Optional[str] = Field(default=None, description='Backup time')
    backup_file: Optional[str] = Field(default=None, description='Backup file path')
    backup_encryption_key: Optional[str] = Field(
        default=None, description='Backup encryption key'
    )

    @property
    def is_managed(self) -> bool:
        return self.type == MANAGED_SERVICE_INSTANCE

    @property
    def is_user_provided(self) -> bool:
        return self.type == USER_PROVIDED_SERVICE_INSTANCE
