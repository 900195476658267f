"""Data models for service instances and Cloud Foundry resources."""

from .manifest import Application, Docker, Manifest, Route, get_size_string
from .platform import (
    App,
    LastOperation,
    Org,
    RemoteServiceInstance,
    Service,
    ServicePlan,
    Space,
)
from .service_instance import (
    MANAGED_SERVICE_INSTANCE,
    USER_PROVIDED_SERVICE_INSTANCE,
    ServiceBinding,
    ServiceInstance,
    ServiceKey,
)

__all__ = [
    'App',
    'Application',
    'Docker',
    'LastOperation',
    'MANAGED_SERVICE_INSTANCE',
    'Manifest',
    'Org',
    'RemoteServiceInstance',
    'Route',
    'Service',
    'ServiceBinding',
    'ServiceInstance',
    'ServiceKey',
    'ServicePlan',
    'Space',
    'USER_PROVIDED_SERVICE_INSTANCE',
    'get_size_string',
]
