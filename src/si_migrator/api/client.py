"""Cloud Foundry API client implementation."""

import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import aiohttp
from loguru import logger
from pydantic import BaseModel

from ..config.config import CloudFoundryConfig
from ..models import (
    App,
    Org,
    RemoteServiceInstance,
    Service,
    ServiceBinding,
    ServiceKey,
    ServicePlan,
    Space,
)
from .exceptions import (
    ClientConstructionError,
    CloudFoundryAPIError,
    CloudFoundryAuthenticationError,
    CloudFoundryNotFoundError,
    CloudFoundryServerError,
)
from .retry import DEFAULT_RETRY_PAUSE, DEFAULT_RETRY_TIMEOUT, do_with_retry, is_dns_error

USER_AGENT = 'si-migrator/0.1.0'
UAA_CLI_CLIENT = 'cf'

Params = Union[Dict[str, Any], Sequence[Tuple[str, Any]], None]


class APIResponse(BaseModel):
    """Standard API response wrapper."""

    status_code: int
    data: Any
    headers: Dict[str, str]
    success: bool


def _query(*filters: str) -> List[Tuple[str, str]]:
    return [('q', f) for f in filters]


def _error_message(status: int, data: Any) -> str:
    if isinstance(data, dict):
        if data.get('description'):
            return data['description']
        errors = data.get('errors')
        if errors and isinstance(errors, list):
            return '; '.join(e.get('detail') or e.get('title', '') for e in errors)
        if data.get('error_description'):
            return data['error_description']
    return f'HTTP {status}'


class CloudFoundryClient:
    """Cloud Foundry API client with UAA authentication and retries.

    The HTTP session and the access token are created on first use and
    shared by every call made through this client. If creating them fails,
    the failure is kept and raised again for every later call.
    """

    def __init__(
        self,
        config: CloudFoundryConfig,
        retry_timeout: float = DEFAULT_RETRY_TIMEOUT,
        retry_pause: float = DEFAULT_RETRY_PAUSE,
    ):
        """Initialize Cloud Foundry client.

        Args:
            config: Cloud Foundry API configuration
            retry_timeout: Seconds to keep retrying transient failures
            retry_pause: Seconds to wait between retries
        """
        self.config = config
        self.api_url = config.url.rstrip('/')
        self.retry_timeout = retry_timeout
        self.retry_pause = retry_pause
        self.logger = logger.bind(component='CloudFoundryClient', api=self.api_url)

        self._session: Optional[aiohttp.ClientSession] = None
        self._token: Optional[str] = None
        self._construction_error: Optional[ClientConstructionError] = None
        self._lock = asyncio.Lock()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is not None:
            return self._session

        async with self._lock:
            if self._construction_error is not None:
                raise self._construction_error
            if self._session is None:
                try:
                    self._session = await self._create_session()
                except (
                    aiohttp.ClientError,
                    asyncio.TimeoutError,
                    CloudFoundryAPIError,
                ) as e:
                    self._construction_error = ClientConstructionError(
                        f'failed to create client for {self.api_url}: {e}'
                    )
                    raise self._construction_error from e
                self.logger.info(f'Initialized Cloud Foundry client for {self.api_url}')

        return self._session

    async def _create_session(self) -> aiohttp.ClientSession:
        connector = None
        if self.config.skip_ssl_validation:
            connector = aiohttp.TCPConnector(ssl=False)

        session = aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            headers={'User-Agent': USER_AGENT, 'Accept': 'application/json'},
        )
        try:
            self._token = await self._fetch_token(session)
        except BaseException:
            await session.close()
            raise
        return session

    async def _fetch_token(self, session: aiohttp.ClientSession) -> str:
        """Get an access token from the UAA advertised by the API.

        Args:
            session: Session to authenticate with

        Returns:
            Bearer access token
        """
        async with session.get(f'{self.api_url}/v2/info') as response:
            if response.status >= 400:
                raise CloudFoundryAPIError(
                    f'failed to read API info: HTTP {response.status}',
                    status_code=response.status,
                )
            info = await response.json(content_type=None)

        token_endpoint = (info or {}).get('token_endpoint') or (info or {}).get(
            'authorization_endpoint'
        )
        if not token_endpoint:
            raise CloudFoundryAuthenticationError('API info has no token endpoint')

        if self.config.uses_client_credentials:
            form = {'grant_type': 'client_credentials'}
            auth = aiohttp.BasicAuth(self.config.client_id, self.config.client_secret)
        else:
            form = {
                'grant_type': 'password',
                'username': self.config.username,
                'password': self.config.password,
            }
            auth = aiohttp.BasicAuth(UAA_CLI_CLIENT, '')

        async with session.post(
            f'{token_endpoint.rstrip("/")}/oauth/token', data=form, auth=auth
        ) as response:
            data = await response.json(content_type=None)
            if response.status >= 400:
                raise CloudFoundryAuthenticationError(
                    f'Authentication failed: {_error_message(response.status, data)}',
                    status_code=response.status,
                    response_data=data,
                )

        token = (data or {}).get('access_token')
        if not token:
            raise CloudFoundryAuthenticationError('UAA returned no access token')
        return token

    async def _refresh_token(self) -> None:
        async with self._lock:
            self._token = await self._fetch_token(self._session)

    def _build_url(self, endpoint: str) -> str:
        """Build full API URL from endpoint or absolute URL."""
        if endpoint.startswith(('http://', 'https://')):
            return endpoint
        return f'{self.api_url}/{endpoint.lstrip("/")}'

    async def _handle_response(self, response: aiohttp.ClientResponse) -> APIResponse:
        """Convert a raw response to an APIResponse or raise.

        Raises:
            CloudFoundryAPIError: For various API errors
        """
        headers = dict(response.headers)

        text = await response.text()
        try:
            data = json.loads(text) if text else None
        except ValueError:
            data = text

        if response.status == 401:
            raise CloudFoundryAuthenticationError(
                'Authentication failed', status_code=401, response_data=data
            )
        if response.status == 404:
            raise CloudFoundryNotFoundError(
                f'Resource not found: {_error_message(404, data)}',
                status_code=404,
                response_data=data if isinstance(data, dict) else None,
            )
        if response.status >= 500:
            raise CloudFoundryServerError(
                f'Server error: {_error_message(response.status, data)}',
                status_code=response.status,
                response_data=data if isinstance(data, dict) else None,
            )
        if response.status >= 400:
            raise CloudFoundryAPIError(
                f'API request failed: {_error_message(response.status, data)}',
                status_code=response.status,
                response_data=data if isinstance(data, dict) else None,
            )

        return APIResponse(
            status_code=response.status,
            data=data,
            headers=headers,
            success=200 <= response.status < 300,
        )

    async def request(
        self,
        method: str,
        endpoint: str,
        params: Params = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> APIResponse:
        """Make an authenticated request against a v2 or v3 endpoint.

        Args:
            method: HTTP method
            endpoint: API path or absolute URL
            params: Query parameters
            data: JSON request body

        Returns:
            API response
        """
        session = await self._ensure_session()
        url = self._build_url(endpoint)

        for attempt in range(2):
            headers = {'Authorization': f'Bearer {self._token}'}
            try:
                async with session.request(
                    method, url, params=params, json=data, headers=headers
                ) as response:
                    return await self._handle_response(response)
            except CloudFoundryAuthenticationError:
                if attempt:
                    raise
                self.logger.debug('Access token rejected, refreshing')
                await self._refresh_token()
            except aiohttp.ClientError as e:
                if is_dns_error(e):
                    raise
                self.logger.error(f'Network error during API request: {e}')
                raise CloudFoundryAPIError(f'Network error: {e}') from e

        raise CloudFoundryAuthenticationError('Authentication failed')

    async def with_retry(self, operation):
        """Run an operation with this client's retry settings."""
        return await do_with_retry(
            operation, timeout=self.retry_timeout, pause=self.retry_pause
        )

    async def get(self, endpoint: str, params: Params = None) -> APIResponse:
        """Make a GET request, retrying transient failures."""
        return await self.with_retry(lambda: self.request('GET', endpoint, params=params))

    async def post(
        self, endpoint: str, data: Dict[str, Any], params: Params = None
    ) -> APIResponse:
        """Make a POST request."""
        return await self.request('POST', endpoint, params=params, data=data)

    async def put(
        self, endpoint: str, data: Dict[str, Any], params: Params = None
    ) -> APIResponse:
        """Make a PUT request."""
        return await self.request('PUT', endpoint, params=params, data=data)

    async def get_all_resources(
        self, endpoint: str, params: Params = None
    ) -> List[Dict[str, Any]]:
        """Collect the resources of every page of a v2 listing.

        Args:
            endpoint: API endpoint
            params: Query parameters for the first page

        Returns:
            All resources
        """
        resources: List[Dict[str, Any]] = []
        next_url: Optional[str] = endpoint

        while next_url:
            response = await self.get(next_url, params=params)
            page = response.data or {}
            resources.extend(page.get('resources') or [])
            next_url = page.get('next_url')
            params = None

        return resources

    async def _first(self, endpoint: str, params: Params, what: str) -> Dict[str, Any]:
        resources = await self.get_all_resources(endpoint, params)
        if not resources:
            raise CloudFoundryNotFoundError(f'{what} not found', status_code=404)
        return resources[0]

    async def get_org_by_name(self, name: str) -> Org:
        resource = await self._first(
            '/v2/organizations', _query(f'name:{name}'), f'org {name!r}'
        )
        return Org.from_resource(resource)

    async def get_org_by_guid(self, guid: str) -> Org:
        response = await self.get(f'/v2/organizations/{guid}')
        return Org.from_resource(response.data)

    async def get_space_by_name(self, name: str, org_guid: str) -> Space:
        resource = await self._first(
            '/v2/spaces',
            _query(f'name:{name}', f'organization_guid:{org_guid}'),
            f'space {name!r}',
        )
        return Space.from_resource(resource)

    async def list_spaces(self) -> List[Space]:
        return [Space.from_resource(r) for r in await self.get_all_resources('/v2/spaces')]

    async def list_spaces_by_query(self, params: Params) -> List[Space]:
        """List one page of spaces.

        Args:
            params: Query parameters, including ``page`` and ``results-per-page``

        Returns:
            Spaces on the requested page
        """
        response = await self.get('/v2/spaces', params=params)
        resources = (response.data or {}).get('resources') or []
        return [Space.from_resource(r) for r in resources]

    async def list_space_service_instances(
        self, space_guid: str
    ) -> List[RemoteServiceInstance]:
        resources = await self.get_all_resources(
            f'/v2/spaces/{space_guid}/service_instances'
        )
        return [RemoteServiceInstance.from_resource(r) for r in resources]

    async def list_service_instances_by_query(
        self, *filters: str
    ) -> List[RemoteServiceInstance]:
        resources = await self.get_all_resources(
            '/v2/service_instances', _query(*filters)
        )
        return [RemoteServiceInstance.from_resource(r) for r in resources]

    async def list_user_provided_service_instances_by_query(
        self, *filters: str
    ) -> List[RemoteServiceInstance]:
        resources = await self.get_all_resources(
            '/v2/user_provided_service_instances', _query(*filters)
        )
        instances = [RemoteServiceInstance.from_resource(r) for r in resources]
        for instance in instances:
            instance.type = instance.type or 'user_provided_service_instance'
        return instances

    async def get_service_instance_by_guid(self, guid: str) -> RemoteServiceInstance:
        response = await self.get(f'/v2/service_instances/{guid}')
        return RemoteServiceInstance.from_resource(response.data)

    async def get_service_instance_params(self, guid: str) -> Dict[str, Any]:
        response = await self.get(f'/v2/service_instances/{guid}/parameters')
        return response.data or {}

    async def list_service_bindings_by_query(self, *filters: str) -> List[ServiceBinding]:
        resources = await self.get_all_resources('/v2/service_bindings', _query(*filters))
        return [ServiceBinding.from_resource(r) for r in resources]

    async def list_service_keys_by_query(self, *filters: str) -> List[ServiceKey]:
        resources = await self.get_all_resources('/v2/service_keys', _query(*filters))
        return [ServiceKey.from_resource(r) for r in resources]

    async def get_service_plan_by_guid(self, guid: str) -> ServicePlan:
        response = await self.get(f'/v2/service_plans/{guid}')
        return ServicePlan.from_resource(response.data)

    async def list_service_plans_by_query(self, *filters: str) -> List[ServicePlan]:
        resources = await self.get_all_resources('/v2/service_plans', _query(*filters))
        return [ServicePlan.from_resource(r) for r in resources]

    async def get_service_by_guid(self, guid: str) -> Service:
        response = await self.get(f'/v2/services/{guid}')
        return Service.from_resource(response.data)

    async def list_services_by_query(self, *filters: str) -> List[Service]:
        resources = await self.get_all_resources('/v2/services', _query(*filters))
        return [Service.from_resource(r) for r in resources]

    async def get_app_by_guid(self, guid: str) -> App:
        response = await self.get(f'/v2/apps/{guid}')
        return App.from_resource(response.data)

    async def find_app_by_name(self, name: str, space_guid: str) -> Optional[App]:
        resources = await self.get_all_resources(
            '/v2/apps', _query(f'name:{name}', f'space_guid:{space_guid}')
        )
        if not resources:
            return None
        return App.from_resource(resources[0])

    async def create_app(self, name: str, space_guid: str, state: str = 'STOPPED') -> App:
        response = await self.post(
            '/v2/apps', {'name': name, 'space_guid': space_guid, 'state': state}
        )
        return App.from_resource(response.data)

    async def create_service_instance(
        self,
        name: str,
        space_guid: str,
        plan_guid: str,
        parameters: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
    ) -> RemoteServiceInstance:
        body: Dict[str, Any] = {
            'name': name,
            'space_guid': space_guid,
            'service_plan_guid': plan_guid,
        }
        if parameters:
            body['parameters'] = parameters
        if tags:
            body['tags'] = tags
        response = await self.post(
            '/v2/service_instances', body, params={'accepts_incomplete': 'true'}
        )
        return RemoteServiceInstance.from_resource(response.data)

    async def update_service_instance(
        self,
        guid: str,
        name: str,
        plan_guid: str,
        parameters: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
    ) -> RemoteServiceInstance:
        body: Dict[str, Any] = {'name': name, 'service_plan_guid': plan_guid}
        if parameters:
            body['parameters'] = parameters
        if tags is not None:
            body['tags'] = tags
        response = await self.put(
            f'/v2/service_instances/{guid}', body, params={'accepts_incomplete': 'true'}
        )
        return RemoteServiceInstance.from_resource(response.data)

    async def create_user_provided_service_instance(
        self,
        name: str,
        space_guid: str,
        credentials: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
        syslog_drain_url: Optional[str] = None,
        route_service_url: Optional[str] = None,
    ) -> RemoteServiceInstance:
        body = {
            'name': name,
            'space_guid': space_guid,
            'credentials': credentials or {},
            'tags': tags or [],
            'syslog_drain_url': syslog_drain_url or '',
            'route_service_url': route_service_url or '',
        }
        response = await self.post('/v2/user_provided_service_instances', body)
        return RemoteServiceInstance.from_resource(response.data)

    async def update_user_provided_service_instance(
        self,
        guid: str,
        name: str,
        credentials: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
        syslog_drain_url: Optional[str] = None,
        route_service_url: Optional[str] = None,
    ) -> RemoteServiceInstance:
        body = {
            'name': name,
            'credentials': credentials or {},
            'tags': tags or [],
            'syslog_drain_url': syslog_drain_url or '',
            'route_service_url': route_service_url or '',
        }
        response = await self.put(f'/v2/user_provided_service_instances/{guid}', body)
        return RemoteServiceInstance.from_resource(response.data)

    async def create_service_key(
        self,
        name: str,
        service_instance_guid: str,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> ServiceKey:
        body: Dict[str, Any] = {
            'name': name,
            'service_instance_guid': service_instance_guid,
        }
        if parameters:
            body['parameters'] = parameters
        response = await self.post('/v2/service_keys', body)
        return ServiceKey.from_resource(response.data)

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session is not None:
            await self._session.close()
            self._session = None
