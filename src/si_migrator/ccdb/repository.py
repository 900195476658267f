"""Direct access to the Cloud Controller database."""

import json
import threading
import uuid
from typing import Any, List, Optional, Sequence

import pymysql
from loguru import logger

from ..models import Service, ServiceBinding, ServiceInstance, ServicePlan, Space
from . import queries
from .crypto import encrypt, generate_salt
from .exceptions import (
    RecordNotFoundError,
    RepositoryError,
    SaltDiscoveryError,
    TransactionError,
    UnsupportedOperationError,
)

USAGE_EVENT_CREATED = 'CREATED'
MANAGED_INSTANCE_EVENT_TYPE = 'managed_service_instance'
APP_BINDING_TYPE = 'app'


def _null_if_empty(value: Optional[str]) -> Optional[str]:
    return value if value else None


class CloudControllerRepository:
    """Reads and writes service instance rows in the Cloud Controller DB.

    One repository wraps one PyMySQL connection. Calls are serialized with a
    lock because the connection is shared by concurrent migrations that
    reach it through worker threads.
    """

    def __init__(self, connection: Any):
        """Initialize the repository.

        Args:
            connection: Open PyMySQL connection with autocommit disabled
        """
        self.connection = connection
        self.logger = logger.bind(component='CloudControllerRepository')
        self._lock = threading.RLock()
        self._salt_length: Optional[int] = None

    def close(self) -> None:
        with self._lock:
            self.connection.close()

    def _query(self, sql: str, args: Sequence[Any] = ()) -> List[tuple]:
        cursor = self.connection.cursor()
        try:
            cursor.execute(sql, args)
            return list(cursor.fetchall())
        except pymysql.MySQLError as e:
            raise RepositoryError(f'query failed: {e}') from e
        finally:
            cursor.close()

    def _execute(self, sql: str, args: Any = ()) -> int:
        cursor = self.connection.cursor()
        try:
            cursor.execute(sql, args)
            return cursor.rowcount
        except pymysql.MySQLError as e:
            raise RepositoryError(f'statement failed: {e}') from e
        finally:
            cursor.close()

    def _rollback(self, cause: Exception) -> None:
        """Roll back the open transaction.

        Raises:
            TransactionError: If the rollback itself fails
        """
        try:
            self.connection.rollback()
        except Exception as e:
            raise TransactionError(cause, e) from cause

    def _lookup_id(self, table: str, guid: str, description: str) -> int:
        rows = self._query(queries.select_id(table, limit_one=True), (guid,))
        if not rows:
            raise RecordNotFoundError(f'could not find {description} with id {guid}')
        return rows[0][0]

    def _lookup_single_id(self, table: str, guid: str, description: str) -> int:
        rows = self._query(queries.select_id(table), (guid,))
        if not rows:
            raise RecordNotFoundError(f'could not find {description} with id {guid}')
        if len(rows) > 1:
            raise RepositoryError(
                f'found {len(rows)} rows for {description} with id {guid}, expected 1'
            )
        return rows[0][0]

    def _delete(self, sql: str, args: Sequence[Any], description: str) -> None:
        affected = self._execute(sql, args)
        if affected == 0:
            self.logger.debug(f'No rows affected deleting {description}')

    def salt_length(self) -> int:
        """Return the salt length used by this foundation.

        The first existing row of the service instances or service brokers
        table decides. The result is cached for the connection's life.

        Raises:
            SaltDiscoveryError: If neither table has a salted row
        """
        with self._lock:
            if self._salt_length is not None:
                return self._salt_length

            for table in queries.SALT_TABLES:
                rows = self._query(queries.select_salt_length(table))
                if rows and rows[0][0]:
                    self._salt_length = int(rows[0][0])
                    self.logger.debug(f'Using salt length {self._salt_length}')
                    return self._salt_length

            raise SaltDiscoveryError('could not determine length of salt string')

    def generate_salt(self) -> str:
        """Generate a random salt matching the foundation's salt length."""
        return generate_salt(self.salt_length())

    def service_instance_exists(self, guid: str) -> bool:
        """Check whether a service instance row exists.

        Args:
            guid: Service instance GUID

        Returns:
            True if the row exists
        """
        with self._lock:
            try:
                rows = self._query(
                    queries.select_id(queries.SERVICE_INSTANCES_TABLE, limit_one=True),
                    (guid,),
                )
            except RepositoryError as e:
                raise RepositoryError(
                    f'failed to query service instance {guid}: {e}'
                ) from e
            return bool(rows)

    def create_service_instance(
        self,
        instance: ServiceInstance,
        space: Space,
        plan: ServicePlan,
        service: Service,
        key: str,
    ) -> None:
        """Insert a service instance row and its usage event.

        Args:
            instance: Service instance to create
            space: Target space
            plan: Target service plan
            service: Target service offering
            key: Database encryption key

        Raises:
            RecordNotFoundError: If the space or plan rows do not exist
            TransactionError: If the insert failed and rollback failed too
        """
        with self._lock:
            space_id = self._lookup_id(queries.SPACES_TABLE, space.guid, 'space')
            plan_id = self._lookup_id(
                queries.SERVICE_PLANS_TABLE, plan.guid, 'service plan'
            )

            self.connection.begin()
            try:
                salt = self.generate_salt()
                serialized_credentials = ''
                if instance.credentials is not None:
                    serialized_credentials = json.dumps(instance.credentials)
                serialized_tags = json.dumps(instance.tags) if instance.tags else None

                self._execute(
                    queries.INSERT_SERVICE_INSTANCE,
                    {
                        'guid': instance.guid,
                        'name': instance.name,
                        'credentials': encrypt(serialized_credentials, salt, key),
                        'gateway_name': None,
                        'gateway_data': None,
                        'space_id': space_id,
                        'service_plan_id': plan_id,
                        'salt': salt,
                        'dashboard_url': _null_if_empty(instance.dashboard_url),
                        'is_gateway_service': True,
                        'syslog_drain_url': None,
                        'tags': serialized_tags,
                        'route_service_url': None,
                    },
                )
                self._execute(
                    queries.INSERT_USAGE_EVENT,
                    {
                        'guid': str(uuid.uuid4()),
                        'state': USAGE_EVENT_CREATED,
                        'org_guid': space.organization_guid,
                        'space_guid': space.guid,
                        'space_name': space.name,
                        'service_instance_guid': instance.guid,
                        'service_instance_name': instance.name,
                        'service_instance_type': MANAGED_INSTANCE_EVENT_TYPE,
                        'service_plan_guid': plan.guid,
                        'service_plan_name': plan.name,
                        'service_guid': service.guid,
                        'service_label': service.label,
                    },
                )
                self.connection.commit()
            except Exception as e:
                self._rollback(e)
                raise

        self.logger.debug(f'Created service instance {instance.guid} in space {space.guid}')

    def delete_service_instance(self, space_guid: str, instance_guid: str) -> bool:
        """Delete a service instance with its bindings, keys and operations.

        Missing dependent rows are not an error.

        Args:
            space_guid: GUID of the space holding the instance
            instance_guid: Service instance GUID

        Returns:
            True once the instance is deleted

        Raises:
            UnsupportedOperationError: If the instance is shared with the space
            RecordNotFoundError: If the space or instance rows do not exist
        """
        with self._lock:
            self.connection.begin()
            try:
                shares = self._query(
                    queries.SELECT_SERVICE_INSTANCE_SHARES, (instance_guid, space_guid)
                )
                if shares:
                    raise UnsupportedOperationError(
                        'shared service instances cannot be deleted: unsupported operation'
                    )

                space_id = self._lookup_id(queries.SPACES_TABLE, space_guid, 'space')
                instance_id = self._lookup_single_id(
                    queries.SERVICE_INSTANCES_TABLE, instance_guid, 'service instance'
                )

                self._delete(
                    queries.DELETE_SERVICE_BINDINGS,
                    (instance_guid,),
                    f'service bindings of {instance_guid}',
                )
                self._delete(
                    queries.DELETE_SERVICE_KEYS,
                    (instance_id,),
                    f'service keys of {instance_guid}',
                )
                self._delete(
                    queries.DELETE_SERVICE_INSTANCE_OPERATIONS,
                    (instance_id,),
                    f'service instance operations of {instance_guid}',
                )
                # TODO: confirm with product owners whether zero rows here should
                # be reported as a partial failure.
                self._delete(
                    queries.DELETE_SERVICE_INSTANCE,
                    (instance_guid, space_id),
                    f'service instance {instance_guid}',
                )
                self.connection.commit()
            except Exception as e:
                self._rollback(e)
                raise

        self.logger.debug(f'Deleted service instance {instance_guid}')
        return True

    def create_service_binding(
        self, binding: ServiceBinding, app_guid: str, key: str
    ) -> None:
        """Insert an application binding row.

        Args:
            binding: Binding to create
            app_guid: GUID of the application on this foundation
            key: Database encryption key
        """
        with self._lock:
            salt = self.generate_salt()
            credentials = json.dumps(binding.credentials or {})

            volume_mounts = None
            volume_mounts_salt = None
            if binding.volume_mounts:
                volume_mounts = encrypt(json.dumps(binding.volume_mounts), salt, key)
                volume_mounts_salt = salt

            try:
                self._execute(
                    queries.INSERT_SERVICE_BINDING,
                    {
                        'guid': binding.guid,
                        'credentials': encrypt(credentials, salt, key),
                        'salt': salt,
                        'syslog_drain_url': _null_if_empty(binding.syslog_drain_url),
                        'volume_mounts': volume_mounts,
                        'volume_mounts_salt': volume_mounts_salt,
                        'app_guid': app_guid,
                        'service_instance_guid': binding.service_instance_guid,
                        'type': APP_BINDING_TYPE,
                    },
                )
                self.connection.commit()
            except Exception as e:
                self._rollback(e)
                raise

        self.logger.debug(f'Created service binding {binding.guid} for app {app_guid}')
