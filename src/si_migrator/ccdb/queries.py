"""SQL statements run against the Cloud Controller database."""

SPACES_TABLE = 'spaces'
SERVICE_PLANS_TABLE = 'service_plans'
SERVICE_INSTANCES_TABLE = 'service_instances'
SERVICE_BROKERS_TABLE = 'service_brokers'

LOOKUP_TABLES = frozenset({SPACES_TABLE, SERVICE_PLANS_TABLE, SERVICE_INSTANCES_TABLE})
SALT_TABLES = (SERVICE_INSTANCES_TABLE, SERVICE_BROKERS_TABLE)

INSERT_SERVICE_INSTANCE = (
    'INSERT INTO service_instances (guid, name, credentials, gateway_name, '
    'gateway_data, space_id, service_plan_id, salt, dashboard_url, '
    'is_gateway_service, syslog_drain_url, tags, route_service_url) '
    'VALUES (%(guid)s, %(name)s, %(credentials)s, %(gateway_name)s, '
    '%(gateway_data)s, %(space_id)s, %(service_plan_id)s, %(salt)s, '
    '%(dashboard_url)s, %(is_gateway_service)s, %(syslog_drain_url)s, '
    '%(tags)s, %(route_service_url)s)'
)

INSERT_USAGE_EVENT = (
    'INSERT INTO service_usage_events (guid, state, org_guid, space_guid, '
    'space_name, service_instance_guid, service_instance_name, '
    'service_instance_type, service_plan_guid, service_plan_name, '
    'service_guid, service_label) '
    'VALUES (%(guid)s, %(state)s, %(org_guid)s, %(space_guid)s, %(space_name)s, '
    '%(service_instance_guid)s, %(service_instance_name)s, '
    '%(service_instance_type)s, %(service_plan_guid)s, %(service_plan_name)s, '
    '%(service_guid)s, %(service_label)s)'
)

INSERT_SERVICE_BINDING = (
    'INSERT INTO service_bindings (guid, credentials, salt, syslog_drain_url, '
    'volume_mounts, volume_mounts_salt, app_guid, service_instance_guid, type) '
    'VALUES (%(guid)s, %(credentials)s, %(salt)s, %(syslog_drain_url)s, '
    '%(volume_mounts)s, %(volume_mounts_salt)s, %(app_guid)s, '
    '%(service_instance_guid)s, %(type)s)'
)

DELETE_SERVICE_INSTANCE = 'DELETE FROM service_instances WHERE guid=%s AND space_id=%s'
DELETE_SERVICE_BINDINGS = 'DELETE FROM service_bindings WHERE service_instance_guid=%s'
DELETE_SERVICE_KEYS = 'DELETE FROM service_keys WHERE service_instance_id=%s'
DELETE_SERVICE_INSTANCE_OPERATIONS = (
    'DELETE FROM service_instance_operations WHERE service_instance_id=%s'
)

SELECT_SERVICE_INSTANCE_SHARES = (
    'SELECT service_instance_guid, target_space_guid FROM service_instance_shares '
    'WHERE service_instance_guid=%s AND target_space_guid=%s'
)


def select_id(table: str, limit_one: bool = False) -> str:
    """Build the id lookup for one of the known tables."""
    if table not in LOOKUP_TABLES:
        raise ValueError(f'unknown table {table!r}')
    query = f'SELECT id FROM {table} WHERE guid=%s'
    if limit_one:
        query += ' LIMIT 1'
    return query


def select_salt_length(table: str) -> str:
    """Build the salt length probe for one of the known tables."""
    if table not in SALT_TABLES:
        raise ValueError(f'unknown table {table!r}')
    return f'SELECT LENGTH(`salt`) AS salt_length FROM `{table}` LIMIT 1'
