import os


def _env_int(name: str, fallback: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return fallback
    try:
        return int(raw)
    except ValueError:
        return fallback


def load_common_mqtt_defaults() -> dict:
    """Default MQTT settings for the monitor channel.
    Returns dict with host, port, topic_prefix, client_id, qos; env vars override.
    """
    return {
        'host': os.getenv('FLEETLINK_MQTT_HOST', 'localhost'),
        'port': _env_int('FLEETLINK_MQTT_PORT', 1883),
        'topic_prefix': os.getenv('FLEETLINK_TOPIC_PREFIX', 'fleetlink/v1'),
        'client_id': 'fleetlink-relay',
        'qos': 0,
    }


def apply_env_overrides(data: dict) -> dict:
    """Env overrides win over file values for the monitor and listener."""
    monitor = data.setdefault('monitor', {})
    if os.getenv('FLEETLINK_MQTT_HOST'):
        monitor['host'] = os.environ['FLEETLINK_MQTT_HOST']
    if os.getenv('FLEETLINK_MQTT_PORT'):
        monitor['port'] = _env_int('FLEETLINK_MQTT_PORT', monitor.get('port', 1883))
    if os.getenv('FLEETLINK_TOPIC_PREFIX'):
        monitor['topic_prefix'] = os.environ['FLEETLINK_TOPIC_PREFIX']
    if os.getenv('FLEETLINK_PORT'):
        server = data.setdefault('server', {})
        server['port'] = _env_int('FLEETLINK_PORT', server.get('port', 9001))
    return data
