"""JSON configuration loading and validation."""

import json

from .batching import BatchPublishBehaviour
from .constants import (
    DEFAULT_DESTINATION,
    DEFAULT_HTTP_METHOD,
    DEFAULT_HTTP_TIMEOUT_SEC,
    DEFAULT_KEEPALIVE,
    DEFAULT_MAX_BATCH_SIZE,
    DEFAULT_MQTT_PORT,
    DEFAULT_PUBLISH_INTERVAL,
    DEFAULT_QOS,
    DEFAULT_SCANNING_MODE,
    DEFAULT_TOPIC,
    MAX_BATCH_SIZE_LIMIT,
    MAX_CLIENT_ID_LENGTH,
)
from .devices import DeviceCollection
from .errors import ConfigError
from .http_sink import HttpOptions
from .listener import ListenerOptions
from .mac import try_mac_to_int
from .mqtt import MqttOptions, PublishType
from .publisher import PublisherOptions

DESTINATIONS = ('console', 'mqtt', 'http')
AUTH_TYPES = ('none', 'userpass', 'mtls')


def load_config(config_path: str) -> dict:
    """Load and validate configuration from JSON file."""
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except FileNotFoundError as e:
        raise FileNotFoundError(f"Configuration file not found: {config_path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in configuration file: {e}") from e

    if not isinstance(config, dict):
        raise ConfigError("Configuration file must contain a JSON object")

    validate_config(config)
    return config


def _check_bool(config: dict, key: str) -> None:
    if key in config and not isinstance(config[key], bool):
        raise ConfigError(f"{key} must be a boolean, got: {config[key]}")


def validate_config(config: dict) -> None:
    """Validate configuration values.

    Raises:
        ConfigError: a value is missing, has the wrong type or is out of range
    """
    if 'enable_extended_advertisement_formats' not in config:
        raise ConfigError("Configuration must include 'enable_extended_advertisement_formats'")
    for key in ('enable_extended_advertisement_formats', 'known_devices_only', 'allow_duplicate_advertisements'):
        _check_bool(config, key)

    destination = config.get('destination', DEFAULT_DESTINATION)
    if destination not in DESTINATIONS:
        raise ConfigError(f"destination must be one of {', '.join(DESTINATIONS)}, got: {destination}")

    if 'publish_interval_sec' in config:
        interval = config['publish_interval_sec']
        if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval < 0:
            raise ConfigError(
                f"publish_interval_sec must be a non-negative number, got: {interval}"
            )

    if 'publish_behaviour' in config:
        try:
            BatchPublishBehaviour(config['publish_behaviour'])
        except ValueError:
            raise ConfigError(
                f"publish_behaviour must be AllSamples or LatestSampleOnly, got: {config['publish_behaviour']}"
            ) from None

    if 'max_batch_size' in config:
        size = config['max_batch_size']
        if isinstance(size, bool) or not isinstance(size, int) or not 1 <= size <= MAX_BATCH_SIZE_LIMIT:
            raise ConfigError(
                f"max_batch_size must be an integer between 1 and {MAX_BATCH_SIZE_LIMIT}, got: {size}"
            )

    scanning_mode = config.get('scanning_mode', DEFAULT_SCANNING_MODE)
    if scanning_mode not in ('active', 'passive'):
        raise ConfigError(f"scanning_mode must be active or passive, got: {scanning_mode}")

    devices = config.get('devices', [])
    if not isinstance(devices, list):
        raise ConfigError("devices must be a list")
    for entry in devices:
        if not isinstance(entry, dict) or try_mac_to_int(str(entry.get('mac_address', ''))) is None:
            raise ConfigError(f"Invalid device entry (a valid mac_address is required): {entry}")

    if destination == 'mqtt':
        _validate_mqtt(config.get('mqtt'))
    elif destination == 'http':
        _validate_http(config.get('http'))


def _validate_mqtt(mqtt_config) -> None:
    if not mqtt_config:
        raise ConfigError("Configuration must include 'mqtt' section")
    if not isinstance(mqtt_config, dict):
        raise ConfigError("MQTT configuration must be an object")

    # Validate required MQTT fields
    if 'broker' not in mqtt_config:
        raise ConfigError("MQTT configuration must include 'broker'")

    port = mqtt_config.get('port', DEFAULT_MQTT_PORT)
    if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
        raise ConfigError(f"MQTT port must be an integer between 1 and 65535, got: {port}")

    # Validate topic format
    topic = mqtt_config.get('topic', DEFAULT_TOPIC)
    if not topic or not isinstance(topic, str):
        raise ConfigError(f"MQTT topic must be a non-empty string, got: {topic}")

    # Validate client_id format (optional, generated when missing)
    client_id = mqtt_config.get('client_id')
    if client_id is not None:
        if not client_id or not isinstance(client_id, str):
            raise ConfigError(f"MQTT client_id must be a non-empty string, got: {client_id}")
        if len(client_id) > MAX_CLIENT_ID_LENGTH:
            raise ConfigError(
                f"MQTT client_id too long (max {MAX_CLIENT_ID_LENGTH} chars): {len(client_id)} chars"
            )

    auth_type = mqtt_config.get('auth_type', 'none')
    if auth_type not in AUTH_TYPES:
        raise ConfigError(f"MQTT auth_type must be one of {', '.join(AUTH_TYPES)}, got: {auth_type}")

    try:
        PublishType(mqtt_config.get('publish_type', PublishType.SINGLE_TOPIC))
    except ValueError:
        raise ConfigError(
            f"MQTT publish_type must be SingleTopic or TopicPerMeasurement, got: {mqtt_config['publish_type']}"
        ) from None

    if mqtt_config.get('qos', DEFAULT_QOS) not in (0, 1, 2):
        raise ConfigError(f"MQTT qos must be 0, 1 or 2, got: {mqtt_config['qos']}")


def _validate_http(http_config) -> None:
    if not http_config:
        raise ConfigError("Configuration must include 'http' section")
    if not isinstance(http_config, dict):
        raise ConfigError("HTTP configuration must be an object")

    endpoint = http_config.get('endpoint')
    if not endpoint or not isinstance(endpoint, str):
        raise ConfigError(f"HTTP endpoint must be a non-empty string, got: {endpoint}")

    method = http_config.get('method', DEFAULT_HTTP_METHOD)
    if not isinstance(method, str) or method.upper() not in ('POST', 'PUT'):
        raise ConfigError(f"HTTP method must be POST or PUT, got: {method}")

    headers = http_config.get('headers', {})
    if not isinstance(headers, dict):
        raise ConfigError("HTTP headers must be an object")


def build_listener_options(config: dict) -> ListenerOptions:
    return ListenerOptions(
        enable_extended_advertisement_formats=config['enable_extended_advertisement_formats'],
        known_devices_only=config.get('known_devices_only', False),
        allow_duplicate_advertisements=config.get('allow_duplicate_advertisements', False)
    )


def build_publisher_options(config: dict) -> PublisherOptions:
    return PublisherOptions(
        publish_interval=config.get('publish_interval_sec', DEFAULT_PUBLISH_INTERVAL),
        per_device_behaviour=config.get('publish_behaviour', BatchPublishBehaviour.ALL_SAMPLES),
        max_batch_size=config.get('max_batch_size', DEFAULT_MAX_BATCH_SIZE)
    )


def build_device_collection(config: dict) -> DeviceCollection:
    return DeviceCollection.from_config(config.get('devices', []))


def build_mqtt_options(config: dict) -> MqttOptions:
    mqtt_config = config['mqtt']
    auth_type = mqtt_config.get('auth_type', 'none')

    tls_config = None
    if auth_type == 'mtls':
        tls_config = {
            'ca_certs': mqtt_config.get('root_ca_path'),
            'certfile': mqtt_config.get('cert_path'),
            'keyfile': mqtt_config.get('key_path')
        }

    return MqttOptions(
        broker=mqtt_config['broker'],
        port=mqtt_config.get('port', DEFAULT_MQTT_PORT),
        client_id=mqtt_config.get('client_id'),
        topic=mqtt_config.get('topic', DEFAULT_TOPIC),
        publish_type=PublishType(mqtt_config.get('publish_type', PublishType.SINGLE_TOPIC)),
        auth_type=auth_type,
        tls_config=tls_config,
        credentials=mqtt_config.get('credentials'),
        qos=mqtt_config.get('qos', DEFAULT_QOS),
        keepalive=mqtt_config.get('keepalive', DEFAULT_KEEPALIVE)
    )


def build_http_options(config: dict) -> HttpOptions:
    http_config = config['http']
    return HttpOptions(
        endpoint=http_config['endpoint'],
        method=http_config.get('method', DEFAULT_HTTP_METHOD),
        headers=dict(http_config.get('headers', {})),
        timeout=http_config.get('timeout_sec', DEFAULT_HTTP_TIMEOUT_SEC)
    )
