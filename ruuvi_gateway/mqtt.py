"""Publisher that sends samples to an MQTT broker using paho-mqtt."""

import asyncio
import hashlib
import json
import logging
import os
import ssl
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import paho.mqtt.client as mqtt

from .constants import (
    CONNECTION_TIMEOUT_SEC,
    DEFAULT_KEEPALIVE,
    DEFAULT_MQTT_PORT,
    DEFAULT_MQTT_TLS_PORT,
    DEFAULT_QOS,
    DEFAULT_TOPIC,
    ICON_ERROR,
    ICON_PUBLISH,
    ICON_SUCCESS,
    ICON_WARNING,
    UNKNOWN_DEVICE_ID,
)
from .models import DecodedSample
from .publisher import Listener, PublisherOptions, PublisherPipeline


class PublishType(str, Enum):
    """How samples are mapped to MQTT messages."""
    # One JSON document per sample
    SINGLE_TOPIC = 'SingleTopic'
    # One message per measurement, on a sub-topic named after the measurement
    TOPIC_PER_MEASUREMENT = 'TopicPerMeasurement'


# Sub-topic names for TopicPerMeasurement, keyed by JSON property name
_MEASUREMENT_TOPICS = {
    'accelerationX': 'acceleration-x',
    'accelerationY': 'acceleration-y',
    'accelerationZ': 'acceleration-z',
    'batteryVoltage': 'battery-voltage',
    'calibrated': 'calibrated',
    'co2': 'co2',
    'dataFormat': 'data-format',
    'deviceId': 'device-id',
    'displayName': 'display-name',
    'humidity': 'humidity',
    'luminosity': 'luminosity',
    'macAddress': 'mac-address',
    'measurementSequence': 'measurement-sequence',
    'movementCounter': 'movement-counter',
    'nox': 'nox',
    'pm10': 'pm-1.0',
    'pm25': 'pm-2.5',
    'pm40': 'pm-4.0',
    'pm100': 'pm-10.0',
    'pressure': 'pressure',
    'signalStrength': 'signal-strength',
    'temperature': 'temperature',
    'timestamp': 'timestamp',
    'txPower': 'tx-power',
    'voc': 'voc',
}


@dataclass(frozen=True)
class MqttOptions:
    """MQTT connection and topic settings."""
    broker: str
    port: int = DEFAULT_MQTT_PORT
    client_id: Optional[str] = None
    # {clientId} and {deviceId} placeholders are substituted
    topic: str = DEFAULT_TOPIC
    publish_type: PublishType = PublishType.SINGLE_TOPIC
    # "none", "userpass" or "mtls"
    auth_type: str = 'none'
    tls_config: Optional[Dict[str, str]] = None
    credentials: Optional[Dict[str, str]] = None
    qos: int = DEFAULT_QOS
    keepalive: int = DEFAULT_KEEPALIVE


def get_default_device_id(mac_address: str) -> str:
    """Device ID used for devices without a registered ID: SHA-256 of the MAC address."""
    return hashlib.sha256(mac_address.encode('utf-8')).hexdigest().upper()


class MqttPublisher(PublisherPipeline):
    """Publishes samples to an MQTT broker (cloud-agnostic)."""

    destination = 'mqtt'

    @staticmethod
    def _validate_cert_file(file_path: Optional[str], file_type: str) -> str:
        """Validate that a certificate file exists and is not empty; returns the expanded path."""
        if not file_path:
            raise ValueError(f"{file_type} file path is required")
        # Support environment variable expansion
        expanded_path = os.path.expandvars(file_path)
        cert_file = Path(expanded_path)
        if not cert_file.exists():
            raise FileNotFoundError(f"{file_type} file not found: {expanded_path}")
        if cert_file.stat().st_size == 0:
            raise ValueError(f"{file_type} file is empty: {expanded_path}")
        return expanded_path

    def __init__(
        self,
        listener: Listener,
        mqtt_options: MqttOptions,
        options: Optional[PublisherOptions] = None,
        logger: Optional[logging.Logger] = None
    ):
        super().__init__(listener, options, logger)
        self.mqtt_options = mqtt_options
        self.publish_type = PublishType(mqtt_options.publish_type)

        # If no client ID was specified, we'll generate one
        self.client_id = mqtt_options.client_id or uuid.uuid4().hex
        self.topic_template = (mqtt_options.topic or DEFAULT_TOPIC).replace('{clientId}', self.client_id)

        self.connected = False
        self.client: Optional[mqtt.Client] = None
        self._connection_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        # Configure authentication
        auth_type = mqtt_options.auth_type
        if auth_type == 'mtls':
            self._configure_mtls(mqtt_options.tls_config or {})
        elif auth_type == 'userpass':
            self._configure_userpass(mqtt_options.credentials or {})
        elif auth_type == 'none':
            self.logger.info("No MQTT authentication configured (insecure)")
        else:
            raise ValueError(f"Unsupported auth_type: {auth_type}")

    def _configure_mtls(self, tls_config: Dict[str, str]) -> None:
        """Configure mutual TLS authentication."""
        self.ca_filepath = self._validate_cert_file(tls_config.get('ca_certs'), "CA certificate")
        self.cert_filepath = self._validate_cert_file(tls_config.get('certfile'), "Client certificate")
        self.key_filepath = self._validate_cert_file(tls_config.get('keyfile'), "Private key")
        self.logger.info("Configured mTLS authentication")

    def _configure_userpass(self, credentials: Dict[str, str]) -> None:
        """Configure username/password authentication."""
        self.username = credentials.get('username')
        self.password = credentials.get('password')

        if not self.username:
            raise ValueError("userpass auth requires username")

        self.logger.info(f"Configured username/password authentication for user: {self.username}")

    def get_topic_for_sample(self, sample: DecodedSample) -> str:
        """Resolve the topic template for a sample."""
        if '{deviceId}' not in self.topic_template:
            return self.topic_template

        device_id = sample.device_id
        if not device_id:
            device_id = get_default_device_id(sample.mac_address) if sample.mac_address else UNKNOWN_DEVICE_ID
        return self.topic_template.replace('{deviceId}', device_id)

    def build_messages(self, sample: DecodedSample) -> List[Tuple[str, str]]:
        """Build the (topic, JSON payload) messages for a sample."""
        topic = self.get_topic_for_sample(sample)
        data = sample.to_dict()

        if self.publish_type == PublishType.SINGLE_TOPIC:
            return [(topic, json.dumps(data, separators=(',', ':')))]

        messages = [
            (f"{topic}/{_MEASUREMENT_TOPICS[key]}", json.dumps(value))
            for key, value in data.items()
            if key in _MEASUREMENT_TOPICS
        ]
        messages.sort(key=lambda message: message[0])
        return messages

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """Callback when connection is established (paho network thread)."""
        if not reason_code.is_failure:
            self.connected = True
            self._signal_connected()
            self.logger.info(
                f"{ICON_SUCCESS} Successfully connected to MQTT broker: "
                f"{self.mqtt_options.broker}:{self.mqtt_options.port}"
            )
        else:
            self.connected = False
            self.logger.error(f"{ICON_ERROR} Connection failed: {reason_code}")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        """Callback when connection is lost."""
        self.connected = False
        if reason_code.is_failure:
            self.logger.warning(f"{ICON_WARNING} Unexpected disconnection (rc={reason_code}), will auto-reconnect")
        else:
            self.logger.info("Disconnected from MQTT broker")

    def _on_publish(self, client, userdata, mid, reason_code=None, properties=None):
        """Callback when message is published."""
        self.logger.debug(f"Message published successfully (mid={mid})")

    def _signal_connected(self) -> None:
        loop, event = self._loop, self._connection_event
        if loop is not None and event is not None and not loop.is_closed():
            loop.call_soon_threadsafe(event.set)

    async def open(self) -> None:
        """Establish connection to MQTT broker.

        Raises:
            ConnectionError: the broker could not be reached within the timeout
        """
        broker, port = self.mqtt_options.broker, self.mqtt_options.port
        self.logger.info(f"Connecting to MQTT broker: {broker}:{port} (client_id: {self.client_id})")

        self._loop = asyncio.get_running_loop()
        self._connection_event = asyncio.Event()

        self.client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=True
        )
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_publish = self._on_publish

        # Configure authentication
        if self.mqtt_options.auth_type == 'mtls':
            self.client.tls_set(
                ca_certs=self.ca_filepath,
                certfile=self.cert_filepath,
                keyfile=self.key_filepath,
                tls_version=ssl.PROTOCOL_TLS_CLIENT
            )
        elif self.mqtt_options.auth_type == 'userpass':
            self.client.username_pw_set(self.username, self.password)
            if port == DEFAULT_MQTT_TLS_PORT:
                # Use TLS for secure connection
                self.client.tls_set(tls_version=ssl.PROTOCOL_TLS_CLIENT)

        # Connect (non-blocking)
        self.client.connect_async(broker, port, keepalive=self.mqtt_options.keepalive)
        self.client.loop_start()

        # Wait for connection with timeout
        try:
            await asyncio.wait_for(self._connection_event.wait(), timeout=CONNECTION_TIMEOUT_SEC)
        except asyncio.TimeoutError:
            self.logger.error(f"{ICON_ERROR} Connection timeout after {CONNECTION_TIMEOUT_SEC}s")
            await self.close()
            raise ConnectionError(f"Could not connect to MQTT broker {broker}:{port}") from None

    async def publish(self, samples: List[DecodedSample]) -> None:
        """Queue MQTT messages for the samples (paho delivers them from its network loop)."""
        if self.client is None:
            raise ConnectionError("No MQTT client, cannot publish")

        failed = 0
        for sample in samples:
            for topic, payload in self.build_messages(sample):
                self.logger.debug(
                    f"{ICON_PUBLISH} Publishing to MQTT - Device: {sample.mac_address}, "
                    f"Topic: {topic}, Payload: {payload}"
                )
                result = self.client.publish(
                    topic=topic,
                    payload=payload,
                    qos=self.mqtt_options.qos,
                    retain=False
                )
                if result.rc != mqtt.MQTT_ERR_SUCCESS:
                    failed += 1
                    self.logger.debug(f"{ICON_ERROR} Failed to queue message for topic {topic}: {result.rc}")

        if failed:
            raise ConnectionError(f"{failed} MQTT message(s) could not be queued")

    async def close(self) -> None:
        """Disconnect from MQTT broker."""
        if self.client is None:
            return
        try:
            self.logger.info("Disconnecting from MQTT broker")
            self.client.disconnect()
            self.client.loop_stop()
        finally:
            self.client = None
            self.connected = False
            self._connection_event = None
