import asyncio
import hashlib
import io
import json
from types import SimpleNamespace

import httpx
import pytest

from ruuvi_gateway.console import ConsolePublisher
from ruuvi_gateway.devices import DeviceCollection
from ruuvi_gateway.http_sink import HttpOptions, HttpPublisher
from ruuvi_gateway.models import DataFormat, DecodedSample, Device
from ruuvi_gateway.mqtt import MqttOptions, MqttPublisher, PublishType, get_default_device_id
from ruuvi_gateway.publisher import PublisherOptions
from tests.helpers import TIMESTAMP, FakeListener, make_sample, wait_until


class TestConsolePublisher:

    @pytest.mark.asyncio
    async def test_writes_json_lines(self):
        stream = io.StringIO()
        publisher = ConsolePublisher(FakeListener(), stream=stream)

        await publisher.publish([make_sample(sequence=1), make_sample(sequence=2)])

        lines = stream.getvalue().splitlines()
        assert [json.loads(line)['measurementSequence'] for line in lines] == [1, 2]

    @pytest.mark.asyncio
    async def test_annotates_known_devices(self):
        stream = io.StringIO()
        devices = DeviceCollection([Device('AA:BB:CC:DD:EE:FF', 'kitchen', 'Kitchen')])
        publisher = ConsolePublisher(FakeListener(), device_resolver=devices, stream=stream)

        await publisher.publish([make_sample(), make_sample('11:22:33:44:55:66')])

        first, second = (json.loads(line) for line in stream.getvalue().splitlines())
        assert first['deviceId'] == 'kitchen'
        assert first['displayName'] == 'Kitchen'
        assert 'deviceId' not in second

    @pytest.mark.asyncio
    async def test_run_publishes_samples_from_listener(self):
        stream = io.StringIO()
        listener = FakeListener()
        publisher = ConsolePublisher(listener, stream=stream)

        listener.put(make_sample(sequence=7))
        listener.finish()
        await asyncio.wait_for(publisher.run(), 1)

        assert json.loads(stream.getvalue())['measurementSequence'] == 7


class FakeMqttClient:
    """Stands in for paho's client once connected."""

    def __init__(self, rc=0):
        self.rc = rc
        self.messages = []
        self.disconnected = False

    def publish(self, topic, payload, qos, retain):
        self.messages.append((topic, payload, qos))
        return SimpleNamespace(rc=self.rc)

    def disconnect(self):
        self.disconnected = True

    def loop_stop(self):
        pass


class TestMqttPublisher:

    def make_publisher(self, **options):
        options.setdefault('broker', 'localhost')
        options.setdefault('client_id', 'gw')
        return MqttPublisher(FakeListener(), MqttOptions(**options))

    def test_default_device_id(self):
        expected = hashlib.sha256(b'AA:BB:CC:DD:EE:FF').hexdigest().upper()
        assert get_default_device_id('AA:BB:CC:DD:EE:FF') == expected

    def test_topic_uses_device_id(self):
        publisher = self.make_publisher()
        sample = make_sample().with_device(Device('AA:BB:CC:DD:EE:FF', 'kitchen'))

        assert publisher.get_topic_for_sample(sample) == 'gw/devices/kitchen'

    def test_topic_falls_back_to_hashed_mac_address(self):
        publisher = self.make_publisher()

        topic = publisher.get_topic_for_sample(make_sample())

        assert topic == f"gw/devices/{get_default_device_id('AA:BB:CC:DD:EE:FF')}"

    def test_topic_without_device_placeholder(self):
        publisher = self.make_publisher(topic='sensors/{clientId}')
        assert publisher.get_topic_for_sample(make_sample()) == 'sensors/gw'

    def test_generated_client_id(self):
        publisher = self.make_publisher(client_id=None)
        assert publisher.client_id
        assert '{clientId}' not in publisher.topic_template

    def test_single_topic_message(self):
        publisher = self.make_publisher(topic='ruuvi/{deviceId}')
        sample = make_sample().with_device(Device('AA:BB:CC:DD:EE:FF', 'kitchen'))

        [(topic, payload)] = publisher.build_messages(sample)

        assert topic == 'ruuvi/kitchen'
        assert json.loads(payload) == sample.to_dict()

    def test_topic_per_measurement_messages(self):
        publisher = self.make_publisher(topic='ruuvi/{deviceId}', publish_type=PublishType.TOPIC_PER_MEASUREMENT)
        sample = make_sample().with_device(Device('AA:BB:CC:DD:EE:FF', 'kitchen'))

        messages = publisher.build_messages(sample)

        assert messages == [
            ('ruuvi/kitchen/data-format', '5'),
            ('ruuvi/kitchen/device-id', '"kitchen"'),
            ('ruuvi/kitchen/mac-address', '"AA:BB:CC:DD:EE:FF"'),
            ('ruuvi/kitchen/temperature', '21.5'),
            ('ruuvi/kitchen/timestamp', '"2024-05-01T12:30:00+00:00"'),
        ]

    def test_particulate_matter_topics(self):
        publisher = self.make_publisher(topic='t', publish_type='TopicPerMeasurement')
        sample = DecodedSample(
            data_format=DataFormat.RAW_V2,
            timestamp=TIMESTAMP,
            mac_address='AA:BB:CC:DD:EE:FF',
            pm2_5=11.2,
            pm10_0=455.4,
        )

        topics = dict(publisher.build_messages(sample))

        assert topics['t/pm-2.5'] == '11.2'
        assert topics['t/pm-10.0'] == '455.4'

    @pytest.mark.asyncio
    async def test_publish(self):
        publisher = self.make_publisher(qos=0)
        publisher.client = FakeMqttClient()

        await publisher.publish([make_sample(sequence=1), make_sample(sequence=2)])

        assert len(publisher.client.messages) == 2
        assert all(qos == 0 for _, _, qos in publisher.client.messages)

    @pytest.mark.asyncio
    async def test_publish_failure_raises(self):
        publisher = self.make_publisher()
        publisher.client = FakeMqttClient(rc=4)

        with pytest.raises(ConnectionError):
            await publisher.publish([make_sample()])

    @pytest.mark.asyncio
    async def test_publish_without_connection_raises(self):
        with pytest.raises(ConnectionError):
            await self.make_publisher().publish([make_sample()])

    @pytest.mark.asyncio
    async def test_close_disconnects(self):
        publisher = self.make_publisher()
        client = FakeMqttClient()
        publisher.client = client

        await publisher.close()

        assert client.disconnected
        assert publisher.client is None

    def test_userpass_requires_username(self):
        with pytest.raises(ValueError, match='username'):
            self.make_publisher(auth_type='userpass', credentials={'password': 'secret'})

    def test_unsupported_auth_type(self):
        with pytest.raises(ValueError):
            self.make_publisher(auth_type='kerberos')

    def test_mtls_requires_certificate_files(self, tmp_path):
        ca = tmp_path / 'ca.pem'
        ca.write_text('-----BEGIN CERTIFICATE-----\n')
        cert = tmp_path / 'cert.pem'
        cert.write_text('')

        with pytest.raises(FileNotFoundError):
            self.make_publisher(auth_type='mtls', tls_config={
                'ca_certs': str(tmp_path / 'missing.pem'),
                'certfile': str(cert),
                'keyfile': str(cert),
            })
        with pytest.raises(ValueError, match='empty'):
            self.make_publisher(auth_type='mtls', tls_config={
                'ca_certs': str(ca),
                'certfile': str(cert),
                'keyfile': str(cert),
            })

    def test_mtls_configuration(self, tmp_path):
        paths = {}
        for key in ('ca_certs', 'certfile', 'keyfile'):
            path = tmp_path / f'{key}.pem'
            path.write_text('-----BEGIN-----\n')
            paths[key] = str(path)

        publisher = self.make_publisher(auth_type='mtls', tls_config=paths)

        assert publisher.ca_filepath == paths['ca_certs']
        assert publisher.key_filepath == paths['keyfile']


class TestHttpPublisher:

    @staticmethod
    def make_client(requests, status_code=200):
        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(status_code)
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    def test_method_validation(self):
        assert HttpOptions(endpoint='http://test', method='put').method == 'PUT'
        with pytest.raises(ValueError):
            HttpOptions(endpoint='http://test', method='GET')

    @pytest.mark.asyncio
    async def test_publish_sends_json_array(self):
        requests = []
        client = self.make_client(requests)
        options = HttpOptions(endpoint='http://test/api', method='PUT', headers={'X-Api-Key': 'abc'})
        publisher = HttpPublisher(FakeListener(), options, client=client)

        await publisher.open()
        await publisher.publish([make_sample(sequence=1), make_sample(sequence=2)])
        await client.aclose()

        [request] = requests
        assert request.method == 'PUT'
        assert str(request.url) == 'http://test/api'
        assert request.headers['X-Api-Key'] == 'abc'
        body = json.loads(request.content)
        assert [item['measurementSequence'] for item in body] == [1, 2]
        assert body[0]['macAddress'] == 'AA:BB:CC:DD:EE:FF'

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        client = self.make_client([], status_code=500)
        publisher = HttpPublisher(FakeListener(), HttpOptions(endpoint='http://test/api'), client=client)

        await publisher.open()
        with pytest.raises(httpx.HTTPStatusError):
            await publisher.publish([make_sample()])
        await client.aclose()

    @pytest.mark.asyncio
    async def test_run_splits_batches(self):
        requests = []
        client = self.make_client(requests)
        listener = FakeListener()
        options = PublisherOptions(publish_interval=3600, max_batch_size=2)
        publisher = HttpPublisher(listener, HttpOptions(endpoint='http://test/api'), options, client=client)

        stop_event = asyncio.Event()
        task = asyncio.create_task(publisher.run(stop_event))
        await publisher.wait_until_running(timeout=1)
        listener.put(*(make_sample(sequence=i) for i in range(3)))
        await wait_until(lambda: publisher.stats['samples_received'] == 3)
        stop_event.set()
        await asyncio.wait_for(task, 1)
        await client.aclose()

        assert [len(json.loads(request.content)) for request in requests] == [2, 1]
        assert all(request.method == 'POST' for request in requests)

    @pytest.mark.asyncio
    async def test_failed_requests_are_counted(self):
        client = self.make_client([], status_code=503)
        listener = FakeListener()
        publisher = HttpPublisher(listener, HttpOptions(endpoint='http://test/api'), client=client)

        listener.put(make_sample())
        listener.finish()
        await asyncio.wait_for(publisher.run(), 1)
        await client.aclose()

        assert publisher.stats['publish_errors'] == 1
        assert publisher.stats['samples_published'] == 0
