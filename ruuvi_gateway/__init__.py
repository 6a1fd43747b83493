"""Ruuvi BLE gateway: decodes Ruuvi sensor advertisements and publishes them."""

from .batching import BatchPublishBehaviour, BatchScheduler
from .devices import DeviceCollection, DeviceResolver, NullDeviceResolver
from .errors import (
    AlreadyRunningError,
    ConfigError,
    DecodeError,
    FormatMismatchError,
    GatewayError,
    InvalidLengthError,
    UnknownFormatError,
)
from .listener import AdvertisementSource, ListenerOptions, SampleListener
from .models import DataFormat, DecodedSample, Device, RawAdvertisement
from .payload import decode, try_decode
from .publisher import PublisherOptions, PublisherPipeline

__version__ = '1.0.0'

__all__ = [
    'AdvertisementSource',
    'AlreadyRunningError',
    'BatchPublishBehaviour',
    'BatchScheduler',
    'ConfigError',
    'DataFormat',
    'DecodeError',
    'DecodedSample',
    'Device',
    'DeviceCollection',
    'DeviceResolver',
    'FormatMismatchError',
    'GatewayError',
    'InvalidLengthError',
    'ListenerOptions',
    'NullDeviceResolver',
    'PublisherOptions',
    'PublisherPipeline',
    'RawAdvertisement',
    'SampleListener',
    'UnknownFormatError',
    'decode',
    'try_decode',
]
