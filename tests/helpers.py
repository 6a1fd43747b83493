"""Test doubles and sample data shared by the gateway tests."""

import asyncio
from datetime import datetime, timezone
from typing import List, Optional

from ruuvi_gateway.listener import EmitCallback
from ruuvi_gateway.models import DataFormat, DecodedSample, RawAdvertisement
from ruuvi_gateway.publisher import PublisherOptions, PublisherPipeline

RAW_V2_VALID = '0512FC5394C37C0004FFFC040CAC364200CDCBB8334C884F'
RAW_V2_MAX = '057FFFFFFEFFFE7FFF7FFF7FFFFFDEFEFFFECBB8334C884F'
RAW_V2_MIN = '058001000000008001800180010000000000CBB8334C884F'
RAW_V2_INVALID = '058000FFFFFFFF800080008000FFFFFFFFFFFFFFFFFFFFFF'

EXTENDED_V1_VALID = 'E1170C5668C79E0065007004BD11CA00C90A0213E0AC000000DECDEE100000000000CBB8334C884F'
EXTENDED_V1_MAX = 'E17FFF9C40FFFE27102710271027109C40FAFADC28F0000000FFFFFE3F0000000000CBB8334C884F'
EXTENDED_V1_MIN = 'E1800100000000000000000000000000000000000000000000000000000000000000CBB8334C884F'
EXTENDED_V1_INVALID = 'E18000FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFF000000FFFFFFFE0000000000FFFFFFFFFFFF'

DATA_FORMAT_6_VALID = '06170C5668C79E007000C90A02D9FFCD004C884F'
DATA_FORMAT_6_INVALID = '068000FFFFFFFFFFFFFFFFFFFFFFFFFFFEFFFFFF'

TIMESTAMP = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)


def make_sample(
    mac_address: Optional[str] = 'AA:BB:CC:DD:EE:FF',
    sequence: Optional[int] = None,
    temperature: Optional[float] = 21.5
) -> DecodedSample:
    return DecodedSample(
        data_format=DataFormat.RAW_V2,
        timestamp=TIMESTAMP,
        mac_address=mac_address,
        temperature=temperature,
        measurement_sequence=sequence,
    )


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll predicate until it is true, failing the test after timeout seconds."""
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout)


class FakeAdvertisementSource:
    """Advertisement source driven by the test."""

    def __init__(self):
        self.emit: Optional[EmitCallback] = None
        self.start_count = 0
        self.stop_count = 0

    async def start(self, emit: EmitCallback) -> None:
        self.emit = emit
        self.start_count += 1

    async def stop(self) -> None:
        self.emit = None
        self.stop_count += 1

    def push(self, payload_hex: str, address: str = 'CB:B8:33:4C:88:4F', signal_strength: float = -70.0) -> None:
        self.emit(RawAdvertisement(
            address=address,
            payload=bytes.fromhex(payload_hex),
            signal_strength=signal_strength,
            timestamp=TIMESTAMP
        ))

    def finish(self) -> None:
        self.emit(None)


class FakeListener:
    """Listener that yields samples put by the test until stopped or finished."""

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.listen_count = 0

    def put(self, *samples: DecodedSample) -> None:
        for sample in samples:
            self.queue.put_nowait(sample)

    def finish(self) -> None:
        self.queue.put_nowait(None)

    async def listen(self, stop_event: Optional[asyncio.Event] = None):
        stop_event = stop_event or asyncio.Event()
        self.listen_count += 1
        while not stop_event.is_set():
            get_task = asyncio.ensure_future(self.queue.get())
            stop_task = asyncio.ensure_future(stop_event.wait())
            try:
                await asyncio.wait({get_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                get_task.cancel()
                stop_task.cancel()

            if not get_task.done() or get_task.cancelled():
                continue
            sample = get_task.result()
            if sample is None:
                return
            yield sample


class RecordingPublisher(PublisherPipeline):
    """Publisher that records every batch; fails the first fail_count publishes."""

    destination = 'recording'

    def __init__(self, listener, options: Optional[PublisherOptions] = None, fail_count: int = 0):
        super().__init__(listener, options)
        self.batches: List[List[DecodedSample]] = []
        self.fail_count = fail_count
        self.opened = False
        self.closed = False

    @property
    def published(self) -> List[DecodedSample]:
        return [sample for batch in self.batches for sample in batch]

    async def open(self) -> None:
        self.opened = True

    async def close(self) -> None:
        self.closed = True

    async def publish(self, samples: List[DecodedSample]) -> None:
        if self.fail_count > 0:
            self.fail_count -= 1
            raise ConnectionError("destination unavailable")
        self.batches.append(list(samples))
