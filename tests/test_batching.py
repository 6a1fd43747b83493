import threading

from ruuvi_gateway.batching import BatchPublishBehaviour, BatchScheduler, DeviceQueue
from tests.helpers import make_sample


def test_all_samples_drains_in_enqueue_order():
    scheduler = BatchScheduler(BatchPublishBehaviour.ALL_SAMPLES)
    samples = [make_sample('AA:BB:CC:DD:EE:FF', sequence=i) for i in range(3)]

    for sample in samples:
        assert scheduler.enqueue(sample)

    assert scheduler.pending_count == 3
    assert scheduler.drain_all() == samples
    assert scheduler.pending_count == 0
    assert scheduler.drain_all() == []


def test_latest_sample_only_keeps_last_sample_per_device():
    scheduler = BatchScheduler(BatchPublishBehaviour.LATEST_SAMPLE_ONLY)
    for i in range(3):
        scheduler.enqueue(make_sample('AA:BB:CC:DD:EE:FF', sequence=i))
        scheduler.enqueue(make_sample('11:22:33:44:55:66', sequence=10 + i))

    assert scheduler.pending_count == 2
    drained = scheduler.drain_all()

    assert len(drained) == 2
    latest = {sample.mac_address: sample.measurement_sequence for sample in drained}
    assert latest == {'AA:BB:CC:DD:EE:FF': 2, '11:22:33:44:55:66': 12}


def test_behaviour_from_string():
    scheduler = BatchScheduler('LatestSampleOnly')
    assert scheduler.behaviour is BatchPublishBehaviour.LATEST_SAMPLE_ONLY


def test_sample_without_mac_address_is_ignored():
    scheduler = BatchScheduler()

    assert scheduler.enqueue(make_sample(mac_address=None)) is False
    assert scheduler.pending_count == 0


def test_device_queues_are_keyed_by_mac_address_value():
    scheduler = BatchScheduler(BatchPublishBehaviour.ALL_SAMPLES)
    scheduler.enqueue(make_sample('AA:BB:CC:DD:EE:FF', sequence=1))
    scheduler.enqueue(make_sample('aa-bb-cc-dd-ee-ff', sequence=2))

    assert scheduler.device_count() == 1
    assert [s.measurement_sequence for s in scheduler.drain_all()] == [1, 2]
    assert scheduler.device_count() == 0


def test_totals():
    scheduler = BatchScheduler(BatchPublishBehaviour.LATEST_SAMPLE_ONLY)
    for i in range(4):
        scheduler.enqueue(make_sample(sequence=i))
    scheduler.drain_all()

    assert scheduler.total_enqueued == 4
    assert scheduler.total_drained == 1


def test_concurrent_enqueue():
    scheduler = BatchScheduler(BatchPublishBehaviour.ALL_SAMPLES)

    def worker(device):
        for i in range(250):
            scheduler.enqueue(make_sample(f'AA:BB:CC:DD:EE:{device:02X}', sequence=i))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    drained = scheduler.drain_all()
    assert len(drained) == 1000
    for device in range(4):
        mac = f'AA:BB:CC:DD:EE:{device:02X}'
        assert [s.measurement_sequence for s in drained if s.mac_address == mac] == list(range(250))


def test_device_queue():
    queue = DeviceQueue(latest_only=False)
    queue.add(make_sample(sequence=1))
    queue.add(make_sample(sequence=2))

    assert len(queue) == 2
    assert [s.measurement_sequence for s in queue.drain()] == [1, 2]
    assert len(queue) == 0
