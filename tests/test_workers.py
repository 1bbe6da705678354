import asyncio
import logging
from dataclasses import replace

import pytest

from mqtt_stress.core.deadline import RunDeadline
from mqtt_stress.core.workers import StressWorker, WorkerState
from mqtt_stress.models.events import ClientEvent, EventType
from mqtt_stress.models.worker_config import PayloadMode


def make_worker(template, broker, deadline, events=None, index=0, **overrides):
    config = template.for_worker(index, "stress")
    if overrides:
        config = replace(config, **overrides)
    return StressWorker(config, events if events is not None else asyncio.Queue(), deadline, broker, disconnect_grace_ms=5)


def drain_events(events):
    collected = []
    while not events.empty():
        collected.append(events.get_nowait())
    return collected


@pytest.mark.asyncio
async def test_worker_lifecycle(worker_template, fake_broker):
    deadline = RunDeadline(0.1).start()
    events = asyncio.Queue()
    worker = make_worker(worker_template, fake_broker, deadline, events)
    assert worker.state is WorkerState.CREATED

    await worker.setup().connect()
    assert worker.state is WorkerState.CONNECTED
    worker.publish().subscribe()
    assert worker.state is WorkerState.RUNNING

    await asyncio.wait_for(worker.publish_task, 1)
    await worker.drain()
    await asyncio.sleep(0)

    connection = fake_broker.connections["mqtt-stress-worker-0"]
    assert worker.state is WorkerState.DISCONNECTED
    assert connection.disconnect_grace_ms == 5
    assert all(topic == "stress/mqtt-stress-worker-0" for topic, _ in connection.published)

    collected = drain_events(events)
    published = [e for e in collected if e.event_type is EventType.MESSAGE_PUBLISHED]
    received = [e for e in collected if e.event_type is EventType.MESSAGE_RECEIVED]
    assert len(published) == len(connection.published)
    assert len(received) == len(connection.published)


@pytest.mark.asyncio
async def test_publish_loop_observes_deadline_within_one_delay(worker_template, fake_broker):
    deadline = RunDeadline(10).start()
    worker = make_worker(worker_template, fake_broker, deadline, message_delay=0.05)
    await worker.setup().connect()
    worker.publish().subscribe()

    await asyncio.sleep(0.12)
    deadline.fire("test")
    fired_at = asyncio.get_running_loop().time()
    await asyncio.wait_for(worker.publish_task, 1)
    assert asyncio.get_running_loop().time() - fired_at < 0.05 + 0.04


@pytest.mark.asyncio
async def test_sends_are_delay_spaced(worker_template, fake_broker):
    deadline = RunDeadline(0.25).start()
    worker = make_worker(worker_template, fake_broker, deadline, message_delay=0.05)
    await worker.setup().connect()
    worker.publish().subscribe()
    await asyncio.wait_for(worker.publish_task, 1)

    sent = len(fake_broker.connections["mqtt-stress-worker-0"].published)
    assert 4 <= sent <= 6


@pytest.mark.asyncio
async def test_incrementing_payloads_per_worker(worker_template, fake_broker):
    deadline = RunDeadline(0.06).start()
    workers = [
        make_worker(worker_template, fake_broker, deadline, index=i,
                    payload_mode=PayloadMode.INCREMENTING, payload="0")
        for i in range(2)
    ]
    for worker in workers:
        await worker.setup().connect()
        worker.publish().subscribe()
    await asyncio.gather(*(w.publish_task for w in workers))

    for i in range(2):
        payloads = [p for _, p in fake_broker.connections[f"mqtt-stress-worker-{i}"].published]
        assert payloads == [str(n).encode() for n in range(1, len(payloads) + 1)]


@pytest.mark.asyncio
async def test_connect_failure_is_logged_and_worker_keeps_going(worker_template, broker_factory, caplog):
    broker = broker_factory(refuse={"mqtt-stress-worker-0"})
    deadline = RunDeadline(0.05).start()
    events = asyncio.Queue()
    worker = make_worker(worker_template, broker, deadline, events)

    with caplog.at_level(logging.ERROR, logger="mqtt_stress.core.workers"):
        await worker.setup().connect()
        worker.publish().subscribe()
        await asyncio.wait_for(worker.publish_task, 1)

    messages = [r.getMessage() for r in caplog.records]
    assert any("error connecting to broker" in m and "mqtt-stress-worker-0" in m for m in messages)
    assert any("error subscribing" in m for m in messages)
    assert any("error publishing message" in m for m in messages)
    assert worker.state is WorkerState.DISCONNECTED
    assert events.empty()


@pytest.mark.asyncio
async def test_failed_acknowledgment_is_logged_not_counted(worker_template, broker_factory, caplog):
    broker = broker_factory(fail_acks=True)
    deadline = RunDeadline(0.05).start()
    events = asyncio.Queue()
    worker = make_worker(worker_template, broker, deadline, events)

    with caplog.at_level(logging.ERROR, logger="mqtt_stress.core.workers"):
        await worker.setup().connect()
        worker.publish().subscribe()
        await asyncio.wait_for(worker.publish_task, 1)
        await worker.drain()

    assert events.empty()
    assert worker.pending_acks == 0
    assert any("error publishing message" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_receive_callback_hands_off_without_blocking(worker_template, fake_broker):
    deadline = RunDeadline(10)
    events = asyncio.Queue()
    worker = make_worker(worker_template, fake_broker, deadline, events)
    await worker.setup().connect()
    worker.subscribe()

    handler = fake_broker.connections["mqtt-stress-worker-0"].handlers["stress/mqtt-stress-worker-0"]
    await asyncio.to_thread(handler, "stress/mqtt-stress-worker-0", b"x")
    event = await asyncio.wait_for(events.get(), 1)
    assert event == ClientEvent.received()


@pytest.mark.asyncio
async def test_pending_acknowledgments_do_not_block_publishing(worker_template, broker_factory, caplog):
    broker = broker_factory(hold_acks=True)
    deadline = RunDeadline(0.1).start()
    worker = make_worker(worker_template, broker, deadline)

    await worker.setup().connect()
    worker.publish().subscribe()
    await asyncio.wait_for(worker.publish_task, 1)

    connection = broker.connections["mqtt-stress-worker-0"]
    assert len(connection.published) >= 5
    assert worker.pending_acks == len(connection.published)

    with caplog.at_level(logging.WARNING, logger="mqtt_stress.core.workers"):
        abandoned = await asyncio.wait_for(worker.drain(0.01), 1)

    assert abandoned == len(connection.published)
    assert worker.pending_acks == 0
    assert any("abandoning" in r.getMessage() for r in caplog.records)
