"""Tests for event formatting and best-effort publishing."""

from __future__ import annotations

import json
import logging

import pytest

from buildworker.errors import TelemetryPublishError
from buildworker.models import EventLevel, JobIdentity
from buildworker.telemetry import KafkaEventPublisher, TelemetryEmitter


class FailingPublisher:
    def __init__(self) -> None:
        self.calls = 0

    def publish(self, topic, key, payload):
        self.calls += 1
        raise TelemetryPublishError("broker unreachable")

    def close(self):
        raise RuntimeError("already closed")


class FakeMessage:
    def partition(self):
        return 0

    def offset(self):
        return 7


class FakeProducer:
    """Mimics confluent_kafka.Producer delivery callbacks."""

    def __init__(self, error=None, deliver=True) -> None:
        self.error = error
        self.deliver = deliver
        self.produced: list[dict] = []
        self._pending = []
        self.flushed = False

    def produce(self, topic, key, value, on_delivery):
        self.produced.append({"topic": topic, "key": key, "value": value})
        if self.deliver:
            self._pending.append(on_delivery)

    def poll(self, timeout):
        while self._pending:
            self._pending.pop(0)(self.error, FakeMessage())
        return 0

    def flush(self, timeout):
        self.flushed = True
        return 0


@pytest.mark.asyncio
async def test_event_merges_identity_message_level_and_extra(emitter, publisher):
    delivered = await emitter.emit("Uploading a.js", EventLevel.PROCESSING, fileName="a.js")

    assert delivered is True
    [(topic, key, payload)] = publisher.messages
    assert topic == "builder-logs"
    assert key == "log"
    assert payload["PROJECT_ID"] == "proj-1"
    assert payload["DEPLOYMENT_ID"] == "dep-42"
    assert payload["GIT_URI"] == "https://github.com/example/site.git"
    assert payload["log"] == "Uploading a.js"
    assert payload["logLevel"] == "processing"
    assert payload["fileName"] == "a.js"
    assert payload["timestamp"]


@pytest.mark.asyncio
async def test_events_keep_emission_order(emitter, publisher):
    for i in range(10):
        await emitter.emit(f"line {i}")

    assert [p["log"] for p in publisher.payloads] == [f"line {i}" for i in range(10)]
    assert {p["logLevel"] for p in publisher.payloads} == {"info"}


@pytest.mark.asyncio
async def test_empty_identity_is_tolerated(publisher):
    emitter = TelemetryEmitter(JobIdentity(), publisher, "builder-logs")

    await emitter.emit("hello")

    payload = publisher.payloads[0]
    assert payload["PROJECT_ID"] == ""
    assert payload["DEPLOYMENT_ID"] == ""


@pytest.mark.asyncio
async def test_publish_failure_is_logged_and_swallowed(identity, caplog):
    failing = FailingPublisher()
    emitter = TelemetryEmitter(identity, failing, "builder-logs")

    with caplog.at_level(logging.WARNING, logger="buildworker.telemetry"):
        delivered = await emitter.emit("Build Started...")

    assert delivered is False
    assert failing.calls == 1  # dropped, not retried
    assert "dropped telemetry event" in caplog.text


def test_close_failure_is_swallowed(identity):
    TelemetryEmitter(identity, FailingPublisher(), "builder-logs").close()


def test_level_values_are_one_lowercase_vocabulary():
    assert [level.value for level in EventLevel] == [
        "info",
        "warning",
        "error",
        "success",
        "processing",
    ]


def test_kafka_publisher_sends_json_with_log_key():
    producer = FakeProducer()
    publisher = KafkaEventPublisher("broker:9092", client_id="c", producer=producer)

    publisher.publish("builder-logs", "log", {"log": "hi", "logLevel": "info"})

    [sent] = producer.produced
    assert sent["topic"] == "builder-logs"
    assert sent["key"] == b"log"
    assert json.loads(sent["value"]) == {"log": "hi", "logLevel": "info"}


def test_kafka_publisher_raises_on_delivery_error():
    publisher = KafkaEventPublisher(
        "broker:9092", client_id="c", producer=FakeProducer(error="MSG_TIMED_OUT")
    )

    with pytest.raises(TelemetryPublishError, match="MSG_TIMED_OUT"):
        publisher.publish("builder-logs", "log", {"log": "hi"})


def test_kafka_publisher_times_out_without_delivery_report():
    publisher = KafkaEventPublisher(
        "broker:9092", client_id="c", timeout_s=0.2, producer=FakeProducer(deliver=False)
    )

    with pytest.raises(TelemetryPublishError, match="no delivery report"):
        publisher.publish("builder-logs", "log", {"log": "hi"})


def test_kafka_publisher_requires_broker():
    with pytest.raises(TelemetryPublishError):
        KafkaEventPublisher("  ", client_id="c", producer=FakeProducer())


def test_kafka_publisher_close_flushes():
    producer = FakeProducer()
    KafkaEventPublisher("broker:9092", client_id="c", producer=producer).close()
    assert producer.flushed
