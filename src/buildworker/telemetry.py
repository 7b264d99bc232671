"""Job-scoped event stream published to the message bus.

Every event carries the job identity so the dashboard can correlate build
output and upload progress with a deployment. Delivery is best effort: a
failed publish is logged locally and dropped, never retried.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import UTC, datetime
from typing import Any, Protocol

from buildworker.errors import TelemetryPublishError
from buildworker.models import EventLevel, JobIdentity, TelemetryEvent

log = logging.getLogger("buildworker.telemetry")

MESSAGE_KEY = "log"

_LOG_LEVELS = {
    EventLevel.ERROR: logging.ERROR,
    EventLevel.WARNING: logging.WARNING,
}


class EventPublisher(Protocol):
    """Blocking publish of one JSON payload. Raises TelemetryPublishError."""

    def publish(self, topic: str, key: str, payload: dict[str, Any]) -> None: ...

    def close(self) -> None: ...


class KafkaEventPublisher:
    """Publishes events to Kafka and waits for each delivery report."""

    def __init__(
        self,
        broker: str,
        *,
        client_id: str,
        username: str | None = None,
        password: str | None = None,
        timeout_s: float = 15.0,
        producer=None,
    ) -> None:
        if not broker.strip():
            raise TelemetryPublishError("kafka broker address is empty")
        self.timeout_s = timeout_s
        if producer is None:
            from confluent_kafka import Producer

            conf: dict[str, Any] = {
                "bootstrap.servers": broker.strip(),
                "client.id": client_id,
                "request.timeout.ms": int(timeout_s * 1000),
            }
            if username and password:
                conf.update(
                    {
                        "security.protocol": "SASL_SSL",
                        "sasl.mechanism": "PLAIN",
                        "sasl.username": username,
                        "sasl.password": password,
                    }
                )
            producer = Producer(conf)
        self._producer = producer

    def publish(self, topic: str, key: str, payload: dict[str, Any]) -> None:
        value = json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)
        delivery: dict[str, Any] = {}

        def _on_delivery(err, msg) -> None:
            delivery["error"] = err
            delivery["message"] = msg

        try:
            self._producer.produce(
                topic=topic,
                key=key.encode("utf-8"),
                value=value.encode("utf-8"),
                on_delivery=_on_delivery,
            )
        except Exception as exc:
            # BufferError when the local queue is full, KafkaException otherwise
            raise TelemetryPublishError(f"produce failed: {exc}") from exc

        deadline = time.monotonic() + self.timeout_s
        while "message" not in delivery:
            self._producer.poll(0.1)
            if time.monotonic() >= deadline:
                raise TelemetryPublishError(f"no delivery report within {self.timeout_s}s")
        if delivery["error"] is not None:
            raise TelemetryPublishError(f"delivery failed: {delivery['error']}")

    def close(self) -> None:
        remaining = self._producer.flush(self.timeout_s)
        if remaining:
            log.warning("%d telemetry messages still queued at shutdown", remaining)


class MemoryEventPublisher:
    """Keeps published payloads in memory, in publish order."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str, dict[str, Any]]] = []

    def publish(self, topic: str, key: str, payload: dict[str, Any]) -> None:
        self.messages.append((topic, key, payload))

    def close(self) -> None:
        pass

    @property
    def payloads(self) -> list[dict[str, Any]]:
        return [payload for _, _, payload in self.messages]


class TelemetryEmitter:
    """Formats events for one job and hands them to a publisher."""

    def __init__(self, identity: JobIdentity, publisher: EventPublisher, topic: str) -> None:
        self.identity = identity
        self.topic = topic
        self._publisher = publisher

    async def emit(
        self,
        message: str,
        level: EventLevel = EventLevel.INFO,
        **extra: Any,
    ) -> bool:
        """Publish one event. Returns False if it was dropped; never raises."""
        event = TelemetryEvent(
            identity=self.identity,
            message=message,
            level=level,
            timestamp=datetime.now(tz=UTC).isoformat(),
            extra=extra,
        )
        log.log(_LOG_LEVELS.get(event.level, logging.INFO), "[%s] %s", event.level, message)
        try:
            await asyncio.to_thread(
                self._publisher.publish, self.topic, MESSAGE_KEY, event.to_wire()
            )
        except Exception as exc:
            log.warning("dropped telemetry event %r: %s", message[:80], exc)
            return False
        return True

    def close(self) -> None:
        try:
            self._publisher.close()
        except Exception as exc:
            log.warning("telemetry publisher close failed: %s", exc)
