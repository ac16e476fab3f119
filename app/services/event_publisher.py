"""
Monitoring event recorder — fire-and-forget.

Records loan / liquidation events for downstream consumers
(dashboards, audit, alerting). Keeps a bounded tail in memory for the
liquidation status endpoint and forwards to an optional sink, in production
a Kafka topic. A failing sink or recorder is logged and ignored: it never
fails the core operation.
"""
from __future__ import annotations

import asyncio
import json
import threading
from collections import deque
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from app.core.config import Settings
from app.services.interfaces import EventRecorder

logger = structlog.get_logger()

DEFAULT_TAIL_SIZE = 500


class MonitoringEventRecorder:
    def __init__(
        self,
        sink: Optional[Callable[[dict[str, Any]], None]] = None,
        tail_size: int = DEFAULT_TAIL_SIZE,
    ):
        self._sink = sink
        self._lock = threading.Lock()
        self._events: deque[dict[str, Any]] = deque(maxlen=tail_size)

    def record_event(self, kind: str, payload: dict[str, Any]) -> None:
        event = {
            "event_type": kind,
            "recorded_at": datetime.now(timezone.utc).isoformat(),
            **payload,
        }
        with self._lock:
            self._events.append(event)

        logger.info("monitoring_event", event_type=kind, payload=payload)

        if self._sink is None:
            return
        try:
            self._sink(event)
        except Exception as e:
            # Fire-and-forget: log but don't fail the caller
            logger.warning("monitoring_sink_failed", event_type=kind, error=str(e))

    def recent(self, kind: Optional[str] = None, limit: int = 50) -> list[dict[str, Any]]:
        with self._lock:
            events = [e for e in self._events if kind is None or e["event_type"] == kind]
        return events[-limit:][::-1]


def record_safely(recorder: EventRecorder, kind: str, payload: dict[str, Any]) -> None:
    """Record through any EventRecorder; a raising recorder is logged, never propagated."""
    try:
        recorder.record_event(kind, payload)
    except Exception as e:
        # Fire-and-forget: log but don't fail the caller
        logger.warning("monitoring_event_failed", event_type=kind, error=str(e))


class KafkaEventSink:
    """
    Publishes recorded events to a Kafka topic.

    The producer lives on the application's event loop (start() / stop()
    run in the lifespan). Events are recorded from worker threads, so each
    call schedules the send onto that loop and returns immediately.
    """

    def __init__(self, bootstrap_servers: str, topic: str, producer_factory=None):
        self._bootstrap_servers = bootstrap_servers
        self._topic = topic
        self._producer_factory = producer_factory
        self._producer = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def started(self) -> bool:
        return self._producer is not None

    async def start(self) -> None:
        if self._producer is not None:
            return
        factory = self._producer_factory
        if factory is None:
            from aiokafka import AIOKafkaProducer
            factory = AIOKafkaProducer
        producer = factory(bootstrap_servers=self._bootstrap_servers)
        try:
            await producer.start()
        except Exception as e:
            # Events stay in the in-memory tail; the service runs without Kafka
            logger.warning("kafka_producer_start_failed", bootstrap_servers=self._bootstrap_servers, error=str(e))
            return
        self._producer = producer
        self._loop = asyncio.get_running_loop()
        logger.info("kafka_producer_started", bootstrap_servers=self._bootstrap_servers, topic=self._topic)

    async def stop(self) -> None:
        producer, self._producer = self._producer, None
        self._loop = None
        if producer is not None:
            await producer.stop()
            logger.info("kafka_producer_stopped")

    def __call__(self, event: dict[str, Any]) -> None:
        producer, loop = self._producer, self._loop
        if producer is None or loop is None or loop.is_closed():
            logger.debug("kafka_sink_not_started", event_type=event.get("event_type"))
            return
        asyncio.run_coroutine_threadsafe(self._publish(producer, event), loop)

    async def _publish(self, producer, event: dict[str, Any]) -> None:
        key = event.get("loan_id") or event.get("application_id") or event["event_type"]
        try:
            await producer.send_and_wait(
                self._topic,
                json.dumps(event, default=str).encode("utf-8"),
                key=str(key).encode("utf-8"),
            )
            logger.info("kafka_event_published", event_type=event["event_type"], key=key)
        except Exception as e:
            # Fire-and-forget: log but don't fail the request
            logger.warning("kafka_publish_failed", event_type=event["event_type"], error=str(e))


def build_event_sink(settings: Settings) -> Optional[KafkaEventSink]:
    if not settings.kafka_enabled:
        return None
    return KafkaEventSink(settings.kafka_bootstrap, settings.kafka_topic_lending_events)
