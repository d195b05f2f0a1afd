"""Kafka sink publishing one message per event via aiokafka."""

from __future__ import annotations

from typing import Any

import structlog

from eventrouter.sinks.base import BufferedSink, EventData

_log = structlog.get_logger(component="sinks.kafka")


class KafkaSink(BufferedSink):
    """Produces each envelope to *topic*, keyed by the Event uid.

    Args:
        brokers:   Comma-separated bootstrap servers.
        topic:     Destination topic.
        client_id: Kafka client id.
    """

    def __init__(
        self,
        brokers: str,
        topic: str,
        client_id: str = "eventrouter",
        buffer_size: int = 1500,
        batch_size: int = 100,
        discard_messages: bool = True,
    ) -> None:
        if not brokers:
            raise ValueError("Kafka brokers must not be empty")
        if not topic:
            raise ValueError("Kafka topic must not be empty")
        super().__init__(buffer_size=buffer_size, batch_size=batch_size, discard_messages=discard_messages)
        self._brokers = brokers
        self._topic = topic
        self._client_id = client_id
        self._producer: Any = None

    @property
    def sink_name(self) -> str:
        return "kafka"

    async def _open(self) -> None:
        from aiokafka import AIOKafkaProducer

        self._producer = AIOKafkaProducer(
            bootstrap_servers=self._brokers,
            client_id=self._client_id,
            acks="all",
        )
        await self._producer.start()
        _log.info("kafka producer started", brokers=self._brokers, topic=self._topic)

    async def _deliver(self, batch: list[EventData]) -> None:
        assert self._producer is not None
        from aiokafka.errors import KafkaError

        for data in batch:
            key = (data.event.uid or data.event.key).encode("utf-8")
            try:
                await self._producer.send_and_wait(self._topic, value=data.to_json().encode("utf-8"), key=key)
            except KafkaError as exc:
                _log.warning("kafka_publish_failed", error=str(exc), event_key=data.event.key, topic=self._topic)

    async def _close(self) -> None:
        if self._producer is not None:
            await self._producer.stop()
            self._producer = None
