"""Outbox-pattern delivery of accepted events to the broker."""

from __future__ import annotations

from .broker import BrokerClient, KafkaBroker, KafkaConfig, PublishAck
from .errors import BrokerPublishError, OutboxRecordNotFoundError
from .messages import OutboundMessage, build_outbound_message, encode_message
from .publisher import (
    DEFAULT_TOPIC,
    OutboxConfig,
    OutboxEventType,
    OutboxPublisher,
    SweepResult,
)
from .sweeper import RetrySweeper

__all__ = [
    "DEFAULT_TOPIC",
    "BrokerClient",
    "BrokerPublishError",
    "KafkaBroker",
    "KafkaConfig",
    "OutboundMessage",
    "OutboxConfig",
    "OutboxEventType",
    "OutboxPublisher",
    "OutboxRecordNotFoundError",
    "PublishAck",
    "RetrySweeper",
    "SweepResult",
    "build_outbound_message",
    "encode_message",
]
