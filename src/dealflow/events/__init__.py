"""Event backbone for transcript processing triggers.

Provides Redis Streams pub/sub with a structured event schema, consumer
group processing, exponential-backoff retry, and dead letter queue
handling.

Exports:
    PipelineEvent: Event model carrying the job to process.
    EventType: Enum of event categories.
    EventBus: Publish/subscribe to Redis Streams.
    EventConsumer: Consumer with retry logic and consumer group management.
    DeadLetterQueue: DLQ handler for failed event review and replay.
"""

from __future__ import annotations

from src.dealflow.events.schemas import EventType, PipelineEvent

__all__ = [
    "DeadLetterQueue",
    "EventBus",
    "EventConsumer",
    "EventType",
    "PipelineEvent",
]


def __getattr__(name: str):  # noqa: N807
    """Lazy-load bus, consumer, and DLQ to avoid circular imports."""
    if name == "EventBus":
        from src.dealflow.events.bus import EventBus

        return EventBus
    if name == "EventConsumer":
        from src.dealflow.events.consumer import EventConsumer

        return EventConsumer
    if name == "DeadLetterQueue":
        from src.dealflow.events.dlq import DeadLetterQueue

        return DeadLetterQueue
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
