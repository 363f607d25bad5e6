"""
Decision Event Bus — in-process pub/sub for decision-completed events.

Transport is out of scope: consumers are async callables that forward the
event wherever it needs to go (SSE, a queue, a webhook). One failing
consumer never affects the others or the decision.
"""

from typing import Awaitable, Callable

import structlog

from riskgate.schemas.decision import DecisionCompletedEvent

logger = structlog.get_logger(__name__)

Consumer = Callable[[DecisionCompletedEvent], Awaitable[None]]


class DecisionEventBus:

    def __init__(self):
        self._consumers: list[Consumer] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._consumers)

    def subscribe(self, consumer: Consumer) -> Callable[[], None]:
        """Register a consumer. Returns a callable that unsubscribes it."""
        self._consumers.append(consumer)
        logger.info("event_subscriber_added", total=len(self._consumers))

        def unsubscribe() -> None:
            if consumer in self._consumers:
                self._consumers.remove(consumer)
                logger.info("event_subscriber_removed", remaining=len(self._consumers))

        return unsubscribe

    async def publish(self, event: DecisionCompletedEvent) -> int:
        """Deliver to every consumer in subscription order. Returns deliveries."""
        delivered = 0
        for consumer in list(self._consumers):
            try:
                await consumer(event)
                delivered += 1
            except Exception as e:
                logger.error(
                    "event_consumer_failed",
                    event_type=event.event_type,
                    decision_id=event.decision_id,
                    error=str(e),
                )

        logger.debug(
            "event_published",
            event_type=event.event_type,
            decision_id=event.decision_id,
            delivered=delivered,
        )
        return delivered
