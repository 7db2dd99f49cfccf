"""
Event sinks receiving the log/success/error stream of a PubSubService.
"""

from typing import Protocol, runtime_checkable

from pubsub_service.logging import get_structured_logger
from pubsub_service.models.events import ServiceErrorEvent, ServiceEvent

logger = get_structured_logger(__name__)


@runtime_checkable
class EventSink(Protocol):
    """Observer of service lifecycle events."""

    def on_log(self, event: ServiceEvent) -> None:
        """Informational event."""
        ...

    def on_success(self, event: ServiceEvent) -> None:
        """An operation completed."""
        ...

    def on_error(self, event: ServiceErrorEvent) -> None:
        """An error was reported instead of raised."""
        ...


class LoggingEventSink:
    """Forwards lifecycle events to the structured logger."""

    def on_log(self, event: ServiceEvent) -> None:
        logger.info(event.message, service=event.service, data=event.data)

    def on_success(self, event: ServiceEvent) -> None:
        logger.info(event.message, service=event.service, data=event.data)

    def on_error(self, event: ServiceErrorEvent) -> None:
        logger.error(
            event.message,
            service=event.service,
            error_type=type(event.err).__name__,
            data=event.data,
            exc_info=(type(event.err), event.err, event.err.__traceback__),
        )

