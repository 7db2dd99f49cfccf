"""
Google Cloud Pub/Sub service: topics, subscriptions and publishing.
"""

from pubsub_service.pubsub.message import ReceivedMessage, parse_or_fallback
from pubsub_service.pubsub.service import PubSubService
from pubsub_service.pubsub.sink import EventSink, LoggingEventSink

__all__ = [
    "PubSubService",
    "ReceivedMessage",
    "parse_or_fallback",
    "EventSink",
    "LoggingEventSink",
]
