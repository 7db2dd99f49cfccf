"""
Data models shared by the Pub/Sub service.
"""

from .events import EventType, ServiceEvent, ServiceErrorEvent
from .messages import Envelope, MessageMeta, SubscribeOptions

__all__ = [
    "EventType",
    "ServiceEvent",
    "ServiceErrorEvent",
    "Envelope",
    "MessageMeta",
    "SubscribeOptions",
]
