"""
Thin service layer over Google Cloud Pub/Sub.
"""

from pubsub_service.config import PubSubConfig
from pubsub_service.errors import (
    ConfigValidationError,
    NotInitializedError,
    PubSubConnectionError,
    PubSubServiceError,
    TopicNotFoundError,
    TransportError,
)
from pubsub_service.pubsub import PubSubService

__all__ = [
    "PubSubService",
    "PubSubConfig",
    "PubSubServiceError",
    "ConfigValidationError",
    "NotInitializedError",
    "PubSubConnectionError",
    "TopicNotFoundError",
    "TransportError",
]
