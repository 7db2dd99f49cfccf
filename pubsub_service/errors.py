"""
Exceptions raised by the Pub/Sub service.
"""

from typing import Any, Dict, List, Optional

from pydantic import ValidationError


class PubSubServiceError(Exception):
    """Base exception for all pubsub_service errors."""


class ConfigValidationError(PubSubServiceError, ValueError):
    """Configuration, subscribe options or publish meta failed validation."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def from_validation_error(
        cls, message: str, error: ValidationError
    ) -> "ConfigValidationError":
        errors = error.errors(include_url=False, include_input=False)
        fields = ", ".join(
            ".".join(str(part) for part in err["loc"]) or "<root>" for err in errors
        )
        return cls(f"{message}: {fields}", errors=errors)


class NotInitializedError(PubSubServiceError):
    """Operation attempted before init() connected the client."""


class PubSubConnectionError(PubSubServiceError):
    """init() could not reach the Pub/Sub service."""


class TopicNotFoundError(PubSubServiceError, LookupError):
    """Topic name is not registered with this service instance."""

    def __init__(self, topic_name: str):
        super().__init__(
            f"Topic '{topic_name}' is not registered, call create_topic() first"
        )
        self.topic_name = topic_name


class TransportError(PubSubServiceError):
    """A call against the Pub/Sub service failed."""

    def __init__(self, message: str, topic_name: Optional[str] = None):
        super().__init__(message)
        self.topic_name = topic_name
