"""
Lifecycle event models emitted by the Pub/Sub service.
"""

import time
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    """Kinds of lifecycle events."""

    LOG = "log"
    SUCCESS = "success"
    ERROR = "error"


class ServiceEvent(BaseModel):
    """Informational or success event."""

    event_type: EventType
    service: str
    message: str
    data: Optional[Dict[str, Any]] = None
    timestamp: float = Field(default_factory=time.time)


class ServiceErrorEvent(BaseModel):
    """Error reported by the service instead of being raised."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    event_type: EventType = EventType.ERROR
    service: str
    err: BaseException
    data: Optional[Dict[str, Any]] = None
    timestamp: float = Field(default_factory=time.time)

    @property
    def message(self) -> str:
        return str(self.err) or type(self.err).__name__
