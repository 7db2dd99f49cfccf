"""
Message envelope and subscription option models.
"""

import json
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pubsub_service.errors import ConfigValidationError


class MessageMeta(BaseModel):
    """Routing metadata carried next to the content of an envelope."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    reply_to: Optional[str] = Field(default=None, alias="replyTo")
    correlation_id: Optional[str] = Field(default=None, alias="correlationId")

    @classmethod
    def load(
        cls, meta: Union["MessageMeta", Mapping[str, Any], None]
    ) -> "MessageMeta":
        """Validate publish meta, rejecting unknown fields."""
        if meta is None:
            return cls()
        if isinstance(meta, cls):
            return meta
        try:
            return cls.model_validate(meta)
        except ValidationError as e:
            raise ConfigValidationError.from_validation_error(
                "Invalid publish meta", e
            ) from e

    def to_wire(self) -> dict:
        """Camel-cased dict with unset fields left out."""
        return self.model_dump(by_alias=True, exclude_none=True)


class Envelope(BaseModel):
    """
    Wire envelope used by publish() and send().

    Encoded as UTF-8 JSON of ``{"content": <any>, "meta": {...}}``.
    """

    content: Any = None
    meta: MessageMeta = Field(default_factory=MessageMeta)

    def encode(self) -> bytes:
        """Serialize to the bytes published on the topic."""
        content = self.content
        if isinstance(content, BaseModel):
            content = content.model_dump(mode="json")
        return json.dumps({"content": content, "meta": self.meta.to_wire()}).encode(
            "utf-8"
        )

    @classmethod
    def decode(cls, data: Union[bytes, str]) -> "Envelope":
        """Parse envelope bytes produced by encode()."""
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        payload = json.loads(data)
        return cls(content=payload.get("content"), meta=MessageMeta.load(payload.get("meta")))


class SubscribeOptions(BaseModel):
    """
    Tuning parameters for subscribe().

    ack_deadline_seconds falls back to the service's configured default when
    left unset. max_in_progress bounds the number of outstanding messages the
    client delivers at once.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    ack_deadline_seconds: Optional[int] = Field(
        default=None, alias="ackDeadlineSeconds", ge=0
    )
    max_in_progress: int = Field(default=1, alias="maxInProgress", ge=0)

    @classmethod
    def load(
        cls, options: Union["SubscribeOptions", Mapping[str, Any], None]
    ) -> "SubscribeOptions":
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        try:
            return cls.model_validate(options)
        except ValidationError as e:
            raise ConfigValidationError.from_validation_error(
                "Invalid subscribe options", e
            ) from e
