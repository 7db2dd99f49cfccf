"""
Normalized view of messages delivered by a streaming pull subscription.
"""

import json
from typing import Any, Callable, Dict, Optional, Union


def _noop() -> None:
    return None


def parse_or_fallback(data: Union[bytes, str, None]) -> Any:
    """
    Best-effort JSON decode of a message payload.

    Never raises. Returns the parsed value, the decoded text when it is not
    valid JSON, or None when the bytes are not valid UTF-8.
    """
    if data is None:
        return None
    if isinstance(data, (bytes, bytearray)):
        try:
            text = bytes(data).decode("utf-8")
        except UnicodeDecodeError:
            return None
    else:
        text = data
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError, TypeError):
        return text


class ReceivedMessage:
    """
    Message handed to subscribe() callbacks.

    ack() is always bound to the underlying message. nack() and skip() are
    bound when the client message supports them and are no-ops otherwise.
    Acknowledging is up to the callback; nothing is acked automatically.
    """

    def __init__(self, raw: Any):
        self.raw = raw
        self.ack: Callable[[], Any] = raw.ack
        self.nack: Callable[[], Any] = self._capability(raw, "nack")
        self.skip: Callable[[], Any] = self._capability(raw, "skip")
        self.data: Any = parse_or_fallback(getattr(raw, "data", None))

    @staticmethod
    def _capability(raw: Any, name: str) -> Callable[[], Any]:
        method = getattr(raw, name, None)
        return method if callable(method) else _noop

    @property
    def message_id(self) -> Optional[str]:
        return getattr(self.raw, "message_id", None)

    @property
    def attributes(self) -> Dict[str, str]:
        return dict(getattr(self.raw, "attributes", None) or {})

    @property
    def publish_time(self):
        return getattr(self.raw, "publish_time", None)

    def __repr__(self) -> str:
        return f"ReceivedMessage(message_id={self.message_id!r}, data={self.data!r})"
