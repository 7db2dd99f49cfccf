"""Shared fixtures for pubsub_service tests."""

from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest
import pytest_asyncio

from pubsub_service.pubsub import PubSubService

PROJECT_ID = "test-project"


class RecordingEventSink:
    """Keeps every event in memory, in arrival order."""

    def __init__(self):
        self.events = []

    def on_log(self, event):
        self.events.append(event)

    def on_success(self, event):
        self.events.append(event)

    def on_error(self, event):
        self.events.append(event)

    def of_type(self, event_type):
        return [event for event in self.events if event.event_type == event_type]


class FakeMessage:
    """Stand-in for a streaming pull message."""

    def __init__(self, data: bytes, nack: bool = True, message_id: str = "m-1"):
        self.data = data
        self.message_id = message_id
        self.attributes = {"origin": "test"}
        self.publish_time = None
        self.ack = Mock()
        if nack:
            self.nack = Mock()


def topic_handle(name: str) -> SimpleNamespace:
    return SimpleNamespace(name=f"projects/{PROJECT_ID}/topics/{name}")


@pytest.fixture
def sink():
    """Collect emitted events."""
    return RecordingEventSink()


@pytest.fixture
def pubsub_v1():
    """Patch the Google Pub/Sub client module used by the service."""
    with patch("pubsub_service.pubsub.service.pubsub_v1") as module:
        publisher = module.PublisherClient.return_value
        subscriber = module.SubscriberClient.return_value
        publisher.topic_path.side_effect = lambda project, topic: f"projects/{project}/topics/{topic}"
        subscriber.subscription_path.side_effect = (
            lambda project, sub: f"projects/{project}/subscriptions/{sub}"
        )
        publisher.list_topics.return_value = iter([])
        yield module


@pytest.fixture
def publisher(pubsub_v1):
    return pubsub_v1.PublisherClient.return_value


@pytest.fixture
def subscriber(pubsub_v1):
    return pubsub_v1.SubscriberClient.return_value


@pytest.fixture
def service(sink, pubsub_v1):
    """An uninitialized service."""
    return PubSubService("pubsub", sink, {"projectId": PROJECT_ID})


@pytest_asyncio.fixture
async def ready_service(service):
    """A service after a successful init()."""
    await service.init()
    return service
