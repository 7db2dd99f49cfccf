"""Tests for PubSubService subscribe() and unsubscribe()."""

from concurrent.futures import Future
from unittest.mock import Mock

import pytest
from google.api_core import exceptions

from pubsub_service.errors import ConfigValidationError, TopicNotFoundError, TransportError
from pubsub_service.models import EventType
from pubsub_service.pubsub import ReceivedMessage

from conftest import PROJECT_ID, FakeMessage, topic_handle

SUB_PATH = f"projects/{PROJECT_ID}/subscriptions/orders-sub"
TOPIC_PATH = f"projects/{PROJECT_ID}/topics/orders"


@pytest.fixture
def registered(ready_service, publisher):
    publisher.get_topic.return_value = topic_handle("orders")
    return ready_service


def streaming_callback(subscriber):
    """The dispatch function handed to the streaming pull."""
    return subscriber.subscribe.call_args.kwargs["callback"]


def done_callback(subscriber):
    """The function registered on the streaming pull future."""
    future = subscriber.subscribe.return_value
    return future.add_done_callback.call_args.args[0]


class TestSubscribe:
    """Test subscribe()."""

    @pytest.mark.asyncio
    async def test_creates_missing_subscription(self, registered, sink, subscriber, pubsub_v1):
        await registered.create_topic("orders")
        subscriber.get_subscription.side_effect = exceptions.NotFound("missing")

        result = await registered.subscribe(
            "orders", "orders-sub", Mock(), {"maxInProgress": 3, "ackDeadlineSeconds": 20}
        )

        assert result is True
        subscriber.create_subscription.assert_called_once_with(
            request={"name": SUB_PATH, "topic": TOPIC_PATH, "ack_deadline_seconds": 20}
        )
        pubsub_v1.types.FlowControl.assert_called_once_with(max_messages=3)
        assert subscriber.subscribe.call_args.args == (SUB_PATH,)
        assert (
            subscriber.subscribe.call_args.kwargs["flow_control"]
            is pubsub_v1.types.FlowControl.return_value
        )
        assert sink.of_type(EventType.SUCCESS)[-1].message == "Created subscription"

    @pytest.mark.asyncio
    async def test_attaches_to_existing_subscription(self, registered, sink, subscriber):
        await registered.create_topic("orders")

        await registered.subscribe("orders", "orders-sub", Mock())

        subscriber.create_subscription.assert_not_called()
        subscriber.subscribe.assert_called_once()
        event = sink.of_type(EventType.SUCCESS)[-1]
        assert event.message == "Subscription already exists"
        assert event.data == {"topic_name": TOPIC_PATH, "subscription_name": SUB_PATH}

    @pytest.mark.asyncio
    async def test_ack_deadline_defaults_to_config(self, registered, subscriber):
        await registered.create_topic("orders")
        subscriber.get_subscription.side_effect = exceptions.NotFound("missing")

        await registered.subscribe("orders", "orders-sub", Mock())

        request = subscriber.create_subscription.call_args.kwargs["request"]
        assert request["ack_deadline_seconds"] == 300

    @pytest.mark.asyncio
    async def test_zero_max_in_progress_keeps_client_flow_control(
        self, registered, subscriber, pubsub_v1
    ):
        await registered.create_topic("orders")

        await registered.subscribe("orders", "orders-sub", Mock(), {"maxInProgress": 0})

        pubsub_v1.types.FlowControl.assert_not_called()
        assert "flow_control" not in subscriber.subscribe.call_args.kwargs

    @pytest.mark.asyncio
    async def test_requires_registered_topic(self, ready_service, subscriber):
        with pytest.raises(TopicNotFoundError):
            await ready_service.subscribe("orders", "orders-sub", Mock())
        subscriber.get_subscription.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_options_rejected(self, registered, subscriber):
        await registered.create_topic("orders")

        with pytest.raises(ConfigValidationError):
            await registered.subscribe("orders", "orders-sub", Mock(), {"maxInProgress": -1})
        subscriber.subscribe.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_failure_raises(self, registered, subscriber):
        await registered.create_topic("orders")
        subscriber.get_subscription.side_effect = exceptions.NotFound("missing")
        subscriber.create_subscription.side_effect = exceptions.PermissionDenied("denied")

        with pytest.raises(TransportError):
            await registered.subscribe("orders", "orders-sub", Mock())
        subscriber.subscribe.assert_not_called()


class TestMessageDelivery:
    """Messages reach the callback wrapped as ReceivedMessage."""

    @pytest.mark.asyncio
    async def test_json_payload_is_parsed(self, registered, subscriber):
        await registered.create_topic("orders")
        callback = Mock()
        await registered.subscribe("orders", "orders-sub", callback)

        raw = FakeMessage(b'{"a":1}')
        streaming_callback(subscriber)(raw)

        [message] = callback.call_args.args
        assert isinstance(message, ReceivedMessage)
        assert message.data == {"a": 1}
        raw.ack.assert_not_called()
        message.ack()
        raw.ack.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_malformed_payload_falls_back_to_text(self, registered, sink, subscriber):
        await registered.create_topic("orders")
        callback = Mock()
        await registered.subscribe("orders", "orders-sub", callback)

        streaming_callback(subscriber)(FakeMessage(b"{bad json"))

        assert callback.call_args.args[0].data == "{bad json"
        assert sink.of_type(EventType.ERROR) == []

    @pytest.mark.asyncio
    async def test_callback_exception_is_reported(self, registered, sink, subscriber):
        await registered.create_topic("orders")
        error = ValueError("handler broke")
        await registered.subscribe("orders", "orders-sub", Mock(side_effect=error))

        raw = FakeMessage(b"{}")
        streaming_callback(subscriber)(raw)

        [event] = sink.of_type(EventType.ERROR)
        assert event.err is error
        assert event.data["subscription_name"] == SUB_PATH
        raw.ack.assert_not_called()
        raw.nack.assert_not_called()

    @pytest.mark.asyncio
    async def test_second_subscribe_shares_the_stream(self, registered, subscriber):
        await registered.create_topic("orders")
        first, second = Mock(), Mock()
        await registered.subscribe("orders", "orders-sub", first)
        await registered.subscribe("orders", "orders-sub", second)

        subscriber.subscribe.assert_called_once()
        streaming_callback(subscriber)(FakeMessage(b"1"))

        assert first.call_args.args[0].data == 1
        assert second.call_args.args[0].data == 1
        assert registered.listener_count("orders-sub") == 2


class TestStreamErrors:
    """Streaming pull failures go to the error event."""

    @pytest.mark.asyncio
    async def test_stream_error_is_reported(self, registered, sink, subscriber):
        await registered.create_topic("orders")
        await registered.subscribe("orders", "orders-sub", Mock())

        failed = Future()
        error = exceptions.NotFound("subscription deleted")
        failed.set_exception(error)
        done_callback(subscriber)(failed)

        [event] = sink.of_type(EventType.ERROR)
        assert event.err is error
        assert event.data == {"topic_name": TOPIC_PATH, "subscription_name": SUB_PATH}
        assert registered.listener_count("orders-sub") == 0

    @pytest.mark.asyncio
    async def test_cancelled_stream_is_not_an_error(self, registered, sink, subscriber):
        await registered.create_topic("orders")
        await registered.subscribe("orders", "orders-sub", Mock())

        cancelled = Future()
        cancelled.cancel()
        done_callback(subscriber)(cancelled)

        assert sink.of_type(EventType.ERROR) == []


class TestUnsubscribe:
    """Test unsubscribe()."""

    @pytest.mark.asyncio
    async def test_removes_listener_and_deletes_subscription(self, registered, sink, subscriber):
        await registered.create_topic("orders")
        callback = Mock()
        await registered.subscribe("orders", "orders-sub", callback)

        assert await registered.unsubscribe("orders", "orders-sub", callback) is True

        assert registered.listener_count("orders-sub") == 0
        subscriber.subscribe.return_value.cancel.assert_called_once_with()
        subscriber.delete_subscription.assert_called_once_with(
            request={"subscription": SUB_PATH}
        )
        assert sink.of_type(EventType.LOG)[-1].message == (
            f"Removed listener from {TOPIC_PATH}, {SUB_PATH}"
        )

    @pytest.mark.asyncio
    async def test_removes_only_the_given_listener(self, registered, subscriber):
        await registered.create_topic("orders")
        first, second = Mock(), Mock()
        await registered.subscribe("orders", "orders-sub", first)
        await registered.subscribe("orders", "orders-sub", second)

        await registered.unsubscribe("orders", "orders-sub", first)

        assert registered.listener_count("orders-sub") == 1
        subscriber.subscribe.return_value.cancel.assert_not_called()
        streaming_callback(subscriber)(FakeMessage(b"{}"))
        first.assert_not_called()
        second.assert_called_once()

    @pytest.mark.asyncio
    async def test_different_reference_is_a_noop_removal(self, registered, subscriber):
        await registered.create_topic("orders")
        callback = Mock()
        await registered.subscribe("orders", "orders-sub", callback)

        await registered.unsubscribe("orders", "orders-sub", Mock())

        assert registered.listener_count("orders-sub") == 1
        subscriber.subscribe.return_value.cancel.assert_not_called()
        streaming_callback(subscriber)(FakeMessage(b"{}"))
        callback.assert_called_once()

    @pytest.mark.asyncio
    async def test_requires_registered_topic(self, ready_service, subscriber):
        with pytest.raises(TopicNotFoundError):
            await ready_service.unsubscribe("orders", "orders-sub", Mock())
        subscriber.delete_subscription.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_failure_raises(self, registered, subscriber):
        await registered.create_topic("orders")
        subscriber.delete_subscription.side_effect = exceptions.NotFound("missing")

        with pytest.raises(TransportError):
            await registered.unsubscribe("orders", "orders-sub", Mock())
