"""
Google Cloud Pub/Sub service wrapping topic, subscription and publishing calls.
Supports both Pub/Sub (production) and Pub/Sub emulator (local development).
"""

import asyncio
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from google.api_core import exceptions
from google.cloud import pubsub_v1
from google.oauth2 import service_account

from pubsub_service.config import Config, PubSubConfig
from pubsub_service.errors import (
    NotInitializedError,
    PubSubConnectionError,
    TopicNotFoundError,
    TransportError,
)
from pubsub_service.logging import log_debug, log_error, log_info, log_warning
from pubsub_service.models.events import EventType, ServiceErrorEvent, ServiceEvent
from pubsub_service.models.messages import Envelope, MessageMeta, SubscribeOptions
from pubsub_service.pubsub.message import ReceivedMessage
from pubsub_service.pubsub.sink import EventSink, LoggingEventSink

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

MessageCallback = Callable[[ReceivedMessage], Any]


class _SubscriptionListeners:
    """Callbacks fed by one streaming pull."""

    def __init__(self, service: "PubSubService", topic_name: str, subscription_path: str):
        self.service = service
        self.topic_name = topic_name
        self.subscription_path = subscription_path
        self.callbacks: List[MessageCallback] = []
        self.future = None

    def add(self, callback: MessageCallback) -> None:
        self.callbacks.append(callback)

    def remove(self, callback: MessageCallback) -> bool:
        try:
            self.callbacks.remove(callback)
        except ValueError:
            return False
        return True

    def dispatch(self, raw_message) -> None:
        message = ReceivedMessage(raw_message)
        for callback in list(self.callbacks):
            try:
                callback(message)
            except Exception as e:
                self.service.error(
                    e,
                    {
                        "topic_name": self.topic_name,
                        "subscription_name": self.subscription_path,
                        "message_id": message.message_id,
                    },
                )

    def on_done(self, future) -> None:
        """Report a streaming pull that terminated with an error."""
        if self.service._listeners.get(self.subscription_path) is self:
            del self.service._listeners[self.subscription_path]
        if future.cancelled():
            return
        err = future.exception()
        if err is not None:
            self.service.error(
                err,
                {
                    "topic_name": self.topic_name,
                    "subscription_name": self.subscription_path,
                },
            )

    def close(self) -> None:
        if self.future is not None:
            self.future.cancel()


class PubSubService:
    """
    Manages Pub/Sub topics, subscriptions and publishing for one service.

    Topics must be registered with create_topic() before they can be used by
    name in subscribe(), unsubscribe(), publish() or delete_topic(). send()
    and send_without_cover() resolve the topic path on every call instead.
    """

    def __init__(
        self,
        name: str,
        emitter: Optional[EventSink],
        config: Union[PubSubConfig, Mapping[str, Any]],
    ):
        """
        Initialize the service. No network call is made until init().

        Args:
            name: Service name stamped on every emitted event
            emitter: Sink for log/success/error events. None logs them.
            config: PubSubConfig or raw mapping with projectId, keyFilename/file,
                    credentials and ack_deadline_seconds

        Raises:
            ConfigValidationError: If config is invalid
        """
        self.name = name
        self.emitter: EventSink = emitter if emitter is not None else LoggingEventSink()
        self.config = PubSubConfig.load(config)
        self.publisher: Optional[pubsub_v1.PublisherClient] = None
        self.subscriber: Optional[pubsub_v1.SubscriberClient] = None
        self.topics: Dict[str, Any] = {}
        self._listeners: Dict[str, _SubscriptionListeners] = {}

    @property
    def ready(self) -> bool:
        return self.publisher is not None

    # Events

    def _emit(self, hook: str, event: Union[ServiceEvent, ServiceErrorEvent]) -> None:
        try:
            getattr(self.emitter, hook)(event)
        except Exception as e:
            log_error(
                f"Event sink failed handling {event.event_type.value} event: {e}",
                service=self.name,
                event_type=event.event_type.value,
                exc_info=True,
            )

    def log(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self._emit(
            "on_log",
            ServiceEvent(event_type=EventType.LOG, service=self.name, message=message, data=data),
        )

    def success(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self._emit(
            "on_success",
            ServiceEvent(
                event_type=EventType.SUCCESS, service=self.name, message=message, data=data
            ),
        )

    def error(self, err: BaseException, data: Optional[Dict[str, Any]] = None) -> None:
        self._emit("on_error", ServiceErrorEvent(service=self.name, err=err, data=data))

    # Connection

    def _build_credentials(self):
        """Service account credentials, or None for Application Default Credentials."""
        if self.config.credentials is not None:
            info = self.config.credentials.model_dump()
            info.setdefault("token_uri", GOOGLE_TOKEN_URI)
            return service_account.Credentials.from_service_account_info(info)
        if self.config.key_filename:
            return service_account.Credentials.from_service_account_file(
                self.config.key_filename
            )
        return None

    def _check_connection(self, publisher: pubsub_v1.PublisherClient) -> None:
        pager = publisher.list_topics(
            request={"project": f"projects/{self.config.project_id}", "page_size": 1}
        )
        next(iter(pager), None)

    async def init(self) -> "PubSubService":
        """
        Connect to Pub/Sub and verify access by listing topics.

        Returns:
            The service itself, ready for use

        Raises:
            PubSubConnectionError: If the clients cannot be built or the
                                   topic listing fails. Not retried.
        """
        credentials = self.config.credentials
        self.log(
            "Using config",
            {
                "project_id": self.config.project_id,
                "email": credentials.client_email if credentials else "n/a",
                "method": self.config.auth_method,
            },
        )
        if Config.PUBSUB_EMULATOR_HOST:
            log_info(
                f"Using Pub/Sub emulator (emulator mode: {Config.PUBSUB_EMULATOR_HOST})",
                service=self.name,
                emulator_host=Config.PUBSUB_EMULATOR_HOST,
            )

        publisher = subscriber = None
        try:
            creds = self._build_credentials()
            publisher = pubsub_v1.PublisherClient(credentials=creds)
            subscriber = pubsub_v1.SubscriberClient(credentials=creds)
            await asyncio.to_thread(self._check_connection, publisher)
        except Exception as e:
            self._close_clients(publisher, subscriber)
            raise PubSubConnectionError(
                f"Could not connect to Pub/Sub on project {self.config.project_id}: {e}"
            ) from e

        if self.publisher is not None or self.subscriber is not None:
            # Streams opened on the previous subscriber die with it
            for listeners in list(self._listeners.values()):
                listeners.close()
            self._listeners.clear()
            self._close_clients(
                self.publisher if self.publisher is not publisher else None,
                self.subscriber if self.subscriber is not subscriber else None,
            )

        self.publisher = publisher
        self.subscriber = subscriber
        self.success(f"Successfully connected on project {self.config.project_id}")
        return self

    def _close_clients(self, publisher, subscriber) -> None:
        """Stop a publisher and close a subscriber, either of which may be None."""
        for client, method in ((publisher, "stop"), (subscriber, "close")):
            if client is None:
                continue
            try:
                getattr(client, method)()
            except Exception as e:
                log_warning(
                    f"Could not close Pub/Sub {type(client).__name__}: {e}",
                    service=self.name,
                )

    def _require_client(self) -> pubsub_v1.PublisherClient:
        if self.publisher is None or self.subscriber is None:
            raise NotInitializedError(
                f"PubSubService '{self.name}' is not initialized, call init() first"
            )
        return self.publisher

    def _require_topic(self, topic_name: str):
        self._require_client()
        topic = self.topics.get(topic_name)
        if topic is None:
            raise TopicNotFoundError(topic_name)
        return topic

    async def _call(self, action: str, topic_name: str, fn: Callable, **kwargs):
        """Run a blocking client call off the event loop, wrapping API errors."""
        try:
            return await asyncio.to_thread(fn, **kwargs)
        except exceptions.GoogleAPIError as e:
            raise TransportError(f"Failed to {action}: {e}", topic_name=topic_name) from e

    async def _lookup(self, action: str, topic_name: str, fn: Callable, **kwargs):
        """Like _call, but a missing resource yields None."""
        try:
            return await self._call(action, topic_name, fn, **kwargs)
        except TransportError as e:
            if isinstance(e.__cause__, exceptions.NotFound):
                return None
            raise

    # Topics

    async def create_topic(self, name: str) -> bool:
        """
        Register a topic, creating it upstream if it does not exist.

        Idempotent: an existing topic is registered without a create call.

        Raises:
            TransportError: If the lookup or creation fails
        """
        publisher = self._require_client()
        topic_path = publisher.topic_path(self.config.project_id, name)
        self.log(f"Creating topic {name}", {"topic_name": name})

        topic = await self._lookup(
            f"look up topic {name}", name, publisher.get_topic, request={"topic": topic_path}
        )
        if topic is not None:
            self.topics[name] = topic
            self.success(f'Topic "{name}" already exists', {"topic_name": name})
            return True

        try:
            topic = await self._call(
                f"create topic {name}", name, publisher.create_topic, request={"name": topic_path}
            )
        except TransportError as e:
            if not isinstance(e.__cause__, exceptions.AlreadyExists):
                raise
            # Created concurrently between the lookup and the create
            topic = await self._call(
                f"look up topic {name}", name, publisher.get_topic, request={"topic": topic_path}
            )
            self.topics[name] = topic
            self.success(f'Topic "{name}" already exists', {"topic_name": name})
            return True

        self.topics[name] = topic
        self.success(f'Topic "{name}" created', {"topic_name": name})
        return True

    async def delete_topic(self, name: str) -> bool:
        """
        Delete a registered topic upstream and drop it from the registry.

        Subscriptions attached to the topic are not deleted; Pub/Sub keeps
        them detached from any topic.

        Raises:
            TopicNotFoundError: If the topic was never registered
            TransportError: If the delete call fails
        """
        topic = self._require_topic(name)
        await self._call(
            f"delete topic {name}", name, self.publisher.delete_topic, request={"topic": topic.name}
        )
        self.log(f"Deleted topic {topic.name}", {"topic_name": topic.name})
        self.topics.pop(name, None)
        return True

    # Subscriptions

    async def subscribe(
        self,
        topic_name: str,
        sub_name: str,
        callback: MessageCallback,
        options: Union[SubscribeOptions, Mapping[str, Any], None] = None,
    ) -> bool:
        """
        Attach callback to a subscription on a registered topic.

        The subscription is created when missing. callback receives a
        ReceivedMessage for every delivery and is responsible for calling
        ack() or nack(); its return value is ignored. Stream errors are
        reported on the error event.

        Args:
            topic_name: Registered topic name
            sub_name: Subscription name
            callback: Called with each ReceivedMessage
            options: ackDeadlineSeconds and maxInProgress tuning

        Raises:
            ConfigValidationError: If options are invalid
            TopicNotFoundError: If the topic was never registered
            TransportError: If the lookup or creation fails
        """
        opts = SubscribeOptions.load(options)
        topic = self._require_topic(topic_name)
        ack_deadline = (
            opts.ack_deadline_seconds
            if opts.ack_deadline_seconds is not None
            else self.config.ack_deadline_seconds
        )
        subscription_path = self.subscriber.subscription_path(self.config.project_id, sub_name)
        context = {"topic_name": topic.name, "subscription_name": subscription_path}

        self.log(
            "Subscribing",
            {
                "topic_name": topic_name,
                "subscription_name": sub_name,
                "options": {
                    "max_in_progress": opts.max_in_progress,
                    "ack_deadline_seconds": ack_deadline,
                },
            },
        )

        existing = await self._lookup(
            f"look up subscription {sub_name}",
            topic_name,
            self.subscriber.get_subscription,
            request={"subscription": subscription_path},
        )
        if existing is not None:
            self.success("Subscription already exists", context)
        else:
            try:
                await self._call(
                    f"create subscription {sub_name}",
                    topic_name,
                    self.subscriber.create_subscription,
                    request={
                        "name": subscription_path,
                        "topic": topic.name,
                        "ack_deadline_seconds": ack_deadline,
                    },
                )
            except TransportError as e:
                if not isinstance(e.__cause__, exceptions.AlreadyExists):
                    raise
                self.success("Subscription already exists", context)
            else:
                self.success("Created subscription", context)

        self._attach(topic.name, subscription_path, callback, opts.max_in_progress)
        return True

    def _attach(
        self,
        topic_name: str,
        subscription_path: str,
        callback: MessageCallback,
        max_in_progress: int,
    ) -> None:
        listeners = self._listeners.get(subscription_path)
        if listeners is not None:
            listeners.add(callback)
            return

        listeners = _SubscriptionListeners(self, topic_name, subscription_path)
        listeners.add(callback)
        subscribe_kwargs = {}
        # 0 leaves the client's own flow control limits in place
        if max_in_progress > 0:
            subscribe_kwargs["flow_control"] = pubsub_v1.types.FlowControl(
                max_messages=max_in_progress
            )
        listeners.future = self.subscriber.subscribe(
            subscription_path, callback=listeners.dispatch, **subscribe_kwargs
        )
        self._listeners[subscription_path] = listeners
        listeners.future.add_done_callback(listeners.on_done)

    async def unsubscribe(
        self, topic_name: str, sub_name: str, callback: MessageCallback
    ) -> bool:
        """
        Detach callback and delete the subscription upstream.

        Only the callback passed to subscribe() is removed; any other
        reference leaves the attached listeners untouched. The streaming
        pull is cancelled once no listener remains.

        Raises:
            TopicNotFoundError: If the topic was never registered
            TransportError: If the delete call fails
        """
        topic = self._require_topic(topic_name)
        subscription_path = self.subscriber.subscription_path(self.config.project_id, sub_name)

        listeners = self._listeners.get(subscription_path)
        if listeners is not None and listeners.remove(callback) and not listeners.callbacks:
            self._listeners.pop(subscription_path, None)
            listeners.close()

        await self._call(
            f"delete subscription {sub_name}",
            topic_name,
            self.subscriber.delete_subscription,
            request={"subscription": subscription_path},
        )
        self.log(
            f"Removed listener from {topic.name}, {subscription_path}",
            {"topic_name": topic.name, "subscription_name": subscription_path},
        )
        return True

    def listener_count(self, sub_name: str) -> int:
        """Number of callbacks attached to a subscription by this service."""
        if self.subscriber is None:
            return 0
        subscription_path = self.subscriber.subscription_path(self.config.project_id, sub_name)
        listeners = self._listeners.get(subscription_path)
        return len(listeners.callbacks) if listeners is not None else 0

    # Publishing

    async def _publish(
        self,
        topic_path: str,
        topic_name: str,
        data: bytes,
        handle: bool,
        context: Dict[str, Any],
    ) -> Optional[str]:
        try:
            future = self.publisher.publish(topic_path, data)
            message_id = await asyncio.to_thread(future.result)
        except Exception as e:
            if not handle:
                raise TransportError(
                    f"Failed to publish on {topic_name}: {e}", topic_name=topic_name
                ) from e
            self.error(e, {"topic_name": topic_name, **context})
            return None

        log_debug(
            f"Successfully published on {topic_name}",
            service=self.name,
            topic_name=topic_name,
            message_id=message_id,
        )
        return message_id

    async def publish(
        self,
        topic_name: str,
        content: Any = None,
        meta: Union[MessageMeta, Mapping[str, Any], None] = None,
        handle: bool = True,
    ) -> Optional[str]:
        """
        Publish an enveloped message on a registered topic.

        Args:
            topic_name: Registered topic name
            content: Any JSON serializable payload
            meta: Optional replyTo and correlationId
            handle: Report failures on the error event instead of raising

        Returns:
            Message ID from Pub/Sub, or None when a handled failure occurred

        Raises:
            ConfigValidationError: If meta has unknown fields
            TopicNotFoundError: If the topic was never registered
            TransportError: If publishing fails and handle is False
        """
        message_meta = MessageMeta.load(meta)
        topic = self._require_topic(topic_name)
        data = Envelope(content=content, meta=message_meta).encode()
        return await self._publish(
            topic.name,
            topic_name,
            data,
            handle,
            {"message": content, "options": message_meta.to_wire()},
        )

    async def send(
        self,
        topic_name: str,
        content: Any = None,
        meta: Union[MessageMeta, Mapping[str, Any], None] = None,
        handle: bool = True,
    ) -> Optional[str]:
        """
        Publish an enveloped message on any topic, registered or not.

        Same envelope and error policy as publish().
        """
        message_meta = MessageMeta.load(meta)
        publisher = self._require_client()
        topic_path = publisher.topic_path(self.config.project_id, topic_name)
        data = Envelope(content=content, meta=message_meta).encode()
        return await self._publish(
            topic_path,
            topic_name,
            data,
            handle,
            {"message": content, "options": message_meta.to_wire()},
        )

    async def send_without_cover(
        self, topic_name: str, data: Union[bytes, str], handle: bool = True
    ) -> Optional[str]:
        """Publish raw bytes on any topic, without the JSON envelope."""
        publisher = self._require_client()
        topic_path = publisher.topic_path(self.config.project_id, topic_name)
        if isinstance(data, str):
            data = data.encode("utf-8")
        return await self._publish(topic_path, topic_name, data, handle, {"message": data})
