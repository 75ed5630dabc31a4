"""A request/reply backend that carries replies over a publisher and subscriber."""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator

from .log import LoggerAdapter, LogFields, NopLogger
from .requestreply import (
    BackendListenForNotificationsParams,
    BackendOnCommandProcessedParams,
    Reply,
    ReplyTimeoutError,
    ReplyUnmarshalError,
)

OPERATION_ID_METADATA_KEY = "_watermill_requestreply_op_id"

_POLL_INTERVAL = 0.005


@dataclass
class PubSubBackendSubscribeParams:
    command: Any
    operation_id: str


@dataclass
class PubSubBackendPublishParams:
    command: Any
    command_message: Any
    operation_id: str


@dataclass
class PubSubBackendOnCommandProcessedParams(PubSubBackendPublishParams):
    handle_err: BaseException | None = None


@dataclass
class PubSubBackendConfig:
    """Settings of a PubSubBackend.

    ``ack_command_errors`` tells whether a command whose handler failed is acked;
    a command whose reply could not be sent is never acked.
    ``listen_for_reply_timeout`` is in seconds.
    """

    publisher: Any = None
    subscriber_constructor: Callable[[PubSubBackendSubscribeParams], Any] | None = None
    generate_publish_topic: Callable[[PubSubBackendPublishParams], str] | None = None
    generate_subscribe_topic: Callable[[PubSubBackendSubscribeParams], str] | None = None
    logger: LoggerAdapter | None = None
    listen_for_reply_timeout: float | None = None
    modify_notification_message: Callable[[Any, PubSubBackendOnCommandProcessedParams], None] | None = None
    on_listen_for_reply_finished: Callable[[PubSubBackendSubscribeParams], None] | None = None
    ack_command_errors: bool = False

    def validate(self) -> None:
        """Raise ValueError listing every missing required setting."""
        problems = []
        if self.publisher is None:
            problems.append("publisher cannot be nil")
        if self.subscriber_constructor is None:
            problems.append("subscriber constructor cannot be nil")
        if self.generate_publish_topic is None:
            problems.append("GeneratePublishTopic cannot be nil")
        if self.generate_subscribe_topic is None:
            problems.append("GenerateSubscribeTopic cannot be nil")
        if problems:
            raise ValueError("; ".join(problems))


class _ReplyStream:
    """Replies delivered by a background listener; ends when the listener stops."""

    _closed = object()

    def __init__(self) -> None:
        self._queue: queue.Queue = queue.Queue()
        self._done = False

    def _put(self, reply: Reply) -> None:
        self._queue.put(reply)

    def _close(self) -> None:
        self._queue.put(self._closed)

    def get(self, timeout: float | None = None) -> Reply | None:
        """Return the next reply, or None once the stream has ended.

        Raises TimeoutError if nothing arrives within ``timeout`` seconds.
        """
        if self._done:
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError("no reply received in time") from None
        if item is self._closed:
            self._done = True
            return None
        return item

    def __iter__(self) -> Iterator[Reply]:
        while (reply := self.get()) is not None:
            yield reply


class PubSubBackend:
    """Backend that publishes replies as messages and listens for them by operation id."""

    def __init__(self, config: PubSubBackendConfig, marshaler: Any) -> None:
        if config.logger is None:
            config.logger = NopLogger()
        try:
            config.validate()
        except ValueError as err:
            raise ValueError(f"invalid config: {err}") from err
        if marshaler is None:
            raise ValueError("marshaler cannot be nil")
        self.config = config
        self._marshaler = marshaler

    def listen_for_notifications(
        self, params: BackendListenForNotificationsParams, cancelled: Any = None
    ) -> _ReplyStream:
        """Subscribe for replies and return a stream of them.

        The stream ends after cancellation (``cancelled.is_set()``), the timeout,
        or the subscriber closing; each of those first delivers a ReplyTimeoutError.
        """
        start = time.monotonic()
        sub_params = PubSubBackendSubscribeParams(params.command, params.operation_id)
        try:
            subscriber = self.config.subscriber_constructor(sub_params)
        except Exception as err:
            raise RuntimeError(f"cannot create request/reply notifications subscriber: {err}") from err
        try:
            topic = self.config.generate_subscribe_topic(sub_params)
        except Exception as err:
            raise RuntimeError(f"cannot generate request/reply notifications topic: {err}") from err
        try:
            messages = subscriber.subscribe(topic)
        except Exception as err:
            raise RuntimeError(f"cannot subscribe to request/reply notifications topic: {err}") from err

        self.config.logger.debug(
            "Subscribed to request/reply notifications topic",
            LogFields({"request_reply_topic": topic}),
        )

        inbox: queue.Queue = queue.Queue()
        ended = object()

        def pump() -> None:
            try:
                for msg in messages:
                    inbox.put(msg)
            finally:
                inbox.put(ended)

        threading.Thread(target=pump, daemon=True).start()

        timeout = self.config.listen_for_reply_timeout
        deadline = None if timeout is None else start + timeout
        stream = _ReplyStream()

        def listen() -> None:
            try:
                while True:
                    if cancelled is not None and cancelled.is_set():
                        stream._put(Reply(error=ReplyTimeoutError(
                            time.monotonic() - start, RuntimeError("context canceled"))))
                        return
                    if deadline is not None and time.monotonic() >= deadline:
                        stream._put(Reply(error=ReplyTimeoutError(
                            time.monotonic() - start, TimeoutError("context deadline exceeded"))))
                        return
                    try:
                        msg = inbox.get(timeout=_POLL_INTERVAL)
                    except queue.Empty:
                        continue
                    if msg is ended:
                        stream._put(Reply(error=ReplyTimeoutError(
                            time.monotonic() - start, RuntimeError("subscriber closed"))))
                        return
                    reply = self._handle_notify_msg(msg, params.operation_id)
                    if reply is not None:
                        stream._put(reply)
            finally:
                stream._close()
                if self.config.on_listen_for_reply_finished is not None:
                    self.config.on_listen_for_reply_finished(sub_params)

        threading.Thread(target=listen, daemon=True).start()
        return stream

    def on_command_processed(self, params: BackendOnCommandProcessedParams) -> None:
        """Publish the reply; re-raise the handler's error unless command errors are acked."""
        self.config.logger.debug("Sending request reply", None)
        try:
            notification = self._marshaler.marshal_reply(params)
        except Exception as err:
            raise RuntimeError(f"cannot marshal request reply notification: {err}") from err

        operation_id = params.command_message.metadata.get(OPERATION_ID_METADATA_KEY, "")
        if not operation_id:
            raise ValueError(
                "cannot get notification ID from command message metadata, "
                f"key: {OPERATION_ID_METADATA_KEY}"
            )
        notification.metadata[OPERATION_ID_METADATA_KEY] = operation_id

        if self.config.modify_notification_message is not None:
            processed = PubSubBackendOnCommandProcessedParams(
                command=params.command,
                command_message=params.command_message,
                operation_id=operation_id,
                handle_err=params.handle_err,
            )
            try:
                self.config.modify_notification_message(notification, processed)
            except Exception as err:
                raise RuntimeError(f"cannot modify notification message: {err}") from err

        try:
            topic = self.config.generate_publish_topic(PubSubBackendPublishParams(
                params.command, params.command_message, operation_id))
        except Exception as err:
            raise RuntimeError(f"cannot generate request/reply notify topic: {err}") from err

        try:
            self.config.publisher.publish(topic, notification)
        except Exception as err:
            raise RuntimeError(f"cannot publish command executed message: {err}") from err

        if not self.config.ack_command_errors and params.handle_err is not None:
            raise params.handle_err

    def _handle_notify_msg(self, msg: Any, operation_id: str) -> Reply | None:
        try:
            if msg.metadata.get(OPERATION_ID_METADATA_KEY) != operation_id:
                self.config.logger.debug("Received notify message with different command UUID", None)
                return None
            try:
                decoded = self._marshaler.unmarshal_reply(msg)
            except Exception as err:
                return Reply(error=ReplyUnmarshalError(err))
            return Reply(
                handler_result=decoded.handler_result,
                error=decoded.error,
                notification_message=msg,
            )
        finally:
            msg.ack()