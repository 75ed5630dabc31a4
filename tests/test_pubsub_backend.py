import json
import queue
import threading
import time
import uuid

import pytest

from millstream.command_bus import send_with_replies, send_with_reply
from millstream.pubsub_backend import (
    OPERATION_ID_METADATA_KEY,
    PubSubBackend,
    PubSubBackendConfig,
)
from millstream.requestreply import BackendOnCommandProcessedParams, Reply, ReplyTimeoutError

HAS_ERROR = "_watermill_requestreply_has_error"
ERROR = "_watermill_requestreply_error"


class Msg:
    def __init__(self, msg_uuid, payload=b""):
        self.uuid = msg_uuid
        self.payload = payload
        self.metadata = {}
        self.acked = False

    def ack(self):
        self.acked = True


class PubSub:
    def __init__(self):
        self._subs = {}
        self._lock = threading.Lock()

    def subscribe(self, topic):
        q = queue.Queue()
        with self._lock:
            self._subs.setdefault(topic, []).append(q)

        def gen():
            while True:
                yield q.get()

        return gen()

    def publish(self, topic, *messages):
        with self._lock:
            targets = list(self._subs.get(topic, []))
        for q in targets:
            for m in messages:
                q.put(m)

    def close(self):
        pass


class JSONMarshaler:
    def marshal_reply(self, params):
        msg = Msg(str(uuid.uuid4()), json.dumps(params.handler_result).encode())
        if params.handle_err is not None:
            msg.metadata[ERROR] = str(params.handle_err)
            msg.metadata[HAS_ERROR] = "1"
        else:
            msg.metadata[HAS_ERROR] = "0"
        return msg

    def unmarshal_reply(self, msg):
        err = RuntimeError(msg.metadata[ERROR]) if msg.metadata.get(HAS_ERROR) == "1" else None
        return Reply(handler_result=json.loads(msg.payload), error=err)


class Bus:
    """Delivers commands to a handler, redelivering while processing raises."""

    def __init__(self, backend, handler):
        self.backend = backend
        self.handler = handler

    def send_with_modified_message(self, cmd, modify):
        msg = Msg(str(uuid.uuid4()), json.dumps(cmd).encode())
        modify(msg)
        threading.Thread(target=self._process, args=(cmd, msg), daemon=True).start()

    def _process(self, cmd, msg):
        for _ in range(10):
            result, err = self.handler(cmd)
            try:
                self.backend.on_command_processed(
                    BackendOnCommandProcessedParams(cmd, msg, result, err))
                return
            except Exception:
                continue


def make_config(pubsub, ack=True, timeout=None):
    def modify(msg, params):
        msg.uuid = "1"
        assert params.operation_id
        assert params.command

    return PubSubBackendConfig(
        publisher=pubsub,
        subscriber_constructor=lambda p: pubsub,
        generate_subscribe_topic=lambda p: "reply",
        generate_publish_topic=lambda p: "reply",
        modify_notification_message=modify,
        ack_command_errors=ack,
        listen_for_reply_timeout=timeout,
    )


def setup(handler, ack=True, timeout=None):
    pubsub = PubSub()
    backend = PubSubBackend(make_config(pubsub, ack, timeout), JSONMarshaler())
    return backend, Bus(backend, handler)


def test_without_result_no_error():
    backend, bus = setup(lambda cmd: (None, None))
    replies, cancel = send_with_replies(bus, backend, {"id": "1"})
    try:
        reply = replies.get(timeout=1)
        assert reply.handler_result is None
        assert reply.error is None
        assert reply.notification_message.metadata[OPERATION_ID_METADATA_KEY]
        assert reply.notification_message.metadata[HAS_ERROR] == "0"
    finally:
        cancel()


def test_without_result_with_error():
    backend, bus = setup(lambda cmd: (None, RuntimeError("some error")))
    replies, cancel = send_with_replies(bus, backend, {"id": "1"})
    try:
        reply = replies.get(timeout=1)
        assert str(reply.error) == "some error"
        assert reply.notification_message.metadata[ERROR] == "some error"
    finally:
        cancel()


def test_with_result_no_error():
    backend, bus = setup(lambda cmd: ({"id": "123"}, None))
    replies, cancel = send_with_replies(bus, backend, {"id": "1"})
    try:
        reply = replies.get(timeout=1)
        assert reply.handler_result == {"id": "123"}
        assert reply.error is None
    finally:
        cancel()


def test_send_with_reply_with_result_and_error():
    backend, bus = setup(lambda cmd: ({"id": "123"}, RuntimeError("some error")))
    reply = send_with_reply(bus, backend, {"id": "1"})
    assert reply.handler_result == {"id": "123"}
    assert str(reply.error) == "some error"
    assert reply.notification_message.metadata[OPERATION_ID_METADATA_KEY]


def test_multiple_replies_when_errors_are_nacked():
    to_send = queue.Queue()
    to_send.put(("1", RuntimeError("error 1")))

    def handler(cmd):
        ident, err = to_send.get()
        return {"id": ident}, err

    backend, bus = setup(handler, ack=False)
    replies, cancel = send_with_replies(bus, backend, {"id": "1"})
    try:
        reply = replies.get(timeout=1)
        assert reply.handler_result == {"id": "1"}
        assert str(reply.error) == "error 1"
        to_send.put(("2", RuntimeError("error 2")))
        reply = replies.get(timeout=1)
        assert reply.handler_result == {"id": "2"}
        assert str(reply.error) == "error 2"
        to_send.put(("3", None))
        reply = replies.get(timeout=1)
        assert reply.handler_result == {"id": "3"}
        assert reply.error is None
    finally:
        cancel()


def test_timeout():
    def slow(cmd):
        time.sleep(0.3)
        return None, None

    backend, bus = setup(slow, timeout=0.01)
    replies, cancel = send_with_replies(bus, backend, {"id": "1"})
    try:
        reply = replies.get(timeout=1)
        assert isinstance(reply.error, ReplyTimeoutError)
        assert str(reply.error.err) == "context deadline exceeded"
        assert reply.error.duration > 0
        assert replies.get(timeout=1) is None
    finally:
        cancel()


@pytest.mark.parametrize("via_event", [True, False])
def test_cancellation(via_event):
    def slow(cmd):
        time.sleep(0.3)
        return None, None

    backend, bus = setup(slow)
    event = threading.Event()
    replies, cancel = send_with_replies(bus, backend, {"id": "1"}, event)
    (event.set if via_event else cancel)()
    reply = replies.get(timeout=1)
    assert isinstance(reply.error, ReplyTimeoutError)
    assert str(reply.error.err) in ("subscriber closed", "context canceled")
    cancel()


def test_other_operation_messages_are_ignored_but_acked():
    pubsub = PubSub()
    backend = PubSubBackend(make_config(pubsub), JSONMarshaler())
    from millstream.requestreply import BackendListenForNotificationsParams

    stop = threading.Event()
    replies = backend.listen_for_notifications(
        BackendListenForNotificationsParams({"id": "1"}, "op-a"), stop)
    other = Msg("x", b"null")
    other.metadata[OPERATION_ID_METADATA_KEY] = "op-b"
    pubsub.publish("reply", other)
    with pytest.raises(TimeoutError):
        replies.get(timeout=0.1)
    assert other.acked
    stop.set()


def test_invalid_config():
    with pytest.raises(ValueError):
        PubSubBackendConfig().validate()
    with pytest.raises(ValueError, match="invalid config"):
        PubSubBackend(PubSubBackendConfig(), JSONMarshaler())


def test_missing_marshaler():
    config = make_config(PubSub())
    config.validate()
    with pytest.raises(ValueError, match="marshaler cannot be nil"):
        PubSubBackend(config, None)


def test_on_command_processed_requires_operation_id():
    backend = PubSubBackend(make_config(PubSub()), JSONMarshaler())
    with pytest.raises(ValueError, match=OPERATION_ID_METADATA_KEY):
        backend.on_command_processed(BackendOnCommandProcessedParams({"id": "1"}, Msg("m")))