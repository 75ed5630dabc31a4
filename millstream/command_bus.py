"""Sending commands and waiting for the replies of their handlers."""

from __future__ import annotations

import threading
import uuid
from typing import Any, Callable

from .pubsub_backend import OPERATION_ID_METADATA_KEY
from .requestreply import BackendListenForNotificationsParams, Reply


class _EitherSet:
    def __init__(self, *events: Any) -> None:
        self._events = [event for event in events if event is not None]

    def is_set(self) -> bool:
        return any(event.is_set() for event in self._events)


def send_with_replies(bus: Any, backend: Any, cmd: Any, cancelled: Any = None) -> tuple[Any, Callable[[], None]]:
    """Send ``cmd`` and return ``(replies, cancel)``.

    Replies keep coming until ``cancel()`` is called, ``cancelled`` is set or the
    backend's timeout passes. Always call ``cancel()`` to stop listening.
    """
    local = threading.Event()
    cancel = local.set
    operation_id = str(uuid.uuid4())
    try:
        replies = backend.listen_for_notifications(
            BackendListenForNotificationsParams(command=cmd, operation_id=operation_id),
            _EitherSet(local, cancelled),
        )
    except Exception as err:
        cancel()
        raise RuntimeError(f"cannot listen for reply: {err}") from err

    def modify(msg: Any) -> None:
        msg.metadata[OPERATION_ID_METADATA_KEY] = operation_id

    try:
        bus.send_with_modified_message(cmd, modify)
    except Exception as err:
        cancel()
        raise RuntimeError(f"cannot send command: {err}") from err
    return replies, cancel


def send_with_reply(bus: Any, backend: Any, cmd: Any, cancelled: Any = None) -> Reply:
    """Send ``cmd`` and block until its first reply arrives."""
    try:
        replies, cancel = send_with_replies(bus, backend, cmd, cancelled)
    except Exception as err:
        raise RuntimeError(f"SendWithReplies failed: {err}") from err
    try:
        while True:
            if cancelled is not None and cancelled.is_set():
                raise RuntimeError("context closed: context canceled")
            try:
                reply = replies.get(timeout=0.01)
            except TimeoutError:
                continue
            return reply if reply is not None else Reply()
    finally:
        cancel()