"""Types shared by the request/reply components: replies, parameters and errors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class Reply:
    """A reply to a command.

    ``handler_result`` is sent even when the handler failed. ``error`` holds the
    handler's error, or a ReplyTimeoutError / ReplyUnmarshalError raised while
    waiting. ``notification_message`` is None when the wait timed out.
    """

    handler_result: Any = None
    error: BaseException | None = None
    notification_message: Any = None


class ReplyTimeoutError(Exception):
    """Raised into a reply when listening for it timed out or was cancelled."""

    def __init__(self, duration: float, err: BaseException) -> None:
        super().__init__(duration, err)
        self.duration = duration
        self.err = err

    def __str__(self) -> str:
        return f"reply timeout after {self.duration:g}s: {self.err}"


class ReplyUnmarshalError(Exception):
    """Raised into a reply when the notification message could not be decoded."""

    def __init__(self, err: BaseException) -> None:
        super().__init__(err)
        self.err = err
        self.__cause__ = err

    def __str__(self) -> str:
        return f"cannot unmarshal reply: {self.err}"


class CommandHandlerError(Exception):
    """Wraps an error returned by a command handler."""

    def __init__(self, err: BaseException) -> None:
        super().__init__(err)
        self.err = err
        self.__cause__ = err

    def __str__(self) -> str:
        return str(self.err)


@dataclass
class BackendListenForNotificationsParams:
    """What a backend needs to start listening for replies to one command."""

    command: Any
    operation_id: str


@dataclass
class BackendOnCommandProcessedParams:
    """What a backend receives after a command was handled."""

    command: Any
    command_message: Any
    handler_result: Any = None
    handle_err: BaseException | None = None