"""A publisher decorator that retries failed publishes with doubling delays."""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import Any, Protocol

from .log import LoggerAdapter, LogFields, NopLogger


class _Message(Protocol):
    uuid: str


class _Publisher(Protocol):
    def publish(self, topic: str, *messages: Any) -> None: ...

    def close(self) -> None: ...


class CouldNotPublishError(Exception):
    """Raised when some messages could not be published; maps message UUID to its error."""

    def __init__(self) -> None:
        super().__init__()
        self._reasons: dict[str, BaseException] = {}

    def _add(self, msg: _Message, reason: BaseException) -> None:
        self._reasons[msg.uuid] = reason

    def __len__(self) -> int:
        return len(self._reasons)

    def reasons(self) -> dict[str, BaseException]:
        """Return the failure of each message by UUID."""
        return dict(self._reasons)

    def __str__(self) -> str:
        if not self._reasons:
            return ""
        lines = ["Could not publish the messages:\n"]
        lines.extend(f"{uuid} : {reason}\n" for uuid, reason in self._reasons.items())
        return "".join(lines)


@dataclass
class RetryPublisherConfig:
    """Retry settings; each retry waits twice as long as the one before."""

    max_retries: int = 5
    time_to_first_retry: float = 1.0
    logger: LoggerAdapter | None = None


def _format_delay(seconds: float) -> str:
    return f"{seconds:g}s"


class RetryPublisher:
    """Publisher that retries every message separately before giving up."""

    def __init__(self, pub: _Publisher, config: RetryPublisherConfig | None = None) -> None:
        config = config or RetryPublisherConfig()
        config = replace(
            config,
            max_retries=config.max_retries or 5,
            time_to_first_retry=config.time_to_first_retry or 1.0,
            logger=config.logger or NopLogger(),
        )
        if config.max_retries <= 0:
            raise ValueError("invalid RetryPublisher config: number of retries should be positive")
        if config.time_to_first_retry <= 0:
            raise ValueError("invalid RetryPublisher config: time to first retry should be positive")
        self._pub = pub
        self._config = config

    def publish(self, topic: str, *messages: _Message) -> None:
        """Publish each message, retrying; raise CouldNotPublishError for the ones that failed."""
        failures = CouldNotPublishError()
        for msg in messages:
            try:
                self._send(topic, msg)
            except Exception as err:
                failures._add(msg, err)
        if len(failures):
            raise failures

    def close(self) -> None:
        """Close the wrapped publisher."""
        self._pub.close()

    def _send(self, topic: str, msg: _Message) -> None:
        # One message at a time, so a message that went through is never sent again.
        delay = self._config.time_to_first_retry
        last_error: Exception | None = None
        for _ in range(self._config.max_retries):
            try:
                self._pub.publish(topic, msg)
                return
            except Exception as err:
                last_error = err
            self._config.logger.info(
                "Publish failed, retrying in " + _format_delay(delay),
                LogFields({"error": last_error}),
            )
            time.sleep(delay)
            delay *= 2
        assert last_error is not None
        raise last_error