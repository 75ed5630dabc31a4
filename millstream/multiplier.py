"""A subscriber decorator that subscribes several times to raise throughput."""

from __future__ import annotations

import queue
import threading
from typing import Any, Callable, Iterable, Iterator, NoReturn, Protocol


class _Subscriber(Protocol):
    def subscribe(self, topic: str) -> Iterable[Any]: ...

    def close(self) -> None: ...


class Multiplier:
    """Subscribes to a topic through several subscribers and merges their messages."""

    def __init__(self, constructor: Callable[[], _Subscriber], subscribers_count: int) -> None:
        self._constructor = constructor
        self.subscribers_count = subscribers_count
        self._subscribers: list[_Subscriber] = []

    def subscribe(self, topic: str) -> Iterator[Any]:
        """Subscribe every subscriber now and return an iterator over all their messages.

        The iterator ends once every underlying stream has ended.
        """
        streams: list[Iterable[Any]] = []
        for _ in range(self.subscribers_count):
            try:
                sub = self._constructor()
            except Exception as err:
                self._fail("cannot create subscriber", err)
            self._subscribers.append(sub)
            try:
                streams.append(sub.subscribe(topic))
            except Exception as err:
                self._fail("cannot subscribe", err)

        out: queue.Queue = queue.Queue(maxsize=1)
        finished = object()

        def pump(stream: Iterable[Any]) -> None:
            try:
                for msg in stream:
                    out.put(msg)
            finally:
                out.put(finished)

        for stream in streams:
            threading.Thread(target=pump, args=(stream,), daemon=True).start()

        return self._merge(out, finished, len(streams))

    @staticmethod
    def _merge(out: queue.Queue, finished: object, remaining: int) -> Iterator[Any]:
        while remaining:
            item = out.get()
            if item is finished:
                remaining -= 1
                continue
            yield item

    def _fail(self, reason: str, err: Exception) -> NoReturn:
        failure = RuntimeError(f"{reason}: {err}")
        try:
            self.close()
        except Exception as close_err:
            raise RuntimeError(f"{failure}; close failed: {close_err}") from err
        raise failure from err

    def close(self) -> None:
        """Close every subscriber; raise if any of them failed to close."""
        errors: list[Exception] = []
        for sub in self._subscribers:
            try:
                sub.close()
            except Exception as err:
                errors.append(err)
        if len(errors) == 1:
            raise errors[0]
        if errors:
            raise RuntimeError("; ".join(str(err) for err in errors)) from errors[0]