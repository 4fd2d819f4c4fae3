"""Subscriber lists owned by each bridge service."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Handler = Callable[[T], Awaitable[object]]


class Subscription:
    """Handle returned by `Subscribers.subscribe`; cancel to stop delivery."""

    def __init__(self, cancel: Callable[[], None]) -> None:
        self._cancel = cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if self._active:
            self._active = False
            self._cancel()


class Subscribers(Generic[T]):
    """Async fan-out of one payload type to registered handlers.

    Handlers run sequentially in subscription order; a failing handler is
    logged and does not stop delivery to the others.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._handlers: list[Handler[T]] = []

    def subscribe(self, handler: Handler[T]) -> Subscription:
        self._handlers.append(handler)
        return Subscription(lambda: self._remove(handler))

    def _remove(self, handler: Handler[T]) -> None:
        try:
            self._handlers.remove(handler)
        except ValueError:
            pass

    def __len__(self) -> int:
        return len(self._handlers)

    async def emit(self, payload: T) -> None:
        for handler in list(self._handlers):
            try:
                await handler(payload)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("%s handler failed: %s", self._name, e, exc_info=True)
