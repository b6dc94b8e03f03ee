"""Error event channel for supervised daemons.

A small publish/subscribe bus carrying exactly one kind of event: an
exception value. Subscribers are called synchronously on publish, and
every published error is also queued for async iteration.
"""

import asyncio
from collections.abc import AsyncIterator, Callable

from sanecommand.core.logger import CommandLogger

logger = CommandLogger()

ErrorHandler = Callable[[BaseException], None]


def _handler_name(handler: ErrorHandler) -> str:
    return getattr(handler, "__name__", repr(handler))


class ErrorChannel:
    """Publish/subscribe channel for daemon errors.

    Any number of handlers may subscribe. A handler that raises is logged
    and skipped; delivery to the remaining handlers continues.

    Example:
        channel.subscribe(lambda err: print("daemon died:", err))

        async for err in channel:
            ...
    """

    def __init__(self) -> None:
        self._subscribers: list[ErrorHandler] = []
        self._queue: asyncio.Queue[BaseException] = asyncio.Queue()
        self._closed = False

    def publish(self, error: BaseException) -> None:
        """Publish error to all subscribers and the iteration queue."""
        if self._closed:
            logger.warn("Publishing to closed error channel", error=str(error))
            return

        logger.debug(
            "ErrorChannel publishing error",
            error_type=type(error).__name__,
            subscriber_count=len(self._subscribers),
        )

        self._queue.put_nowait(error)

        for handler in self._subscribers[:]:
            try:
                handler(error)
            except Exception as e:
                logger.error(
                    "ErrorChannel: Handler failed",
                    error=str(e),
                    handler=_handler_name(handler),
                )

    def subscribe(self, handler: ErrorHandler) -> None:
        """Subscribe to errors. Subscribing the same handler twice is a no-op."""
        if handler not in self._subscribers:
            self._subscribers.append(handler)
            logger.debug("Added error subscriber", handler=_handler_name(handler))

    def unsubscribe(self, handler: ErrorHandler) -> None:
        """Unsubscribe from errors. Unknown handlers are ignored."""
        if handler in self._subscribers:
            self._subscribers.remove(handler)
            logger.debug("Removed error subscriber", handler=_handler_name(handler))

    async def __aiter__(self) -> AsyncIterator[BaseException]:
        """Yield queued errors until the channel is closed and drained."""
        while not self._closed or not self._queue.empty():
            try:
                # Wake up periodically to notice close()
                error = await asyncio.wait_for(self._queue.get(), timeout=0.1)
            except TimeoutError:
                continue
            yield error

    def clear(self) -> None:
        """Drop all subscribers and queued errors."""
        self._subscribers.clear()

        while not self._queue.empty():
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break

        logger.debug("Error channel cleared")

    def close(self) -> None:
        """Close the channel, ending async iteration once drained."""
        self._closed = True
        logger.debug("Error channel closed")

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        """Get number of active subscribers."""
        return len(self._subscribers)

    @property
    def queue_size(self) -> int:
        """Get current queue size."""
        return self._queue.qsize()
