"""Service lifecycle abstraction.

A service is something you start, keep running for its side effects, and
stop again. Implementations only provide ``start``/``stop``; ``async with``
support comes for free:

    async with Daemon(["postgres", "-D", data_dir]):
        await run_tests()
"""

from abc import ABC, abstractmethod
from types import TracebackType
from typing import Self


class Service(ABC):
    """Abstract interface for start/stop controlled services."""

    @abstractmethod
    async def start(self) -> None:
        """Start the service.

        Returns once the service has been launched; it does not wait for
        the service to become ready.
        """
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the service.

        Raises:
            SaneCommandException: If the service failed while running or
                could not be stopped
        """
        ...

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()
