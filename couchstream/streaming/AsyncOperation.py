"""Cancellable async sequences used by every public database operation.

An ``AsyncOperation`` is cold: nothing happens until it is iterated, and every
iteration (``async for`` or ``subscribe()``) starts its own request. A
``Subscription`` delivers values until exactly one terminal signal, either
``StopAsyncIteration`` or the operation's error, and delivers nothing after
``cancel()``.
"""

import logging
from types import TracebackType
from typing import AsyncIterator, Callable, Generic, TypeVar

from couchstream.clients.db.models.errors import CouchError

T = TypeVar("T")


class CancellationToken:
    """A one-way "disposed" flag shared between a subscription and its producer."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class Subscription(Generic[T]):
    """
    One running iteration of an AsyncOperation.

    Use it with ``async for`` and close it with ``cancel()`` or ``async with``.
    Cancelling while a value is being produced lets that step finish, drops its
    value and then closes the producer, so the latency of a cancellation is at
    most one step of the producer.
    """

    def __init__(self, producer: AsyncIterator[T], token: CancellationToken, name: str, logger: logging.Logger | None = None) -> None:
        self._producer = producer
        self._token = token
        self._name = name
        self._logger = logger
        self._finished = False
        self._closed = False
        self._running = False

    @property
    def disposed(self) -> bool:
        return self._token.cancelled

    @property
    def finished(self) -> bool:
        return self._finished

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        if self._finished or self._token.cancelled:
            await self._close()
            raise StopAsyncIteration
        self._running = True
        try:
            item = await self._producer.__anext__()
        except StopAsyncIteration:
            self._finished = True
            await self._close()
            raise
        except Exception as e:
            self._finished = True
            await self._close()
            if not self._token.cancelled:
                raise
            if self._logger:
                self._logger.debug("Dropped an error of %s raised after cancellation: %s", self._name, e)
            raise StopAsyncIteration from None
        except BaseException:
            self._finished = True
            await self._close()
            raise
        finally:
            self._running = False

        if self._token.cancelled:
            if self._logger:
                self._logger.debug("Dropped a value of %s produced after cancellation.", self._name)
            await self._close()
            raise StopAsyncIteration
        return item

    async def cancel(self) -> None:
        """Stop the subscription and release the underlying request once no step is in flight."""
        if self._token.cancelled:
            return
        self._token.cancel()
        if self._logger:
            self._logger.debug("Cancelled %s.", self._name)
        if not self._running:
            await self._close()

    async def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self._producer, "aclose", None)
        if aclose is not None:
            await aclose()

    async def __aenter__(self) -> "Subscription[T]":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.cancel()


class AsyncOperation(Generic[T]):
    """
    A cold, re-subscribable async sequence backed by a producer factory.

    Example:
        op = client.view("mydb", "app", "by_type", include_docs=True)
        async for document in op:
            print(document.id)

        # second iteration -> second request
        documents = await op.to_list()
    """

    def __init__(self, factory: Callable[[CancellationToken], AsyncIterator[T]], name: str = "operation", logger: logging.Logger | None = None) -> None:
        self._factory = factory
        self._name = name
        self._logger = logger

    @property
    def name(self) -> str:
        return self._name

    def subscribe(self) -> Subscription[T]:
        """Start a fresh iteration. The request is sent when the first value is requested."""
        token = CancellationToken()
        return Subscription(self._factory(token), token, self._name, self._logger)

    def __aiter__(self) -> Subscription[T]:
        return self.subscribe()

    async def to_list(self) -> list[T]:
        """Run the operation to completion and collect every value."""
        async with self.subscribe() as subscription:
            return [item async for item in subscription]

    async def first(self) -> T:
        """
        Return the first value and cancel the rest of the operation.

        Raises:
            CouchError: If the operation completes without producing a value.
        """
        async with self.subscribe() as subscription:
            async for item in subscription:
                return item
        raise CouchError(f"{self._name} completed without producing a value.")

    def __repr__(self) -> str:
        return f"AsyncOperation({self._name!r})"
