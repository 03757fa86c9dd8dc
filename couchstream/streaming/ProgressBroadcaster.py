import asyncio
from types import TracebackType

from couchstream.clients.db.models.Progress import ProgressEvent


class ProgressSubscription:
    """
    Receives the progress events of one client, optionally filtered by request token.

    Events are buffered from the moment the subscription is created, so it can
    be created before the operation whose progress it observes is started.
    The buffer is unbounded: close the subscription (or leave its ``async with``
    block) when done, otherwise it keeps collecting every matching event.

    Example:
        async with client.subscribe_progress("upload-1") as progress:
            ...
            event = await progress.get()
    """

    def __init__(self, broadcaster: "ProgressBroadcaster", request_token: str | None = None) -> None:
        self._broadcaster = broadcaster
        self.request_token = request_token
        self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
        self._closed = False

    def accepts(self, event: ProgressEvent) -> bool:
        return self.request_token is None or event.request_token == self.request_token

    def put(self, event: ProgressEvent | None) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def pending(self) -> list[ProgressEvent]:
        """Returns every buffered event without waiting."""
        events: list[ProgressEvent] = []
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if event is not None:
                events.append(event)
        return events

    async def get(self) -> ProgressEvent:
        """
        Waits for the next event.

        Raises:
            StopAsyncIteration: Once the subscription is closed and its buffer is drained.
        """
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def close(self) -> None:
        if self._closed:
            return
        self._broadcaster.unsubscribe(self)
        self._queue.put_nowait(None)
        self._closed = True

    def __aiter__(self) -> "ProgressSubscription":
        return self

    async def __anext__(self) -> ProgressEvent:
        return await self.get()

    async def __aenter__(self) -> "ProgressSubscription":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


class ProgressBroadcaster:
    """Fans transfer progress out to every open ProgressSubscription."""

    def __init__(self) -> None:
        self._subscriptions: list[ProgressSubscription] = []

    def subscribe(self, request_token: str | None = None) -> ProgressSubscription:
        subscription = ProgressSubscription(self, request_token)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: ProgressSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event: ProgressEvent) -> None:
        for subscription in list(self._subscriptions):
            if subscription.accepts(event):
                subscription.put(event)

    def report(self, processed: int, total: int, request_token: str, direction: str) -> None:
        if not self._subscriptions:
            return
        self.publish(ProgressEvent.create(processed, total, request_token, direction))

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)
