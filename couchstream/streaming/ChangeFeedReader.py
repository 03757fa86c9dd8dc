import asyncio
import json
import logging
from concurrent.futures import Executor
from typing import Any, AsyncIterator

from couchstream.clients.db.models.Document import ChangeEvent, Document
from couchstream.clients.db.models.errors import CouchConversionError
from couchstream.streaming.AsyncOperation import CancellationToken
from couchstream.streaming.result_converter import convert_object


class ChangeFeedReader:
    """
    Reads a continuous ``_changes`` feed line by line and yields one ChangeEvent per change.

    - blank lines are heartbeats and skipped
    - a record with ``last_seq`` yields a sentinel event (empty document, ``since`` set) and ends the feed
    - records without ``id`` and without ``last_seq`` are ignored
    - the revision is taken from the last entry of ``changes``
    - a line that is not valid JSON ends the feed with CouchConversionError

    The cancellation token is checked after each line arrives. A read that is
    already waiting on the network is not interrupted, so cancellation takes
    effect at the latest after the next line.
    """

    def __init__(self, item_type: Any = Any, include_docs: bool = False, executor: Executor | None = None, logger: logging.Logger | None = None) -> None:
        self.item_type = item_type
        self.include_docs = include_docs
        self.executor = executor
        self.logging = logger or logging.getLogger("couchstream")

    async def read(self, lines: AsyncIterator[str], token: CancellationToken | None = None) -> AsyncIterator[ChangeEvent]:
        """
        Yields the change events of the feed.

        Args:
            lines (AsyncIterator[str]): The text lines of the streaming response.
            token (CancellationToken | None): Stops the reader once cancelled.

        Yields:
            ChangeEvent: One event per change, then the last_seq sentinel if the server sends one.

        Raises:
            CouchConversionError: If a line cannot be parsed or converted.
        """
        async for line in lines:
            if token is not None and token.cancelled:
                self.logging.debug("Change feed cancelled, stop reading.")
                return
            if not line or not line.strip():
                continue

            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                raise CouchConversionError(f"Malformed change feed line '{line.strip()}': {e}") from e
            if not isinstance(record, dict):
                raise CouchConversionError(f"Change feed line is not an object: '{line.strip()}'")

            if record.get("id") is None:
                if "last_seq" in record:
                    since = self._as_text(record.get("last_seq"))
                    self.logging.debug("Change feed reached last_seq %s.", since)
                    yield ChangeEvent(document=Document(), since=since)
                    return
                continue

            yield await self._to_event(record)

    async def _to_event(self, record: dict) -> ChangeEvent:
        item = None
        if self.include_docs:
            if self.executor is None:
                item = convert_object(record, self.item_type, True)
            else:
                loop = asyncio.get_running_loop()
                item = await loop.run_in_executor(self.executor, convert_object, record, self.item_type, True)

        document = Document(id=str(record["id"]), revision=self._last_revision(record), item=item)
        return ChangeEvent(document=document, since=self._as_text(record.get("seq")))

    @staticmethod
    def _last_revision(record: dict) -> str:
        changes = record.get("changes")
        if not isinstance(changes, list) or not changes:
            return ""
        last = changes[-1]
        if not isinstance(last, dict) or last.get("rev") is None:
            return ""
        return str(last["rev"])

    @staticmethod
    def _as_text(value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        return json.dumps(value, separators=(",", ":"))
