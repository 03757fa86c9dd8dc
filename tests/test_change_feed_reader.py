"""Tests for reading the continuous change feed line by line."""

import json
from concurrent.futures import ThreadPoolExecutor

import pytest
from pydantic import BaseModel

from couchstream.clients.db.models.errors import CouchConversionError
from couchstream.streaming.AsyncOperation import CancellationToken
from couchstream.streaming.ChangeFeedReader import ChangeFeedReader


class Note(BaseModel):
    text: str


async def lines_of(*lines):
    for line in lines:
        yield line


def line(record: dict) -> str:
    return json.dumps(record)


async def read_all(reader: ChangeFeedReader, *lines, token=None) -> list:
    return [event async for event in reader.read(lines_of(*lines), token)]


class TestChangeRecords:
    @pytest.mark.asyncio
    async def test_revision_is_taken_from_the_last_change(self):
        """With several revisions listed the last one wins."""
        record = {"seq": "5-g1", "id": "d1", "changes": [{"rev": "1-a"}, {"rev": "2-b"}]}
        events = await read_all(ChangeFeedReader(), line(record))
        assert len(events) == 1
        assert events[0].document.id == "d1"
        assert events[0].document.revision == "2-b"
        assert events[0].since == "5-g1"
        assert not events[0].is_last_sequence

    @pytest.mark.asyncio
    async def test_numeric_and_array_sequences_become_text(self):
        """Sequence values that are not strings are kept as compact JSON text."""
        events = await read_all(
            ChangeFeedReader(),
            line({"seq": 12, "id": "a", "changes": [{"rev": "1-a"}]}),
            line({"seq": [3, "g1"], "id": "b", "changes": [{"rev": "1-b"}]}),
        )
        assert [e.since for e in events] == ["12", '[3,"g1"]']

    @pytest.mark.asyncio
    async def test_heartbeats_are_skipped(self):
        """Blank lines are keep-alives, not events."""
        events = await read_all(
            ChangeFeedReader(),
            "",
            "   ",
            line({"seq": "1", "id": "a", "changes": [{"rev": "1-a"}]}),
            "",
        )
        assert [e.document.id for e in events] == ["a"]

    @pytest.mark.asyncio
    async def test_records_without_id_are_ignored(self):
        """Control records without id and last_seq produce nothing."""
        events = await read_all(ChangeFeedReader(), line({"pending": 0}), line({"seq": "2", "id": "b", "changes": []}))
        assert len(events) == 1
        assert events[0].document.revision == ""

    @pytest.mark.asyncio
    async def test_included_documents_are_converted(self):
        """With include_docs the doc of each record is converted to the item type."""
        record = {"seq": "1", "id": "n1", "changes": [{"rev": "1-a"}], "doc": {"_id": "n1", "_rev": "1-a", "text": "hi"}}
        events = await read_all(ChangeFeedReader(item_type=Note, include_docs=True), line(record))
        assert events[0].document.item == Note(text="hi")

    @pytest.mark.asyncio
    async def test_included_documents_in_executor_keep_feed_order(self):
        """Executor conversions still deliver events in feed order."""
        records = [
            line({"seq": str(i), "id": f"n{i}", "changes": [{"rev": "1-a"}], "doc": {"_id": f"n{i}", "text": str(i)}})
            for i in range(10)
        ]
        with ThreadPoolExecutor(max_workers=4) as executor:
            events = await read_all(ChangeFeedReader(item_type=Note, include_docs=True, executor=executor), *records)
        assert [e.document.item.text for e in events] == [str(i) for i in range(10)]

    @pytest.mark.asyncio
    async def test_documents_are_not_converted_without_include_docs(self):
        """Without include_docs the item stays empty."""
        record = {"seq": "1", "id": "n1", "changes": [{"rev": "1-a"}], "doc": {"text": "hi"}}
        events = await read_all(ChangeFeedReader(item_type=Note), line(record))
        assert events[0].document.item is None


class TestFeedEnd:
    @pytest.mark.asyncio
    async def test_last_seq_yields_sentinel_and_ends(self):
        """The last_seq record becomes an empty-document event and nothing follows it."""
        events = await read_all(
            ChangeFeedReader(),
            line({"seq": "1", "id": "a", "changes": [{"rev": "1-a"}]}),
            line({"last_seq": "7-xyz", "pending": 0}),
            line({"seq": "8", "id": "late", "changes": [{"rev": "1-a"}]}),
        )
        assert len(events) == 2
        assert events[1].is_last_sequence
        assert events[1].document.id == ""
        assert events[1].document.revision == ""
        assert events[1].since == "7-xyz"

    @pytest.mark.asyncio
    async def test_malformed_line_ends_the_feed(self):
        """Events before a broken line are delivered, then CouchConversionError."""
        received = []
        with pytest.raises(CouchConversionError, match="Malformed"):
            async for event in ChangeFeedReader().read(lines_of(
                line({"seq": "1", "id": "a", "changes": [{"rev": "1-a"}]}),
                '{"seq": "2", "id": ',
            )):
                received.append(event.document.id)
        assert received == ["a"]

    @pytest.mark.asyncio
    async def test_cancellation_is_checked_after_each_line(self):
        """Once the token is cancelled no further line is turned into an event."""
        token = CancellationToken()
        received = []
        async for event in ChangeFeedReader().read(lines_of(
            line({"seq": "1", "id": "a", "changes": [{"rev": "1-a"}]}),
            line({"seq": "2", "id": "b", "changes": [{"rev": "1-b"}]}),
            line({"last_seq": "2"}),
        ), token):
            received.append(event.document.id)
            token.cancel()
        assert received == ["a"]
