"""Tests for decoding downloaded payloads into Documents."""

import json
from concurrent.futures import ThreadPoolExecutor

import pytest
from pydantic import BaseModel

from couchstream.clients.db.models.errors import CouchConversionError
from couchstream.streaming.DocumentStreamDecoder import DocumentStreamDecoder


class Counter(BaseModel):
    n: int


async def decode_all(decoder: DocumentStreamDecoder, payload) -> list:
    return [document async for document in decoder.decode(payload)]


class TestPayloadShapes:
    """Arrays, rows and single documents."""

    @pytest.mark.asyncio
    async def test_array_yields_one_document_per_element(self):
        """Array elements keep their order and have no identity."""
        documents = await decode_all(DocumentStreamDecoder(), '[{"n": 1}, {"n": 2}, {"n": 3}]')
        assert [d.item for d in documents] == [{"n": 1}, {"n": 2}, {"n": 3}]
        assert all(d.id == "" and d.revision == "" for d in documents)

    @pytest.mark.asyncio
    async def test_array_of_names(self):
        """_all_dbs style arrays convert to strings."""
        documents = await decode_all(DocumentStreamDecoder(item_type=str), b'["_users", "mydb"]')
        assert [d.item for d in documents] == ["_users", "mydb"]

    @pytest.mark.asyncio
    async def test_value_rows_take_identity_from_the_value(self):
        """The identity of a projection row comes from value._id and value._rev."""
        payload = json.dumps({"total_rows": 1, "rows": [{"id": "x", "key": "x", "value": {"_id": "x", "_rev": "1-a", "n": 5}}]})
        documents = await decode_all(DocumentStreamDecoder(item_type=Counter), payload)
        assert len(documents) == 1
        assert documents[0].id == "x"
        assert documents[0].revision == "1-a"
        assert documents[0].item == Counter(n=5)

    @pytest.mark.asyncio
    async def test_value_rows_fall_back_to_the_key(self):
        """Rows whose value carries no id use the key; non-string keys become JSON text."""
        payload = json.dumps({"rows": [
            {"key": "alpha", "value": 1},
            {"key": ["a", 2], "value": 2},
            {"value": 3},
        ]})
        documents = await decode_all(DocumentStreamDecoder(item_type=int), payload)
        assert [d.id for d in documents] == ["alpha", '["a",2]', ""]
        assert [d.item for d in documents] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_doc_rows_take_identity_from_the_doc(self):
        """With included documents the first row switches every row to doc mode."""
        payload = json.dumps({"rows": [
            {"id": "a", "key": "a", "value": {"rev": "1-a"}, "doc": {"_id": "a", "_rev": "1-a", "n": 1}},
            {"id": "b", "key": "b", "value": {"rev": "2-b"}, "doc": None},
        ]})
        documents = await decode_all(DocumentStreamDecoder(item_type=Counter), payload)
        assert documents[0].id == "a"
        assert documents[0].revision == "1-a"
        assert documents[0].item == Counter(n=1)
        assert documents[1].id == "b"
        assert documents[1].item is None

    @pytest.mark.asyncio
    async def test_empty_rows(self):
        """A view without rows yields nothing."""
        assert await decode_all(DocumentStreamDecoder(), '{"total_rows": 0, "offset": 0, "rows": []}') == []

    @pytest.mark.asyncio
    async def test_single_document(self):
        """A document response yields exactly one Document with its _id and _rev."""
        documents = await decode_all(DocumentStreamDecoder(item_type=Counter), '{"_id": "c1", "_rev": "3-z", "n": 7}')
        assert len(documents) == 1
        assert documents[0].id == "c1"
        assert documents[0].revision == "3-z"
        assert documents[0].item.n == 7

    @pytest.mark.asyncio
    async def test_single_document_without_id_fails(self):
        """An object that is neither rows nor a document is rejected."""
        with pytest.raises(CouchConversionError, match="_id"):
            await decode_all(DocumentStreamDecoder(), '{"ok": true}')


class TestFailures:
    @pytest.mark.asyncio
    async def test_malformed_payload_fails_before_any_row(self):
        """Invalid JSON fails on the first request."""
        decoder = DocumentStreamDecoder()
        with pytest.raises(CouchConversionError, match="not valid JSON"):
            await decode_all(decoder, '{"rows": [')

    @pytest.mark.asyncio
    async def test_rows_before_a_failing_row_are_delivered(self):
        """Decoded rows are emitted, then the conversion error ends the sequence."""
        payload = json.dumps({"rows": [
            {"key": "a", "value": {"_id": "a", "n": 1}},
            {"key": "b", "value": {"_id": "b", "n": "not a number"}},
            {"key": "c", "value": {"_id": "c", "n": 3}},
        ]})
        received = []
        with pytest.raises(CouchConversionError):
            async for document in DocumentStreamDecoder(item_type=Counter).decode(payload):
                received.append(document.id)
        assert received == ["a"]

    @pytest.mark.asyncio
    async def test_scalar_payload_is_rejected(self):
        """A bare scalar is not a known payload shape."""
        with pytest.raises(CouchConversionError):
            await decode_all(DocumentStreamDecoder(), "42")


class TestExecutor:
    @pytest.mark.asyncio
    async def test_rows_are_converted_in_the_executor(self):
        """Every row is delivered; order follows completion, not the response."""
        rows = [{"key": f"k{i}", "value": {"_id": f"d{i}", "n": i}} for i in range(20)]
        with ThreadPoolExecutor(max_workers=4) as executor:
            decoder = DocumentStreamDecoder(item_type=Counter, executor=executor)
            documents = await decode_all(decoder, json.dumps({"rows": rows}))
        assert sorted(d.item.n for d in documents) == list(range(20))
        assert {d.id for d in documents} == {f"d{i}" for i in range(20)}
