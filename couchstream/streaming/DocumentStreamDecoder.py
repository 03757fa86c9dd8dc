import asyncio
import json
import logging
from concurrent.futures import Executor
from typing import Any, AsyncIterator

from couchstream.clients.db.models.Document import Document
from couchstream.clients.db.models.errors import CouchConversionError
from couchstream.streaming.result_converter import convert_object, convert_value


class DocumentStreamDecoder:
    """
    Turns one downloaded JSON payload into a lazy sequence of Documents.

    Three payload shapes are understood:
        - a bare array ``[...]``: every element is an item, id and revision stay empty
        - an object with ``rows`` (view, list and all_docs responses)
        - a single document object carrying ``_id`` and ``_rev``

    For ``rows`` payloads the first row decides whether rows carry the full
    document (``doc``) or a projection (``value``); that mode is applied to
    every row of the payload.

    When an executor is given, each row is converted as an independent unit
    of work and rows are emitted in the order their conversions finish, which
    is not necessarily the response order.

    Rows decoded before a failing row are emitted, then the sequence ends with
    CouchConversionError. A payload that is not valid JSON fails before any row.
    """

    def __init__(self, item_type: Any = Any, executor: Executor | None = None, logger: logging.Logger | None = None) -> None:
        self.item_type = item_type
        self.executor = executor
        self.logging = logger or logging.getLogger("couchstream")

    ##########################################
    ################ DECODE ##################
    ##########################################

    async def decode(self, payload: str | bytes) -> AsyncIterator[Document]:
        """
        Decodes the payload and yields one Document per item.

        Args:
            payload (str | bytes): The response body.

        Yields:
            Document: The decoded documents.

        Raises:
            CouchConversionError: If the payload is malformed or a row cannot be converted.
        """
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        try:
            parsed = json.loads(payload)
        except json.JSONDecodeError as e:
            raise CouchConversionError(f"Response is not valid JSON: {e}") from e

        if isinstance(parsed, list):
            decoders = [self._array_decoder(element) for element in parsed]
        elif isinstance(parsed, dict) and "rows" in parsed:
            rows = parsed.get("rows") or []
            full_document = self._is_full_document(rows)
            self.logging.debug("Decoding %d rows (full documents: %s).", len(rows), full_document)
            decoders = [self._row_decoder(row, full_document) for row in rows]
        elif isinstance(parsed, dict):
            decoders = [self._single_decoder(parsed)]
        else:
            raise CouchConversionError(f"Unexpected response of type {type(parsed).__name__}.")

        if self.executor is None:
            for decoder in decoders:
                yield decoder()
            return

        loop = asyncio.get_running_loop()
        futures = [loop.run_in_executor(self.executor, decoder) for decoder in decoders]
        try:
            for future in asyncio.as_completed(futures):
                yield await future
        finally:
            for future in futures:
                future.cancel()

    ##########################################
    ################ HELPERS #################
    ##########################################

    @staticmethod
    def _is_full_document(rows: list) -> bool:
        if not rows or not isinstance(rows[0], dict):
            return False
        return "doc" in rows[0]

    def _array_decoder(self, element: Any):
        def decode() -> Document:
            return Document(item=convert_value(element, self.item_type))
        return decode

    def _row_decoder(self, row: Any, full_document: bool):
        def decode() -> Document:
            if not isinstance(row, dict):
                raise CouchConversionError(f"Row is not an object: {row!r}")
            document_id, revision = self._row_identity(row, full_document)
            item = convert_object(row, self.item_type, full_document)
            return Document(id=document_id, revision=revision, item=item)
        return decode

    def _single_decoder(self, document: dict):
        def decode() -> Document:
            if "_id" not in document or document["_id"] is None:
                raise CouchConversionError("Document has no '_id'.")
            return Document(
                id=str(document["_id"]),
                revision=str(document.get("_rev") or ""),
                item=convert_value(document, self.item_type),
            )
        return decode

    @staticmethod
    def _row_identity(row: dict, full_document: bool) -> tuple[str, str]:
        if full_document:
            doc = row.get("doc")
            if not isinstance(doc, dict):
                return str(row.get("id") or ""), ""
            return str(doc.get("_id") or row.get("id") or ""), str(doc.get("_rev") or "")

        value = row.get("value")
        revision = ""
        if isinstance(value, dict):
            revision = str(value.get("_rev") or "")
            if value.get("_id") is not None:
                return str(value["_id"]), revision
            if value.get("id") is not None:
                return str(value["id"]), revision
        key = row.get("key")
        if key is None:
            return "", revision
        if isinstance(key, str):
            return key, revision
        return json.dumps(key, separators=(",", ":")), revision
