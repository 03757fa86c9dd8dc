"""Tests for converting parsed rows into the caller's item type."""

from typing import Any

import pytest
from pydantic import BaseModel

from couchstream.clients.db.models.errors import CouchConversionError
from couchstream.streaming.result_converter import convert_object, convert_value


class Book(BaseModel):
    title: str
    year: int = 0


class TestConvertValue:
    def test_any_returns_value_untouched(self):
        """Any is a pass-through."""
        value = {"a": [1, 2]}
        assert convert_value(value) is value

    def test_model_conversion(self):
        """Dicts are validated into pydantic models."""
        book = convert_value({"_id": "b1", "title": "Dune", "year": 1965}, Book)
        assert book == Book(title="Dune", year=1965)

    def test_scalar_conversion(self):
        """Scalars convert to scalar types."""
        assert convert_value("42", int) == 42

    def test_failure_raises_conversion_error(self):
        """Validation errors surface as CouchConversionError."""
        with pytest.raises(CouchConversionError, match="Book"):
            convert_value({"year": 1}, Book)


class TestConvertObject:
    def test_value_is_the_first_candidate(self):
        """A row's value wins when it converts."""
        assert convert_object({"id": "r1", "key": "k", "value": 3}, int) == 3

    def test_all_values_when_no_value_key(self):
        """Without a value key the node's values are tried as a list."""
        assert convert_object({"a": 1, "b": 2}, list[int]) == [1, 2]

    def test_falls_back_to_the_whole_node(self):
        """A value that does not convert falls back to the node itself."""
        book = convert_object({"value": 5, "title": "Emma"}, Book)
        assert book.title == "Emma"

    def test_last_error_is_raised(self):
        """When no candidate converts the error of the last one is raised."""
        with pytest.raises(CouchConversionError):
            convert_object({"value": {"year": "x"}}, Book)

    def test_full_document_mode_uses_doc(self):
        """In full-document mode only doc is converted."""
        node = {"id": "b1", "value": {"rev": "1-a"}, "doc": {"_id": "b1", "title": "Emma"}}
        assert convert_object(node, Book, full_document=True) == Book(title="Emma")

    def test_full_document_mode_without_doc_yields_none(self):
        """A deleted or missing doc converts to None."""
        assert convert_object({"id": "b1", "doc": None}, Book, full_document=True) is None
        assert convert_object({"id": "b1"}, Any, full_document=True) is None

    def test_non_object_node(self):
        """Array elements and scalars convert directly."""
        assert convert_object("mydb", str) == "mydb"
