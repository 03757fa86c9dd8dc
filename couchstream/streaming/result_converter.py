"""Conversion of parsed JSON rows into the caller's item type.

Server versions wrap a row's payload differently (inside ``value``, inside
``doc`` or as the bare object), so ``convert_object`` walks an explicit
ordered list of candidate subtrees and returns the first one that converts.
"""

from functools import lru_cache
from typing import Any, Callable

from pydantic import TypeAdapter, ValidationError

from couchstream.clients.db.models.errors import CouchConversionError


@lru_cache(maxsize=128)
def _get_validator(item_type: Any) -> Callable[[Any], Any]:
    return TypeAdapter(item_type).validate_python


def convert_value(value: Any, item_type: Any = Any) -> Any:
    """
    Converts one JSON subtree to ``item_type``.

    Args:
        value (Any): The parsed JSON value (dict, list, str, int, float, bool or None).
        item_type (Any): Target type. ``Any`` returns the value untouched.

    Returns:
        Any: The converted value.

    Raises:
        CouchConversionError: If the value does not validate against ``item_type``.
    """
    if item_type is Any or item_type is None:
        return value
    try:
        validator = _get_validator(item_type)
    except TypeError:
        # unhashable generic aliases cannot be cached
        validator = TypeAdapter(item_type).validate_python
    try:
        return validator(value)
    except ValidationError as e:
        raise CouchConversionError(f"Cannot convert value to {getattr(item_type, '__name__', item_type)}: {e}") from e


def _candidates(node: dict) -> list[Any]:
    candidates: list[Any] = []
    if "value" in node:
        candidates.append(node["value"])
    else:
        candidates.append(list(node.values()))
    candidates.append(node)
    return candidates


def convert_object(node: Any, item_type: Any = Any, full_document: bool = False) -> Any:
    """
    Converts a view row, change record or document to ``item_type``.

    Args:
        node (Any): The parsed row.
        item_type (Any): Target type.
        full_document (bool): True when rows carry the full document in ``doc``.

    Returns:
        Any: The converted item. In full-document mode a missing or null ``doc`` yields None.

    Raises:
        CouchConversionError: If no candidate converts. The error of the last candidate is raised.
    """
    if not isinstance(node, dict):
        return convert_value(node, item_type)

    if full_document:
        doc = node.get("doc")
        if doc is None:
            return None
        return convert_value(doc, item_type)

    candidates = _candidates(node)
    last_error: CouchConversionError | None = None
    for candidate in candidates:
        try:
            return convert_value(candidate, item_type)
        except CouchConversionError as e:
            last_error = e
    raise last_error
