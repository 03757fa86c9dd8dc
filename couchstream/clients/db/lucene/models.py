"""Search (Lucene) result envelope."""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class LuceneRow(BaseModel, Generic[T]):
    """
    One search hit. ``fields`` holds the stored field values when documents
    are not included; ``doc`` holds the converted document when they are.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str = ""
    order: list[float] = []
    fields: dict[str, Any] = {}
    doc: T | None = None


class LuceneResult(BaseModel, Generic[T]):
    """
    A page of search results. Pass ``bookmark`` to the next query to continue paging.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    total_rows: int = 0
    bookmark: str | None = None
    rows: list[LuceneRow] = []
