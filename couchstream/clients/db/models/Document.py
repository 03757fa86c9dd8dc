"""Typed document and change-feed event models, shared by all engines."""

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class Document(BaseModel, Generic[T]):
    """
    A stored JSON object together with its identity and revision token.

    Array responses carry no per-row identity, so ``id`` and ``revision`` may be empty.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str = ""
    revision: str = ""
    item: T | None = None

    @property
    def is_empty(self) -> bool:
        return self.id == ""


class ChangeEvent(BaseModel, Generic[T]):
    """
    One entry of a database change feed.

    The feed's final ``last_seq`` marker is delivered as a ChangeEvent whose
    document has an empty id and revision; check ``is_last_sequence``.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    document: Document
    since: str = ""

    @property
    def is_last_sequence(self) -> bool:
        return self.document.is_empty
