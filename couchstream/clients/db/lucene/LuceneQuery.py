"""Fluent builder for full-text search requests.

Example:
    result = await (
        LuceneQuery.session(client)
        .database("library")
        .design_document("search")
        .index("by_text")
        .include_docs(True)
        .fuzzy("title", "pyhton")
        .and_("type", "book")
        .execute(item_type=Book)
        .first()
    )
"""

import json
from enum import Enum
from typing import TYPE_CHECKING, Any

from couchstream.clients.db.models.errors import CouchValidationError
from couchstream.streaming.AsyncOperation import AsyncOperation

if TYPE_CHECKING:
    from couchstream.clients.db.DBClientInterface import DBClientInterface

# backslash must be escaped before the others
SPECIAL_CHARACTERS = ["\\", "+", "-", "&&", "||", "!", "(", ")", "{", "}", "[", "]", "^", "\"", "~", "*", "?", ":", "/"]
BOOKMARK_WITH_STALE = (
    "Do not combine the bookmark and stale options. "
    "Both options constrain the choice of shard replicas used to answer the request, "
    "and together they can fail when a replica is slow or unavailable."
)


class SortOrder(Enum):
    ASCENDING = "asc"
    DESCENDING = "desc"


def escape(value: str) -> str:
    """
    Escapes the Lucene special characters and whitespace of a field name or term.

    Example:
        escape("a:b c") -> 'a\\:b\\ c'
    """
    for special in SPECIAL_CHARACTERS:
        value = value.replace(special, "\\" + special)
    return "".join("\\" + char if char.isspace() else char for char in value)


class LuceneQuery:
    """
    A single mutable search request. Every setter returns the builder itself.

    Terms are joined in call order: the first term is added as is, every
    further term is prefixed with its operator (" AND ", " OR ", ...).
    """

    def __init__(self, client: "DBClientInterface"):
        self._client = client
        self._database = ""
        self._design_document = ""
        self._index = ""
        self._facet = False
        self._bookmark = ""
        self._counts: list[str] = []
        self._drilldown: dict[str, str] = {}
        self._sorts: list[str] = []
        self._include_docs = False
        self._limit = 0
        self._stale_ok = False
        self._group = ""
        self._group_limit = 0
        self._group_sorts: list[str] = []
        self._query = ""

    @classmethod
    def session(cls, client: "DBClientInterface") -> "LuceneQuery":
        return cls(client)

    ##########################################
    ################ TARGET ##################
    ##########################################

    def database(self, database: str) -> "LuceneQuery":
        self._database = database
        return self

    def design_document(self, design_document: str) -> "LuceneQuery":
        if design_document.startswith("_design"):
            self._design_document = design_document
        else:
            self._design_document = f"_design/{design_document}"
        return self

    def index(self, index: str) -> "LuceneQuery":
        self._index = index
        return self

    ##########################################
    ############### PARAMETERS ###############
    ##########################################

    def bookmark(self, bookmark: str) -> "LuceneQuery":
        self._bookmark = bookmark
        return self

    def facet(self, facet: bool) -> "LuceneQuery":
        self._facet = facet
        return self

    def stale_ok(self, stale_ok: bool) -> "LuceneQuery":
        self._stale_ok = stale_ok
        return self

    def limit(self, limit: int) -> "LuceneQuery":
        self._limit = limit
        return self

    def include_docs(self, include_docs: bool) -> "LuceneQuery":
        self._include_docs = include_docs
        return self

    def counts(self, counts: list[str] | None) -> "LuceneQuery":
        if counts:
            self._counts.extend(counts)
        return self

    def drilldown(self, field: str, value: str) -> "LuceneQuery":
        self._drilldown[field] = value
        return self

    def sort(self, field: str, order: SortOrder = SortOrder.ASCENDING) -> "LuceneQuery":
        self._sorts.append(field if order == SortOrder.ASCENDING else f"-{field}")
        return self

    ##########################################
    ################ GROUPING ################
    ##########################################

    def group(self, field: str, field_type: str = "") -> "LuceneQuery":
        self._group = f"{field}<{field_type or 'string'}>"
        return self

    def group_limit(self, limit: int) -> "LuceneQuery":
        self._group_limit = limit
        return self

    def group_sort(self, fields: list[str] | None) -> "LuceneQuery":
        if fields:
            self._group_sorts.extend(fields)
        return self

    ##########################################
    ################# QUERY ##################
    ##########################################

    def _add_term(self, term: str, operation: str | None = None) -> "LuceneQuery":
        if not self._query.strip():
            self._query = term
        elif operation:
            self._query += f" {operation} {term}"
        else:
            self._query += f" {term}"
        return self

    def and_(self, field: str, condition: str) -> "LuceneQuery":
        return self._add_term(f"{escape(field)}:{escape(condition)}", "AND")

    def or_(self, field: str, condition: str) -> "LuceneQuery":
        return self._add_term(f"{escape(field)}:{escape(condition)}", "OR")

    def not_(self, field: str, condition: str) -> "LuceneQuery":
        return self._add_term(f"{escape(field)}:{escape(condition)}", "NOT")

    def plus(self, field: str, condition: str) -> "LuceneQuery":
        return self._add_term(f"{escape(field)}:{escape(condition)}", "+")

    def minus(self, field: str, condition: str) -> "LuceneQuery":
        return self._add_term(f"{escape(field)}:{escape(condition)}", "-")

    def fuzzy(self, field: str, condition: str) -> "LuceneQuery":
        return self._add_term(f"{field}:{condition}~")

    def range(self, field: str, lower: str, upper: str) -> "LuceneQuery":
        return self._add_term(f"{field}:[{lower} TO {upper}]")

    def starts_with(self, field: str, start: str) -> "LuceneQuery":
        return self._add_term(f"{field}:{start}*")

    def starts_with_constrained(self, field: str, start: str) -> "LuceneQuery":
        return self._add_term(f"{field}:{start}?")

    def show_query(self) -> str:
        return self._query

    ##########################################
    ################ EXECUTE #################
    ##########################################

    @staticmethod
    def _json_value(values: list[str]) -> str:
        if len(values) == 1:
            return json.dumps(values[0])
        return json.dumps(values, separators=(",", ":"))

    def build_options(self) -> list[tuple[str, str]]:
        """
        Builds the query parameters besides "q".

        Returns:
            list[tuple[str, str]]: e.g. [("limit", "10"), ("include_docs", "true")]

        Raises:
            CouchValidationError: If bookmark and stale_ok are combined.
        """
        if self._bookmark and self._bookmark.strip() and self._stale_ok:
            raise CouchValidationError(BOOKMARK_WITH_STALE, argument="bookmark")
        options: list[tuple[str, str]] = []
        if self._facet:
            options.append(("facet", "true"))
        if self._bookmark and self._bookmark.strip():
            options.append(("bookmark", self._bookmark))
        if self._limit > 0:
            options.append(("limit", str(self._limit)))
        if self._include_docs:
            options.append(("include_docs", "true"))
        if self._counts:
            options.append(("counts", json.dumps(self._counts, separators=(",", ":"))))
        for field, value in self._drilldown.items():
            options.append(("drilldown", json.dumps([field, value], separators=(",", ":"))))
        if self._sorts:
            options.append(("sort", self._json_value(self._sorts)))
        if self._group:
            options.append(("group_field", self._group))
        if self._group_limit > 0:
            options.append(("group_limit", str(self._group_limit)))
        if self._group_sorts:
            options.append(("group_sort", self._json_value(self._group_sorts)))
        if self._stale_ok:
            options.append(("stale", "ok"))
        return options

    def execute(self, item_type: Any = Any, query: str | None = None) -> AsyncOperation:
        """
        Validates the request and returns the search operation.

        Args:
            item_type (Any): Type the included documents are converted to.
            query (str | None): Raw query string used instead of the built terms.

        Returns:
            AsyncOperation: Yields one LuceneResult.

        Raises:
            CouchValidationError: If the target is incomplete or bookmark and stale_ok are combined.
        """
        options = self.build_options()
        q = query if query is not None else self._query
        if not q or not q.strip():
            raise CouchValidationError("The search query is empty", argument="query")
        return self._client.search_operation(
            self._database,
            self._design_document,
            self._index,
            params=[("q", q)] + options,
            include_docs=self._include_docs,
            item_type=item_type,
        )
