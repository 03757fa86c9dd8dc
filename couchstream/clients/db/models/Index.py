"""Query (Mango) index definitions."""

from pydantic import BaseModel


class IndexField(BaseModel):
    """
    One indexed field and its sort order ("asc" or "desc").
    """
    field_name: str
    sort_order: str = "asc"


class Index(BaseModel):
    """
    A persisted query index. Fields are keyed by name, so each name appears at most once.
    """
    name: str | None = None
    design_doc: str | None = None
    type: str = "json"
    field_orders: dict[str, str] = {}

    @property
    def fields(self) -> list[IndexField]:
        return [IndexField(field_name=name, sort_order=order) for name, order in self.field_orders.items()]

    def add_field(self, field: IndexField) -> None:
        """
        Adds a field to the index. Blank or already present field names are ignored.

        Args:
            field (IndexField): The field to index.
        """
        if not field.field_name or not field.field_name.strip():
            return
        if field.field_name in self.field_orders:
            return
        self.field_orders[field.field_name] = field.sort_order

    def to_request_body(self) -> dict:
        """
        Builds the body for POST /{db}/_index.

        Returns:
            dict: {"index": {"fields": [{"name": "asc"}, ...]}, "name": ..., "ddoc": ..., "type": "json"}
        """
        body: dict = {"index": {"fields": [{f.field_name: f.sort_order} for f in self.fields]}}
        if self.name and self.name.strip():
            body["name"] = self.name
        if self.design_doc and self.design_doc.strip():
            body["ddoc"] = self.design_doc
        body["type"] = self.type
        return body

    @classmethod
    def from_response(cls, response: dict) -> "Index":
        """
        Parses one entry of the "indexes" list returned by GET /{db}/_index.

        Args:
            response (dict): e.g. {"ddoc": "_design/a", "name": "by-type", "type": "json", "def": {"fields": [{"type": "asc"}]}}

        Returns:
            Index: The parsed index.
        """
        index = cls(name=response.get("name"), design_doc=response.get("ddoc"), type=response.get("type") or "json")
        definition = response.get("def") or {}
        for entry in definition.get("fields") or []:
            # fields are either {"name": "asc"} objects or bare names
            if isinstance(entry, dict):
                for name, order in entry.items():
                    index.add_field(IndexField(field_name=name, sort_order=str(order)))
            elif isinstance(entry, str):
                index.add_field(IndexField(field_name=entry))
        return index
