from pydantic import BaseModel


class SaveResult(BaseModel):
    """
    Outcome of a save, delete or bulk operation for one document.

    In bulk operations single rows can fail while the others succeed; a row
    with ``has_error`` set must not be used as an id/revision pair.
    """

    document_id: str = ""
    revision_id: str = ""
    error: str | None = None

    @property
    def has_error(self) -> bool:
        return bool(self.error and self.error.strip())

    @classmethod
    def from_response(cls, response: dict) -> "SaveResult":
        """
        Parse one row of a save/delete/_bulk_docs response.

        Args:
            response (dict): e.g. {"ok": true, "id": "...", "rev": "..."} or {"id": "...", "error": "conflict", "reason": "..."}

        Returns:
            SaveResult: The parsed result. The revision is left empty for failed rows.
        """
        error = None
        revision_id = ""
        if response.get("error") is not None:
            error = f"{response.get('error')} - {response.get('reason', '')}"
        elif response.get("rev") is not None:
            revision_id = str(response.get("rev"))
        document_id = str(response.get("id")) if response.get("id") is not None else ""
        return cls(document_id=document_id, revision_id=revision_id, error=error)
