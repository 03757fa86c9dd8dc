from pydantic import BaseModel


class Attachment(BaseModel):
    """
    Metadata of a binary object stored inside a document.

    The payload itself is fetched lazily from ``url`` (see DBClientInterface.attachment_data).
    """

    name: str
    content_type: str | None = None
    length: int = 0
    digest: str | None = None
    url: str = ""
