from typing import Literal

from pydantic import BaseModel


class ProgressEvent(BaseModel):
    """
    Transfer progress of one request, tagged with the caller's correlation token.
    """

    processed: int
    total: int = 0
    percentage: int = 0
    request_token: str = ""
    direction: Literal["download", "upload"] = "download"

    @classmethod
    def create(cls, processed: int, total: int, request_token: str, direction: str) -> "ProgressEvent":
        percentage = int(processed * 100 / total) if total > 0 else 0
        return cls(
            processed=processed,
            total=total,
            percentage=min(percentage, 100),
            request_token=request_token,
            direction=direction,
        )
