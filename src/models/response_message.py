"""Response message catalogue model."""

from pydantic import BaseModel


class ResponseMessage(BaseModel):
    """A user-facing message looked up by alert code."""

    alert_code: str
    type: str
    message: str
