"""
API response schemas for the webhook endpoints.
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class WebhookResponse(BaseModel):
    """Envelope returned to providers and operators."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    event_id: Optional[str] = Field(default=None, alias="eventId")

    def to_body(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class SignatureHelperResponse(BaseModel):
    source: str
    payload: str
    signature: str
    header: str


class SampleEventResponse(BaseModel):
    event_type: str
    payload: dict
    body: str
    headers: dict[str, str]
    curl_example: str
