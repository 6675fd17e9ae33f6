"""Pydantic schemas for credit pack checkout."""
from pydantic import BaseModel, ConfigDict, Field


class CheckoutSessionCreate(BaseModel):
    """Schema for starting a credit pack purchase."""

    model_config = ConfigDict(populate_by_name=True)

    pack: str = Field(default="single", description="Credit pack key (single, three, five)")
    scan_id: str | None = Field(default=None, alias="scanId", max_length=200)


class CheckoutSessionResponse(BaseModel):
    """Schema for a created checkout session."""

    session_id: str
    url: str
    pack: str
    credits: int


class WebhookAck(BaseModel):
    """Acknowledgement returned to the gateway for every verified event."""

    received: bool = True
    event_type: str | None = None
    ignored: str | None = None
    credits_added: int | None = None
    applied: bool | None = None
