# app/models/api/event_request.py
"""
Event lifecycle API request models.
Used by routes for input validation.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class BulkActionRequest(BaseModel):
    """Approve or reject several events at once."""

    model_config = ConfigDict(populate_by_name=True)

    action: Literal["approve", "reject"] = Field(..., description="Decision to apply")
    event_ids: list[str] = Field(
        ..., alias="eventIds", min_length=1, max_length=100, description="Events to update"
    )


class ApprovalReplyRequest(BaseModel):
    """Inbound reply relayed from the SMS or email provider."""

    channel: Literal["sms", "email"] = Field(..., description="Channel the reply arrived on")
    sender: str = Field(..., min_length=1, max_length=320, description="Phone number or address")
    text: str = Field(default="", max_length=2000, description="Reply body")


class EmergencyShutdownRequest(BaseModel):
    reason: str = Field(default="operator_request", max_length=200)
