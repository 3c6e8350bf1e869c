# app/models/api/event_response.py
"""
Event lifecycle API response models.
Every response carries `success`; payloads live under `data`.
"""

from typing import Any

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    success: bool = False
    error: str = Field(..., description="Human-readable error")


class PaginationInfo(BaseModel):
    current_page: int = Field(..., serialization_alias="currentPage")
    total_pages: int = Field(..., serialization_alias="totalPages")
    total_events: int = Field(..., serialization_alias="totalEvents")
    limit: int
    has_next_page: bool = Field(..., serialization_alias="hasNextPage")
    has_prev_page: bool = Field(..., serialization_alias="hasPrevPage")


class EventListResponse(BaseModel):
    success: bool = True
    data: list[dict[str, Any]] = Field(default_factory=list)
    pagination: PaginationInfo


class EventResponse(BaseModel):
    success: bool = True
    data: dict[str, Any] = Field(..., description="Serialized event")


class RegistrationResponse(BaseModel):
    success: bool = Field(..., description="True only when the attempt booked the event")
    data: dict[str, Any] = Field(..., description="Serialized registration result")


class BulkActionItem(BaseModel):
    event_id: str = Field(..., serialization_alias="eventId")
    success: bool
    status: str | None = None
    error: str | None = None


class BulkActionData(BaseModel):
    action: str
    processed: int
    succeeded: int
    failed: int
    results: list[BulkActionItem]


class BulkActionResponse(BaseModel):
    success: bool = True
    data: BulkActionData


class ActionResponse(BaseModel):
    success: bool = True
    data: dict[str, Any] = Field(default_factory=dict)
