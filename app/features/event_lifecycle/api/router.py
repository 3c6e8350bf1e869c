"""
Operator control surface for the event lifecycle.

All endpoints require the API key. Lifecycle errors raised here are turned
into `{"success": false, "error": ...}` responses by the handlers registered
in app.main.
"""

import math

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status

from app.auth.verify import require_api_key
from app.features.event_lifecycle.container import ServiceContainer
from app.features.event_lifecycle.domain.models import EventStatus
from app.features.event_lifecycle.errors import EventNotFoundError, LifecycleError
from app.infrastructure.audit.audit_logger import audit_logger
from app.infrastructure.observability.logging import get_logger
from app.models.api.event_request import (
    ApprovalReplyRequest,
    BulkActionRequest,
    EmergencyShutdownRequest,
)
from app.models.api.event_response import (
    ActionResponse,
    BulkActionData,
    BulkActionItem,
    BulkActionResponse,
    EventListResponse,
    EventResponse,
    PaginationInfo,
    RegistrationResponse,
)

logger = get_logger(__name__)

router = APIRouter(tags=["events"], dependencies=[Depends(require_api_key)])


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Services not initialized"
        )
    return container


@router.get("/events", response_model=EventListResponse)
async def list_events(
    status_filter: str | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, max_length=200),
    venue: str | None = Query(default=None, max_length=200),
    cost: str | None = Query(default=None, pattern="^(free|under25|under50)$"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    container: ServiceContainer = Depends(get_container),
):
    event_status = None
    if status_filter:
        try:
            event_status = EventStatus(status_filter)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown status '{status_filter}'",
            ) from None

    events, total = await container.store.list_events(
        status=event_status, search=search, venue=venue, cost=cost, page=page, limit=limit
    )
    total_pages = math.ceil(total / limit) if total else 0
    return EventListResponse(
        data=[event.to_dict() for event in events],
        pagination=PaginationInfo(
            current_page=page,
            total_pages=total_pages,
            total_events=total,
            limit=limit,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        ),
    )


@router.get("/events/{event_id}", response_model=EventResponse)
async def get_event(event_id: str, container: ServiceContainer = Depends(get_container)):
    event = await container.store.get_event(event_id)
    if event is None:
        raise EventNotFoundError(event_id)
    return EventResponse(data=event.to_dict())


@router.post("/events/bulk-action", response_model=BulkActionResponse)
async def bulk_action(
    body: BulkActionRequest, container: ServiceContainer = Depends(get_container)
):
    decide = container.approval.approve if body.action == "approve" else container.approval.reject
    results: list[BulkActionItem] = []

    for event_id in dict.fromkeys(body.event_ids):
        try:
            event = await decide(event_id, actor="api_bulk")
            results.append(
                BulkActionItem(event_id=event_id, success=True, status=event.status.value)
            )
        except LifecycleError as e:
            results.append(BulkActionItem(event_id=event_id, success=False, error=e.message))

    succeeded = sum(1 for item in results if item.success)
    await audit_logger.log_operator_action(
        None, f"bulk_{body.action}", event_ids=body.event_ids, succeeded=succeeded
    )
    logger.info(
        "Bulk action applied", action=body.action, processed=len(results), succeeded=succeeded
    )
    return BulkActionResponse(
        data=BulkActionData(
            action=body.action,
            processed=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=results,
        )
    )


@router.post("/events/{event_id}/approve", response_model=EventResponse)
async def approve_event(
    event_id: str, request: Request, container: ServiceContainer = Depends(get_container)
):
    event = await container.approval.approve(event_id, actor="api")
    await audit_logger.log_operator_action(
        event_id, "approve", request_id=getattr(request.state, "request_id", None)
    )
    return EventResponse(data=event.to_dict())


@router.post("/events/{event_id}/reject", response_model=EventResponse)
async def reject_event(
    event_id: str, request: Request, container: ServiceContainer = Depends(get_container)
):
    event = await container.approval.reject(event_id, actor="api")
    await audit_logger.log_operator_action(
        event_id, "reject", request_id=getattr(request.state, "request_id", None)
    )
    return EventResponse(data=event.to_dict())


@router.post("/events/{event_id}/register", response_model=RegistrationResponse)
async def register_event(
    event_id: str, request: Request, container: ServiceContainer = Depends(get_container)
):
    """Operator-triggered registration attempt (also the only way to retry a failure)."""
    event = await container.store.get_event(event_id)
    if event is None:
        raise EventNotFoundError(event_id, operation="register")

    result = await container.registration.register(event, operator=True)
    await audit_logger.log_operator_action(
        event_id,
        "register",
        request_id=getattr(request.state, "request_id", None),
        outcome=result.outcome.value,
    )
    return RegistrationResponse(success=result.success, data=result.to_dict())


@router.post("/events/{event_id}/calendar", response_model=EventResponse)
async def add_to_calendar(event_id: str, container: ServiceContainer = Depends(get_container)):
    event = await container.calendar_sync.sync_event(event_id)
    return EventResponse(data=event.to_dict())


@router.post("/approvals/reply", response_model=ActionResponse)
async def approval_reply(
    body: ApprovalReplyRequest, container: ServiceContainer = Depends(get_container)
):
    outcome = await container.approval.handle_reply(body.channel, body.sender, body.text)
    return ActionResponse(data=outcome)


@router.post("/emergency-shutdown", response_model=ActionResponse, status_code=202)
async def emergency_shutdown(
    background_tasks: BackgroundTasks,
    body: EmergencyShutdownRequest | None = None,
    container: ServiceContainer = Depends(get_container),
):
    reason = body.reason if body else "operator_request"
    await audit_logger.log_operator_action(None, "emergency_shutdown", reason=reason)
    background_tasks.add_task(container.emergency_shutdown, reason)
    return ActionResponse(data={"message": "Shutdown initiated", "reason": reason})
