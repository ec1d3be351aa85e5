"""Notification JSON API routes."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from ..config import settings
from ..dependencies import get_caller, get_engine
from ..directory.models import User
from ..rate_limit import limiter
from .engine import NotificationEngine
from .enums import NotificationCategory, NotificationPriority, NotificationStatus, NotificationType, UserRole
from .schemas import NotificationCreateRequest, NotificationFilters, StatsWindow

router = APIRouter(tags=["notifications"])

_MANAGER_ROLES = (UserRole.ADMIN, UserRole.PRINCIPAL)


def _can_manage(caller: User, created_by: UUID | None) -> bool:
    return caller.role in _MANAGER_ROLES or (created_by is not None and created_by == caller.id)


@router.post("/notifications")
@limiter.limit(settings.rate_limit_submit)
def submit_notification(
    request: Request,
    body: NotificationCreateRequest,
    caller: User = Depends(get_caller),
    engine: NotificationEngine = Depends(get_engine),
):
    """Accept a notification; dispatch continues in the background."""
    receipt = engine.submit(caller.tenant_id, body, creator_id=caller.id)
    return JSONResponse(
        {
            "ok": True,
            "id": str(receipt.notification_id),
            "status": str(receipt.status),
            "total_targets": receipt.total_targets,
        },
        status_code=201,
    )


@router.get("/notifications")
def list_notifications(
    type: NotificationType | None = None,
    category: NotificationCategory | None = None,
    status: NotificationStatus | None = None,
    priority: NotificationPriority | None = None,
    created_by: UUID | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    caller: User = Depends(get_caller),
    engine: NotificationEngine = Depends(get_engine),
):
    filters = NotificationFilters(
        type=type,
        category=category,
        status=status,
        priority=priority,
        created_by=created_by,
        date_from=date_from,
        date_to=date_to,
    )
    result = engine.list_notifications(caller.tenant_id, filters, page, limit)
    return JSONResponse(result.model_dump(mode="json"))


@router.get("/notifications/stats")
def notification_stats(
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    period_days: int = Query(30, ge=1, le=3650),
    caller: User = Depends(get_caller),
    engine: NotificationEngine = Depends(get_engine),
):
    window = StatsWindow(date_from=date_from, date_to=date_to, period_days=period_days)
    return JSONResponse(engine.get_stats(caller.tenant_id, window))


@router.get("/notifications/me")
def my_notifications(
    unread_only: bool = False,
    type: NotificationType | None = None,
    category: NotificationCategory | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    caller: User = Depends(get_caller),
    engine: NotificationEngine = Depends(get_engine),
):
    result = engine.get_user_notifications(caller.id, unread_only, type, category, page, limit)
    return JSONResponse(result.model_dump(mode="json"))


@router.post("/notifications/read-all")
def read_all(
    caller: User = Depends(get_caller),
    engine: NotificationEngine = Depends(get_engine),
):
    updated = engine.mark_all_read(caller.id)
    return JSONResponse({"ok": True, "updated": updated})


@router.get("/notifications/{notification_id}")
def get_notification(
    notification_id: UUID,
    caller: User = Depends(get_caller),
    engine: NotificationEngine = Depends(get_engine),
):
    detail = engine.get_notification(caller.tenant_id, notification_id)
    return JSONResponse(detail.model_dump(mode="json"))


@router.delete("/notifications/{notification_id}")
def cancel_notification(
    notification_id: UUID,
    caller: User = Depends(get_caller),
    engine: NotificationEngine = Depends(get_engine),
):
    """Cancel a scheduled notification (creator, admin or principal only)."""
    detail = engine.get_notification(caller.tenant_id, notification_id)
    if not _can_manage(caller, detail.created_by):
        return JSONResponse({"error": "Not allowed to cancel this notification"}, status_code=403)
    cancelled = engine.cancel(caller.tenant_id, notification_id)
    return JSONResponse({"ok": True, "id": str(cancelled.id), "status": str(cancelled.status)})


@router.post("/notifications/{notification_id}/read")
def read_notification(
    notification_id: UUID,
    caller: User = Depends(get_caller),
    engine: NotificationEngine = Depends(get_engine),
):
    changed = engine.mark_read(notification_id, caller.id)
    return JSONResponse({"ok": True, "changed": changed})


@router.post("/notifications/{notification_id}/retry")
def retry_notification(
    notification_id: UUID,
    caller: User = Depends(get_caller),
    engine: NotificationEngine = Depends(get_engine),
):
    """Re-attempt failed external deliveries of a completed notification."""
    detail = engine.get_notification(caller.tenant_id, notification_id)
    if not _can_manage(caller, detail.created_by):
        return JSONResponse({"error": "Not allowed to retry this notification"}, status_code=403)
    report = engine.retry_failed(caller.tenant_id, notification_id)
    return JSONResponse(
        {
            "ok": True,
            "status": str(report.status) if report.status else None,
            "retried": len(report.outcomes),
            "recovered": report.succeeded,
        }
    )
