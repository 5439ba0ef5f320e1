"""
routes_contact.py - Public contact form and admin message management
=====================================================================
POST /api/contact runs the body through the ContactPipeline before
anything is written.  Every other route here is admin-only.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from sqlalchemy import delete, func, or_, select, update

from ..auth.dependencies import require_admin
from ..contact.factory import get_contact_pipeline
from ..contact.pipeline import GENERIC_SUCCESS, ContactPipeline, ContactRequest
from ..database import db_session
from ..mailer import send_contact_reply
from ..models import ContactMessage, User
from ..schemas import (
    BulkAction,
    ContactMessageRead,
    PriorityUpdate,
    ReplyRequest,
    StatusUpdate,
    ok,
    paginate,
)

logger = logging.getLogger("institute.contact")

router = APIRouter(prefix="/api/contact", tags=["contact"])

_SORTABLE = {
    "createdAt": ContactMessage.created_at,
    "created_at": ContactMessage.created_at,
    "priority": ContactMessage.priority,
    "status": ContactMessage.status,
    "name": ContactMessage.name,
}


# ---------------------------------------------------------------------------
# Public submission
# ---------------------------------------------------------------------------

@router.post("", status_code=201)
def submit_contact_message(
    request: Request,
    body: Dict[str, Any] = Body(...),
    pipeline: ContactPipeline = Depends(get_contact_pipeline),
) -> dict:
    contact_request = ContactRequest(
        ip=request.client.host if request.client else "unknown",
        user_agent=request.headers.get("user-agent", "")[:512],
        accept_language=request.headers.get("accept-language", ""),
        body=body,
    )
    verdict = pipeline.run(contact_request)

    if verdict.outcome == "soft_reject":
        # Answer exactly like a stored message, with the id the next row would get
        with db_session() as session:
            last_id = session.execute(select(func.max(ContactMessage.id))).scalar_one()
        return ok({"id": (last_id or 0) + 1, "priority": "medium"}, GENERIC_SUCCESS)
    if not verdict.accepted:
        rej = verdict.rejection
        detail = {"message": rej.message, **rej.extra}
        if rej.status_code == 400 and rej.error and rej.message == "Validation error":
            detail["error"] = rej.error
        raise HTTPException(status_code=rej.status_code, detail=detail, headers=rej.headers or None)

    sub = verdict.submission
    with db_session() as session:
        row = ContactMessage(
            name=sub.name,
            email=sub.email.lower(),
            phone=sub.phone,
            subject=sub.subject,
            message=sub.message,
            status="new",
            priority="medium",
            ip_address=contact_request.ip,
            user_agent=contact_request.user_agent,
            fingerprint=verdict.fingerprint,
            form_fill_ms=verdict.form_fill_ms,
        )
        session.add(row)
        session.flush()
        message_id = row.id

    logger.info("Contact message %s received from %s (IP: %s)", message_id, sub.email, contact_request.ip)
    return ok({"id": message_id, "priority": "medium"}, GENERIC_SUCCESS)


# ---------------------------------------------------------------------------
# Admin: listing & statistics
# ---------------------------------------------------------------------------

@router.get("")
def list_messages(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder", pattern="^(asc|desc)$"),
    _admin: User = Depends(require_admin),
) -> dict:
    stmt = select(ContactMessage)
    if search:
        like = f"%{search}%"
        stmt = stmt.where(or_(
            ContactMessage.name.ilike(like),
            ContactMessage.email.ilike(like),
            ContactMessage.subject.ilike(like),
            ContactMessage.message.ilike(like),
        ))
    if status and status != "all":
        stmt = stmt.where(ContactMessage.status == status)
    if priority and priority != "all":
        stmt = stmt.where(ContactMessage.priority == priority)
    if start_date:
        stmt = stmt.where(ContactMessage.created_at >= start_date.replace(tzinfo=None))
    if end_date:
        stmt = stmt.where(ContactMessage.created_at <= end_date.replace(tzinfo=None))

    column = _SORTABLE.get(sort_by, ContactMessage.created_at)
    order = column.desc() if sort_order == "desc" else column.asc()

    with db_session() as session:
        total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
        rows = session.execute(
            stmt.order_by(order, ContactMessage.id.desc()).offset((page - 1) * limit).limit(limit)
        ).scalars().all()
        messages = [ContactMessageRead.model_validate(r) for r in rows]

    return ok({"messages": messages, "pagination": paginate(total, page, limit)})


@router.get("/stats")
def contact_stats(_admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        by_status = dict(session.execute(
            select(ContactMessage.status, func.count()).group_by(ContactMessage.status)
        ).all())
        by_priority = dict(session.execute(
            select(ContactMessage.priority, func.count()).group_by(ContactMessage.priority)
        ).all())
        recent = session.execute(
            select(ContactMessage).order_by(ContactMessage.created_at.desc()).limit(10)
        ).scalars().all()
        replied_rows = session.execute(
            select(ContactMessage.created_at, ContactMessage.replied_at)
            .where(ContactMessage.replied_at.is_not(None))
        ).all()
        recent_messages = [ContactMessageRead.model_validate(r) for r in recent]

    total = sum(by_status.values())
    answered = by_status.get("replied", 0) + by_status.get("closed", 0)
    response_rate = round(answered / total * 100, 1) if total else 0.0
    if replied_rows:
        avg_seconds = sum((r - c).total_seconds() for c, r in replied_rows) / len(replied_rows)
        avg_hours = round(avg_seconds / 3600, 1)
    else:
        avg_hours = 0.0

    return ok({
        "totalMessages": total,
        "newMessages": by_status.get("new", 0),
        "readMessages": by_status.get("read", 0),
        "repliedMessages": by_status.get("replied", 0),
        "closedMessages": by_status.get("closed", 0),
        "responseRate": response_rate,
        "avgResponseHours": avg_hours,
        "messagesByPriority": by_priority,
        "recentMessages": recent_messages,
    })


# ---------------------------------------------------------------------------
# Admin: single message
# ---------------------------------------------------------------------------

def _get_or_404(session, message_id: int) -> ContactMessage:
    row = session.get(ContactMessage, message_id)
    if not row:
        raise HTTPException(status_code=404, detail="Contact message not found")
    return row


@router.get("/{message_id}")
def get_message(message_id: int, _admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        row = _get_or_404(session, message_id)
        if row.status == "new":
            row.status = "read"
            session.flush()
        return ok(ContactMessageRead.model_validate(row))


@router.put("/{message_id}/status")
def update_status(message_id: int, body: StatusUpdate, _admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        row = _get_or_404(session, message_id)
        row.status = body.status
        session.flush()
        return ok(ContactMessageRead.model_validate(row), "Status updated successfully")


@router.put("/{message_id}/priority")
def update_priority(message_id: int, body: PriorityUpdate, _admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        row = _get_or_404(session, message_id)
        row.priority = body.priority
        session.flush()
        return ok(ContactMessageRead.model_validate(row), "Priority updated successfully")


@router.post("/{message_id}/reply")
def reply_to_message(message_id: int, body: ReplyRequest, admin: User = Depends(require_admin)) -> dict:
    reply = body.reply_message.strip()
    if not reply:
        raise HTTPException(status_code=400, detail="Reply message is required")
    with db_session() as session:
        row = _get_or_404(session, message_id)
        row.reply_message = reply
        row.replied_by_id = admin.id
        row.replied_at = datetime.now(timezone.utc)
        row.status = "replied"
        session.flush()
        result = ContactMessageRead.model_validate(row)

    # The reply is saved even if the notification can't be delivered
    send_contact_reply(result.email, result.name, reply, result.subject)
    return ok(result, "Reply sent successfully")


@router.delete("/{message_id}")
def delete_message(message_id: int, _admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        row = _get_or_404(session, message_id)
        session.delete(row)
    return ok(message="Message deleted successfully")


@router.post("/bulk")
def bulk_update(body: BulkAction, _admin: User = Depends(require_admin)) -> dict:
    ids = body.message_ids
    with db_session() as session:
        if body.action == "delete":
            result = session.execute(delete(ContactMessage).where(ContactMessage.id.in_(ids)))
            return ok({"deletedCount": result.rowcount}, "Messages deleted successfully")

        if body.action == "mark-read":
            values, message = {"status": "read"}, "Messages marked as read"
        elif body.action == "mark-closed":
            values, message = {"status": "closed"}, "Messages marked as closed"
        else:
            if not body.priority:
                raise HTTPException(status_code=400, detail="Valid priority is required")
            values, message = {"priority": body.priority}, f"Priority set to {body.priority}"

        result = session.execute(
            update(ContactMessage).where(ContactMessage.id.in_(ids)).values(**values)
        )
        return ok({"modifiedCount": result.rowcount}, message)

