"""Complaint lifecycle: submission, listing, triage queue and status changes.

Lifecycle::

    Pending --assign--> In Progress --resolve--> Resolved
       ^                    |
       +-----(admin)--------+

Admins may also move Pending straight to Resolved. Resolved is terminal.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from sqlalchemy import case, update
from sqlmodel import select

from .errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from .metrics import COMPLAINTS_SUBMITTED, NOTIFICATION_FAILURES
from .models import (
    COMPLAINT_STATUSES,
    OPEN_STATUSES,
    PRIORITY_CRITICAL,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    STATUS_RESOLVED,
    WORKER_AVAILABLE,
    WORKER_BUSY,
    Complaint,
    Identity,
    Worker,
    utcnow,
)
from .photo_utils import detect_mime_type, validate_image
from .storage import COMPLAINT_PHOTO_FOLDER

logger = logging.getLogger("grievance.complaints")

ALLOWED_TRANSITIONS = {
    STATUS_PENDING: {STATUS_IN_PROGRESS, STATUS_RESOLVED},
    STATUS_IN_PROGRESS: {STATUS_PENDING, STATUS_RESOLVED},
    # Re-opening is not supported; a recurring problem is a new complaint.
    STATUS_RESOLVED: set(),
}

NOT_FOUND_MESSAGE = "Complaint not found or not authorized"


@dataclass
class EvidencePhoto:
    data: bytes
    file_name: Optional[str] = None
    content_type: Optional[str] = None


def can_transition(old_status: str, new_status: str) -> Tuple[bool, str]:
    """Return (allowed, message) for the requested status change."""
    if new_status not in ALLOWED_TRANSITIONS.get(old_status, set()):
        return False, f"Invalid status transition from {old_status} to {new_status}"
    return True, ""


def serialize_complaint(complaint: Complaint, worker_name: Optional[str] = None) -> Dict:
    return {
        "id": complaint.id,
        "type": complaint.type,
        "description": complaint.description,
        "hostel_name": complaint.hostel_name,
        "room_no": complaint.room_no,
        "floor_no": complaint.floor_no,
        "phone_number": complaint.phone_number,
        "photo_url": complaint.photo_url,
        "status": complaint.status,
        "priority": complaint.priority,
        "assigned_worker": worker_name,
        "worker_proof_url": complaint.worker_proof_url,
        "created_at": complaint.created_at.isoformat() if complaint.created_at else None,
        "resolved_at": complaint.resolved_at.isoformat() if complaint.resolved_at else None,
    }


def _required(value: Optional[str], label: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{label} is required")
    return value


def _optional(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


async def submit_complaint(
    session,
    services,
    identity_email: str,
    *,
    type: Optional[str],
    description: Optional[str],
    hostel_name: Optional[str],
    room_no: Optional[str],
    floor_no: Optional[str] = None,
    phone_number: Optional[str] = None,
    photo: Optional[EvidencePhoto] = None,
) -> Complaint:
    """Create a Pending complaint with a classifier-assigned priority."""
    category = _required(type, "Complaint type")
    text = _required(description, "Description")
    hostel = _required(hostel_name, "Hostel")
    room = _required(room_no, "Room number")

    result = await session.exec(select(Identity).where(Identity.email == identity_email))
    identity = result.first()
    if identity is None:
        raise AuthenticationError("Unauthorized")

    if photo is not None:
        is_valid, error_msg = validate_image(photo.data, photo.file_name)
        if not is_valid:
            raise ValidationError(error_msg)

    # Classification finishes (or falls back) before the row exists, so a
    # visible complaint always has a priority.
    priority = await services.classifier.classify(text)

    photo_url = None
    if photo is not None:
        content_type = detect_mime_type(photo.data, photo.content_type)
        photo_url = await services.storage.upload_evidence(photo.data, content_type, COMPLAINT_PHOTO_FOLDER)

    complaint = Complaint(
        user_id=identity.id,
        type=category,
        description=text,
        hostel_name=hostel,
        room_no=room,
        floor_no=_optional(floor_no),
        phone_number=_optional(phone_number),
        photo_url=photo_url,
        status=STATUS_PENDING,
        priority=priority,
    )
    session.add(complaint)
    await session.commit()
    await session.refresh(complaint)

    COMPLAINTS_SUBMITTED.labels(priority=priority).inc()
    logger.info(
        "Complaint %s submitted by %s (hostel=%s, priority=%s)",
        complaint.id,
        identity_email,
        hostel,
        priority,
    )
    return complaint


async def list_own_complaints(session, identity: Identity) -> List[Dict]:
    statement = (
        select(Complaint, Worker.name)
        .outerjoin(Worker, Worker.id == Complaint.assigned_worker_id)
        .where(Complaint.user_id == identity.id)
        .order_by(Complaint.created_at.desc(), Complaint.id.desc())
    )
    result = await session.exec(statement)
    return [serialize_complaint(complaint, worker_name) for complaint, worker_name in result.all()]


async def list_hostel_queue(session, hostel: str) -> List[Dict]:
    """Open complaints for a hostel: critical first, then newest first."""
    statement = (
        select(
            Complaint,
            Identity.name.label("reporter_name"),
            Identity.email.label("reporter_email"),
            Worker.name.label("worker_name"),
        )
        .join(Identity, Identity.id == Complaint.user_id)
        .outerjoin(Worker, Worker.id == Complaint.assigned_worker_id)
        .where(Complaint.hostel_name == hostel, Complaint.status.in_(OPEN_STATUSES))
        .order_by(
            case((Complaint.priority == PRIORITY_CRITICAL, 0), else_=1),
            Complaint.created_at.desc(),
            Complaint.id.desc(),
        )
    )
    result = await session.exec(statement)
    queue = []
    for complaint, reporter_name, reporter_email, worker_name in result.all():
        item = serialize_complaint(complaint, worker_name)
        item["name"] = reporter_name
        item["email"] = reporter_email
        queue.append(item)
    return queue


async def get_complaint_for_hostel(session, complaint_id: int, hostel: str) -> Complaint:
    """Hostel mismatch and absence are the same error so ids don't leak across hostels."""
    result = await session.exec(
        select(Complaint).where(Complaint.id == complaint_id, Complaint.hostel_name == hostel)
    )
    complaint = result.first()
    if complaint is None:
        raise NotFoundError(NOT_FOUND_MESSAGE)
    return complaint


async def _send_resolution_notice(session, services, complaint: Complaint) -> bool:
    owner = await session.get(Identity, complaint.user_id)
    if owner is None:
        logger.error("Complaint %s has no owner row; skipping resolution email", complaint.id)
        return False
    try:
        sent = await services.mailer.send_resolution_email(owner.email, complaint)
    except Exception as e:
        logger.error("Failed to send resolution email for complaint %s: %s", complaint.id, e)
        sent = False
    if not sent:
        NOTIFICATION_FAILURES.labels(channel="email").inc()
        logger.warning("Resolution email for complaint %s was not delivered", complaint.id)
    return sent


async def update_status(session, services, complaint_id: int, hostel: str, new_status: str) -> Tuple[Complaint, bool]:
    """Apply an admin status change. Returns (complaint, changed).

    Resolving releases the assigned worker in the same transaction and then
    emails the owner exactly once.
    """
    if new_status not in COMPLAINT_STATUSES:
        raise ValidationError(f"Invalid status. Allowed: {', '.join(COMPLAINT_STATUSES)}")

    complaint = await get_complaint_for_hostel(session, complaint_id, hostel)
    old_status = complaint.status
    if old_status == new_status:
        return complaint, False

    allowed, msg = can_transition(old_status, new_status)
    if not allowed:
        raise ValidationError(msg)

    now = utcnow()
    values = {"status": new_status, "updated_at": now}
    if new_status == STATUS_RESOLVED:
        values["resolved_at"] = now

    # Compare-and-set on the old status: of two racing updates only one wins,
    # so a complaint is resolved (and its owner emailed) once.
    result = await session.exec(
        update(Complaint)
        .execution_options(synchronize_session=False)
        .where(Complaint.id == complaint.id, Complaint.status == old_status)
        .values(**values)
    )
    if result.rowcount != 1:
        await session.rollback()
        raise ConflictError("Complaint was updated by someone else, please refresh and retry")

    if new_status == STATUS_RESOLVED and complaint.assigned_worker_id is not None:
        await session.exec(
            update(Worker)
            .execution_options(synchronize_session=False)
            .where(Worker.id == complaint.assigned_worker_id, Worker.availability == WORKER_BUSY)
            .values(availability=WORKER_AVAILABLE, updated_at=now)
        )
        logger.info("Released worker %s from complaint %s", complaint.assigned_worker_id, complaint.id)

    await session.commit()
    await session.refresh(complaint)
    logger.info("Complaint %s status %s -> %s (hostel=%s)", complaint.id, old_status, new_status, hostel)

    if new_status == STATUS_RESOLVED:
        await _send_resolution_notice(session, services, complaint)

    return complaint, True


__all__ = [
    "ALLOWED_TRANSITIONS",
    "EvidencePhoto",
    "can_transition",
    "serialize_complaint",
    "submit_complaint",
    "list_own_complaints",
    "list_hostel_queue",
    "get_complaint_for_hostel",
    "update_status",
]
