"""Worker registry queries and the assignment coordinator."""

import logging
from typing import Dict, List, Tuple

from sqlalchemy import func, update
from sqlmodel import select

from .complaints import get_complaint_for_hostel
from .config import get_settings
from .errors import ConflictError, NotFoundError, ValidationError
from .metrics import ASSIGNMENT_CONFLICTS, NOTIFICATION_FAILURES
from .models import (
    STATUS_IN_PROGRESS,
    STATUS_RESOLVED,
    WORKER_AVAILABLE,
    WORKER_BUSY,
    AssignmentAudit,
    Complaint,
    Worker,
    utcnow,
)
from .whatsapp_notifier import normalize_phone

logger = logging.getLogger("grievance.assignment")


def serialize_worker(worker: Worker) -> Dict:
    return {
        "id": worker.id,
        "name": worker.name,
        "phone": worker.phone,
        "hostel": worker.hostel,
        "work_type": worker.work_type,
        "availability": worker.availability,
    }


async def register_worker(session, name: str, phone: str, hostel: str, work_type: str) -> Worker:
    """Create or update a worker keyed by (name, hostel)."""
    canonical_phone = normalize_phone(phone, get_settings().default_country_code)
    if not name or not canonical_phone or not hostel or not work_type:
        raise ValidationError("Worker name, phone, hostel and work type are required")

    result = await session.exec(select(Worker).where(Worker.name == name, Worker.hostel == hostel))
    worker = result.first()
    if worker:
        worker.phone = canonical_phone
        worker.work_type = work_type
        worker.updated_at = utcnow()
    else:
        worker = Worker(name=name, phone=canonical_phone, hostel=hostel, work_type=work_type)
    session.add(worker)
    await session.commit()
    await session.refresh(worker)
    return worker


async def list_available_workers(session, hostel: str, work_type: str) -> List[Worker]:
    statement = (
        select(Worker)
        .where(
            Worker.hostel == hostel,
            func.lower(Worker.work_type) == work_type.strip().lower(),
            Worker.availability == WORKER_AVAILABLE,
        )
        .order_by(Worker.name, Worker.id)
    )
    result = await session.exec(statement)
    return result.all()


async def _notify_worker(services, worker: Worker, complaint: Complaint) -> bool:
    try:
        sent = await services.messenger.send_assignment_notice(worker, complaint)
    except Exception as e:
        logger.error("Failed to send assignment notice for complaint %s: %s", complaint.id, e)
        sent = False
    if not sent:
        NOTIFICATION_FAILURES.labels(channel="whatsapp").inc()
        logger.warning("Worker %s was assigned complaint %s but not notified", worker.name, complaint.id)
    return sent


async def assign_worker(session, services, complaint_id: int, hostel: str, worker_name: str) -> Tuple[Complaint, Worker, bool]:
    """Bind an available worker to a complaint and notify them.

    The worker's Available -> Busy flip and the complaint update commit
    together or not at all. Returns (complaint, worker, notified); the
    notification is best-effort and never undoes the assignment.
    """
    worker_name = (worker_name or "").strip()
    if not worker_name:
        raise ValidationError("Worker is required")

    complaint = await get_complaint_for_hostel(session, complaint_id, hostel)
    if complaint.status == STATUS_RESOLVED:
        raise ConflictError("Complaint is already resolved")

    result = await session.exec(
        select(Worker).where(Worker.name == worker_name, Worker.hostel == hostel).order_by(Worker.id)
    )
    worker = result.first()
    if worker is None:
        raise NotFoundError("Worker not found")

    if complaint.assigned_worker_id == worker.id:
        return complaint, worker, False

    # Rollback expires loaded rows, so keep plain copies for error reporting.
    worker_label, complaint_ref = worker.name, complaint.id
    previous_worker_id = complaint.assigned_worker_id

    now = utcnow()
    claimed = await session.exec(
        update(Worker)
        .execution_options(synchronize_session=False)
        .where(Worker.id == worker.id, Worker.availability == WORKER_AVAILABLE)
        .values(availability=WORKER_BUSY, updated_at=now)
    )
    if claimed.rowcount != 1:
        await session.rollback()
        ASSIGNMENT_CONFLICTS.inc()
        logger.info("Worker %s is busy; assignment of complaint %s rejected", worker_label, complaint_ref)
        raise ConflictError(f"{worker_label} is no longer available, assign another worker")

    if previous_worker_id is None:
        same_holder = Complaint.assigned_worker_id.is_(None)
    else:
        same_holder = Complaint.assigned_worker_id == previous_worker_id
    moved = await session.exec(
        update(Complaint)
        .execution_options(synchronize_session=False)
        .where(Complaint.id == complaint_ref, Complaint.status != STATUS_RESOLVED, same_holder)
        .values(assigned_worker_id=worker.id, status=STATUS_IN_PROGRESS, updated_at=now)
    )
    if moved.rowcount != 1:
        await session.rollback()
        raise ConflictError("Complaint was updated by someone else, please refresh and retry")

    if previous_worker_id is not None:
        await session.exec(
            update(Worker)
            .execution_options(synchronize_session=False)
            .where(Worker.id == previous_worker_id, Worker.availability == WORKER_BUSY)
            .values(availability=WORKER_AVAILABLE, updated_at=now)
        )

    audit = AssignmentAudit(
        complaint_id=complaint.id,
        worker_id=worker.id,
        hostel=hostel,
        replaced_worker_id=previous_worker_id,
    )
    session.add(audit)
    await session.commit()
    await session.refresh(complaint)
    await session.refresh(worker)
    logger.info("Assigned worker %s to complaint %s (hostel=%s)", worker.name, complaint.id, hostel)

    notified = await _notify_worker(services, worker, complaint)
    if notified:
        audit.notified = True
        session.add(audit)
        await session.commit()

    return complaint, worker, notified


async def list_assignments(session, complaint_id: int, hostel: str) -> List[Dict]:
    await get_complaint_for_hostel(session, complaint_id, hostel)
    result = await session.exec(
        select(AssignmentAudit, Worker.name)
        .join(Worker, Worker.id == AssignmentAudit.worker_id)
        .where(AssignmentAudit.complaint_id == complaint_id)
        .order_by(AssignmentAudit.created_at.desc(), AssignmentAudit.id.desc())
    )
    return [
        {
            "id": audit.id,
            "complaint_id": audit.complaint_id,
            "worker_id": audit.worker_id,
            "worker": worker_name,
            "replaced_worker_id": audit.replaced_worker_id,
            "notified": audit.notified,
            "created_at": audit.created_at.isoformat() if audit.created_at else None,
        }
        for audit, worker_name in result.all()
    ]


__all__ = ["serialize_worker", "register_worker", "list_available_workers", "assign_worker", "list_assignments"]
