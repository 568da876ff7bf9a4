"""Hostel admin routes: login, triage queue, status updates and assignment.

Every route except ``/admin/login`` is scoped by the ``?hostel=`` query
parameter through ``auth.require_hostel_admin``.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from .. import assignment
from .. import auth
from .. import complaints as lifecycle
from ..database import get_session
from ..dependencies import get_services
from ..errors import ValidationError

router = APIRouter(prefix="/admin", tags=["admin"])


class AdminLoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: Optional[str] = None


class AssignRequest(BaseModel):
    worker: Optional[str] = None


@router.post("/login")
async def admin_login(payload: AdminLoginRequest, session=Depends(get_session)):
    if not payload.username or not payload.password:
        raise ValidationError("Username and password required")
    admin = await auth.authenticate_admin(session, payload.username, payload.password)
    token = auth.create_access_token(subject=admin.username, role=auth.ADMIN_ROLE, hostel=admin.hostel)
    return {
        "message": "Login successful",
        "username": admin.username,
        "hostel": admin.hostel,
        "access_token": token,
    }


@router.get("/complaints/pending")
async def pending_complaints(
    hostel: str = Depends(auth.require_hostel_admin),
    session=Depends(get_session),
):
    return {"complaints": await lifecycle.list_hostel_queue(session, hostel)}


@router.get("/workers")
async def available_workers(
    work_type: str = Query(..., min_length=1),
    hostel: str = Depends(auth.require_hostel_admin),
    session=Depends(get_session),
):
    workers = await assignment.list_available_workers(session, hostel, work_type)
    return {"workers": [assignment.serialize_worker(w) for w in workers]}


@router.put("/complaints/{complaint_id}/status")
async def update_complaint_status(
    complaint_id: int,
    payload: StatusUpdateRequest,
    hostel: str = Depends(auth.require_hostel_admin),
    session=Depends(get_session),
    services=Depends(get_services),
):
    complaint, changed = await lifecycle.update_status(
        session, services, complaint_id, hostel, (payload.status or "").strip()
    )
    message = "Status updated successfully" if changed else f"Complaint is already {complaint.status}"
    return {"message": message, "complaint": lifecycle.serialize_complaint(complaint)}


@router.put("/complaints/{complaint_id}/assign")
async def assign_complaint(
    complaint_id: int,
    payload: AssignRequest,
    hostel: str = Depends(auth.require_hostel_admin),
    session=Depends(get_session),
    services=Depends(get_services),
):
    complaint, worker, notified = await assignment.assign_worker(
        session, services, complaint_id, hostel, payload.worker
    )
    message = f"Assigned to {worker.name}"
    if not notified:
        message += " (WhatsApp notice not delivered)"
    return {
        "message": message,
        "notified": notified,
        "complaint": lifecycle.serialize_complaint(complaint, worker.name),
        "worker": assignment.serialize_worker(worker),
    }


@router.get("/complaints/{complaint_id}/assignments")
async def complaint_assignments(
    complaint_id: int,
    hostel: str = Depends(auth.require_hostel_admin),
    session=Depends(get_session),
):
    return {"assignments": await assignment.list_assignments(session, complaint_id, hostel)}
