"""Student complaint routes."""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from .. import complaints as lifecycle
from ..auth import get_current_identity
from ..database import get_session
from ..dependencies import get_services
from ..models import Identity

router = APIRouter(tags=["complaints"])


@router.get("/complaints")
async def list_complaints(
    identity: Identity = Depends(get_current_identity),
    session=Depends(get_session),
):
    return {"complaints": await lifecycle.list_own_complaints(session, identity)}


@router.post("/complaints")
async def create_complaint(
    type: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    hostel_name: Optional[str] = Form(None),
    room_no: Optional[str] = Form(None),
    floor_no: Optional[str] = Form(None),
    phone_number: Optional[str] = Form(None),
    photo: Optional[UploadFile] = File(None),
    identity: Identity = Depends(get_current_identity),
    session=Depends(get_session),
    services=Depends(get_services),
):
    evidence = None
    if photo is not None and photo.filename:
        evidence = lifecycle.EvidencePhoto(
            data=await photo.read(),
            file_name=photo.filename,
            content_type=photo.content_type,
        )

    complaint = await lifecycle.submit_complaint(
        session,
        services,
        identity.email,
        type=type,
        description=description,
        hostel_name=hostel_name,
        room_no=room_no,
        floor_no=floor_no,
        phone_number=phone_number,
        photo=evidence,
    )
    return {
        "message": "Complaint submitted successfully",
        "complaint": lifecycle.serialize_complaint(complaint),
    }
