"""Attach worker proof-of-completion photos received over WhatsApp."""

import logging
import re
from typing import Optional

from sqlalchemy import update
from sqlmodel import select

from .config import get_settings
from .errors import ExternalServiceDegraded
from .metrics import WEBHOOK_IGNORED, WORKER_PROOFS_ATTACHED
from .models import Complaint, Worker, utcnow
from .storage import WORKER_PROOF_FOLDER
from .whatsapp_notifier import phone_candidates

logger = logging.getLogger("grievance.proof_intake")

OUTCOME_NO_MEDIA = "no_media"
OUTCOME_UNKNOWN_SENDER = "unknown_sender"
OUTCOME_NO_COMPLAINT = "no_complaint"
OUTCOME_MEDIA_UNAVAILABLE = "media_unavailable"
OUTCOME_ATTACHED = "attached"

_HASH_REFERENCE = re.compile(r"#\s*(\d{1,9})\b")
_BARE_REFERENCE = re.compile(r"\b(\d{1,9})\b")


def parse_complaint_reference(caption: Optional[str]) -> Optional[int]:
    """Complaint id from a caption such as ``"#42 done"``.

    A ``#``-prefixed number wins over a bare one, so "room 204 fixed #42"
    refers to complaint 42.
    """
    if not caption:
        return None
    match = _HASH_REFERENCE.search(caption) or _BARE_REFERENCE.search(caption)
    return int(match.group(1)) if match else None


def _ignored(reason: str) -> str:
    WEBHOOK_IGNORED.labels(reason=reason).inc()
    return reason


async def _find_worker(session, sender: Optional[str]) -> Optional[Worker]:
    candidates = phone_candidates(sender, get_settings().default_country_code)
    if not candidates:
        return None
    result = await session.exec(select(Worker).where(Worker.phone.in_(candidates)).order_by(Worker.id))
    return result.first()


async def _target_complaint(session, worker: Worker, reference: Optional[int]) -> Optional[Complaint]:
    if reference is not None:
        complaint = await session.get(Complaint, reference)
        if complaint is None or complaint.assigned_worker_id is None:
            return None
        if complaint.hostel_name != worker.hostel:
            logger.warning(
                "Worker %s (%s) referenced complaint %s in hostel %s; ignoring",
                worker.id,
                worker.hostel,
                complaint.id,
                complaint.hostel_name,
            )
            return None
        if complaint.assigned_worker_id != worker.id:
            logger.warning(
                "Worker %s sent proof for complaint %s assigned to worker %s",
                worker.id,
                complaint.id,
                complaint.assigned_worker_id,
            )
        return complaint

    result = await session.exec(
        select(Complaint)
        .where(Complaint.assigned_worker_id == worker.id)
        .order_by(Complaint.created_at.desc(), Complaint.id.desc())
    )
    return result.first()


async def receive_worker_media(
    session,
    services,
    sender: Optional[str],
    media_url: Optional[str],
    content_type: Optional[str] = None,
    caption: Optional[str] = None,
) -> str:
    """Store a worker's photo as proof on the complaint it refers to.

    Returns the outcome name. Nothing here is reported back to the sender.
    """
    if not media_url:
        return _ignored(OUTCOME_NO_MEDIA)

    worker = await _find_worker(session, sender)
    if worker is None:
        logger.info("Ignoring media from unregistered number %s", sender)
        return _ignored(OUTCOME_UNKNOWN_SENDER)

    complaint = await _target_complaint(session, worker, parse_complaint_reference(caption))
    if complaint is None:
        logger.info("No complaint matched proof from worker %s (caption=%r)", worker.id, caption)
        return _ignored(OUTCOME_NO_COMPLAINT)

    try:
        data = await services.messenger.fetch_media(media_url)
    except ExternalServiceDegraded as e:
        logger.error("Could not download proof for complaint %s: %s", complaint.id, e.message)
        return _ignored(OUTCOME_MEDIA_UNAVAILABLE)

    proof_url = await services.storage.upload_evidence(data, content_type or "image/jpeg", WORKER_PROOF_FOLDER)
    await session.exec(
        update(Complaint)
        .execution_options(synchronize_session=False)
        .where(Complaint.id == complaint.id)
        .values(worker_proof_url=proof_url, updated_at=utcnow())
    )
    await session.commit()

    WORKER_PROOFS_ATTACHED.inc()
    logger.info("Attached worker proof to complaint %s: %s", complaint.id, proof_url)
    return OUTCOME_ATTACHED


__all__ = ["parse_complaint_reference", "receive_worker_media"]
