import io
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from PIL import Image

from grievance.classifier import PriorityClassifier
from grievance import complaints
from grievance.complaints import ALLOWED_TRANSITIONS, can_transition
from grievance.config import get_settings
from grievance.errors import ConflictError
from grievance.photo_utils import detect_mime_type, validate_image
from grievance.models import (
    PRIORITY_CRITICAL,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    STATUS_RESOLVED,
    WORKER_AVAILABLE,
    WORKER_BUSY,
    Complaint,
    Worker,
)

from conftest import HOSTEL, STUDENT_EMAIL

FORM = {
    "type": "Electrical",
    "description": "sparking socket",
    "hostel_name": HOSTEL,
    "room_no": "204",
    "floor_no": "2",
    "phone_number": "9123456789",
}


def _png_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (16, 16), color=(200, 30, 30)).save(buf, format="PNG")
    return buf.getvalue()


async def test_submit_requires_a_session(client):
    r = await client.post("/complaints", data=FORM)
    assert r.status_code == 401


async def test_submit_stores_pending_complaint_with_classified_priority(client, services, login_student):
    await login_student()
    services.classifier.answer = PRIORITY_CRITICAL

    r = await client.post("/complaints", data=FORM)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["message"] == "Complaint submitted successfully"
    complaint = body["complaint"]
    assert complaint["id"] > 0
    assert complaint["status"] == STATUS_PENDING
    assert complaint["priority"] == PRIORITY_CRITICAL
    assert complaint["photo_url"] is None
    assert services.classifier.calls == ["sparking socket"]


@pytest.mark.parametrize(
    "field,message",
    [
        ("type", "Complaint type is required"),
        ("description", "Description is required"),
        ("hostel_name", "Hostel is required"),
        ("room_no", "Room number is required"),
    ],
)
async def test_submit_rejects_missing_required_fields(client, services, login_student, field, message):
    await login_student()
    form = dict(FORM)
    form[field] = "   "
    r = await client.post("/complaints", data=form)
    assert r.status_code == 400
    assert r.json()["message"] == message
    assert services.classifier.calls == []


async def test_classifier_failure_falls_back_to_normal(client, services, login_student):
    failing_client = MagicMock()
    failing_client.chat.completions.create = AsyncMock(side_effect=RuntimeError("upstream down"))
    services.classifier = PriorityClassifier(get_settings(), client=failing_client)
    await login_student()

    r = await client.post("/complaints", data=FORM)
    assert r.status_code == 200
    assert r.json()["complaint"]["priority"] == "normal"
    failing_client.chat.completions.create.assert_awaited_once()


async def test_submit_with_photo_stores_evidence(client, services, login_student):
    await login_student()
    files = {"photo": ("socket.png", _png_bytes(), "image/png")}

    r = await client.post("/complaints", data=FORM, files=files)
    assert r.status_code == 200, r.text
    photo_url = r.json()["complaint"]["photo_url"]
    assert photo_url.startswith("/storage/complaints/")
    assert photo_url.endswith(".png")

    stored = Path(services.storage.local_path) / photo_url[len("/storage/"):]
    assert stored.read_bytes() == _png_bytes()


async def test_submit_rejects_non_image_photo(client, login_student):
    await login_student()
    files = {"photo": ("socket.jpg", b"definitely not an image", "image/jpeg")}
    r = await client.post("/complaints", data=FORM, files=files)
    assert r.status_code == 400
    assert r.json()["message"] == "Invalid image file"


async def test_submit_rejects_decompression_bomb(client, services, login_student, monkeypatch):
    await login_student()
    buf = io.BytesIO()
    Image.new("1", (64, 64)).save(buf, format="PNG")
    # Anything over twice this pixel count is refused by Pillow before decoding.
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)

    files = {"photo": ("bomb.png", buf.getvalue(), "image/png")}
    r = await client.post("/complaints", data=FORM, files=files)
    assert r.status_code == 400
    assert r.json()["message"] == "Invalid image file"
    assert services.classifier.calls == []

    assert validate_image(buf.getvalue(), "bomb.png") == (False, "Invalid image file")
    assert detect_mime_type(buf.getvalue(), "image/png") == "image/png"


async def test_list_own_complaints_newest_first(client, login_student, make_identity, make_complaint):
    await login_student()
    other = await make_identity(email="b@students.vnit.ac.in")
    await make_complaint(other.id, description="someone else's")

    first = (await client.post("/complaints", data=dict(FORM, description="first"))).json()["complaint"]
    second = (await client.post("/complaints", data=dict(FORM, description="second"))).json()["complaint"]

    r = await client.get("/complaints")
    assert r.status_code == 200
    listed = r.json()["complaints"]
    assert [c["id"] for c in listed] == [second["id"], first["id"]]


async def test_hostel_queue_is_critical_first_then_newest(client, make_identity, make_complaint):
    owner = await make_identity()
    normal_newest = await make_complaint(owner.id, minutes=30)
    critical_old = await make_complaint(owner.id, minutes=0, priority=PRIORITY_CRITICAL)
    critical_new = await make_complaint(owner.id, minutes=20, priority=PRIORITY_CRITICAL)
    in_progress = await make_complaint(owner.id, minutes=10, status=STATUS_IN_PROGRESS)
    await make_complaint(owner.id, minutes=40, status=STATUS_RESOLVED)
    await make_complaint(owner.id, minutes=50, hostel_name="HB2")

    r = await client.get("/admin/complaints/pending", params={"hostel": HOSTEL})
    assert r.status_code == 200
    queue = r.json()["complaints"]
    assert [c["id"] for c in queue] == [critical_new.id, critical_old.id, normal_newest.id, in_progress.id]
    assert queue[0]["email"] == STUDENT_EMAIL
    assert queue[0]["name"] == "Student A"


async def test_hostel_queue_breaks_time_ties_by_id(client, make_identity, make_complaint):
    owner = await make_identity()
    a = await make_complaint(owner.id, minutes=5)
    b = await make_complaint(owner.id, minutes=5)

    r = await client.get("/admin/complaints/pending", params={"hostel": HOSTEL})
    assert [c["id"] for c in r.json()["complaints"]] == [b.id, a.id]


async def test_hostel_queue_requires_hostel(client):
    r = await client.get("/admin/complaints/pending")
    assert r.status_code == 400


def test_transition_table():
    assert ALLOWED_TRANSITIONS[STATUS_RESOLVED] == set()
    assert can_transition(STATUS_PENDING, STATUS_IN_PROGRESS) == (True, "")
    assert can_transition(STATUS_IN_PROGRESS, STATUS_PENDING)[0] is True
    assert can_transition(STATUS_PENDING, STATUS_RESOLVED)[0] is True
    allowed, message = can_transition(STATUS_RESOLVED, STATUS_PENDING)
    assert allowed is False
    assert "Resolved" in message


async def test_status_update_from_other_hostel_is_not_found(client, make_identity, make_complaint, fetch):
    owner = await make_identity()
    complaint = await make_complaint(owner.id)

    r = await client.put(f"/admin/complaints/{complaint.id}/status", params={"hostel": "HB2"}, json={"status": STATUS_RESOLVED})
    assert r.status_code == 404
    assert r.json()["message"] == "Complaint not found or not authorized"
    assert (await fetch(Complaint, complaint.id)).status == STATUS_PENDING

    r = await client.put("/admin/complaints/9999/status", params={"hostel": HOSTEL}, json={"status": STATUS_RESOLVED})
    assert r.status_code == 404
    assert r.json()["message"] == "Complaint not found or not authorized"


async def test_status_update_rejects_unknown_status(client, make_identity, make_complaint):
    owner = await make_identity()
    complaint = await make_complaint(owner.id)
    r = await client.put(f"/admin/complaints/{complaint.id}/status", params={"hostel": HOSTEL}, json={"status": "Closed"})
    assert r.status_code == 400
    assert r.json()["message"].startswith("Invalid status")


async def test_resolving_emails_owner_once_and_releases_worker(
    client, services, make_identity, make_complaint, make_worker, fetch
):
    owner = await make_identity()
    worker = await make_worker(availability=WORKER_BUSY)
    complaint = await make_complaint(owner.id, status=STATUS_IN_PROGRESS, assigned_worker_id=worker.id)
    url = f"/admin/complaints/{complaint.id}/status"

    r = await client.put(url, params={"hostel": HOSTEL}, json={"status": STATUS_RESOLVED})
    assert r.status_code == 200
    assert r.json()["message"] == "Status updated successfully"
    assert r.json()["complaint"]["resolved_at"] is not None

    services.mailer.send_resolution_email.assert_awaited_once()
    email, sent_complaint = services.mailer.send_resolution_email.await_args.args
    assert email == STUDENT_EMAIL
    assert sent_complaint.id == complaint.id
    assert (await fetch(Worker, worker.id)).availability == WORKER_AVAILABLE

    # Repeating the update is a no-op: no second email.
    r = await client.put(url, params={"hostel": HOSTEL}, json={"status": STATUS_RESOLVED})
    assert r.status_code == 200
    assert r.json()["message"] == "Complaint is already Resolved"
    assert services.mailer.send_resolution_email.await_count == 1


async def test_resolved_complaint_cannot_be_reopened(client, services, make_identity, make_complaint, fetch):
    owner = await make_identity()
    complaint = await make_complaint(owner.id, status=STATUS_RESOLVED)

    r = await client.put(
        f"/admin/complaints/{complaint.id}/status", params={"hostel": HOSTEL}, json={"status": STATUS_PENDING}
    )
    assert r.status_code == 400
    assert (await fetch(Complaint, complaint.id)).status == STATUS_RESOLVED
    services.mailer.send_resolution_email.assert_not_awaited()


async def test_resolution_email_failure_does_not_undo_resolution(client, services, make_identity, make_complaint, fetch):
    services.mailer.send_resolution_email.return_value = False
    owner = await make_identity()
    complaint = await make_complaint(owner.id)

    r = await client.put(
        f"/admin/complaints/{complaint.id}/status", params={"hostel": HOSTEL}, json={"status": STATUS_RESOLVED}
    )
    assert r.status_code == 200
    assert (await fetch(Complaint, complaint.id)).status == STATUS_RESOLVED


async def test_moving_back_to_pending_keeps_worker_busy(client, make_identity, make_complaint, make_worker, fetch):
    owner = await make_identity()
    worker = await make_worker(availability=WORKER_BUSY)
    complaint = await make_complaint(owner.id, status=STATUS_IN_PROGRESS, assigned_worker_id=worker.id)

    r = await client.put(
        f"/admin/complaints/{complaint.id}/status", params={"hostel": HOSTEL}, json={"status": STATUS_PENDING}
    )
    assert r.status_code == 200
    assert (await fetch(Complaint, complaint.id)).status == STATUS_PENDING
    assert (await fetch(Worker, worker.id)).availability == WORKER_BUSY


async def test_stale_status_read_loses_to_concurrent_resolution(
    session_factory, services, make_identity, make_complaint, make_worker, fetch
):
    owner = await make_identity()
    worker = await make_worker(availability=WORKER_BUSY)
    complaint = await make_complaint(owner.id, status=STATUS_IN_PROGRESS, assigned_worker_id=worker.id)

    async with session_factory() as slow, session_factory() as fast:
        # The slow admin loaded the complaint while it was still In Progress.
        stale = await slow.get(Complaint, complaint.id)
        assert stale.status == STATUS_IN_PROGRESS

        _, changed = await complaints.update_status(fast, services, complaint.id, HOSTEL, STATUS_RESOLVED)
        assert changed is True
        with pytest.raises(ConflictError):
            await complaints.update_status(slow, services, complaint.id, HOSTEL, STATUS_PENDING)

    final = await fetch(Complaint, complaint.id)
    assert final.status == STATUS_RESOLVED
    assert final.resolved_at is not None
    assert services.mailer.send_resolution_email.await_count == 1
    assert (await fetch(Worker, worker.id)).availability == WORKER_AVAILABLE


async def test_two_admins_resolving_together_email_once(
    session_factory, services, make_identity, make_complaint, fetch
):
    owner = await make_identity()
    complaint = await make_complaint(owner.id)

    async with session_factory() as slow, session_factory() as fast:
        await slow.get(Complaint, complaint.id)

        await complaints.update_status(fast, services, complaint.id, HOSTEL, STATUS_RESOLVED)
        with pytest.raises(ConflictError):
            await complaints.update_status(slow, services, complaint.id, HOSTEL, STATUS_RESOLVED)

    assert (await fetch(Complaint, complaint.id)).status == STATUS_RESOLVED
    services.mailer.send_resolution_email.assert_awaited_once()
