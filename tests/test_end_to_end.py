from grievance.models import (
    PRIORITY_CRITICAL,
    STATUS_IN_PROGRESS,
    STATUS_RESOLVED,
    WORKER_AVAILABLE,
    WORKER_BUSY,
    Worker,
)

from conftest import HOSTEL, STUDENT_EMAIL


async def test_student_to_resolution_flow(
    client, services, otp_codes, make_identity, make_complaint, make_worker, make_admin, fetch
):
    # Older complaints already in the queue.
    neighbour = await make_identity(email="b@students.vnit.ac.in", name="Student B")
    await make_complaint(neighbour.id, minutes=0)
    await make_complaint(neighbour.id, minutes=5, priority=PRIORITY_CRITICAL)
    raju = await make_worker(name="Raju", work_type="Electrical")
    await make_admin()

    # Student signs in with an emailed code.
    otp_codes("123456")
    r = await client.post("/api/login", json={"email": STUDENT_EMAIL, "name": "Student A"})
    assert r.json()["otp_required"] is True
    services.mailer.send_otp_email.assert_awaited_once_with(STUDENT_EMAIL, "123456")

    r = await client.post("/api/verify-otp", json={"email": STUDENT_EMAIL, "otp": "123456"})
    assert r.status_code == 200
    assert (await client.get("/api/me")).json()["email"] == STUDENT_EMAIL

    # Submission is classified critical.
    services.classifier.answer = PRIORITY_CRITICAL
    r = await client.post(
        "/api/complaints",
        data={"type": "Electrical", "description": "sparking socket", "hostel_name": HOSTEL, "room_no": "204"},
    )
    assert r.status_code == 200
    complaint = r.json()["complaint"]
    assert complaint["priority"] == PRIORITY_CRITICAL

    # Admin sees it first in the HB1 queue.
    r = await client.post("/api/admin/login", json={"username": "hb1admin", "password": "adminpass123"})
    headers = {"Authorization": f"Bearer {r.json()['access_token']}"}
    params = {"hostel": HOSTEL}
    queue = (await client.get("/api/admin/complaints/pending", params=params, headers=headers)).json()["complaints"]
    assert queue[0]["id"] == complaint["id"]
    assert queue[0]["email"] == STUDENT_EMAIL

    workers = (
        await client.get("/api/admin/workers", params={**params, "work_type": "Electrical"}, headers=headers)
    ).json()["workers"]
    assert [w["name"] for w in workers] == ["Raju"]

    # Assigning Raju makes him Busy and the complaint In Progress.
    r = await client.put(
        f"/api/admin/complaints/{complaint['id']}/assign", params=params, headers=headers, json={"worker": "Raju"}
    )
    assert r.status_code == 200
    assert r.json()["complaint"]["status"] == STATUS_IN_PROGRESS
    assert (await fetch(Worker, raju.id)).availability == WORKER_BUSY
    services.messenger.send_assignment_notice.assert_awaited_once()

    # Resolution emails the student with the complaint id and frees Raju.
    r = await client.put(
        f"/api/admin/complaints/{complaint['id']}/status", params=params, headers=headers, json={"status": STATUS_RESOLVED}
    )
    assert r.status_code == 200
    services.mailer.send_resolution_email.assert_awaited_once()
    email, resolved = services.mailer.send_resolution_email.await_args.args
    assert email == STUDENT_EMAIL
    assert resolved.id == complaint["id"]
    assert (await fetch(Worker, raju.id)).availability == WORKER_AVAILABLE

    own = (await client.get("/api/complaints")).json()["complaints"]
    assert own[0]["status"] == STATUS_RESOLVED
    assert own[0]["assigned_worker"] == "Raju"
