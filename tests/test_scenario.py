"""A branch goes from signup to a resolved customer complaint."""
from feedbackhub.extensions import db
from feedbackhub.models import Branch, Feedback
from conftest import PASSWORD, login, logout, profile_of


def test_healthz(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.get_json() == {"status": "ok"}


def test_complaint_lifecycle(client, make_account, make_branch):
    branch = make_branch("Downtown")
    manager = make_account("manager@example.com", role="manager", branch=branch, tier="pro")

    r = client.post("/auth/register", json={"email": "newbie@example.com", "password": PASSWORD})
    assert r.status_code == 201
    staff_profile_id = r.get_json()["profile"]["id"]
    assert r.get_json()["profile"]["branch_id"] == branch.id
    logout(client)

    login(client, manager)
    r = client.patch(f"/auth/profiles/{staff_profile_id}", json={"role": "staff"})
    assert r.status_code == 404
    logout(client)

    admin = make_account("admin@example.com", role="admin", tier="pro")
    login(client, admin)
    assert client.patch(f"/auth/profiles/{staff_profile_id}", json={"role": "staff"}).status_code == 200
    logout(client)

    r = client.post("/f/submit", json={
        "rating": 1,
        "subject": "Cold food",
        "message": "My order arrived cold.",
        "customer_name": "Pat",
        "customer_email": "pat@example.com",
        "branch_id": branch.id,
    })
    assert r.status_code == 201
    feedback_id = r.get_json()["id"]

    r = client.post("/auth/login", json={"email": "newbie@example.com", "password": PASSWORD})
    assert r.status_code == 200
    body = client.get(f"/feedback/{feedback_id}").get_json()
    assert body["customer_email"] is None and body["can_write"] is False
    client.post("/auth/logout")
    logout(client)

    login(client, manager)
    r = client.patch(f"/feedback/{feedback_id}", json={"assigned_to": staff_profile_id, "priority": "high"})
    assert r.status_code == 200
    assert r.get_json()["customer_email"] == "pat@example.com"
    logout(client)

    r = client.post("/auth/login", json={"email": "newbie@example.com", "password": PASSWORD})
    assert r.status_code == 200
    body = client.get(f"/feedback/{feedback_id}").get_json()
    assert body["customer_email"] == "pat@example.com"
    r = client.patch(f"/feedback/{feedback_id}", json={"status": "resolved"})
    assert r.status_code == 200
    logout(client)

    login(client, manager)
    stats = client.get("/feedback/stats").get_json()
    assert stats["resolvedFeedback"] == 1 and stats["pendingFeedback"] == 0
    row = db.session.get(Feedback, feedback_id)
    assert row.resolved_at is not None and row.assigned_to == staff_profile_id


def test_other_branch_staff_never_see_contact_details(client, make_account, make_branch):
    downtown = make_branch("Downtown")
    admin = make_account("admin@example.com", role="admin", tier="pro")
    staff = make_account("staff@example.com", role="staff", branch=downtown)

    login(client, admin)
    r = client.post("/branches", json={"name": "Uptown"})
    assert r.status_code == 201
    uptown = db.session.get(Branch, r.get_json()["id"])
    manager = make_account("m@example.com", role="manager", branch=uptown)
    r = client.patch(f"/branches/{uptown.id}", json={"manager_id": profile_of(manager).id})
    assert r.status_code == 200
    logout(client)

    r = client.post("/f/submit", json={
        "rating": 2,
        "subject": "Slow service",
        "message": "Waited forty minutes.",
        "branch_id": uptown.id,
        "customer_email": "a@b.com",
    })
    assert r.status_code == 201
    feedback_id = r.get_json()["id"]

    login(client, staff)
    items = client.get("/feedback").get_json()["items"]
    assert all(item["customer_email"] is None for item in items)
    assert client.get(f"/feedback/{feedback_id}").status_code == 404
    logout(client)

    login(client, manager)
    assert client.get(f"/feedback/{feedback_id}").get_json()["customer_email"] == "a@b.com"
