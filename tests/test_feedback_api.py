import pytest

from feedbackhub.extensions import db
from feedbackhub.models import Feedback
from conftest import login, profile_of


@pytest.fixture()
def two_branches(make_branch, make_account, make_feedback):
    a = make_branch("A")
    b = make_branch("B")
    people = {
        "admin": make_account("admin@example.com", role="admin", tier="pro"),
        "mgr_a": make_account("mgr.a@example.com", role="manager", branch=a, tier="pro"),
        "staff_a": make_account("staff.a@example.com", role="staff", branch=a, tier="pro"),
        "staff_b": make_account("staff.b@example.com", role="staff", branch=b, tier="pro"),
    }
    rows = {
        "a": make_feedback(branch=a, subject="A issue"),
        "b": make_feedback(branch=b, subject="B issue"),
        "none": make_feedback(branch=None, subject="Unrouted", customer_name=None, customer_email=None),
    }
    return a, b, people, rows


def _subjects(client):
    r = client.get("/feedback")
    assert r.status_code == 200
    return sorted(item["subject"] for item in r.get_json()["items"])


def test_list_is_branch_scoped(client, two_branches):
    _, _, people, _ = two_branches
    login(client, people["admin"])
    assert _subjects(client) == ["A issue", "B issue", "Unrouted"]
    login(client, people["mgr_a"])
    assert _subjects(client) == ["A issue", "Unrouted"]
    login(client, people["staff_b"])
    assert _subjects(client) == ["B issue", "Unrouted"]


def test_staff_sees_redacted_manager_sees_full(client, two_branches):
    _, _, people, rows = two_branches
    row_id = rows["a"].id

    login(client, people["staff_a"])
    body = client.get(f"/feedback/{row_id}").get_json()
    assert body["customer_email"] is None and body["customer_phone"] is None
    assert body["customer_name"] == "Customer"
    assert body["can_write"] is False

    login(client, people["mgr_a"])
    body = client.get(f"/feedback/{row_id}").get_json()
    assert body["customer_email"] == "jane@example.com"
    assert body["can_write"] is True and body["writable_fields"] is None


def test_other_branch_row_is_not_found_not_forbidden(client, two_branches):
    _, _, people, rows = two_branches
    login(client, people["staff_a"])
    assert client.get(f"/feedback/{rows['b'].id}").status_code == 404
    assert client.patch(f"/feedback/{rows['b'].id}", json={"status": "resolved"}).status_code == 404


def test_staff_cannot_write_but_assignee_can_change_status(client, two_branches):
    _, _, people, rows = two_branches
    row_id = rows["a"].id
    login(client, people["staff_a"])
    assert client.patch(f"/feedback/{row_id}", json={"status": "in_progress"}).status_code == 403

    login(client, people["mgr_a"])
    r = client.patch(f"/feedback/{row_id}", json={"assigned_to": profile_of(people["staff_a"]).id})
    assert r.status_code == 200

    login(client, people["staff_a"])
    body = client.get(f"/feedback/{row_id}").get_json()
    assert body["customer_email"] == "jane@example.com"
    assert body["writable_fields"] == ["assigned_to", "is_active", "status"]
    assert client.patch(f"/feedback/{row_id}", json={"priority": "urgent"}).status_code == 403
    r = client.patch(f"/feedback/{row_id}", json={"status": "resolved"})
    assert r.status_code == 200
    row = db.session.get(Feedback, row_id)
    assert row.status == "resolved" and row.resolved_at is not None


def test_reopening_clears_resolved_at(client, two_branches):
    _, _, people, rows = two_branches
    login(client, people["mgr_a"])
    row_id = rows["a"].id
    client.patch(f"/feedback/{row_id}", json={"status": "resolved"})
    r = client.patch(f"/feedback/{row_id}", json={"status": "pending"})
    assert r.get_json()["resolved_at"] is None


def test_invalid_update_values(client, two_branches):
    _, _, people, rows = two_branches
    login(client, people["admin"])
    r = client.patch(f"/feedback/{rows['a'].id}", json={"status": "archived", "priority": "meh"})
    assert r.status_code == 400
    assert set(r.get_json()["fields"]) == {"status", "priority"}
    assert client.patch(f"/feedback/{rows['a'].id}", json={}).status_code == 400


@pytest.mark.parametrize("payload", [
    {"status": 5},
    {"status": None},
    {"priority": ["high"]},
    {"priority": {"level": "high"}},
    {"assigned_to": True},
    {"assigned_to": "someone"},
])
def test_malformed_update_values_are_400(client, two_branches, payload):
    _, _, people, rows = two_branches
    login(client, people["admin"])
    r = client.patch(f"/feedback/{rows['a'].id}", json=payload)
    assert r.status_code == 400
    assert set(r.get_json()["fields"]) == set(payload)


def test_assignee_cannot_hand_row_to_another_branch(client, two_branches):
    _, _, people, rows = two_branches
    row_id = rows["a"].id
    staff_a = profile_of(people["staff_a"])
    login(client, people["mgr_a"])
    assert client.patch(f"/feedback/{row_id}", json={"assigned_to": staff_a.id}).status_code == 200

    login(client, people["staff_a"])
    r = client.patch(f"/feedback/{row_id}", json={"assigned_to": profile_of(people["staff_b"]).id})
    assert r.status_code == 400
    assert "assigned_to" in r.get_json()["fields"]
    assert db.session.get(Feedback, row_id).assigned_to == staff_a.id

    login(client, people["staff_b"])
    assert client.get(f"/feedback/{row_id}").status_code == 404


def test_assignee_must_be_staff_of_the_row_branch_or_admin(client, two_branches, make_account):
    _, _, people, rows = two_branches
    customer = make_account("plain.user@example.com")
    login(client, people["admin"])

    r = client.patch(f"/feedback/{rows['a'].id}", json={"assigned_to": profile_of(customer).id})
    assert r.status_code == 400
    r = client.patch(f"/feedback/{rows['b'].id}", json={"assigned_to": profile_of(people["mgr_a"]).id})
    assert r.status_code == 400

    admin_id = profile_of(people["admin"]).id
    r = client.patch(f"/feedback/{rows['b'].id}", json={"assigned_to": admin_id})
    assert r.status_code == 200 and r.get_json()["assigned_to"] == admin_id
    # Unrouted rows accept staff from any branch
    staff_b_id = profile_of(people["staff_b"]).id
    r = client.patch(f"/feedback/{rows['none'].id}", json={"assigned_to": staff_b_id})
    assert r.status_code == 200
    r = client.patch(f"/feedback/{rows['a'].id}", json={"assigned_to": None})
    assert r.status_code == 200 and r.get_json()["assigned_to"] is None


def test_responses_thread(client, two_branches):
    _, _, people, rows = two_branches
    row_id = rows["a"].id
    login(client, people["mgr_a"])
    r = client.post(f"/feedback/{row_id}/responses", json={"message": "Sorry about that!", "is_internal": False})
    assert r.status_code == 201
    assert client.post(f"/feedback/{row_id}/responses", json={"message": "  "}).status_code == 400

    login(client, people["staff_a"])
    items = client.get(f"/feedback/{row_id}/responses").get_json()["items"]
    assert [i["message"] for i in items] == ["Sorry about that!"]
    assert client.post(f"/feedback/{row_id}/responses", json={"message": "me too"}).status_code == 403


def test_export_redacts_for_staff(client, two_branches):
    _, _, people, _ = two_branches
    login(client, people["staff_a"])
    r = client.get("/feedback/export.csv")
    assert r.status_code == 200
    text = r.get_data(as_text=True)
    assert "jane@example.com" not in text
    assert "A issue" in text and "B issue" not in text


def test_stats_only_count_visible_rows(client, two_branches, make_feedback):
    a, _, people, _ = two_branches
    make_feedback(branch=a, rating=2, status="resolved")
    login(client, people["mgr_a"])
    stats = client.get("/feedback/stats").get_json()
    assert stats["totalFeedback"] == 3
    assert stats["resolvedFeedback"] == 1
    assert stats["pendingFeedback"] == 2
    assert stats["averageRating"] == 3.3
    assert stats["thisWeekFeedback"] == 3


def test_anonymous_request_is_401(client):
    r = client.get("/feedback")
    assert r.status_code == 401
    assert r.get_json()["error"] == "unauthorized"
