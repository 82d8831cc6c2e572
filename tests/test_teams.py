from datetime import timedelta

import pytest

from feedbackhub.errors import Conflict, Forbidden, NotFound
from feedbackhub.extensions import db
from feedbackhub.models import EmailLog, Team, TeamInvitation, TeamMember
from feedbackhub.services import identity
from feedbackhub.services import teams as team_svc
from feedbackhub.utils.helpers import utcnow
from conftest import PASSWORD, login, logout, profile_of


@pytest.fixture()
def team_setup(make_account, make_branch):
    branch = make_branch()
    manager = make_account("boss@example.com", role="manager", branch=branch)
    team = Team(name="Front of house", branch_id=branch.id, manager_id=profile_of(manager).id)
    db.session.add(team)
    db.session.commit()
    return branch, manager, team


def test_add_member_by_email_for_unknown_person_creates_invitation(client, team_setup):
    _, manager, team = team_setup
    login(client, manager)
    r = client.post(f"/teams/{team.id}/members", json={"email": "New.Hire@Example.com", "role": "lead"})
    assert r.status_code == 201
    body = r.get_json()
    assert body["member"] is None
    assert body["invitation"]["email"] == "new.hire@example.com"
    assert body["invitation"]["status"] == "pending"
    assert body["warnings"] == []
    assert EmailLog.query.filter_by(to_email="new.hire@example.com", template="team_invitation").count() == 1


def test_existing_profile_is_added_directly_and_duplicate_conflicts(client, team_setup, make_account):
    branch, manager, team = team_setup
    make_account("staffer@example.com", role="staff", branch=branch)
    login(client, manager)
    r = client.post(f"/teams/{team.id}/members", json={"email": "staffer@example.com"})
    assert r.status_code == 201
    assert r.get_json()["member"]["role"] == "member"

    r = client.post(f"/teams/{team.id}/members", json={"email": "staffer@example.com"})
    assert r.status_code == 409


def test_duplicate_pending_invitation_conflicts(team_setup):
    _, manager, team = team_setup
    actor = profile_of(manager)
    team_svc.invite(actor, team, "guest@example.com")
    with pytest.raises(Conflict):
        team_svc.invite(actor, team, "guest@example.com")
    assert TeamInvitation.query.filter_by(team_id=team.id).count() == 1


def test_expired_invitation_is_observed_lazily_and_can_be_reissued(team_setup):
    _, manager, team = team_setup
    actor = profile_of(manager)
    inv, _ = team_svc.invite(actor, team, "late@example.com")
    old_token = inv.token
    later = utcnow() + timedelta(days=8)

    listed = team_svc.list_invitations(actor, team, now=later)
    assert [state for _, state in listed] == ["expired"]
    assert db.session.get(TeamInvitation, inv.id).status == "expired"


def test_accepted_invitation_can_be_reissued_after_member_removed(team_setup):
    _, manager, team = team_setup
    actor = profile_of(manager)
    inv, _ = team_svc.invite(actor, team, "gone@example.com")
    account = identity.register_account("gone@example.com", PASSWORD)
    member = TeamMember.query.filter_by(team_id=team.id, profile_id=profile_of(account).id).one()
    old_token = db.session.get(TeamInvitation, inv.id).token
    with pytest.raises(Conflict):
        team_svc.invite(actor, team, "gone@example.com")

    team_svc.remove_member(actor, team, member.id)
    again, _ = team_svc.invite(actor, team, "gone@example.com", role="lead")
    assert again.id == inv.id
    assert (again.status, again.role, again.accepted_member_id) == ("pending", "lead", None)
    assert again.token != old_token

    again, _ = team_svc.invite(actor, team, "late@example.com", now=later)
    assert again.id == inv.id
    assert again.status == "pending"
    assert again.token != old_token
    assert TeamInvitation.query.filter_by(team_id=team.id).count() == 1


def test_signup_accepts_pending_invitation(client, team_setup):
    _, manager, team = team_setup
    team_svc.invite(profile_of(manager), team, "joiner@example.com", role="lead")

    r = client.post("/auth/register", json={"email": "Joiner@example.com", "password": PASSWORD})
    assert r.status_code == 201
    profile_id = r.get_json()["profile"]["id"]
    member = TeamMember.query.filter_by(team_id=team.id, profile_id=profile_id).one()
    assert member.role == "lead"
    inv = TeamInvitation.query.filter_by(email="joiner@example.com").one()
    assert inv.status == "accepted"
    assert inv.accepted_member_id == member.id


def test_signup_ignores_expired_invitation(team_setup):
    _, manager, team = team_setup
    inv, _ = team_svc.invite(profile_of(manager), team, "slow@example.com")
    inv.expires_at = utcnow() - timedelta(minutes=1)
    db.session.commit()

    account = identity.register_account("slow@example.com", PASSWORD)
    assert TeamMember.query.filter_by(team_id=team.id, profile_id=profile_of(account).id).count() == 0
    assert db.session.get(TeamInvitation, inv.id).status == "expired"


def test_accept_by_token_checks_email(client, team_setup, make_account):
    _, manager, team = team_setup
    invitee = make_account("invitee@example.com")
    other = make_account("other@example.com")
    inv, _ = team_svc.invite(profile_of(manager), team, "invitee@example.com")

    login(client, other)
    r = client.post("/teams/invitations/accept", json={"token": inv.token})
    assert r.status_code == 403

    login(client, invitee)
    r = client.post("/teams/invitations/accept", json={"token": inv.token})
    assert r.status_code == 200
    assert r.get_json()["team_id"] == team.id

    r = client.post("/teams/invitations/accept", json={"token": inv.token})
    assert r.status_code == 409

    r = client.post("/teams/invitations/accept", json={"token": "garbage"})
    assert r.status_code == 404


def test_outsiders_cannot_see_or_manage_team(client, team_setup, make_account, make_branch):
    _, _, team = team_setup
    elsewhere = make_branch("Elsewhere")
    outsider = make_account("outsider@example.com", role="staff", branch=elsewhere)
    login(client, outsider)
    assert client.get(f"/teams/{team.id}").status_code == 404
    assert client.post(f"/teams/{team.id}/members", json={"email": "a@example.com"}).status_code == 404
    assert client.get("/teams").get_json()["items"] == []


def test_member_reads_but_cannot_manage(team_setup, make_account):
    _, _, team = team_setup
    member = make_account("member@example.com")
    db.session.add(TeamMember(team_id=team.id, profile_id=profile_of(member).id, role="member"))
    db.session.commit()
    actor = profile_of(member)

    _, decision = team_svc.get_team(actor, team.id)
    assert decision.read and not decision.write
    with pytest.raises(Forbidden):
        team_svc.add_member(actor, team, "x@example.com")


def test_manager_cannot_create_team_in_other_branch(client, team_setup, make_branch):
    _, manager, _ = team_setup
    other = make_branch("Other")
    login(client, manager)
    r = client.post("/teams", json={"name": "Night shift", "branch_id": other.id})
    assert r.status_code == 403
    r = client.post("/teams", json={"name": "Night shift"})
    assert r.status_code == 201
    assert r.get_json()["branch_id"] == profile_of(manager).branch_id


def test_revoke_invitation(client, team_setup):
    _, manager, team = team_setup
    inv, _ = team_svc.invite(profile_of(manager), team, "gone@example.com")
    login(client, manager)
    assert client.delete(f"/teams/{team.id}/invitations/{inv.id}").status_code == 204
    assert client.delete(f"/teams/{team.id}/invitations/{inv.id}").status_code == 404
    logout(client)
    assert client.get(f"/teams/{team.id}/invitations").status_code == 401


def test_expire_sweep_uses_same_predicate(team_setup):
    _, manager, team = team_setup
    actor = profile_of(manager)
    team_svc.invite(actor, team, "a@example.com")
    team_svc.invite(actor, team, "b@example.com")
    assert team_svc.expire_stale_invitations(now=utcnow()) == 0
    assert team_svc.expire_stale_invitations(now=utcnow() + timedelta(days=30)) == 2


def test_remove_unknown_member_is_404(team_setup):
    _, manager, team = team_setup
    with pytest.raises(NotFound):
        team_svc.remove_member(profile_of(manager), team, 12345)
