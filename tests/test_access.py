import pytest

from feedbackhub.errors import Forbidden, NotFound
from feedbackhub.models import Branch, Feedback, Profile, QRCode, Task, Team
from feedbackhub.services import access


def _profile(pid, role, branch_id=None):
    return Profile(id=pid, account_id=pid, role=role, branch_id=branch_id)


def _feedback(branch_id, assigned_to=None):
    return Feedback(id=99, branch_id=branch_id, assigned_to=assigned_to, rating=3, subject="s", message="m")


def test_admin_gets_full_everywhere():
    admin = _profile(1, "admin", branch_id=None)
    d = access.decide(admin, _feedback(branch_id=7))
    assert d.read and d.write and d.fields is None
    assert d.projection == access.PROJECTION_FULL


def test_manager_full_only_in_own_branch():
    mgr = _profile(2, "manager", branch_id=1)
    assert access.decide(mgr, _feedback(1)) == access.FULL
    assert access.decide(mgr, _feedback(2)) == access.DENY


def test_manager_gets_full_on_rows_without_branch():
    mgr = _profile(2, "manager", branch_id=1)
    assert access.decide(mgr, _feedback(None)) == access.FULL


def test_staff_reads_redacted_and_cannot_write():
    staff = _profile(3, "staff", branch_id=1)
    d = access.decide(staff, _feedback(1))
    assert d.read and not d.write
    assert d.projection == access.PROJECTION_REDACTED


def test_staff_of_branch_a_never_sees_branch_b():
    staff = _profile(3, "staff", branch_id=1)
    row = _feedback(2)
    assert not access.can_read(staff, row)
    assert not access.can_write(staff, row)
    assert not access.can_write(staff, row, "status")


def test_assignee_reads_full_and_writes_limited_fields():
    staff = _profile(3, "staff", branch_id=1)
    row = _feedback(2, assigned_to=3)
    d = access.decide(staff, row)
    assert d.read and d.projection == access.PROJECTION_FULL
    assert d.may_write("status") and d.may_write("assigned_to")
    assert not d.may_write("priority")


def test_assignment_outranks_staff_redaction():
    staff = _profile(3, "staff", branch_id=1)
    d = access.decide(staff, _feedback(1, assigned_to=3))
    assert d.projection == access.PROJECTION_FULL and d.write


def test_unrecognised_or_user_role_grants_nothing():
    odd = _profile(4, "superuser", branch_id=1)
    plain = _profile(5, "user", branch_id=1)
    assert access.decide(odd, _feedback(1)) == access.DENY
    assert access.decide(plain, _feedback(1)) == access.DENY
    assert access.decide(None, _feedback(1)) == access.DENY


def test_qr_owner_may_deactivate_outside_own_branch():
    staff = _profile(3, "staff", branch_id=1)
    qr = QRCode(id=1, owner_id=3, branch_id=2)
    assert access.can_write(staff, qr, "is_active")
    assert not access.can_write(staff, qr, "name")


def test_branch_entity_is_scoped_by_its_own_id():
    mgr = _profile(2, "manager", branch_id=1)
    assert access.decide(mgr, Branch(id=1, name="A")).write
    assert not access.decide(mgr, Branch(id=2, name="B")).read


def test_require_read_hides_existence_and_require_write_names_fields():
    staff = _profile(3, "staff", branch_id=1)
    with pytest.raises(NotFound):
        access.require_read(staff, _feedback(2))
    with pytest.raises(Forbidden):
        access.require_write(staff, _feedback(1))

    assignee = _profile(6, "user")
    with pytest.raises(Forbidden) as exc:
        access.require_write(assignee, _feedback(1, assigned_to=6), ("status", "priority"))
    assert exc.value.fields == {"priority": "not permitted"}


def test_team_and_task_decisions():
    team = Team(id=10, name="Floor", branch_id=1, manager_id=20)
    lead = _profile(20, "staff", branch_id=1)
    other_branch_staff = _profile(21, "staff", branch_id=2)
    assert access.decide_team(lead, team).write
    assert access.decide_team(other_branch_staff, team, membership=None) == access.DENY

    task = Task(id=5, team_id=None, assigned_by=20, assigned_to=22, status="pending")
    assignee = _profile(22, "user")
    d = access.decide_task(assignee, task)
    assert d.may_write("status") and not d.may_write("title")
    assert access.decide_task(lead, task) == access.FULL
    assert access.decide_task(other_branch_staff, task) == access.DENY
