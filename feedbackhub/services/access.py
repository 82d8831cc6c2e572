"""
Row-level authorization for branch-owned entities.

Every data-access path asks this module before loading or mutating a row:
``decide(profile, entity)`` for a single row, ``branch_scope_filter`` for the
SQL side of list endpoints. Both encode the same precedence (first match wins):

1. admin                                     -> full
2. manager, same branch (or row has none)    -> full
3. row is assigned to / owned by the profile -> read full, write limited fields
4. staff, same branch (or row has none)      -> read redacted, no write
5. otherwise                                 -> deny

Teams and tasks follow the same shape keyed by team membership
(``decide_team`` / ``decide_task``).
"""
from dataclasses import dataclass
from typing import FrozenSet, Optional

from sqlalchemy import false, or_, select, true

from feedbackhub.extensions import db
from feedbackhub.models import (
    Branch,
    Feedback,
    FeedbackFormSettings,
    QRCode,
    Task,
    Team,
    TeamMember,
    ROLE_ADMIN,
    ROLE_MANAGER,
    ROLE_STAFF,
)

PROJECTION_FULL = "full"
PROJECTION_REDACTED = "redacted"

# Status/assignment-style fields an owner or assignee may change
WRITE_LIMITED_FIELDS: FrozenSet[str] = frozenset({"status", "assigned_to", "is_active"})
TASK_ASSIGNEE_FIELDS: FrozenSet[str] = frozenset({"status"})


@dataclass(frozen=True)
class Decision:
    read: bool
    write: bool
    fields: Optional[FrozenSet[str]] = None  # None = every field
    projection: Optional[str] = None

    def may_write(self, field: str) -> bool:
        if not self.write:
            return False
        return self.fields is None or field in self.fields


FULL = Decision(read=True, write=True, fields=None, projection=PROJECTION_FULL)
DENY = Decision(read=False, write=False, fields=frozenset(), projection=None)
READ_ONLY = Decision(read=True, write=False, fields=frozenset(), projection=PROJECTION_FULL)
REDACTED = Decision(read=True, write=False, fields=frozenset(), projection=PROJECTION_REDACTED)
LIMITED = Decision(read=True, write=True, fields=WRITE_LIMITED_FIELDS, projection=PROJECTION_FULL)

# Columns naming the principal that "owns" a row for rule 3
_OWNER_COLUMNS = {
    Feedback: ("assigned_to",),
    QRCode: ("owner_id",),
    Branch: ("manager_id",),
    FeedbackFormSettings: (),
    Team: ("manager_id",),
}


def _role(profile) -> Optional[str]:
    if profile is None:
        return None
    return profile.effective_role()


def branch_of(entity) -> Optional[int]:
    if isinstance(entity, Branch):
        return entity.id
    return getattr(entity, "branch_id", None)


def _in_scope(profile, branch_id: Optional[int]) -> bool:
    # Rows with no branch are visible to every manager/staff; otherwise branches must match
    return branch_id is None or branch_id == profile.branch_id


def _owns(profile, entity) -> bool:
    for col in _OWNER_COLUMNS.get(type(entity), ()):
        if getattr(entity, col, None) == profile.id:
            return True
    return False


def decide(profile, entity) -> Decision:
    role = _role(profile)
    if role is None:
        return DENY
    if role == ROLE_ADMIN:
        return FULL

    branch_id = branch_of(entity)
    if role == ROLE_MANAGER and _in_scope(profile, branch_id):
        return FULL
    if _owns(profile, entity):
        return LIMITED
    if role == ROLE_STAFF and _in_scope(profile, branch_id):
        return REDACTED
    return DENY


def eligible_assignee(candidate, branch_id: Optional[int]) -> bool:
    """
    Who may be handed a row of ``branch_id``: admins, or managers and staff of
    that branch (any branch when the row has none).
    """
    role = _role(candidate)
    if role == ROLE_ADMIN:
        return True
    return role in (ROLE_MANAGER, ROLE_STAFF) and _in_scope(candidate, branch_id)


def can_read(profile, entity) -> bool:
    return decide(profile, entity).read


def can_write(profile, entity, field: Optional[str] = None) -> bool:
    d = decide(profile, entity)
    if field is None:
        return d.write
    return d.may_write(field)


def branch_scope_filter(profile, model):
    """SQL twin of ``decide(...).read`` for list queries over ``model``."""
    role = _role(profile)
    if role is None:
        return false()
    if role == ROLE_ADMIN:
        return true()

    branch_col = model.id if model is Branch else model.branch_id
    owner_clauses = [getattr(model, col) == profile.id for col in _OWNER_COLUMNS.get(model, ())]

    clauses = list(owner_clauses)
    if role in (ROLE_MANAGER, ROLE_STAFF):
        clauses.append(branch_col.is_(None))
        if profile.branch_id is not None:
            clauses.append(branch_col == profile.branch_id)
    if not clauses:
        return false()
    return or_(*clauses)


def visible_feedback_filter(profile):
    return branch_scope_filter(profile, Feedback)


# ---- Teams & tasks ----

def _membership(profile, team_id: Optional[int]):
    if profile is None or team_id is None:
        return None
    return TeamMember.query.filter_by(team_id=team_id, profile_id=profile.id).first()


def decide_team(profile, team, membership=None) -> Decision:
    """
    admin / manager of the team's branch / the team's manager / a member with
    team role "admin" -> full; any other member -> read; same-branch staff -> read.
    """
    role = _role(profile)
    if role is None:
        return DENY
    if role == ROLE_ADMIN:
        return FULL
    if role == ROLE_MANAGER and _in_scope(profile, team.branch_id):
        return FULL
    if team.manager_id == profile.id:
        return FULL

    membership = membership if membership is not None else _membership(profile, team.id)
    if membership is not None:
        return FULL if membership.role == "admin" else READ_ONLY
    if role == ROLE_STAFF and _in_scope(profile, team.branch_id):
        return READ_ONLY
    return DENY


def can_manage_team(profile, team) -> bool:
    return decide_team(profile, team).write


def decide_task(profile, task, team=None) -> Decision:
    role = _role(profile)
    if role is None:
        return DENY
    if role == ROLE_ADMIN:
        return FULL

    team_decision = DENY
    if task.team_id is not None:
        team = team if team is not None else db.session.get(Team, task.team_id)
        if team is not None:
            team_decision = decide_team(profile, team)
            if team_decision.write:
                return FULL
    elif task.assigned_by == profile.id:
        # Team-less tasks belong to whoever assigned them
        return FULL

    if task.assigned_to == profile.id:
        return Decision(read=True, write=True, fields=TASK_ASSIGNEE_FIELDS, projection=PROJECTION_FULL)
    if task.assigned_by == profile.id or team_decision.read:
        return READ_ONLY
    return DENY


def visible_tasks_filter(profile):
    """Tasks the profile is party to, or that belong to teams it can see."""
    role = _role(profile)
    if role is None:
        return false()
    if role == ROLE_ADMIN:
        return true()

    member_team_ids = [m.team_id for m in TeamMember.query.filter_by(profile_id=profile.id).all()]
    clauses = [
        Task.assigned_to == profile.id,
        Task.assigned_by == profile.id,
        Task.team_id.in_(select(Team.id).where(team_visibility_filter(profile, member_team_ids))),
    ]
    return or_(*clauses)


def team_visibility_filter(profile, member_team_ids=None):
    role = _role(profile)
    if role is None:
        return false()
    if role == ROLE_ADMIN:
        return true()
    if member_team_ids is None:
        member_team_ids = [m.team_id for m in TeamMember.query.filter_by(profile_id=profile.id).all()]

    clauses = [Team.manager_id == profile.id]
    if member_team_ids:
        clauses.append(Team.id.in_(member_team_ids))
    if role in (ROLE_MANAGER, ROLE_STAFF):
        clauses.append(Team.branch_id.is_(None))
        if profile.branch_id is not None:
            clauses.append(Team.branch_id == profile.branch_id)
    return or_(*clauses)


def require_read(profile, entity, decide_fn=decide):
    """Return the decision or raise NotFound (no existence leak to outsiders)."""
    from feedbackhub.errors import NotFound

    d = decide_fn(profile, entity)
    if not d.read:
        raise NotFound("Not found")
    return d


def require_write(profile, entity, fields=(), decide_fn=decide):
    from feedbackhub.errors import Forbidden

    d = require_read(profile, entity, decide_fn)
    if not d.write:
        raise Forbidden("You do not have permission to modify this record")
    blocked = sorted(f for f in fields if not d.may_write(f))
    if blocked:
        raise Forbidden(
            "You may only change: " + ", ".join(sorted(d.fields or ())),
            fields={f: "not permitted" for f in blocked},
        )
    return d


__all__ = [
    "Decision",
    "FULL",
    "DENY",
    "PROJECTION_FULL",
    "PROJECTION_REDACTED",
    "WRITE_LIMITED_FIELDS",
    "decide",
    "eligible_assignee",
    "can_read",
    "can_write",
    "branch_scope_filter",
    "visible_feedback_filter",
    "decide_team",
    "can_manage_team",
    "decide_task",
    "visible_tasks_filter",
    "team_visibility_filter",
    "require_read",
    "require_write",
]
