"""
Teams, members, invitations and tasks.

Invitation expiry is lazy: a ``pending`` row whose ``expires_at`` has passed is
expired, and every read path (listing, duplicate check, acceptance) goes
through ``invitation_state`` and persists the transition it observes.
"""
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError as DBIntegrityError

from feedbackhub.errors import Conflict, Forbidden, NotFound, ValidationError
from feedbackhub.extensions import db
from feedbackhub.models import (
    Branch,
    Profile,
    Task,
    Team,
    TeamInvitation,
    TeamMember,
    ROLE_ADMIN,
    ROLE_MANAGER,
)
from feedbackhub.models.team import (
    INVITE_ACCEPTED,
    INVITE_EXPIRED,
    INVITE_PENDING,
    MEMBER_ROLES,
    TASK_PRIORITIES,
    TASK_STATUSES,
)
from feedbackhub.observability import log_event
from feedbackhub.services import access, email as email_svc, tokens
from feedbackhub.utils.helpers import as_utc, safe_int, utcnow
from feedbackhub.utils.validators import clean_choice, clean_str, clean_text, is_valid_email, normalize_email


# ---- Invitations: lazy expiry ----

def invitation_state(inv: TeamInvitation, now: Optional[datetime] = None) -> str:
    if inv.status != INVITE_PENDING:
        return inv.status
    now = as_utc(now) or utcnow()
    if as_utc(inv.expires_at) <= now:
        return INVITE_EXPIRED
    return INVITE_PENDING


def _observe(inv: TeamInvitation, now: Optional[datetime] = None) -> str:
    """Apply invitation_state and persist the transition (caller commits)."""
    state = invitation_state(inv, now)
    if state != inv.status:
        inv.status = state
        log_event("team_invitation.expired", invitation_id=inv.id, team_id=inv.team_id)
    return state


def _accepted_member(inv: TeamInvitation) -> Optional[TeamMember]:
    """The membership an accepted invitation produced, if it still exists."""
    if inv.accepted_member_id is None:
        return None
    return db.session.get(TeamMember, inv.accepted_member_id)


def _invitation_lifetime() -> timedelta:
    return timedelta(days=int(current_app.config.get("INVITATION_VALID_DAYS", 7)))


def _new_token(team_id: int, email: str) -> str:
    return tokens.invitation_token(team_id, email)


# ---- Teams ----

def _get_team_or_404(team_id) -> Team:
    team = db.session.get(Team, safe_int(team_id, -1))
    if team is None:
        raise NotFound("Team not found")
    return team


def get_team(profile, team_id) -> Tuple[Team, access.Decision]:
    team = _get_team_or_404(team_id)
    decision = access.require_read(profile, team, access.decide_team)
    return team, decision


def list_teams(profile) -> List[Team]:
    return (
        Team.query.filter(access.team_visibility_filter(profile))
        .order_by(Team.created_at.desc(), Team.id.desc())
        .all()
    )


def create_team(profile, payload: Dict) -> Team:
    role = profile.effective_role()
    if role not in (ROLE_ADMIN, ROLE_MANAGER):
        raise Forbidden("Only admins and managers can create teams")

    name = clean_str(payload.get("name"))
    errors = {}
    if not name:
        errors["name"] = "Team name is required"
    elif len(name) > 200:
        errors["name"] = "Team name must be 200 characters or fewer"

    branch_id = payload.get("branch_id", profile.branch_id if role == ROLE_MANAGER else None)
    if branch_id is not None:
        branch_id = safe_int(branch_id)
        if branch_id is None or db.session.get(Branch, branch_id) is None:
            errors["branch_id"] = "Unknown branch"
    if errors:
        raise ValidationError("Invalid team", fields=errors)

    if role == ROLE_MANAGER and branch_id != profile.branch_id:
        raise Forbidden("Managers can only create teams in their own branch")

    manager_id = safe_int(payload.get("manager_id"), profile.id)
    if manager_id != profile.id and db.session.get(Profile, manager_id) is None:
        raise ValidationError("Invalid team", fields={"manager_id": "Unknown profile"})

    team = Team(
        name=name,
        description=clean_text(payload.get("description")),
        branch_id=branch_id,
        manager_id=manager_id,
    )
    db.session.add(team)
    db.session.commit()
    log_event("team.created", team_id=team.id, branch_id=branch_id, by_profile=profile.id)
    return team


def update_team(profile, team: Team, payload: Dict) -> Team:
    access.require_write(profile, team, decide_fn=access.decide_team)
    if "branch_id" in payload and profile.effective_role() != ROLE_ADMIN:
        raise Forbidden("Only admins can move a team to another branch")

    errors = {}
    if "name" in payload:
        name = clean_str(payload.get("name"))
        if not name or len(name) > 200:
            errors["name"] = "Team name is required (200 characters max)"
        else:
            team.name = name
    if "description" in payload:
        team.description = clean_text(payload.get("description"))
    if "manager_id" in payload:
        manager_id = safe_int(payload.get("manager_id"))
        if manager_id is None or db.session.get(Profile, manager_id) is None:
            errors["manager_id"] = "Unknown profile"
        else:
            team.manager_id = manager_id
    if "is_active" in payload:
        team.is_active = bool(payload.get("is_active"))
    if "branch_id" in payload:
        branch_id = payload.get("branch_id")
        if branch_id is not None and db.session.get(Branch, safe_int(branch_id, -1)) is None:
            errors["branch_id"] = "Unknown branch"
        else:
            team.branch_id = safe_int(branch_id)
    if errors:
        db.session.rollback()
        raise ValidationError("Invalid team", fields=errors)

    db.session.commit()
    return team


# ---- Members & invitations ----

def list_members(profile, team: Team) -> List[TeamMember]:
    access.require_read(profile, team, access.decide_team)
    return TeamMember.query.filter_by(team_id=team.id).order_by(TeamMember.joined_at.asc()).all()


def _check_member_role(role: Optional[str]) -> str:
    role = clean_choice(role, "member")
    if role not in MEMBER_ROLES:
        raise ValidationError("Invalid role", fields={"role": f"Role must be one of: {', '.join(MEMBER_ROLES)}"})
    return role


def add_member(profile, team: Team, email: str, role: str = "member") -> Dict:
    """
    Add someone to a team by email.
    Existing profile -> TeamMember row now; unknown email -> pending invitation.
    Returns {"member": ..., "invitation": ..., "warnings": [...]}.
    """
    access.require_write(profile, team, decide_fn=access.decide_team)
    email = normalize_email(email)
    if not email or not is_valid_email(email):
        raise ValidationError("Invalid email", fields={"email": "A valid email address is required"})
    role = _check_member_role(role)

    existing = Profile.query.filter(func.lower(Profile.email) == email).first()
    if existing is None:
        invitation, warnings = invite(profile, team, email, role)
        return {"member": None, "invitation": invitation, "warnings": warnings}

    if TeamMember.query.filter_by(team_id=team.id, profile_id=existing.id).first():
        raise Conflict("This person is already a member of the team")

    member = TeamMember(team_id=team.id, profile_id=existing.id, role=role)
    db.session.add(member)
    try:
        db.session.commit()
    except DBIntegrityError:
        db.session.rollback()
        raise Conflict("This person is already a member of the team")
    log_event("team_member.added", team_id=team.id, profile_id=existing.id, by_profile=profile.id)
    return {"member": member, "invitation": None, "warnings": []}


def remove_member(profile, team: Team, member_id) -> None:
    access.require_write(profile, team, decide_fn=access.decide_team)
    member = TeamMember.query.filter_by(id=safe_int(member_id, -1), team_id=team.id).first()
    if member is None:
        raise NotFound("Member not found")
    db.session.delete(member)
    db.session.commit()
    log_event("team_member.removed", team_id=team.id, member_id=member.id, by_profile=profile.id)


def invite(profile, team: Team, email: str, role: str = "member",
           now: Optional[datetime] = None) -> Tuple[TeamInvitation, List[str]]:
    """
    At most one live invitation per (team, email). A pending unexpired one is a
    Conflict; an expired one, or an accepted one whose membership was since
    removed, is reset in place with a fresh token and expiry.
    """
    now = as_utc(now) or utcnow()
    inv = TeamInvitation.query.filter_by(team_id=team.id, email=email).first()
    if inv is not None:
        state = _observe(inv, now)
        if state == INVITE_PENDING:
            db.session.commit()
            raise Conflict("An invitation for this email is already pending")
        if state == INVITE_ACCEPTED and _accepted_member(inv) is not None:
            db.session.commit()
            raise Conflict("This invitation was already accepted")
        inv.status = INVITE_PENDING
        inv.role = role
        inv.invited_by = profile.id
        inv.token = _new_token(team.id, email)
        inv.expires_at = now + _invitation_lifetime()
        inv.accepted_member_id = None
    else:
        inv = TeamInvitation(
            team_id=team.id,
            email=email,
            role=role,
            invited_by=profile.id,
            status=INVITE_PENDING,
            token=_new_token(team.id, email),
            expires_at=now + _invitation_lifetime(),
        )
        db.session.add(inv)

    try:
        db.session.commit()
    except DBIntegrityError:
        db.session.rollback()
        raise Conflict("An invitation for this email is already pending")
    log_event("team_invitation.created", invitation_id=inv.id, team_id=team.id, by_profile=profile.id)

    # Primary write is committed; delivery problems only surface as warnings
    warnings = []
    warning = email_svc.send_team_invitation(inv, team, profile)
    if warning:
        warnings.append(warning)
    return inv, warnings


def list_invitations(profile, team: Team, now: Optional[datetime] = None) -> List[Tuple[TeamInvitation, str]]:
    access.require_read(profile, team, access.decide_team)
    rows = TeamInvitation.query.filter_by(team_id=team.id).order_by(TeamInvitation.created_at.desc()).all()
    result = [(inv, _observe(inv, now)) for inv in rows]
    db.session.commit()
    return result


def revoke_invitation(profile, team: Team, invitation_id) -> None:
    access.require_write(profile, team, decide_fn=access.decide_team)
    inv = TeamInvitation.query.filter_by(id=safe_int(invitation_id, -1), team_id=team.id).first()
    if inv is None:
        raise NotFound("Invitation not found")
    db.session.delete(inv)
    db.session.commit()


def _accept(inv: TeamInvitation, profile: Profile) -> TeamMember:
    """Convert one pending invitation into (at most) one TeamMember."""
    member = TeamMember.query.filter_by(team_id=inv.team_id, profile_id=profile.id).first()
    if member is None:
        member = TeamMember(team_id=inv.team_id, profile_id=profile.id, role=inv.role)
        db.session.add(member)
        db.session.flush()
    inv.status = INVITE_ACCEPTED
    inv.accepted_member_id = member.id
    return member


def accept_pending_invitations(profile: Profile, now: Optional[datetime] = None) -> List[TeamMember]:
    """Signup path: resolve every live invitation addressed to the profile's email."""
    email = normalize_email(profile.email)
    if not email:
        return []
    members = []
    for inv in TeamInvitation.query.filter_by(email=email, status=INVITE_PENDING).all():
        if _observe(inv, now) != INVITE_PENDING:
            continue
        members.append(_accept(inv, profile))
        log_event("team_invitation.accepted", invitation_id=inv.id, team_id=inv.team_id, profile_id=profile.id)
    return members


def accept_invitation_token(profile: Profile, token: str, now: Optional[datetime] = None) -> TeamMember:
    max_age = int(_invitation_lifetime().total_seconds())
    claims = tokens.read_invitation_token(token or "", max_age)
    inv = TeamInvitation.query.filter_by(token=token).first() if claims else None
    if inv is not None and claims[0] != inv.team_id:
        inv = None
    if inv is None:
        raise NotFound("Invitation not found or no longer valid")
    if normalize_email(profile.email) != inv.email:
        raise Forbidden("This invitation was sent to a different email address")

    state = _observe(inv, now)
    if state == INVITE_EXPIRED:
        db.session.commit()
        raise Conflict("This invitation has expired")
    if state == INVITE_ACCEPTED:
        raise Conflict("This invitation was already accepted")

    member = _accept(inv, profile)
    db.session.commit()
    log_event("team_invitation.accepted", invitation_id=inv.id, team_id=inv.team_id, profile_id=profile.id)
    return member


def expire_stale_invitations(now: Optional[datetime] = None) -> int:
    """Optional sweep applying the same predicate as the read paths."""
    count = 0
    for inv in TeamInvitation.query.filter_by(status=INVITE_PENDING).all():
        if _observe(inv, now) == INVITE_EXPIRED:
            count += 1
    db.session.commit()
    return count


# ---- Tasks ----

def _parse_due(value) -> Optional[datetime]:
    if value in (None, ""):
        return None
    try:
        return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        raise ValidationError("Invalid task", fields={"due_date": "Use an ISO-8601 date"})


def _apply_status(task: Task, status: str) -> None:
    if status not in TASK_STATUSES:
        raise ValidationError("Invalid task", fields={"status": f"Status must be one of: {', '.join(TASK_STATUSES)}"})
    task.status = status
    task.completed_at = utcnow() if status == "completed" else None


def _resolve_assignee(value) -> Optional[Profile]:
    if value in (None, ""):
        return None
    assignee = db.session.get(Profile, safe_int(value, -1))
    if assignee is None:
        raise ValidationError("Invalid task", fields={"assigned_to": "Unknown profile"})
    return assignee


def get_task(profile, task_id) -> Tuple[Task, access.Decision]:
    task = db.session.get(Task, safe_int(task_id, -1))
    if task is None:
        raise NotFound("Task not found")
    decision = access.require_read(profile, task, access.decide_task)
    return task, decision


def list_tasks(profile, status: Optional[str] = None, team_id=None) -> List[Task]:
    q = Task.query.filter(access.visible_tasks_filter(profile))
    if status:
        q = q.filter(Task.status == status)
    if team_id is not None:
        q = q.filter(Task.team_id == safe_int(team_id, -1))
    return q.order_by(Task.created_at.desc(), Task.id.desc()).all()


def create_task(profile, payload: Dict) -> Tuple[Task, List[str]]:
    team = None
    team_id = payload.get("team_id")
    if team_id not in (None, ""):
        team = _get_team_or_404(team_id)
        if not access.can_manage_team(profile, team):
            raise Forbidden("Only the team's manager can create tasks for it")
    elif profile.effective_role() not in (ROLE_ADMIN, ROLE_MANAGER):
        raise Forbidden("Only admins and managers can create tasks")

    title = clean_str(payload.get("title"))
    if not title or len(title) > 200:
        raise ValidationError("Invalid task", fields={"title": "Title is required (200 characters max)"})
    priority = clean_choice(payload.get("priority"), "medium")
    if priority not in TASK_PRIORITIES:
        raise ValidationError("Invalid task", fields={"priority": f"Priority must be one of: {', '.join(TASK_PRIORITIES)}"})

    assignee = _resolve_assignee(payload.get("assigned_to"))
    task = Task(
        title=title,
        description=clean_text(payload.get("description")),
        priority=priority,
        team_id=team.id if team else None,
        assigned_to=assignee.id if assignee else None,
        assigned_by=profile.id,
        due_date=_parse_due(payload.get("due_date")),
    )
    _apply_status(task, clean_choice(payload.get("status"), "pending"))
    db.session.add(task)
    db.session.commit()
    log_event("task.created", task_id=task.id, team_id=task.team_id, by_profile=profile.id)

    warnings = []
    if assignee is not None and assignee.id != profile.id:
        warning = email_svc.send_task_assigned(task, assignee, profile)
        if warning:
            warnings.append(warning)
    return task, warnings


_TASK_FIELDS = ("title", "description", "status", "priority", "assigned_to", "due_date")


def update_task(profile, task: Task, payload: Dict) -> Tuple[Task, List[str]]:
    changing = [f for f in _TASK_FIELDS if f in payload]
    access.require_write(profile, task, changing, decide_fn=access.decide_task)

    new_assignee = None
    if "title" in payload:
        title = clean_str(payload.get("title"))
        if not title or len(title) > 200:
            raise ValidationError("Invalid task", fields={"title": "Title is required (200 characters max)"})
        task.title = title
    if "description" in payload:
        task.description = clean_text(payload.get("description"))
    if "priority" in payload:
        priority = clean_choice(payload.get("priority"))
        if priority not in TASK_PRIORITIES:
            raise ValidationError("Invalid task", fields={"priority": f"Priority must be one of: {', '.join(TASK_PRIORITIES)}"})
        task.priority = priority
    if "due_date" in payload:
        task.due_date = _parse_due(payload.get("due_date"))
    if "assigned_to" in payload:
        assignee = _resolve_assignee(payload.get("assigned_to"))
        new_id = assignee.id if assignee else None
        if new_id != task.assigned_to:
            new_assignee = assignee
        task.assigned_to = new_id
    if "status" in payload:
        _apply_status(task, clean_choice(payload.get("status")))

    db.session.commit()

    warnings = []
    if new_assignee is not None and new_assignee.id != profile.id:
        warning = email_svc.send_task_assigned(task, new_assignee, profile)
        if warning:
            warnings.append(warning)
    return task, warnings
