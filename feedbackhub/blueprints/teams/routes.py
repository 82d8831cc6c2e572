from flask import jsonify, request

from feedbackhub.services import teams as team_svc
from feedbackhub.services.identity import current_profile
from feedbackhub.services.policy import login_required
from . import bp


def _task_body(task, warnings=None):
    body = task.to_dict()
    if warnings is not None:
        body["warnings"] = warnings
    return body


# ---- Teams ----

@bp.get("")
@login_required
def list_teams():
    rows = team_svc.list_teams(current_profile())
    return jsonify({"items": [t.to_dict() for t in rows]})


@bp.post("")
@login_required
def create_team():
    data = request.get_json(silent=True) or {}
    team = team_svc.create_team(current_profile(), data)
    return jsonify(team.to_dict()), 201


@bp.get("/<int:team_id>")
@login_required
def get_team(team_id: int):
    team, decision = team_svc.get_team(current_profile(), team_id)
    return jsonify({**team.to_dict(), "can_manage": decision.write})


@bp.patch("/<int:team_id>")
@login_required
def update_team(team_id: int):
    profile = current_profile()
    team, _ = team_svc.get_team(profile, team_id)
    data = request.get_json(silent=True) or {}
    return jsonify(team_svc.update_team(profile, team, data).to_dict())


# ---- Members ----

@bp.get("/<int:team_id>/members")
@login_required
def list_members(team_id: int):
    profile = current_profile()
    team, _ = team_svc.get_team(profile, team_id)
    return jsonify({"items": [m.to_dict() for m in team_svc.list_members(profile, team)]})


@bp.post("/<int:team_id>/members")
@login_required
def add_member(team_id: int):
    profile = current_profile()
    team, _ = team_svc.get_team(profile, team_id)
    data = request.get_json(silent=True) or {}
    result = team_svc.add_member(profile, team, data.get("email"), data.get("role") or "member")
    body = {
        "member": result["member"].to_dict() if result["member"] else None,
        "invitation": result["invitation"].to_dict() if result["invitation"] else None,
        "warnings": result["warnings"],
    }
    return jsonify(body), 201


@bp.delete("/<int:team_id>/members/<int:member_id>")
@login_required
def remove_member(team_id: int, member_id: int):
    profile = current_profile()
    team, _ = team_svc.get_team(profile, team_id)
    team_svc.remove_member(profile, team, member_id)
    return "", 204


# ---- Invitations ----

@bp.get("/<int:team_id>/invitations")
@login_required
def list_invitations(team_id: int):
    profile = current_profile()
    team, _ = team_svc.get_team(profile, team_id)
    rows = team_svc.list_invitations(profile, team)
    return jsonify({"items": [inv.to_dict(status=state) for inv, state in rows]})


@bp.delete("/<int:team_id>/invitations/<int:invitation_id>")
@login_required
def revoke_invitation(team_id: int, invitation_id: int):
    profile = current_profile()
    team, _ = team_svc.get_team(profile, team_id)
    team_svc.revoke_invitation(profile, team, invitation_id)
    return "", 204


@bp.post("/invitations/accept")
@login_required
def accept_invitation():
    data = request.get_json(silent=True) or {}
    member = team_svc.accept_invitation_token(current_profile(), data.get("token"))
    return jsonify(member.to_dict())


# ---- Tasks ----

@bp.get("/tasks")
@login_required
def list_tasks():
    rows = team_svc.list_tasks(
        current_profile(),
        status=request.args.get("status") or None,
        team_id=request.args.get("team_id") or None,
    )
    return jsonify({"items": [t.to_dict() for t in rows]})


@bp.post("/tasks")
@login_required
def create_task():
    data = request.get_json(silent=True) or {}
    task, warnings = team_svc.create_task(current_profile(), data)
    return jsonify(_task_body(task, warnings)), 201


@bp.get("/tasks/<int:task_id>")
@login_required
def get_task(task_id: int):
    task, decision = team_svc.get_task(current_profile(), task_id)
    body = _task_body(task)
    body["writable_fields"] = None if decision.fields is None else sorted(decision.fields)
    body["can_write"] = decision.write
    return jsonify(body)


@bp.patch("/tasks/<int:task_id>")
@login_required
def update_task(task_id: int):
    profile = current_profile()
    task, _ = team_svc.get_task(profile, task_id)
    data = request.get_json(silent=True) or {}
    task, warnings = team_svc.update_task(profile, task, data)
    return jsonify(_task_body(task, warnings))
