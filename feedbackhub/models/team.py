from sqlalchemy import func, CheckConstraint, UniqueConstraint
from feedbackhub.extensions import db
from feedbackhub.utils.helpers import utcnow, iso

MEMBER_ROLES = ("member", "lead", "admin")

INVITE_PENDING = "pending"
INVITE_ACCEPTED = "accepted"
INVITE_EXPIRED = "expired"

TASK_STATUSES = ("pending", "in_progress", "completed", "cancelled")
TASK_PRIORITIES = ("low", "medium", "high", "urgent")


class Team(db.Model):
    __tablename__ = "teams"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id", ondelete="SET NULL"), nullable=True, index=True)
    manager_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default=db.text("true"))

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "branch_id": self.branch_id,
            "manager_id": self.manager_id,
            "is_active": self.is_active,
        }


class TeamMember(db.Model):
    __tablename__ = "team_members"

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    profile_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False, default="member", server_default="member")
    joined_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("team_id", "profile_id", name="uq_team_members_team_profile"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "profile_id": self.profile_id,
            "role": self.role,
            "joined_at": iso(self.joined_at),
        }


class TeamInvitation(db.Model):
    """Email-keyed invite, resolved into a TeamMember when the email signs up.

    ``status`` on disk can lag behind reality: a pending row past ``expires_at``
    is expired. Read through ``services.teams.invitation_state``.
    """
    __tablename__ = "team_invitations"

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False, index=True)  # stored lowercased
    role = db.Column(db.String(20), nullable=False, default="member", server_default="member")
    invited_by = db.Column(db.Integer, db.ForeignKey("profiles.id"), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=INVITE_PENDING, server_default=INVITE_PENDING)
    token = db.Column(db.String(255), nullable=False, unique=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    accepted_member_id = db.Column(db.Integer, db.ForeignKey("team_members.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("team_id", "email", name="uq_team_invitations_team_email"),
        CheckConstraint("role IN ('member','lead','admin')", name="ck_team_invitations_role_valid"),
        CheckConstraint("status IN ('pending','accepted','expired')", name="ck_team_invitations_status_valid"),
    )

    def to_dict(self, status: str = None) -> dict:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "email": self.email,
            "role": self.role,
            "invited_by": self.invited_by,
            "status": status or self.status,
            "expires_at": iso(self.expires_at),
            "created_at": iso(self.created_at),
        }


class Task(db.Model):
    __tablename__ = "tasks"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="pending", server_default="pending")
    priority = db.Column(db.String(20), nullable=False, default="medium", server_default="medium")
    assigned_to = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True)
    assigned_by = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True)
    team_id = db.Column(db.Integer, db.ForeignKey("teams.id", ondelete="SET NULL"), nullable=True, index=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','in_progress','completed','cancelled')",
            name="ck_tasks_status_valid",
        ),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "assigned_to": self.assigned_to,
            "assigned_by": self.assigned_by,
            "team_id": self.team_id,
            "due_date": iso(self.due_date),
            "completed_at": iso(self.completed_at),
            "created_at": iso(self.created_at),
        }
