import click
from flask.cli import with_appcontext
from sqlalchemy import func

from feedbackhub.errors import AppError
from feedbackhub.extensions import db
from feedbackhub.models import Branch, FeedbackCategory, Profile, ROLE_ADMIN, ROLE_CHOICES
from feedbackhub.services import branches as branch_svc
from feedbackhub.services import identity
from feedbackhub.services.teams import expire_stale_invitations

DEFAULT_CATEGORIES = (
    ("General", "General feedback and suggestions", "MessageSquare", "#6366f1"),
    ("Service Quality", "Feedback about service quality", "Star", "#f59e0b"),
    ("Staff Behavior", "Comments about staff interaction", "Users", "#10b981"),
    ("Product Quality", "Feedback about products", "Package", "#ef4444"),
    ("Facilities", "Comments about facilities and environment", "Building", "#8b5cf6"),
    ("Complaint", "Formal complaints", "AlertTriangle", "#dc2626"),
    ("Suggestion", "Improvement suggestions", "Lightbulb", "#059669"),
)


def _fail(e: AppError):
    detail = "; ".join(f"{k}: {v}" for k, v in e.fields.items())
    raise click.ClickException(f"{e.message} ({detail})" if detail else e.message)


@click.group()
def bootstrap():
    """Bootstrap helpers."""


@bootstrap.command("admin")
@click.option("--email", required=True)
@click.option("--password", required=True)
@click.option("--display-name", default=None)
@click.option("--branch-name", default="Main Branch", show_default=True,
              help="Created when no branch exists yet")
@with_appcontext
def bootstrap_admin(email, password, display_name, branch_name):
    if Branch.query.count() == 0:
        # Operator path: no plan to check against yet
        branch = branch_svc.create_branch(None, {"name": branch_name}, tier=None)
        click.echo(f"Created branch id={branch.id} name={branch.name!r}")

    try:
        account = identity.register_account(email, password, display_name=display_name)
    except AppError as e:
        _fail(e)
    profile = Profile.query.filter_by(account_id=account.id).one()
    profile.role = ROLE_ADMIN
    db.session.commit()
    click.echo(f"Bootstrap complete: account_id={account.id} profile_id={profile.id} email={account.email} role=admin")


@click.group()
def branches():
    """Branch management."""


@branches.command("create")
@click.option("--name", required=True)
@click.option("--location", default=None)
@click.option("--description", default=None)
@with_appcontext
def branches_create(name, location, description):
    try:
        branch = branch_svc.create_branch(
            None, {"name": name, "location": location, "description": description}, tier=None,
        )
    except AppError as e:
        _fail(e)
    click.echo(f"Branch created id={branch.id} name={branch.name!r}")


@click.group()
def profiles():
    """Profile role ops."""


@profiles.command("set-role")
@click.option("--email", required=True)
@click.option("--role", type=click.Choice(ROLE_CHOICES), required=True)
@click.option("--branch-id", type=int, default=None)
@with_appcontext
def profiles_set_role(email, role, branch_id):
    profile = Profile.query.filter(func.lower(Profile.email) == email.strip().lower()).one_or_none()
    if profile is None:
        raise click.ClickException("Profile not found")
    if branch_id is not None:
        if db.session.get(Branch, branch_id) is None:
            raise click.ClickException(f"Branch id {branch_id} not found")
        profile.branch_id = branch_id
    profile.role = role
    db.session.commit()
    click.echo(f"Set {profile.email} role={role} branch_id={profile.branch_id}")


@click.group()
def categories():
    """Feedback categories."""


@categories.command("seed")
@with_appcontext
def categories_seed():
    created = 0
    for order, (name, description, icon, color) in enumerate(DEFAULT_CATEGORIES, start=1):
        if FeedbackCategory.query.filter_by(name=name).first():
            continue
        db.session.add(FeedbackCategory(
            name=name, description=description, icon=icon, color=color, sort_order=order, is_active=True,
        ))
        created += 1
    db.session.commit()
    click.echo(f"Seeded {created} categories ({len(DEFAULT_CATEGORIES) - created} already present)")


@click.group()
def invitations():
    """Team invitation maintenance."""


@invitations.command("expire")
@with_appcontext
def invitations_expire():
    count = expire_stale_invitations()
    click.echo(f"Expired {count} invitations")


def register_cli(app):
    app.cli.add_command(bootstrap)
    app.cli.add_command(branches)
    app.cli.add_command(profiles)
    app.cli.add_command(categories)
    app.cli.add_command(invitations)
