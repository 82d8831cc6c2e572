import json
import time
from datetime import timedelta
from typing import Optional, Dict, Any
from urllib.parse import urljoin

from flask import current_app, render_template
from flask_mail import Message
from smtplib import SMTPException

from feedbackhub.extensions import db, mail
from feedbackhub.models import EmailLog
from feedbackhub.utils.helpers import utcnow

# Suppression lookback window
SUPPRESSION_WINDOW_DAYS = 90


def is_suppressed(to_email: str) -> bool:
    """
    Return True if the address should be suppressed due to a recent bounce/complaint.
    """
    cutoff = utcnow() - timedelta(days=SUPPRESSION_WINDOW_DAYS)
    q = EmailLog.query.filter(
        EmailLog.to_email == to_email.lower(),
        EmailLog.created_at >= cutoff,
        EmailLog.status.in_(("bounced", "complaint")),
    )
    return db.session.query(q.exists()).scalar()


def absolute_url(path: str) -> str:
    base = current_app.config["APP_BASE_URL"].rstrip("/") + "/"
    return urljoin(base, path.lstrip("/"))


def send_email(to_email: str, subject: str, template: str, context: Optional[Dict[str, Any]] = None,
               account_id: Optional[int] = None) -> EmailLog:
    """
    template: basename under templates/email/ without extension (e.g. 'team_invitation').
    Renders both HTML and plaintext and returns the EmailLog row; its status is
    'sent', 'failed' or 'suppressed'. Never raises for delivery problems.
    """
    to_email = to_email.lower()
    context = dict(context or {})
    context.setdefault("product_name", current_app.config.get("PRODUCT_NAME", "Feedback Hub"))

    if is_suppressed(to_email):
        elog = EmailLog(
            account_id=account_id,
            to_email=to_email,
            template=template,
            subject=subject,
            status="suppressed",
            meta={"reason": "recent bounce/complaint"},
        )
        db.session.add(elog)
        db.session.commit()
        current_app.logger.info(json.dumps({
            "event": "mail_send",
            "template": template,
            "to": to_email,
            "outcome": "suppressed",
        }))
        return elog

    msg = Message(recipients=[to_email], subject=subject)
    msg.body = render_template(f"email/{template}.txt", **context)
    msg.html = render_template(f"email/{template}.html", **context)

    elog = EmailLog(
        account_id=account_id,
        to_email=to_email,
        template=template,
        subject=subject,
        status="queued",
        meta={},
    )
    db.session.add(elog)
    db.session.commit()

    start = time.perf_counter()
    try:
        mail.send(msg)  # Flask-Mail returns None; provider id capture varies by backend
    except (SMTPException, OSError) as ex:
        latency_ms = int((time.perf_counter() - start) * 1000)
        elog.status = "failed"
        elog.meta = {"error": str(ex)}
        db.session.commit()
        current_app.logger.warning(json.dumps({
            "event": "mail_send",
            "template": template,
            "to": to_email,
            "subject": subject,
            "outcome": "smtp_error",
            "latency_ms": latency_ms,
            "smtp_error": str(ex),
        }))
        return elog

    latency_ms = int((time.perf_counter() - start) * 1000)
    elog.status = "sent"
    db.session.commit()
    current_app.logger.info(json.dumps({
        "event": "mail_send",
        "template": template,
        "to": to_email,
        "subject": subject,
        "outcome": "sent",
        "latency_ms": latency_ms,
    }))
    return elog


def _warning_for(elog: EmailLog, what: str) -> Optional[str]:
    if elog.status == "sent":
        return None
    return f"{what} email to {elog.to_email} was not sent ({elog.status})"


def send_team_invitation(invitation, team, inviter) -> Optional[str]:
    """Returns a warning string when the notice could not be delivered."""
    url = absolute_url(f"teams/invitations/accept?token={invitation.token}")
    ctx = {
        "team_name": team.name,
        "inviter_name": getattr(inviter, "display_name", None) or getattr(inviter, "email", None) or "A teammate",
        "role": invitation.role,
        "action_url": url,
        "signup_url": absolute_url("auth/register"),
        "expires_at": invitation.expires_at,
    }
    elog = send_email(
        to_email=invitation.email,
        subject=f"You're invited to join {team.name}",
        template="team_invitation",
        context=ctx,
    )
    return _warning_for(elog, "Invitation")


def send_task_assigned(task, assignee, assigner) -> Optional[str]:
    if not assignee or not assignee.email:
        return None
    ctx = {
        "assignee_name": assignee.display_name or assignee.email,
        "assigner_name": (assigner.display_name or assigner.email) if assigner else None,
        "task_title": task.title,
        "task_priority": task.priority,
        "due_date": task.due_date,
        "action_url": absolute_url(f"tasks/{task.id}"),
    }
    elog = send_email(
        to_email=assignee.email,
        subject=f"New task assigned: {task.title}",
        template="task_assigned",
        context=ctx,
        account_id=assignee.account_id,
    )
    return _warning_for(elog, "Task assignment")
