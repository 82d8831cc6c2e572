import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

from datetime import timedelta

import pytest
from flask import g

from feedbackhub import create_app
from feedbackhub.extensions import db
from feedbackhub.models import Account, Branch, Feedback, Profile, Subscriber
from feedbackhub.utils.helpers import utcnow

PASSWORD = "Str0ng!Pass"

_TIER_LABELS = {"basic": "Basic", "pro": "Pro"}


@pytest.fixture(scope="session")
def app():
    app = create_app()
    app.config.update(
        TESTING=True,
        MAIL_SUPPRESS_SEND=True,
        APP_BASE_URL="http://example.test",
        WTF_CSRF_ENABLED=False,
        EMAIL_WEBHOOK_SECRET="testsecret",
        STRIPE_SECRET_KEY=None,
        STRIPE_WEBHOOK_SECRET="whsec_test_x",
        STRIPE_PRICE_BASIC_MONTHLY="price_basic_monthly",
        STRIPE_PRICE_PRO_MONTHLY="price_pro_monthly",
        OPENAI_API_KEY=None,
        GOOGLE_TRANSLATE_API_KEY=None,
    )
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture()
def client(app):
    return app.test_client()


def _wipe():
    db.session.rollback()
    for tbl in reversed(db.metadata.sorted_tables):
        db.session.execute(tbl.delete())
    db.session.commit()
    db.session.remove()
    # One app context spans the whole run; per-request caches on g must not survive a test
    for key in ("_login_user", "_resolved_profiles", "_current_tier"):
        g.pop(key, None)


@pytest.fixture(autouse=True)
def _db_clean(app):
    _wipe()
    yield
    _wipe()


def login(client, account):
    with client.session_transaction() as sess:
        sess["_user_id"] = str(account.id)
        sess["_fresh"] = True
    g.pop("_login_user", None)


def logout(client):
    with client.session_transaction() as sess:
        sess.clear()
    g.pop("_login_user", None)


@pytest.fixture()
def make_branch(app):
    def _make(name="Main Branch", is_active=True, manager=None):
        branch = Branch(name=name, is_active=is_active, manager_id=manager.id if manager else None)
        db.session.add(branch)
        db.session.commit()
        return branch
    return _make


@pytest.fixture()
def make_account(app):
    """Account + Profile (+ Subscriber when ``tier`` is given), bypassing the signup hook."""
    def _make(email, role="user", branch=None, tier=None, display_name=None):
        account = Account(email=email.lower(), is_active=True)
        account.set_password(PASSWORD)
        db.session.add(account)
        db.session.flush()
        db.session.add(Profile(
            account_id=account.id,
            email=account.email,
            display_name=display_name or email.split("@")[0],
            role=role,
            branch_id=branch.id if branch else None,
        ))
        if tier == "trial":
            db.session.add(Subscriber(
                account_id=account.id, email=account.email, subscribed=False,
                subscription_tier="Trial", trial_end=utcnow() + timedelta(days=14),
            ))
        elif tier in _TIER_LABELS:
            db.session.add(Subscriber(
                account_id=account.id, email=account.email, subscribed=True,
                subscription_tier=_TIER_LABELS[tier], subscription_end=utcnow() + timedelta(days=30),
                synced_at=utcnow(),
            ))
        db.session.commit()
        return account
    return _make


@pytest.fixture()
def make_feedback(app):
    def _make(branch=None, rating=4, status="pending", assigned_to=None, customer_name="Jane Doe",
              customer_email="jane@example.com", customer_phone="555-0100", subject="Great visit",
              message="Friendly staff and quick service", created_at=None):
        row = Feedback(
            branch_id=branch.id if branch else None,
            rating=rating,
            subject=subject,
            message=message,
            status=status,
            priority="medium",
            is_anonymous=not customer_name,
            assigned_to=assigned_to,
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
        )
        if created_at is not None:
            row.created_at = created_at
        db.session.add(row)
        db.session.commit()
        return row
    return _make


def profile_of(account):
    return Profile.query.filter_by(account_id=account.id).one()
