from datetime import datetime, timedelta, timezone

from feedbackhub.billing.entitlements import (
    FEATURE_AI_ANALYSIS,
    FEATURE_COLLECT,
    FEATURE_EXPORTS,
    FEATURE_TRANSLATION,
    ai_monthly_quota,
    branch_limit,
    classify_tier,
    has_feature,
    price_for_plan,
    tier_for_price,
)
from feedbackhub.models import Subscriber
from conftest import login

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


def _sub(**kw):
    return Subscriber(email="x@example.com", **kw)


def test_classify_tier_paths():
    assert classify_tier(None, NOW) == "none"
    assert classify_tier(_sub(subscribed=False), NOW) == "none"
    assert classify_tier(_sub(subscribed=False, trial_end=NOW + timedelta(days=1)), NOW) == "trial"
    assert classify_tier(_sub(subscribed=False, trial_end=NOW - timedelta(days=1)), NOW) == "none"
    assert classify_tier(_sub(subscribed=True, subscription_tier="Basic"), NOW) == "basic"
    assert classify_tier(_sub(subscribed=True, subscription_tier="Pro",
                              subscription_end=NOW + timedelta(days=3)), NOW) == "pro"


def test_lapsed_paid_subscription_drops_to_trial_or_none():
    lapsed = _sub(subscribed=True, subscription_tier="Pro", subscription_end=NOW - timedelta(seconds=1))
    assert classify_tier(lapsed, NOW) == "none"
    lapsed.trial_end = NOW + timedelta(days=2)
    assert classify_tier(lapsed, NOW) == "trial"


def test_unknown_tier_label_is_not_paid():
    assert classify_tier(_sub(subscribed=True, subscription_tier="Enterprise"), NOW) == "none"


def test_feature_table():
    assert not has_feature("none", FEATURE_COLLECT)
    assert has_feature("trial", FEATURE_TRANSLATION) and not has_feature("trial", FEATURE_AI_ANALYSIS)
    assert has_feature("basic", FEATURE_AI_ANALYSIS) and not has_feature("basic", FEATURE_TRANSLATION)
    assert not has_feature("basic", FEATURE_EXPORTS)
    assert all(has_feature("pro", f) for f in (FEATURE_COLLECT, FEATURE_AI_ANALYSIS, FEATURE_EXPORTS, FEATURE_TRANSLATION))
    assert not has_feature("bogus", FEATURE_COLLECT)


def test_limits(app):
    assert branch_limit("none") == 0
    assert branch_limit("trial") == 1
    assert branch_limit("basic") is None and branch_limit("pro") is None
    assert ai_monthly_quota("trial") == 0
    assert ai_monthly_quota("basic") == 10
    assert ai_monthly_quota("pro") is None


def test_price_mapping(app):
    assert tier_for_price("price_pro_monthly") == "Pro"
    assert tier_for_price("price_basic_monthly") == "Basic"
    assert tier_for_price("price_other") is None
    assert price_for_plan("BASIC") == "price_basic_monthly"
    assert price_for_plan("enterprise") is None


def test_export_requires_pro(client, make_account):
    basic = make_account("basic@example.com", role="admin", tier="basic")
    login(client, basic)
    r = client.get("/feedback/export.csv")
    assert r.status_code == 403
    body = r.get_json()
    assert body["error"] == "entitlement_required"
    assert body["feature"] == FEATURE_EXPORTS
    assert body["tier"] == "basic"


def test_export_for_pro_is_csv(client, make_account, make_branch, make_feedback):
    branch = make_branch()
    pro = make_account("pro@example.com", role="admin", branch=branch, tier="pro")
    make_feedback(branch=branch)
    login(client, pro)
    r = client.get("/feedback/export.csv")
    assert r.status_code == 200
    assert r.headers["Content-Type"].startswith("text/csv")
    lines = r.get_data(as_text=True).strip().splitlines()
    assert lines[0].startswith("id,created_at,branch_id")
    assert len(lines) == 2
    assert "jane@example.com" in lines[1]


def test_translation_blocked_for_basic_allowed_for_trial(client, make_account):
    basic = make_account("b@example.com", tier="basic")
    login(client, basic)
    r = client.post("/insights/translate", json={"text": "Hola", "targetLanguage": "en"})
    assert r.status_code == 403

    trial = make_account("t@example.com", tier="trial")
    login(client, trial)
    r = client.post("/insights/translate", json={"text": "Hola", "targetLanguage": "en"})
    assert r.status_code == 200


def test_no_subscriber_means_no_collect(client, make_account, make_branch):
    branch = make_branch()
    admin = make_account("lapsed@example.com", role="admin", branch=branch)
    login(client, admin)
    r = client.post("/qr-codes", json={"branch_id": branch.id, "qr_code_url": "data:image/png;base64,AAA"})
    assert r.status_code == 403
    assert r.get_json()["tier"] == "none"


def test_subscription_endpoint_reports_features_and_limits(client, make_account):
    acct = make_account("s@example.com", tier="basic")
    login(client, acct)
    r = client.get("/billing/subscription")
    assert r.status_code == 200
    body = r.get_json()
    assert body["tier"] == "basic"
    assert FEATURE_AI_ANALYSIS in body["features"]
    assert body["limits"] == {"branches": None, "ai_analysis_per_month": 10}
    assert body["warnings"] == []
