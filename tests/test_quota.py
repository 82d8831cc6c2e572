from datetime import datetime, timezone

import pytest

from feedbackhub.errors import QuotaExceeded
from feedbackhub.models import AnalyticsEvent, UsageCounter
from feedbackhub.models.analytics_event import EVENT_AI_ANALYSIS
from feedbackhub.services import quota
from conftest import login


def test_consume_until_limit_then_raise(make_account):
    acct = make_account("q@example.com")
    for expected in range(1, 4):
        assert quota.consume(acct.id, "ai.analysis", 3) == expected
    with pytest.raises(QuotaExceeded) as exc:
        quota.consume(acct.id, "ai.analysis", 3)
    assert exc.value.status == 402
    assert exc.value.used == 3 and exc.value.limit == 3
    assert exc.value.to_dict()["upgrade_required"] is True
    # A refused call leaves no audit row
    assert AnalyticsEvent.query.filter_by(event_type=EVENT_AI_ANALYSIS).count() == 3


def test_zero_limit_refuses_first_unit(make_account):
    acct = make_account("z@example.com")
    with pytest.raises(QuotaExceeded):
        quota.consume(acct.id, "ai.analysis", 0)


def test_unlimited_still_records_usage(make_account):
    acct = make_account("u@example.com")
    for _ in range(25):
        quota.consume(acct.id, "ai.analysis", None)
    assert quota.used_this_period(acct.id, "ai.analysis") == 25


def test_counters_are_per_month(make_account):
    acct = make_account("m@example.com")
    may = datetime(2025, 5, 31, 23, 0, tzinfo=timezone.utc)
    june = datetime(2025, 6, 1, 0, 30, tzinfo=timezone.utc)
    quota.consume(acct.id, "ai.analysis", 1, now=may)
    assert quota.consume(acct.id, "ai.analysis", 1, now=june) == 1
    periods = sorted(r.period for r in UsageCounter.query.filter_by(account_id=acct.id))
    assert periods == ["2025-05", "2025-06"]


def test_racing_consumers_cannot_both_take_last_unit(make_account, monkeypatch):
    acct = make_account("race@example.com")
    quota.consume(acct.id, "ai.analysis", 2)
    real_counter = quota._counter
    seen = {}

    def _interleaved(account_id, feature, period):
        row = real_counter(account_id, feature, period)
        if not seen:
            seen["used"] = row.used
            # Another request takes the last unit between the read and the UPDATE
            monkeypatch.setattr(quota, "_counter", real_counter)
            seen["other"] = quota.consume(account_id, feature, 2)
        return row

    monkeypatch.setattr(quota, "_counter", _interleaved)
    with pytest.raises(QuotaExceeded) as exc:
        quota.consume(acct.id, "ai.analysis", 2)

    assert seen == {"used": 1, "other": 2}
    assert exc.value.used == 2
    assert quota.used_this_period(acct.id, "ai.analysis") == 2
    assert AnalyticsEvent.query.filter_by(event_type=EVENT_AI_ANALYSIS).count() == 2


def test_eleventh_basic_analysis_gets_402(client, make_account, make_branch, make_feedback):
    branch = make_branch()
    acct = make_account("basic@example.com", role="manager", branch=branch, tier="basic")
    make_feedback(branch=branch, rating=2)
    login(client, acct)

    for n in range(1, 11):
        r = client.post("/insights/analyze", json={"type": "overview", "timeRange": "30d"})
        assert r.status_code == 200, r.get_json()
        assert r.get_json()["usage"] == {"used": n, "limit": 10}

    r = client.post("/insights/analyze", json={"type": "overview", "timeRange": "30d"})
    assert r.status_code == 402
    body = r.get_json()
    assert body["error"] == "quota_exceeded"
    assert body["used"] == 10 and body["limit"] == 10


def test_analysis_without_rows_does_not_consume(client, make_account):
    acct = make_account("empty@example.com", role="manager", tier="basic")
    login(client, acct)
    r = client.post("/insights/analyze", json={"type": "sentiment", "timeRange": "7d"})
    assert r.status_code == 200
    body = r.get_json()
    assert body["source"] == "empty"
    assert body["usage"]["used"] == 0


def test_trial_cannot_analyze(client, make_account):
    acct = make_account("trial@example.com", tier="trial")
    login(client, acct)
    r = client.post("/insights/analyze", json={})
    assert r.status_code == 403
    assert r.get_json()["error"] == "entitlement_required"
