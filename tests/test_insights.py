import json
from datetime import timedelta

import httpx
import pytest

from feedbackhub.errors import ValidationError
from feedbackhub.models import AnalyticsEvent, Feedback
from feedbackhub.services import analysis, translation
from feedbackhub.utils.helpers import utcnow
from conftest import login


def _rows(*ratings, status="pending"):
    return [Feedback(rating=r, subject=f"s{i}", message="m", status=status, priority="medium")
            for i, r in enumerate(ratings)]


@pytest.fixture()
def mock_http(monkeypatch):
    """Route every httpx.Client through a MockTransport driven by ``handler``."""
    calls = []
    state = {"handler": None}
    real_client = httpx.Client

    def _handler(request):
        calls.append(request)
        return state["handler"](request)

    def _client(**kw):
        return real_client(transport=httpx.MockTransport(_handler), **kw)

    monkeypatch.setattr(httpx, "Client", _client)

    def install(handler):
        state["handler"] = handler
        return calls
    return install


def test_request_defaults_and_validation():
    req = analysis.AnalysisRequest.from_payload({})
    assert (req.analysis_type, req.time_range) == ("overview", "30d")
    with pytest.raises(ValidationError) as exc:
        analysis.AnalysisRequest.from_payload({"type": "poetry", "timeRange": "1y"})
    assert set(exc.value.fields) == {"type", "timeRange"}
    with pytest.raises(ValidationError) as exc:
        analysis.AnalysisRequest.from_payload({"type": 5, "timeRange": ["30d"]})
    assert set(exc.value.fields) == {"type", "timeRange"}


def test_stats_and_fallback_text():
    rows = _rows(5, 4, 2, 1, 3)
    rows[0].status = "resolved"
    stats = analysis.compute_stats(rows)
    assert stats["totalFeedback"] == 5
    assert stats["averageRating"] == 3
    assert stats["ratingDistribution"] == {"1": 1, "2": 1, "3": 1, "4": 1, "5": 1}
    assert stats["pendingCount"] == 4 and stats["resolvedCount"] == 1

    out = analysis.fallback_insights(rows, stats)
    assert out["summary"] == "Analysis of 5 feedback responses. Average rating: 3.0/5. 4 pending responses need attention."
    assert out["sentiment"] == {"positive": 40, "neutral": 20, "negative": 40}
    assert out["trends"][3] == "Most common rating: 1 stars"
    assert out["recommendations"][0] == "Address 4 pending feedback items"
    assert out["recommendations"][1] == "Maintain current service quality"


def test_fallback_for_happy_customers():
    rows = _rows(5, 5, 4, status="resolved")
    out = analysis.fallback_insights(rows, analysis.compute_stats(rows))
    assert out["recommendations"][:3] == [
        "Great job keeping up with feedback!",
        "Maintain current service quality",
        "Keep up the excellent work!",
    ]
    assert out["trends"][3] == "Most common rating: 5 stars"


def test_no_key_degrades_to_fallback_with_warning(app):
    result = analysis.generate_insights(analysis.AnalysisRequest("overview", "30d"), _rows(1, 2))
    assert result["source"] == "fallback"
    assert result["warnings"] == ["AI analysis is temporarily unavailable; showing basic statistics instead."]
    assert result["insights"]["stats"]["totalFeedback"] == 2
    assert "Focus on improving customer satisfaction" in result["insights"]["recommendations"][1]


def test_empty_rows_short_circuit(app):
    result = analysis.generate_insights(analysis.AnalysisRequest("trends", "7d"), [])
    assert result["source"] == "empty"
    assert result["insights"]["summary"] == "No feedback data available for the selected time period."


def test_ai_path_sends_no_customer_pii(app, monkeypatch, mock_http):
    monkeypatch.setitem(app.config, "OPENAI_API_KEY", "sk-test")
    reply = {"summary": "Mostly positive", "sentiment": {"positive": 80, "neutral": 10, "negative": 10}}
    calls = mock_http(lambda req: httpx.Response(200, json={
        "choices": [{"message": {"content": json.dumps(reply)}}],
    }))

    rows = _rows(5, 4)
    rows[0].customer_email = "secret@example.com"
    rows[0].customer_name = "Secret Person"
    result = analysis.generate_insights(analysis.AnalysisRequest("sentiment", "30d"), rows)

    assert result["source"] == "ai"
    assert result["warnings"] == []
    assert result["insights"]["summary"] == "Mostly positive"
    assert result["insights"]["stats"]["totalFeedback"] == 2
    sent = calls[0].content.decode("utf-8")
    assert "secret@example.com" not in sent and "Secret Person" not in sent
    assert calls[0].headers["Authorization"] == "Bearer sk-test"
    assert calls[0].url.path.endswith("/chat/completions")


@pytest.mark.parametrize("response", [
    httpx.Response(500, json={"error": "boom"}),
    httpx.Response(200, json={"choices": []}),
    httpx.Response(200, json={"choices": [{"message": {"content": "not json"}}]}),
])
def test_provider_failures_fall_back(app, monkeypatch, mock_http, response):
    monkeypatch.setitem(app.config, "OPENAI_API_KEY", "sk-test")
    mock_http(lambda req: response)
    result = analysis.generate_insights(analysis.AnalysisRequest("overview", "30d"), _rows(3))
    assert result["source"] == "fallback"
    assert len(result["warnings"]) == 1


def test_analyze_endpoint_scopes_rows_and_audits(client, make_account, make_branch, make_feedback):
    mine = make_branch("Mine")
    theirs = make_branch("Theirs")
    acct = make_account("analyst@example.com", role="manager", branch=mine, tier="pro")
    make_feedback(branch=mine, rating=5)
    make_feedback(branch=theirs, rating=1)
    make_feedback(branch=mine, rating=1, created_at=utcnow() - timedelta(days=40))
    login(client, acct)

    r = client.post("/insights/analyze", json={"type": "overview", "timeRange": "30d"})
    assert r.status_code == 200
    body = r.get_json()
    assert body["insights"]["stats"]["totalFeedback"] == 1
    assert body["source"] == "fallback"
    assert body["usage"] == {"used": 1, "limit": None}
    event = AnalyticsEvent.query.filter_by(account_id=acct.id).one()
    assert event.event_data["type"] == "overview" and event.event_data["rows"] == 1


def test_translation_without_key_returns_original(app):
    out = translation.translate("Hola mundo", "en")
    assert out["translatedText"] == "Hola mundo"
    assert out["translated"] is False
    assert out["warnings"] == ["Translation is temporarily unavailable; showing the original text."]


def test_translation_validation(app):
    with pytest.raises(ValidationError) as exc:
        translation.translate("", "english!")
    assert set(exc.value.fields) == {"text", "targetLanguage"}
    with pytest.raises(ValidationError):
        translation.translate("x" * 5001, "en")


def test_translation_success(app, monkeypatch, mock_http):
    monkeypatch.setitem(app.config, "GOOGLE_TRANSLATE_API_KEY", "g-key")
    calls = mock_http(lambda req: httpx.Response(200, json={
        "data": {"translations": [{"translatedText": "Hello world", "detectedSourceLanguage": "es"}]},
    }))
    out = translation.translate("Hola mundo", "en")
    assert out == {"translatedText": "Hello world", "detectedSourceLanguage": "es", "translated": True, "warnings": []}
    assert calls[0].url.params["key"] == "g-key"
    assert json.loads(calls[0].content)["target"] == "en"


def test_translate_endpoint_degrades_on_provider_error(client, make_account, monkeypatch, app, mock_http):
    monkeypatch.setitem(app.config, "GOOGLE_TRANSLATE_API_KEY", "g-key")
    mock_http(lambda req: httpx.Response(503))
    acct = make_account("pro@example.com", tier="pro")
    login(client, acct)
    r = client.post("/insights/translate", json={"text": "Bonjour", "targetLanguage": "en", "sourceLanguage": "fr"})
    assert r.status_code == 200
    body = r.get_json()
    assert body["translatedText"] == "Bonjour"
    assert body["detectedSourceLanguage"] == "fr"
    assert body["translated"] is False
