from flask import jsonify, request
from flask_login import current_user

from feedbackhub.billing.entitlements import FEATURE_AI_ANALYSIS, FEATURE_TRANSLATION, ai_monthly_quota
from feedbackhub.extensions import limiter
from feedbackhub.security.entitlements import current_tier, require_feature
from feedbackhub.services import analysis, quota, translation
from feedbackhub.services.feedback import recent_for_analysis
from feedbackhub.services.identity import current_profile
from feedbackhub.services.policy import login_required
from feedbackhub.utils.helpers import month_key
from . import bp


@bp.post("/analyze")
@limiter.limit("10 per minute")
@login_required
@require_feature(FEATURE_AI_ANALYSIS)
def analyze():
    profile = current_profile()
    tier, _, warnings = current_tier()
    req = analysis.AnalysisRequest.from_payload(request.get_json(silent=True) or {})
    rows = recent_for_analysis(profile, req.since())

    limit = ai_monthly_quota(tier)
    used = quota.used_this_period(current_user.id, FEATURE_AI_ANALYSIS)
    if rows:
        # Taken before the provider call; a fallback answer still counts
        used = quota.consume(
            current_user.id,
            FEATURE_AI_ANALYSIS,
            limit,
            event_data={"type": req.analysis_type, "timeRange": req.time_range, "rows": len(rows)},
        )

    result = analysis.generate_insights(req, rows)
    return jsonify({
        "success": True,
        "insights": result["insights"],
        "source": result["source"],
        "usage": {"used": used, "limit": limit},
        "warnings": warnings + result["warnings"],
    })


@bp.post("/translate")
@limiter.limit("60 per minute")
@login_required
@require_feature(FEATURE_TRANSLATION)
def translate():
    data = request.get_json(silent=True) or {}
    result = translation.translate(
        data.get("text"),
        data.get("targetLanguage"),
        data.get("sourceLanguage") or "auto",
    )
    return jsonify(result)


@bp.get("/usage")
@login_required
def usage():
    tier, _, warnings = current_tier()
    return jsonify({
        "tier": tier,
        "feature": FEATURE_AI_ANALYSIS,
        "period": month_key(),
        "used": quota.used_this_period(current_user.id, FEATURE_AI_ANALYSIS),
        "limit": ai_monthly_quota(tier),
        "warnings": warnings,
    })
