"""
AI insights over recent feedback.

The LLM is optional at runtime: any failure (no key, HTTP error, unparsable
reply) degrades to ``fallback_insights``, computed locally from the same rows.
"""
import json
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx
from flask import current_app

from feedbackhub.errors import ExternalServiceError, ValidationError
from feedbackhub.observability import log_event
from feedbackhub.utils.helpers import as_utc, utcnow
from feedbackhub.utils.validators import clean_choice

TIME_RANGES = {"7d": 7, "30d": 30, "90d": 90}
DEFAULT_TIME_RANGE = "30d"
ANALYSIS_TYPES = ("sentiment", "trends", "recommendations", "overview")

SYSTEM_PROMPT = (
    "You are an expert business analyst specializing in customer feedback analysis. "
    "Always respond with valid JSON only."
)

_PROMPT_ASKS = {
    "sentiment": (
        "Analyze the sentiment and themes in this customer feedback data. Provide insights about customer "
        "satisfaction, common complaints, and positive feedback patterns.",
        "- sentiment: {positive: number, neutral: number, negative: number} (percentages)\n"
        "- keyTopics: array of main topics/themes mentioned\n"
        "- summary: brief overview of customer sentiment\n"
        "- recommendations: array of 3-5 actionable recommendations",
    ),
    "trends": (
        "Analyze trends and patterns in this customer feedback data. Focus on rating distributions, common "
        "issues, and improvement opportunities.",
        "- trends: array of key trends identified\n"
        "- ratingDistribution: {1: count, 2: count, 3: count, 4: count, 5: count}\n"
        "- summary: brief overview of trends\n"
        "- recommendations: array of 3-5 actionable recommendations",
    ),
    "recommendations": (
        "Analyze this customer feedback data and provide strategic recommendations for business improvement.",
        "- recommendations: array of 5-7 detailed actionable recommendations\n"
        "- priorityActions: array of top 3 most important actions\n"
        "- summary: brief overview of the analysis\n"
        "- impactAreas: array of business areas that need attention",
    ),
    "overview": (
        "Provide a comprehensive analysis of this customer feedback data including sentiment, trends, and "
        "recommendations.",
        "- sentiment: {positive: number, neutral: number, negative: number}\n"
        "- trends: array of key trends\n"
        "- recommendations: array of actionable recommendations\n"
        "- summary: comprehensive overview\n"
        "- keyTopics: main themes identified",
    ),
}


@dataclass
class AnalysisRequest:
    analysis_type: str
    time_range: str

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "AnalysisRequest":
        analysis_type = clean_choice(payload.get("type"), "overview")
        time_range = clean_choice(payload.get("timeRange"), DEFAULT_TIME_RANGE)
        errors = {}
        if analysis_type not in ANALYSIS_TYPES:
            errors["type"] = f"Type must be one of: {', '.join(ANALYSIS_TYPES)}"
        if time_range not in TIME_RANGES:
            errors["timeRange"] = f"Time range must be one of: {', '.join(TIME_RANGES)}"
        if errors:
            raise ValidationError("Invalid analysis request", fields=errors)
        return cls(analysis_type=analysis_type, time_range=time_range)

    def since(self, now: Optional[datetime] = None) -> datetime:
        now = as_utc(now) or utcnow()
        return now - timedelta(days=TIME_RANGES[self.time_range])


def compute_stats(rows) -> Dict[str, Any]:
    total = len(rows)
    dist = Counter(r.rating for r in rows)
    return {
        "totalFeedback": total,
        "averageRating": (sum(r.rating for r in rows) / total) if total else 0,
        "ratingDistribution": {str(k): dist.get(k, 0) for k in range(1, 6)},
        "pendingCount": sum(1 for r in rows if r.status == "pending"),
        "resolvedCount": sum(1 for r in rows if r.status == "resolved"),
    }


def empty_insights() -> Dict[str, Any]:
    return {
        "summary": "No feedback data available for the selected time period.",
        "trends": [],
        "recommendations": ["Start collecting feedback to generate insights."],
        "sentiment": {"positive": 0, "neutral": 0, "negative": 0},
        "keyTopics": [],
    }


def fallback_insights(rows, stats: Dict[str, Any]) -> Dict[str, Any]:
    """Rule-based insights used whenever the LLM is unavailable."""
    total = len(rows)
    avg = stats["averageRating"]
    pending = stats["pendingCount"]
    positive = sum(1 for r in rows if r.rating >= 4)
    negative = sum(1 for r in rows if r.rating <= 2)
    neutral = total - positive - negative
    dist = stats["ratingDistribution"]
    # Ties go to the lower rating
    most_common = max(dist, key=lambda k: (dist[k], -int(k)))

    return {
        "summary": (
            f"Analysis of {total} feedback responses. Average rating: {avg:.1f}/5. "
            f"{pending} pending responses need attention."
        ),
        "sentiment": {
            "positive": round(positive / total * 100),
            "neutral": round(neutral / total * 100),
            "negative": round(negative / total * 100),
        },
        "trends": [
            f"{positive} customers gave positive ratings (4-5 stars)",
            f"{negative} customers expressed dissatisfaction (1-2 stars)",
            f"{pending} feedback items are still pending review",
            f"Most common rating: {most_common} stars",
        ],
        "recommendations": [
            f"Address {pending} pending feedback items" if pending > 0 else "Great job keeping up with feedback!",
            "Focus on improving customer satisfaction - average rating is below 3"
            if avg < 3 else "Maintain current service quality",
            f"Investigate and resolve issues mentioned in {negative} negative reviews"
            if negative > 0 else "Keep up the excellent work!",
            "Regularly monitor feedback trends to identify improvement opportunities",
            "Respond promptly to customer feedback to show you value their input",
        ],
        "keyTopics": ["customer satisfaction", "service quality", "feedback management"],
    }


def build_prompt(analysis_type: str, rows) -> str:
    # No customer identity goes to the model
    summary = [
        {
            "rating": r.rating,
            "subject": r.subject,
            "message": (r.message or "")[:200],
            "status": r.status,
            "priority": r.priority,
        }
        for r in rows
    ]
    ask, shape = _PROMPT_ASKS[analysis_type]
    return (
        f"{ask}\n\n"
        f"Feedback data ({len(rows)} responses):\n"
        f"{json.dumps(summary, indent=2)}\n\n"
        f"Please provide a JSON response with:\n{shape}\n\n"
        "Respond ONLY with valid JSON."
    )


class OpenAIChat:
    """Minimal chat-completions client over httpx."""

    def __init__(self, api_key: str, model: str, timeout: float = 30.0,
                 base_url: str = "https://api.openai.com/v1"):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.base_url = base_url

    def complete_json(self, system: str, prompt: str, max_tokens: int = 1000) -> Dict[str, Any]:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    f"{self.base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": self.model,
                        "messages": [
                            {"role": "system", "content": system},
                            {"role": "user", "content": prompt},
                        ],
                        "max_completion_tokens": max_tokens,
                        "response_format": {"type": "json_object"},
                    },
                )
                response.raise_for_status()
                data = response.json()
            content = data["choices"][0]["message"]["content"]
            parsed = json.loads(content)
        except httpx.HTTPError as e:
            raise ExternalServiceError("openai", f"OpenAI request failed: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ExternalServiceError("openai", "OpenAI response was not valid JSON") from e
        if not isinstance(parsed, dict):
            raise ExternalServiceError("openai", "OpenAI response was not a JSON object")
        return parsed


def _client() -> OpenAIChat:
    cfg = current_app.config
    key = cfg.get("OPENAI_API_KEY")
    if not key:
        raise ExternalServiceError("openai", "OPENAI_API_KEY is not configured")
    return OpenAIChat(
        api_key=key,
        model=cfg.get("OPENAI_MODEL", "gpt-4o-mini"),
        timeout=float(cfg.get("EXTERNAL_HTTP_TIMEOUT", 30)),
    )


def generate_insights(req: AnalysisRequest, rows: List) -> Dict[str, Any]:
    """
    Returns {"insights": {..., "stats": {...}}, "source": "ai"|"fallback"|"empty", "warnings": [...]}.
    Never raises for provider problems.
    """
    if not rows:
        return {"insights": {**empty_insights(), "stats": compute_stats(rows)}, "source": "empty", "warnings": []}

    stats = compute_stats(rows)
    warnings = []
    try:
        insights = _client().complete_json(SYSTEM_PROMPT, build_prompt(req.analysis_type, rows))
        source = "ai"
    except ExternalServiceError as e:
        log_event("insights.fallback", level=logging.WARNING, reason=e.message, rows=len(rows))
        insights = fallback_insights(rows, stats)
        source = "fallback"
        warnings.append("AI analysis is temporarily unavailable; showing basic statistics instead.")

    return {"insights": {**insights, "stats": stats}, "source": source, "warnings": warnings}
