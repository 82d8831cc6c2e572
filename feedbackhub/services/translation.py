import logging
import re
from typing import Any, Dict, Optional

import httpx
from flask import current_app

from feedbackhub.errors import ExternalServiceError, ValidationError
from feedbackhub.observability import log_event

GOOGLE_TRANSLATE_URL = "https://translation.googleapis.com/language/translate/v2"
MAX_TEXT_LENGTH = 5000
_LANG_RE = re.compile(r"^[A-Za-z]{2,3}(-[A-Za-z0-9]{2,4})?$")


def _validate(text: Any, target: Any, source: Any):
    errors = {}
    text = text if isinstance(text, str) else ""
    if not text.strip():
        errors["text"] = "Text is required"
    elif len(text) > MAX_TEXT_LENGTH:
        errors["text"] = f"Text must be {MAX_TEXT_LENGTH} characters or fewer"
    target = (target or "").strip() if isinstance(target, str) else ""
    if not _LANG_RE.match(target):
        errors["targetLanguage"] = "A language code such as 'en' or 'zh-CN' is required"
    source = (source or "auto").strip() if isinstance(source, str) else "auto"
    if source != "auto" and not _LANG_RE.match(source):
        errors["sourceLanguage"] = "Use a language code or 'auto'"
    if errors:
        raise ValidationError("Invalid translation request", fields=errors)
    return text, target, source


def _google_translate(text: str, target: str, source: str) -> Dict[str, Optional[str]]:
    cfg = current_app.config
    key = cfg.get("GOOGLE_TRANSLATE_API_KEY")
    if not key:
        raise ExternalServiceError("google_translate", "GOOGLE_TRANSLATE_API_KEY is not configured")

    body = {"q": text, "target": target, "format": "text"}
    if source != "auto":
        body["source"] = source
    try:
        with httpx.Client(timeout=float(cfg.get("EXTERNAL_HTTP_TIMEOUT", 30))) as client:
            response = client.post(GOOGLE_TRANSLATE_URL, params={"key": key}, json=body)
            response.raise_for_status()
            data = response.json()
        first = data["data"]["translations"][0]
        return {
            "translatedText": first["translatedText"],
            "detectedSourceLanguage": first.get("detectedSourceLanguage") or (None if source == "auto" else source),
        }
    except httpx.HTTPError as e:
        raise ExternalServiceError("google_translate", f"Translation request failed: {e}") from e
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise ExternalServiceError("google_translate", "Unexpected translation response") from e


def translate(text: Any, target_language: Any, source_language: Any = "auto") -> Dict[str, Any]:
    """
    Translate ``text``. Provider failures are a no-op: the original text comes
    back with ``translated: False`` and a warning, never an error.
    """
    text, target, source = _validate(text, target_language, source_language)
    try:
        result = _google_translate(text, target, source)
    except ExternalServiceError as e:
        log_event("translation.fallback", level=logging.WARNING, reason=e.message, target=target)
        return {
            "translatedText": text,
            "detectedSourceLanguage": None if source == "auto" else source,
            "translated": False,
            "warnings": ["Translation is temporarily unavailable; showing the original text."],
        }
    return {**result, "translated": True, "warnings": []}
