"""
Monthly usage quotas for metered features.

``consume`` takes one unit with a single conditional UPDATE
(``used = used + 1 WHERE used < limit``), so two requests racing for the last
unit cannot both win: the loser's UPDATE matches no row and it gets
``QuotaExceeded``. Units are taken before the paid call and are not refunded
if that call later degrades to a fallback.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError as DBIntegrityError

from feedbackhub.errors import QuotaExceeded
from feedbackhub.extensions import db
from feedbackhub.models import AnalyticsEvent, UsageCounter
from feedbackhub.models.analytics_event import EVENT_AI_ANALYSIS
from feedbackhub.observability import log_event
from feedbackhub.utils.helpers import month_key, utcnow

_EVENT_TYPES = {
    "ai.analysis": EVENT_AI_ANALYSIS,
}


def _counter(account_id: int, feature: str, period: str) -> UsageCounter:
    row = UsageCounter.query.filter_by(account_id=account_id, feature=feature, period=period).first()
    if row is not None:
        return row
    row = UsageCounter(account_id=account_id, feature=feature, period=period, used=0)
    db.session.add(row)
    try:
        db.session.commit()
    except DBIntegrityError:
        # Lost the insert race; the other request's row is the one to use
        db.session.rollback()
        row = UsageCounter.query.filter_by(account_id=account_id, feature=feature, period=period).one()
    return row


def used_this_period(account_id: int, feature: str, now: Optional[datetime] = None) -> int:
    row = UsageCounter.query.filter_by(account_id=account_id, feature=feature, period=month_key(now)).first()
    return row.used if row else 0


def consume(account_id: int, feature: str, limit: Optional[int], now: Optional[datetime] = None,
            event_data: Optional[dict] = None) -> int:
    """
    Take one unit of ``feature`` for the current month. ``limit=None`` means
    unlimited (usage is still recorded). Returns the new used count.
    """
    period = month_key(now)
    row = _counter(account_id, feature, period)

    stmt = (
        update(UsageCounter)
        .where(UsageCounter.id == row.id)
        .values(used=UsageCounter.used + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if limit is not None:
        stmt = stmt.where(UsageCounter.used < limit)

    result = db.session.execute(stmt)
    if result.rowcount == 0:
        db.session.rollback()
        used = used_this_period(account_id, feature, now)
        log_event("quota.exceeded", account_id=account_id, feature=feature, limit=limit, used=used)
        raise QuotaExceeded(feature=feature, limit=limit or 0, used=used)

    db.session.add(AnalyticsEvent(
        event_type=_EVENT_TYPES.get(feature, feature),
        account_id=account_id,
        event_data={"feature": feature, "period": period, **(event_data or {})},
    ))
    db.session.commit()
    db.session.refresh(row)
    log_event("quota.consumed", account_id=account_id, feature=feature, limit=limit, used=row.used)
    return row.used
