"""Source trust and recency re-weighting of fused results"""

from dataclasses import replace
import calendar
from datetime import date, datetime, timezone
from typing import List, Optional, Union

from ..models.search import SearchHit
from ..storage.database import utc_now
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

TRUST_WEIGHTS = {
    "official": 1.0,
    "verified": 0.85,
    "community": 0.6,
}
UNKNOWN_TRUST_WEIGHT = 0.5

RECENT_WEIGHT = 1.0  # verified less than 6 months ago
AGING_WEIGHT = 0.9  # 6 to 12 months
STALE_WEIGHT = 0.7  # over 12 months, or never verified


def trust_weight(source_quality: Optional[str]) -> float:
    if not source_quality:
        return UNKNOWN_TRUST_WEIGHT
    return TRUST_WEIGHTS.get(str(source_quality).lower(), UNKNOWN_TRUST_WEIGHT)


def parse_timestamp(value: Union[str, date, datetime, None]) -> Optional[datetime]:
    """Parse ISO-8601 strings (including a trailing 'Z') into naive UTC datetimes"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.debug(f"Unparseable last_verified value: {value!r}")
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def months_before(moment: datetime, months: int) -> date:
    """The calendar date ``months`` months before ``moment``, clamped to month end"""
    year, month = divmod(moment.year * 12 + moment.month - 1 - months, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def recency_weight(last_verified, now: Optional[datetime] = None) -> float:
    verified_at = parse_timestamp(last_verified)
    if verified_at is None:
        return STALE_WEIGHT
    now = now or utc_now()
    verified_on = verified_at.date()
    if verified_on > months_before(now, 6):
        return RECENT_WEIGHT
    if verified_on >= months_before(now, 12):
        return AGING_WEIGHT
    return STALE_WEIGHT


class TrustRecencyScorer:
    """
    Multiplies each result's score by a source-trust weight and a
    last-verified recency weight, then re-sorts.

    Both weight functions are monotone: more trusted or more recently
    verified sources never score lower than less trusted or older ones.
    """

    def apply(self, hits: List[SearchHit], now: Optional[datetime] = None) -> List[SearchHit]:
        now = parse_timestamp(now) if now is not None else utc_now()
        weighted = []
        for hit in hits:
            trust = trust_weight(hit.metadata.get("source_quality"))
            recency = recency_weight(hit.metadata.get("last_verified"), now)
            weighted.append(
                replace(
                    hit,
                    score=hit.score * trust * recency,
                    metadata={**hit.metadata, "trust_weight": trust, "recency_weight": recency},
                )
            )
        # sort() is stable: equal scores keep their fused order
        weighted.sort(key=lambda hit: -hit.score)
        return weighted
