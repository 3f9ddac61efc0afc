"""Sleep vs. supplement / daily-factor correlation.

The statistics are plain functions over already-materialized nights:
each night is a dict with sleep_score, deep_sleep_pct, rem_sleep_pct,
avg_hrv, time_slept, woke_between_2_and_4_am, supplements_taken and the
four daily-factor flags. SleepCorrelationService loads those nights from
the repository and backfills the per-night supplement snapshots.

Thresholds:
- a supplement is compared only if either side has >= 3 nights
- a daily factor needs >= 3 explicit true and >= 3 explicit false nights
- impact is positive/negative beyond +/-3 score points
- confidence: high (>= 30 nights, >= 10 per side), medium (>= 14, >= 5 per side)
"""

from collections.abc import Callable, Sequence
from datetime import UTC, date, datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError

from eight_sleep.parser import round_half_up
from eight_sleep.repository import EightSleepRepository

logger = structlog.get_logger()

MIN_NIGHTS = 3
IMPACT_THRESHOLD = 3
TOP_N = 5

DAILY_FACTORS = (
    ("alcohol_consumed", "Alcohol"),
    ("caffeine_after_noon", "Caffeine after noon"),
    ("exercise_that_day", "Exercise"),
    ("high_stress_day", "High stress"),
)

NO_DATA_RECOMMENDATION = (
    "Not enough data yet for personalized recommendations. Keep tracking for more insights!"
)


def _avg(values: Sequence[float | None]) -> float | None:
    present = [float(v) for v in values if v is not None]
    if not present:
        return None
    return round_half_up(sum(present) / len(present), 1)


def _diff(a: float | None, b: float | None) -> float | None:
    if a is None or b is None:
        return None
    return round_half_up(a - b, 1)


def _impact(diff: float | None) -> str:
    if diff is None:
        return "neutral"
    if diff > IMPACT_THRESHOLD:
        return "positive"
    if diff < -IMPACT_THRESHOLD:
        return "negative"
    return "neutral"


def _confidence(with_n: int, without_n: int) -> str:
    total = with_n + without_n
    if total >= 30 and with_n >= 10 and without_n >= 10:
        return "high"
    if total >= 14 and with_n >= 5 and without_n >= 5:
        return "medium"
    return "low"


def night_stats(nights: Sequence[dict[str, Any]]) -> dict[str, float | None]:
    if not nights:
        return {
            "sleep_score": None,
            "deep_sleep_pct": None,
            "rem_sleep_pct": None,
            "hrv": None,
            "time_slept": None,
            "wake_rate": 0,
        }
    woke = sum(1 for n in nights if n.get("woke_between_2_and_4_am"))
    return {
        "sleep_score": _avg([n.get("sleep_score") for n in nights]),
        "deep_sleep_pct": _avg([n.get("deep_sleep_pct") for n in nights]),
        "rem_sleep_pct": _avg([n.get("rem_sleep_pct") for n in nights]),
        "hrv": _avg([n.get("avg_hrv") for n in nights]),
        "time_slept": _avg([n.get("time_slept") for n in nights]),
        "wake_rate": int(round_half_up(woke / len(nights) * 100)),
    }


def _took(night: dict[str, Any], supplement_id: str) -> bool:
    taken = night.get("supplements_taken") or []
    return any(str(s.get("id")) == supplement_id for s in taken if isinstance(s, dict))


def supplement_correlations(
    nights: Sequence[dict[str, Any]], supplements: Sequence[dict[str, Any]]
) -> list[dict[str, Any]]:
    """Compare nights with vs. without each supplement, best score difference first."""
    results = []
    for supp in supplements:
        supp_id = str(supp["id"])
        with_nights = [n for n in nights if _took(n, supp_id)]
        without_nights = [n for n in nights if not _took(n, supp_id)]

        if len(with_nights) < MIN_NIGHTS and len(without_nights) < MIN_NIGHTS:
            continue

        w = night_stats(with_nights)
        wo = night_stats(without_nights)
        score_diff = _diff(w["sleep_score"], wo["sleep_score"])

        results.append(
            {
                "supplement_id": supp_id,
                "supplement_name": supp.get("name"),
                "supplement_brand": supp.get("brand"),
                "nights_taken": len(with_nights),
                "nights_not_taken": len(without_nights),
                "avg_sleep_score_with": w["sleep_score"],
                "avg_deep_sleep_pct_with": w["deep_sleep_pct"],
                "avg_rem_sleep_pct_with": w["rem_sleep_pct"],
                "avg_hrv_with": w["hrv"],
                "avg_time_slept_with": w["time_slept"],
                "wake_2_4_am_rate_with": w["wake_rate"],
                "avg_sleep_score_without": wo["sleep_score"],
                "avg_deep_sleep_pct_without": wo["deep_sleep_pct"],
                "avg_rem_sleep_pct_without": wo["rem_sleep_pct"],
                "avg_hrv_without": wo["hrv"],
                "avg_time_slept_without": wo["time_slept"],
                "wake_2_4_am_rate_without": wo["wake_rate"],
                "sleep_score_diff": score_diff,
                "deep_sleep_diff": _diff(w["deep_sleep_pct"], wo["deep_sleep_pct"]),
                "hrv_diff": _diff(w["hrv"], wo["hrv"]),
                "wake_rate_diff": w["wake_rate"] - wo["wake_rate"],
                "impact": _impact(score_diff),
                "confidence": _confidence(len(with_nights), len(without_nights)),
            }
        )

    results.sort(key=lambda c: c["sleep_score_diff"] or 0, reverse=True)
    return results


def daily_factor_correlations(nights: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    """Score with vs. without each daily factor; unrecorded (None) flags are ignored."""
    scored = [n for n in nights if n.get("sleep_score") is not None]
    results = []
    for key, label in DAILY_FACTORS:
        with_scores = [n["sleep_score"] for n in scored if n.get(key) is True]
        without_scores = [n["sleep_score"] for n in scored if n.get(key) is False]
        if len(with_scores) < MIN_NIGHTS or len(without_scores) < MIN_NIGHTS:
            continue

        avg_with = sum(with_scores) / len(with_scores)
        avg_without = sum(without_scores) / len(without_scores)
        diff = avg_with - avg_without
        results.append(
            {
                "factor": label,
                "nights_with": len(with_scores),
                "nights_without": len(without_scores),
                "avg_score_with": round_half_up(avg_with, 1),
                "avg_score_without": round_half_up(avg_without, 1),
                "score_diff": round_half_up(diff, 1),
                "impact": _impact(diff),
            }
        )
    return results


def recommendations(
    supplements: Sequence[dict[str, Any]], factors: Sequence[dict[str, Any]]
) -> list[str]:
    positive = [c for c in supplements if c["impact"] == "positive"][:TOP_N]
    negative = [c for c in supplements if c["impact"] == "negative"][:TOP_N]
    recs = []

    for supp in positive[:2]:
        diff = supp["sleep_score_diff"]
        if supp["confidence"] == "high" and diff and diff > 5:
            recs.append(
                f"{supp['supplement_name']} appears to improve your sleep score by "
                f"{diff:.0f} points. Consider keeping it in your protocol."
            )

    for supp in negative[:2]:
        diff = supp["sleep_score_diff"]
        if supp["confidence"] != "low" and diff and diff < -5:
            recs.append(
                f"{supp['supplement_name']} may be negatively affecting your sleep "
                f"({diff:.0f} point difference). Consider adjusting timing or dosage."
            )

    for factor in factors:
        diff = factor["score_diff"]
        if factor["impact"] == "negative" and diff and diff < -5:
            recs.append(
                f"{factor['factor']} appears to reduce your sleep score by {abs(diff):.0f} points."
            )
        if factor["impact"] == "positive" and diff and diff > 5:
            recs.append(
                f"{factor['factor']} on days you sleep appears to improve your score "
                f"by {diff:.0f} points."
            )

    wakeful = [c for c in supplements if c["wake_rate_diff"] > 15 and c["confidence"] != "low"]
    for supp in wakeful[:1]:
        recs.append(
            f"{supp['supplement_name']} is associated with {supp['wake_rate_diff']:.0f}% more "
            "2-4am waking. This may indicate blood sugar or cortisol effects."
        )

    return recs or [NO_DATA_RECOMMENDATION]


class SleepCorrelationService:
    def __init__(
        self,
        repository: EightSleepRepository,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.repository = repository
        self.clock = clock

    def _since(self, days: int) -> date:
        return self.clock().astimezone(UTC).date() - timedelta(days=days)

    async def build_correlations(self, user_id: UUID, days: int) -> int:
        """Snapshot the active supplements onto every night that has no correlation row yet.

        Intake is not tracked per day, so every active supplement counts as taken.
        """
        sessions = await self.repository.sessions_without_correlation(user_id, self._since(days))
        if not sessions:
            return 0

        supplements = await self.repository.list_supplements(user_id, active_only=True)
        created = 0
        for session_id, night in sessions:
            try:
                if await self.repository.insert_correlation(user_id, session_id, night, supplements):
                    created += 1
            except SQLAlchemyError:
                logger.exception("correlation_insert_failed", night=night.isoformat())
        logger.info("correlations_built", user_id=str(user_id), created=created)
        return created

    async def supplement_correlations(self, user_id: UUID, days: int) -> list[dict[str, Any]]:
        nights = await self.repository.correlated_nights(user_id, self._since(days))
        supplements = await self.repository.list_supplements(user_id)
        if not supplements:
            return []
        return supplement_correlations(nights, supplements)

    async def daily_factor_correlations(self, user_id: UUID, days: int) -> list[dict[str, Any]]:
        nights = await self.repository.correlated_nights(user_id, self._since(days))
        return daily_factor_correlations(nights)

    async def summary(self, user_id: UUID, days: int) -> dict[str, Any]:
        await self.build_correlations(user_id, days)

        supplements = await self.supplement_correlations(user_id, days)
        factors = await self.daily_factor_correlations(user_id, days)

        return {
            "period_days": days,
            "total_nights_analyzed": await self.repository.count_sessions(user_id),
            "top_positive_supplements": [c for c in supplements if c["impact"] == "positive"][
                :TOP_N
            ],
            "top_negative_supplements": [c for c in supplements if c["impact"] == "negative"][
                :TOP_N
            ],
            "daily_factors": factors,
            "recommendations": recommendations(supplements, factors),
        }
