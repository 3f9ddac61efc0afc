"""Eight Sleep interval -> NightlyMetrics.

Pure and deterministic: the same interval (and timezone) always yields the
same metrics. Malformed input degrades to zeroed/None fields, never raises.

Stage walk:
    The running clock starts at `ts` and advances by every stage's duration,
    `out` and unrecognized labels included. Each `awake` stage records the
    clock as a wake event. Minutes are accumulated per stage, each rounded
    half-up from seconds.

Percentages are shares of light+deep+rem+awake minutes, never of a fixed
night length; all are None when that total is zero.
"""

import math
from datetime import UTC, datetime, timedelta, tzinfo
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from eight_sleep.domain.models import NightlyMetrics

SLEEP_STAGES = ("light", "deep", "rem")
WAKE_WINDOW_HOURS = (2, 4)


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like a person would (2.5 -> 3), not banker's rounding."""
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return float(value)


def _duration_seconds(stage: Any) -> float:
    if not isinstance(stage, dict):
        return 0.0
    return _as_number(stage.get("duration")) or 0.0


def _series_values(series: Any) -> list[float]:
    """Numeric values of a timeseries given as [{time, value}] or [[time, value]]."""
    if not isinstance(series, list):
        return []
    values = []
    for entry in series:
        if isinstance(entry, dict):
            raw = entry.get("value")
        elif isinstance(entry, list | tuple) and len(entry) >= 2:
            raw = entry[1]
        else:
            continue
        number = _as_number(raw)
        if number is not None:
            values.append(number)
    return values


def _stats(series: Any) -> tuple[float | None, float | None, float | None]:
    values = _series_values(series)
    if not values:
        return None, None, None
    return round_half_up(sum(values) / len(values), 2), min(values), max(values)


def _pct(minutes: int, total: int) -> float | None:
    if total <= 0:
        return None
    return round_half_up(minutes / total * 100, 1)


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_interval(interval: dict[str, Any], tz: tzinfo = UTC) -> NightlyMetrics:
    """Derive one night's metrics from an Eight Sleep interval.

    `tz` is the user's timezone; it only affects 2-4 AM wake detection.
    The calendar date is always the UTC date of `ts`.
    """
    if not isinstance(interval, dict):
        interval = {}

    start = _parse_timestamp(interval.get("ts"))
    stages = interval.get("stages")
    stages = stages if isinstance(stages, list) else []

    minutes = {"light": 0, "deep": 0, "rem": 0, "awake": 0}
    wake_times: list[datetime] = []
    total_seconds = 0.0

    for stage in stages:
        duration = _duration_seconds(stage)
        label = stage.get("stage") if isinstance(stage, dict) else None

        if label in minutes:
            minutes[label] += int(round_half_up(duration / 60))
        if label == "awake" and start is not None:
            wake_times.append(start + timedelta(seconds=total_seconds))

        total_seconds += duration

    time_slept = sum(minutes[s] for s in SLEEP_STAGES)
    total_time = time_slept + minutes["awake"]

    woke_2_4 = False
    wake_time_2_4 = None
    for wake in wake_times:
        local = wake.astimezone(tz)
        if WAKE_WINDOW_HOURS[0] <= local.hour < WAKE_WINDOW_HOURS[1]:
            woke_2_4 = True
            wake_time_2_4 = local.time().replace(microsecond=0, tzinfo=None)
            break

    timeseries = interval.get("timeseries")
    timeseries = timeseries if isinstance(timeseries, dict) else {}

    hr_avg, hr_min, hr_max = _stats(timeseries.get("heartRate"))
    hrv_avg, hrv_min, hrv_max = _stats(timeseries.get("hrv"))
    br_avg, br_min, br_max = _stats(timeseries.get("respiratoryRate"))
    bed_avg, _, _ = _stats(timeseries.get("bedTemperature"))
    room_avg, _, _ = _stats(timeseries.get("roomTemperature"))

    tnt = timeseries.get("tnt")
    toss_and_turn = None
    if isinstance(tnt, list) and tnt:
        toss_and_turn = int(round_half_up(sum(_series_values(tnt))))

    score = _as_number(interval.get("score"))

    sleep_end = None
    if start is not None and stages:
        sleep_end = start + timedelta(seconds=total_seconds)

    return NightlyMetrics(
        date=start.date() if start is not None else None,
        sleep_score=int(round_half_up(score)) if score is not None else None,
        time_slept=time_slept,
        time_to_fall_asleep=None,
        time_in_bed=total_time,
        wake_events=len(wake_times),
        wake_event_times=[_iso(w) for w in wake_times],
        woke_between_2_and_4_am=woke_2_4,
        wake_time_between_2_and_4_am=wake_time_2_4,
        avg_heart_rate=hr_avg,
        min_heart_rate=hr_min,
        max_heart_rate=hr_max,
        avg_hrv=hrv_avg,
        min_hrv=hrv_min,
        max_hrv=hrv_max,
        avg_breathing_rate=br_avg,
        min_breathing_rate=br_min,
        max_breathing_rate=br_max,
        light_sleep_minutes=minutes["light"],
        deep_sleep_minutes=minutes["deep"],
        rem_sleep_minutes=minutes["rem"],
        awake_minutes=minutes["awake"],
        light_sleep_pct=_pct(minutes["light"], total_time),
        deep_sleep_pct=_pct(minutes["deep"], total_time),
        rem_sleep_pct=_pct(minutes["rem"], total_time),
        awake_pct=_pct(minutes["awake"], total_time),
        avg_bed_temp=bed_avg,
        avg_room_temp=room_avg,
        avg_room_humidity=None,
        sleep_start_time=start,
        sleep_end_time=sleep_end,
        toss_and_turn_count=toss_and_turn,
    )
