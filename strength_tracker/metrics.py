from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, Mapping, Sequence, Union

import pandas as pd

from .config import ReadinessThresholds, TrainingLoadSettings, get_config
from .constants import MIN_CAPACITY
from .models import AnalyticsPoint, WorkoutLog, calendar_day

LOAD_COLUMNS = ["date", "stress", "fitness", "fatigue", "form"]

LogInput = Union[WorkoutLog, Mapping[str, object]]


def logs_to_dataframe(logs: Iterable[LogInput]) -> pd.DataFrame:
    """Normalise raw workout logs into one row per log, sorted by calendar day."""
    records: list[dict[str, object]] = []
    for item in logs:
        if isinstance(item, WorkoutLog):
            log = item
        elif isinstance(item, Mapping):
            log = WorkoutLog.from_dict(item)
        else:
            raise TypeError(f"Unsupported workout log type: {type(item)!r}")
        records.append(
            {
                "id": log.id,
                "timestamp": log.date,
                "day": calendar_day(log.date),
                "exercise_id": log.exercise_id,
                "volume": float(log.total_volume_load),
                "capacity": float(log.estimated_1rm),
            }
        )

    df = pd.DataFrame(records, columns=["id", "timestamp", "day", "exercise_id", "volume", "capacity"])
    if df.empty:
        return df
    # Mixed naive/aware timestamps do not compare, the calendar day always does.
    df.sort_values(["day"], inplace=True, kind="stable")
    df.reset_index(drop=True, inplace=True)
    return df


def daily_stress(
    df_logs: pd.DataFrame,
    start: date,
    end: date,
    *,
    stress_scale: float,
) -> pd.Series:
    """
    Daily training stress over every calendar day in ``[start, end]``.

    Logs sharing a day are pooled: volumes are summed and the day's capacity is
    the best estimated 1RM, never below one. Days without a log carry zero.
    """
    days = pd.date_range(pd.Timestamp(start), pd.Timestamp(end), freq="D")
    if df_logs.empty:
        return pd.Series(0.0, index=days, name="stress")

    daily = df_logs.groupby("day").agg(volume=("volume", "sum"), capacity=("capacity", "max"))
    daily.index = pd.to_datetime(daily.index)
    daily["capacity"] = daily["capacity"].clip(lower=MIN_CAPACITY)
    daily = daily.reindex(days)

    stress = (daily["volume"] / daily["capacity"] * stress_scale).fillna(0.0)
    stress.name = "stress"
    return stress


def _cold_start_ewma(values: pd.Series, time_constant: int) -> pd.Series:
    # A zero seed ahead of the first day gives both averages a cold start.
    seeded = pd.concat([pd.Series([0.0]), values.reset_index(drop=True)], ignore_index=True)
    smoothed = seeded.ewm(span=time_constant, adjust=False).mean().iloc[1:]
    smoothed.index = values.index
    return smoothed


def training_load_frame(
    logs: Iterable[LogInput],
    now: date | datetime,
    settings: TrainingLoadSettings | None = None,
) -> pd.DataFrame:
    """
    Bannister impulse-response model as a DataFrame, one row per calendar day.

    Fitness (CTL) and fatigue (ATL) are exponential moving averages of daily
    stress with ``k = 2 / (N + 1)``; form (TSB) is fitness minus fatigue. The
    series runs from the first logged day through ``now`` inclusive.
    """
    settings = settings or get_config().training_load
    df_logs = logs_to_dataframe(logs)
    if df_logs.empty:
        return pd.DataFrame(columns=LOAD_COLUMNS)

    start = df_logs["day"].min()
    end = calendar_day(now)
    if end < start:
        return pd.DataFrame(columns=LOAD_COLUMNS)

    in_range = df_logs[df_logs["day"] <= end]
    stress = daily_stress(in_range, start, end, stress_scale=settings.stress_scale)

    frame = pd.DataFrame({"date": stress.index, "stress": stress.to_numpy()})
    frame["fitness"] = _cold_start_ewma(stress, settings.fitness_days).to_numpy()
    frame["fatigue"] = _cold_start_ewma(stress, settings.fatigue_days).to_numpy()
    frame["form"] = frame["fitness"] - frame["fatigue"]
    return frame[LOAD_COLUMNS]


def compute_training_load(
    logs: Iterable[LogInput],
    now: date | datetime,
    settings: TrainingLoadSettings | None = None,
) -> list[AnalyticsPoint]:
    """Ordered training-load series; an empty history gives an empty series."""
    frame = training_load_frame(logs, now, settings)
    return [
        AnalyticsPoint(
            date=row.date.date(),
            stress=float(row.stress),
            fitness=float(row.fitness),
            fatigue=float(row.fatigue),
        )
        for row in frame.itertuples(index=False)
    ]


def series_by_day(points: Sequence[AnalyticsPoint]) -> dict[str, AnalyticsPoint]:
    """Key a series by ISO day string for chart consumers."""
    return {point.date.isoformat(): point for point in points}


def readiness_label(form: float, thresholds: ReadinessThresholds | None = None) -> str:
    thresholds = thresholds or get_config().readiness
    if form >= thresholds.fresh:
        return "FRESH"
    if form <= thresholds.fatigued:
        return "FATIGUED"
    return "NEUTRAL"
