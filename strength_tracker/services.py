from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Iterable, Mapping, Sequence

import pandas as pd

from .metrics import compute_training_load, logs_to_dataframe, readiness_label, training_load_frame
from .models import (
    AnalyticsPoint,
    ValidationError,
    WorkoutLog,
    WorkoutSet,
    calendar_day,
    coerce_number,
    parse_timestamp,
)

_SET_SPEC = re.compile(
    r"^\s*(?P<weight>\d+(?:\.\d+)?)\s*[xX×]\s*(?P<reps>\d+)(?:\s*[xX×]\s*(?P<count>\d+))?\s*$"
)


def parse_set_specs(specs: Sequence[str], *, completed: bool = False) -> list[WorkoutSet]:
    """
    Turn ``WEIGHTxREPS`` (optionally ``WEIGHTxREPSxSETS``) tokens into sets.

    Set ids are the 1-based position in the resulting list.
    """
    sets: list[WorkoutSet] = []
    for spec in specs:
        match = _SET_SPEC.match(spec or "")
        if not match:
            raise ValidationError(
                f"set must look like WEIGHTxREPS or WEIGHTxREPSxSETS; received {spec!r}."
            )
        weight = coerce_number(match.group("weight"), field="weight", minimum=0.0)
        reps = int(coerce_number(match.group("reps"), field="reps", minimum=1, allow_float=False))
        count = int(match.group("count") or 1)
        if count < 1:
            raise ValidationError(f"set count must be at least 1; received {spec!r}.")
        for _ in range(count):
            sets.append(
                WorkoutSet(id=str(len(sets) + 1), reps=reps, weight=weight, completed=completed)
            )
    if not sets:
        raise ValidationError("at least one set is required.")
    return sets


def _normalise_exercise(value: str | None) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError("exercise is required.")
    return text


def build_workout_log(
    sets: Iterable[WorkoutSet],
    *,
    exercise_id: str,
    logged_at: datetime | str | None = None,
    log_id: str | None = None,
    completed_only: bool = False,
) -> WorkoutLog:
    """Freeze a set list into a history record with its volume and 1RM estimate."""
    chosen = [item for item in sets if item.completed or not completed_only]
    timestamp = (
        parse_timestamp(logged_at, field="date")
        if logged_at is not None
        else datetime.now(timezone.utc)
    )
    return WorkoutLog.from_sets(
        log_id=log_id or uuid.uuid4().hex[:16],
        logged_at=timestamp,
        exercise_id=_normalise_exercise(exercise_id),
        sets=chosen,
    )


@dataclass(frozen=True)
class LogResult:
    """Structured outcome of recording a workout."""

    log: WorkoutLog

    @property
    def confirmation(self) -> str:
        return (
            f"[{self.log.exercise_id}] Logged {self.log.date.date().isoformat()}: "
            f"{len(self.log.sets)} sets, volume {self.log.total_volume_load:.1f}, "
            f"e1RM {self.log.estimated_1rm:.1f}."
        )


@dataclass(frozen=True)
class LoadSummary:
    points: list[AnalyticsPoint]
    latest: AnalyticsPoint | None
    readiness: str | None
    peak_fitness: float | None
    workouts: int

    @property
    def date_range(self) -> tuple[date, date] | None:
        if not self.points:
            return None
        return self.points[0].date, self.points[-1].date


def _count_logs_through(logs: Sequence[WorkoutLog | Mapping[str, Any]], now: date | datetime) -> int:
    frame = logs_to_dataframe(logs)
    if frame.empty:
        return 0
    return int((frame["day"] <= calendar_day(now)).sum())


def build_load_summary(logs: Sequence[WorkoutLog | Mapping[str, Any]], now: date | datetime) -> LoadSummary:
    points = compute_training_load(logs, now)
    latest = points[-1] if points else None
    return LoadSummary(
        points=points,
        latest=latest,
        readiness=readiness_label(latest.form) if latest else None,
        peak_fitness=max(point.fitness for point in points) if points else None,
        workouts=_count_logs_through(logs, now),
    )


def render_load_table(points: Sequence[AnalyticsPoint]) -> str:
    """Render a fixed-width table of daily load points."""
    headers = ("date", "stress", "fitness", "fatigue", "form")
    rows = [
        {
            "date": point.date.isoformat(),
            "stress": f"{point.stress:.1f}",
            "fitness": f"{point.fitness:.2f}",
            "fatigue": f"{point.fatigue:.2f}",
            "form": f"{point.form:+.2f}",
        }
        for point in points
    ]
    widths = {key: len(key) for key in headers}
    for row in rows:
        for key in headers:
            widths[key] = max(widths[key], len(row[key]))

    def _format_line(values: Mapping[str, str]) -> str:
        return "  ".join(values[key].rjust(widths[key]) for key in headers)

    header_line = "  ".join(key.upper().rjust(widths[key]) for key in headers)
    body = "\n".join(_format_line(row) for row in rows)
    return "\n".join(filter(None, [header_line, body]))


def build_export_dataframe(
    logs: Sequence[WorkoutLog | Mapping[str, Any]],
    now: date | datetime,
) -> pd.DataFrame:
    """Daily load frame ready for CSV export, with ISO day strings."""
    frame = training_load_frame(logs, now)
    if frame.empty:
        return frame
    export = frame.copy()
    export["date"] = pd.to_datetime(export["date"]).dt.strftime("%Y-%m-%d")
    for column in ("stress", "fitness", "fatigue", "form"):
        export[column] = export[column].round(4)
    return export
