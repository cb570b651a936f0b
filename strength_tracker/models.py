from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Sequence, Tuple

__all__ = [
    "parse_iso_date",
    "parse_timestamp",
    "calendar_day",
    "coerce_number",
    "epley_one_rep_max",
    "parse_sets",
    "sets_to_payload",
    "PlayerState",
    "WorkoutSet",
    "WorkoutLog",
    "AnalyticsPoint",
    "ValidationError",
]


class ValidationError(ValueError):
    """Raised when user-supplied data cannot be normalised safely."""


class PlayerState(str, Enum):
    WARMUP = "WARMUP"
    WORKING = "WORKING"
    RESTING = "RESTING"
    FINISHED = "FINISHED"


def parse_iso_date(value: Any, *, field: str = "date") -> date:
    """
    Parse user-supplied ISO-8601 dates.

    Accepts `datetime.date`, `datetime.datetime`, or strings. Raises `ValidationError`
    with a friendlier message if the payload cannot be parsed.
    """
    if isinstance(value, date):
        return value if not isinstance(value, datetime) else value.date()

    if not isinstance(value, str):
        raise ValidationError(
            f"{field} must be provided as YYYY-MM-DD text; received {value!r}."
        )

    candidate = value.strip()
    if not candidate:
        raise ValidationError(f"{field} cannot be empty.")

    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValidationError(
            f"{field} must be a valid ISO date (YYYY-MM-DD); received {candidate!r}."
        ) from exc

    return parsed.date()


def parse_timestamp(value: Any, *, field: str = "date") -> datetime:
    """
    Parse an ISO-8601 timestamp, keeping whatever timezone the payload carries.

    Plain dates are promoted to midnight. A trailing ``Z`` is read as UTC.
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO timestamp; received {value!r}.")

    candidate = value.strip()
    if not candidate:
        raise ValidationError(f"{field} cannot be empty.")
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"

    try:
        return datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValidationError(
            f"{field} must be a valid ISO timestamp; received {value!r}."
        ) from exc


def calendar_day(value: date | datetime) -> date:
    """Calendar day of a timestamp; aware timestamps are read in UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def coerce_number(
    value: Any,
    *,
    field: str = "value",
    minimum: float | None = None,
    maximum: float | None = None,
    allow_empty: bool = False,
    allow_float: bool = True,
) -> float:
    """
    Convert arbitrary input into a float with guardrails.

    The `minimum` and `maximum` bounds (inclusive) trigger a ValidationError when
    breached. When `allow_float` is False, the coerced number must be whole.
    """
    if value is None:
        if allow_empty:
            return float("nan")
        raise ValidationError(f"{field} is required.")

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number; received {value!r}.")

    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            if allow_empty:
                return float("nan")
            raise ValidationError(f"{field} is required.")
        try:
            number = float(stripped)
        except ValueError as exc:
            raise ValidationError(f"{field} must be a number; received {value!r}.") from exc
    else:
        raise ValidationError(f"{field} must be a number; received {value!r}.")

    if number != number:
        raise ValidationError(f"{field} must be a number; received {value!r}.")

    if not allow_float and number != round(number):
        raise ValidationError(f"{field} must be an integer; received {value!r}.")

    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be >= {minimum}; received {number}.")

    if maximum is not None and number > maximum:
        raise ValidationError(f"{field} must be <= {maximum}; received {number}.")

    return number


def epley_one_rep_max(weight: float, reps: int) -> float:
    """Epley estimate of a one-repetition maximum: weight × (1 + reps/30)."""
    return float(weight) * (1.0 + reps / 30.0)


@dataclass(frozen=True)
class WorkoutSet:
    """One prescribed set; only the `completed` flag changes during a session."""

    id: str
    reps: int
    weight: float
    completed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "reps": self.reps,
            "weight": self.weight,
            "completed": self.completed,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "WorkoutSet":
        if not isinstance(payload, Mapping):
            raise ValidationError(f"set must be an object; received {payload!r}.")
        set_id = payload.get("id")
        if set_id is None or not str(set_id).strip():
            raise ValidationError("set id is required.")
        reps = coerce_number(payload.get("reps"), field="reps", minimum=1, allow_float=False)
        raw_weight = payload.get("weight")
        weight: float = coerce_number(raw_weight, field="weight", minimum=0.0)
        if isinstance(raw_weight, int) and not isinstance(raw_weight, bool):
            # Keep whole-number weights as ints so snapshots re-serialise identically.
            weight = raw_weight
        completed = payload.get("completed", False)
        if not isinstance(completed, bool):
            raise ValidationError(f"completed must be true or false; received {completed!r}.")
        return cls(id=str(set_id), reps=int(reps), weight=weight, completed=completed)

    @property
    def volume_load(self) -> float:
        return self.weight * self.reps

    @property
    def estimated_1rm(self) -> float:
        return epley_one_rep_max(self.weight, self.reps)


def parse_sets(payload: Any, *, field: str = "sets") -> Tuple[WorkoutSet, ...]:
    """Validate a sequence of set payloads, rejecting duplicate ids."""
    if not isinstance(payload, (list, tuple)):
        raise ValidationError(f"{field} must be a list; received {payload!r}.")
    sets = tuple(
        item if isinstance(item, WorkoutSet) else WorkoutSet.from_dict(item)
        for item in payload
    )
    seen: set[str] = set()
    for item in sets:
        if item.id in seen:
            raise ValidationError(f"{field} contains duplicate id {item.id!r}.")
        seen.add(item.id)
    return sets


@dataclass(frozen=True)
class WorkoutLog:
    """Finished workout as stored in the history; immutable once written."""

    id: str
    date: datetime
    exercise_id: str
    sets: Tuple[WorkoutSet, ...] = field(default_factory=tuple)
    total_volume_load: float = 0.0
    estimated_1rm: float = 0.0

    @classmethod
    def from_sets(
        cls,
        *,
        log_id: str,
        logged_at: datetime,
        exercise_id: str,
        sets: Sequence[WorkoutSet],
    ) -> "WorkoutLog":
        sets = tuple(sets)
        volume = sum(item.volume_load for item in sets)
        one_rm = max((item.estimated_1rm for item in sets), default=0.0)
        return cls(
            id=log_id,
            date=logged_at,
            exercise_id=exercise_id,
            sets=sets,
            total_volume_load=volume,
            estimated_1rm=one_rm,
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON form shared with the history file."""
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "exerciseId": self.exercise_id,
            "sets": [item.to_dict() for item in self.sets],
            "totalVolumeLoad": self.total_volume_load,
            "estimated1RM": self.estimated_1rm,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "WorkoutLog":
        if not isinstance(payload, Mapping):
            raise ValidationError(f"workout log must be an object; received {payload!r}.")
        log_id = payload.get("id")
        if log_id is None or not str(log_id).strip():
            raise ValidationError("workout log id is required.")
        logged_at = parse_timestamp(payload.get("date"), field="date")
        exercise_id = str(payload.get("exerciseId") or payload.get("exercise_id") or "").strip()
        sets = parse_sets(payload.get("sets", []), field="sets")
        volume_raw = payload.get("totalVolumeLoad", payload.get("total_volume_load"))
        one_rm_raw = payload.get("estimated1RM", payload.get("estimated_1rm"))
        volume = (
            coerce_number(volume_raw, field="totalVolumeLoad", minimum=0.0)
            if volume_raw is not None
            else sum(item.volume_load for item in sets)
        )
        one_rm = (
            coerce_number(one_rm_raw, field="estimated1RM")
            if one_rm_raw is not None
            else max((item.estimated_1rm for item in sets), default=0.0)
        )
        return cls(
            id=str(log_id),
            date=logged_at,
            exercise_id=exercise_id,
            sets=sets,
            total_volume_load=volume,
            estimated_1rm=one_rm,
        )


@dataclass(frozen=True)
class AnalyticsPoint:
    """One day of the impulse-response series."""

    date: date
    stress: float
    fitness: float
    fatigue: float

    @property
    def form(self) -> float:
        return self.fitness - self.fatigue

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "stress": self.stress,
            "fitness": self.fitness,
            "fatigue": self.fatigue,
            "form": self.form,
        }


def sets_to_payload(sets: Sequence[WorkoutSet]) -> List[Dict[str, Any]]:
    return [item.to_dict() for item in sets]
