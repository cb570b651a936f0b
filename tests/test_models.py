from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from strength_tracker.models import (
    ValidationError,
    WorkoutLog,
    WorkoutSet,
    calendar_day,
    epley_one_rep_max,
    parse_sets,
    parse_timestamp,
)
from strength_tracker.services import build_workout_log, parse_set_specs


def test_epley_estimate() -> None:
    assert epley_one_rep_max(100.0, 30) == pytest.approx(200.0)
    assert epley_one_rep_max(100.0, 5) == pytest.approx(116.6667, rel=1e-4)


def test_workout_log_volume_and_one_rep_max() -> None:
    sets = [
        WorkoutSet(id="1", reps=5, weight=100.0, completed=True),
        WorkoutSet(id="2", reps=10, weight=80.0, completed=True),
    ]
    log = WorkoutLog.from_sets(log_id="x", logged_at=datetime(2024, 1, 1), exercise_id="squat", sets=sets)

    assert log.total_volume_load == pytest.approx(1300.0)
    assert log.estimated_1rm == pytest.approx(100.0 * (1 + 5 / 30))


def test_workout_log_one_rep_max_is_best_estimate_not_heaviest_set() -> None:
    sets = [
        WorkoutSet(id="1", reps=1, weight=100.0, completed=True),
        WorkoutSet(id="2", reps=12, weight=90.0, completed=True),
    ]
    log = WorkoutLog.from_sets(log_id="x", logged_at=datetime(2024, 1, 1), exercise_id="squat", sets=sets)

    assert log.estimated_1rm == pytest.approx(90.0 * (1 + 12 / 30))
    assert log.estimated_1rm > epley_one_rep_max(100.0, 1)


def test_workout_log_dict_round_trip_keeps_json_keys() -> None:
    log = build_workout_log(
        parse_set_specs(["100x5x2"], completed=True),
        exercise_id="squat",
        logged_at="2024-06-01T10:00:00Z",
        log_id="abc",
    )
    payload = log.to_dict()

    assert set(payload) == {"id", "date", "exerciseId", "sets", "totalVolumeLoad", "estimated1RM"}
    assert WorkoutLog.from_dict(payload) == log
    assert log.date.tzinfo is not None


def test_build_workout_log_can_keep_only_completed_sets() -> None:
    sets = parse_set_specs(["60x10x3"])
    sets[0] = WorkoutSet(id="1", reps=10, weight=60.0, completed=True)

    log = build_workout_log(sets, exercise_id="row", completed_only=True)

    assert [item.id for item in log.sets] == ["1"]
    assert log.total_volume_load == pytest.approx(600.0)


def test_parse_set_specs_numbers_sets_in_order() -> None:
    sets = parse_set_specs(["100x5", "102.5 x 3 x 2"])

    assert [(item.id, item.weight, item.reps) for item in sets] == [
        ("1", 100.0, 5),
        ("2", 102.5, 3),
        ("3", 102.5, 3),
    ]


@pytest.mark.parametrize("spec", ["100", "x5", "100x0", "100x5x0", "heavy"])
def test_parse_set_specs_rejects_bad_tokens(spec: str) -> None:
    with pytest.raises(ValidationError):
        parse_set_specs([spec])


def test_set_validation() -> None:
    with pytest.raises(ValidationError):
        WorkoutSet.from_dict({"id": "1", "reps": 5, "weight": -1})
    with pytest.raises(ValidationError):
        WorkoutSet.from_dict({"id": "1", "reps": 2.5, "weight": 10})
    with pytest.raises(ValidationError):
        WorkoutSet.from_dict({"id": "1", "reps": 5, "weight": 10, "completed": "yes"})
    with pytest.raises(ValidationError):
        parse_sets([{"id": "1", "reps": 5, "weight": 10}, {"id": "1", "reps": 3, "weight": 10}])


def test_calendar_day_reads_aware_timestamps_in_utc() -> None:
    evening = datetime(2024, 1, 1, 22, 0, tzinfo=timezone(timedelta(hours=-5)))

    assert calendar_day(evening) == date(2024, 1, 2)
    assert calendar_day(datetime(2024, 1, 1, 22, 0)) == date(2024, 1, 1)
    assert calendar_day(date(2024, 1, 1)) == date(2024, 1, 1)


def test_parse_timestamp_variants() -> None:
    assert parse_timestamp("2024-01-01") == datetime(2024, 1, 1)
    assert parse_timestamp(date(2024, 1, 1)) == datetime(2024, 1, 1)
    assert parse_timestamp("2024-01-01T05:00:00Z").tzinfo is not None
    with pytest.raises(ValidationError):
        parse_timestamp("soon")
