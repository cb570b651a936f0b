from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from strength_tracker.metrics import (
    compute_training_load,
    readiness_label,
    series_by_day,
    training_load_frame,
)
from strength_tracker.models import WorkoutLog

FITNESS_K = 2 / 43
FATIGUE_K = 2 / 8


def _log(day: date, volume: float, one_rm: float, *, log_id: str | None = None) -> WorkoutLog:
    return WorkoutLog(
        id=log_id or f"log-{day.isoformat()}-{volume}",
        date=datetime(day.year, day.month, day.day, 18, 0),
        exercise_id="back-squat",
        total_volume_load=volume,
        estimated_1rm=one_rm,
    )


def test_empty_history_gives_empty_series() -> None:
    assert compute_training_load([], datetime(2024, 1, 1)) == []
    assert training_load_frame([], datetime(2024, 1, 1)).empty


def test_single_log_matches_worked_example() -> None:
    d0 = date(2024, 3, 4)
    points = compute_training_load([_log(d0, 1000.0, 200.0)], d0)

    assert len(points) == 1
    point = points[0]
    assert point.date == d0
    assert point.stress == pytest.approx(50.0)
    assert point.fitness == pytest.approx(50.0 * FITNESS_K)
    assert point.fitness == pytest.approx(2.3256, abs=1e-4)
    assert point.fatigue == pytest.approx(12.5)
    assert point.form == pytest.approx(-10.1744, abs=1e-4)


def test_series_has_one_point_per_day_without_gaps() -> None:
    start = date(2024, 1, 1)
    logs = [
        _log(start + timedelta(days=10), 800.0, 160.0),
        _log(start, 1000.0, 200.0),
        _log(start + timedelta(days=3), 900.0, 180.0),
    ]
    now = datetime(2024, 1, 13, 7, 30)

    points = compute_training_load(logs, now)

    assert [point.date for point in points] == [start + timedelta(days=offset) for offset in range(13)]
    rest_day = points[1]
    assert rest_day.stress == 0.0
    assert rest_day.fitness == pytest.approx(points[0].fitness * (1 - FITNESS_K))
    assert rest_day.fatigue == pytest.approx(points[0].fatigue * (1 - FATIGUE_K))


def test_same_day_logs_are_pooled_into_one_point() -> None:
    day = date(2024, 2, 1)
    logs = [_log(day, 500.0, 150.0, log_id="a"), _log(day, 700.0, 200.0, log_id="b")]

    points = compute_training_load(logs, day)

    assert len(points) == 1
    assert points[0].stress == pytest.approx((500.0 + 700.0) / 200.0 * 10)


def test_non_positive_capacity_is_clamped_to_one() -> None:
    day = date(2024, 2, 1)
    points = compute_training_load([_log(day, 10.0, 0.0), _log(day, 5.0, -3.0, log_id="neg")], day)

    assert points[0].stress == pytest.approx(150.0)


def test_constant_stress_converges_with_fatigue_leading() -> None:
    start = date(2024, 1, 1)
    logs = [_log(start + timedelta(days=offset), 100.0, 200.0) for offset in range(150)]

    points = compute_training_load(logs, start + timedelta(days=149))
    target = 5.0

    for previous, current in zip(points, points[1:]):
        assert previous.fitness < current.fitness <= target + 1e-9
        assert previous.fatigue <= current.fatigue <= target + 1e-9
        assert target - current.fatigue <= target - current.fitness
    assert points[-1].fatigue == pytest.approx(target)
    assert points[-1].fitness == pytest.approx(target, rel=0.01)


def test_now_before_first_log_gives_empty_series() -> None:
    assert compute_training_load([_log(date(2024, 5, 1), 100.0, 100.0)], date(2024, 4, 30)) == []


def test_logs_after_now_are_ignored() -> None:
    logs = [_log(date(2024, 5, 1), 1000.0, 200.0), _log(date(2024, 5, 4), 1000.0, 200.0)]

    points = compute_training_load(logs, date(2024, 5, 2))

    assert [point.stress for point in points] == pytest.approx([50.0, 0.0])


def test_mapping_records_use_utc_calendar_day() -> None:
    record = {
        "id": "late-session",
        "date": "2024-01-01T23:30:00-02:00",
        "exerciseId": "deadlift",
        "sets": [{"id": "1", "reps": 5, "weight": 100, "completed": True}],
        "totalVolumeLoad": 500,
        "estimated1RM": 116.67,
    }

    points = compute_training_load([record], datetime(2024, 1, 2, 12, tzinfo=timezone.utc))

    assert [point.date for point in points] == [date(2024, 1, 2)]


def test_identical_inputs_reproduce_identical_series() -> None:
    logs = [_log(date(2024, 1, 1), 1200.0, 180.0), _log(date(2024, 1, 5), 900.0, 190.0)]
    now = date(2024, 1, 20)

    assert compute_training_load(logs, now) == compute_training_load(list(reversed(logs)), now)


def test_series_by_day_and_frame_columns() -> None:
    logs = [_log(date(2024, 1, 1), 1000.0, 200.0)]
    points = compute_training_load(logs, date(2024, 1, 3))

    keyed = series_by_day(points)
    assert list(keyed) == ["2024-01-01", "2024-01-02", "2024-01-03"]
    assert keyed["2024-01-01"].to_dict()["form"] == pytest.approx(points[0].form)

    frame = training_load_frame(logs, date(2024, 1, 3))
    assert list(frame.columns) == ["date", "stress", "fitness", "fatigue", "form"]
    assert frame["form"].tolist() == pytest.approx([point.form for point in points])


@pytest.mark.parametrize(
    ("form", "label"),
    [(12.0, "FRESH"), (0.0, "NEUTRAL"), (-25.0, "FATIGUED")],
)
def test_readiness_label(form: float, label: str) -> None:
    assert readiness_label(form) == label
