from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

from .constants import (
    DEFAULT_COACH_MODEL,
    DEFAULT_CUE_WINDOW,
    DEFAULT_REST_SECONDS,
    DEFAULT_TICK_SECONDS,
    FATIGUE_TIME_CONSTANT,
    FITNESS_TIME_CONSTANT,
    STRESS_SCALE,
)
from .env import get_env

try:  # pragma: no cover - Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - Python <3.11
    try:
        import tomli as tomllib  # type: ignore
    except ModuleNotFoundError:
        tomllib = None  # type: ignore


@dataclass(frozen=True)
class SessionSettings:
    rest_seconds: int = DEFAULT_REST_SECONDS
    cue_window: int = DEFAULT_CUE_WINDOW
    tick_seconds: float = DEFAULT_TICK_SECONDS


@dataclass(frozen=True)
class TrainingLoadSettings:
    fitness_days: int = FITNESS_TIME_CONSTANT
    fatigue_days: int = FATIGUE_TIME_CONSTANT
    stress_scale: float = STRESS_SCALE


@dataclass(frozen=True)
class ReadinessThresholds:
    fresh: float = 5.0
    fatigued: float = -10.0


@dataclass(frozen=True)
class AppConfig:
    session: SessionSettings = SessionSettings()
    training_load: TrainingLoadSettings = TrainingLoadSettings()
    readiness: ReadinessThresholds = ReadinessThresholds()
    coach_model: str = DEFAULT_COACH_MODEL


def _config_path() -> Path | None:
    """Resolve the TOML configuration file, if present."""
    env_override = get_env("CONFIG")
    if env_override:
        path = Path(env_override).expanduser()
        return path if path.exists() else None

    default_path = Path("config/strength_tracker.toml")
    if default_path.exists():
        return default_path
    return None


def _load_toml(path: Path) -> Mapping[str, Any]:
    if tomllib is None:
        raise RuntimeError("TOML configuration requires Python 3.11+ or the 'tomli' package.")
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any] | None:
    value = raw.get(name)
    return value if isinstance(value, Mapping) else None


def _coerce_session(raw: Mapping[str, Any] | None) -> SessionSettings:
    base = SessionSettings()
    if not raw:
        return base
    try:
        rest_seconds = int(raw.get("rest_seconds", base.rest_seconds))
        cue_window = int(raw.get("cue_window", base.cue_window))
        tick_seconds = float(raw.get("tick_seconds", base.tick_seconds))
    except (TypeError, ValueError):
        return base
    if rest_seconds < 1 or cue_window < 0 or tick_seconds <= 0:
        return base
    return SessionSettings(rest_seconds=rest_seconds, cue_window=cue_window, tick_seconds=tick_seconds)


def _coerce_training_load(raw: Mapping[str, Any] | None) -> TrainingLoadSettings:
    base = TrainingLoadSettings()
    if not raw:
        return base
    try:
        fitness_days = int(raw.get("fitness_days", base.fitness_days))
        fatigue_days = int(raw.get("fatigue_days", base.fatigue_days))
        stress_scale = float(raw.get("stress_scale", base.stress_scale))
    except (TypeError, ValueError):
        return base
    if fitness_days < 1 or fatigue_days < 1:
        return base
    return TrainingLoadSettings(
        fitness_days=fitness_days,
        fatigue_days=fatigue_days,
        stress_scale=stress_scale,
    )


def _coerce_readiness(raw: Mapping[str, Any] | None) -> ReadinessThresholds:
    base = ReadinessThresholds()
    if not raw:
        return base
    try:
        fresh = float(raw.get("fresh", base.fresh))
        fatigued = float(raw.get("fatigued", base.fatigued))
    except (TypeError, ValueError):
        return base
    if fatigued > fresh:
        return base
    return ReadinessThresholds(fresh=fresh, fatigued=fatigued)


def _build_config(raw: Mapping[str, Any]) -> AppConfig:
    coach = _section(raw, "coach") or {}
    model = coach.get("model")
    return AppConfig(
        session=_coerce_session(_section(raw, "session")),
        training_load=_coerce_training_load(_section(raw, "training_load")),
        readiness=_coerce_readiness(_section(raw, "readiness")),
        coach_model=model.strip() if isinstance(model, str) and model.strip() else DEFAULT_COACH_MODEL,
    )


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Load configuration once, falling back to built-in defaults."""
    path = _config_path()
    if not path:
        return AppConfig()
    data = _load_toml(path)
    return _build_config(data)


def as_dict() -> dict[str, Any]:
    """Return the effective configuration for debug/CLI display."""
    config = get_config()
    return {
        "session": {
            "rest_seconds": config.session.rest_seconds,
            "cue_window": config.session.cue_window,
            "tick_seconds": config.session.tick_seconds,
        },
        "training_load": {
            "fitness_days": config.training_load.fitness_days,
            "fatigue_days": config.training_load.fatigue_days,
            "stress_scale": config.training_load.stress_scale,
        },
        "readiness": {
            "fresh": config.readiness.fresh,
            "fatigued": config.readiness.fatigued,
        },
        "coach_model": config.coach_model,
        "source": str(_config_path() or "defaults"),
    }
