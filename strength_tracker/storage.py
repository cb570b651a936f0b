from __future__ import annotations

import json
import logging
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Iterable, List, Mapping, Optional, Protocol

from .constants import LOGS_FILENAME, SNAPSHOT_FILENAME
from .env import get_env
from .models import ValidationError, WorkoutLog

DEFAULT_DATA_DIR = Path(__file__).resolve().parent.parent / "data"
LOGGER = logging.getLogger(__name__)


def _data_dir() -> Path:
    override = get_env("DATA_DIR")
    base = Path(override).expanduser() if override else DEFAULT_DATA_DIR
    base.mkdir(parents=True, exist_ok=True)
    return base


def _logs_file() -> Path:
    override = get_env("LOGS_FILE")
    if override:
        target = Path(override).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        return target
    return _data_dir() / LOGS_FILENAME


def _snapshot_file() -> Path:
    override = get_env("SNAPSHOT_FILE")
    if override:
        target = Path(override).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        return target
    return _data_dir() / SNAPSHOT_FILENAME


def _write_atomic(target: Path, payload: str) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with NamedTemporaryFile("w", dir=target.parent, delete=False, encoding="utf-8") as tmp:
        tmp.write(payload)
        temp_path = Path(tmp.name)
    temp_path.replace(target)


def _save_logs_to_file(logs_file: Path, logs: Iterable[Any]) -> None:
    payload = json.dumps(list(logs), indent=2, sort_keys=True) + "\n"
    _write_atomic(logs_file, payload)


def _load_logs_from_file(logs_file: Path) -> List[Any]:
    if not logs_file.exists():
        logs_file.parent.mkdir(parents=True, exist_ok=True)
        logs_file.write_text("[]\n", encoding="utf-8")
        return []

    raw = logs_file.read_text(encoding="utf-8").strip() or "[]"
    try:
        logs = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Could not parse {logs_file}: {exc}") from exc

    if not isinstance(logs, list):
        raise ValueError(f"{logs_file} must contain a JSON list")
    return logs


def load_logs() -> List[Any]:
    """Raw history records exactly as stored."""
    return _load_logs_from_file(_logs_file())


def save_logs(logs: Iterable[Any]) -> None:
    _save_logs_to_file(_logs_file(), logs)


def append_log(log: WorkoutLog | Mapping[str, Any]) -> List[Any]:
    """Append one finished workout to the history file."""
    record = log.to_dict() if isinstance(log, WorkoutLog) else dict(log)
    logs = load_logs()
    logs.append(record)
    save_logs(logs)
    return logs


def load_workout_logs() -> List[WorkoutLog]:
    """History parsed into `WorkoutLog` records; malformed rows are skipped."""
    parsed: List[WorkoutLog] = []
    for index, record in enumerate(load_logs()):
        try:
            parsed.append(WorkoutLog.from_dict(record))
        except ValidationError as exc:
            LOGGER.warning("Skipping malformed workout log #%d: %s", index, exc)
    return parsed


def get_log_by_id(log_id: str) -> dict[str, Any] | None:
    target = str(log_id)
    for record in load_logs():
        if isinstance(record, dict) and str(record.get("id")) == target:
            return record
    return None


class SnapshotStore(Protocol):
    """Single-slot persistence for the in-flight session."""

    def load(self) -> Optional[dict[str, Any]]: ...

    def save(self, snapshot: Mapping[str, Any]) -> None: ...

    def clear(self) -> None: ...


def encode_snapshot(snapshot: Mapping[str, Any]) -> str:
    return json.dumps(dict(snapshot), sort_keys=True)


def decode_snapshot(raw: str | None) -> Optional[dict[str, Any]]:
    """Parse snapshot text, treating anything unusable as an empty slot."""
    if raw is None or not raw.strip():
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        LOGGER.debug("Discarding unreadable session snapshot: %s", exc)
        return None
    if not isinstance(payload, dict):
        LOGGER.debug("Discarding session snapshot that is not an object.")
        return None
    return payload


class JsonSnapshotStore:
    """Snapshot slot backed by one JSON file; the last writer wins."""

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path).expanduser() if path else _snapshot_file()

    def load(self) -> Optional[dict[str, Any]]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            LOGGER.debug("Could not read session snapshot %s: %s", self.path, exc)
            return None
        return decode_snapshot(raw)

    def save(self, snapshot: Mapping[str, Any]) -> None:
        _write_atomic(self.path, encode_snapshot(snapshot) + "\n")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class MemorySnapshotStore:
    """In-process snapshot slot, holding the same JSON text a file would."""

    def __init__(self, raw: str | None = None) -> None:
        self.raw = raw

    def load(self) -> Optional[dict[str, Any]]:
        return decode_snapshot(self.raw)

    def save(self, snapshot: Mapping[str, Any]) -> None:
        self.raw = encode_snapshot(snapshot)

    def clear(self) -> None:
        self.raw = None
