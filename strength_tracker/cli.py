from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

import typer

from .coach import CoachClient, Equipment, Exercise
from .config import as_dict as config_as_dict
from .env import get_env
from .models import PlayerState, ValidationError, WorkoutSet, parse_iso_date
from .services import (
    LogResult,
    build_export_dataframe,
    build_load_summary,
    build_workout_log,
    parse_set_specs,
    render_load_table,
)
from .session import PlayerSession, WorkoutPlayer, run_rest_countdown
from .storage import JsonSnapshotStore, append_log, get_log_by_id, load_workout_logs

app = typer.Typer(help="Log strength sessions, run a live workout, and track training load.")
session_app = typer.Typer(help="Run one workout set by set with rest countdowns.")
app.add_typer(session_app, name="session")


@app.callback()
def main() -> None:
    logging.basicConfig(level=(get_env("LOG_LEVEL") or "WARNING").upper())


def _fail(message: str, *, code: int = 1) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _parse_now(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        day = parse_iso_date(value, field="now")
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    return datetime(day.year, day.month, day.day)


@app.command()
def log(
    exercise: str = typer.Option(
        ...,
        "--exercise",
        "-e",
        help="Exercise identifier (e.g. 'back-squat').",
    ),
    sets: list[str] = typer.Option(
        [],
        "--set",
        "-s",
        help="Set as WEIGHTxREPS, or WEIGHTxREPSxCOUNT for repeated sets. Repeatable.",
    ),
    date: Optional[str] = typer.Option(
        None,
        "--date",
        "-d",
        help="Workout timestamp in ISO format (defaults to now).",
    ),
    log_id: Optional[str] = typer.Option(
        None,
        "--id",
        help="Explicit workout id (random when omitted).",
    ),
) -> None:
    """
    Record a finished workout in the history.

    Examples:
        python -m strength_tracker log --exercise back-squat --set 100x5x3
        python -m strength_tracker log -e bench --set 80x8 --set 85x6 --date 2024-05-01
    """
    try:
        parsed_sets = parse_set_specs(sets, completed=True)
        workout = build_workout_log(parsed_sets, exercise_id=exercise, logged_at=date, log_id=log_id)
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    try:
        if get_log_by_id(workout.id) is not None:
            _fail(f"A workout with id {workout.id!r} is already logged.")
        append_log(workout)
    except ValueError as exc:
        _fail(f"Could not store workout: {exc}")

    typer.echo(LogResult(log=workout).confirmation)


@app.command()
def load(
    now: Optional[str] = typer.Option(
        None,
        "--now",
        help="Last day of the series (YYYY-MM-DD, defaults to today in UTC).",
    ),
    days: int = typer.Option(
        14,
        "--days",
        min=0,
        help="Number of most recent days to print (0 prints the whole series).",
    ),
    export: Optional[Path] = typer.Option(
        None,
        "--export",
        help="Write the full daily series to this CSV file.",
    ),
) -> None:
    """
    Show fitness, fatigue and form derived from the workout history.
    """
    reference = _parse_now(now)
    try:
        logs = load_workout_logs()
    except ValueError as exc:
        _fail(f"Could not read workout history: {exc}")

    summary = build_load_summary(logs, reference)
    if not summary.points:
        typer.echo("No workouts logged yet.")
        raise typer.Exit(code=0)

    shown = summary.points[-days:] if days else summary.points
    typer.echo(render_load_table(shown))
    latest = summary.latest
    start, end = summary.date_range
    typer.echo(
        f"Latest ({latest.date.isoformat()}): fitness {latest.fitness:.2f}, "
        f"fatigue {latest.fatigue:.2f}, form {latest.form:+.2f} -> {summary.readiness}. "
        f"{summary.workouts} workouts, {start.isoformat()} to {end.isoformat()}."
    )

    if export is not None:
        frame = build_export_dataframe(logs, reference)
        export.parent.mkdir(parents=True, exist_ok=True)
        frame.to_csv(export, index=False)
        typer.echo(f"Exported {len(frame)} days to {export}")


@app.command("config")
def config_show() -> None:
    """
    Show the effective configuration (session timing, load constants).
    """
    config = config_as_dict()
    typer.echo(f"Config source: {config.get('source')}")
    session = config.get("session", {})
    typer.echo(
        f"Session: rest={session.get('rest_seconds')}s, cue window={session.get('cue_window')}, "
        f"tick={session.get('tick_seconds')}s"
    )
    load_cfg = config.get("training_load", {})
    typer.echo(
        f"Training load: fitness={load_cfg.get('fitness_days')}d, "
        f"fatigue={load_cfg.get('fatigue_days')}d, stress scale={load_cfg.get('stress_scale')}"
    )
    readiness = config.get("readiness", {})
    typer.echo(f"Readiness: fresh>={readiness.get('fresh')}, fatigued<={readiness.get('fatigued')}")
    typer.echo(f"Coach model: {config.get('coach_model')}")


@app.command()
def substitute(
    exercise: str = typer.Option(..., "--exercise", "-e", help="Exercise you planned to do."),
    target: str = typer.Option(..., "--target", "-t", help="Target muscle group."),
    requires: list[str] = typer.Option([], "--requires", help="Equipment the exercise needs. Repeatable."),
    have: list[str] = typer.Option([], "--have", help="Equipment you have available. Repeatable."),
) -> None:
    """
    Ask the AI coach for a substitute that fits the equipment you have.
    """
    planned = Exercise(
        id=exercise.strip().lower().replace(" ", "-"),
        name=exercise.strip(),
        target_muscle=target.strip(),
        required_equipment=[item.strip() for item in requires if item.strip()],
    )
    available = [Equipment(id=str(index), name=name.strip()) for index, name in enumerate(have, 1) if name.strip()]
    typer.echo(CoachClient().generate_substitute(planned, available))


def _describe(session: PlayerSession) -> str:
    lines = [f"State: {session.state.value}"]
    if session.state is PlayerState.RESTING:
        lines[0] += f" ({session.countdown}s left)"
    for index, item in enumerate(session.sets):
        marker = ">" if index == session.active_set_index else " "
        check = "x" if item.completed else " "
        lines.append(f"{marker} [{check}] set {item.id}: {item.weight:g} x {item.reps}")
    return "\n".join(lines)


def _print_countdown(session: PlayerSession) -> None:
    if session.state is PlayerState.RESTING:
        typer.echo(f"\rRest: {session.countdown:3d}s", nl=False)
    else:
        typer.echo("\rRest over, next set!   ")


def _has_active_session(store: JsonSnapshotStore) -> bool:
    payload = store.load()
    if payload is None:
        return False
    try:
        PlayerSession.from_snapshot(payload)
    except ValidationError:
        return False
    return True


def _run_with_player(
    action: Callable[[WorkoutPlayer], object],
    *,
    initial_sets: Optional[list[WorkoutSet]] = None,
    rest_seconds: Optional[int] = None,
    on_finish: Optional[Callable[[list[WorkoutSet]], None]] = None,
    wait: bool = False,
) -> PlayerSession:
    store = JsonSnapshotStore()
    fresh = initial_sets is not None
    if not fresh and not _has_active_session(store):
        _fail("No active session. Start one with 'session new --set WEIGHTxREPS'.")

    async def _drive() -> PlayerSession:
        player = WorkoutPlayer(
            initial_sets or [],
            store=store,
            rest_seconds=rest_seconds,
            on_finish=on_finish,
            resume=not fresh,
        )
        try:
            action(player)
            if wait and player.state is PlayerState.RESTING:
                player.add_listener(_print_countdown)
                await run_rest_countdown(player)
            return player.session
        finally:
            player.close()

    try:
        return asyncio.run(_drive())
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc


@session_app.command("new")
def session_new(
    sets: list[str] = typer.Option(
        [],
        "--set",
        "-s",
        help="Planned set as WEIGHTxREPS or WEIGHTxREPSxCOUNT. Repeatable.",
    ),
) -> None:
    """
    Plan a new session in warm-up. Replaces any session already in progress.
    """
    try:
        planned = parse_set_specs(sets)
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    session = _run_with_player(lambda player: None, initial_sets=planned)
    typer.echo(_describe(session))


@session_app.command("start")
def session_start() -> None:
    """
    Finish warming up and begin the first working set.
    """
    session = _run_with_player(lambda player: player.start())
    typer.echo(_describe(session))


@session_app.command("status")
def session_status() -> None:
    """
    Show the state of the session in progress.
    """
    session = _run_with_player(lambda player: None)
    typer.echo(_describe(session))


@session_app.command("complete")
def session_complete(
    set_id: str = typer.Argument(..., help="Id of the set to tick (or untick)."),
    wait: bool = typer.Option(
        True,
        "--wait/--no-wait",
        help="Stay in the foreground until the rest countdown ends.",
    ),
    rest: Optional[int] = typer.Option(
        None,
        "--rest",
        min=1,
        help="Rest duration in seconds (defaults to configuration).",
    ),
) -> None:
    """
    Toggle a set's completion; completing it starts the rest countdown.
    """
    session = _run_with_player(lambda player: player.complete_set(set_id), rest_seconds=rest, wait=wait)
    typer.echo(_describe(session))


@session_app.command("skip-rest")
def session_skip_rest() -> None:
    """
    Cut the current rest short and go straight to the next set.
    """
    session = _run_with_player(lambda player: player.skip_rest())
    typer.echo(_describe(session))


@session_app.command("finish")
def session_finish(
    exercise: str = typer.Option(..., "--exercise", "-e", help="Exercise identifier for the history."),
) -> None:
    """
    End the session and add the completed sets to the workout history.
    """
    if not exercise.strip():
        raise typer.BadParameter("exercise is required.")
    finished: list[list[WorkoutSet]] = []
    _run_with_player(lambda player: player.finish(), on_finish=finished.append)
    if not finished:
        _fail("Session was already finished.")

    try:
        workout = build_workout_log(finished[0], exercise_id=exercise, completed_only=True)
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    if not workout.sets:
        typer.echo("Session finished with no completed sets; nothing added to the history.")
        return
    try:
        append_log(workout)
    except ValueError as exc:
        _fail(f"Could not store workout: {exc}")
    typer.echo(LogResult(log=workout).confirmation)
