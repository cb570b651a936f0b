"""
Workout player: one in-flight strength session driven set by set.

The transition logic is a pure function, ``transition(session, event)``, that
returns the next `PlayerSession` together with the side effects the caller has
to carry out (persisting the snapshot, scheduling the rest countdown, audible
cues, wake-lock handling, emitting the finished set list). `WorkoutPlayer`
owns those side effects for one session and is the object the CLI talks to.

States run ``WARMUP -> WORKING <-> RESTING -> FINISHED``; FINISHED absorbs
every event.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple, Union

from .config import get_config
from .constants import DEFAULT_CUE_WINDOW, DEFAULT_REST_SECONDS
from .models import PlayerState, ValidationError, WorkoutSet, coerce_number, parse_sets, sets_to_payload
from .storage import SnapshotStore

LOGGER = logging.getLogger(__name__)

__all__ = [
    "PlayerSession",
    "Start",
    "CompleteSet",
    "Tick",
    "SkipRest",
    "Finish",
    "Transition",
    "transition",
    "WorkoutPlayer",
    "AsyncioScheduler",
    "NullWakeLock",
    "run_rest_countdown",
]


@dataclass(frozen=True)
class PlayerSession:
    """Everything the player knows; only the first three fields are persisted."""

    sets: Tuple[WorkoutSet, ...]
    state: PlayerState = PlayerState.WARMUP
    active_set_index: int = 0
    countdown: int = 0

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "sets": sets_to_payload(self.sets),
            "state": self.state.value,
            "activeSetIndex": self.active_set_index,
        }

    @classmethod
    def from_snapshot(cls, payload: Mapping[str, Any]) -> "PlayerSession":
        """Rebuild a session from a stored snapshot, raising `ValidationError` if unusable."""
        if not isinstance(payload, Mapping):
            raise ValidationError("snapshot must be an object.")
        for key in ("sets", "state", "activeSetIndex"):
            if key not in payload:
                raise ValidationError(f"snapshot is missing {key!r}.")

        sets = parse_sets(payload["sets"], field="sets")
        try:
            state = PlayerState(payload["state"])
        except ValueError as exc:
            raise ValidationError(f"unknown player state {payload['state']!r}.") from exc
        if state is PlayerState.FINISHED:
            raise ValidationError("a finished session cannot be resumed.")

        last_index = max(len(sets) - 1, 0)
        index = coerce_number(
            payload["activeSetIndex"],
            field="activeSetIndex",
            minimum=0,
            maximum=last_index,
            allow_float=False,
        )
        return cls(sets=sets, state=state, active_set_index=int(index))

    def index_of(self, set_id: str) -> int:
        for index, item in enumerate(self.sets):
            if item.id == set_id:
                return index
        raise ValidationError(f"no set with id {set_id!r} in this session.")


# Events


@dataclass(frozen=True)
class Start:
    pass


@dataclass(frozen=True)
class CompleteSet:
    set_id: str


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class SkipRest:
    pass


@dataclass(frozen=True)
class Finish:
    pass


Event = Union[Start, CompleteSet, Tick, SkipRest, Finish]


# Effects


@dataclass(frozen=True)
class PersistSnapshot:
    snapshot: Dict[str, Any] = field(hash=False)


@dataclass(frozen=True)
class ClearSnapshot:
    pass


@dataclass(frozen=True)
class ScheduleTick:
    pass


@dataclass(frozen=True)
class CancelTick:
    pass


@dataclass(frozen=True)
class PlayCue:
    final: bool = False


@dataclass(frozen=True)
class AcquireWakeLock:
    pass


@dataclass(frozen=True)
class ReleaseWakeLock:
    pass


@dataclass(frozen=True)
class EmitSets:
    sets: Tuple[WorkoutSet, ...]


Effect = Union[
    PersistSnapshot,
    ClearSnapshot,
    ScheduleTick,
    CancelTick,
    PlayCue,
    AcquireWakeLock,
    ReleaseWakeLock,
    EmitSets,
]


@dataclass(frozen=True)
class Transition:
    session: PlayerSession
    effects: Tuple[Effect, ...] = ()


def transition(
    session: PlayerSession,
    event: Event,
    *,
    rest_seconds: int = DEFAULT_REST_SECONDS,
    cue_window: int = DEFAULT_CUE_WINDOW,
) -> Transition:
    """
    Apply one event to a session without touching the outside world.

    Events whose preconditions do not hold come back as a transition with no
    effects. Completing an unknown set raises `ValidationError`.
    """
    if rest_seconds < 1:
        raise ValueError("rest_seconds must be at least 1.")
    if session.state is PlayerState.FINISHED:
        return Transition(session)

    if isinstance(event, Start):
        return _start(session)
    if isinstance(event, CompleteSet):
        return _complete_set(session, event.set_id, rest_seconds)
    if isinstance(event, Tick):
        return _tick(session, cue_window)
    if isinstance(event, SkipRest):
        return _skip_rest(session)
    if isinstance(event, Finish):
        return _finish(session)
    raise TypeError(f"Unsupported session event: {event!r}")


def _start(session: PlayerSession) -> Transition:
    if session.state is not PlayerState.WARMUP:
        return Transition(session)
    following = replace(session, state=PlayerState.WORKING)
    return Transition(following, (PersistSnapshot(following.to_snapshot()), AcquireWakeLock()))


def _complete_set(session: PlayerSession, set_id: str, rest_seconds: int) -> Transition:
    index = session.index_of(set_id)
    toggled = replace(session.sets[index], completed=not session.sets[index].completed)
    sets = session.sets[:index] + (toggled,) + session.sets[index + 1 :]

    if not toggled.completed:
        following = replace(session, sets=sets)
        return Transition(following, (PersistSnapshot(following.to_snapshot()),))

    last_index = max(len(sets) - 1, 0)
    following = replace(
        session,
        sets=sets,
        state=PlayerState.RESTING,
        countdown=rest_seconds,
        active_set_index=min(last_index, session.active_set_index + 1),
    )
    effects: List[Effect] = []
    if session.state is PlayerState.RESTING:
        effects.append(CancelTick())
    if session.state is PlayerState.WORKING:
        effects.append(ReleaseWakeLock())
    effects.append(PersistSnapshot(following.to_snapshot()))
    effects.append(ScheduleTick())
    return Transition(following, tuple(effects))


def _tick(session: PlayerSession, cue_window: int) -> Transition:
    if session.state is not PlayerState.RESTING or session.countdown <= 0:
        return Transition(session)

    remaining = session.countdown - 1
    if remaining == 0:
        following = replace(session, countdown=0, state=PlayerState.WORKING)
        return Transition(
            following,
            (
                CancelTick(),
                PlayCue(final=True),
                PersistSnapshot(following.to_snapshot()),
                AcquireWakeLock(),
            ),
        )

    following = replace(session, countdown=remaining)
    effects: List[Effect] = []
    if remaining <= cue_window:
        effects.append(PlayCue())
    effects.append(ScheduleTick())
    return Transition(following, tuple(effects))


def _skip_rest(session: PlayerSession) -> Transition:
    if session.state is not PlayerState.RESTING:
        return Transition(session)
    following = replace(session, countdown=0, state=PlayerState.WORKING)
    return Transition(
        following,
        (CancelTick(), PersistSnapshot(following.to_snapshot()), AcquireWakeLock()),
    )


def _finish(session: PlayerSession) -> Transition:
    following = replace(session, state=PlayerState.FINISHED, countdown=0)
    return Transition(
        following,
        (CancelTick(), ReleaseWakeLock(), EmitSets(following.sets), ClearSnapshot()),
    )


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, callback: Callable[[], None]) -> TimerHandle: ...


class WakeLock(Protocol):
    def acquire(self) -> None: ...

    def release(self) -> None: ...


class AsyncioScheduler:
    """Schedules countdown ticks on the running asyncio event loop."""

    def __init__(self, tick_seconds: float = 1.0) -> None:
        self.tick_seconds = tick_seconds

    def call_later(self, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(self.tick_seconds, callback)


class NullWakeLock:
    """Stand-in for platforms without a stay-awake facility."""

    def acquire(self) -> None:
        LOGGER.debug("Wake lock requested; no platform wake lock available.")

    def release(self) -> None:
        LOGGER.debug("Wake lock released.")


def terminal_bell(final: bool = False) -> None:
    sys.stderr.write("\a")
    sys.stderr.flush()


Listener = Callable[[PlayerSession], None]


class WorkoutPlayer:
    """
    Drives one session: runs `transition` and carries out the returned effects.

    On construction the snapshot store is consulted first; a usable snapshot
    resumes that session and the given ``initial_sets`` are ignored. Pass
    ``resume=False`` to start over, which overwrites whatever the slot held.
    """

    def __init__(
        self,
        initial_sets: Iterable[WorkoutSet | Mapping[str, Any]],
        *,
        store: SnapshotStore,
        rest_seconds: int | None = None,
        cue_window: int | None = None,
        scheduler: Scheduler | None = None,
        wake_lock: WakeLock | None = None,
        cue: Callable[[bool], None] | None = None,
        on_finish: Callable[[List[WorkoutSet]], None] | None = None,
        resume: bool = True,
    ) -> None:
        settings = get_config().session
        self.rest_seconds = settings.rest_seconds if rest_seconds is None else int(rest_seconds)
        if self.rest_seconds < 1:
            raise ValidationError("rest_seconds must be at least 1.")
        self.cue_window = settings.cue_window if cue_window is None else int(cue_window)
        self.store = store
        self.scheduler: Scheduler = scheduler or AsyncioScheduler(settings.tick_seconds)
        self.wake_lock: WakeLock = wake_lock or NullWakeLock()
        self.cue = cue or terminal_bell
        self.on_finish = on_finish
        self._listeners: List[Listener] = []
        self._tick_handle: Optional[TimerHandle] = None
        self._wake_lock_held = False

        resumed = self._load_snapshot() if resume else None
        if resumed is None:
            self._session = PlayerSession(sets=parse_sets(list(initial_sets)))
            self.store.save(self._session.to_snapshot())
        else:
            self._session = resumed
            self._resume()

    @property
    def session(self) -> PlayerSession:
        return self._session

    @property
    def state(self) -> PlayerState:
        return self._session.state

    @property
    def sets(self) -> Tuple[WorkoutSet, ...]:
        return self._session.sets

    @property
    def countdown(self) -> int:
        return self._session.countdown

    @property
    def active_set_index(self) -> int:
        return self._session.active_set_index

    @property
    def has_pending_tick(self) -> bool:
        return self._tick_handle is not None

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def start(self) -> PlayerSession:
        return self.dispatch(Start())

    def complete_set(self, set_id: str) -> PlayerSession:
        return self.dispatch(CompleteSet(set_id))

    def skip_rest(self) -> PlayerSession:
        return self.dispatch(SkipRest())

    def finish(self) -> PlayerSession:
        return self.dispatch(Finish())

    def dispatch(self, event: Event) -> PlayerSession:
        result = transition(
            self._session,
            event,
            rest_seconds=self.rest_seconds,
            cue_window=self.cue_window,
        )
        if not result.effects and result.session == self._session:
            LOGGER.debug("Ignored %s in state %s", type(event).__name__, self._session.state.value)
            return self._session
        self._session = result.session
        for effect in result.effects:
            self._apply(effect)
        for listener in list(self._listeners):
            listener(self._session)
        self._end_stalled_rest()
        return self._session

    def close(self) -> None:
        """Tear down: drop any pending tick and let go of the wake lock."""
        self._cancel_tick()
        self._release_wake_lock()

    def _load_snapshot(self) -> Optional[PlayerSession]:
        payload = self.store.load()
        if payload is None:
            return None
        try:
            return PlayerSession.from_snapshot(payload)
        except ValidationError as exc:
            LOGGER.info("Discarding unusable session snapshot: %s", exc)
            return None

    def _resume(self) -> None:
        # The snapshot carries no countdown, so a resumed rest starts over.
        if self._session.state is PlayerState.RESTING:
            self._session = replace(self._session, countdown=self.rest_seconds)
            self._schedule_tick()
            self._end_stalled_rest()
        elif self._session.state is PlayerState.WORKING:
            self._acquire_wake_lock()

    def _apply(self, effect: Effect) -> None:
        if isinstance(effect, PersistSnapshot):
            self.store.save(effect.snapshot)
        elif isinstance(effect, ClearSnapshot):
            self.store.clear()
        elif isinstance(effect, CancelTick):
            self._cancel_tick()
        elif isinstance(effect, ScheduleTick):
            self._schedule_tick()
        elif isinstance(effect, PlayCue):
            self._play_cue(effect.final)
        elif isinstance(effect, AcquireWakeLock):
            self._acquire_wake_lock()
        elif isinstance(effect, ReleaseWakeLock):
            self._release_wake_lock()
        elif isinstance(effect, EmitSets):
            if self.on_finish is not None:
                self.on_finish(list(effect.sets))
        else:  # pragma: no cover - exhaustive over Effect
            raise TypeError(f"Unsupported session effect: {effect!r}")

    def _end_stalled_rest(self) -> None:
        # A rest without a pending tick would never end on its own.
        if self._session.state is PlayerState.RESTING and self._tick_handle is None:
            LOGGER.warning("Rest countdown is not running; moving on to the next set.")
            self.dispatch(SkipRest())

    def _on_tick(self) -> None:
        self._tick_handle = None
        self.dispatch(Tick())

    def _schedule_tick(self) -> None:
        self._cancel_tick()
        try:
            self._tick_handle = self.scheduler.call_later(self._on_tick)
        except Exception as exc:
            LOGGER.warning("Could not schedule rest countdown: %s", exc)

    def _cancel_tick(self) -> None:
        handle, self._tick_handle = self._tick_handle, None
        if handle is None:
            return
        try:
            handle.cancel()
        except Exception as exc:
            LOGGER.debug("Cancelling rest countdown failed: %s", exc)

    def _play_cue(self, final: bool) -> None:
        try:
            self.cue(final)
        except Exception as exc:
            LOGGER.debug("Audible cue failed: %s", exc)

    def _acquire_wake_lock(self) -> None:
        if self._wake_lock_held:
            return
        try:
            self.wake_lock.acquire()
        except Exception as exc:
            LOGGER.debug("Wake lock unavailable: %s", exc)
            return
        self._wake_lock_held = True

    def _release_wake_lock(self) -> None:
        if not self._wake_lock_held:
            return
        self._wake_lock_held = False
        try:
            self.wake_lock.release()
        except Exception as exc:
            LOGGER.debug("Releasing wake lock failed: %s", exc)


async def run_rest_countdown(player: WorkoutPlayer) -> PlayerSession:
    """Suspend until the player leaves RESTING (countdown expiry or skip)."""
    if player.state is not PlayerState.RESTING:
        return player.session

    done: asyncio.Future[PlayerSession] = asyncio.get_running_loop().create_future()

    def _watch(session: PlayerSession) -> None:
        if session.state is not PlayerState.RESTING and not done.done():
            done.set_result(session)

    player.add_listener(_watch)
    try:
        return await done
    finally:
        player.remove_listener(_watch)
