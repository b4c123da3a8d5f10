"""Collaborative multiplayer Klondike.

Two to four seated players share one game and take turns: each accepted move
passes the turn to the next seated player, and a player who lets the turn
timer run out simply loses that turn.  A :class:`TurnCoordinator` owns one
room's session and hands every resulting state to a transport collaborator.
"""
from __future__ import annotations

import heapq
import itertools
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Sequence

from deck import Card, GameState
from engine import (
    BLOCKED,
    PLAYING,
    WON,
    MoveResult,
    SolitaireEngine,
)
from rules import STANDARD_SCORING, ScoringProfile

LOGGER = logging.getLogger(__name__)

TURN_TIME_LIMIT = 30
MIN_PLAYERS = 2
MAX_PLAYERS = 4

WAITING = "waiting"
ABANDONED = "abandoned"
TERMINAL_STATUSES = (WON, BLOCKED, ABANDONED)

TIMEOUT_PASS = "timeout-pass"

# Rejection reasons on top of the engine's own.
NOT_YOUR_TURN = "not-your-turn"
NOT_SEATED = "not-seated"
NOT_DEALER = "not-dealer"
NOT_STARTED = "not-started"
ALREADY_STARTED = "already-started"
GAME_OVER = "game-over"


class SessionError(RuntimeError):
    """Raised when a room is configured or addressed inconsistently."""


# ----------------------------------------------------------------------
# Clock
# ----------------------------------------------------------------------
class ManualClock:
    """Cooperative scheduler driven by explicit :meth:`advance` calls.

    Callbacks run synchronously inside :meth:`advance_to`, in due order, so
    nothing ever fires between two statements of a move.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)
        self._queue: list[tuple[float, int, Callable[[], None]]] = []
        self._cancelled: set[int] = set()
        self._handles = itertools.count(1)

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> int:
        handle = next(self._handles)
        heapq.heappush(self._queue, (self.now() + delay, handle, callback))
        return handle

    def cancel(self, handle: int | None) -> None:
        if handle is not None:
            self._cancelled.add(handle)

    @property
    def pending(self) -> int:
        return sum(1 for _, handle, _ in self._queue if handle not in self._cancelled)

    def advance(self, units: float) -> None:
        self.advance_to(self._now + units)

    def advance_to(self, target: float) -> None:
        while self._queue and self._queue[0][0] <= target:
            due, handle, callback = heapq.heappop(self._queue)
            if handle in self._cancelled:
                self._cancelled.discard(handle)
                continue
            self._now = max(self._now, due)
            callback()
        self._now = max(self._now, target)


class MonotonicClock(ManualClock):
    """:class:`ManualClock` that catches up with ``time.monotonic`` on :meth:`poll`."""

    def __init__(self, source: Callable[[], float] = time.monotonic) -> None:
        self._source = source
        super().__init__(source())

    def poll(self) -> None:
        self.advance_to(self._source())


class TurnTimer:
    """One countdown at a time: :meth:`restart` cancels the pending one first."""

    def __init__(self, clock: ManualClock, limit: float, on_expire: Callable[[], None]) -> None:
        self.clock = clock
        self.limit = limit
        self.on_expire = on_expire
        self.started_at: float | None = None
        self._handle: int | None = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def restart(self) -> None:
        self.cancel()
        self.started_at = self.clock.now()
        self._handle = self.clock.call_later(self.limit, self._expire)

    def cancel(self) -> None:
        self.clock.cancel(self._handle)
        self._handle = None

    def remaining(self) -> int | None:
        if self._handle is None or self.started_at is None:
            return None
        left = self.limit - (self.clock.now() - self.started_at)
        return max(0, math.ceil(left))

    def _expire(self) -> None:
        self._handle = None
        self.on_expire()


# ----------------------------------------------------------------------
# Transport
# ----------------------------------------------------------------------
class InMemoryTransport:
    """Transport that records every publication in order."""

    def __init__(self) -> None:
        self.states: list[tuple[str, dict[str, Any]]] = []
        self.actions: list[tuple[str, dict[str, Any]]] = []

    def publish_state(self, room_id: str, state: dict[str, Any]) -> None:
        self.states.append((room_id, state))

    def publish_action(self, room_id: str, action: dict[str, Any]) -> None:
        self.actions.append((room_id, action))

    def latest_state(self, room_id: str) -> dict[str, Any] | None:
        for published_room, state in reversed(self.states):
            if published_room == room_id:
                return state
        return None


class LatestStateTransport:
    """Transport for long-lived processes: only the newest message per room is kept."""

    def __init__(self) -> None:
        self.states: dict[str, dict[str, Any]] = {}
        self.actions: dict[str, dict[str, Any]] = {}

    def publish_state(self, room_id: str, state: dict[str, Any]) -> None:
        self.states[room_id] = state

    def publish_action(self, room_id: str, action: dict[str, Any]) -> None:
        self.actions[room_id] = action

    def latest_state(self, room_id: str) -> dict[str, Any] | None:
        return self.states.get(room_id)

    def forget(self, room_id: str) -> None:
        self.states.pop(room_id, None)
        self.actions.pop(room_id, None)


# ----------------------------------------------------------------------
# Session
# ----------------------------------------------------------------------
@dataclass
class Session:
    """Turn bookkeeping for one room, layered over the engine's card state."""

    room_id: str
    players: list[int]
    max_players: int = MAX_PLAYERS
    turn_time_limit: int = TURN_TIME_LIMIT
    status: str = WAITING
    current_turn: int | None = None
    turn_started_at: float | None = None
    player_moves: dict[int, int] = field(default_factory=dict)

    @property
    def result(self) -> str | None:
        return self.status if self.status in TERMINAL_STATUSES else None


def _validate_players(players: Iterable[int]) -> list[int]:
    seated = list(players)
    if any(isinstance(number, bool) or not isinstance(number, int) for number in seated):
        raise SessionError("Player numbers must be integers")
    if any(number < 1 for number in seated):
        raise SessionError("Player numbers must be positive")
    if len(set(seated)) != len(seated):
        raise SessionError("Player numbers must be unique")
    if not MIN_PLAYERS <= len(seated) <= MAX_PLAYERS:
        raise SessionError(
            f"A room seats {MIN_PLAYERS}-{MAX_PLAYERS} players, got {len(seated)}"
        )
    return sorted(seated)


def next_player(players: Sequence[int], current: int | None) -> int:
    """Return the seat after *current* in ascending cyclic order."""

    ordered = sorted(players)
    if current is None:
        return ordered[0]
    for number in ordered:
        if number > current:
            return number
    return ordered[0]


class TurnCoordinator:
    """Runs one collaborative room on top of a :class:`SolitaireEngine`.

    With ``local_player`` unset the coordinator is the room authority and
    accepts requests from any seated player.  With ``local_player`` set it
    acts as that participant's replica: only that player may move, and a turn
    timeout is passed only when it is that player's turn.
    """

    def __init__(
        self,
        room_id: str,
        players: Iterable[int],
        *,
        transport: Any,
        clock: ManualClock | None = None,
        local_player: int | None = None,
        turn_time_limit: int = TURN_TIME_LIMIT,
        scoring: ScoringProfile = STANDARD_SCORING,
        engine: SolitaireEngine | None = None,
    ) -> None:
        seated = _validate_players(players)
        if local_player is not None and local_player not in seated:
            raise SessionError(f"Player {local_player} is not seated in room {room_id}")
        if turn_time_limit <= 0:
            raise SessionError("turn_time_limit must be positive")
        self.session = Session(
            room_id=room_id,
            players=seated,
            max_players=len(seated),
            turn_time_limit=turn_time_limit,
        )
        self.transport = transport
        self.clock = clock or MonotonicClock()
        self.local_player = local_player
        self.engine = engine or SolitaireEngine(scoring=scoring, clock=self.clock.now)
        self.timer = TurnTimer(self.clock, turn_time_limit, self._on_turn_timeout)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def room_id(self) -> str:
        return self.session.room_id

    @property
    def dealer(self) -> int:
        return self.session.players[0]

    @property
    def state(self) -> GameState:
        return self.engine.state

    @property
    def current_turn(self) -> int | None:
        return self.session.current_turn

    @property
    def result(self) -> str | None:
        return self.session.result

    @property
    def turn_time_remaining(self) -> int | None:
        if self.session.status != PLAYING:
            return None
        return self.timer.remaining()

    def is_turn_of(self, player_number: int) -> bool:
        return self.session.current_turn == player_number

    def snapshot(self) -> dict[str, Any]:
        """Serialise the collaborative state handed to the transport."""

        state = self.engine.state
        session = self.session
        payload = state.to_dict()
        return {
            "tableau": payload["tableau"],
            "foundations": payload["foundations"],
            "stock": payload["stock"],
            "waste": payload["waste"],
            "moves": state.moves,
            "score": state.score,
            "currentTurn": session.current_turn,
            "maxPlayers": session.max_players,
            "turnTimeLimit": session.turn_time_limit,
            "turnStartedAt": session.turn_started_at,
            "playerMoves": dict(session.player_moves),
            "status": session.status,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(
        self,
        player_number: int,
        deck: Sequence[Card] | None = None,
        *,
        seed: int | None = None,
    ) -> MoveResult:
        """Deal and publish the first state; only the lowest seat may deal."""

        if self.session.result:
            return self._reject("start", GAME_OVER)
        if self.session.status != WAITING:
            return self._reject("start", ALREADY_STARTED)
        if player_number != self.dealer or (
            self.local_player is not None and player_number != self.local_player
        ):
            return self._reject("start", NOT_DEALER)

        self.engine.start(deck, seed=seed)
        session = self.session
        session.status = PLAYING
        session.player_moves = {number: 0 for number in session.players}
        session.current_turn = self.dealer
        self._begin_turn()
        LOGGER.info("Room %s started by player %d", session.room_id, player_number)
        self.transport.publish_state(session.room_id, self.snapshot())
        return MoveResult.ok("start", self.engine.state)

    def receive_state(self, payload: Mapping[str, Any]) -> bool:
        """Mirror a collaborative state published by another participant.

        Returns ``False`` when a terminal result is already recorded: results
        are sticky and later updates cannot reopen the game.
        """

        if self.session.result:
            LOGGER.debug("Room %s ignoring state update after %s", self.room_id, self.result)
            return False

        status = payload.get("status")
        if status not in (PLAYING, WON, BLOCKED):
            raise ValueError(f"Unexpected collaborative status: {status!r}")
        current_turn = payload.get("currentTurn")
        if current_turn not in self.session.players:
            raise ValueError(f"currentTurn {current_turn!r} is not a seated player")
        state = GameState.from_dict(payload)
        raw_moves = payload.get("playerMoves") or {}
        player_moves = {int(number): int(count) for number, count in raw_moves.items()}

        previous_turn = self.session.current_turn
        self.engine.load(state, status=status)
        status = self.engine.status
        self.session.status = status
        self.session.current_turn = current_turn
        self.session.player_moves = player_moves
        if status != PLAYING:
            self.timer.cancel()
            LOGGER.info("Room %s finished remotely: %s", self.room_id, status)
        elif current_turn != previous_turn or not self.timer.active:
            self._begin_turn()
        return True

    def leave(self, player_number: int) -> None:
        """Unseat *player_number*; the room is abandoned below two players."""

        session = self.session
        if player_number not in session.players:
            raise SessionError(f"Player {player_number} is not seated in room {session.room_id}")
        session.players.remove(player_number)
        LOGGER.info("Player %d left room %s", player_number, session.room_id)
        if session.result:
            return
        if len(session.players) < MIN_PLAYERS:
            session.status = ABANDONED
            self.timer.cancel()
            LOGGER.info("Room %s abandoned", session.room_id)
        elif session.status != PLAYING:
            return
        elif session.current_turn == player_number:
            session.current_turn = next_player(session.players, player_number)
            self._begin_turn()
        self.transport.publish_state(session.room_id, self.snapshot())

    def reset(self) -> None:
        """Discard the game and its move log and wait for a new deal.

        A room that has fewer than two seated players stays abandoned.
        """

        self.timer.cancel()
        self.engine.reset()
        session = self.session
        session.status = WAITING if len(session.players) >= MIN_PLAYERS else ABANDONED
        session.current_turn = None
        session.turn_started_at = None
        session.player_moves = {}

    def close(self) -> None:
        self.timer.cancel()

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------
    def submit(self, player_number: int, move_type: str, /, **params: Any) -> MoveResult:
        """Apply *move_type* for *player_number* if it is their turn.

        Accepted moves bump the player's move counter, pass the turn on and
        publish the new collaborative state exactly once.
        """

        rejected = self._gate(player_number, move_type)
        if rejected is not None:
            return rejected

        result = self.engine.apply(move_type, **params)
        if not result:
            return result

        session = self.session
        session.player_moves[player_number] = session.player_moves.get(player_number, 0) + 1
        session.current_turn = next_player(session.players, player_number)
        if self.engine.status in (WON, BLOCKED):
            session.status = self.engine.status
            self.timer.cancel()
            LOGGER.info("Room %s finished: %s", session.room_id, session.status)
        else:
            self._begin_turn()

        self.transport.publish_action(
            session.room_id, {"playerNumber": player_number, "moveType": result.kind}
        )
        self.transport.publish_state(session.room_id, self.snapshot())
        return result

    def draw(self, player_number: int) -> MoveResult:
        return self.submit(player_number, "draw")

    def move_waste_to_tableau(self, player_number: int, column: int) -> MoveResult:
        return self.submit(player_number, "waste-to-tableau", column=column)

    def move_waste_to_foundation(self, player_number: int, suit: str) -> MoveResult:
        return self.submit(player_number, "waste-to-foundation", suit=suit)

    def move_tableau_to_tableau(
        self, player_number: int, source: int, card_index: int, target: int
    ) -> MoveResult:
        return self.submit(
            player_number,
            "tableau-to-tableau",
            source=source,
            card_index=card_index,
            target=target,
        )

    def move_tableau_to_foundation(self, player_number: int, column: int, suit: str) -> MoveResult:
        return self.submit(player_number, "tableau-to-foundation", column=column, suit=suit)

    def move_foundation_to_tableau(self, player_number: int, suit: str, column: int) -> MoveResult:
        return self.submit(player_number, "foundation-to-tableau", suit=suit, column=column)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _gate(self, player_number: int, kind: str) -> MoveResult | None:
        session = self.session
        if session.result:
            return self._reject(kind, GAME_OVER)
        if session.status != PLAYING:
            return self._reject(kind, NOT_STARTED)
        if player_number not in session.players:
            return self._reject(kind, NOT_SEATED)
        if self.local_player is not None and player_number != self.local_player:
            return self._reject(kind, NOT_YOUR_TURN)
        if session.current_turn != player_number:
            return self._reject(kind, NOT_YOUR_TURN)
        return None

    def _reject(self, kind: str, reason: str) -> MoveResult:
        LOGGER.debug("Room %s rejected %s: %s", self.room_id, kind, reason)
        return MoveResult.rejected(reason, kind=kind)

    def _begin_turn(self) -> None:
        self.session.turn_started_at = self.clock.now()
        self.timer.restart()

    def _on_turn_timeout(self) -> None:
        session = self.session
        if session.status != PLAYING or session.result:
            return
        timed_out = session.current_turn
        if self.local_player is not None and timed_out != self.local_player:
            # Only the player whose turn ran out passes it on.
            return
        session.current_turn = next_player(session.players, timed_out)
        LOGGER.info(
            "Room %s: player %s timed out, turn passes to %d",
            session.room_id,
            timed_out,
            session.current_turn,
        )
        self._begin_turn()
        self.transport.publish_action(
            session.room_id, {"playerNumber": timed_out, "moveType": TIMEOUT_PASS}
        )
        self.transport.publish_state(session.room_id, self.snapshot())


__all__ = [
    "InMemoryTransport",
    "LatestStateTransport",
    "ManualClock",
    "MonotonicClock",
    "Session",
    "SessionError",
    "TurnCoordinator",
    "TurnTimer",
    "TURN_TIME_LIMIT",
    "MIN_PLAYERS",
    "MAX_PLAYERS",
    "next_player",
]
