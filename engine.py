"""Klondike game engine: the seven moves, the move log and undo."""
from __future__ import annotations

import inspect
import logging
import random
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Sequence

from deck import DECK_SIZE, SUITS, TABLEAU_COLUMNS, Card, GameState, create_deck, deal_cards
from ledger import GameOutcome, LedgerError, PlayerStats, record_outcome
from rules import (
    STANDARD_SCORING,
    ScoringProfile,
    can_auto_complete,
    can_place_on_foundation,
    can_place_on_tableau,
    check_if_blocked,
    check_win_condition,
    is_movable_run,
)

LOGGER = logging.getLogger(__name__)

IDLE = "idle"
PLAYING = "playing"
WON = "won"
BLOCKED = "blocked"

TABLEAU_TO_TABLEAU = "tableau-to-tableau"
TABLEAU_TO_FOUNDATION = "tableau-to-foundation"
WASTE_TO_TABLEAU = "waste-to-tableau"
WASTE_TO_FOUNDATION = "waste-to-foundation"
STOCK_TO_WASTE = "stock-to-waste"
FOUNDATION_TO_TABLEAU = "foundation-to-tableau"
RECYCLE_STOCK = "recycle-stock"

MOVE_KINDS = (
    TABLEAU_TO_TABLEAU,
    TABLEAU_TO_FOUNDATION,
    WASTE_TO_TABLEAU,
    WASTE_TO_FOUNDATION,
    STOCK_TO_WASTE,
    FOUNDATION_TO_TABLEAU,
    RECYCLE_STOCK,
)

# Rejection reasons.
NOT_PLAYING = "not-playing"
EMPTY_STOCK = "empty-stock"
NOTHING_TO_RECYCLE = "nothing-to-recycle"
EMPTY_SOURCE = "empty-source"
INVALID_PILE = "invalid-pile"
ILLEGAL_PLACEMENT = "illegal-placement"
NOT_A_RUN = "not-a-run"
NOTHING_TO_UNDO = "nothing-to-undo"
NOT_SAFE = "not-safe"
UNKNOWN_MOVE = "unknown-move"
INVALID_ARGUMENTS = "invalid-arguments"

AUTO_COMPLETE_NOT_SAFE = (
    "Cannot auto-complete yet! Ensure all tableau cards are face-up and stock is empty."
)


@dataclass(frozen=True)
class Flip:
    """A tableau card turned face-up as a side effect of a move."""

    pile: str
    card_id: str


@dataclass(frozen=True)
class Move:
    """Move log entry.

    ``cards`` holds the moved cards exactly as they sat in the source pile, and
    ``previous_score`` the score before the move, so undo restores both
    verbatim instead of recomputing them.
    """

    kind: str
    source: str
    destination: str
    cards: tuple[Card, ...]
    previous_score: int
    flip: Flip | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "from": self.source,
            "to": self.destination,
            "cards": [card.to_dict() for card in self.cards],
            "flipCard": (
                {"pile": self.flip.pile, "cardId": self.flip.card_id} if self.flip else None
            ),
            "previousScore": self.previous_score,
        }


@dataclass(frozen=True)
class MoveResult:
    """Outcome of a move request.

    Rejections never raise and never touch the state; the result is falsy so
    callers that only care about success can keep treating it as a boolean.
    """

    accepted: bool
    kind: str | None = None
    reason: str | None = None
    message: str = ""
    state: GameState | None = None

    def __bool__(self) -> bool:
        return self.accepted

    @classmethod
    def ok(cls, kind: str, state: GameState, message: str = "") -> "MoveResult":
        return cls(accepted=True, kind=kind, state=state, message=message)

    @classmethod
    def rejected(cls, reason: str, message: str = "", kind: str | None = None) -> "MoveResult":
        return cls(accepted=False, kind=kind, reason=reason, message=message)


def tableau_pile(index: int) -> str:
    return f"tableau-{index}"


def foundation_pile(suit: str) -> str:
    return f"foundation-{suit}"


def _pile_suffix(pile: str) -> str:
    return pile.split("-", 1)[1]


def _is_column(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < TABLEAU_COLUMNS


def _is_suit(value: Any) -> bool:
    return isinstance(value, str) and value in SUITS


def _expose_top(state: GameState, index: int) -> tuple[GameState, Flip | None]:
    column = state.tableau[index]
    if not column or column[-1].face_up:
        return state, None
    top = column[-1]
    state = state.with_column(index, column[:-1] + (top.turned(True),))
    return state, Flip(tableau_pile(index), top.id)


def _hide_flipped(state: GameState, flip: Flip) -> GameState:
    index = int(_pile_suffix(flip.pile))
    column = list(state.tableau[index])
    for position, card in enumerate(column):
        if card.id == flip.card_id:
            column[position] = card.turned(False)
            break
    return state.with_column(index, column)


class SolitaireEngine:
    """Owns the authoritative :class:`GameState` for one game.

    Every move validates through :mod:`rules`, builds a new state, appends a
    :class:`Move` to the log, applies the scoring delta and then re-checks for
    a win or a blocked position.  The lifecycle is
    ``idle -> playing -> {won, blocked}``; :meth:`reset` returns to idle.
    """

    def __init__(
        self,
        *,
        scoring: ScoringProfile = STANDARD_SCORING,
        rng: random.Random | None = None,
        ledger: Any = None,
        stats: PlayerStats | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.scoring = scoring
        self.rng = rng
        self.ledger = ledger
        self.stats = stats or PlayerStats()
        self.clock = clock
        self.state = GameState()
        self.status = IDLE
        self.history: list[Move] = []
        self.seed: int | None = None
        self.message = "Press Start to begin!"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self, deck: Sequence[Card] | None = None, *, seed: int | None = None) -> GameState:
        """Deal a new game and enter the ``playing`` phase."""

        if deck is None:
            deck = create_deck(self.rng, seed=seed)
        state = deal_cards(deck)
        self.seed = seed
        self.state = replace(state, start_time=self.clock())
        self.history = []
        self.status = PLAYING
        self.message = "Good luck!"
        LOGGER.info("Dealt new game (seed=%s)", seed)
        return self.state

    def load(self, state: GameState, *, status: str = PLAYING) -> None:
        """Adopt *state* as the current position with an empty move log."""

        self.state = state
        self.history = []
        self.status = status
        if status == PLAYING:
            self._check_terminal()

    def reset(self) -> None:
        self.state = GameState()
        self.history = []
        self.status = IDLE
        self.seed = None
        self.message = "Press Start to begin!"

    def tick(self, now: float | None = None) -> int:
        """Refresh ``elapsed_time`` from the clock while a game is running."""

        if self.status != PLAYING or self.state.start_time is None:
            return self.state.elapsed_time
        now = self.clock() if now is None else now
        elapsed = max(0, int(now - self.state.start_time))
        self.state = replace(self.state, elapsed_time=elapsed)
        return elapsed

    @property
    def is_playing(self) -> bool:
        return self.status == PLAYING

    @property
    def can_undo(self) -> bool:
        return bool(self.history) and self.status == PLAYING

    @property
    def can_auto_complete(self) -> bool:
        return self.status == PLAYING and can_auto_complete(self.state)

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------
    def draw(self) -> MoveResult:
        """Draw from the stock, or recycle the waste when the stock is empty."""

        if self.status == PLAYING and not self.state.stock:
            return self.recycle_stock()
        return self.draw_from_stock()

    def draw_from_stock(self) -> MoveResult:
        rejected = self._require_playing(STOCK_TO_WASTE)
        if rejected is not None:
            return rejected
        state = self.state
        if not state.stock:
            return self._reject(STOCK_TO_WASTE, EMPTY_STOCK)

        card = state.stock[0]
        new_state = replace(
            state,
            stock=state.stock[1:],
            waste=(card.turned(True),) + state.waste,
        )
        return self._commit(new_state, Move(STOCK_TO_WASTE, "stock", "waste", (card,), state.score))

    def recycle_stock(self) -> MoveResult:
        rejected = self._require_playing(RECYCLE_STOCK)
        if rejected is not None:
            return rejected
        state = self.state
        if state.stock or not state.waste:
            return self._reject(RECYCLE_STOCK, NOTHING_TO_RECYCLE)

        stock = tuple(card.turned(False) for card in reversed(state.waste))
        new_state = replace(state, stock=stock, waste=())
        return self._commit(new_state, Move(RECYCLE_STOCK, "waste", "stock", state.waste, state.score))

    def move_waste_to_tableau(self, column: int) -> MoveResult:
        rejected = self._require_playing(WASTE_TO_TABLEAU)
        if rejected is not None:
            return rejected
        if not _is_column(column):
            return self._reject(WASTE_TO_TABLEAU, INVALID_PILE)
        state = self.state
        card = state.waste_top
        if card is None:
            return self._reject(WASTE_TO_TABLEAU, EMPTY_SOURCE)
        if not can_place_on_tableau(card, state.tableau[column]):
            return self._reject(WASTE_TO_TABLEAU, ILLEGAL_PLACEMENT)

        new_state = replace(state, waste=state.waste[1:])
        new_state = new_state.with_column(column, state.tableau[column] + (card,))
        move = Move(WASTE_TO_TABLEAU, "waste", tableau_pile(column), (card,), state.score)
        return self._commit(new_state, move)

    def move_waste_to_foundation(self, suit: str) -> MoveResult:
        rejected = self._require_playing(WASTE_TO_FOUNDATION)
        if rejected is not None:
            return rejected
        if not _is_suit(suit):
            return self._reject(WASTE_TO_FOUNDATION, INVALID_PILE)
        state = self.state
        card = state.waste_top
        if card is None:
            return self._reject(WASTE_TO_FOUNDATION, EMPTY_SOURCE)
        if not can_place_on_foundation(card, state.foundation(suit), suit):
            return self._reject(WASTE_TO_FOUNDATION, ILLEGAL_PLACEMENT)

        new_state = replace(state, waste=state.waste[1:])
        new_state = new_state.with_foundation(suit, state.foundation(suit) + (card,))
        move = Move(WASTE_TO_FOUNDATION, "waste", foundation_pile(suit), (card,), state.score)
        return self._commit(new_state, move)

    def move_tableau_to_tableau(self, source: int, card_index: int, target: int) -> MoveResult:
        rejected = self._require_playing(TABLEAU_TO_TABLEAU)
        if rejected is not None:
            return rejected
        if not (_is_column(source) and _is_column(target)) or source == target:
            return self._reject(TABLEAU_TO_TABLEAU, INVALID_PILE)
        state = self.state
        from_column = state.tableau[source]
        if not isinstance(card_index, int) or isinstance(card_index, bool):
            return self._reject(TABLEAU_TO_TABLEAU, INVALID_ARGUMENTS)
        if not 0 <= card_index < len(from_column):
            return self._reject(TABLEAU_TO_TABLEAU, EMPTY_SOURCE)

        run = from_column[card_index:]
        if not is_movable_run(run):
            return self._reject(TABLEAU_TO_TABLEAU, NOT_A_RUN)
        if not can_place_on_tableau(run[0], state.tableau[target]):
            return self._reject(TABLEAU_TO_TABLEAU, ILLEGAL_PLACEMENT)

        new_state = state.with_column(source, from_column[:card_index])
        new_state = new_state.with_column(target, state.tableau[target] + run)
        new_state, flip = _expose_top(new_state, source)
        move = Move(
            TABLEAU_TO_TABLEAU,
            tableau_pile(source),
            tableau_pile(target),
            run,
            state.score,
            flip,
        )
        return self._commit(new_state, move)

    def move_tableau_to_foundation(self, column: int, suit: str) -> MoveResult:
        rejected = self._require_playing(TABLEAU_TO_FOUNDATION)
        if rejected is not None:
            return rejected
        if not (_is_column(column) and _is_suit(suit)):
            return self._reject(TABLEAU_TO_FOUNDATION, INVALID_PILE)
        state = self.state
        cards = state.tableau[column]
        if not cards:
            return self._reject(TABLEAU_TO_FOUNDATION, EMPTY_SOURCE)
        card = cards[-1]
        if not card.face_up or not can_place_on_foundation(card, state.foundation(suit), suit):
            return self._reject(TABLEAU_TO_FOUNDATION, ILLEGAL_PLACEMENT)

        new_state = state.with_column(column, cards[:-1])
        new_state = new_state.with_foundation(suit, state.foundation(suit) + (card,))
        new_state, flip = _expose_top(new_state, column)
        move = Move(
            TABLEAU_TO_FOUNDATION,
            tableau_pile(column),
            foundation_pile(suit),
            (card,),
            state.score,
            flip,
        )
        return self._commit(new_state, move)

    def move_foundation_to_tableau(self, suit: str, column: int) -> MoveResult:
        rejected = self._require_playing(FOUNDATION_TO_TABLEAU)
        if rejected is not None:
            return rejected
        if not (_is_column(column) and _is_suit(suit)):
            return self._reject(FOUNDATION_TO_TABLEAU, INVALID_PILE)
        state = self.state
        foundation = state.foundation(suit)
        if not foundation:
            return self._reject(FOUNDATION_TO_TABLEAU, EMPTY_SOURCE)
        card = foundation[-1]
        if not can_place_on_tableau(card, state.tableau[column]):
            return self._reject(FOUNDATION_TO_TABLEAU, ILLEGAL_PLACEMENT)

        new_state = state.with_foundation(suit, foundation[:-1])
        new_state = new_state.with_column(column, state.tableau[column] + (card,))
        move = Move(
            FOUNDATION_TO_TABLEAU,
            foundation_pile(suit),
            tableau_pile(column),
            (card,),
            state.score,
        )
        return self._commit(new_state, move)

    def move_arguments(self, move_type: str) -> frozenset[str] | None:
        """Return the keyword arguments *move_type* takes, or ``None`` if unknown."""

        handler = self._handlers().get(move_type)
        if handler is None:
            return None
        return frozenset(inspect.signature(handler).parameters)

    def apply(self, move_type: str, /, **params: Any) -> MoveResult:
        """Dispatch a move by its log name, e.g. ``apply("waste-to-tableau", column=2)``.

        ``"draw"`` is accepted as the stock-click shortcut.  Unknown names and
        arguments that do not fit the move are rejected, not raised.
        """

        handler = self._handlers().get(move_type)
        if handler is None:
            return self._reject(move_type, UNKNOWN_MOVE)
        try:
            inspect.signature(handler).bind(**params)
        except TypeError:
            return self._reject(move_type, INVALID_ARGUMENTS)
        return handler(**params)

    def _handlers(self) -> dict[str, Callable[..., MoveResult]]:
        return {
            "draw": self.draw,
            STOCK_TO_WASTE: self.draw_from_stock,
            RECYCLE_STOCK: self.recycle_stock,
            WASTE_TO_TABLEAU: self.move_waste_to_tableau,
            WASTE_TO_FOUNDATION: self.move_waste_to_foundation,
            TABLEAU_TO_TABLEAU: self.move_tableau_to_tableau,
            TABLEAU_TO_FOUNDATION: self.move_tableau_to_foundation,
            FOUNDATION_TO_TABLEAU: self.move_foundation_to_tableau,
        }

    # ------------------------------------------------------------------
    # Undo
    # ------------------------------------------------------------------
    def undo_move(self) -> MoveResult:
        """Invert the most recent move using its log entry."""

        if self.status != PLAYING:
            return self._reject("undo", NOT_PLAYING)
        if not self.history:
            return self._reject("undo", NOTHING_TO_UNDO)

        move = self.history.pop()
        state = self.state
        if move.flip is not None:
            state = _hide_flipped(state, move.flip)

        count = len(move.cards)
        if move.kind == STOCK_TO_WASTE:
            state = replace(state, stock=move.cards + state.stock, waste=state.waste[1:])
        elif move.kind == RECYCLE_STOCK:
            state = replace(state, stock=(), waste=move.cards)
        elif move.kind == WASTE_TO_TABLEAU:
            index = int(_pile_suffix(move.destination))
            state = state.with_column(index, state.tableau[index][:-count])
            state = replace(state, waste=move.cards + state.waste)
        elif move.kind == WASTE_TO_FOUNDATION:
            suit = _pile_suffix(move.destination)
            state = state.with_foundation(suit, state.foundation(suit)[:-count])
            state = replace(state, waste=move.cards + state.waste)
        elif move.kind == TABLEAU_TO_TABLEAU:
            source = int(_pile_suffix(move.source))
            target = int(_pile_suffix(move.destination))
            state = state.with_column(target, state.tableau[target][:-count])
            state = state.with_column(source, state.tableau[source] + move.cards)
        elif move.kind == TABLEAU_TO_FOUNDATION:
            source = int(_pile_suffix(move.source))
            suit = _pile_suffix(move.destination)
            state = state.with_foundation(suit, state.foundation(suit)[:-count])
            state = state.with_column(source, state.tableau[source] + move.cards)
        elif move.kind == FOUNDATION_TO_TABLEAU:
            suit = _pile_suffix(move.source)
            target = int(_pile_suffix(move.destination))
            state = state.with_column(target, state.tableau[target][:-count])
            state = state.with_foundation(suit, state.foundation(suit) + move.cards)
        else:  # pragma: no cover - every logged kind is handled above
            raise ValueError(f"Cannot undo move of kind {move.kind!r}")

        self.state = replace(state, score=move.previous_score, moves=state.moves - 1)
        LOGGER.debug("Undid %s", move.kind)
        return MoveResult.ok("undo", self.state)

    # ------------------------------------------------------------------
    # Auto-complete
    # ------------------------------------------------------------------
    def auto_complete(self) -> MoveResult:
        """Send every remaining card to the foundations.

        Only runs once :func:`rules.can_auto_complete` holds; each card goes
        through the regular foundation moves, so scoring and the move log
        match manual play.
        """

        if self.status != PLAYING:
            return self._reject("auto-complete", NOT_PLAYING)
        if not can_auto_complete(self.state):
            self.message = AUTO_COMPLETE_NOT_SAFE
            return self._reject("auto-complete", NOT_SAFE, AUTO_COMPLETE_NOT_SAFE)

        self.message = "Auto-completing..."
        applied = 0
        for _ in range(DECK_SIZE):
            if self.status != PLAYING or not self._promote_one():
                break
            applied += 1
        LOGGER.info("Auto-complete moved %d cards", applied)
        return MoveResult.ok("auto-complete", self.state, self.message)

    def _promote_one(self) -> bool:
        card = self.state.waste_top
        if card is not None and self.move_waste_to_foundation(card.suit):
            return True
        for index, column in enumerate(self.state.tableau):
            if not column:
                continue
            if self.move_tableau_to_foundation(index, column[-1].suit):
                return True
        return False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _require_playing(self, kind: str) -> MoveResult | None:
        if self.status != PLAYING:
            return self._reject(kind, NOT_PLAYING)
        return None

    def _reject(self, kind: str, reason: str, message: str = "") -> MoveResult:
        LOGGER.debug("Rejected %s: %s", kind, reason)
        return MoveResult.rejected(reason, message, kind)

    def _commit(self, new_state: GameState, move: Move) -> MoveResult:
        self.history.append(move)
        self.state = replace(
            new_state,
            moves=new_state.moves + 1,
            score=new_state.score + self.scoring.delta(move.kind),
        )
        self._check_terminal()
        return MoveResult.ok(move.kind, self.state, self.message)

    def _check_terminal(self) -> None:
        if check_win_condition(self.state.foundations):
            self.status = WON
            self.message = "Congratulations! You won!"
            LOGGER.info("Game won: score=%d moves=%d", self.state.score, self.state.moves)
            self._finish(won=True)
        elif check_if_blocked(self.state):
            self.status = BLOCKED
            self.message = "Game blocked - No more moves possible!"
            LOGGER.info("Game blocked: score=%d moves=%d", self.state.score, self.state.moves)
            self._finish(won=False)

    def _finish(self, *, won: bool) -> None:
        if self.state.start_time is not None:
            elapsed = max(0, int(self.clock() - self.state.start_time))
            self.state = replace(self.state, elapsed_time=elapsed)

        outcome = GameOutcome(
            result=WON if won else BLOCKED,
            score=self.state.score,
            moves=self.state.moves,
            elapsed_time=self.state.elapsed_time,
            seed=self.seed,
        )
        self.stats = record_outcome(self.stats, outcome)
        if self.ledger is None:
            return
        try:
            self.ledger.record(outcome, self.stats)
        except LedgerError as exc:
            LOGGER.error("Failed to record %s game: %s", outcome.result, exc)
            self.message = f"Game {outcome.result} but not recorded"


__all__ = [
    "Flip",
    "Move",
    "MoveResult",
    "SolitaireEngine",
    "MOVE_KINDS",
    "IDLE",
    "PLAYING",
    "WON",
    "BLOCKED",
]
