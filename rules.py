"""Rules engine for Klondike: placement predicates, terminal checks, scoring."""
from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass
from typing import Any, Mapping, MutableMapping, Sequence

from deck import ACE, DECK_SIZE, KING, SUITS, TABLEAU_COLUMNS, Card, GameState

FOUNDATION_SIZE = 13


def _coerce_int(value: Any, default: int = 0) -> int:
    """Best-effort conversion of *value* into an integer score delta."""

    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return default
        return int(value)
    if isinstance(value, str):
        token = value.strip()
        if not token:
            return default
        try:
            return int(token, 10)
        except ValueError:
            return default
    return default


@dataclass(frozen=True)
class ScoringProfile:
    """Score deltas applied by the engine for each move kind."""

    waste_to_tableau: int = 5
    waste_to_foundation: int = 10
    tableau_to_foundation: int = 10
    foundation_to_tableau: int = -15
    recycle_stock: int = -20
    tableau_to_tableau: int = 0
    stock_to_waste: int = 0

    def to_dict(self) -> MutableMapping[str, Any]:
        """Return the profile as a JSON-serialisable mapping."""
        return dict(asdict(self))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScoringProfile":
        """Create a profile from *data*; unknown keys are ignored."""
        defaults = cls()
        fields = {field.name for field in cls.__dataclass_fields__.values()}
        filtered = {
            key: _coerce_int(data[key], getattr(defaults, key))
            for key in data
            if key in fields
        }
        return cls(**filtered)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, payload: str) -> "ScoringProfile":
        return cls.from_dict(json.loads(payload))

    def delta(self, kind: str) -> int:
        """Return the delta for a move *kind* such as ``"waste-to-tableau"``."""

        return getattr(self, kind.replace("-", "_"), 0)


STANDARD_SCORING = ScoringProfile()

# Cards left in the stock after the deal.
STOCK_SIZE = DECK_SIZE - TABLEAU_COLUMNS * (TABLEAU_COLUMNS + 1) // 2
# A win draws every stock card at least once and lands every card once.
MIN_WINNING_MOVES = DECK_SIZE + STOCK_SIZE


def score_ceiling(scoring: ScoringProfile = STANDARD_SCORING) -> int:
    """Return the highest score one deal can reach under *scoring*.

    Each card earns a foundation bonus once and each stock card can earn the
    waste-to-tableau bonus once.  This holds for profiles shaped like the
    standard one, where pulling a card back off a foundation costs at least
    the bonus it earned.
    """

    foundation_bonus = max(scoring.waste_to_foundation, scoring.tableau_to_foundation, 0)
    return DECK_SIZE * foundation_bonus + STOCK_SIZE * max(scoring.waste_to_tableau, 0)


def can_place_on_tableau(card: Card, column: Sequence[Card]) -> bool:
    """Return ``True`` when *card* may land on top of *column*."""

    if not column:
        return card.rank == KING
    top = column[-1]
    if not top.face_up:
        return False
    return top.color != card.color and card.rank == top.rank - 1


def can_place_on_foundation(
    card: Card, foundation: Sequence[Card], suit: str | None = None
) -> bool:
    """Return ``True`` when *card* may be added to *foundation*.

    When *suit* names the pile being built, the card must belong to it, which
    keeps an ace of one suit from starting another suit's pile.
    """

    if suit is not None and card.suit != suit:
        return False
    if not foundation:
        return card.rank == ACE
    top = foundation[-1]
    return top.suit == card.suit and card.rank == top.rank + 1


def is_movable_run(cards: Sequence[Card]) -> bool:
    """Return ``True`` for a face-up, alternating, descending run."""

    if not cards:
        return False
    if not all(card.face_up for card in cards):
        return False
    for lower, upper in zip(cards, cards[1:]):
        if lower.color == upper.color or upper.rank != lower.rank - 1:
            return False
    return True


def check_win_condition(foundations: Mapping[str, Sequence[Card]]) -> bool:
    """A game is won once every suit has its thirteen cards on a foundation."""

    return all(len(foundations.get(suit, ())) == FOUNDATION_SIZE for suit in SUITS)


def _has_foundation_destination(card: Card, state: GameState) -> bool:
    return can_place_on_foundation(card, state.foundation(card.suit), card.suit)


def _has_tableau_destination(card: Card, state: GameState, skip: int | None = None) -> bool:
    for index in range(TABLEAU_COLUMNS):
        if index == skip:
            continue
        if can_place_on_tableau(card, state.tableau[index]):
            return True
    return False


def check_if_blocked(state: GameState) -> bool:
    """Return ``True`` when no immediate move is available.

    A non-empty stock always leaves a draw, so such positions are never
    blocked.  Otherwise the waste top, every tableau top (towards the
    foundations) and every face-up tableau card (towards another column) are
    checked.  Recycling is not explored: this is the "no moves left" nudge,
    not a solver.
    """

    if state.stock:
        return False

    waste_top = state.waste_top
    if waste_top is not None:
        if _has_foundation_destination(waste_top, state):
            return False
        if _has_tableau_destination(waste_top, state):
            return False

    for index, column in enumerate(state.tableau):
        if not column:
            continue
        top = column[-1]
        if top.face_up and _has_foundation_destination(top, state):
            return False
        for card in column:
            if card.face_up and _has_tableau_destination(card, state, skip=index):
                return False

    return True


def can_auto_complete(state: GameState) -> bool:
    """Auto-complete is safe once every card is visible and stock/waste are empty."""

    if state.stock or state.waste:
        return False
    return all(card.face_up for column in state.tableau for card in column)


__all__ = [
    "ScoringProfile",
    "STANDARD_SCORING",
    "FOUNDATION_SIZE",
    "MIN_WINNING_MOVES",
    "STOCK_SIZE",
    "can_auto_complete",
    "can_place_on_foundation",
    "can_place_on_tableau",
    "check_if_blocked",
    "check_win_condition",
    "is_movable_run",
    "score_ceiling",
]
