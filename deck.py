"""Card model, the Klondike layout and the deal."""
from __future__ import annotations

import random
from dataclasses import dataclass, field, replace
from typing import Any, Iterator, Mapping, Sequence

SUITS = ("hearts", "diamonds", "clubs", "spades")
SUIT_COLORS = {
    "hearts": "red",
    "diamonds": "red",
    "clubs": "black",
    "spades": "black",
}
SUIT_SYMBOLS = {
    "hearts": "♥",
    "diamonds": "♦",
    "clubs": "♣",
    "spades": "♠",
}
RANKS = tuple(range(1, 14))
RANK_LABELS = {1: "A", 11: "J", 12: "Q", 13: "K"}

ACE = 1
KING = 13
DECK_SIZE = 52
TABLEAU_COLUMNS = 7


class DeckError(ValueError):
    """Raised when a deck cannot be dealt into a Klondike layout."""


def rank_label(rank: int) -> str:
    return RANK_LABELS.get(rank, str(rank))


def parse_rank(value: Any) -> int:
    """Return the numeric rank for *value* (``"A"``, ``"10"``, ``13`` ...)."""

    if isinstance(value, bool):
        raise ValueError(f"Invalid rank: {value!r}")
    if isinstance(value, int):
        if value in RANKS:
            return value
        raise ValueError(f"Invalid rank: {value!r}")
    if isinstance(value, str):
        token = value.strip().upper()
        for rank, label in RANK_LABELS.items():
            if token == label:
                return rank
        try:
            candidate = int(token, 10)
        except ValueError as exc:
            raise ValueError(f"Invalid rank: {value!r}") from exc
        if candidate in RANKS:
            return candidate
    raise ValueError(f"Invalid rank: {value!r}")


@dataclass(frozen=True)
class Card:
    """A playing card.

    Cards are values: turning a card over yields a new :class:`Card` with the
    same ``id``.  When no ``id`` is given it defaults to ``"<suit>-<label>"``.
    """

    suit: str
    rank: int
    face_up: bool = False
    id: str = ""

    def __post_init__(self) -> None:
        if self.suit not in SUIT_COLORS:
            raise ValueError(f"Unknown suit: {self.suit!r}")
        if self.rank not in RANKS:
            raise ValueError(f"Invalid rank: {self.rank!r}")
        if not self.id:
            object.__setattr__(self, "id", f"{self.suit}-{self.label()}")

    @property
    def color(self) -> str:
        return SUIT_COLORS[self.suit]

    def label(self) -> str:
        return rank_label(self.rank)

    def turned(self, face_up: bool) -> "Card":
        if self.face_up == face_up:
            return self
        return replace(self, face_up=face_up)

    def to_dict(self) -> dict[str, Any]:
        return {
            "suit": self.suit,
            "rank": self.label(),
            "faceUp": self.face_up,
            "id": self.id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Card":
        try:
            suit = data["suit"]
            rank = parse_rank(data["rank"])
        except KeyError as exc:
            raise ValueError(f"Card is missing field {exc.args[0]!r}") from exc
        return cls(
            suit=suit,
            rank=rank,
            face_up=bool(data.get("faceUp", data.get("face_up", False))),
            id=str(data.get("id") or ""),
        )

    def __str__(self) -> str:  # pragma: no cover - debug helper
        return f"{self.label()}{SUIT_SYMBOLS[self.suit]}"


def ordered_deck() -> list[Card]:
    """Return the 52 cards suit by suit, ace to king, all face-down."""

    return [Card(suit, rank) for suit in SUITS for rank in RANKS]


def shuffle_deck(deck: Sequence[Card], rng: random.Random | None = None) -> list[Card]:
    """Return a Fisher-Yates shuffled copy of *deck*."""

    rng = rng or random.Random()
    shuffled = list(deck)
    for index in range(len(shuffled) - 1, 0, -1):
        swap = rng.randint(0, index)
        shuffled[index], shuffled[swap] = shuffled[swap], shuffled[index]
    return shuffled


def create_deck(rng: random.Random | None = None, *, seed: int | None = None) -> list[Card]:
    """Build a shuffled deck.

    Pass *seed* (or a pre-seeded *rng*) to reproduce a deal; otherwise the
    shuffle draws from a fresh :class:`random.Random`.
    """

    if rng is None and seed is not None:
        rng = random.Random(seed & 0xFFFFFFFF)
    return shuffle_deck(ordered_deck(), rng)


def validate_deck(deck: Sequence[Card]) -> None:
    """Raise :class:`DeckError` unless *deck* is one complete 52-card deck."""

    if len(deck) != DECK_SIZE:
        raise DeckError(f"A deck must contain {DECK_SIZE} cards, got {len(deck)}")
    identities = {(card.suit, card.rank) for card in deck}
    if len(identities) != DECK_SIZE:
        raise DeckError("Deck contains duplicate cards")
    ids = {card.id for card in deck}
    if len(ids) != DECK_SIZE:
        raise DeckError("Deck contains duplicate card ids")


Pile = tuple[Card, ...]


def _empty_foundations() -> dict[str, Pile]:
    return {suit: () for suit in SUITS}


@dataclass(frozen=True)
class GameState:
    """Placement of every card plus the running counters.

    ``tableau`` columns are stored bottom first, so ``column[-1]`` is the
    playable card.  ``waste`` is stored most-recent-first and ``stock`` is
    drawn from index 0.  Moves never modify a state in place; the engine
    builds a new one with :func:`dataclasses.replace`.
    """

    tableau: tuple[Pile, ...] = ((),) * TABLEAU_COLUMNS
    foundations: Mapping[str, Pile] = field(default_factory=_empty_foundations)
    stock: Pile = ()
    waste: Pile = ()
    moves: int = 0
    score: int = 0
    start_time: float | None = None
    elapsed_time: int = 0

    def iter_cards(self) -> Iterator[Card]:
        for column in self.tableau:
            yield from column
        for suit in SUITS:
            yield from self.foundations.get(suit, ())
        yield from self.stock
        yield from self.waste

    def card_count(self) -> int:
        return sum(1 for _ in self.iter_cards())

    def foundation(self, suit: str) -> Pile:
        return self.foundations.get(suit, ())

    @property
    def waste_top(self) -> Card | None:
        return self.waste[0] if self.waste else None

    def with_column(self, index: int, cards: Sequence[Card]) -> "GameState":
        columns = list(self.tableau)
        columns[index] = tuple(cards)
        return replace(self, tableau=tuple(columns))

    def with_foundation(self, suit: str, cards: Sequence[Card]) -> "GameState":
        foundations = dict(self.foundations)
        foundations[suit] = tuple(cards)
        return replace(self, foundations=foundations)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tableau": [[card.to_dict() for card in column] for column in self.tableau],
            "foundations": {
                suit: [card.to_dict() for card in self.foundation(suit)] for suit in SUITS
            },
            "stock": [card.to_dict() for card in self.stock],
            "waste": [card.to_dict() for card in self.waste],
            "moves": self.moves,
            "score": self.score,
            "startTime": self.start_time,
            "elapsedTime": self.elapsed_time,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GameState":
        """Rebuild a state from :meth:`to_dict` output.

        ``ValueError`` is raised when the payload does not describe seven
        tableau columns and four suit-keyed foundations.
        """

        raw_tableau = data.get("tableau")
        if not isinstance(raw_tableau, Sequence) or len(raw_tableau) != TABLEAU_COLUMNS:
            raise ValueError(f"tableau must contain {TABLEAU_COLUMNS} columns")
        raw_foundations = data.get("foundations") or {}
        if not isinstance(raw_foundations, Mapping):
            raise ValueError("foundations must be keyed by suit")
        unknown = set(raw_foundations) - set(SUITS)
        if unknown:
            raise ValueError("Unknown foundation suits: " + ", ".join(sorted(unknown)))

        def _pile(raw: Any) -> Pile:
            return tuple(Card.from_dict(item) for item in raw or ())

        start_time = data.get("startTime")
        return cls(
            tableau=tuple(_pile(column) for column in raw_tableau),
            foundations={suit: _pile(raw_foundations.get(suit)) for suit in SUITS},
            stock=_pile(data.get("stock")),
            waste=_pile(data.get("waste")),
            moves=int(data.get("moves", 0)),
            score=int(data.get("score", 0)),
            start_time=float(start_time) if start_time is not None else None,
            elapsed_time=int(data.get("elapsedTime", 0)),
        )


def deal_cards(deck: Sequence[Card]) -> GameState:
    """Deal *deck* into a fresh Klondike layout.

    Column ``i`` receives ``i + 1`` cards taken from the head of *deck*; only
    the last card of each column is turned face-up.  The remaining 24 cards
    form the stock, face-down, in deck order.
    """

    validate_deck(deck)
    cards = list(deck)
    position = 0
    tableau: list[tuple[Card, ...]] = []
    for column in range(TABLEAU_COLUMNS):
        dealt = []
        for row in range(column + 1):
            dealt.append(cards[position].turned(row == column))
            position += 1
        tableau.append(tuple(dealt))

    stock = tuple(card.turned(False) for card in cards[position:])
    return GameState(
        tableau=tuple(tableau),
        foundations={suit: () for suit in SUITS},
        stock=stock,
        waste=(),
    )


__all__ = [
    "Card",
    "DeckError",
    "GameState",
    "SUITS",
    "RANKS",
    "ACE",
    "KING",
    "DECK_SIZE",
    "TABLEAU_COLUMNS",
    "create_deck",
    "deal_cards",
    "ordered_deck",
    "parse_rank",
    "rank_label",
    "shuffle_deck",
    "validate_deck",
]
