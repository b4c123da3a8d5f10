import json
import math
import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from deck import SUITS, Card, GameState
from rules import (
    MIN_WINNING_MOVES,
    STANDARD_SCORING,
    STOCK_SIZE,
    ScoringProfile,
    can_auto_complete,
    can_place_on_foundation,
    can_place_on_tableau,
    check_if_blocked,
    check_win_condition,
    is_movable_run,
    score_ceiling,
)


def up(suit, rank):
    return Card(suit, rank, face_up=True)


def down(suit, rank):
    return Card(suit, rank)


def full_foundations():
    return {suit: tuple(up(suit, rank) for rank in range(1, 14)) for suit in SUITS}


def stuck_state(**overrides):
    """All-red tops with no aces anywhere: nothing can move."""

    columns = (
        (up("hearts", 3),),
        (up("hearts", 5),),
        (up("hearts", 7),),
        (up("hearts", 9),),
        (up("diamonds", 3),),
        (up("diamonds", 5),),
        (up("diamonds", 7),),
    )
    values = {"tableau": columns, "waste": (up("diamonds", 9),)}
    values.update(overrides)
    return GameState(**values)


@pytest.mark.parametrize(
    "card,column,expected",
    [
        (up("spades", 13), (), True),
        (up("hearts", 12), (), False),
        (up("hearts", 6), (up("clubs", 7),), True),
        (up("diamonds", 6), (up("hearts", 7),), False),
        (up("hearts", 5), (up("clubs", 7),), False),
        (up("hearts", 6), (down("clubs", 7),), False),
    ],
)
def test_can_place_on_tableau(card, column, expected):
    assert can_place_on_tableau(card, column) is expected


@pytest.mark.parametrize(
    "card,foundation,suit,expected",
    [
        (up("hearts", 1), (), "hearts", True),
        (up("hearts", 1), (), "spades", False),
        (up("hearts", 1), (), None, True),
        (up("hearts", 2), (), "hearts", False),
        (up("hearts", 2), (up("hearts", 1),), "hearts", True),
        (up("hearts", 3), (up("hearts", 1),), "hearts", False),
        (up("diamonds", 2), (up("hearts", 1),), None, False),
    ],
)
def test_can_place_on_foundation(card, foundation, suit, expected):
    assert can_place_on_foundation(card, foundation, suit) is expected


def test_is_movable_run():
    assert is_movable_run((up("spades", 9), up("hearts", 8), up("clubs", 7)))
    assert not is_movable_run((up("spades", 9), up("clubs", 8)))
    assert not is_movable_run((up("spades", 9), up("hearts", 7)))
    assert not is_movable_run((down("spades", 9), up("hearts", 8)))
    assert not is_movable_run(())


def test_win_requires_thirteen_cards_per_suit():
    foundations = full_foundations()
    assert check_win_condition(foundations)

    foundations["clubs"] = foundations["clubs"][:-1]
    assert not check_win_condition(foundations)
    assert not check_win_condition({})


def test_stuck_position_is_blocked():
    assert check_if_blocked(stuck_state())


def test_non_empty_stock_is_never_blocked():
    assert not check_if_blocked(stuck_state(stock=(down("clubs", 2),)))


def test_waste_ace_unblocks():
    assert not check_if_blocked(stuck_state(waste=(up("spades", 1),)))


def test_waste_card_with_tableau_home_unblocks():
    state = stuck_state(waste=(up("clubs", 8),))
    assert not check_if_blocked(state)


def test_buried_face_up_card_with_destination_unblocks():
    state = stuck_state()
    column = (up("spades", 10), up("clubs", 4))
    state = state.with_column(0, column)
    # The black 4 can take the red 3 from column 4.
    assert not check_if_blocked(state)


def test_face_down_tops_are_not_checked():
    state = stuck_state(waste=())
    state = state.with_column(0, (down("hearts", 1),))
    assert check_if_blocked(state)


def test_can_auto_complete():
    state = GameState(tableau=((up("hearts", 2),),) + ((),) * 6)
    assert can_auto_complete(state)
    assert not can_auto_complete(state.with_column(1, (down("clubs", 4), up("hearts", 3))))
    assert not can_auto_complete(GameState(waste=(up("hearts", 1),)))
    assert not can_auto_complete(GameState(stock=(down("hearts", 1),)))


def test_standard_scoring_deltas():
    assert STANDARD_SCORING.delta("waste-to-tableau") == 5
    assert STANDARD_SCORING.delta("waste-to-foundation") == 10
    assert STANDARD_SCORING.delta("tableau-to-foundation") == 10
    assert STANDARD_SCORING.delta("foundation-to-tableau") == -15
    assert STANDARD_SCORING.delta("recycle-stock") == -20
    assert STANDARD_SCORING.delta("tableau-to-tableau") == 0
    assert STANDARD_SCORING.delta("stock-to-waste") == 0
    assert STANDARD_SCORING.delta("custom") == 0


def test_scoring_serialisation_round_trip():
    profile = ScoringProfile(recycle_stock=-100)
    payload = profile.to_json()
    assert ScoringProfile.from_json(payload) == profile
    assert json.loads(payload)["recycle_stock"] == -100


@pytest.mark.parametrize(
    "value,expected",
    [("7", 7), (7.9, 7), ("  ", 5), ("bogus", 5), (True, 5), (math.nan, 5), (None, 5)],
)
def test_scoring_from_dict_coerces_values(value, expected):
    profile = ScoringProfile.from_dict({"waste_to_tableau": value, "unknown": 3})
    assert profile.waste_to_tableau == expected
    assert profile.recycle_stock == -20


def test_deal_leaves_twenty_four_cards_in_the_stock():
    assert STOCK_SIZE == 24
    assert MIN_WINNING_MOVES == 76


def test_score_ceiling_counts_each_bonus_once():
    assert score_ceiling() == 52 * 10 + 24 * 5
    assert score_ceiling(ScoringProfile(waste_to_tableau=0, tableau_to_foundation=20)) == 52 * 20
    assert score_ceiling(ScoringProfile(waste_to_foundation=-1, tableau_to_foundation=-1)) == 24 * 5
