import pandas as pd
import pytest

from deck import DECK_SIZE, SUITS, Card, GameState
from engine import SolitaireEngine
from scripts.autoplay import ABANDONED, GreedyPlayer, main, play_seed


def up(suit, rank):
    return Card(suit, rank, face_up=True)


@pytest.mark.parametrize("seed", [1, 42, 12345])
def test_play_seed_finishes_with_consistent_metadata(seed):
    result = play_seed(seed, pass_limit=2, max_steps=500)

    assert result.seed == seed
    assert result.result in {"won", "blocked", ABANDONED}
    assert result.moves >= 0
    assert 0 <= result.foundations <= DECK_SIZE
    assert result.recycles <= 2
    assert result.won == (result.result == "won")


def test_greedy_play_keeps_cards_and_foundations_ordered():
    engine = SolitaireEngine()
    engine.start(seed=2024)
    GreedyPlayer(engine).play(max_steps=2000)

    state = engine.state
    cards = list(state.iter_cards())
    assert len(cards) == DECK_SIZE
    assert len({card.id for card in cards}) == DECK_SIZE
    for suit in SUITS:
        pile = state.foundation(suit)
        assert all(card.suit == suit for card in pile)
        assert [card.rank for card in pile] == list(range(1, len(pile) + 1))


def test_greedy_player_finishes_a_won_position():
    foundations = {suit: tuple(up(suit, rank) for rank in range(1, 9)) for suit in SUITS}
    tableau = tuple(
        tuple(up(suit, rank) for rank in range(13, 8, -1)) for suit in SUITS
    ) + ((),) * 3
    engine = SolitaireEngine()
    engine.load(GameState(tableau=tableau, foundations=foundations))

    result, _ = GreedyPlayer(engine).play()

    assert result == "won"
    assert engine.state.moves == 20


def test_pass_limit_must_be_non_negative():
    with pytest.raises(ValueError):
        GreedyPlayer(SolitaireEngine(), pass_limit=-1)


def test_main_prints_summary(capsys):
    exit_code = main(["--seed", "3", "--games", "2", "--max-steps", "300"])
    captured = capsys.readouterr()

    assert exit_code == 0
    assert "Game 1: seed=3" in captured.out
    assert "Game 2:" in captured.out
    assert "Summary: games=2" in captured.out


def test_main_appends_every_game_to_the_result_log(tmp_path, capsys):
    output = tmp_path / "autoplay.parquet"

    main(["--seed", "8", "--games", "3", "--max-steps", "300", "--quiet", "--output", str(output)])
    captured = capsys.readouterr()

    assert "Game 1" not in captured.out
    frame = pd.read_parquet(output)
    assert frame.shape[0] == 3
    assert set(frame["tag"]) == {"autoplay"}
    assert set(frame["result"]) <= {"won", "blocked", ABANDONED}


def test_main_rejects_zero_games():
    with pytest.raises(SystemExit) as exc:
        main(["--games", "0"])
    assert exc.value.code == 2
