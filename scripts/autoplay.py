#!/usr/bin/env python3
"""Greedy auto-player that benchmarks seeded deals through the game engine."""

from __future__ import annotations

import argparse
import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from engine import BLOCKED, PLAYING, WON, SolitaireEngine
from ledger import GameOutcome, LedgerError, ParquetLedger, outcome_to_row
from rules import can_place_on_tableau

LOGGER = logging.getLogger(__name__)

ABANDONED = "abandoned"


@dataclass(frozen=True)
class PlayResult:
    seed: int
    result: str
    moves: int
    score: int
    foundations: int
    recycles: int
    steps: int

    @property
    def won(self) -> bool:
        return self.result == WON


class GreedyPlayer:
    """Plays one game with a fixed move preference order.

    Foundation promotions come first, then waste plays, then tableau runs
    that uncover a hidden card; only when none apply does the player draw or
    recycle.  A full stock cycle without any other move ends the game as
    abandoned when the engine has not already declared it blocked.
    """

    def __init__(self, engine: SolitaireEngine, *, pass_limit: Optional[int] = None) -> None:
        if pass_limit is not None and pass_limit < 0:
            raise ValueError("pass_limit must be non-negative")
        self.engine = engine
        self.pass_limit = pass_limit
        self.recycles = 0

    # ------------------------------------------------------------------
    # Greedy strategies
    # ------------------------------------------------------------------
    def try_waste_to_foundation(self) -> bool:
        card = self.engine.state.waste_top
        return card is not None and bool(self.engine.move_waste_to_foundation(card.suit))

    def try_tableau_to_foundation(self) -> bool:
        for index, column in enumerate(self.engine.state.tableau):
            if column and column[-1].face_up:
                if self.engine.move_tableau_to_foundation(index, column[-1].suit):
                    return True
        return False

    def try_waste_to_tableau(self) -> bool:
        state = self.engine.state
        if state.waste_top is None:
            return False
        best_target: Optional[int] = None
        best_priority = -1
        for index, column in enumerate(state.tableau):
            if not column:
                priority = 2
            elif any(not card.face_up for card in column):
                priority = 3
            else:
                priority = 1
            if priority > best_priority and self._accepts_waste(index):
                best_target = index
                best_priority = priority
        if best_target is None:
            return False
        return bool(self.engine.move_waste_to_tableau(best_target))

    def _accepts_waste(self, index: int) -> bool:
        state = self.engine.state
        return can_place_on_tableau(state.waste_top, state.tableau[index])

    def try_tableau_to_tableau(self) -> bool:
        tableau = self.engine.state.tableau
        for source, column in enumerate(tableau):
            first_face_up = next(
                (position for position, card in enumerate(column) if card.face_up), None
            )
            if first_face_up is None:
                continue
            uncovers_card = first_face_up > 0
            if not uncovers_card:
                continue
            for target in range(len(tableau)):
                if target == source:
                    continue
                if self.engine.move_tableau_to_tableau(source, first_face_up, target):
                    return True
        return False

    def resolve_forced_moves(self) -> bool:
        moved = False
        while self.engine.status == PLAYING:
            if self.engine.can_auto_complete:
                self.engine.auto_complete()
                return True
            if (
                self.try_waste_to_foundation()
                or self.try_tableau_to_foundation()
                or self.try_waste_to_tableau()
                or self.try_tableau_to_tableau()
            ):
                moved = True
                continue
            break
        return moved

    # ------------------------------------------------------------------
    # Game loop
    # ------------------------------------------------------------------
    def play(self, *, max_steps: int = 5000) -> tuple[str, int]:
        engine = self.engine
        steps = 0
        progressed_since_recycle = True
        while steps < max_steps and engine.status == PLAYING:
            steps += 1
            if self.resolve_forced_moves():
                progressed_since_recycle = True
                continue
            if engine.status != PLAYING:
                break
            if engine.state.stock:
                engine.draw_from_stock()
                continue
            if not progressed_since_recycle:
                break
            if self.pass_limit is not None and self.recycles >= self.pass_limit:
                break
            if not engine.recycle_stock():
                break
            self.recycles += 1
            progressed_since_recycle = False

        if engine.status in (WON, BLOCKED):
            return engine.status, steps
        return ABANDONED, steps


def play_seed(
    seed: int,
    *,
    pass_limit: Optional[int] = None,
    max_steps: int = 5000,
    ledger: ParquetLedger | None = None,
) -> PlayResult:
    """Deal *seed* and let :class:`GreedyPlayer` play it to the end."""

    engine = SolitaireEngine(ledger=ledger)
    engine.start(seed=seed)
    player = GreedyPlayer(engine, pass_limit=pass_limit)
    result, steps = player.play(max_steps=max_steps)

    state = engine.state
    if result == ABANDONED and ledger is not None:
        outcome = GameOutcome(
            result=ABANDONED,
            score=state.score,
            moves=state.moves,
            elapsed_time=engine.tick(),
            seed=seed,
        )
        ledger.append_rows([outcome_to_row(outcome, ledger.tag)])

    LOGGER.debug("Seed %d finished %s after %d moves", seed, result, state.moves)
    return PlayResult(
        seed=seed,
        result=result,
        moves=state.moves,
        score=state.score,
        foundations=sum(len(state.foundation(suit)) for suit in state.foundations),
        recycles=player.recycles,
        steps=steps,
    )


def format_play_result(index: int, result: PlayResult) -> str:
    return (
        f"Game {index + 1}: seed={result.seed} moves={result.moves} score={result.score} "
        f"recycles={result.recycles} foundations={result.foundations} status={result.result}"
    )


def format_totals(results: Sequence[PlayResult]) -> str:
    games = len(results)
    wins = sum(1 for result in results if result.won)
    win_rate = (wins / games) * 100 if games else 0.0
    average_moves = sum(result.moves for result in results) / games if games else 0.0
    average_foundations = (
        sum(result.foundations for result in results) / games if games else 0.0
    )
    return (
        "Summary: "
        f"games={games} wins={wins} ({win_rate:.1f}%) "
        f"avg_moves={average_moves:.1f} avg_foundations={average_foundations:.1f}"
    )


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--seed",
        type=int,
        help="Seed for the first deal. Subsequent games advance the RNG deterministically.",
    )
    parser.add_argument(
        "--games",
        type=int,
        default=1,
        help="Number of games to play (default: 1).",
    )
    parser.add_argument(
        "--pass-limit",
        type=int,
        default=-1,
        help="Maximum number of stock recycles. Use -1 for unlimited (default).",
    )
    parser.add_argument(
        "--max-steps",
        type=int,
        default=5000,
        help="Iteration cap per game (default: 5000).",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Append every finished game to this Parquet result log.",
    )
    parser.add_argument("--tag", default="autoplay", help="Tag for rows written to --output.")
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress per-game output and only print the summary line.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    if args.games < 1:
        parser.error("--games must be at least 1")

    master_seed = args.seed if args.seed is not None else random.randrange(0, 2**32)
    master_rng = random.Random(master_seed)
    pass_limit = None if args.pass_limit < 0 else args.pass_limit
    ledger = ParquetLedger(args.output, tag=args.tag) if args.output else None

    results: list[PlayResult] = []
    for game_index in range(args.games):
        if game_index == 0 and args.seed is not None:
            seed = args.seed & 0xFFFFFFFF
        else:
            seed = master_rng.randrange(0, 2**32)
        try:
            result = play_seed(seed, pass_limit=pass_limit, max_steps=args.max_steps, ledger=ledger)
        except LedgerError as exc:
            parser.error(str(exc))
        results.append(result)
        if not args.quiet:
            print(format_play_result(game_index, result))

    print(format_totals(results))
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
