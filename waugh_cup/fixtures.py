"""Pool allocation and round-robin fixture helpers."""

from __future__ import annotations

import random
from typing import Dict, Hashable, List, Optional, Sequence, Tuple, TypeVar

from .database import POOL_LABELS, STAGE_POOL, Match, Team

T = TypeVar("T", bound=Hashable)

POOL_DAY = 1
POOL_TIME_SLOT = "08:00"
POOL_ARENA = 1


def allocate_pools(teams: Sequence[Team], rng: Optional[random.Random] = None) -> Dict[int, str]:
    """Shuffle teams and deal them into pools A-D in turn.

    This is deliberately random; pass a seeded ``random.Random`` to repeat an
    allocation.
    """
    rng = rng or random.Random()
    ordered = sorted(teams, key=lambda team: team.id)
    rng.shuffle(ordered)
    return {team.id: POOL_LABELS[index % len(POOL_LABELS)] for index, team in enumerate(ordered)}


def generate_pool_fixtures(teams: Sequence[Team], *, tournament_id: int) -> List[Match]:
    """Create every pool-stage pairing once, ordered round by round."""
    matches: List[Match] = []
    position = 1
    for pool in POOL_LABELS:
        pool_team_ids = sorted(team.id for team in teams if team.pool == pool)
        if len(pool_team_ids) < 2:
            continue
        round_count = len(pool_team_ids) - 1 if len(pool_team_ids) % 2 == 0 else len(pool_team_ids)
        for round_index, pairs in enumerate(round_robin_pairings(pool_team_ids, round_count), start=1):
            for home_id, away_id in pairs:
                if home_id is None or away_id is None:
                    continue
                matches.append(
                    Match(
                        tournament_id=tournament_id,
                        home_team_id=home_id,
                        away_team_id=away_id,
                        stage=STAGE_POOL,
                        pool=pool,
                        round=f"round-{round_index}",
                        bracket_position=position,
                        day=POOL_DAY,
                        time_slot=POOL_TIME_SLOT,
                        arena=POOL_ARENA,
                        completed=False,
                    )
                )
                position += 1
    return matches


def round_robin_pairings(teams: Sequence[T], round_count: int) -> List[List[Tuple[Optional[T], Optional[T]]]]:
    """Return pairings for each round using the circle method rotation."""
    roster: List[Optional[T]] = list(teams)
    if len(roster) % 2 == 1:
        roster.append(None)

    if len(roster) <= 1:
        return [[(roster[0] if roster else None, None)] for _ in range(round_count)]

    working = roster[:]
    rounds: List[List[Tuple[Optional[T], Optional[T]]]] = []
    for _ in range(round_count):
        pairs: List[Tuple[Optional[T], Optional[T]]] = []
        for idx in range(len(working) // 2):
            pairs.append((working[idx], working[-(idx + 1)]))
        rounds.append(pairs)

        if len(working) <= 2:
            continue
        # Rotate all but the first position.
        working = [working[0]] + [working[-1]] + working[1:-1]

    return rounds
