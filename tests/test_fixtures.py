from __future__ import annotations

import itertools
import random
from collections import Counter

from waugh_cup.database import Team
from waugh_cup.fixtures import allocate_pools, generate_pool_fixtures, round_robin_pairings


def _teams(count: int) -> list[Team]:
    return [Team(id=index, tournament_id=1, school_name=f"School {index}") for index in range(1, count + 1)]


def test_allocation_spreads_teams_evenly():
    allocation = allocate_pools(_teams(16), random.Random(3))

    assert set(allocation) == set(range(1, 17))
    assert Counter(allocation.values()) == {"A": 4, "B": 4, "C": 4, "D": 4}


def test_allocation_repeats_with_same_seed():
    teams = _teams(10)
    assert allocate_pools(teams, random.Random(42)) == allocate_pools(list(reversed(teams)), random.Random(42))


def test_round_robin_covers_each_pair_once():
    team_ids = [1, 2, 3, 4, 5]
    rounds = round_robin_pairings(team_ids, 5)

    seen = [
        frozenset(pair)
        for pairs in rounds
        for pair in pairs
        if None not in pair
    ]
    assert len(seen) == len(set(seen)) == 10
    for pairs in rounds:
        playing = [team for pair in pairs for team in pair if team is not None]
        assert len(playing) == len(set(playing))


def test_pool_fixtures_stay_inside_pools():
    teams = _teams(8)
    for team in teams:
        team.pool = "A" if team.id <= 4 else "B"

    matches = generate_pool_fixtures(teams, tournament_id=9)

    assert len(matches) == 12
    for match in matches:
        assert match.stage == "pool"
        assert match.tournament_id == 9
        assert match.round.startswith("round-")
        home_pool = "A" if match.home_team_id <= 4 else "B"
        away_pool = "A" if match.away_team_id <= 4 else "B"
        assert home_pool == away_pool == match.pool
    pool_a = {frozenset((match.home_team_id, match.away_team_id)) for match in matches if match.pool == "A"}
    assert pool_a == {frozenset(pair) for pair in itertools.combinations(range(1, 5), 2)}
    assert [match.bracket_position for match in matches] == list(range(1, 13))


def test_pool_fixtures_skip_unallocated_teams():
    teams = _teams(3)
    teams[0].pool = "C"
    teams[1].pool = "C"

    matches = generate_pool_fixtures(teams, tournament_id=1)

    assert [(match.home_team_id, match.away_team_id, match.pool) for match in matches] == [(1, 2, "C")]
