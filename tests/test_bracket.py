from __future__ import annotations

import itertools

import pytest

from waugh_cup.bracket import bracket_ready, dependent_rounds, generate_next_round_matches, group_bracket
from waugh_cup.database import MatchResult
from waugh_cup.standings import PlayedMatch, Standing

POOL_OFFSETS = {"A": 100, "B": 200, "C": 300, "D": 400}


def _standings(pool_size: int) -> dict[str, list[Standing]]:
    """Team ids encode pool and place: 302 finished second in pool C."""
    return {
        pool: [
            Standing(team_id=offset + place, school_name=f"{pool}{place}", pool=pool, rank=place)
            for place in range(1, pool_size + 1)
        ]
        for pool, offset in POOL_OFFSETS.items()
    }


def _store(entries: list[PlayedMatch], new_matches) -> list[PlayedMatch]:
    next_id = len(entries) + 1
    for offset, match in enumerate(new_matches):
        match.id = next_id + offset
        entries.append(PlayedMatch(match, None))
    return entries


def _home_wins(entries: list[PlayedMatch], round_name: str) -> list[PlayedMatch]:
    updated = []
    for entry in entries:
        if entry.match.round == round_name:
            entry.match.completed = True
            entry = PlayedMatch(entry.match, MatchResult(match_id=entry.match.id, home_score=8, away_score=5))
        updated.append(entry)
    return updated


def _pairs(matches) -> list[tuple[int, int]]:
    return [(match.home_team_id, match.away_team_id) for match in matches]


def test_cup_round_of_16_follows_fixed_pairings():
    matches = generate_next_round_matches(_standings(4), "cup", [], tournament_id=1)

    assert {match.round for match in matches} == {"round-of-16"}
    assert _pairs(matches) == [
        (101, 404),
        (302, 203),
        (402, 103),
        (201, 304),
        (301, 204),
        (102, 403),
        (202, 303),
        (401, 104),
    ]
    assert [match.bracket_position for match in matches] == list(range(1, 9))
    assert all(match.stage == "cup" and match.day == 3 and match.pool is None for match in matches)


def test_same_standings_give_same_pairings():
    standings = _standings(4)
    first = generate_next_round_matches(standings, "cup", [], tournament_id=1)
    second = generate_next_round_matches(standings, "cup", [], tournament_id=1)
    assert _pairs(first) == _pairs(second)


def test_existing_round_is_not_created_again():
    standings = _standings(4)
    entries = _store([], generate_next_round_matches(standings, "cup", [], tournament_id=1))

    assert generate_next_round_matches(standings, "cup", entries, tournament_id=1) == []


def test_quarter_finals_wait_for_round_of_16_results():
    standings = _standings(4)
    entries = _store([], generate_next_round_matches(standings, "cup", [], tournament_id=1))
    entries[0].match.completed = True
    entries[0] = PlayedMatch(entries[0].match, MatchResult(match_id=1, home_score=3, away_score=2))

    assert generate_next_round_matches(standings, "cup", entries, tournament_id=1) == []

    entries = _home_wins(entries, "round-of-16")
    quarter_finals = generate_next_round_matches(standings, "cup", entries, tournament_id=1)

    assert {match.round for match in quarter_finals} == {"quarter-final"}
    assert _pairs(quarter_finals) == [(101, 302), (402, 201), (301, 102), (202, 401)]


def test_cup_runs_through_to_final_and_third_place():
    standings = _standings(4)
    entries = _store([], generate_next_round_matches(standings, "cup", [], tournament_id=1))
    for round_name in ("round-of-16", "quarter-final"):
        entries = _home_wins(entries, round_name)
        entries = _store(entries, generate_next_round_matches(standings, "cup", entries, tournament_id=1))

    entries = _home_wins(entries, "semi-final")
    last = generate_next_round_matches(standings, "cup", entries, tournament_id=1)

    by_round = {match.round: match for match in last}
    assert set(by_round) == {"final", "third-place"}
    assert (by_round["final"].home_team_id, by_round["final"].away_team_id) == (101, 301)
    assert (by_round["third-place"].home_team_id, by_round["third-place"].away_team_id) == (402, 202)


def test_penalty_winner_advances():
    standings = _standings(4)
    entries = _store([], generate_next_round_matches(standings, "cup", [], tournament_id=1))
    entries = _home_wins(entries, "round-of-16")
    first = entries[0]
    first.result.home_score = 7
    first.result.away_score = 7
    first.result.home_penalties = 2
    first.result.away_penalties = 3

    quarter_finals = generate_next_round_matches(standings, "cup", entries, tournament_id=1)

    assert (quarter_finals[0].home_team_id, quarter_finals[0].away_team_id) == (404, 302)


def test_cup_not_ready_with_small_pools():
    standings = _standings(3)
    assert not bracket_ready(standings, "cup")
    assert generate_next_round_matches(standings, "cup", [], tournament_id=1) == []


def test_plate_and_shield_use_lower_places():
    plate = generate_next_round_matches(_standings(6), "plate", [], tournament_id=1)
    shield = generate_next_round_matches(_standings(6), "shield", [], tournament_id=1)

    assert _pairs(plate) == [(105, 405), (205, 305)]
    assert {match.round for match in plate} == {"plate-semi-final"}
    assert _pairs(shield) == [(106, 406), (206, 306)]
    assert not bracket_ready(_standings(5), "shield")


def test_playoff_pairs_round_of_16_losers():
    standings = _standings(4)
    assert generate_next_round_matches(standings, "playoff", [], tournament_id=1) == []

    entries = _store([], generate_next_round_matches(standings, "cup", [], tournament_id=1))
    entries = _home_wins(entries, "round-of-16")
    playoff = generate_next_round_matches(standings, "playoff", entries, tournament_id=1)

    assert {match.round for match in playoff} == {"playoff-round-1"}
    assert _pairs(playoff) == [(404, 203), (103, 304), (204, 403), (303, 104)]
    assert all(match.stage == "playoff" for match in playoff)

    entries = _home_wins(_store(entries, playoff), "playoff-round-1")
    placings = {match.round: match for match in generate_next_round_matches(standings, "playoff", entries, tournament_id=1)}
    assert (placings["13th-14th"].home_team_id, placings["13th-14th"].away_team_id) == (203, 304)
    assert (placings["15th-16th"].home_team_id, placings["15th-16th"].away_team_id) == (403, 104)


def test_festival_round_robin_for_seventh_and_below():
    standings = _standings(8)
    matches = generate_next_round_matches(standings, "festival", [], tournament_id=1)

    teams = {107, 108, 207, 208, 307, 308, 407, 408}
    pairs = {frozenset(pair) for pair in _pairs(matches)}
    assert pairs == {frozenset(pair) for pair in itertools.combinations(teams, 2)}
    assert len(matches) == 28

    entries = _store([], matches)
    assert generate_next_round_matches(standings, "festival", entries, tournament_id=1) == []


def test_festival_not_ready_without_seventh_place():
    assert not bracket_ready(_standings(6), "festival")


def test_unknown_stage_is_rejected():
    with pytest.raises(ValueError):
        bracket_ready(_standings(4), "bowl")
    with pytest.raises(ValueError):
        generate_next_round_matches(_standings(4), "bowl", [], tournament_id=1)


def test_group_bracket_orders_rounds():
    standings = _standings(4)
    entries = _store([], generate_next_round_matches(standings, "cup", [], tournament_id=1))

    rounds = group_bracket([entry.match for entry in reversed(entries)], "cup")

    assert [entry["round"] for entry in rounds] == ["round-of-16", "quarter-final", "semi-final", "final", "third-place"]
    assert [match.bracket_position for match in rounds[0]["matches"]] == list(range(1, 9))
    assert rounds[1]["matches"] == []


def test_dependent_rounds_follow_winners_and_losers():
    assert dependent_rounds("round-of-16", 3) == [("cup", "quarter-final"), ("playoff", "playoff-round-1")]
    assert dependent_rounds("semi-final", 2) == [("cup", "final"), ("cup", "third-place")]
    assert dependent_rounds("final", 1) == []
    assert dependent_rounds("plate-semi-final", 1) == [("plate", "plate-final"), ("plate", "plate-third-place")]
