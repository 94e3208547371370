"""Knockout bracket templates and next-round generation.

Brackets are not built up front. ``generate_next_round_matches`` is called
again each time results come in and returns only the rounds whose
participants are now known and that have not been created yet.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple, Union

from .database import (
    POOL_LABELS,
    STAGE_CUP,
    STAGE_FESTIVAL,
    STAGE_PLATE,
    STAGE_PLAYOFF,
    STAGE_SHIELD,
    Match,
)
from .fixtures import round_robin_pairings
from .standings import PlayedMatch, Standing, match_loser, match_winner

KNOCKOUT_DAY = 3
KNOCKOUT_TIME_SLOT = "08:00"
KNOCKOUT_ARENA = 1
FESTIVAL_FROM_PLACE = 7


@dataclass(frozen=True)
class Seed:
    pool: str
    place: int


@dataclass(frozen=True)
class Feed:
    round: str
    position: int
    winner: bool = True


Slot = Union[Seed, Feed]


@dataclass(frozen=True)
class RoundTemplate:
    name: str
    pairings: Tuple[Tuple[Slot, Slot], ...]


def _winners(round_name: str, *pairs: Tuple[int, int]) -> Tuple[Tuple[Slot, Slot], ...]:
    return tuple((Feed(round_name, first), Feed(round_name, second)) for first, second in pairs)


def _losers(round_name: str, *pairs: Tuple[int, int]) -> Tuple[Tuple[Slot, Slot], ...]:
    return tuple(
        (Feed(round_name, first, winner=False), Feed(round_name, second, winner=False))
        for first, second in pairs
    )


def _band(place: int) -> Tuple[Tuple[Slot, Slot], ...]:
    """Cross-pool semi-finals for one finishing place: A v D, B v C."""
    return (
        (Seed("A", place), Seed("D", place)),
        (Seed("B", place), Seed("C", place)),
    )


BRACKETS: Dict[str, Tuple[RoundTemplate, ...]] = {
    STAGE_CUP: (
        RoundTemplate(
            "round-of-16",
            (
                (Seed("A", 1), Seed("D", 4)),
                (Seed("C", 2), Seed("B", 3)),
                (Seed("D", 2), Seed("A", 3)),
                (Seed("B", 1), Seed("C", 4)),
                (Seed("C", 1), Seed("B", 4)),
                (Seed("A", 2), Seed("D", 3)),
                (Seed("B", 2), Seed("C", 3)),
                (Seed("D", 1), Seed("A", 4)),
            ),
        ),
        RoundTemplate("quarter-final", _winners("round-of-16", (1, 2), (3, 4), (5, 6), (7, 8))),
        RoundTemplate("semi-final", _winners("quarter-final", (1, 2), (3, 4))),
        RoundTemplate("final", _winners("semi-final", (1, 2))),
        RoundTemplate("third-place", _losers("semi-final", (1, 2))),
    ),
    STAGE_PLATE: (
        RoundTemplate("plate-semi-final", _band(5)),
        RoundTemplate("plate-final", _winners("plate-semi-final", (1, 2))),
        RoundTemplate("plate-third-place", _losers("plate-semi-final", (1, 2))),
    ),
    STAGE_SHIELD: (
        RoundTemplate("shield-semi-final", _band(6)),
        RoundTemplate("shield-final", _winners("shield-semi-final", (1, 2))),
        RoundTemplate("shield-third-place", _losers("shield-semi-final", (1, 2))),
    ),
    STAGE_PLAYOFF: (
        RoundTemplate("playoff-round-1", _losers("round-of-16", (1, 2), (3, 4), (5, 6), (7, 8))),
        RoundTemplate("13th-14th", _losers("playoff-round-1", (1, 2))),
        RoundTemplate("15th-16th", _losers("playoff-round-1", (3, 4))),
    ),
}

# Rounds a stage reads results from when they live in another stage.
FEEDER_STAGES: Dict[str, Tuple[str, ...]] = {
    STAGE_PLAYOFF: (STAGE_CUP, STAGE_PLAYOFF),
}

ROUND_ORDER: Dict[str, Tuple[str, ...]] = {
    stage: tuple(template.name for template in templates) for stage, templates in BRACKETS.items()
}
ROUND_ORDER[STAGE_FESTIVAL] = (STAGE_FESTIVAL,)

# Minimum pool size in every pool before a stage can be seeded.
REQUIRED_PLACES = {STAGE_CUP: 4, STAGE_PLATE: 5, STAGE_SHIELD: 6}


def dependent_rounds(round_name: str, position: int) -> List[Tuple[str, str]]:
    """Return the (stage, round) pairs that take a slot from this match's result."""
    dependents: List[Tuple[str, str]] = []
    for stage, templates in BRACKETS.items():
        for template in templates:
            slots = [slot for pairing in template.pairings for slot in pairing]
            if any(
                isinstance(slot, Feed) and slot.round == round_name and slot.position == position
                for slot in slots
            ):
                dependents.append((stage, template.name))
    return dependents


def bracket_ready(standings: Mapping[str, Sequence[Standing]], stage: str) -> bool:
    """Return True when the standings hold every team a stage seeds from."""
    if stage == STAGE_PLAYOFF:
        return bracket_ready(standings, STAGE_CUP)
    if stage == STAGE_FESTIVAL:
        return any(len(standings.get(pool, ())) >= FESTIVAL_FROM_PLACE for pool in POOL_LABELS)
    required = REQUIRED_PLACES.get(stage)
    if required is None:
        raise ValueError(f"Unknown knockout stage: {stage}")
    return all(len(standings.get(pool, ())) >= required for pool in POOL_LABELS)


def generate_next_round_matches(
    standings: Mapping[str, Sequence[Standing]],
    stage: str,
    existing_matches: Iterable[PlayedMatch],
    *,
    tournament_id: int,
) -> List[Match]:
    """Create unsaved matches for every missing round of ``stage`` that can be resolved."""
    if stage not in ROUND_ORDER:
        raise ValueError(f"Unknown knockout stage: {stage}")
    if not bracket_ready(standings, stage):
        return []

    existing = list(existing_matches)
    if stage == STAGE_FESTIVAL:
        return _festival_matches(standings, existing, tournament_id)

    sources = FEEDER_STAGES.get(stage, (stage,))
    by_position: Dict[Tuple[str, int], PlayedMatch] = {}
    for entry in existing:
        match = entry.match
        if match.stage in sources and match.round and match.bracket_position is not None:
            by_position[(match.round, match.bracket_position)] = entry
    created_rounds = {entry.match.round for entry in existing if entry.match.stage == stage}

    new_matches: List[Match] = []
    for template in BRACKETS[stage]:
        if template.name in created_rounds:
            continue
        pairings = [
            (_resolve(home, standings, by_position), _resolve(away, standings, by_position))
            for home, away in template.pairings
        ]
        if any(home is None or away is None for home, away in pairings):
            continue
        for position, (home_id, away_id) in enumerate(pairings, start=1):
            new_matches.append(_knockout_match(tournament_id, stage, template.name, position, home_id, away_id))
    return new_matches


def _resolve(
    slot: Slot,
    standings: Mapping[str, Sequence[Standing]],
    by_position: Mapping[Tuple[str, int], PlayedMatch],
) -> int | None:
    if isinstance(slot, Seed):
        table = standings.get(slot.pool, ())
        if len(table) < slot.place:
            return None
        return table[slot.place - 1].team_id
    entry = by_position.get((slot.round, slot.position))
    if entry is None:
        return None
    if slot.winner:
        return match_winner(entry.match, entry.result)
    return match_loser(entry.match, entry.result)


def _festival_matches(
    standings: Mapping[str, Sequence[Standing]],
    existing: Sequence[PlayedMatch],
    tournament_id: int,
) -> List[Match]:
    if any(entry.match.stage == STAGE_FESTIVAL for entry in existing):
        return []
    team_ids = [
        row.team_id
        for pool in sorted(standings)
        for row in standings[pool][FESTIVAL_FROM_PLACE - 1 :]
    ]
    if len(team_ids) < 2:
        return []

    matches: List[Match] = []
    seen: set[Tuple[int, int]] = set()
    # Circle method: n - 1 rounds cover every pairing once.
    round_count = len(team_ids) - 1 if len(team_ids) % 2 == 0 else len(team_ids)
    for pairs in round_robin_pairings(team_ids, round_count):
        for home_id, away_id in pairs:
            if home_id is None or away_id is None:
                continue
            key = (min(home_id, away_id), max(home_id, away_id))
            if key in seen:
                continue
            seen.add(key)
            matches.append(
                _knockout_match(tournament_id, STAGE_FESTIVAL, STAGE_FESTIVAL, len(matches) + 1, home_id, away_id)
            )
    return matches


def _knockout_match(
    tournament_id: int, stage: str, round_name: str, position: int, home_id: int, away_id: int
) -> Match:
    return Match(
        tournament_id=tournament_id,
        home_team_id=home_id,
        away_team_id=away_id,
        stage=stage,
        round=round_name,
        bracket_position=position,
        day=KNOCKOUT_DAY,
        time_slot=KNOCKOUT_TIME_SLOT,
        arena=KNOCKOUT_ARENA,
        completed=False,
    )


def group_bracket(matches: Iterable[Match], stage: str) -> List[Dict[str, object]]:
    """Organise a stage's matches by round for display, in template order."""
    order = ROUND_ORDER.get(stage, ())
    grouped: Dict[str, List[Match]] = {name: [] for name in order}
    for match in matches:
        if match.stage != stage:
            continue
        grouped.setdefault(match.round or stage, []).append(match)
    rounds: List[Dict[str, object]] = []
    for name, round_matches in grouped.items():
        round_matches.sort(key=lambda match: (match.bracket_position or 0, match.id or 0))
        rounds.append({"round": name, "matches": round_matches})
    return rounds
