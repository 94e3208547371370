"""Data access for one tournament.

The standings and bracket modules are pure; this class is the only piece that
reads or writes the database on their behalf.
"""

from __future__ import annotations

import logging
import random
from typing import Iterable, Mapping, Sequence

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from . import config
from .bracket import bracket_ready, dependent_rounds, generate_next_round_matches
from .database import (
    KNOCKOUT_STAGES,
    POOL_LABELS,
    STAGE_FESTIVAL,
    STAGE_PLAYOFF,
    STAGE_POOL,
    STAGES,
    Match,
    MatchResult,
    Player,
    PlayerStat,
    Team,
    Tournament,
    get_active_tournament,
    utcnow,
)
from .fixtures import allocate_pools, generate_pool_fixtures
from .standings import (
    PlayedMatch,
    Scorer,
    Standing,
    compute_standings,
    match_loser,
    match_winner,
    pool_stage_complete,
    top_scorers,
)

logger = logging.getLogger(__name__)

STAT_FIELDS = ("goals", "kick_outs", "yellow_cards", "red_cards")


class TournamentError(ValueError):
    """Base class for rejected tournament operations."""


class RegistrationError(TournamentError):
    pass


class DuplicateTeamError(RegistrationError):
    pass


class ResultError(TournamentError):
    pass


class ShootoutRequiredError(ResultError):
    """A level knockout score was saved without a shootout winner."""


class GoalTallyError(ResultError):
    """Player goals disagree with the match score."""


class BracketLockedError(ResultError):
    """The match already decided a slot in a later round."""


class FixtureError(TournamentError):
    pass


class PoolsLockedError(FixtureError):
    """Pool results exist, so pools and pool fixtures can no longer change."""


def validate_school_name(name: str) -> str | None:
    cleaned = name.strip()
    if not cleaned:
        return "School name is required."
    if len(cleaned) < 2:
        return "School name must be at least 2 characters."
    if len(cleaned) > 50:
        return "School name must be 50 characters or fewer."
    return None


def validate_person_name(name: str, role: str) -> str | None:
    cleaned = name.strip()
    if not cleaned:
        return f"{role} name is required."
    if len(cleaned) < 2:
        return f"{role} name must be at least 2 characters."
    if len(cleaned) > 30:
        return f"{role} name must be 30 characters or fewer."
    return None


def validate_squad(players: Sequence[tuple[int, str]]) -> str | None:
    if len(players) < config.MIN_SQUAD_SIZE:
        return f"Team must have at least {config.MIN_SQUAD_SIZE} players."
    if len(players) > config.MAX_SQUAD_SIZE:
        return f"Team cannot have more than {config.MAX_SQUAD_SIZE} players."
    seen: set[int] = set()
    for cap_number, name in players:
        if cap_number < config.MIN_CAP_NUMBER or cap_number > config.MAX_CAP_NUMBER:
            return f"Cap number must be between {config.MIN_CAP_NUMBER} and {config.MAX_CAP_NUMBER}."
        if cap_number in seen:
            return f"Cap number {cap_number} is used twice."
        seen.add(cap_number)
        error = validate_person_name(name, "Player")
        if error:
            return error
    return None


class TournamentRepository:
    def __init__(self, session: Session, tournament: Tournament):
        self.session = session
        self.tournament = tournament

    @classmethod
    def for_active(cls, session: Session) -> "TournamentRepository":
        return cls(session, get_active_tournament(session))

    # Teams -----------------------------------------------------------------

    def teams(self, pool: str | None = None) -> list[Team]:
        query = select(Team).where(Team.tournament_id == self.tournament.id)
        if pool:
            query = query.where(Team.pool == pool)
        return list(self.session.exec(query.order_by(Team.school_name)).all())

    def team(self, team_id: int) -> Team | None:
        team = self.session.get(Team, team_id)
        if team is None or team.tournament_id != self.tournament.id:
            return None
        return team

    def players(self, team_id: int | None = None) -> list[Player]:
        query = select(Player)
        if team_id is not None:
            query = query.where(Player.team_id == team_id)
        else:
            team_ids = [team.id for team in self.teams()]
            query = query.where(Player.team_id.in_(team_ids))
        return list(self.session.exec(query.order_by(Player.team_id, Player.cap_number)).all())

    def register_team(
        self,
        school_name: str,
        coach_name: str,
        manager_name: str,
        players: Sequence[tuple[int, str]],
        pool: str | None = None,
    ) -> Team:
        cleaned = school_name.strip()
        error = (
            validate_school_name(cleaned)
            or validate_person_name(coach_name, "Coach")
            or validate_person_name(manager_name, "Manager")
            or validate_squad(players)
            or self._validate_pool(pool)
        )
        if error:
            raise RegistrationError(error)
        self._ensure_unique_name(cleaned)

        team = Team(
            tournament_id=self.tournament.id,
            school_name=cleaned,
            coach_name=coach_name.strip(),
            manager_name=manager_name.strip(),
            pool=pool or None,
        )
        self.session.add(team)
        self.session.flush()
        for cap_number, name in sorted(players):
            self.session.add(Player(team_id=team.id, name=name.strip(), cap_number=cap_number))
        self.session.commit()
        self.session.refresh(team)
        logger.info("Registered team %s (%d players)", team.school_name, len(players))
        return team

    def update_team(
        self,
        team: Team,
        *,
        school_name: str | None = None,
        coach_name: str | None = None,
        manager_name: str | None = None,
        pool: str | None = None,
        clear_pool: bool = False,
    ) -> Team:
        if school_name is not None:
            cleaned = school_name.strip()
            error = validate_school_name(cleaned)
            if error:
                raise RegistrationError(error)
            self._ensure_unique_name(cleaned, exclude_id=team.id)
            team.school_name = cleaned
        if coach_name is not None:
            error = validate_person_name(coach_name, "Coach")
            if error:
                raise RegistrationError(error)
            team.coach_name = coach_name.strip()
        if manager_name is not None:
            error = validate_person_name(manager_name, "Manager")
            if error:
                raise RegistrationError(error)
            team.manager_name = manager_name.strip()
        new_pool = None if clear_pool else (pool if pool is not None else team.pool)
        if new_pool != team.pool:
            error = self._validate_pool(new_pool)
            if error:
                raise RegistrationError(error)
            if self._has_pool_results(team.id):
                raise PoolsLockedError("This team has pool results recorded; its pool is locked.")
            team.pool = new_pool
        self.session.add(team)
        self.session.commit()
        self.session.refresh(team)
        return team

    def set_logo(self, team: Team, logo: str) -> Team:
        team.logo = logo
        self.session.add(team)
        self.session.commit()
        self.session.refresh(team)
        return team

    def delete_team(self, team: Team) -> None:
        school_name = team.school_name
        matches = self.session.exec(
            select(Match).where((Match.home_team_id == team.id) | (Match.away_team_id == team.id))
        ).all()
        for match in matches:
            self._delete_match(match)
        for player in self.players(team.id):
            self.session.delete(player)
        self.session.delete(team)
        self.session.commit()
        logger.info("Deleted team %s and %d matches", school_name, len(matches))

    def allocate_pools(self, rng: random.Random | None = None) -> Mapping[int, str]:
        if any(entry.match.completed for entry in self.played_matches(STAGE_POOL)):
            raise PoolsLockedError("Pool results are already recorded; allocation is locked.")
        teams = self.teams()
        allocation = allocate_pools(teams, rng)
        for team in teams:
            team.pool = allocation[team.id]
            self.session.add(team)
        self._clear_matches(STAGE_POOL)
        self.session.commit()
        logger.info("Allocated %d teams to pools", len(allocation))
        return allocation

    def _validate_pool(self, pool: str | None) -> str | None:
        if pool and pool not in POOL_LABELS:
            return f"Pool must be one of {', '.join(POOL_LABELS)}."
        return None

    def _has_pool_results(self, team_id: int) -> bool:
        return any(
            entry.match.completed and team_id in (entry.match.home_team_id, entry.match.away_team_id)
            for entry in self.played_matches(STAGE_POOL)
        )

    def _ensure_unique_name(self, school_name: str, exclude_id: int | None = None) -> None:
        query = select(Team).where(
            (Team.tournament_id == self.tournament.id) & (Team.school_name == school_name)
        )
        if exclude_id is not None:
            query = query.where(Team.id != exclude_id)
        if self.session.exec(query).first():
            raise DuplicateTeamError("That school is already registered.")

    # Matches ---------------------------------------------------------------

    def matches(
        self,
        stage: str | None = None,
        pool: str | None = None,
        day: int | None = None,
        completed: bool | None = None,
        round: str | None = None,
    ) -> list[Match]:
        query = select(Match).where(Match.tournament_id == self.tournament.id)
        if stage:
            query = query.where(Match.stage == stage)
        if round:
            query = query.where(Match.round == round)
        if pool:
            query = query.where(Match.pool == pool)
        if day is not None:
            query = query.where(Match.day == day)
        if completed is not None:
            query = query.where(Match.completed == completed)
        query = query.order_by(Match.day, Match.time_slot, Match.arena, Match.bracket_position, Match.id)
        return list(self.session.exec(query).all())

    def match(self, match_id: int) -> Match | None:
        match = self.session.get(Match, match_id)
        if match is None or match.tournament_id != self.tournament.id:
            return None
        return match

    def results(self, match_ids: Iterable[int] | None = None) -> dict[int, MatchResult]:
        query = select(MatchResult)
        if match_ids is not None:
            query = query.where(MatchResult.match_id.in_(list(match_ids)))
        return {result.match_id: result for result in self.session.exec(query).all()}

    def result(self, match_id: int) -> MatchResult | None:
        return self.session.exec(select(MatchResult).where(MatchResult.match_id == match_id)).first()

    def played_matches(self, stage: str | None = None) -> list[PlayedMatch]:
        matches = self.matches(stage=stage)
        results = self.results(match.id for match in matches)
        return [PlayedMatch(match, results.get(match.id)) for match in matches]

    def create_match(
        self,
        *,
        home_team_id: int,
        away_team_id: int,
        stage: str,
        pool: str | None = None,
        round: str | None = None,
        bracket_position: int | None = None,
        day: int = 1,
        time_slot: str = "08:00",
        arena: int = 1,
    ) -> Match:
        if stage not in STAGES:
            raise FixtureError(f"Stage must be one of {', '.join(STAGES)}.")
        if home_team_id == away_team_id:
            raise FixtureError("A team cannot play itself.")
        home = self.team(home_team_id)
        away = self.team(away_team_id)
        if home is None or away is None:
            raise FixtureError("Both teams must be registered for this tournament.")
        if stage == STAGE_POOL:
            pool = pool or home.pool
            if not pool or home.pool != pool or away.pool != pool:
                raise FixtureError("Pool matches need two teams from the same pool.")
        match = Match(
            tournament_id=self.tournament.id,
            home_team_id=home_team_id,
            away_team_id=away_team_id,
            stage=stage,
            pool=pool,
            round=round,
            bracket_position=bracket_position,
            day=day,
            time_slot=time_slot,
            arena=arena,
        )
        self.session.add(match)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise FixtureError("That bracket slot already has a match.") from exc
        self.session.refresh(match)
        return match

    def reschedule_match(
        self,
        match: Match,
        *,
        day: int | None = None,
        time_slot: str | None = None,
        arena: int | None = None,
    ) -> Match:
        if day is not None:
            match.day = day
        if time_slot is not None:
            match.time_slot = time_slot
        if arena is not None:
            match.arena = arena
        self.session.add(match)
        self.session.commit()
        self.session.refresh(match)
        return match

    def generate_pool_fixtures(self) -> list[Match]:
        if any(entry.match.completed for entry in self.played_matches(STAGE_POOL)):
            raise PoolsLockedError("Pool results are already recorded; fixtures are locked.")
        teams = [team for team in self.teams() if team.pool]
        if len(teams) < 2:
            raise FixtureError("Allocate at least two teams to pools first.")
        self._clear_matches(STAGE_POOL)
        fixtures = generate_pool_fixtures(teams, tournament_id=self.tournament.id)
        for match in fixtures:
            self.session.add(match)
        self.session.commit()
        logger.info("Generated %d pool fixtures", len(fixtures))
        return fixtures

    def generate_knockout_round(self, stage: str) -> list[Match]:
        """Persist the next resolvable round of a knockout stage."""
        if stage not in KNOCKOUT_STAGES:
            raise FixtureError(f"Stage must be one of {', '.join(KNOCKOUT_STAGES)}.")
        all_matches = self.matches()
        if stage != STAGE_PLAYOFF and not pool_stage_complete(all_matches):
            logger.warning("Refusing to seed %s before the pool stage is complete", stage)
            return []
        standings = self.standings()
        if not bracket_ready(standings, stage):
            logger.warning("Pools are too small to seed the %s bracket", stage)
            return []
        new_matches = generate_next_round_matches(
            standings, stage, self.played_matches(), tournament_id=self.tournament.id
        )
        for match in new_matches:
            self.session.add(match)
        try:
            self.session.commit()
        except IntegrityError:
            # Another request created these rounds first.
            self.session.rollback()
            logger.warning("%s bracket was generated concurrently; nothing new to add", stage)
            return []
        for match in new_matches:
            self.session.refresh(match)
        if new_matches:
            rounds = sorted({match.round for match in new_matches})
            logger.info("Generated %d %s matches (%s)", len(new_matches), stage, ", ".join(rounds))
        return new_matches

    def _clear_matches(self, stage: str) -> None:
        for match in self.matches(stage=stage):
            self._delete_match(match)
        # Deletes must reach the database before replacements reuse their bracket slots.
        self.session.flush()

    def _delete_match(self, match: Match) -> None:
        result = self.result(match.id)
        if result:
            for stat in self.player_stats(result.id):
                self.session.delete(stat)
            self.session.delete(result)
        self.session.delete(match)

    # Results ---------------------------------------------------------------

    def record_result(
        self,
        match: Match,
        home_score: int,
        away_score: int,
        *,
        home_penalties: int | None = None,
        away_penalties: int | None = None,
        player_stats: Sequence[Mapping[str, int]] = (),
        completed: bool = True,
    ) -> MatchResult:
        """Upsert the result for a match, keyed by match id."""
        scores = [home_score, away_score, home_penalties or 0, away_penalties or 0]
        if any(score < 0 for score in scores):
            raise ResultError("Scores must be zero or greater.")
        knockout = match.stage in KNOCKOUT_STAGES and match.stage != STAGE_FESTIVAL
        if completed and knockout and home_score == away_score:
            if home_penalties is None or away_penalties is None or home_penalties == away_penalties:
                raise ShootoutRequiredError("Knockout matches need a winner; record the penalty shootout.")

        rows = self._validate_player_stats(match, home_score, away_score, player_stats)

        result = self.result(match.id)
        if result is not None and match.completed:
            self._check_bracket_unchanged(
                match,
                result,
                MatchResult(
                    match_id=match.id,
                    home_score=home_score,
                    away_score=away_score,
                    home_penalties=home_penalties,
                    away_penalties=away_penalties,
                ),
                completed,
            )
        if result is None:
            result = MatchResult(match_id=match.id)
        result.home_score = home_score
        result.away_score = away_score
        result.home_penalties = home_penalties
        result.away_penalties = away_penalties
        result.updated_at = utcnow()
        self.session.add(result)
        self.session.flush()

        if rows:
            existing = {stat.player_id: stat for stat in self.player_stats(result.id)}
            for player, values in rows:
                stat = existing.pop(player.id, None) or PlayerStat(
                    match_result_id=result.id, player_id=player.id, cap_number=player.cap_number
                )
                for field in STAT_FIELDS:
                    setattr(stat, field, values.get(field, 0))
                self.session.add(stat)
            for stale in existing.values():
                self.session.delete(stale)

        match.completed = completed
        self.session.add(match)
        self.session.commit()
        self.session.refresh(result)
        logger.info(
            "Recorded %s match %s: %d-%d", match.stage, match.id, home_score, away_score
        )
        return result

    def _check_bracket_unchanged(
        self, match: Match, previous: MatchResult, candidate: MatchResult, completed: bool
    ) -> None:
        if not match.round or match.bracket_position is None:
            return
        before = (match_winner(match, previous), match_loser(match, previous))
        after = (match_winner(match, candidate), match_loser(match, candidate)) if completed else (None, None)
        if before == after:
            return
        for stage, round_name in dependent_rounds(match.round, match.bracket_position):
            if self.matches(stage=stage, round=round_name):
                raise BracketLockedError(
                    f"This result already decided the {round_name} draw; it can no longer change the outcome."
                )

    def _validate_player_stats(
        self,
        match: Match,
        home_score: int,
        away_score: int,
        player_stats: Sequence[Mapping[str, int]],
    ) -> list[tuple[Player, Mapping[str, int]]]:
        if not player_stats:
            return []
        roster = {
            player.id: player
            for player in self.players(match.home_team_id) + self.players(match.away_team_id)
        }
        rows: list[tuple[Player, Mapping[str, int]]] = []
        goals = {match.home_team_id: 0, match.away_team_id: 0}
        sides_seen: set[int] = set()
        for values in player_stats:
            player = roster.get(values.get("player_id"))
            if player is None:
                raise ResultError("Player stats must reference players from either team.")
            if any(values.get(field, 0) < 0 for field in STAT_FIELDS):
                raise ResultError("Player stats must be zero or greater.")
            goals[player.team_id] += values.get("goals", 0)
            sides_seen.add(player.team_id)
            rows.append((player, values))

        if match.home_team_id in sides_seen and goals[match.home_team_id] != home_score:
            raise GoalTallyError("Home player goals do not add up to the home score.")
        if match.away_team_id in sides_seen and goals[match.away_team_id] != away_score:
            raise GoalTallyError("Away player goals do not add up to the away score.")
        return rows

    def player_stats(self, match_result_id: int | None = None) -> list[PlayerStat]:
        query = select(PlayerStat)
        if match_result_id is not None:
            query = query.where(PlayerStat.match_result_id == match_result_id)
        else:
            match_ids = [match.id for match in self.matches()]
            result_ids = [result.id for result in self.results(match_ids).values()]
            query = query.where(PlayerStat.match_result_id.in_(result_ids))
        return list(self.session.exec(query.order_by(PlayerStat.match_result_id, PlayerStat.cap_number)).all())

    def upsert_player_stat(self, match_result_id: int, player_id: int, values: Mapping[str, int]) -> PlayerStat:
        result = self.session.get(MatchResult, match_result_id)
        if result is None:
            raise ResultError("Match result not found.")
        player = self.session.get(Player, player_id)
        match = self.match(result.match_id)
        if player is None or match is None or player.team_id not in (match.home_team_id, match.away_team_id):
            raise ResultError("Player stats must reference players from either team.")
        if any(values.get(field, 0) < 0 for field in STAT_FIELDS):
            raise ResultError("Player stats must be zero or greater.")
        stat = self.session.exec(
            select(PlayerStat).where(
                (PlayerStat.match_result_id == match_result_id) & (PlayerStat.player_id == player_id)
            )
        ).first()
        if stat is None:
            stat = PlayerStat(match_result_id=match_result_id, player_id=player_id, cap_number=player.cap_number)
        for field in STAT_FIELDS:
            setattr(stat, field, values.get(field, 0))
        self.session.add(stat)
        self.session.commit()
        self.session.refresh(stat)
        return stat

    # Derived ---------------------------------------------------------------

    def standings(self) -> dict[str, list[Standing]]:
        return compute_standings(self.teams(), self.played_matches(STAGE_POOL))

    def top_scorers(self, limit: int = 5) -> tuple[list[Scorer], int]:
        return top_scorers(self.player_stats(), self.players(), self.teams(), limit)
