"""Standings calculator.

Turns finished match results into a ranked league table.

Ranking (total order, never undefined):
1. Points (desc) - 3 for a win, 1 for a draw
2. Goal difference (desc)
3. Goals scored (desc)
4. Team id (asc)

Teams that are level on all four criteria still get distinct, adjacent
positions; positions are never shared.
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace

import structlog

from tablekeeper.errors import CalculationInvariantViolation, InputError
from tablekeeper.services.standings.table import (
    MatchResult,
    MatchStatus,
    Table,
    TableEntry,
    TeamId,
)

logger = structlog.get_logger(__name__)

POINTS_WIN = 3
POINTS_DRAW = 1


@dataclass
class _TeamStats:
    """Running totals for one team."""

    played: int = 0
    won: int = 0
    drawn: int = 0
    lost: int = 0
    goals_for: int = 0
    goals_against: int = 0

    def record(self, scored: int, conceded: int) -> None:
        self.played += 1
        self.goals_for += scored
        self.goals_against += conceded
        if scored > conceded:
            self.won += 1
        elif scored == conceded:
            self.drawn += 1
        else:
            self.lost += 1

    @property
    def goal_difference(self) -> int:
        return self.goals_for - self.goals_against

    @property
    def points(self) -> int:
        return self.won * POINTS_WIN + self.drawn * POINTS_DRAW


def ranking_key(entry: TableEntry) -> tuple:
    """Sort key implementing the ranking order."""
    return (-entry.points, -entry.goal_difference, -entry.goals_for, entry.team_id)


def _validate_goals(match: MatchResult) -> None:
    for side, goals in (("home", match.home_goals), ("away", match.away_goals)):
        if isinstance(goals, bool) or not isinstance(goals, int):
            raise InputError(
                f"Finished match has no {side} score",
                details={"match_id": match.match_id, f"{side}_goals": goals},
            )
        if goals < 0:
            raise InputError(
                f"Negative {side} goals in match",
                details={"match_id": match.match_id, f"{side}_goals": goals},
            )


def _validate_match(
    match: MatchResult,
    known: Mapping[TeamId, _TeamStats],
    league_id: int | None,
    season_id: int | None,
) -> None:
    if match.status not in MatchStatus.__members__.values() or (
        MatchStatus(match.status) is not MatchStatus.FINISHED
    ):
        raise InputError(
            "Only finished matches can be calculated",
            details={"match_id": match.match_id, "status": str(match.status)},
        )
    if league_id is not None and match.league_id != league_id:
        raise InputError(
            "Match belongs to another league",
            details={"match_id": match.match_id, "league_id": match.league_id},
        )
    if season_id is not None and match.season_id != season_id:
        raise InputError(
            "Match belongs to another season",
            details={"match_id": match.match_id, "season_id": match.season_id},
        )
    if match.home_team_id == match.away_team_id:
        raise InputError(
            "Team cannot play against itself",
            details={"match_id": match.match_id, "team_id": str(match.home_team_id)},
        )
    for team_id in (match.home_team_id, match.away_team_id):
        if team_id not in known:
            raise InputError(
                "Match references a team outside the league roster",
                details={"match_id": match.match_id, "team_id": str(team_id)},
            )
    _validate_goals(match)


def compute(
    matches: Iterable[MatchResult],
    teams: Sequence[TeamId],
    league_id: int | None = None,
    season_id: int | None = None,
    team_names: Mapping[TeamId, str] | None = None,
) -> Table:
    """
    Compute the league table for a set of finished matches.

    Args:
        matches: Finished matches of one league and season
        teams: Every team in the league, including teams without matches
        league_id: Optional league the matches must belong to
        season_id: Optional season the matches must belong to
        team_names: Optional display names, copied onto the entries

    Returns:
        Table with contiguous positions 1..N

    Raises:
        InputError: if a match is not finished, malformed, or references
            a team that is not in ``teams``
    """
    stats: dict[TeamId, _TeamStats] = {}
    for team_id in teams:
        if team_id in stats:
            raise InputError(
                "Duplicate team in league roster", details={"team_id": str(team_id)}
            )
        stats[team_id] = _TeamStats()

    for match in matches:
        _validate_match(match, stats, league_id, season_id)
        stats[match.home_team_id].record(match.home_goals, match.away_goals)
        stats[match.away_team_id].record(match.away_goals, match.home_goals)

    names = team_names or {}
    unranked = [
        TableEntry(
            team_id=team_id,
            position=0,
            played=s.played,
            won=s.won,
            drawn=s.drawn,
            lost=s.lost,
            goals_for=s.goals_for,
            goals_against=s.goals_against,
            goal_difference=s.goal_difference,
            points=s.points,
            team_name=names.get(team_id),
        )
        for team_id, s in stats.items()
    ]

    try:
        ranked = sorted(unranked, key=ranking_key)
    except TypeError as e:
        # Team ids of mixed, unorderable types
        raise InputError("Team ids are not mutually comparable", details={"error": str(e)})

    entries = tuple(
        replace(entry, position=index)
        for index, entry in enumerate(ranked, start=1)
    )
    return Table(league_id=league_id, season_id=season_id, entries=entries)


def find_violations(
    table: Table, expected_teams: Iterable[TeamId] | None = None
) -> list[str]:
    """Return a description of every invariant the table breaks."""
    violations: list[str] = []
    entries = table.entries

    for entry in entries:
        label = f"team {entry.team_id}"
        if entry.points != entry.won * POINTS_WIN + entry.drawn * POINTS_DRAW:
            violations.append(f"{label}: points != 3*won + drawn")
        if entry.played != entry.won + entry.drawn + entry.lost:
            violations.append(f"{label}: played != won + drawn + lost")
        if entry.goal_difference != entry.goals_for - entry.goals_against:
            violations.append(f"{label}: goal_difference != goals_for - goals_against")
        if min(entry.played, entry.won, entry.drawn, entry.lost,
               entry.goals_for, entry.goals_against) < 0:
            violations.append(f"{label}: negative counter")

    total_for = sum(e.goals_for for e in entries)
    total_against = sum(e.goals_against for e in entries)
    if total_for != total_against:
        violations.append(
            f"sum(goals_for)={total_for} != sum(goals_against)={total_against}"
        )

    positions = [e.position for e in entries]
    if positions != list(range(1, len(entries) + 1)):
        violations.append(f"positions are not contiguous 1..{len(entries)}: {positions}")

    team_ids = [e.team_id for e in entries]
    if len(set(team_ids)) != len(team_ids):
        violations.append("team listed more than once")
    elif expected_teams is not None and set(team_ids) != set(expected_teams):
        violations.append("table teams do not match the league roster")

    try:
        if [ranking_key(e) for e in entries] != sorted(ranking_key(e) for e in entries):
            violations.append("entries are not in ranking order")
    except TypeError:
        violations.append("team ids are not mutually comparable")

    return violations


def verify_table(table: Table, expected_teams: Iterable[TeamId] | None = None) -> None:
    """
    Check every standings invariant.

    Raises:
        CalculationInvariantViolation: listing all violations found
    """
    violations = find_violations(table, expected_teams)
    if violations:
        logger.error(
            "table_invariant_violation",
            league_id=table.league_id,
            season_id=table.season_id,
            violations=violations,
        )
        raise CalculationInvariantViolation(
            "Table violates standings invariants",
            details={"violations": violations},
        )
