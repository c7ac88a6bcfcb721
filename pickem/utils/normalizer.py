"""
Box score normalization.

The NHL has served box scores in several shapes over the years. Everything
upstream-specific lives here: callers get a NormalizedBoxScore keyed by NHL
player id plus the game-level scoring context (overtime, shootout, goals for
the followed team and its opponent).

Supported inputs:
    api-web   gamecenter/{id}/boxscore  (playerByGameStats.*)
    flattened boxscore.playerStats[] with top-level team scores
    legacy    statsapi teams.{home,away}.players["ID..."].stats + linescore
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from pickem.errors import UpstreamDataError
from pickem.utils.scoring import (
    AssistEvent,
    GameContext,
    GoalEvent,
    GoaliePerformance,
    Position,
    SkaterPerformance,
)

logger = logging.getLogger(__name__)

PERIOD_REGULATION = "REG"
PERIOD_OVERTIME = "OT"
PERIOD_SHOOTOUT = "SO"

_POSITION_CODES = {
    "G": Position.GOALIE,
    "GOALIE": Position.GOALIE,
    "GOALIES": Position.GOALIE,
    "D": Position.DEFENSE,
    "DEFENSE": Position.DEFENSE,
    "DEFENSEMAN": Position.DEFENSE,
    "DEFENSEMEN": Position.DEFENSE,
    "C": Position.FORWARD,
    "L": Position.FORWARD,
    "R": Position.FORWARD,
    "LW": Position.FORWARD,
    "RW": Position.FORWARD,
    "F": Position.FORWARD,
    "FORWARD": Position.FORWARD,
    "FORWARDS": Position.FORWARD,
    "CENTER": Position.FORWARD,
    "LEFT WING": Position.FORWARD,
    "RIGHT WING": Position.FORWARD,
}


def normalize_position(value):
    """Map an upstream position code or type onto Forward/Defense/Goalie"""
    if isinstance(value, Position):
        return value
    key = str(value or "").strip().upper()
    if key in _POSITION_CODES:
        return _POSITION_CODES[key]
    logger.warning(f"Unknown position '{value}', treating as Forward")
    return Position.FORWARD


def _int(value, default=0):
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise UpstreamDataError(f"Expected an integer stat, got {value!r}")


def _text(value):
    """api-web wraps localized strings as {"default": "..."}"""
    if isinstance(value, dict):
        return value.get("default", "")
    return value or ""


@dataclass
class SkaterLine:
    nhl_player_id: int
    position: Position
    name: str = ""
    number: Optional[int] = None
    goals: int = 0
    assists: int = 0
    shorthanded_goals: int = 0
    shorthanded_assists: int = 0
    power_play_goals: int = 0
    goal_events: Optional[list] = None
    assist_events: Optional[list] = None

    def to_stats(self):
        return {
            "goals": self.goals,
            "assists": self.assists,
            "shorthanded_goals": self.shorthanded_goals,
            "shorthanded_assists": self.shorthanded_assists,
            "power_play_goals": self.power_play_goals,
            "goal_events": self.goal_events,
            "assist_events": self.assist_events,
        }


@dataclass
class GoalieLine:
    nhl_player_id: int
    name: str = ""
    number: Optional[int] = None
    goals_against: Optional[int] = None
    empty_net_goals_against: int = 0
    shootout_goals_against: int = 0
    assists: int = 0
    position: Position = Position.GOALIE
    # True when goals_against was taken from the opponent final score
    derived_from_score: bool = False

    @property
    def shutout(self):
        return self.to_performance().goals_allowed == 0

    def to_performance(self):
        return GoaliePerformance(
            goals_against=self.goals_against,
            assists=self.assists,
            empty_net_goals=self.empty_net_goals_against,
            shootout_goals=self.shootout_goals_against,
        )

    def to_stats(self):
        return {
            "goals": 0,
            "assists": self.assists,
            "goals_against": self.goals_against,
            "empty_net_goals_against": self.empty_net_goals_against,
            "shootout_goals_against": self.shootout_goals_against,
        }


@dataclass
class NormalizedBoxScore:
    home_score: int
    away_score: int
    is_home: bool
    is_overtime: bool = False
    is_shootout: bool = False
    skaters: Dict[int, SkaterLine] = field(default_factory=dict)
    goalies: Dict[int, GoalieLine] = field(default_factory=dict)

    @property
    def team_goals(self):
        return self.home_score if self.is_home else self.away_score

    @property
    def opponent_goals(self):
        return self.away_score if self.is_home else self.home_score

    @property
    def context(self):
        return GameContext(
            is_overtime=self.is_overtime,
            is_shootout=self.is_shootout,
            team_goals=self.team_goals,
            opponent_goals=self.opponent_goals,
        )

    def get(self, nhl_player_id):
        """Skater or goalie line for a player, None when absent from the box score"""
        if nhl_player_id is None:
            return None
        return self.skaters.get(nhl_player_id) or self.goalies.get(nhl_player_id)

    def lines(self):
        yield from self.skaters.values()
        yield from self.goalies.values()


def stats_to_performance(position, stats):
    """Build a scoring-engine input from a stored stats record (model or dict)"""
    get = stats.get if isinstance(stats, dict) else lambda key, default=None: getattr(
        stats, key, default
    )
    position = normalize_position(position)

    if position is Position.GOALIE:
        return GoaliePerformance(
            goals_against=get("goals_against"),
            assists=get("assists") or 0,
            empty_net_goals=get("empty_net_goals_against") or 0,
            shootout_goals=get("shootout_goals_against") or 0,
        )

    goal_events = get("goal_events")
    assist_events = get("assist_events")
    return SkaterPerformance(
        goals=get("goals") or 0,
        assists=get("assists") or 0,
        shorthanded_goals=get("shorthanded_goals") or 0,
        shorthanded_assists=get("shorthanded_assists") or 0,
        goal_events=(
            tuple(
                GoalEvent(
                    position=position,
                    is_overtime=bool(event.get("is_overtime")),
                    is_shorthanded=bool(event.get("is_shorthanded")),
                    is_empty_net=bool(event.get("is_empty_net")),
                )
                for event in goal_events
            )
            if goal_events is not None
            else None
        ),
        assist_events=(
            tuple(
                AssistEvent(
                    is_overtime=bool(event.get("is_overtime")),
                    is_shorthanded=bool(event.get("is_shorthanded")),
                )
                for event in assist_events
            )
            if assist_events is not None
            else None
        ),
    )


def _resolve_side(home, away, team_id, team_abbrev, is_home):
    """Decide whether the followed team is home, by id, then abbrev, then the game flag"""
    if team_id is not None:
        if home.get("id") == team_id:
            return True
        if away.get("id") == team_id:
            return False
    if team_abbrev:
        abbrev = team_abbrev.upper()
        if _text(home.get("abbrev")).upper() == abbrev:
            return True
        if _text(away.get("abbrev")).upper() == abbrev:
            return False
    if is_home is not None:
        return bool(is_home)
    raise UpstreamDataError("Could not identify the followed team in the box score")


def _last_period_type(payload):
    outcome = payload.get("gameOutcome") or {}
    period_type = outcome.get("lastPeriodType")
    if not period_type:
        period_type = (payload.get("periodDescriptor") or {}).get("periodType")
    return (period_type or PERIOD_REGULATION).upper()


def _goalie_played(line):
    toi = line.get("toi")
    if toi is None:
        return True
    return toi not in ("00:00", "0:00", "")


def _normalize_api_web(payload, team_id, team_abbrev, is_home):
    home = payload.get("homeTeam") or {}
    away = payload.get("awayTeam") or {}
    if home.get("score") is None or away.get("score") is None:
        raise UpstreamDataError("Box score has no team scores")

    side_is_home = _resolve_side(home, away, team_id, team_abbrev, is_home)
    period_type = _last_period_type(payload)

    box = NormalizedBoxScore(
        home_score=_int(home.get("score")),
        away_score=_int(away.get("score")),
        is_home=side_is_home,
        is_overtime=period_type in (PERIOD_OVERTIME, PERIOD_SHOOTOUT),
        is_shootout=period_type == PERIOD_SHOOTOUT,
    )

    team_stats = (payload.get("playerByGameStats") or {}).get(
        "homeTeam" if side_is_home else "awayTeam"
    ) or {}

    for group, group_position in (("forwards", Position.FORWARD), ("defense", Position.DEFENSE)):
        for line in team_stats.get(group) or []:
            player_id = _int(line.get("playerId"), default=None)
            if player_id is None:
                continue
            box.skaters[player_id] = SkaterLine(
                nhl_player_id=player_id,
                position=group_position,
                name=_text(line.get("name")),
                number=_int(line.get("sweaterNumber"), default=None),
                goals=_int(line.get("goals")),
                assists=_int(line.get("assists")),
                shorthanded_goals=_int(line.get("shortHandedGoals")),
                shorthanded_assists=_int(line.get("shortHandedAssists")),
                power_play_goals=_int(line.get("powerPlayGoals")),
            )

    for line in team_stats.get("goalies") or []:
        player_id = _int(line.get("playerId"), default=None)
        if player_id is None:
            continue
        box.goalies[player_id] = GoalieLine(
            nhl_player_id=player_id,
            name=_text(line.get("name")),
            number=_int(line.get("sweaterNumber"), default=None),
            goals_against=_int(line.get("goalsAgainst")) if _goalie_played(line) else None,
            assists=_int(line.get("assists")),
        )

    return box


def _shootout_goals_against(box):
    """A derived goals-against includes the winning shootout tally"""
    if box.is_shootout and box.opponent_goals > box.team_goals:
        return 1
    return 0


def _normalize_flattened(payload, team_id, team_abbrev, is_home):
    home = payload.get("homeTeam") or {}
    away = payload.get("awayTeam") or {}
    home_score = home.get("score", payload.get("homeScore"))
    away_score = away.get("score", payload.get("awayScore"))
    if home_score is None or away_score is None:
        raise UpstreamDataError("Box score has no team scores")

    side_is_home = _resolve_side(home, away, team_id, team_abbrev, is_home)
    period_type = _last_period_type(payload)

    box = NormalizedBoxScore(
        home_score=_int(home_score),
        away_score=_int(away_score),
        is_home=side_is_home,
        is_overtime=period_type in (PERIOD_OVERTIME, PERIOD_SHOOTOUT),
        is_shootout=period_type == PERIOD_SHOOTOUT,
    )
    our_team_id = (home if side_is_home else away).get("id")

    for line in payload["boxscore"].get("playerStats") or []:
        if "teamId" in line and our_team_id is not None and line["teamId"] != our_team_id:
            continue
        player_id = _int(line.get("playerId"), default=None)
        if player_id is None:
            continue
        position = normalize_position(line.get("position"))

        if position is Position.GOALIE:
            if "goalsAgainst" in line:
                goalie = GoalieLine(
                    nhl_player_id=player_id,
                    goals_against=_int(line.get("goalsAgainst")),
                )
            else:
                goalie = GoalieLine(
                    nhl_player_id=player_id,
                    goals_against=box.opponent_goals,
                    shootout_goals_against=_shootout_goals_against(box),
                    derived_from_score=True,
                )
            goalie.name = _text(line.get("name"))
            goalie.number = _int(line.get("sweaterNumber"), default=None)
            goalie.assists = _int(line.get("assists"))
            box.goalies[player_id] = goalie
        else:
            box.skaters[player_id] = SkaterLine(
                nhl_player_id=player_id,
                position=position,
                name=_text(line.get("name")),
                number=_int(line.get("sweaterNumber"), default=None),
                goals=_int(line.get("goals")),
                assists=_int(line.get("assists")),
                shorthanded_goals=_int(line.get("shortHandedGoals")),
                shorthanded_assists=_int(line.get("shortHandedAssists")),
                power_play_goals=_int(line.get("powerPlayGoals")),
            )

    return box


def _normalize_legacy(payload, team_id, team_abbrev, is_home):
    teams = payload["teams"]
    home = teams.get("home") or {}
    away = teams.get("away") or {}
    linescore = payload.get("linescore") or {}
    line_teams = linescore.get("teams") or {}

    def team_goals(side, team):
        goals = (line_teams.get(side) or {}).get("goals")
        if goals is None:
            goals = ((team.get("teamStats") or {}).get("teamSkaterStats") or {}).get("goals")
        return goals

    home_score = team_goals("home", home)
    away_score = team_goals("away", away)
    if home_score is None or away_score is None:
        raise UpstreamDataError("Box score has no team scores")

    home_team = home.get("team") or {}
    away_team = away.get("team") or {}
    side_is_home = _resolve_side(
        {"id": home_team.get("id"), "abbrev": home_team.get("abbreviation")},
        {"id": away_team.get("id"), "abbrev": away_team.get("abbreviation")},
        team_id,
        team_abbrev,
        is_home,
    )

    ordinal = (linescore.get("currentPeriodOrdinal") or "").upper()
    is_shootout = bool(linescore.get("hasShootout")) or ordinal == PERIOD_SHOOTOUT
    is_overtime = (
        is_shootout
        or _int(linescore.get("currentPeriod"), default=0) > 3
        or ordinal.endswith(PERIOD_OVERTIME)
    )

    box = NormalizedBoxScore(
        home_score=_int(home_score),
        away_score=_int(away_score),
        is_home=side_is_home,
        is_overtime=is_overtime,
        is_shootout=is_shootout,
    )

    players = (home if side_is_home else away).get("players") or {}
    for key, entry in players.items():
        person = entry.get("person") or {}
        player_id = _int(person.get("id"), default=None)
        if player_id is None:
            player_id = _int(key.lstrip("ID"), default=None)
        stats = entry.get("stats") or {}
        position = normalize_position(
            (entry.get("position") or {}).get("type")
            or (entry.get("position") or {}).get("code")
        )
        name = person.get("fullName", "")
        number = _int(entry.get("jerseyNumber"), default=None)

        if "goalieStats" in stats:
            goalie_stats = stats["goalieStats"]
            box.goalies[player_id] = GoalieLine(
                nhl_player_id=player_id,
                name=name,
                number=number,
                goals_against=_int(goalie_stats.get("shots")) - _int(goalie_stats.get("saves")),
                assists=_int(goalie_stats.get("assists")),
            )
        elif "skaterStats" in stats:
            skater_stats = stats["skaterStats"]
            box.skaters[player_id] = SkaterLine(
                nhl_player_id=player_id,
                position=position,
                name=name,
                number=number,
                goals=_int(skater_stats.get("goals")),
                assists=_int(skater_stats.get("assists")),
                shorthanded_goals=_int(skater_stats.get("shortHandedGoals")),
                shorthanded_assists=_int(skater_stats.get("shortHandedAssists")),
                power_play_goals=_int(skater_stats.get("powerPlayGoals")),
            )
        # Scratched players carry an empty stats block

    return box


def _apply_scoring_summary(box, summary, team_abbrev):
    """
    Attach exact per-goal flags from the landing payload's scoring summary.

    Events are only attached to a player when their count agrees with the
    box score line, so a partial summary falls back to approximation.
    """
    periods = (summary.get("summary") or summary).get("scoring") or []
    goals_by_player = {}
    assists_by_player = {}
    opponent_empty_net = 0

    for period in periods:
        period_type = ((period.get("periodDescriptor") or {}).get("periodType") or "").upper()
        if period_type == PERIOD_SHOOTOUT:
            continue
        is_overtime = period_type == PERIOD_OVERTIME

        for goal in period.get("goals") or []:
            if "isHome" in goal:
                ours = bool(goal["isHome"]) == box.is_home
            else:
                ours = _text(goal.get("teamAbbrev")).upper() == (team_abbrev or "").upper()
            is_empty_net = (goal.get("goalModifier") or "").lower() == "empty-net"

            if not ours:
                if is_empty_net:
                    opponent_empty_net += 1
                continue

            is_shorthanded = (goal.get("strength") or "").lower() == "sh"
            scorer = _int(goal.get("playerId"), default=None)
            goals_by_player.setdefault(scorer, []).append(
                {
                    "is_overtime": is_overtime,
                    "is_shorthanded": is_shorthanded,
                    "is_empty_net": is_empty_net,
                }
            )
            for assist in goal.get("assists") or []:
                assists_by_player.setdefault(_int(assist.get("playerId"), default=None), []).append(
                    {"is_overtime": is_overtime, "is_shorthanded": is_shorthanded}
                )

    for player_id, line in box.skaters.items():
        goals = goals_by_player.get(player_id, [])
        assists = assists_by_player.get(player_id, [])
        if len(goals) == line.goals:
            line.goal_events = goals
            line.shorthanded_goals = sum(1 for goal in goals if goal["is_shorthanded"])
        if len(assists) == line.assists:
            line.assist_events = assists
            line.shorthanded_assists = sum(1 for assist in assists if assist["is_shorthanded"])

    # Only a goals-against derived from the final score needs the empty-net correction
    for goalie in box.goalies.values():
        if goalie.derived_from_score:
            goalie.empty_net_goals_against = opponent_empty_net

    return box


def normalize_box_score(
    payload, team_id=None, team_abbrev=None, is_home=None, scoring_summary=None
):
    """
    Normalize one finished game's box score for the followed team.

    team_id/team_abbrev identify "our" side; is_home is the fallback taken
    from the stored game. Raises UpstreamDataError for payloads that carry
    no team scores or that match none of the known shapes.
    """
    if not isinstance(payload, dict):
        raise UpstreamDataError("Box score payload is not an object")

    if "playerByGameStats" in payload:
        box = _normalize_api_web(payload, team_id, team_abbrev, is_home)
    elif isinstance(payload.get("boxscore"), dict) and "playerStats" in payload["boxscore"]:
        box = _normalize_flattened(payload, team_id, team_abbrev, is_home)
    elif isinstance(payload.get("teams"), dict) and "home" in payload["teams"]:
        box = _normalize_legacy(payload, team_id, team_abbrev, is_home)
    elif (payload.get("homeTeam") or {}).get("score") is not None:
        # Final score only, no player lines yet
        box = _normalize_api_web(payload, team_id, team_abbrev, is_home)
    else:
        raise UpstreamDataError("Unrecognized box score format")

    if scoring_summary:
        _apply_scoring_summary(box, scoring_summary, team_abbrev)

    logger.debug(
        f"Normalized box score: {box.team_goals}-{box.opponent_goals} "
        f"OT={box.is_overtime} SO={box.is_shootout} "
        f"{len(box.skaters)} skaters, {len(box.goalies)} goalies"
    )
    return box
