"""
Scoring Engine for NHL Pick'em Application

Pure functions that turn a player's (or the team's) game performance into
fantasy points. Nothing here touches the database or the network; the
settlement service feeds it canonical records built by the normalizer.

Rules:
    Forward goal      2 points, 7 if it decided the game in overtime
    Defense goal      3 points, 8 if it decided the game in overtime
    Skater assist     1 point
    Shorthanded       doubles the goal/assist value (applied after OT base)
    Goalie            5 for a shutout, 3 for 1-2 goals allowed, 0 for 3+,
                      plus 5 per assist. Empty-net and shootout goals do
                      not count as goals allowed.
    Team pick         team goals, but only when the team wins with 4+ goals
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence, Tuple


class Position(str, Enum):
    FORWARD = "Forward"
    DEFENSE = "Defense"
    GOALIE = "Goalie"


GOAL_POINTS = {Position.FORWARD: 2, Position.DEFENSE: 3}
OVERTIME_GOAL_POINTS = {Position.FORWARD: 7, Position.DEFENSE: 8}
ASSIST_POINTS = 1
SHORTHANDED_MULTIPLIER = 2

GOALIE_SHUTOUT_POINTS = 5
GOALIE_LOW_ALLOWED_POINTS = 3
GOALIE_LOW_ALLOWED_MAX = 2
GOALIE_ASSIST_POINTS = 5

TEAM_GOAL_THRESHOLD = 4


@dataclass(frozen=True)
class GoalEvent:
    position: Position
    is_overtime: bool = False
    is_shorthanded: bool = False
    is_empty_net: bool = False


@dataclass(frozen=True)
class AssistEvent:
    is_overtime: bool = False
    is_shorthanded: bool = False


@dataclass(frozen=True)
class SkaterPerformance:
    goals: int = 0
    assists: int = 0
    shorthanded_goals: int = 0
    shorthanded_assists: int = 0
    # Exact per-event flags from play-by-play; None means "not available"
    goal_events: Optional[Tuple[GoalEvent, ...]] = None
    assist_events: Optional[Tuple[AssistEvent, ...]] = None


@dataclass(frozen=True)
class GoaliePerformance:
    # None when the goalie did not play (no goals-against line)
    goals_against: Optional[int] = None
    assists: int = 0
    empty_net_goals: int = 0
    shootout_goals: int = 0

    @property
    def goals_allowed(self):
        if self.goals_against is None:
            return None
        return max(self.goals_against - self.empty_net_goals - self.shootout_goals, 0)


@dataclass(frozen=True)
class GameContext:
    is_overtime: bool = False
    is_shootout: bool = False
    team_goals: Optional[int] = None
    opponent_goals: Optional[int] = None

    @property
    def decided_in_overtime(self):
        """An OT-deciding goal exists only if the game did not reach a shootout"""
        return self.is_overtime and not self.is_shootout


@dataclass(frozen=True)
class FormulaTerm:
    label: str
    points: int

    def to_dict(self):
        return {"label": self.label, "points": self.points}


@dataclass(frozen=True)
class ScoreBreakdown:
    terms: Tuple[FormulaTerm, ...] = field(default_factory=tuple)

    @property
    def total(self):
        return sum(term.points for term in self.terms)

    def to_dict(self):
        return {"terms": [term.to_dict() for term in self.terms], "total": self.total}


# Signature shared by goal attribution policies
AttributionPolicy = Callable[
    [Position, SkaterPerformance, GameContext],
    Tuple[Sequence[GoalEvent], Sequence[AssistEvent]],
]


def calculate_goal_points(goal):
    """Points for one goal: pick the base (regulation or OT), then double if shorthanded"""
    if goal.position not in GOAL_POINTS:
        raise ValueError(f"Goals are not scored for position {goal.position}")

    if goal.is_overtime:
        points = OVERTIME_GOAL_POINTS[goal.position]
    else:
        points = GOAL_POINTS[goal.position]

    if goal.is_shorthanded:
        points *= SHORTHANDED_MULTIPLIER
    return points


def calculate_assist_points(assist):
    points = ASSIST_POINTS
    if assist.is_shorthanded:
        points *= SHORTHANDED_MULTIPLIER
    return points


def calculate_goalie_points(performance):
    return goalie_breakdown(performance).total


def calculate_team_points(team_goals, opponent_goals):
    """Team goals once the team wins with at least four; otherwise nothing"""
    if team_goals is None or opponent_goals is None:
        return 0
    if team_goals > opponent_goals and team_goals >= TEAM_GOAL_THRESHOLD:
        return team_goals
    return 0


def calculate_player_total_points(position, goals, assists):
    return sum(calculate_goal_points(goal) for goal in goals) + sum(
        calculate_assist_points(assist) for assist in assists
    )


def approximate_overtime_attribution(position, performance, context):
    """
    Expand stat-line counts into events when play-by-play is unavailable.

    In a game decided in overtime the player's last goal is treated as the
    OT winner. This is lossy when one player scored several goals, but it is
    deterministic. The first N goals/assists are flagged shorthanded where
    N is the shorthanded count from the stat line.
    """
    decided_in_ot = context.decided_in_overtime
    goals = [
        GoalEvent(
            position=position,
            is_overtime=decided_in_ot and index == performance.goals - 1,
            is_shorthanded=index < performance.shorthanded_goals,
        )
        for index in range(performance.goals)
    ]
    assists = [
        AssistEvent(is_shorthanded=index < performance.shorthanded_assists)
        for index in range(performance.assists)
    ]
    return goals, assists


def resolve_skater_events(position, performance, context, policy=approximate_overtime_attribution):
    """Use exact events when present, otherwise fall back to the policy"""
    approx_goals, approx_assists = policy(position, performance, context)
    goals = performance.goal_events if performance.goal_events is not None else approx_goals
    assists = (
        performance.assist_events if performance.assist_events is not None else approx_assists
    )
    return list(goals), list(assists)


def _goal_label(goal):
    flags = []
    if goal.is_overtime:
        flags.append("OT winner")
    if goal.is_shorthanded:
        flags.append("shorthanded")
    return f"{goal.position.value} goal" + (f" ({', '.join(flags)})" if flags else "")


def skater_breakdown(position, goals, assists):
    terms = [FormulaTerm(_goal_label(goal), calculate_goal_points(goal)) for goal in goals]
    terms.extend(
        FormulaTerm(
            "Assist (shorthanded)" if assist.is_shorthanded else "Assist",
            calculate_assist_points(assist),
        )
        for assist in assists
    )
    return ScoreBreakdown(tuple(terms))


def goalie_breakdown(performance):
    terms = []
    allowed = performance.goals_allowed
    if allowed is not None:
        if allowed == 0:
            terms.append(FormulaTerm("Goalie shutout", GOALIE_SHUTOUT_POINTS))
        elif allowed <= GOALIE_LOW_ALLOWED_MAX:
            terms.append(
                FormulaTerm(f"Goalie allowed {allowed}", GOALIE_LOW_ALLOWED_POINTS)
            )
        else:
            terms.append(FormulaTerm(f"Goalie allowed {allowed}", 0))
    terms.extend(
        FormulaTerm("Goalie assist", GOALIE_ASSIST_POINTS)
        for _ in range(performance.assists)
    )
    return ScoreBreakdown(tuple(terms))


def team_breakdown(context):
    points = calculate_team_points(context.team_goals, context.opponent_goals)
    if points:
        label = f"Team win with {context.team_goals} goals"
    else:
        label = (
            f"Team {context.team_goals}-{context.opponent_goals}: "
            f"needs a win with {TEAM_GOAL_THRESHOLD}+ goals"
        )
    return ScoreBreakdown((FormulaTerm(label, points),))


def player_breakdown(position, performance, context, policy=approximate_overtime_attribution):
    """Dispatch on position: goalies by goals allowed, skaters by events"""
    position = Position(position)
    if position is Position.GOALIE:
        if not isinstance(performance, GoaliePerformance):
            raise TypeError("Goalie picks need a GoaliePerformance")
        return goalie_breakdown(performance)

    if not isinstance(performance, SkaterPerformance):
        raise TypeError("Skater picks need a SkaterPerformance")
    goals, assists = resolve_skater_events(position, performance, context, policy)
    return skater_breakdown(position, goals, assists)
