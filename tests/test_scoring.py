import pytest

from pickem.utils.scoring import (
    AssistEvent,
    GameContext,
    GoalEvent,
    GoaliePerformance,
    Position,
    SkaterPerformance,
    approximate_overtime_attribution,
    calculate_assist_points,
    calculate_goal_points,
    calculate_goalie_points,
    calculate_player_total_points,
    calculate_team_points,
    player_breakdown,
    team_breakdown,
)

REGULATION = GameContext(team_goals=3, opponent_goals=2)
OVERTIME = GameContext(is_overtime=True, team_goals=3, opponent_goals=2)
SHOOTOUT = GameContext(is_overtime=True, is_shootout=True, team_goals=3, opponent_goals=2)


def test_forward_regulation_goal():
    assert calculate_goal_points(GoalEvent(Position.FORWARD)) == 2


def test_forward_overtime_goal():
    assert calculate_goal_points(GoalEvent(Position.FORWARD, is_overtime=True)) == 7


def test_forward_shorthanded_goal():
    assert calculate_goal_points(GoalEvent(Position.FORWARD, is_shorthanded=True)) == 4


def test_defense_goals():
    assert calculate_goal_points(GoalEvent(Position.DEFENSE)) == 3
    assert calculate_goal_points(GoalEvent(Position.DEFENSE, is_overtime=True)) == 8
    assert calculate_goal_points(GoalEvent(Position.DEFENSE, is_shorthanded=True)) == 6


def test_shorthanded_overtime_goal_doubles_overtime_base():
    goal = GoalEvent(Position.FORWARD, is_overtime=True, is_shorthanded=True)
    assert calculate_goal_points(goal) == 14


def test_goalie_goal_is_rejected():
    with pytest.raises(ValueError):
        calculate_goal_points(GoalEvent(Position.GOALIE))


def test_assists():
    assert calculate_assist_points(AssistEvent()) == 1
    assert calculate_assist_points(AssistEvent(is_shorthanded=True)) == 2
    # Overtime does not change assist value
    assert calculate_assist_points(AssistEvent(is_overtime=True)) == 1


@pytest.mark.parametrize(
    "performance,expected",
    [
        (GoaliePerformance(goals_against=0), 5),
        (GoaliePerformance(goals_against=0, assists=1), 10),
        (GoaliePerformance(goals_against=1), 3),
        (GoaliePerformance(goals_against=2), 3),
        (GoaliePerformance(goals_against=3), 0),
        (GoaliePerformance(goals_against=5, assists=1), 5),
    ],
)
def test_goalie_tiers(performance, expected):
    assert calculate_goalie_points(performance) == expected


def test_goalie_empty_net_and_shootout_goals_not_allowed():
    # 3 against, but one empty netter and one shootout winner leave 1 allowed
    performance = GoaliePerformance(goals_against=3, empty_net_goals=1, shootout_goals=1)
    assert performance.goals_allowed == 1
    assert calculate_goalie_points(performance) == 3

    only_empty_net = GoaliePerformance(goals_against=1, empty_net_goals=1)
    assert calculate_goalie_points(only_empty_net) == 5


def test_goalie_who_did_not_play_gets_only_assists():
    assert calculate_goalie_points(GoaliePerformance()) == 0
    assert calculate_goalie_points(GoaliePerformance(assists=1)) == 5


@pytest.mark.parametrize(
    "team_goals,opponent_goals,expected",
    [
        (4, 2, 4),
        (6, 2, 6),
        (3, 1, 0),
        (4, 5, 0),
        (4, 4, 0),
        (None, None, 0),
    ],
)
def test_team_points(team_goals, opponent_goals, expected):
    assert calculate_team_points(team_goals, opponent_goals) == expected


def test_player_total_points_sums_goals_and_assists():
    goals = [GoalEvent(Position.FORWARD), GoalEvent(Position.FORWARD, is_shorthanded=True)]
    assists = [AssistEvent(), AssistEvent(is_shorthanded=True)]
    assert calculate_player_total_points(Position.FORWARD, goals, assists) == 2 + 4 + 1 + 2


def test_overtime_attribution_marks_last_goal():
    performance = SkaterPerformance(goals=2, assists=1)
    goals, assists = approximate_overtime_attribution(Position.FORWARD, performance, OVERTIME)

    assert [goal.is_overtime for goal in goals] == [False, True]
    assert len(assists) == 1
    assert player_breakdown(Position.FORWARD, performance, OVERTIME).total == 2 + 7 + 1


def test_overtime_attribution_ignores_shootout_games():
    performance = SkaterPerformance(goals=1)
    goals, _ = approximate_overtime_attribution(Position.FORWARD, performance, SHOOTOUT)

    assert not goals[0].is_overtime
    assert player_breakdown(Position.FORWARD, performance, SHOOTOUT).total == 2


def test_overtime_attribution_flags_first_goals_shorthanded():
    performance = SkaterPerformance(goals=2, shorthanded_goals=1, assists=2, shorthanded_assists=1)
    goals, assists = approximate_overtime_attribution(Position.DEFENSE, performance, REGULATION)

    assert [goal.is_shorthanded for goal in goals] == [True, False]
    assert [assist.is_shorthanded for assist in assists] == [True, False]
    assert player_breakdown(Position.DEFENSE, performance, REGULATION).total == 6 + 3 + 2 + 1


def test_exact_events_take_precedence_over_policy():
    # First goal was the OT winner; the approximation would pick the second
    performance = SkaterPerformance(
        goals=2,
        goal_events=(
            GoalEvent(Position.FORWARD, is_overtime=False, is_shorthanded=True),
            GoalEvent(Position.FORWARD, is_overtime=True),
        ),
    )
    breakdown = player_breakdown(Position.FORWARD, performance, OVERTIME)
    assert breakdown.total == 4 + 7


def test_custom_policy_is_used():
    def never_overtime(position, performance, context):
        return [GoalEvent(position) for _ in range(performance.goals)], []

    performance = SkaterPerformance(goals=1, assists=3)
    assert player_breakdown(Position.FORWARD, performance, OVERTIME, never_overtime).total == 2


def test_breakdown_labels_and_total():
    performance = SkaterPerformance(goals=1, assists=1, shorthanded_assists=1)
    breakdown = player_breakdown(Position.FORWARD, performance, OVERTIME)

    assert breakdown.to_dict() == {
        "terms": [
            {"label": "Forward goal (OT winner)", "points": 7},
            {"label": "Assist (shorthanded)", "points": 2},
        ],
        "total": 9,
    }


def test_goalie_breakdown_labels():
    breakdown = player_breakdown("Goalie", GoaliePerformance(goals_against=2, assists=1), REGULATION)
    assert [term.label for term in breakdown.terms] == ["Goalie allowed 2", "Goalie assist"]
    assert breakdown.total == 8


def test_team_breakdown():
    winner = team_breakdown(GameContext(team_goals=5, opponent_goals=1))
    assert winner.total == 5
    assert winner.terms[0].label == "Team win with 5 goals"

    assert team_breakdown(GameContext(team_goals=3, opponent_goals=1)).total == 0


def test_mismatched_performance_type_raises():
    with pytest.raises(TypeError):
        player_breakdown(Position.GOALIE, SkaterPerformance(goals=1), REGULATION)
    with pytest.raises(TypeError):
        player_breakdown(Position.FORWARD, GoaliePerformance(goals_against=0), REGULATION)
