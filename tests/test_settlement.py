from datetime import timedelta

import pytest
from sqlalchemy import text

from pickem import db
from pickem.errors import AlreadySettledError, NotReadyError, UpstreamDataError
from pickem.models import Game, LeagueMembership, Pick, PlayerPerformance, Settlement
from pickem.services import settlement_service
from tests.factories import (
    api_web_box_score,
    goalie_line,
    make_game,
    make_league,
    make_pick,
    skater_line,
)

NHL_GAME_ID = 2025020101


def _totals(league):
    return {
        membership.user_id: membership.total_points
        for membership in LeagueMembership.query.filter_by(league_id=league.id)
    }


@pytest.fixture
def final_game(league_setup, source):
    """Final 4-2 home win; Larkin 1G 1A, Talbot 2 GA, Seider absent from the box score"""
    s = league_setup
    game = make_game(
        status="final",
        starts_in=-timedelta(hours=3),
        home_score=4,
        away_score=2,
        nhl_game_id=NHL_GAME_ID,
    )
    source.box_scores[NHL_GAME_ID] = api_web_box_score(
        4,
        2,
        forwards=[skater_line(s.forward.nhl_player_id, goals=1, assists=1)],
        goalies=[goalie_line(s.goalie.nhl_player_id, goals_against=2)],
    )
    make_pick(s.admin, s.league, game, s.forward)
    make_pick(s.alice, s.league, game, s.defense)
    make_pick(s.bob, s.league, game, s.goalie)
    make_pick(s.carol, s.league, game)
    return game


def test_settle_game_scores_every_pick(league_setup, final_game):
    s = league_setup
    result = settlement_service.settle_game(final_game.id)

    assert result["picks_updated"] == 4
    assert result["skipped"] == []
    assert result["points_awarded"] == 3 + 0 + 3 + 4
    assert not result["is_overtime"]

    points = {pick.user_id: pick.points_earned for pick in Pick.query.filter_by(game_id=final_game.id)}
    assert points == {s.admin.id: 3, s.alice.id: 0, s.bob.id: 3, s.carol.id: 4}
    assert all(pick.scored_at is not None for pick in Pick.query.all())

    assert _totals(s.league) == points
    settlement = Settlement.query.filter_by(game_id=final_game.id).one()
    assert settlement.run_id == result["run_id"]
    assert settlement.points_awarded == 10


def test_settlement_is_idempotent(league_setup, final_game):
    settlement_service.settle_game(final_game.id)
    before = _totals(league_setup.league)

    with pytest.raises(AlreadySettledError):
        settlement_service.settle_game(final_game.id)

    assert _totals(league_setup.league) == before
    assert Settlement.query.count() == 1


def test_settlement_adds_to_existing_totals(league_setup, final_game):
    s = league_setup
    membership = s.league.get_membership(s.carol.id)
    membership.total_points = 20
    db.session.commit()

    settlement_service.settle_game(final_game.id)

    assert _totals(s.league)[s.carol.id] == 24


def test_ledger_delta_matches_pick_points_per_league(league_setup, final_game):
    s = league_setup
    second = make_league(s.alice, members=[s.bob], name="Office Pool")
    make_pick(s.alice, second, final_game, s.forward)
    make_pick(s.bob, second, final_game)

    result = settlement_service.settle_game(final_game.id)

    for league in (s.league, second):
        earned = sum(
            pick.points_earned
            for pick in Pick.query.filter_by(league_id=league.id, game_id=final_game.id)
        )
        assert sum(_totals(league).values()) == earned
    assert _totals(second) == {s.alice.id: 3, s.bob.id: 4}
    assert result["points_awarded"] == 10 + 7


def test_missing_performance_is_synthesized_as_zero(league_setup, final_game):
    s = league_setup
    settlement_service.settle_game(final_game.id)

    placeholder = PlayerPerformance.query.filter_by(
        player_id=s.defense.id, game_id=final_game.id
    ).one()
    assert placeholder.is_placeholder
    assert placeholder.goals == 0
    assert Pick.get_for(s.alice.id, s.league.id, final_game.id).points_earned == 0


def test_box_score_performances_are_recorded(league_setup, final_game):
    s = league_setup
    settlement_service.settle_game(final_game.id)

    larkin = PlayerPerformance.query.filter_by(player_id=s.forward.id, game_id=final_game.id).one()
    assert (larkin.goals, larkin.assists, larkin.points) == (1, 1, 2)
    assert not larkin.is_placeholder
    talbot = PlayerPerformance.query.filter_by(player_id=s.goalie.id, game_id=final_game.id).one()
    assert talbot.goals_against == 2


def test_unknown_player_pick_is_skipped(league_setup, final_game):
    s = league_setup
    Pick.query.filter_by(user_id=s.alice.id, game_id=final_game.id).update({"player_id": 9999})
    db.session.commit()

    result = settlement_service.settle_game(final_game.id)

    assert result["picks_updated"] == 3
    assert [skipped["user_id"] for skipped in result["skipped"]] == [s.alice.id]
    assert Settlement.query.one().picks_skipped == 1
    assert _totals(s.league)[s.alice.id] == 0


def test_overtime_goal_scoring(league_setup, source):
    s = league_setup
    game = make_game(
        status="final", starts_in=-timedelta(hours=3), home_score=3, away_score=2, nhl_game_id=7
    )
    source.box_scores[7] = api_web_box_score(
        3,
        2,
        period_type="OT",
        forwards=[skater_line(s.forward.nhl_player_id, goals=1)],
        defense=[skater_line(s.defense.nhl_player_id, goals=1, sh_goals=1)],
    )
    make_pick(s.alice, s.league, game, s.forward)
    make_pick(s.bob, s.league, game, s.defense)
    make_pick(s.carol, s.league, game)

    result = settlement_service.settle_game(game.id)

    assert result["is_overtime"] and not result["is_shootout"]
    totals = _totals(s.league)
    # Each player's last goal is treated as the OT winner
    assert totals[s.alice.id] == 7
    assert totals[s.bob.id] == 16
    assert totals[s.carol.id] == 0


def test_not_final_game_is_not_ready(league_setup):
    s = league_setup
    make_pick(s.alice, s.league, s.game)

    with pytest.raises(NotReadyError):
        settlement_service.settle_game(s.game.id)
    assert Settlement.query.count() == 0


def test_upstream_failure_writes_nothing(league_setup, source, final_game):
    del source.box_scores[NHL_GAME_ID]

    with pytest.raises(UpstreamDataError):
        settlement_service.settle_game(final_game.id)

    assert Settlement.query.count() == 0
    assert PlayerPerformance.query.count() == 0
    assert set(_totals(league_setup.league).values()) == {0}


def test_game_without_nhl_id_cannot_be_settled(league_setup, final_game):
    final_game.nhl_game_id = None
    db.session.commit()

    with pytest.raises(UpstreamDataError):
        settlement_service.settle_game(final_game.id)


def test_previously_scored_picks_count_as_settled(league_setup, final_game):
    pick = Pick.get_for(league_setup.carol.id, league_setup.league.id, final_game.id)
    pick.points_earned = 4
    db.session.commit()

    with pytest.raises(AlreadySettledError):
        settlement_service.settle_game(final_game.id)


def test_all_zero_outcome_is_still_marked_settled(league_setup, source):
    s = league_setup
    game = make_game(
        status="final", starts_in=-timedelta(hours=3), home_score=1, away_score=3, nhl_game_id=8
    )
    source.box_scores[8] = api_web_box_score(1, 3)
    make_pick(s.carol, s.league, game)

    result = settlement_service.settle_game(game.id)

    assert result["points_awarded"] == 0
    assert game.is_settled
    with pytest.raises(AlreadySettledError):
        settlement_service.settle_game(game.id)


def test_settle_pending_games(league_setup, source, final_game):
    s = league_setup
    broken = make_game(
        status="final", starts_in=-timedelta(hours=5), home_score=2, away_score=1, nhl_game_id=9
    )
    make_pick(s.alice, s.league, broken)
    make_game(status="final", starts_in=-timedelta(days=1), home_score=5, away_score=0, nhl_game_id=10)

    assert [game.id for game in settlement_service.find_pending_games()] == [broken.id, final_game.id]

    result = settlement_service.settle_pending_games()

    assert [settled["game_id"] for settled in result["settled"]] == [final_game.id]
    assert [error["game_id"] for error in result["errors"]] == [broken.id]
    assert settlement_service.find_pending_games() == [broken]


def test_score_breakdown_matches_awarded_points(league_setup, final_game):
    s = league_setup
    settlement_service.settle_game(final_game.id)

    pick = Pick.get_for(s.admin.id, s.league.id, final_game.id)
    breakdown = settlement_service.get_score_breakdown(pick.id)

    assert breakdown["total"] == pick.points_earned == 3
    assert [term["label"] for term in breakdown["terms"]] == ["Forward goal", "Assist"]
    assert breakdown["is_settled"]

    team_pick = Pick.get_for(s.carol.id, s.league.id, final_game.id)
    assert settlement_service.get_score_breakdown(team_pick.id)["terms"] == [
        {"label": "Team win with 4 goals", "points": 4}
    ]


def test_breakdown_before_final_is_not_ready(league_setup):
    s = league_setup
    pick = make_pick(s.alice, s.league, s.game, s.forward)

    with pytest.raises(NotReadyError):
        settlement_service.get_score_breakdown(pick.id)


def test_concurrent_claim_writes_nothing(league_setup, final_game, monkeypatch):
    s = league_setup
    # Another run claims the game after this one passed its settled check
    db.session.execute(
        text("INSERT INTO settlements (game_id, run_id, picks_updated, picks_skipped, points_awarded) "
             "VALUES (:game_id, 'other-run', 0, 0, 0)"),
        {"game_id": final_game.id},
    )
    db.session.commit()
    monkeypatch.setattr(settlement_service, "_check_not_settled", lambda game: None)

    with pytest.raises(AlreadySettledError):
        settlement_service.settle_game(final_game.id)

    assert set(_totals(s.league).values()) == {0}
    assert all(pick.scored_at is None for pick in Pick.query.filter_by(game_id=final_game.id))
    assert Settlement.query.one().run_id == "other-run"


def test_team_side_follows_the_box_score(league_setup, source):
    s = league_setup
    # Stored as an away game, but the box score has Detroit at home winning 5-1
    game = make_game(
        status="final",
        starts_in=-timedelta(hours=3),
        home_score=5,
        away_score=1,
        is_home=False,
        nhl_game_id=9,
    )
    source.box_scores[9] = api_web_box_score(5, 1, is_home=True)
    make_pick(s.carol, s.league, game)

    settlement_service.settle_game(game.id)

    assert db.session.get(Game, game.id).is_home is True
    assert _totals(s.league)[s.carol.id] == 5
    pick = Pick.get_for(s.carol.id, s.league.id, game.id)
    assert settlement_service.get_score_breakdown(pick.id)["total"] == 5


def test_performance_upsert_recovers_from_concurrent_insert(league_setup, final_game, monkeypatch):
    s = league_setup
    existing, created = PlayerPerformance.upsert(s.forward.id, final_game.id, {"goals": 1})
    db.session.commit()
    assert created

    real_get_for = PlayerPerformance.get_for
    calls = []

    def get_for(player_id, game_id):
        calls.append(player_id)
        return None if len(calls) == 1 else real_get_for(player_id, game_id)

    monkeypatch.setattr(PlayerPerformance, "get_for", staticmethod(get_for))

    performance, created = PlayerPerformance.upsert(
        s.forward.id, final_game.id, {"goals": 2, "assists": 1}
    )
    db.session.commit()

    assert not created
    assert performance.id == existing.id
    rows = PlayerPerformance.query.filter_by(player_id=s.forward.id, game_id=final_game.id).all()
    assert len(rows) == 1
    assert (rows[0].goals, rows[0].assists) == (2, 1)
