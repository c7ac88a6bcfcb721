from datetime import timedelta

import pytest

from pickem import db
from pickem.errors import NotFoundError
from pickem.services import settlement_service, standings_service
from tests.factories import api_web_box_score, make_game, make_pick, skater_line


def _set_points(league, points_by_user):
    for user, points in points_by_user.items():
        league.get_membership(user.id).total_points = points
    db.session.commit()


def test_standings_rank_by_points_with_ties(league_setup):
    s = league_setup
    _set_points(s.league, {s.admin: 5, s.alice: 12, s.bob: 5, s.carol: 0})

    standings = standings_service.get_standings(s.league.id)["standings"]

    assert [entry["username"] for entry in standings] == ["alice", "admin", "bob", "carol"]
    assert [entry["rank"] for entry in standings] == [1, 2, 2, 4]
    assert standings[0]["total_points"] == 12


def test_standings_count_settled_picks(league_setup, source):
    s = league_setup
    game = make_game(
        status="final", starts_in=-timedelta(hours=3), home_score=4, away_score=1, nhl_game_id=11
    )
    source.box_scores[11] = api_web_box_score(
        4, 1, forwards=[skater_line(s.forward.nhl_player_id, goals=2)]
    )
    make_pick(s.alice, s.league, game, s.forward)
    make_pick(s.bob, s.league, game)
    make_pick(s.bob, s.league, s.game, s.forward)
    settlement_service.settle_game(game.id)

    data = standings_service.get_standings(s.league.id)
    by_user = {entry["username"]: entry for entry in data["standings"]}

    assert data["league"]["name"] == "Hockeytown"
    assert by_user["alice"]["total_points"] == 4
    assert by_user["bob"]["total_points"] == 4
    assert by_user["bob"]["settled_picks"] == 1
    assert by_user["carol"]["settled_picks"] == 0


def test_verify_standings_after_settlement(league_setup, source):
    s = league_setup
    game = make_game(
        status="final", starts_in=-timedelta(hours=3), home_score=5, away_score=2, nhl_game_id=12
    )
    source.box_scores[12] = api_web_box_score(5, 2)
    make_pick(s.carol, s.league, game)
    settlement_service.settle_game(game.id)

    report = standings_service.verify_standings(s.league.id)
    assert report["ok"]
    assert report["members_checked"] == 4


def test_verify_standings_reports_drift(league_setup):
    s = league_setup
    _set_points(s.league, {s.bob: 7})

    report = standings_service.verify_standings(s.league.id)

    assert not report["ok"]
    assert report["discrepancies"] == [
        {
            "user_id": s.bob.id,
            "username": "bob",
            "ledger_total": 7,
            "expected_total": 0,
            "difference": 7,
        }
    ]


def test_unknown_league(app):
    with pytest.raises(NotFoundError):
        standings_service.get_standings(123)
