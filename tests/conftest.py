from datetime import timedelta
from types import SimpleNamespace

import pytest

from pickem import create_app, db
from tests.factories import (
    FakeSource,
    make_game,
    make_league,
    make_player,
    make_user,
)


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def app(source):
    app = create_app("testing")
    app.config["NHL_DATA_SOURCE"] = source
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def league_setup(app):
    """Admin plus three members, a small roster and one upcoming game"""
    admin = make_user("admin")
    alice = make_user("alice")
    bob = make_user("bob")
    carol = make_user("carol")
    league = make_league(admin, members=[alice, bob, carol])

    forward = make_player("Dylan Larkin", "Forward", number=71, nhl_player_id=8477946)
    defense = make_player("Moritz Seider", "Defense", number=53, nhl_player_id=8481542)
    goalie = make_player("Cam Talbot", "Goalie", number=39, nhl_player_id=8475660)

    game = make_game(starts_in=timedelta(hours=2))

    return SimpleNamespace(
        admin=admin,
        alice=alice,
        bob=bob,
        carol=carol,
        members=[admin, alice, bob, carol],
        league=league,
        forward=forward,
        defense=defense,
        goalie=goalie,
        game=game,
    )
