from datetime import timedelta

import pytest

from pickem import db
from pickem.errors import (
    AuthorizationError,
    NotFoundError,
    PickLockedError,
    ValidationError,
)
from pickem.models import AdminAction, Pick, PlayerSelection, Settlement, TeamSelection
from pickem.services import pick_service
from tests.factories import make_player


def test_parse_selection():
    assert pick_service.parse_selection({"pick_type": "team"}) == TeamSelection()
    assert pick_service.parse_selection({"player_id": "12"}) == PlayerSelection(player_id=12)
    assert pick_service.parse_selection({"pickType": "player", "playerId": 3}) == PlayerSelection(3)

    with pytest.raises(ValidationError):
        pick_service.parse_selection({"pick_type": "player"})
    with pytest.raises(ValidationError):
        pick_service.parse_selection({"pick_type": "team", "player_id": 4})
    with pytest.raises(ValidationError):
        pick_service.parse_selection({"pick_type": "goalie_duo"})
    with pytest.raises(ValidationError):
        pick_service.parse_selection({"player_id": "abc"})
    with pytest.raises(ValidationError):
        pick_service.parse_selection(["player"])


def test_submit_player_pick(league_setup):
    s = league_setup
    pick = pick_service.submit_pick(
        s.alice.id, s.league.id, s.game.id, PlayerSelection(s.forward.id)
    )

    assert pick.player_id == s.forward.id
    assert pick.player_name == "Dylan Larkin"
    assert pick.points_earned == 0
    assert pick.locked_at is None
    assert not pick.is_team_pick


def test_submit_team_pick(league_setup):
    s = league_setup
    pick = pick_service.submit_pick(s.bob.id, s.league.id, s.game.id, TeamSelection())

    assert pick.is_team_pick
    assert pick.player_id is None
    assert pick.player_name == "Team"


def test_resubmitting_replaces_the_pick(league_setup):
    s = league_setup
    pick_service.submit_pick(s.alice.id, s.league.id, s.game.id, PlayerSelection(s.forward.id))
    pick_service.submit_pick(s.alice.id, s.league.id, s.game.id, PlayerSelection(s.goalie.id))

    picks = Pick.query.filter_by(user_id=s.alice.id, league_id=s.league.id, game_id=s.game.id).all()
    assert len(picks) == 1
    assert picks[0].player_id == s.goalie.id
    assert picks[0].player_name == "Cam Talbot"


def test_non_member_cannot_pick(league_setup):
    from tests.factories import make_user

    outsider = make_user("outsider")
    s = league_setup
    with pytest.raises(AuthorizationError):
        pick_service.submit_pick(outsider.id, s.league.id, s.game.id, TeamSelection())


def test_unknown_league_and_game(league_setup):
    s = league_setup
    with pytest.raises(NotFoundError):
        pick_service.submit_pick(s.alice.id, 999, s.game.id, TeamSelection())
    with pytest.raises(NotFoundError):
        pick_service.submit_pick(s.alice.id, s.league.id, 999, TeamSelection())


def test_invalid_player_selection(league_setup):
    s = league_setup
    retired = make_player("Retired Guy", "Forward", number=19, is_active=False)

    with pytest.raises(ValidationError):
        pick_service.submit_pick(s.alice.id, s.league.id, s.game.id, PlayerSelection(4242))
    with pytest.raises(ValidationError):
        pick_service.submit_pick(s.alice.id, s.league.id, s.game.id, PlayerSelection(retired.id))
    assert Pick.query.count() == 0


def test_member_cannot_pick_for_someone_else(league_setup):
    s = league_setup
    with pytest.raises(AuthorizationError):
        pick_service.submit_pick(
            s.alice.id, s.league.id, s.game.id, TeamSelection(), target_user_id=s.bob.id
        )


def test_admin_picks_for_member_and_is_audited(league_setup):
    s = league_setup
    pick = pick_service.submit_pick(
        s.admin.id, s.league.id, s.game.id, PlayerSelection(s.defense.id), target_user_id=s.bob.id
    )

    assert pick.user_id == s.bob.id
    action = AdminAction.query.one()
    assert action.action_type == "submit_pick"
    assert action.target_user_id == s.bob.id
    assert action.pick_id == pick.id


def test_lock_boundary_at_start_time(league_setup):
    s = league_setup
    start = s.game.game_time
    with pytest.raises(PickLockedError) as exc:
        pick_service.submit_pick(
            s.alice.id, s.league.id, s.game.id, TeamSelection(), now=start
        )
    assert exc.value.reason == pick_service.LOCK_REASON_STARTED
    assert Pick.query.count() == 0

    # Just before the puck drops the window is still open
    pick = pick_service.submit_pick(
        s.alice.id, s.league.id, s.game.id, TeamSelection(), now=start - timedelta(seconds=1)
    )
    assert pick.locked_at is None


def test_admin_can_pick_after_lock(league_setup):
    s = league_setup
    start = s.game.game_time
    pick = pick_service.submit_pick(
        s.admin.id, s.league.id, s.game.id, TeamSelection(), now=start + timedelta(minutes=5)
    )

    assert pick.locked_at is not None
    action = AdminAction.query.one()
    assert action.action_type == "override_locked_pick"
    assert action.action_metadata["lock_reason"] == pick_service.LOCK_REASON_STARTED


def test_in_progress_game_is_locked(league_setup):
    s = league_setup
    s.game.status = "in_progress"
    db.session.commit()

    state, reason = pick_service.get_pick_window_state(s.league, s.game)
    assert (state, reason) == (pick_service.WINDOW_LOCKED, pick_service.LOCK_REASON_STARTED)
    with pytest.raises(PickLockedError):
        pick_service.submit_pick(s.alice.id, s.league.id, s.game.id, TeamSelection())


def test_all_members_picking_locks_the_window(league_setup):
    s = league_setup
    for member in s.members[:-1]:
        pick_service.submit_pick(member.id, s.league.id, s.game.id, TeamSelection())
    assert pick_service.get_pick_window_state(s.league, s.game)[0] == pick_service.WINDOW_OPEN

    pick_service.submit_pick(s.carol.id, s.league.id, s.game.id, TeamSelection())

    state, reason = pick_service.get_pick_window_state(s.league, s.game)
    assert (state, reason) == (pick_service.WINDOW_LOCKED, pick_service.LOCK_REASON_ALL_PICKED)
    assert all(pick.locked_at is not None for pick in Pick.query.all())

    # Nobody but an admin can change a pick now
    with pytest.raises(PickLockedError):
        pick_service.submit_pick(s.alice.id, s.league.id, s.game.id, PlayerSelection(s.forward.id))
    pick_service.submit_pick(s.admin.id, s.league.id, s.game.id, PlayerSelection(s.forward.id))


def test_settled_game_rejects_admin_edits(league_setup):
    s = league_setup
    s.game.status = "final"
    db.session.add(Settlement(game_id=s.game.id))
    db.session.commit()

    with pytest.raises(PickLockedError) as exc:
        pick_service.submit_pick(s.admin.id, s.league.id, s.game.id, TeamSelection())
    assert exc.value.reason == pick_service.LOCK_REASON_SETTLED


def test_lock_picks_only_stamps_unlocked(league_setup):
    s = league_setup
    pick_service.submit_pick(s.alice.id, s.league.id, s.game.id, TeamSelection())
    pick_service.submit_pick(s.bob.id, s.league.id, s.game.id, TeamSelection())

    assert pick_service.lock_picks(s.game.id) == 2
    db.session.commit()
    assert pick_service.lock_picks(s.game.id) == 0


def test_locked_pick_stays_locked_when_game_is_rescheduled(league_setup):
    s = league_setup
    pick_service.submit_pick(s.alice.id, s.league.id, s.game.id, TeamSelection())
    pick_service.lock_picks(s.game.id)
    db.session.commit()

    # A schedule sync pushes the start back and the window reopens
    s.game.game_time = s.game.game_time + timedelta(days=1)
    db.session.commit()
    assert pick_service.get_pick_window_state(s.league, s.game)[0] == pick_service.WINDOW_OPEN

    with pytest.raises(PickLockedError) as exc:
        pick_service.submit_pick(s.alice.id, s.league.id, s.game.id, PlayerSelection(s.forward.id))
    assert exc.value.reason == pick_service.LOCK_REASON_PICK_LOCKED
    assert Pick.get_for(s.alice.id, s.league.id, s.game.id).is_team_pick

    # Members without a pick can still make one
    pick = pick_service.submit_pick(s.bob.id, s.league.id, s.game.id, TeamSelection())
    assert pick.locked_at is None


def test_locked_pick_stays_locked_after_late_join(league_setup):
    from pickem.services import draft_service
    from tests.factories import make_user

    s = league_setup
    for member in s.members:
        pick_service.submit_pick(member.id, s.league.id, s.game.id, TeamSelection())
    assert pick_service.get_pick_window_state(s.league, s.game)[0] == pick_service.WINDOW_LOCKED

    dave = make_user("dave")
    draft_service.add_member(s.league.id, dave.id)
    assert pick_service.get_pick_window_state(s.league, s.game)[0] == pick_service.WINDOW_OPEN

    with pytest.raises(PickLockedError) as exc:
        pick_service.submit_pick(s.alice.id, s.league.id, s.game.id, PlayerSelection(s.forward.id))
    assert exc.value.reason == pick_service.LOCK_REASON_PICK_LOCKED

    pick = pick_service.submit_pick(dave.id, s.league.id, s.game.id, PlayerSelection(s.forward.id))
    assert pick.player_name == "Dylan Larkin"


def test_admin_edit_of_locked_pick_is_audited(league_setup):
    s = league_setup
    pick_service.submit_pick(s.alice.id, s.league.id, s.game.id, TeamSelection())
    pick_service.lock_picks(s.game.id)
    db.session.commit()

    pick = pick_service.submit_pick(
        s.admin.id, s.league.id, s.game.id, PlayerSelection(s.forward.id), target_user_id=s.alice.id
    )

    assert pick.player_name == "Dylan Larkin"
    assert pick.locked_at is not None
    action = AdminAction.query.one()
    assert action.action_type == "override_locked_pick"
    assert action.action_metadata["lock_reason"] == pick_service.LOCK_REASON_PICK_LOCKED


def _miss_first_lookup(monkeypatch):
    """Make the first Pick.get_for miss, as if another request inserted the row meanwhile"""
    real_get_for = Pick.get_for
    calls = []

    def get_for(user_id, league_id, game_id):
        calls.append((user_id, league_id, game_id))
        if len(calls) == 1:
            return None
        return real_get_for(user_id, league_id, game_id)

    monkeypatch.setattr(Pick, "get_for", staticmethod(get_for))
    return calls


def test_concurrent_insert_folds_into_existing_pick(league_setup, monkeypatch):
    from tests.factories import make_pick

    s = league_setup
    make_pick(s.alice, s.league, s.game)
    calls = _miss_first_lookup(monkeypatch)

    pick = pick_service.submit_pick(
        s.alice.id, s.league.id, s.game.id, PlayerSelection(s.forward.id)
    )

    assert len(calls) == 2
    picks = Pick.query.filter_by(user_id=s.alice.id, game_id=s.game.id).all()
    assert [p.id for p in picks] == [pick.id]
    assert picks[0].player_name == "Dylan Larkin"


def test_concurrent_insert_into_locked_pick_is_rejected(league_setup, monkeypatch):
    from tests.factories import make_pick

    s = league_setup
    make_pick(s.alice, s.league, s.game)
    pick_service.lock_picks(s.game.id)
    db.session.commit()
    _miss_first_lookup(monkeypatch)

    with pytest.raises(PickLockedError):
        pick_service.submit_pick(
            s.alice.id, s.league.id, s.game.id, PlayerSelection(s.forward.id)
        )
    assert Pick.query.filter_by(user_id=s.alice.id).one().is_team_pick
