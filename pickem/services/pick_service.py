"""
Pick submission and the per-(league, game) pick window.

A window is open until one of: every member has picked, the scheduled start
passes, or the game leaves "scheduled". League admins may still write picks
after lock (recorded as an AdminAction); nobody may once the game is settled.
A pick with locked_at set stays closed to its member even if the window
reopens.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from pickem import db
from pickem.errors import (
    AuthorizationError,
    ConstraintViolationError,
    NotFoundError,
    PickLockedError,
    ValidationError,
)
from pickem.models import (
    AdminAction,
    Game,
    League,
    Pick,
    Player,
    PlayerSelection,
    TeamSelection,
)
from pickem.models.game import STATUS_FINAL, STATUS_SCHEDULED
from pickem.models.pick import PICK_TYPE_PLAYER, PICK_TYPE_TEAM, TEAM_PICK_NAME
from pickem.utils.cache_utils import invalidate_league_cache

logger = logging.getLogger(__name__)

WINDOW_OPEN = "open"
WINDOW_LOCKED = "locked"
WINDOW_SETTLED = "settled"

LOCK_REASON_SETTLED = "settled"
LOCK_REASON_FINISHED = "finished"
LOCK_REASON_STARTED = "started"
LOCK_REASON_ALL_PICKED = "all_picked"
LOCK_REASON_PICK_LOCKED = "pick_locked"

LOCK_MESSAGES = {
    LOCK_REASON_SETTLED: "Picks are closed for this game. Points have already been awarded.",
    LOCK_REASON_FINISHED: "Picks are locked for this game. The game has already finished.",
    LOCK_REASON_STARTED: "Picks are locked for this game. The game has started.",
    LOCK_REASON_ALL_PICKED: "Picks are locked for this game. Every league member has picked.",
    LOCK_REASON_PICK_LOCKED: "This pick is locked. Only a league admin can change it.",
}


def _utcnow():
    return datetime.now(timezone.utc)


def parse_selection(data):
    """
    Build a selection from request data.

    Accepts {"pick_type": "team"} or {"pick_type": "player", "player_id": 12};
    pick_type defaults to "player".
    """
    if not isinstance(data, dict):
        raise ValidationError("Pick must be a JSON object")

    pick_type = data.get("pick_type") or data.get("pickType") or PICK_TYPE_PLAYER
    if pick_type == PICK_TYPE_TEAM:
        if data.get("player_id") is not None:
            raise ValidationError("Team picks cannot reference a player")
        return TeamSelection()
    if pick_type != PICK_TYPE_PLAYER:
        raise ValidationError(f"Unknown pick type: {pick_type}")

    player_id = data.get("player_id", data.get("playerId"))
    if player_id is None:
        raise ValidationError("player_id is required for player picks")
    try:
        return PlayerSelection(player_id=int(player_id))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid player_id: {player_id!r}")


def count_picks(league_id, game_id):
    return Pick.query.filter_by(league_id=league_id, game_id=game_id).count()


def all_members_picked(league, game_id):
    member_count = league.get_member_count()
    return member_count > 0 and count_picks(league.id, game_id) >= member_count


def get_pick_window_state(league, game, now=None):
    """Return (state, reason) for picks on this game in this league"""
    if game.is_settled:
        return WINDOW_SETTLED, LOCK_REASON_SETTLED
    if game.status == STATUS_FINAL:
        return WINDOW_LOCKED, LOCK_REASON_FINISHED
    if game.status != STATUS_SCHEDULED or game.has_started(now):
        return WINDOW_LOCKED, LOCK_REASON_STARTED
    if all_members_picked(league, game.id):
        return WINDOW_LOCKED, LOCK_REASON_ALL_PICKED
    return WINDOW_OPEN, None


def lock_picks(game_id, league_id=None, now=None):
    """Stamp locked_at on not-yet-locked picks; returns how many were stamped"""
    stmt = (
        update(Pick)
        .where(Pick.game_id == game_id, Pick.locked_at.is_(None))
        .values(locked_at=now or _utcnow())
        .execution_options(synchronize_session=False)
    )
    if league_id is not None:
        stmt = stmt.where(Pick.league_id == league_id)
    result = db.session.execute(stmt)
    return result.rowcount or 0


def _resolve_target(selection):
    if isinstance(selection, TeamSelection):
        return None, TEAM_PICK_NAME
    if isinstance(selection, PlayerSelection):
        player = db.session.get(Player, selection.player_id)
        if not player:
            raise ValidationError(f"Player not found: {selection.player_id}")
        if not player.is_active:
            raise ValidationError(f"{player.name} is not on the active roster")
        return player, player.name
    raise ValidationError(f"Unsupported selection: {selection!r}")


def _apply_selection(pick, selection, player_name):
    pick.selection = selection
    pick.player_name = player_name


def _check_pick_unlocked(pick, is_admin):
    # locked_at outlives a reopened window (late joiner, rescheduled game)
    if pick.locked_at is not None and not is_admin:
        raise PickLockedError(
            LOCK_MESSAGES[LOCK_REASON_PICK_LOCKED], reason=LOCK_REASON_PICK_LOCKED
        )


def _insert_pick(pick):
    try:
        with db.session.begin_nested():
            db.session.add(pick)
    except IntegrityError:
        raise ConstraintViolationError(
            "Pick already exists",
            user_id=pick.user_id,
            league_id=pick.league_id,
            game_id=pick.game_id,
        )


def submit_pick(actor_id, league_id, game_id, selection, target_user_id=None, now=None):
    """
    Create or replace the pick for (target user, league, game).

    Raises ValidationError, AuthorizationError (PickLockedError when the
    window is closed for this actor) or NotFoundError. Returns the Pick.
    """
    now = now or _utcnow()

    league = db.session.get(League, league_id)
    if not league:
        raise NotFoundError("League not found", league_id=league_id)
    game = db.session.get(Game, game_id)
    if not game:
        raise NotFoundError("Game not found", game_id=game_id)

    actor_membership = league.get_membership(actor_id)
    if not actor_membership:
        raise AuthorizationError("You are not a member of this league")
    is_admin = actor_membership.is_admin

    target_user_id = target_user_id or actor_id
    if target_user_id != actor_id:
        if not is_admin:
            raise AuthorizationError("Only admins can pick for other users")
        if not league.is_user_member(target_user_id):
            raise ValidationError("Target user is not a member of this league")

    _, player_name = _resolve_target(selection)

    state, reason = get_pick_window_state(league, game, now)
    if state == WINDOW_SETTLED:
        raise PickLockedError(LOCK_MESSAGES[reason], reason=reason)
    if state == WINDOW_LOCKED and not is_admin:
        raise PickLockedError(LOCK_MESSAGES[reason], reason=reason)
    lock_reason = reason if state == WINDOW_LOCKED else None

    try:
        pick = Pick.get_for(target_user_id, league.id, game.id)
        previous_name = pick.player_name if pick else None
        if pick is not None:
            _check_pick_unlocked(pick, is_admin)

        if pick is None:
            pick = Pick(user_id=target_user_id, league_id=league.id, game_id=game.id)
            _apply_selection(pick, selection, player_name)
            try:
                _insert_pick(pick)
            except ConstraintViolationError:
                # Lost an insert race; fold into the existing row
                pick = Pick.get_for(target_user_id, league.id, game.id)
                _check_pick_unlocked(pick, is_admin)
                previous_name = pick.player_name
                _apply_selection(pick, selection, player_name)
        else:
            _apply_selection(pick, selection, player_name)

        if pick.locked_at is not None and lock_reason is None:
            # Admin edit of a stamped pick in a reopened window
            lock_reason = LOCK_REASON_PICK_LOCKED
        if lock_reason and pick.locked_at is None:
            pick.locked_at = now
        db.session.flush()

        if lock_reason or target_user_id != actor_id:
            AdminAction.log_pick_override(
                actor_id, pick, previous_name=previous_name, lock_reason=lock_reason
            )

        if lock_reason is None and all_members_picked(league, game.id):
            locked = lock_picks(game.id, league_id=league.id, now=now)
            logger.info(
                f"All {league.get_member_count()} members of league {league.id} picked "
                f"for game {game.id}; locked {locked} picks"
            )

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    invalidate_league_cache(league.id)
    logger.info(
        f"Pick saved: user {target_user_id} -> {pick.player_name} "
        f"(league {league.id}, game {game.id}, by user {actor_id})"
    )
    return pick


def get_picks_for_game(league_id, game_id):
    return (
        Pick.query.filter_by(league_id=league_id, game_id=game_id)
        .order_by(Pick.picked_at)
        .all()
    )
