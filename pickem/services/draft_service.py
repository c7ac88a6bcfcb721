import logging

from pickem import db
from pickem.errors import AuthorizationError, NotFoundError, ValidationError
from pickem.models import AdminAction, League, LeagueMembership, Pick, User

logger = logging.getLogger(__name__)


def _get_league(league_id):
    league = db.session.get(League, league_id)
    if not league:
        raise NotFoundError("League not found", league_id=league_id)
    return league


def _require_member(league, actor_id):
    membership = league.get_membership(actor_id)
    if not membership:
        raise AuthorizationError("You are not a member of this league")
    return membership


def serialize_draft_order(order):
    """[{position, user_id, username, display_name}] for an ordered list of user ids"""
    if order is None:
        return None
    users = {user.id: user for user in User.query.filter(User.id.in_(order)).all()} if order else {}
    entries = []
    for position, user_id in enumerate(order, start=1):
        user = users.get(user_id)
        entries.append(
            {
                "position": position,
                "user_id": user_id,
                "username": user.username if user else None,
                "display_name": user.full_name if user else None,
            }
        )
    return entries


def get_draft_order(league_id):
    """Current draft order, or None when the league has not set one"""
    league = _get_league(league_id)
    return serialize_draft_order(league.draft_order)


def set_draft_order(actor_id, league_id, user_ids):
    """
    Replace the draft order. Admin only; the list must name every member of
    the league exactly once.
    """
    league = _get_league(league_id)
    if not league.is_user_admin(actor_id):
        raise AuthorizationError("Only league admins can set draft order")

    if not isinstance(user_ids, (list, tuple)) or not user_ids:
        raise ValidationError("user_ids must be a non-empty list")
    try:
        order = [int(user_id) for user_id in user_ids]
    except (TypeError, ValueError):
        raise ValidationError("user_ids must be integers")

    if len(set(order)) != len(order):
        raise ValidationError("Draft order contains duplicate users")

    member_ids = {membership.user_id for membership in league.memberships}
    invalid = [user_id for user_id in order if user_id not in member_ids]
    if invalid:
        raise ValidationError(
            f"Invalid user IDs: {', '.join(str(user_id) for user_id in invalid)}",
            invalid_user_ids=invalid,
        )
    if set(order) != member_ids:
        raise ValidationError("All league members must be included in draft order")

    old_order = league.draft_order
    try:
        league.draft_order = order
        AdminAction.log_draft_order_change(
            actor_id, league, "set_draft_order", old_order, order
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(f"Draft order set for league {league.id}: {order}")
    return serialize_draft_order(order)


def rotate_draft_order(actor_id, league_id):
    """
    Move position 1 to the end; everyone else moves up one.

    actor_id None is a system rotation (CLI); otherwise the actor must be a
    member. Raises ValidationError when no order is set.
    """
    league = _get_league(league_id)
    membership = _require_member(league, actor_id) if actor_id is not None else None

    if not league.draft_order:
        raise ValidationError("Draft order has not been set for this league")

    old_order = list(league.draft_order)
    new_order = old_order[1:] + old_order[:1]

    try:
        # Assign a new list so the JSON column is flagged dirty
        league.draft_order = new_order
        if membership is not None:
            AdminAction.log_draft_order_change(
                actor_id, league, "rotate_draft_order", old_order, new_order
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(f"Draft order rotated for league {league.id}: {old_order} -> {new_order}")
    return serialize_draft_order(new_order)


def next_to_pick(league_id, game_id):
    """First user in draft order without a pick for the game, None when done or unset"""
    league = _get_league(league_id)
    if not league.draft_order:
        return None

    picked = {
        user_id
        for (user_id,) in db.session.query(Pick.user_id).filter_by(
            league_id=league.id, game_id=game_id
        )
    }
    for position, user_id in enumerate(league.draft_order, start=1):
        if user_id not in picked:
            return {"position": position, "user_id": user_id}
    return None


def add_member(league_id, user_id, as_admin=False):
    """
    Add a user to the league. When a draft order is set the newcomer goes to
    the back of it, so every member always holds a position.
    """
    league = _get_league(league_id)
    if not db.session.get(User, user_id):
        raise NotFoundError("User not found", user_id=user_id)
    if league.is_user_member(user_id):
        raise ValidationError("User is already a member of this league", user_id=user_id)

    try:
        membership = LeagueMembership(league_id=league.id, user_id=user_id)
        if as_admin:
            membership.promote_to_admin()
        db.session.add(membership)
        if league.draft_order:
            league.draft_order = list(league.draft_order) + [user_id]
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        f"User {user_id} joined league {league.id} "
        f"(draft position {league.draft_position_of(user_id)})"
    )
    return membership
