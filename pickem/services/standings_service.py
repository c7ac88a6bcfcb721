import logging

from sqlalchemy import func

from pickem import db
from pickem.errors import NotFoundError
from pickem.models import League, LeagueMembership, Pick, Settlement, User

logger = logging.getLogger(__name__)


def _get_league(league_id):
    league = db.session.get(League, league_id)
    if not league:
        raise NotFoundError("League not found", league_id=league_id)
    return league


def get_standings(league_id):
    """Members ranked by cumulative points; ties share a rank"""
    league = _get_league(league_id)

    memberships = (
        LeagueMembership.query.join(User, LeagueMembership.user_id == User.id)
        .filter(LeagueMembership.league_id == league.id)
        .order_by(LeagueMembership.total_points.desc(), User.username)
        .all()
    )

    settled_counts = dict(
        db.session.query(Pick.user_id, func.count(Pick.id))
        .join(Settlement, Settlement.game_id == Pick.game_id)
        .filter(Pick.league_id == league.id)
        .group_by(Pick.user_id)
        .all()
    )

    standings = []
    rank = 0
    previous_points = None
    for index, membership in enumerate(memberships, start=1):
        if membership.total_points != previous_points:
            rank = index
            previous_points = membership.total_points
        entry = membership.to_dict()
        entry["rank"] = rank
        entry["settled_picks"] = settled_counts.get(membership.user_id, 0)
        standings.append(entry)

    return {"league": league.to_dict(), "standings": standings}


def verify_standings(league_id):
    """
    Recompute each member's expected total from their settled picks and report
    any member whose ledger disagrees. Nothing is rewritten.
    """
    league = _get_league(league_id)

    expected = dict(
        db.session.query(Pick.user_id, func.coalesce(func.sum(Pick.points_earned), 0))
        .join(Settlement, Settlement.game_id == Pick.game_id)
        .filter(Pick.league_id == league.id)
        .group_by(Pick.user_id)
        .all()
    )

    discrepancies = []
    for membership in league.memberships:
        expected_total = int(expected.get(membership.user_id, 0))
        if membership.total_points != expected_total:
            discrepancies.append(
                {
                    "user_id": membership.user_id,
                    "username": membership.user.username,
                    "ledger_total": membership.total_points,
                    "expected_total": expected_total,
                    "difference": membership.total_points - expected_total,
                }
            )

    if discrepancies:
        logger.warning(
            f"League {league.id} standings mismatch for {len(discrepancies)} member(s)"
        )
    return {
        "league_id": league.id,
        "members_checked": league.get_member_count(),
        "discrepancies": discrepancies,
        "ok": not discrepancies,
    }
