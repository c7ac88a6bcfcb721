import hmac
from functools import wraps

from flask import current_app, g, jsonify, request

from pickem import db, limiter
from pickem.errors import AlreadySettledError, AuthorizationError, NotFoundError, ValidationError
from pickem.models import Game, League
from pickem.routes.api import bp
from pickem.services import (
    draft_service,
    game_sync_service,
    pick_service,
    settlement_service,
    standings_service,
)
from pickem.utils.cache_utils import cached_route, get_cache_stats, league_cache_key


def user_required(f):
    """Acting user id comes from the fronting layer in X-User-Id"""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get("X-User-Id")
        if not raw:
            raise AuthorizationError("Authentication required (X-User-Id header missing)")
        try:
            g.user_id = int(raw)
        except ValueError:
            raise AuthorizationError("Invalid X-User-Id header")
        return f(*args, **kwargs)

    return decorated_function


def cron_secret_required(f):
    """
    Protect cron-triggered endpoints with CRON_SECRET, sent either as
    "Authorization: Bearer <secret>" or "X-Cron-Secret: <secret>".
    Without a configured secret the endpoints are open.
    """

    @wraps(f)
    def decorated_function(*args, **kwargs):
        secret = current_app.config.get("CRON_SECRET")
        if secret:
            provided = request.headers.get("X-Cron-Secret", "")
            auth_header = request.headers.get("Authorization", "")
            if auth_header.startswith("Bearer "):
                provided = auth_header[len("Bearer "):]
            if not hmac.compare_digest(provided.encode(), secret.encode()):
                current_app.logger.warning(
                    f"Rejected cron request to {request.path} from {request.remote_addr}"
                )
                raise AuthorizationError("Invalid cron secret")
        return f(*args, **kwargs)

    return decorated_function


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("Request body must be JSON")
    return data


def _require_league_member(league_id):
    league = db.session.get(League, league_id)
    if not league:
        raise NotFoundError("League not found", league_id=league_id)
    if not league.is_user_member(g.user_id):
        raise AuthorizationError("You are not a member of this league")
    return league


# Picks


@bp.route("/leagues/<int:league_id>/games/<int:game_id>/picks", methods=["POST"])
@limiter.limit("30 per minute")
@user_required
def submit_pick(league_id, game_id):
    """Create or replace a pick; admins may pass target_user_id"""
    data = _json_body()
    selection = pick_service.parse_selection(data)

    target_user_id = data.get("target_user_id")
    if target_user_id is not None:
        try:
            target_user_id = int(target_user_id)
        except (TypeError, ValueError):
            raise ValidationError("target_user_id must be an integer")

    pick = pick_service.submit_pick(
        g.user_id, league_id, game_id, selection, target_user_id=target_user_id
    )
    return jsonify({"message": "Pick saved", "pick": pick.to_dict()})


@bp.route("/leagues/<int:league_id>/games/<int:game_id>/picks", methods=["GET"])
@user_required
def game_picks(league_id, game_id):
    """Picks for a game plus the pick window state and whose turn it is"""
    league = _require_league_member(league_id)
    game = db.session.get(Game, game_id)
    if not game:
        raise NotFoundError("Game not found", game_id=game_id)

    state, reason = pick_service.get_pick_window_state(league, game)
    return jsonify(
        {
            "game": game.to_dict(),
            "window": {"state": state, "reason": reason},
            "next_to_pick": draft_service.next_to_pick(league.id, game.id),
            "picks": [pick.to_dict() for pick in pick_service.get_picks_for_game(league.id, game.id)],
        }
    )


@bp.route("/picks/<int:pick_id>/breakdown")
def pick_breakdown(pick_id):
    return jsonify(settlement_service.get_score_breakdown(pick_id))


# Draft order


@bp.route("/leagues/<int:league_id>/draft-order", methods=["GET"])
@user_required
def get_draft_order(league_id):
    league = _require_league_member(league_id)
    return jsonify(
        {
            "league_id": league.id,
            "draft_order": draft_service.get_draft_order(league.id),
            "is_admin": league.is_user_admin(g.user_id),
        }
    )


@bp.route("/leagues/<int:league_id>/draft-order", methods=["PUT"])
@user_required
def set_draft_order(league_id):
    """Admin only; body {"user_ids": [...]} naming every member once"""
    data = _json_body()
    order = draft_service.set_draft_order(g.user_id, league_id, data.get("user_ids"))
    return jsonify({"message": "Draft order updated", "draft_order": order})


@bp.route("/leagues/<int:league_id>/draft-order/rotate", methods=["POST"])
@user_required
def rotate_draft_order(league_id):
    order = draft_service.rotate_draft_order(g.user_id, league_id)
    return jsonify({"message": "Draft order rotated", "draft_order": order})


# Standings


@cached_route(timeout=300, key_func=league_cache_key)
def _standings_payload(league_id):
    return standings_service.get_standings(league_id)


@bp.route("/leagues/<int:league_id>/standings")
def standings(league_id):
    return jsonify(_standings_payload(league_id=league_id))


# Settlement and cron triggers


@bp.route("/games/<int:game_id>/settle", methods=["POST"])
@limiter.exempt
@cron_secret_required
def settle_game(game_id):
    try:
        result = settlement_service.settle_game(game_id)
    except AlreadySettledError as e:
        return jsonify({"message": e.message, "game_id": game_id, "already_settled": True})
    return jsonify(result)


@bp.route("/cron/update-game-status", methods=["GET", "POST"])
@limiter.exempt
@cron_secret_required
def cron_update_game_status():
    result = game_sync_service.refresh_game_status()
    return jsonify({"message": "Game status update completed", **result})


@bp.route("/cron/sync-player-performance", methods=["GET", "POST"])
@limiter.exempt
@cron_secret_required
def cron_sync_player_performance():
    result = game_sync_service.sync_player_performance()
    return jsonify({"message": "Player performance sync completed", **result})


@bp.route("/cron/calculate-points", methods=["GET", "POST"])
@limiter.exempt
@cron_secret_required
def cron_calculate_points():
    result = settlement_service.settle_pending_games()
    return jsonify({"message": "Points calculation completed", **result})


@bp.route("/cron/status")
@limiter.exempt
@cron_secret_required
def cron_status():
    """Scheduler jobs and stats, cache backend and settlement backlog"""
    from pickem.services.scheduler_service import scheduler_service

    return jsonify(
        {
            "scheduler": scheduler_service.get_status(),
            "cache": get_cache_stats(),
            "pending_settlement": [game.id for game in settlement_service.find_pending_games()],
        }
    )
