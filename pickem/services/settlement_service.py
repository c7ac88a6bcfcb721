"""
Settlement: turn a final game's box score into pick points and standings.

One settlement per game. The Settlement row (unique on game_id) is inserted
in the same transaction as every pick and ledger write, so a concurrent or
repeated run either loses the insert or finds the row, and writes nothing.
"""

import logging
import uuid
from collections import defaultdict
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from pickem import db
from pickem.errors import (
    AlreadySettledError,
    NotFoundError,
    NotReadyError,
    PickemError,
    UpstreamDataError,
)
from pickem.models import Game, LeagueMembership, Pick, Player, PlayerPerformance, Settlement
from pickem.utils.cache_utils import invalidate_league_cache
from pickem.utils.logging_config import ContextualLogger
from pickem.utils.normalizer import normalize_box_score, stats_to_performance
from pickem.utils.scoring import (
    GameContext,
    approximate_overtime_attribution,
    player_breakdown,
    team_breakdown,
)

logger = logging.getLogger(__name__)


def default_source():
    """Configured data source (NHL_DATA_SOURCE), else a live NHL API client"""
    source = current_app.config.get("NHL_DATA_SOURCE")
    if source is not None:
        return source

    from pickem.utils.nhl_client import NHLClient

    return NHLClient()


def game_context(game):
    """Scoring context from the stored game (final score, OT and shootout flags)"""
    return GameContext(
        is_overtime=bool(game.is_overtime),
        is_shootout=bool(game.is_shootout),
        team_goals=game.team_score,
        opponent_goals=game.opponent_score,
    )


def score_pick(pick, context, policy=approximate_overtime_attribution, synthesize=True):
    """
    Breakdown for one pick. Player picks are scored by the player's position
    formula against their (player, game) performance record; a missing record
    is synthesized as zero stats when synthesize is set.
    """
    if pick.is_team_pick:
        return team_breakdown(context)

    player = pick.player
    if player is None:
        raise ValueError(f"Pick {pick.id} references missing player {pick.player_id}")

    if synthesize:
        performance, _ = PlayerPerformance.get_or_synthesize(player.id, pick.game_id)
    else:
        performance = PlayerPerformance.query.filter_by(
            player_id=player.id, game_id=pick.game_id
        ).first()
    stats = performance if performance is not None else {}
    return player_breakdown(
        player.position, stats_to_performance(player.position, stats), context, policy
    )


def _check_not_settled(game):
    if game.is_settled:
        raise AlreadySettledError("Game has already been settled", game_id=game.id)
    # Rows scored before the settlement ledger existed
    already_scored = (
        Pick.query.filter(Pick.game_id == game.id, Pick.points_earned != 0).first()
    )
    if already_scored:
        raise AlreadySettledError(
            "Points have already been calculated for this game", game_id=game.id
        )


def fetch_normalized_box_score(game, source):
    if not game.nhl_game_id:
        raise UpstreamDataError(
            "Game has no NHL game id; cannot fetch box score", game_id=game.id
        )

    payload = source.fetch_box_score(game.nhl_game_id)

    summary = None
    if current_app.config.get("USE_SCORING_SUMMARY") and hasattr(source, "fetch_scoring_summary"):
        try:
            summary = source.fetch_scoring_summary(game.nhl_game_id)
        except UpstreamDataError as e:
            logger.warning(
                f"Scoring summary unavailable for game {game.id}, "
                f"falling back to approximate attribution: {e}"
            )

    return normalize_box_score(
        payload,
        team_id=current_app.config.get("NHL_TEAM_ID"),
        team_abbrev=current_app.config.get("NHL_TEAM_ABBREV"),
        is_home=game.is_home,
        scoring_summary=summary,
    )


def record_performances(game, box):
    """Upsert a performance row for every box score line that maps to a known player"""
    nhl_ids = [line.nhl_player_id for line in box.lines()]
    if not nhl_ids:
        return 0
    players = {
        player.nhl_player_id: player
        for player in Player.query.filter(Player.nhl_player_id.in_(nhl_ids)).all()
    }
    count = 0
    for line in box.lines():
        player = players.get(line.nhl_player_id)
        if player is None:
            continue
        PlayerPerformance.upsert(player.id, game.id, line.to_stats())
        count += 1
    return count


def _claim(game, run_id):
    settlement = Settlement(game_id=game.id, run_id=run_id)
    try:
        with db.session.begin_nested():
            db.session.add(settlement)
    except IntegrityError:
        raise AlreadySettledError("Game is being settled by another run", game_id=game.id)
    return settlement


def settle_game(game_id, source=None, now=None, policy=approximate_overtime_attribution):
    """
    Compute points for every pick on a final game and add them to standings.

    Raises NotReadyError (game not final), AlreadySettledError (nothing
    written) or UpstreamDataError (box score unavailable, nothing written).
    """
    game = db.session.get(Game, game_id)
    if not game:
        raise NotFoundError("Game not found", game_id=game_id)
    if not game.is_final:
        raise NotReadyError(
            f"Game is not final (status: {game.status})", game_id=game.id, status=game.status
        )
    _check_not_settled(game)

    box = fetch_normalized_box_score(game, source or default_source())

    run_id = str(uuid.uuid4())
    now = now or datetime.now(timezone.utc)
    log = ContextualLogger(__name__, {"game_id": game.id, "run_id": run_id})

    try:
        settlement = _claim(game, run_id)

        game.is_overtime = box.is_overtime
        game.is_shootout = box.is_shootout
        game.home_score = box.home_score
        game.away_score = box.away_score
        if game.is_home != box.is_home:
            log.warning(
                f"Stored home/away side disagrees with box score; using "
                f"{'home' if box.is_home else 'away'}"
            )
            game.is_home = box.is_home

        recorded = record_performances(game, box)
        log.info(f"Recorded {recorded} player performances")

        context = box.context
        deltas = defaultdict(int)
        skipped = []
        picks_updated = 0

        for pick in game.picks.order_by(Pick.id).all():
            try:
                breakdown = score_pick(pick, context, policy)
            except (PickemError, ValueError, TypeError) as e:
                log.warning(f"Skipping pick {pick.id} for user {pick.user_id}: {e}")
                skipped.append({"pick_id": pick.id, "user_id": pick.user_id, "reason": str(e)})
                continue

            pick.points_earned = breakdown.total
            pick.scored_at = now
            if pick.locked_at is None:
                pick.locked_at = now
            deltas[(pick.league_id, pick.user_id)] += breakdown.total
            picks_updated += 1

        for (league_id, user_id), delta in deltas.items():
            if not delta:
                continue
            db.session.execute(
                update(LeagueMembership)
                .where(
                    LeagueMembership.league_id == league_id,
                    LeagueMembership.user_id == user_id,
                )
                .values(total_points=LeagueMembership.total_points + delta)
            )

        points_awarded = sum(deltas.values())
        settlement.picks_updated = picks_updated
        settlement.picks_skipped = len(skipped)
        settlement.points_awarded = points_awarded
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    invalidate_league_cache(*{league_id for league_id, _ in deltas})
    log.info(
        f"Settled: {picks_updated} picks updated, {len(skipped)} skipped, "
        f"{points_awarded} points awarded"
    )

    return {
        "game_id": game.id,
        "run_id": run_id,
        "picks_updated": picks_updated,
        "skipped": skipped,
        "points_awarded": points_awarded,
        "is_overtime": game.is_overtime,
        "is_shootout": game.is_shootout,
    }


def find_pending_games():
    """Final games with picks that have not been settled yet"""
    return (
        Game.query.filter(
            Game.status == "final",
            Game.id.in_(db.select(Pick.game_id)),
            ~Game.id.in_(db.select(Settlement.game_id)),
        )
        .order_by(Game.game_time)
        .all()
    )


def settle_pending_games(source=None, policy=approximate_overtime_attribution):
    """Settle every pending game; one game's failure never stops the batch"""
    source = source or default_source()
    results = {"settled": [], "already_settled": [], "errors": []}

    for game in find_pending_games():
        game_id = game.id
        try:
            results["settled"].append(settle_game(game_id, source=source, policy=policy))
        except AlreadySettledError:
            results["already_settled"].append(game_id)
        except PickemError as e:
            logger.error(f"Failed to settle game {game_id}: {e.message}")
            results["errors"].append({"game_id": game_id, "error": e.message})
        except Exception as e:
            logger.error(f"Unexpected error settling game {game_id}: {e}", exc_info=True)
            results["errors"].append({"game_id": game_id, "error": str(e)})

    logger.info(
        f"Settlement batch: {len(results['settled'])} settled, "
        f"{len(results['already_settled'])} already settled, {len(results['errors'])} errors"
    )
    return results


def get_score_breakdown(pick_id, policy=approximate_overtime_attribution):
    """Labelled formula terms for a pick; the total matches what settlement awards"""
    pick = db.session.get(Pick, pick_id)
    if not pick:
        raise NotFoundError("Pick not found", pick_id=pick_id)
    game = pick.game
    if not game.is_final:
        raise NotReadyError("Game is not final yet", game_id=game.id, status=game.status)

    breakdown = score_pick(pick, game_context(game), policy, synthesize=False)
    data = breakdown.to_dict()
    data.update(
        {
            "pick_id": pick.id,
            "pick_type": pick.pick_type,
            "player_name": pick.player_name,
            "points_earned": pick.points_earned,
            "is_settled": game.is_settled,
        }
    )
    return data
