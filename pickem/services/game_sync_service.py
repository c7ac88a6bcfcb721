"""
Keeps games, rosters and player performances in step with the NHL API.

Every operation here is idempotent so the scheduler and the cron endpoints
can call them as often as they like.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import or_

from pickem import db
from pickem.errors import PickemError, UpstreamDataError
from pickem.models import Game, Player, Settlement
from pickem.models.game import STATUS_FINAL, STATUS_IN_PROGRESS, STATUS_SCHEDULED
from pickem.services.pick_service import lock_picks
from pickem.services.settlement_service import (
    default_source,
    fetch_normalized_box_score,
    record_performances,
)
from pickem.utils.normalizer import normalize_position

logger = logging.getLogger(__name__)

# Final games keep getting stat corrections for a while after the horn
PERFORMANCE_SYNC_WINDOW = timedelta(hours=24)


def _unsettled():
    return ~Game.id.in_(db.select(Settlement.game_id))


def refresh_game_status(source=None, now=None):
    """
    Pull status and score for games that are due or live.

    A game leaving "scheduled" locks every pick on it. Settled games are
    never touched.
    """
    source = source or default_source()
    now = now or datetime.now(timezone.utc)

    games = (
        Game.query.filter(
            Game.status.in_([STATUS_SCHEDULED, STATUS_IN_PROGRESS]),
            Game.nhl_game_id.isnot(None),
            or_(Game.status == STATUS_IN_PROGRESS, Game.game_time <= now),
            _unsettled(),
        )
        .order_by(Game.game_time)
        .all()
    )

    results = {"checked": len(games), "updated": [], "errors": []}
    for game in games:
        previous_status = game.status
        try:
            state = source.fetch_game_state(game.nhl_game_id)
            if not game.update_score(state["status"], state["home_score"], state["away_score"]):
                continue

            locked = 0
            if previous_status == STATUS_SCHEDULED and game.status != STATUS_SCHEDULED:
                locked = lock_picks(game.id, now=now)
            db.session.commit()
        except PickemError as e:
            db.session.rollback()
            logger.error(f"Status refresh failed for game {game.id}: {e.message}")
            results["errors"].append({"game_id": game.id, "error": e.message})
            continue
        except Exception as e:
            db.session.rollback()
            logger.error(f"Unexpected error refreshing game {game.id}: {e}", exc_info=True)
            results["errors"].append({"game_id": game.id, "error": str(e)})
            continue

        logger.info(
            f"Updated game {game.id}: {previous_status} -> {game.status} "
            f"({game.home_score}-{game.away_score}), locked {locked} picks"
        )
        results["updated"].append(game.to_dict())

    return results


def sync_player_performance(source=None, now=None):
    """Record per-player stats for live games and recently finished, unsettled games"""
    source = source or default_source()
    now = now or datetime.now(timezone.utc)

    games = (
        Game.query.filter(
            Game.nhl_game_id.isnot(None),
            or_(
                Game.status == STATUS_IN_PROGRESS,
                (Game.status == STATUS_FINAL) & (Game.game_time >= now - PERFORMANCE_SYNC_WINDOW),
            ),
            _unsettled(),
        )
        .order_by(Game.game_time.desc())
        .all()
    )

    results = {"games": len(games), "performances": 0, "errors": []}
    for game in games:
        try:
            box = fetch_normalized_box_score(game, source)
            results["performances"] += record_performances(game, box)
            db.session.commit()
        except PickemError as e:
            db.session.rollback()
            logger.error(f"Performance sync failed for game {game.id}: {e.message}")
            results["errors"].append({"game_id": game.id, "error": e.message})
        except Exception as e:
            db.session.rollback()
            logger.error(f"Unexpected error syncing game {game.id}: {e}", exc_info=True)
            results["errors"].append({"game_id": game.id, "error": str(e)})

    logger.info(
        f"Performance sync: {results['performances']} records across {results['games']} games"
    )
    return results


def sync_roster(source=None):
    """
    Create or update players from the current roster and deactivate anyone
    who is no longer on it.
    """
    source = source or default_source()
    roster = source.fetch_roster()
    if not roster:
        raise UpstreamDataError("Roster is empty; refusing to deactivate every player")

    created = updated = 0
    seen_ids = []
    try:
        for entry in roster:
            name = entry["name"]
            number = entry.get("number")
            player = None
            if entry.get("nhl_player_id"):
                player = Player.get_by_nhl_id(entry["nhl_player_id"])
            if player is None:
                player = Player.query.filter_by(name=name, number=number).first()

            if player is None:
                player = Player(name=name)
                db.session.add(player)
                created += 1
            else:
                updated += 1

            player.name = name
            player.number = number
            player.position = normalize_position(entry.get("position")).value
            player.is_active = True
            if entry.get("nhl_player_id"):
                player.nhl_player_id = entry["nhl_player_id"]

            db.session.flush()
            seen_ids.append(player.id)

        deactivated = Player.query.filter(
            Player.is_active.is_(True), ~Player.id.in_(seen_ids)
        ).update({Player.is_active: False}, synchronize_session=False)

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(f"Roster sync: {created} created, {updated} updated, {deactivated} deactivated")
    return {"created": created, "updated": updated, "deactivated": deactivated}


def sync_schedule(source=None, on_date=None):
    """Create or update games from the schedule week containing on_date"""
    source = source or default_source()
    schedule = source.fetch_schedule(on_date)

    created = updated = 0
    try:
        for entry in schedule:
            game = Game.get_by_nhl_id(entry["nhl_game_id"])
            if game is None:
                game = Game(nhl_game_id=entry["nhl_game_id"])
                db.session.add(game)
                created += 1
            elif game.is_settled:
                continue
            else:
                updated += 1

            game.opponent = entry["opponent"]
            game.is_home = entry["is_home"]
            if entry.get("game_time"):
                game.game_time = entry["game_time"]
            game.update_score(
                entry.get("status") or STATUS_SCHEDULED,
                entry.get("home_score"),
                entry.get("away_score"),
            )

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(f"Schedule sync: {created} games created, {updated} updated")
    return {"created": created, "updated": updated}
