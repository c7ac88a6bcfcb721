#!/usr/bin/env python3
"""
NHL Pick'em Management CLI

Command-line access to syncing, settlement, league setup and standings.
"""

import logging
import os

import click
from flask.cli import with_appcontext
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

# The CLI runs jobs on demand; keep the background scheduler out of it
os.environ.setdefault("SCHEDULER_ENABLED", "False")

from pickem import create_app, db  # noqa: E402
from pickem.errors import PickemError  # noqa: E402
from pickem.models import Game, League, LeagueMembership, Pick, Player, Settlement, User  # noqa: E402
from pickem.models.league_membership import ROLE_ADMIN  # noqa: E402
from pickem.services import (  # noqa: E402
    draft_service,
    game_sync_service,
    settlement_service,
    standings_service,
)

app = create_app()


@click.group()
def cli():
    """NHL Pick'em Management CLI"""
    pass


# Data Sync Commands
@cli.group()
def sync():
    """NHL data sync commands"""
    pass


@sync.command()
@with_appcontext
def roster():
    """Sync players from the current NHL roster"""
    try:
        result = game_sync_service.sync_roster()
        click.echo(
            f"✅ Roster synced: {result['created']} created, {result['updated']} updated, "
            f"{result['deactivated']} deactivated"
        )
    except PickemError as e:
        click.echo(f"❌ Roster sync failed: {e.message}")
        logging.error(f"Roster sync failed: {e}")


@sync.command()
@click.option(
    "--date",
    "on_date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    help="Any date in the schedule week to sync (default: today)",
)
@with_appcontext
def schedule(on_date):
    """Sync games from the NHL schedule"""
    try:
        result = game_sync_service.sync_schedule(on_date=on_date.date() if on_date else None)
        click.echo(f"✅ Schedule synced: {result['created']} created, {result['updated']} updated")
    except PickemError as e:
        click.echo(f"❌ Schedule sync failed: {e.message}")
        logging.error(f"Schedule sync failed: {e}")


@sync.command(name="status")
@with_appcontext
def sync_status():
    """Refresh status and score of live or due games"""
    result = game_sync_service.refresh_game_status()
    click.echo(f"🔄 Checked {result['checked']} games, updated {len(result['updated'])}")
    for game in result["updated"]:
        click.echo(f"   {game['opponent']}: {game['status']} ({game['home_score']}-{game['away_score']})")
    for error in result["errors"]:
        click.echo(f"   ❌ Game {error['game_id']}: {error['error']}")


@sync.command()
@with_appcontext
def performance():
    """Sync player stats for live and recently finished games"""
    result = game_sync_service.sync_player_performance()
    click.echo(
        f"📊 Recorded {result['performances']} performances across {result['games']} games"
    )
    for error in result["errors"]:
        click.echo(f"   ❌ Game {error['game_id']}: {error['error']}")


# Settlement Commands
@cli.group()
def settle():
    """Settlement commands"""
    pass


@settle.command(name="game")
@click.argument("game_id", type=int)
@with_appcontext
def settle_game(game_id):
    """Settle a single final game"""
    try:
        result = settlement_service.settle_game(game_id)
    except PickemError as e:
        click.echo(f"❌ {e.__class__.__name__}: {e.message}")
        return

    click.echo(
        f"✅ Game {result['game_id']} settled: {result['picks_updated']} picks, "
        f"{result['points_awarded']} points"
        f"{' (OT)' if result['is_overtime'] else ''}{' (SO)' if result['is_shootout'] else ''}"
    )
    for skipped in result["skipped"]:
        click.echo(f"   ⚠️  Skipped pick {skipped['pick_id']}: {skipped['reason']}")


@settle.command()
@with_appcontext
def pending():
    """Settle every final game that has unsettled picks"""
    result = settlement_service.settle_pending_games()
    for settled in result["settled"]:
        click.echo(
            f"✅ Game {settled['game_id']}: {settled['picks_updated']} picks, "
            f"{settled['points_awarded']} points"
        )
    for error in result["errors"]:
        click.echo(f"❌ Game {error['game_id']}: {error['error']}")
    if not result["settled"] and not result["errors"]:
        click.echo("Nothing to settle.")


# User and League Commands
@cli.group()
def user():
    """User management commands"""
    pass


@user.command(name="create")
@click.argument("username")
@click.option("--display-name", help="Display name")
@click.option("--email", help="Email address")
@with_appcontext
def create_user(username, display_name, email):
    """Create a user record"""
    try:
        new_user = User(username=username, display_name=display_name, email=email)
        db.session.add(new_user)
        db.session.commit()
        click.echo(f"✅ Created user {username} (ID: {new_user.id})")
    except IntegrityError as e:
        db.session.rollback()
        click.echo(f"❌ User {username} already exists!")
        logging.error(f"User creation failed - integrity error: {e}")


@user.command(name="list")
@with_appcontext
def list_users():
    """List all users"""
    users = User.query.order_by(User.username).all()
    if not users:
        click.echo("No users found.")
        return
    for u in users:
        click.echo(f"  {u.id}: {u.username} ({u.full_name})")


@cli.group()
def league():
    """League management commands"""
    pass


@league.command(name="create")
@click.argument("name")
@click.argument("owner")
@click.option("--team", default="DET", help="Team abbreviation the league follows")
@with_appcontext
def create_league(name, owner, team):
    """Create a league owned (and administered) by OWNER (username)"""
    owner_user = User.query.filter_by(username=owner).first()
    if not owner_user:
        click.echo(f"❌ User {owner} not found!")
        return

    try:
        new_league = League(name=name, team_abbrev=team.upper(), created_by_id=owner_user.id)
        db.session.add(new_league)
        db.session.flush()
        db.session.add(
            LeagueMembership(league_id=new_league.id, user_id=owner_user.id, role=ROLE_ADMIN)
        )
        db.session.commit()
        click.echo(f"✅ Created league {name} (ID: {new_league.id}, code: {new_league.code})")
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"❌ Database error creating league: {str(e)}")
        logging.error(f"League creation failed - SQL error: {e}")


@league.command()
@click.argument("code")
@click.argument("username")
@click.option("--admin", is_flag=True, help="Join as league admin")
@with_appcontext
def join(code, username, admin):
    """Add USERNAME to the league with join CODE"""
    target_league = League.query.filter_by(code=code.upper()).first()
    if not target_league:
        click.echo(f"❌ No league with code {code}")
        return
    member = User.query.filter_by(username=username).first()
    if not member:
        click.echo(f"❌ User {username} not found!")
        return

    try:
        draft_service.add_member(target_league.id, member.id, as_admin=admin)
    except PickemError as e:
        click.echo(f"⚠️  {e.message}")
        return
    click.echo(f"✅ {username} joined {target_league.name}")
    position = target_league.draft_position_of(member.id)
    if position:
        click.echo(f"   Draft position: {position}")


@league.command(name="draft-order")
@click.argument("league_id", type=int)
@click.argument("usernames", nargs=-1)
@click.option("--as-user", "actor", required=False, help="Admin username making the change")
@with_appcontext
def draft_order(league_id, usernames, actor):
    """Show the draft order, or set it from USERNAMES (first picks first)"""
    try:
        if not usernames:
            order = draft_service.get_draft_order(league_id)
            if order is None:
                click.echo("No draft order set.")
                return
            for entry in order:
                click.echo(f"  {entry['position']}. {entry['username']}")
            return

        users = {u.username: u.id for u in User.query.filter(User.username.in_(usernames))}
        missing = [name for name in usernames if name not in users]
        if missing:
            click.echo(f"❌ Unknown users: {', '.join(missing)}")
            return

        target_league = db.session.get(League, league_id)
        actor_id = users.get(actor) if actor else None
        if actor_id is None and target_league:
            actor_id = target_league.created_by_id

        order = draft_service.set_draft_order(actor_id, league_id, [users[n] for n in usernames])
        click.echo("✅ Draft order set:")
        for entry in order:
            click.echo(f"  {entry['position']}. {entry['username']}")
    except PickemError as e:
        click.echo(f"❌ {e.message}")


@league.command()
@click.argument("league_id", type=int)
@with_appcontext
def rotate(league_id):
    """Rotate the draft order (first pick moves to last)"""
    try:
        order = draft_service.rotate_draft_order(None, league_id)
    except PickemError as e:
        click.echo(f"❌ {e.message}")
        return
    click.echo("🔄 New draft order:")
    for entry in order:
        click.echo(f"  {entry['position']}. {entry['username']}")


@league.command(name="list")
@with_appcontext
def list_leagues():
    """List all leagues"""
    leagues = League.query.order_by(League.name).all()
    if not leagues:
        click.echo("No leagues found.")
        return
    for lg in leagues:
        click.echo(f"  {lg.id}: {lg.name} [{lg.code}] - {lg.get_member_count()} members")


# Standings Commands
@cli.group()
def standings():
    """Standings commands"""
    pass


@standings.command()
@click.argument("league_id", type=int)
@with_appcontext
def show(league_id):
    """Print league standings"""
    try:
        data = standings_service.get_standings(league_id)
    except PickemError as e:
        click.echo(f"❌ {e.message}")
        return

    click.echo(f"🏒 {data['league']['name']} Standings")
    click.echo("=" * 40)
    for entry in data["standings"]:
        click.echo(f"  {entry['rank']:>2}. {entry['display_name']:<20} {entry['total_points']:>5}")


@standings.command()
@click.argument("league_id", type=int)
@with_appcontext
def verify(league_id):
    """Compare ledger totals with the sum of settled pick points"""
    try:
        report = standings_service.verify_standings(league_id)
    except PickemError as e:
        click.echo(f"❌ {e.message}")
        return

    if report["ok"]:
        click.echo(f"✅ All {report['members_checked']} members match their settled picks")
        return
    for entry in report["discrepancies"]:
        click.echo(
            f"⚠️  MISMATCH {entry['username']}: ledger {entry['ledger_total']}, "
            f"expected {entry['expected_total']} (difference {entry['difference']})"
        )


# Database Commands
@cli.group()
def db_cmd():
    """Database commands"""
    pass


@db_cmd.command()
@with_appcontext
def init_db():
    """Initialize database tables"""
    try:
        db.create_all()
        click.echo("✅ Database tables created successfully!")
    except SQLAlchemyError as e:
        click.echo(f"❌ Error initializing database: {str(e)}")


@db_cmd.command()
@with_appcontext
def reset():
    """⚠️  DANGER: Drop and recreate all tables"""
    if not click.confirm("This will DELETE ALL DATA. Are you sure?"):
        click.echo("Cancelled.")
        return

    try:
        db.drop_all()
        db.create_all()
        click.echo("✅ Database reset successfully!")
    except SQLAlchemyError as e:
        click.echo(f"❌ Error resetting database: {str(e)}")


# Scheduler Commands
@cli.command()
@click.argument("name", type=click.Choice(["status", "performance", "settle", "daily"]))
@with_appcontext
def job(name):
    """Run one scheduler job now"""
    from pickem.services.scheduler_service import scheduler_service

    result = scheduler_service.force_run(name)
    stats = scheduler_service.get_status()["stats"]
    if result is None:
        click.echo(f"❌ Job {name} failed: {stats['last_error']}")
        return
    click.echo(f"✅ Job {name} completed ({stats['successful_runs']}/{stats['total_runs']} runs ok)")


# Info Commands
@cli.command()
@with_appcontext
def status():
    """Show application status"""
    click.echo("🏒 NHL Pick'em Application Status")
    click.echo("=" * 40)

    try:
        db.session.execute(text("SELECT 1"))
        click.echo("✅ Database: Connected")
    except SQLAlchemyError as e:
        click.echo(f"❌ Database: Error - {str(e)}")
        return

    click.echo(f"👥 Users: {User.query.count()}")
    click.echo(f"🏆 Leagues: {League.query.count()}")
    click.echo(
        f"🏒 Players: {Player.query.filter_by(is_active=True).count()} active "
        f"of {Player.query.count()}"
    )

    game_count = Game.query.count()
    final_count = Game.query.filter_by(status="final").count()
    settled_count = Settlement.query.count()
    click.echo(f"📅 Games: {final_count}/{game_count} final, {settled_count} settled")
    click.echo(f"📝 Picks: {Pick.query.count()}")

    pending = settlement_service.find_pending_games()
    if pending:
        click.echo(f"⚠️  {len(pending)} final games waiting for settlement")


if __name__ == "__main__":
    with app.app_context():
        cli()
