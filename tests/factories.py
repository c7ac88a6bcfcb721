"""Model builders and upstream payload fixtures shared across tests."""

from datetime import datetime, timedelta, timezone

from pickem import db
from pickem.errors import UpstreamDataError
from pickem.models import Game, League, LeagueMembership, Pick, Player, User
from pickem.models.league_membership import ROLE_ADMIN
from pickem.models.pick import PICK_TYPE_PLAYER, PICK_TYPE_TEAM, TEAM_PICK_NAME

TEAM_ID = 17
TEAM_ABBREV = "DET"
OPPONENT_ID = 6
OPPONENT_ABBREV = "BOS"


def make_user(username):
    user = User(username=username, display_name=username.title())
    db.session.add(user)
    db.session.commit()
    return user


def make_league(owner, members=(), name="Hockeytown"):
    league = League(name=name, created_by_id=owner.id)
    db.session.add(league)
    db.session.flush()
    db.session.add(LeagueMembership(league_id=league.id, user_id=owner.id, role=ROLE_ADMIN))
    for member in members:
        db.session.add(LeagueMembership(league_id=league.id, user_id=member.id))
    db.session.commit()
    return league


def make_player(name, position="Forward", number=None, nhl_player_id=None, is_active=True):
    player = Player(
        name=name,
        position=position,
        number=number,
        nhl_player_id=nhl_player_id,
        is_active=is_active,
    )
    db.session.add(player)
    db.session.commit()
    return player


def make_game(
    status="scheduled",
    starts_in=timedelta(hours=2),
    home_score=None,
    away_score=None,
    is_home=True,
    nhl_game_id=2025020001,
    opponent="Boston Bruins",
):
    game = Game(
        opponent=opponent,
        is_home=is_home,
        game_time=datetime.now(timezone.utc) + starts_in,
        status=status,
        home_score=home_score,
        away_score=away_score,
        nhl_game_id=nhl_game_id,
    )
    db.session.add(game)
    db.session.commit()
    return game


def make_pick(user, league, game, player=None):
    """Insert a pick directly, bypassing the pick window"""
    pick = Pick(
        user_id=user.id,
        league_id=league.id,
        game_id=game.id,
        pick_type=PICK_TYPE_PLAYER if player else PICK_TYPE_TEAM,
        player_id=player.id if player else None,
        player_name=player.name if player else TEAM_PICK_NAME,
    )
    db.session.add(pick)
    db.session.commit()
    return pick


def skater_line(player_id, goals=0, assists=0, sh_goals=0, sh_assists=0, number=None):
    return {
        "playerId": player_id,
        "sweaterNumber": number,
        "name": {"default": f"Player {player_id}"},
        "goals": goals,
        "assists": assists,
        "shortHandedGoals": sh_goals,
        "shortHandedAssists": sh_assists,
        "powerPlayGoals": 0,
    }


def goalie_line(player_id, goals_against, assists=0, toi="60:00"):
    return {
        "playerId": player_id,
        "name": {"default": f"Goalie {player_id}"},
        "goalsAgainst": goals_against,
        "assists": assists,
        "toi": toi,
    }


def api_web_box_score(
    team_score,
    opponent_score,
    is_home=True,
    period_type="REG",
    forwards=(),
    defense=(),
    goalies=(),
):
    """gamecenter/{id}/boxscore payload with the followed team's player lines"""
    ours = {"id": TEAM_ID, "abbrev": TEAM_ABBREV, "score": team_score}
    theirs = {"id": OPPONENT_ID, "abbrev": OPPONENT_ABBREV, "score": opponent_score}
    our_stats = {"forwards": list(forwards), "defense": list(defense), "goalies": list(goalies)}
    their_stats = {"forwards": [], "defense": [], "goalies": []}
    return {
        "id": 2025020001,
        "gameState": "OFF",
        "homeTeam": ours if is_home else theirs,
        "awayTeam": theirs if is_home else ours,
        "gameOutcome": {"lastPeriodType": period_type},
        "playerByGameStats": {
            "homeTeam": our_stats if is_home else their_stats,
            "awayTeam": their_stats if is_home else our_stats,
        },
    }


class FakeSource:
    """In-memory stand-in for NHLClient keyed by NHL game id"""

    def __init__(self):
        self.box_scores = {}
        self.summaries = {}
        self.states = {}
        self.roster = []
        self.schedule = []
        self.calls = []

    def fetch_box_score(self, game_ref):
        self.calls.append(("box_score", game_ref))
        if game_ref not in self.box_scores:
            raise UpstreamDataError(f"No box score for game {game_ref}")
        return self.box_scores[game_ref]

    def fetch_scoring_summary(self, game_ref):
        self.calls.append(("scoring_summary", game_ref))
        if game_ref not in self.summaries:
            raise UpstreamDataError(f"No scoring summary for game {game_ref}")
        return self.summaries[game_ref]

    def fetch_game_state(self, game_ref):
        self.calls.append(("game_state", game_ref))
        if game_ref not in self.states:
            raise UpstreamDataError(f"No game state for game {game_ref}")
        return self.states[game_ref]

    def fetch_roster(self):
        self.calls.append(("roster", None))
        return list(self.roster)

    def fetch_schedule(self, on_date=None):
        self.calls.append(("schedule", on_date))
        return list(self.schedule)
