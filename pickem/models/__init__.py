from pickem import db  # noqa: F401 - imported for model imports

from .admin_action import AdminAction
from .game import Game
from .league import League
from .league_membership import LeagueMembership
from .pick import Pick, PlayerSelection, TeamSelection
from .player import Player
from .player_performance import PlayerPerformance
from .settlement import Settlement
from .user import User

__all__ = [
    "User",
    "League",
    "LeagueMembership",
    "Player",
    "Game",
    "Pick",
    "PlayerSelection",
    "TeamSelection",
    "PlayerPerformance",
    "Settlement",
    "AdminAction",
]
