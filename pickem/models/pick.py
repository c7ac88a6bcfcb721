from dataclasses import dataclass
from datetime import datetime, timezone

from pickem import db

PICK_TYPE_PLAYER = "player"
PICK_TYPE_TEAM = "team"

TEAM_PICK_NAME = "Team"


@dataclass(frozen=True)
class PlayerSelection:
    """Pick a single player; scored by that player's position formula"""

    player_id: int


@dataclass(frozen=True)
class TeamSelection:
    """Pick the team; scored by the team-goals formula"""


class Pick(db.Model):
    __tablename__ = "picks"

    id = db.Column(db.Integer, primary_key=True)

    # Pick identification
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    league_id = db.Column(db.Integer, db.ForeignKey("leagues.id"), nullable=False)
    game_id = db.Column(db.Integer, db.ForeignKey("games.id"), nullable=False)

    # Pick details
    pick_type = db.Column(db.String(10), nullable=False, default=PICK_TYPE_PLAYER)
    player_id = db.Column(db.Integer, db.ForeignKey("players.id"), nullable=True)
    player_name = db.Column(db.String(100), nullable=False)  # Snapshot at pick time

    # Results (written once by settlement)
    points_earned = db.Column(db.Integer, nullable=False, default=0)
    scored_at = db.Column(db.DateTime)

    # Timestamps
    picked_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    locked_at = db.Column(db.DateTime)
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    player = db.relationship("Player", foreign_keys=[player_id])

    # Constraints and indexes
    __table_args__ = (
        db.UniqueConstraint(
            "user_id", "league_id", "game_id", name="unique_user_league_game_pick"
        ),
        db.CheckConstraint(
            "(pick_type = 'team' AND player_id IS NULL) OR "
            "(pick_type = 'player' AND player_id IS NOT NULL)",
            name="pick_target_matches_type",
        ),
        db.Index("idx_pick_league_game", "league_id", "game_id"),
        db.Index("idx_pick_game", "game_id"),
        db.Index("idx_pick_user", "user_id"),
    )

    def __repr__(self):
        return f"<Pick user_id={self.user_id} league_id={self.league_id} game_id={self.game_id} {self.player_name}>"

    @property
    def selection(self):
        """Tagged view of the pick target"""
        if self.pick_type == PICK_TYPE_TEAM:
            return TeamSelection()
        return PlayerSelection(player_id=self.player_id)

    @selection.setter
    def selection(self, value):
        if isinstance(value, TeamSelection):
            self.pick_type = PICK_TYPE_TEAM
            self.player_id = None
            self.player_name = TEAM_PICK_NAME
        elif isinstance(value, PlayerSelection):
            self.pick_type = PICK_TYPE_PLAYER
            self.player_id = value.player_id
        else:
            raise TypeError(f"Unsupported selection: {value!r}")

    @property
    def is_team_pick(self):
        return isinstance(self.selection, TeamSelection)

    @property
    def is_locked(self):
        return self.locked_at is not None

    @property
    def is_scored(self):
        return self.scored_at is not None

    @staticmethod
    def get_for(user_id, league_id, game_id):
        return Pick.query.filter_by(
            user_id=user_id, league_id=league_id, game_id=game_id
        ).first()

    def to_dict(self):
        """Convert pick to dictionary for API responses"""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "league_id": self.league_id,
            "game_id": self.game_id,
            "pick_type": self.pick_type,
            "player_id": self.player_id,
            "player_name": self.player_name,
            "player": self.player.to_dict() if self.player else None,
            "points_earned": self.points_earned,
            "picked_at": self.picked_at.isoformat() if self.picked_at else None,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
            "scored_at": self.scored_at.isoformat() if self.scored_at else None,
        }
