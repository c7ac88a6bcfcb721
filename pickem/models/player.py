from datetime import datetime, timezone

from pickem import db
from pickem.utils.scoring import Position


class Player(db.Model):
    __tablename__ = "players"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(100), nullable=False)
    number = db.Column(db.Integer)
    position = db.Column(db.String(10), nullable=False)  # Forward, Defense, Goalie

    is_active = db.Column(db.Boolean, default=True, nullable=False)

    # External ID for NHL API integration
    nhl_player_id = db.Column(db.Integer, unique=True, index=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    performances = db.relationship(
        "PlayerPerformance", backref="player", lazy="dynamic", cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.CheckConstraint(
            "position IN ('Forward', 'Defense', 'Goalie')", name="valid_player_position"
        ),
        db.Index("idx_player_active", "is_active"),
    )

    def __repr__(self):
        return f"<Player #{self.number} {self.name} ({self.position})>"

    @property
    def position_enum(self):
        return Position(self.position)

    @property
    def is_goalie(self):
        return self.position == Position.GOALIE.value

    @staticmethod
    def get_by_nhl_id(nhl_player_id):
        return Player.query.filter_by(nhl_player_id=nhl_player_id).first()

    @staticmethod
    def get_active_roster():
        return (
            Player.query.filter_by(is_active=True)
            .order_by(Player.position, Player.number)
            .all()
        )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "number": self.number,
            "position": self.position,
            "is_active": self.is_active,
            "nhl_player_id": self.nhl_player_id,
        }
