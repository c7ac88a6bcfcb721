from datetime import datetime, timezone

from pickem import db

STATUS_SCHEDULED = "scheduled"
STATUS_IN_PROGRESS = "in_progress"
STATUS_FINAL = "final"

GAME_STATUSES = (STATUS_SCHEDULED, STATUS_IN_PROGRESS, STATUS_FINAL)


def as_utc(value):
    """Treat naive datetimes (SQLite drops tzinfo) as UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Game(db.Model):
    __tablename__ = "games"

    id = db.Column(db.Integer, primary_key=True)

    # Matchup from the followed team's perspective
    opponent = db.Column(db.String(100), nullable=False)
    is_home = db.Column(db.Boolean, nullable=False, default=True)

    # Game timing
    game_time = db.Column(db.DateTime, nullable=False)

    # Game status
    status = db.Column(db.String(20), nullable=False, default=STATUS_SCHEDULED)

    # Scores
    home_score = db.Column(db.Integer)
    away_score = db.Column(db.Integer)

    # Scoring context recorded when the box score is normalized
    is_overtime = db.Column(db.Boolean, default=False)
    is_shootout = db.Column(db.Boolean, default=False)

    # External ID for NHL API integration
    nhl_game_id = db.Column(db.Integer, unique=True, index=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    picks = db.relationship(
        "Pick", backref="game", lazy="dynamic", cascade="all, delete-orphan"
    )
    performances = db.relationship(
        "PlayerPerformance", backref="game", lazy="dynamic", cascade="all, delete-orphan"
    )
    settlement = db.relationship(
        "Settlement", backref="game", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('scheduled', 'in_progress', 'final')", name="valid_game_status"
        ),
        db.Index("idx_game_time", "game_time"),
        db.Index("idx_game_status", "status"),
    )

    def __repr__(self):
        venue = "vs" if self.is_home else "@"
        return f"<Game {venue} {self.opponent} {self.game_time}>"

    @property
    def is_final(self):
        return self.status == STATUS_FINAL

    @property
    def is_settled(self):
        return self.settlement is not None

    @property
    def team_score(self):
        """Goals scored by the followed team"""
        return self.home_score if self.is_home else self.away_score

    @property
    def opponent_score(self):
        return self.away_score if self.is_home else self.home_score

    @property
    def team_won(self):
        if not self.is_final or self.team_score is None or self.opponent_score is None:
            return None
        return self.team_score > self.opponent_score

    def has_started(self, now=None):
        """Check if the scheduled start time has passed"""
        if not self.game_time:
            return False
        now = as_utc(now) if now else datetime.now(timezone.utc)
        return now >= as_utc(self.game_time)

    def update_score(self, status, home_score, away_score):
        """Apply a status refresh; returns True when anything changed"""
        changed = (
            status != self.status
            or home_score != self.home_score
            or away_score != self.away_score
        )
        if changed:
            self.status = status
            self.home_score = home_score
            self.away_score = away_score
        return changed

    @staticmethod
    def get_by_nhl_id(nhl_game_id):
        return Game.query.filter_by(nhl_game_id=nhl_game_id).first()

    def to_dict(self):
        return {
            "id": self.id,
            "opponent": self.opponent,
            "is_home": self.is_home,
            "game_time": self.game_time.isoformat() if self.game_time else None,
            "status": self.status,
            "home_score": self.home_score,
            "away_score": self.away_score,
            "is_overtime": self.is_overtime,
            "is_shootout": self.is_shootout,
            "nhl_game_id": self.nhl_game_id,
            "is_settled": self.is_settled,
        }
