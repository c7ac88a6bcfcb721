from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from pickem import db

# Field -> value used when the normalized stats omit it
STAT_DEFAULTS = {
    "goals": 0,
    "assists": 0,
    "shorthanded_goals": 0,
    "shorthanded_assists": 0,
    "power_play_goals": 0,
    "goals_against": None,
    "empty_net_goals_against": None,
    "shootout_goals_against": None,
    "goal_events": None,
    "assist_events": None,
}


class PlayerPerformance(db.Model):
    __tablename__ = "player_performances"

    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey("players.id"), nullable=False)
    game_id = db.Column(db.Integer, db.ForeignKey("games.id"), nullable=False)

    # Skater stats
    goals = db.Column(db.Integer, nullable=False, default=0)
    assists = db.Column(db.Integer, nullable=False, default=0)
    points = db.Column(db.Integer, nullable=False, default=0)
    shorthanded_goals = db.Column(db.Integer, nullable=False, default=0)
    shorthanded_assists = db.Column(db.Integer, nullable=False, default=0)
    power_play_goals = db.Column(db.Integer, nullable=False, default=0)

    # Goalie stats (NULL for skaters and for goalies who did not play)
    goals_against = db.Column(db.Integer)
    empty_net_goals_against = db.Column(db.Integer)
    shootout_goals_against = db.Column(db.Integer)

    # Exact per-event flags from play-by-play, when available
    goal_events = db.Column(db.JSON)
    assist_events = db.Column(db.JSON)

    # True when synthesized because upstream had no entry for the player
    is_placeholder = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("player_id", "game_id", name="unique_player_game_performance"),
        db.Index("idx_performance_game", "game_id"),
        db.Index("idx_performance_player", "player_id"),
    )

    def __repr__(self):
        return (
            f"<PlayerPerformance player_id={self.player_id} game_id={self.game_id} "
            f"{self.goals}G {self.assists}A>"
        )

    @property
    def shutout(self):
        if self.goals_against is None:
            return False
        allowed = (
            self.goals_against
            - (self.empty_net_goals_against or 0)
            - (self.shootout_goals_against or 0)
        )
        return allowed <= 0

    def apply_stats(self, stats, is_placeholder=False):
        for field, default in STAT_DEFAULTS.items():
            setattr(self, field, stats.get(field, default))
        self.points = (self.goals or 0) + (self.assists or 0)
        self.is_placeholder = is_placeholder

    @staticmethod
    def get_for(player_id, game_id):
        return PlayerPerformance.query.filter_by(player_id=player_id, game_id=game_id).first()

    @staticmethod
    def upsert(player_id, game_id, stats, is_placeholder=False):
        """
        Create or update the single (player, game) record.

        Returns (performance, created). A concurrent insert that trips the
        unique constraint is retried as an update.
        """
        performance = PlayerPerformance.get_for(player_id, game_id)
        if performance:
            performance.apply_stats(stats, is_placeholder=is_placeholder)
            return performance, False

        performance = PlayerPerformance(player_id=player_id, game_id=game_id)
        performance.apply_stats(stats, is_placeholder=is_placeholder)
        try:
            with db.session.begin_nested():
                db.session.add(performance)
        except IntegrityError:
            performance = PlayerPerformance.query.filter_by(
                player_id=player_id, game_id=game_id
            ).one()
            performance.apply_stats(stats, is_placeholder=is_placeholder)
            return performance, False
        return performance, True

    @staticmethod
    def get_or_synthesize(player_id, game_id):
        """
        Return the record for (player, game), creating a zero-stat placeholder
        when none exists. Calling it repeatedly yields the same record.
        """
        performance = PlayerPerformance.get_for(player_id, game_id)
        if performance:
            return performance, False
        return PlayerPerformance.upsert(player_id, game_id, {}, is_placeholder=True)

    def to_dict(self):
        return {
            "player_id": self.player_id,
            "game_id": self.game_id,
            "goals": self.goals,
            "assists": self.assists,
            "points": self.points,
            "shorthanded_goals": self.shorthanded_goals,
            "shorthanded_assists": self.shorthanded_assists,
            "power_play_goals": self.power_play_goals,
            "goals_against": self.goals_against,
            "empty_net_goals_against": self.empty_net_goals_against,
            "shootout_goals_against": self.shootout_goals_against,
            "shutout": self.shutout,
            "is_placeholder": self.is_placeholder,
        }
