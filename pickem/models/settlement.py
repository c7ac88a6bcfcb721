import uuid
from datetime import datetime, timezone

from pickem import db


class Settlement(db.Model):
    """
    Marks a game as settled. The unique game_id is the single decision point
    that lets exactly one settlement run write points for a game.
    """

    __tablename__ = "settlements"

    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey("games.id"), nullable=False)
    run_id = db.Column(
        db.String(36), nullable=False, default=lambda: str(uuid.uuid4())
    )

    picks_updated = db.Column(db.Integer, nullable=False, default=0)
    picks_skipped = db.Column(db.Integer, nullable=False, default=0)
    points_awarded = db.Column(db.Integer, nullable=False, default=0)

    settled_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("game_id", name="unique_game_settlement"),
    )

    def __repr__(self):
        return f"<Settlement game_id={self.game_id} run={self.run_id}>"

    def to_dict(self):
        return {
            "game_id": self.game_id,
            "run_id": self.run_id,
            "picks_updated": self.picks_updated,
            "picks_skipped": self.picks_skipped,
            "points_awarded": self.points_awarded,
            "settled_at": self.settled_at.isoformat() if self.settled_at else None,
        }
