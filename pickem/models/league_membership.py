from datetime import datetime, timezone

from pickem import db

ROLE_ADMIN = "admin"
ROLE_MEMBER = "member"


class LeagueMembership(db.Model):
    __tablename__ = "league_memberships"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    league_id = db.Column(db.Integer, db.ForeignKey("leagues.id"), nullable=False)

    role = db.Column(db.String(10), nullable=False, default=ROLE_MEMBER)

    # Cumulative standings ledger, only ever incremented by settlement
    total_points = db.Column(db.Integer, nullable=False, default=0)

    joined_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Constraints
    __table_args__ = (
        db.UniqueConstraint("league_id", "user_id", name="unique_league_user"),
        db.CheckConstraint("role IN ('admin', 'member')", name="valid_membership_role"),
        db.Index("idx_membership_league", "league_id"),
        db.Index("idx_membership_user", "user_id"),
    )

    def __repr__(self):
        return f"<LeagueMembership user_id={self.user_id} league_id={self.league_id}>"

    @property
    def is_admin(self):
        return self.role == ROLE_ADMIN

    @property
    def draft_position(self):
        """Position in the league's draft order (None when no order is set)"""
        return self.league.draft_position_of(self.user_id) if self.league else None

    def promote_to_admin(self):
        self.role = ROLE_ADMIN

    def demote_from_admin(self):
        self.role = ROLE_MEMBER

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "league_id": self.league_id,
            "username": self.user.username if self.user else None,
            "display_name": self.user.full_name if self.user else None,
            "role": self.role,
            "draft_position": self.draft_position,
            "total_points": self.total_points,
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
        }
