import secrets
from datetime import datetime, timezone

from pickem import db


class League(db.Model):
    __tablename__ = "leagues"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)

    # League code for easy joining
    code = db.Column(db.String(8), unique=True, nullable=False, index=True)

    # NHL team the league follows
    team_abbrev = db.Column(db.String(3), nullable=False, default="DET")

    # Explicit draft order: list of user ids, position 1 first. NULL = not set.
    draft_order = db.Column(db.JSON, nullable=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    memberships = db.relationship(
        "LeagueMembership", backref="league", lazy="dynamic", cascade="all, delete-orphan"
    )
    picks = db.relationship(
        "Pick", backref="league", lazy="dynamic", cascade="all, delete-orphan"
    )
    created_by = db.relationship("User", foreign_keys=[created_by_id])

    def __repr__(self):
        return f"<League {self.name}>"

    def __init__(self, **kwargs):
        super(League, self).__init__(**kwargs)
        if not self.code:
            self.code = self.generate_code()

    @staticmethod
    def generate_code():
        """Generate a unique 8-character join code"""
        while True:
            code = secrets.token_urlsafe(6)[:8].upper()
            if not League.query.filter_by(code=code).first():
                return code

    def get_membership(self, user_id):
        return self.memberships.filter_by(user_id=user_id).first()

    def is_user_member(self, user_id):
        return self.get_membership(user_id) is not None

    def is_user_admin(self, user_id):
        membership = self.get_membership(user_id)
        return membership is not None and membership.is_admin

    def get_member_count(self):
        return self.memberships.count()

    @property
    def has_draft_order(self):
        return self.draft_order is not None

    def draft_position_of(self, user_id):
        """1-based position of a user in the draft order, None when unset"""
        if not self.draft_order or user_id not in self.draft_order:
            return None
        return self.draft_order.index(user_id) + 1

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "team_abbrev": self.team_abbrev,
            "member_count": self.get_member_count(),
            "has_draft_order": self.has_draft_order,
        }
