from datetime import datetime, timezone

from pickem import db


class AdminAction(db.Model):
    __tablename__ = "admin_actions"

    id = db.Column(db.Integer, primary_key=True)

    # Action details
    admin_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    target_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=True
    )  # User being acted upon
    league_id = db.Column(db.Integer, db.ForeignKey("leagues.id"), nullable=False)

    # 'submit_pick', 'override_locked_pick', 'set_draft_order', 'rotate_draft_order'
    action_type = db.Column(db.String(50), nullable=False)
    action_description = db.Column(db.String(500), nullable=False)

    # Related object IDs for context
    pick_id = db.Column(db.Integer, db.ForeignKey("picks.id"), nullable=True)
    game_id = db.Column(db.Integer, db.ForeignKey("games.id"), nullable=True)

    # Additional context data (JSON)
    action_metadata = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    admin_user = db.relationship("User", foreign_keys=[admin_user_id])
    target_user = db.relationship("User", foreign_keys=[target_user_id])
    league = db.relationship(
        "League", backref=db.backref("admin_actions", cascade="all, delete-orphan")
    )

    __table_args__ = (
        db.Index("idx_admin_action_league", "league_id"),
        db.Index("idx_admin_action_type", "action_type"),
    )

    def __repr__(self):
        return f"<AdminAction {self.action_type} by user {self.admin_user_id} in league {self.league_id}>"

    @staticmethod
    def log_action(
        admin_user_id,
        league_id,
        action_type,
        description,
        target_user_id=None,
        pick_id=None,
        game_id=None,
        action_metadata=None,
    ):
        """Log an admin action"""
        action = AdminAction(
            admin_user_id=admin_user_id,
            target_user_id=target_user_id,
            league_id=league_id,
            action_type=action_type,
            action_description=description,
            pick_id=pick_id,
            game_id=game_id,
            action_metadata=action_metadata or {},
        )

        db.session.add(action)
        return action

    @staticmethod
    def log_pick_override(admin_user_id, pick, previous_name=None, lock_reason=None):
        """Record an admin writing someone's pick or any pick after lock"""
        action_type = "override_locked_pick" if lock_reason else "submit_pick"
        description = f"Set pick for user {pick.user_id} to {pick.player_name}"
        if previous_name:
            description += f" (was {previous_name})"
        if lock_reason:
            description += f" after lock: {lock_reason}"

        return AdminAction.log_action(
            admin_user_id=admin_user_id,
            target_user_id=pick.user_id,
            league_id=pick.league_id,
            action_type=action_type,
            description=description,
            pick_id=pick.id,
            game_id=pick.game_id,
            action_metadata={
                "pick_type": pick.pick_type,
                "player_id": pick.player_id,
                "previous": previous_name,
                "lock_reason": lock_reason,
            },
        )

    @staticmethod
    def log_draft_order_change(admin_user_id, league, action_type, old_order, new_order):
        return AdminAction.log_action(
            admin_user_id=admin_user_id,
            league_id=league.id,
            action_type=action_type,
            description=f"Draft order changed for {league.name}",
            action_metadata={"old_order": old_order, "new_order": new_order},
        )

    def to_dict(self):
        return {
            "id": self.id,
            "admin_user_id": self.admin_user_id,
            "target_user_id": self.target_user_id,
            "league_id": self.league_id,
            "action_type": self.action_type,
            "action_description": self.action_description,
            "action_metadata": self.action_metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
