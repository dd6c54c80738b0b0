"""
Approval Delegation model: time-bounded transfer of approval authority.

A delegation is "in effect" at time T iff
    is_active AND start_date <= T AND (end_date IS NULL OR end_date >= T).

Records are never deleted: revoking flips ``is_active`` to False, which is
terminal for that row.
"""

from datetime import datetime, timezone

from approval_routing.models import db
from approval_routing.utils.helpers import as_utc


class ApprovalDelegation(db.Model):
    __tablename__ = "approval_delegations"

    id = db.Column(db.Integer, primary_key=True)
    from_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    to_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(
        db.DateTime(timezone=True), nullable=True,
        comment="NULL = indefinite",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    reason = db.Column(db.String(500), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    from_user = db.relationship("User", foreign_keys=[from_user_id])
    to_user = db.relationship("User", foreign_keys=[to_user_id])

    __table_args__ = (
        db.CheckConstraint("from_user_id <> to_user_id", name="ck_delegation_not_self"),
    )

    def is_in_effect(self, at: datetime) -> bool:
        at = as_utc(at)
        if not self.is_active or as_utc(self.start_date) > at:
            return False
        return self.end_date is None or as_utc(self.end_date) >= at

    def to_dict(self):
        return {
            "id": self.id,
            "from_user_id": self.from_user_id,
            "to_user_id": self.to_user_id,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "is_active": self.is_active,
            "reason": self.reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
        }

    def __repr__(self):
        return f"<ApprovalDelegation #{self.id} {self.from_user_id}->{self.to_user_id} active={self.is_active}>"
