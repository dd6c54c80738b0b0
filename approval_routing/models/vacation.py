"""
Vacation Schedule model: the persisted side of the vacation ledger.

A schedule row says "user X is away between start_date and end_date
(inclusive) and user Y stands in". Day-balance arithmetic lives
elsewhere in the platform; the routing engine only asks "is X away on
date D" and "who is X's substitute".
"""

from datetime import datetime, timezone

from approval_routing.models import db

VACATION_STATUSES = frozenset({"scheduled", "active", "completed", "cancelled"})


class VacationSchedule(db.Model):
    __tablename__ = "vacation_schedules"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    substitute_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default="scheduled",
        comment="scheduled | active | completed | cancelled",
    )
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    user = db.relationship("User", foreign_keys=[user_id])
    substitute = db.relationship("User", foreign_keys=[substitute_user_id])

    __table_args__ = (
        db.Index("ix_vacation_user_range", "user_id", "start_date", "end_date"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "substitute_user_id": self.substitute_user_id,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "status": self.status,
        }

    def __repr__(self):
        return f"<VacationSchedule #{self.id} user={self.user_id} {self.start_date}..{self.end_date}>"
