"""
Request Workflow Models: templates, approval step templates, requests, steps.

ApprovalStepTemplate is immutable configuration: one row per approval
stage, plus parallel siblings sharing ``parallel_group_id``.
ApprovalStep is the live unit of work created when a request reaches a
template's position.

Lifecycle of an ApprovalStep:
    pending ──approve──▶ approved   (terminal)
            ──reject───▶ rejected   (terminal)
    Escalation only reassigns ``assigned_approver_id`` and stamps
    ``escalated_at``; it never touches ``status``.
"""

import enum
from datetime import datetime, timedelta, timezone

from approval_routing.models import db


class ApproverType(str, enum.Enum):
    """Closed set of approver-type policies."""

    DIRECT_SUPERVISOR = "direct_supervisor"
    DEPARTMENT_DIRECTOR = "department_director"
    ROLE = "role"
    SPECIFIC_USER = "specific_user"
    USER_GROUP = "user_group"
    SPECIFIC_DEPARTMENT = "specific_department"
    SUBMITTER = "submitter"

    @classmethod
    def parse(cls, value):
        """Return the member for ``value`` or None for anything unrecognised."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


# Which template column each policy reads. Policies absent here take no parameter.
POLICY_PARAMETER = {
    ApproverType.ROLE: "approver_role",
    ApproverType.SPECIFIC_USER: "specific_user_id",
    ApproverType.USER_GROUP: "approver_group_id",
    ApproverType.SPECIFIC_DEPARTMENT: "specific_department_id",
}

STEP_PENDING = "pending"
STEP_APPROVED = "approved"
STEP_REJECTED = "rejected"
STEP_STATUSES = frozenset({STEP_PENDING, STEP_APPROVED, STEP_REJECTED})

REQUEST_STATUSES = frozenset({"draft", "in_review", "approved", "rejected"})


# ═══════════════════════════════════════════════════════════════
# 1. REQUEST TEMPLATES
# ═══════════════════════════════════════════════════════════════
class RequestTemplate(db.Model):
    __tablename__ = "request_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    category = db.Column(
        db.String(50), default="generic",
        comment="leave | sick_leave | service_ticket | generic",
    )
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    step_templates = db.relationship(
        "ApprovalStepTemplate",
        back_populates="request_template",
        order_by="ApprovalStepTemplate.step_order",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "is_active": self.is_active,
            "step_templates": [s.to_dict() for s in self.step_templates],
        }


# ═══════════════════════════════════════════════════════════════
# 2. APPROVAL STEP TEMPLATES
# ═══════════════════════════════════════════════════════════════
class ApprovalStepTemplate(db.Model):
    """
    Configuration of one approval stage.

    Exactly one policy parameter is populated, matching ``approver_type``
    (see POLICY_PARAMETER). Parallel siblings share ``parallel_group_id``
    and are expected to carry the same ``minimum_approvals``.
    """

    __tablename__ = "approval_step_templates"

    id = db.Column(db.Integer, primary_key=True)
    request_template_id = db.Column(
        db.Integer,
        db.ForeignKey("request_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_order = db.Column(db.Integer, nullable=False)
    approver_type = db.Column(db.String(30), nullable=False, default=ApproverType.DIRECT_SUPERVISOR.value)

    # Policy parameters, mutually exclusive
    approver_role = db.Column(db.String(20), nullable=True)
    specific_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    specific_department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True
    )
    approver_group_id = db.Column(
        db.Integer, db.ForeignKey("role_groups.id", ondelete="SET NULL"), nullable=True
    )

    # Parallel fan-out
    is_parallel = db.Column(db.Boolean, nullable=False, default=False)
    parallel_group_id = db.Column(db.String(64), nullable=True, index=True)
    minimum_approvals = db.Column(db.Integer, nullable=False, default=1)

    # Escalation
    escalation_timeout_hours = db.Column(db.Float, nullable=True)
    escalation_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    request_template = db.relationship("RequestTemplate", back_populates="step_templates")

    @property
    def policy(self) -> ApproverType | None:
        return ApproverType.parse(self.approver_type)

    @property
    def escalation_timeout(self) -> timedelta | None:
        if self.escalation_timeout_hours is None:
            return None
        return timedelta(hours=self.escalation_timeout_hours)

    @escalation_timeout.setter
    def escalation_timeout(self, value: timedelta | None) -> None:
        self.escalation_timeout_hours = None if value is None else value.total_seconds() / 3600

    def to_dict(self):
        return {
            "id": self.id,
            "request_template_id": self.request_template_id,
            "step_order": self.step_order,
            "approver_type": self.approver_type,
            "approver_role": self.approver_role,
            "specific_user_id": self.specific_user_id,
            "specific_department_id": self.specific_department_id,
            "approver_group_id": self.approver_group_id,
            "is_parallel": self.is_parallel,
            "parallel_group_id": self.parallel_group_id,
            "minimum_approvals": self.minimum_approvals,
            "escalation_timeout_hours": self.escalation_timeout_hours,
            "escalation_user_id": self.escalation_user_id,
        }

    def __repr__(self):
        return f"<ApprovalStepTemplate #{self.id} order={self.step_order} {self.approver_type}>"


# ═══════════════════════════════════════════════════════════════
# 3. REQUESTS
# ═══════════════════════════════════════════════════════════════
class Request(db.Model):
    __tablename__ = "requests"

    id = db.Column(db.Integer, primary_key=True)
    request_template_id = db.Column(
        db.Integer, db.ForeignKey("request_templates.id", ondelete="RESTRICT"), nullable=False
    )
    submitted_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    status = db.Column(db.String(20), nullable=False, default="in_review")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    request_template = db.relationship("RequestTemplate")
    submitted_by = db.relationship("User")
    approval_steps = db.relationship(
        "ApprovalStep",
        back_populates="request",
        order_by="ApprovalStep.step_order",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "request_template_id": self.request_template_id,
            "submitted_by_id": self.submitted_by_id,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 4. APPROVAL STEPS (instances)
# ═══════════════════════════════════════════════════════════════
class ApprovalStep(db.Model):
    __tablename__ = "approval_steps"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer, db.ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    step_template_id = db.Column(
        db.Integer,
        db.ForeignKey("approval_step_templates.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    step_order = db.Column(db.Integer, nullable=False)
    assigned_approver_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    status = db.Column(
        db.String(20), nullable=False, default=STEP_PENDING,
        comment="pending | approved | rejected",
    )

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    escalated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    decided_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    comment = db.Column(db.Text, nullable=True)
    routing_note = db.Column(
        db.String(255), nullable=True,
        comment="How the assignee was chosen: substitute / delegate / auto-approved",
    )

    request = db.relationship("Request", back_populates="approval_steps")
    step_template = db.relationship("ApprovalStepTemplate")
    assigned_approver = db.relationship("User", foreign_keys=[assigned_approver_id])

    __table_args__ = (
        db.Index("ix_approval_steps_status_created", "status", "created_at"),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == STEP_PENDING

    def to_dict(self):
        return {
            "id": self.id,
            "request_id": self.request_id,
            "step_template_id": self.step_template_id,
            "step_order": self.step_order,
            "assigned_approver_id": self.assigned_approver_id,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "escalated_at": self.escalated_at.isoformat() if self.escalated_at else None,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "decided_by_id": self.decided_by_id,
            "comment": self.comment,
            "routing_note": self.routing_note,
        }

    def __repr__(self):
        return f"<ApprovalStep #{self.id} request={self.request_id} order={self.step_order} {self.status}>"
