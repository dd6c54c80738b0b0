"""
Escalation Monitor: reassigns stalled approval steps.

A pending step escalates once it has waited at least its template's
``escalation_timeout`` and the template names an ``escalation_user_id``.
Escalation only moves the assignee and stamps ``escalated_at``; the step
stays pending. Re-escalating lands on the same user and re-stamps the
timestamp.

Timeouts are business-time comparisons (now - created_at); the engine
never schedules itself. ``escalate_due_steps`` is the sweep the
scheduler job calls.

Usage:
    from approval_routing.services.escalation import EscalationMonitor

    monitor = EscalationMonitor()
    if monitor.should_escalate(step):
        monitor.escalate(step.id)
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select

from approval_routing.core.exceptions import InvalidStateError, NotFoundError
from approval_routing.models import db
from approval_routing.models.workflow import STEP_PENDING, ApprovalStep, ApprovalStepTemplate
from approval_routing.services.directory import OrganizationDirectory, SqlOrganizationDirectory
from approval_routing.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)


class EscalationMonitor:
    """Timeout checks and reassignment for pending approval steps."""

    def __init__(self, directory: OrganizationDirectory | None = None) -> None:
        self.directory = directory or SqlOrganizationDirectory()

    def should_escalate(self, step: ApprovalStep, *, now: datetime | None = None) -> bool:
        template = step.step_template
        if template is None or template.escalation_timeout is None or template.escalation_user_id is None:
            return False

        now = as_utc(now) or utcnow()
        elapsed = now - as_utc(step.created_at)
        due = elapsed >= template.escalation_timeout
        if due:
            logger.info(
                "Step %s should be escalated. Time elapsed: %s, Timeout: %s",
                step.id, elapsed, template.escalation_timeout,
                extra={"step_id": step.id},
            )
        return due

    def escalate(self, step_id: int, *, now: datetime | None = None) -> ApprovalStep:
        """Reassign a step to its template's escalation user.

        Raises:
            NotFoundError: step, or the configured escalation user, does not exist.
            InvalidStateError: the template defines no escalation user.
        """
        step = db.session.get(ApprovalStep, step_id)
        if step is None:
            raise NotFoundError(resource="ApprovalStep", resource_id=step_id)

        template = step.step_template
        if template is None or template.escalation_user_id is None:
            raise InvalidStateError(
                f"No escalation user defined for step {step_id}",
                details={"step_template_id": step.step_template_id},
            )

        escalation_user = self.directory.get_user_by_id(template.escalation_user_id)
        if escalation_user is None:
            raise NotFoundError(resource="User", resource_id=template.escalation_user_id)

        previous = step.assigned_approver_id
        step.assigned_approver_id = escalation_user.id
        step.escalated_at = as_utc(now) or utcnow()
        db.session.commit()

        logger.info(
            "Escalated step %s from user %s to user %s",
            step_id, previous, escalation_user.id,
            extra={"step_id": step_id, "approver_id": escalation_user.id},
        )
        return step

    # ── Sweep ────────────────────────────────────────────────────────────

    def find_steps_due_for_escalation(
        self, *, now: datetime | None = None, limit: int | None = None,
    ) -> list[ApprovalStep]:
        """Pending steps past their timeout that are not already with the escalation user."""
        now = as_utc(now) or utcnow()
        candidates = db.session.execute(
            select(ApprovalStep)
            .join(ApprovalStepTemplate, ApprovalStep.step_template_id == ApprovalStepTemplate.id)
            .where(
                ApprovalStep.status == STEP_PENDING,
                ApprovalStepTemplate.escalation_timeout_hours.is_not(None),
                ApprovalStepTemplate.escalation_user_id.is_not(None),
            )
            .order_by(ApprovalStep.created_at.asc(), ApprovalStep.id.asc())
        ).scalars()

        due = []
        for step in candidates:
            already_escalated = (
                step.escalated_at is not None
                and step.assigned_approver_id == step.step_template.escalation_user_id
            )
            if already_escalated or not self.should_escalate(step, now=now):
                continue
            due.append(step)
            if limit is not None and len(due) >= limit:
                break
        return due

    def escalate_due_steps(self, *, now: datetime | None = None, limit: int | None = None) -> dict:
        """Escalate every due step; a broken step is logged and counted, not fatal.

        Returns:
            {"checked": int, "escalated": [step_id, ...], "failed": [{"step_id", "error"}, ...]}
        """
        now = as_utc(now) or utcnow()
        due = self.find_steps_due_for_escalation(now=now, limit=limit)

        escalated, failed = [], []
        for step in due:
            try:
                self.escalate(step.id, now=now)
                escalated.append(step.id)
            except (NotFoundError, InvalidStateError) as exc:
                db.session.rollback()
                logger.warning("Escalation of step %s failed: %s", step.id, exc, extra={"step_id": step.id})
                failed.append({"step_id": step.id, "error": str(exc)})

        return {"checked": len(due), "escalated": escalated, "failed": failed}
