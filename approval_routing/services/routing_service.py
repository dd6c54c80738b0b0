"""
Request Routing Service: the surface the workflow orchestrator calls.

Bundles the approver resolver, substitution resolver, delegation
registry, quorum evaluator and escalation monitor behind one object
wired to the same directory and vacation ledger, and adds the two
step-level operations that need all of them:

    instantiate_steps()     materialise ApprovalStep rows for a template
    record_step_decision()  approve / reject a pending step

Commit boundaries live here and in the component services; read-style
calls never commit.

Usage:
    from approval_routing.services.routing_service import RequestRoutingService

    routing = RequestRoutingService()
    steps = routing.instantiate_steps(request.id, step_template)
    routing.record_step_decision(steps[0].id, actor_id=approver.id, decision="approved")
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from approval_routing.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from approval_routing.models import db
from approval_routing.models.delegation import ApprovalDelegation
from approval_routing.models.organization import User
from approval_routing.models.workflow import (
    STEP_APPROVED,
    STEP_PENDING,
    STEP_REJECTED,
    ApprovalStep,
    ApprovalStepTemplate,
    ApproverType,
    Request,
)
from approval_routing.services import parallel_quorum
from approval_routing.services.approver_resolver import ApproverResolver
from approval_routing.services.delegation_service import DelegationRegistry
from approval_routing.services.directory import OrganizationDirectory, SqlOrganizationDirectory
from approval_routing.services.escalation import EscalationMonitor
from approval_routing.services.routing_pipeline import RoutingDecision, RoutingPipeline
from approval_routing.services.substitution import SubstitutionResolver
from approval_routing.services.vacation_ledger import SqlVacationLedger, VacationLedger
from approval_routing.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

VALID_DECISIONS = frozenset({STEP_APPROVED, STEP_REJECTED})


class RequestRoutingService:

    def __init__(
        self,
        directory: OrganizationDirectory | None = None,
        ledger: VacationLedger | None = None,
    ) -> None:
        self.directory = directory or SqlOrganizationDirectory()
        self.ledger = ledger or SqlVacationLedger()
        self.resolver = ApproverResolver(self.directory)
        self.substitution = SubstitutionResolver(self.directory, self.ledger, self.resolver)
        self.delegations = DelegationRegistry(self.directory, self.resolver)
        self.escalations = EscalationMonitor(self.directory)
        self.pipeline = RoutingPipeline(self.substitution, self.delegations)

    # ── Resolution ───────────────────────────────────────────────────────

    def resolve_approver(self, template: ApprovalStepTemplate, submitter: User) -> User | None:
        return self.resolver.resolve(template, submitter)

    def resolve_parallel_approvers(self, template: ApprovalStepTemplate, submitter: User) -> list[User]:
        return self.resolver.resolve_many(template, submitter)

    def effective_assignee(
        self,
        template: ApprovalStepTemplate,
        submitter: User,
        check_availability: bool = True,
        *,
        today: date | datetime | None = None,
    ) -> int | None:
        return self.substitution.effective_assignee(template, submitter, check_availability, today=today)

    def effective_approver(
        self,
        template: ApprovalStepTemplate,
        submitter: User,
        consider_delegation: bool = True,
        *,
        now: datetime | None = None,
    ) -> User | None:
        return self.delegations.effective_approver(template, submitter, consider_delegation, now=now)

    def route(self, template: ApprovalStepTemplate, submitter: User, **options) -> RoutingDecision:
        return self.pipeline.route(template, submitter, **options)

    def validate_approval_structure(self, submitter_id: int, step_templates) -> tuple[bool, list[str]]:
        return self.resolver.validate_approval_structure(submitter_id, list(step_templates))

    # ── Parallel quorum ──────────────────────────────────────────────────

    def is_parallel_group_satisfied(self, parallel_group_id: str, request_id: int) -> bool:
        return parallel_quorum.is_parallel_group_satisfied(parallel_group_id, request_id)

    def parallel_group_progress(self, parallel_group_id: str, request_id: int) -> dict:
        return parallel_quorum.parallel_group_progress(parallel_group_id, request_id)

    # ── Escalation ───────────────────────────────────────────────────────

    def should_escalate(self, step: ApprovalStep, *, now: datetime | None = None) -> bool:
        return self.escalations.should_escalate(step, now=now)

    def escalate(self, step_id: int, *, now: datetime | None = None) -> ApprovalStep:
        return self.escalations.escalate(step_id, now=now)

    # ── Delegation ───────────────────────────────────────────────────────

    def grant_delegation(
        self,
        from_user_id: int,
        to_user_id: int,
        until: datetime | None = None,
        reason: str | None = None,
        *,
        now: datetime | None = None,
    ) -> ApprovalDelegation:
        return self.delegations.grant(from_user_id, to_user_id, until, reason, now=now)

    def revoke_delegation(self, delegation_id: int) -> bool:
        return self.delegations.revoke(delegation_id)

    def list_delegations(
        self, user_id: int, *, now: datetime | None = None,
    ) -> tuple[list[ApprovalDelegation], list[ApprovalDelegation]]:
        return self.delegations.delegations_of(user_id, now=now)

    # ── Step instances ───────────────────────────────────────────────────

    def instantiate_steps(
        self,
        request_id: int,
        template: ApprovalStepTemplate,
        *,
        check_availability: bool = True,
        consider_delegation: bool = True,
        now: datetime | None = None,
    ) -> list[ApprovalStep]:
        """Create the ApprovalStep rows for one template position of a request.

        Sequential templates yield one step. Parallel templates yield one
        step per distinct assignee among the resolved candidates. When
        nobody can be resolved a single step is created already approved.

        Raises:
            NotFoundError: request does not exist.
            ValidationError: template belongs to a different request template.
        """
        request = db.session.get(Request, request_id)
        if request is None:
            raise NotFoundError(resource="Request", resource_id=request_id)
        if template.request_template_id != request.request_template_id:
            raise ValidationError(
                f"Step template {template.id} does not belong to request template "
                f"{request.request_template_id}",
                details={"step_template_id": template.id},
            )

        now = as_utc(now) or utcnow()
        submitter = request.submitted_by
        options = {
            "check_availability": check_availability,
            "consider_delegation": consider_delegation,
            "now": now,
        }

        if template.is_parallel:
            candidates = self.resolver.resolve_many(template, submitter)
            taken = {candidate.id for candidate in candidates}
            decisions = [
                self.pipeline.route_candidate(template, candidate, submitter=submitter, taken=taken, **options)
                for candidate in candidates
            ]
        else:
            decisions = [self.pipeline.route(template, submitter, **options)]

        steps: list[ApprovalStep] = []
        seen_assignees: set[int] = set()
        for decision in decisions:
            if decision.auto_approve or decision.assignee_id in seen_assignees:
                continue
            seen_assignees.add(decision.assignee_id)
            steps.append(self._new_step(request, template, decision, now))

        if not steps:
            auto = RoutingDecision(step_order=template.step_order, notes=["auto-approved: no approver"])
            step = self._new_step(request, template, auto, now)
            step.status = STEP_APPROVED
            step.decided_at = now
            steps.append(step)
            logger.info(
                "Step %s of request %s auto-approved: no approver resolved",
                template.step_order, request.id,
                extra={"request_id": request.id},
            )

        db.session.add_all(steps)
        db.session.commit()

        logger.info(
            "Created %d approval step(s) for request %s at step %s",
            len(steps), request.id, template.step_order,
            extra={"request_id": request.id, "parallel_group_id": template.parallel_group_id},
        )
        return steps

    @staticmethod
    def _new_step(request, template, decision: RoutingDecision, now: datetime) -> ApprovalStep:
        return ApprovalStep(
            request_id=request.id,
            step_template_id=template.id,
            step_order=template.step_order,
            assigned_approver_id=decision.assignee_id,
            status=STEP_PENDING,
            created_at=now,
            routing_note=decision.routing_note,
        )

    def record_step_decision(
        self,
        step_id: int,
        actor_id: int,
        decision: str,
        comment: str | None = None,
        *,
        now: datetime | None = None,
    ) -> ApprovalStep:
        """Approve or reject a pending step on behalf of its assignee.

        The actor must be the assignee or hold a delegation in effect from
        the assignee. Submitters may not decide their own request unless
        the step uses the submitter policy.

        Raises:
            ValidationError: unknown decision, self-approval, or actor lacks authority.
            NotFoundError: step or actor does not exist.
            InvalidStateError: step already decided.
        """
        if decision not in VALID_DECISIONS:
            raise ValidationError(
                f"Invalid decision '{decision}'. Must be one of: {', '.join(sorted(VALID_DECISIONS))}",
                details={"decision": decision},
            )

        step = db.session.get(ApprovalStep, step_id)
        if step is None:
            raise NotFoundError(resource="ApprovalStep", resource_id=step_id)
        if not step.is_pending:
            raise InvalidStateError(
                f"Approval step {step_id} is already {step.status}",
                details={"status": step.status},
            )
        if self.directory.get_user_by_id(actor_id) is None:
            raise NotFoundError(resource="User", resource_id=actor_id)

        now = as_utc(now) or utcnow()
        template = step.step_template
        if (
            step.request.submitted_by_id == actor_id
            and (template is None or template.policy is not ApproverType.SUBMITTER)
        ):
            raise ValidationError(
                "Self-approval is not permitted. "
                "The approver must be a different user than the request submitter.",
                details={"actor_id": actor_id},
            )
        if step.assigned_approver_id is None or not self.delegations.can_act_for(
            actor_id, step.assigned_approver_id, now=now,
        ):
            raise ValidationError(
                f"User {actor_id} is not the approver for step {step_id}",
                details={"assigned_approver_id": step.assigned_approver_id},
            )

        step.status = decision
        step.decided_at = now
        step.decided_by_id = actor_id
        step.comment = (comment or "").strip() or None
        db.session.commit()

        logger.info(
            "Step %s %s by user %s",
            step_id, decision, actor_id,
            extra={"step_id": step_id, "request_id": step.request_id, "approver_id": actor_id},
        )
        return step
