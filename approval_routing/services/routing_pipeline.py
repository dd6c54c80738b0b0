"""
Routing pipeline: resolve_primary → apply_substitution → apply_delegation.

Substitution and delegation are separate concerns with separate entry
points (``SubstitutionResolver.effective_assignee`` and
``DelegationRegistry.effective_approver``). When both apply, this
pipeline runs them in a fixed order and records what each stage did:

    1. resolve_primary      approver-type policy
    2. apply_substitution   primary away today → policy-specific stand-in
    3. apply_delegation     whoever holds the step now → their newest active delegate

Delegation is applied to the post-substitution assignee, so a
substitute who has delegated their own authority hands the step on.
Neither stage hands a step to the submitter of the request.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from collections.abc import Set as AbstractSet
from dataclasses import dataclass, field
from datetime import date, datetime

from approval_routing.models.organization import User
from approval_routing.models.workflow import ApprovalStepTemplate
from approval_routing.services.delegation_service import DelegationRegistry
from approval_routing.services.substitution import SubstitutionResolver

logger = logging.getLogger(__name__)


@dataclass
class RoutingDecision:
    """Outcome of routing one step (or one parallel candidate)."""
    step_order: int
    primary_id: int | None = None
    substitute_id: int | None = None
    delegate_id: int | None = None
    assignee_id: int | None = None
    notes: list[str] = field(default_factory=list)

    @property
    def auto_approve(self) -> bool:
        return self.assignee_id is None

    @property
    def routing_note(self) -> str | None:
        return "; ".join(self.notes) or None

    def to_dict(self) -> dict:
        return {
            "step_order": self.step_order,
            "primary_id": self.primary_id,
            "substitute_id": self.substitute_id,
            "delegate_id": self.delegate_id,
            "assignee_id": self.assignee_id,
            "auto_approve": self.auto_approve,
            "notes": list(self.notes),
        }


class RoutingPipeline:

    def __init__(
        self,
        substitution: SubstitutionResolver | None = None,
        delegations: DelegationRegistry | None = None,
    ) -> None:
        self.substitution = substitution or SubstitutionResolver()
        self.delegations = delegations or DelegationRegistry(
            directory=self.substitution.directory,
            resolver=self.substitution.resolver,
        )

    @property
    def resolver(self):
        return self.substitution.resolver

    # ── Stages ───────────────────────────────────────────────────────────

    def resolve_primary(self, template: ApprovalStepTemplate, submitter: User) -> RoutingDecision:
        primary = self.resolver.resolve(template, submitter)
        return self.start_from(template, primary)

    def start_from(self, template: ApprovalStepTemplate, primary: User | None) -> RoutingDecision:
        decision = RoutingDecision(step_order=template.step_order)
        if primary is None:
            decision.notes.append("auto-approved: no approver")
        else:
            decision.primary_id = decision.assignee_id = primary.id
        return decision

    def apply_substitution(
        self,
        decision: RoutingDecision,
        template: ApprovalStepTemplate,
        *,
        today: date | datetime | None = None,
        exclude: AbstractSet[int] = frozenset(),
    ) -> RoutingDecision:
        if decision.assignee_id is None:
            return decision
        primary = self.substitution.directory.get_user_by_id(decision.assignee_id)
        if primary is None:
            return decision

        substitute = self.substitution.substitute_for(template, primary, today=today, exclude=exclude)
        if substitute is not None and substitute.id != decision.assignee_id:
            decision.substitute_id = decision.assignee_id = substitute.id
            decision.notes.append(f"substitute for user {primary.id} (away)")
        return decision

    def apply_delegation(
        self,
        decision: RoutingDecision,
        *,
        now: datetime | None = None,
        exclude: AbstractSet[int] = frozenset(),
    ) -> RoutingDecision:
        if decision.assignee_id is None:
            return decision

        delegates = self.delegations.effective_delegates_of(decision.assignee_id, now=now)
        if not delegates:
            return decision
        holder = decision.assignee_id
        if delegates[0].id in exclude:
            logger.info("Delegate %s of user %s cannot act on this request; keeping holder", delegates[0].id, holder)
            return decision

        decision.delegate_id = decision.assignee_id = delegates[0].id
        decision.notes.append(f"delegated by user {holder}")
        return decision

    # ── Composition ──────────────────────────────────────────────────────

    def route(
        self,
        template: ApprovalStepTemplate,
        submitter: User,
        *,
        check_availability: bool = True,
        consider_delegation: bool = True,
        now: datetime | None = None,
    ) -> RoutingDecision:
        decision = self.resolve_primary(template, submitter)
        excluded = {submitter.id}
        return self._finish(decision, template, check_availability, consider_delegation, now, excluded)

    def route_candidate(
        self,
        template: ApprovalStepTemplate,
        candidate: User,
        *,
        submitter: User | None = None,
        taken: Iterable[int] = (),
        check_availability: bool = True,
        consider_delegation: bool = True,
        now: datetime | None = None,
    ) -> RoutingDecision:
        """Run stages 2-3 for an already-resolved parallel candidate.

        ``taken`` holds the ids of the other candidates of the group; an
        absent candidate is never substituted by one of them.
        """
        decision = self.start_from(template, candidate)
        excluded = {submitter.id} if submitter is not None else set()
        return self._finish(
            decision, template, check_availability, consider_delegation, now, excluded,
            taken=set(taken) - {candidate.id},
        )

    def _finish(self, decision, template, check_availability, consider_delegation, now, excluded, taken=()):
        if check_availability:
            self.apply_substitution(decision, template, today=now, exclude=excluded | set(taken))
        if consider_delegation:
            self.apply_delegation(decision, now=now, exclude=excluded)

        logger.debug("Routed step %s: %s", template.step_order, decision.to_dict())
        return decision
