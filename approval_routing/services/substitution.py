"""
Substitution Resolver: stand-ins for approvers who are away.

Composes the approver resolver with the vacation ledger. When the
primary approver is away "today", a substitute is looked up with a
policy-specific rule:

    direct_supervisor / department_director  no automatic substitute
    specific_department                      the department's head substitute
    user_group                               first other member who is available
    anything else                            no lookup

Users passed in ``exclude`` are never picked: the submitter, and in a
parallel fan-out every other candidate of the group. Finding nobody is
never a failure: the step goes to the absent primary and waits for
their return.
"""

from __future__ import annotations

import logging
from collections.abc import Set as AbstractSet
from datetime import date, datetime

from approval_routing.models.organization import User
from approval_routing.models.workflow import ApprovalStepTemplate, ApproverType
from approval_routing.services.approver_resolver import ApproverResolver
from approval_routing.services.directory import OrganizationDirectory, SqlOrganizationDirectory
from approval_routing.services.vacation_ledger import SqlVacationLedger, VacationLedger
from approval_routing.utils.helpers import as_date, utcnow

logger = logging.getLogger(__name__)


class SubstitutionResolver:

    def __init__(
        self,
        directory: OrganizationDirectory | None = None,
        ledger: VacationLedger | None = None,
        resolver: ApproverResolver | None = None,
    ) -> None:
        self.directory = directory or SqlOrganizationDirectory()
        self.ledger = ledger or SqlVacationLedger()
        self.resolver = resolver or ApproverResolver(self.directory)

    def find_substitute(
        self,
        template: ApprovalStepTemplate,
        primary: User,
        on_date: date,
        exclude: AbstractSet[int] = frozenset(),
    ) -> User | None:
        """Policy-specific stand-in for an absent ``primary``; None when there is none."""
        policy = template.policy

        if policy is ApproverType.SPECIFIC_DEPARTMENT:
            department = self.directory.get_department_by_id(template.specific_department_id)
            if department is None:
                return None
            substitute = self.directory.get_user_by_id(department.head_of_department_substitute_id)
            if substitute is None or substitute.id in exclude:
                return None
            return substitute

        if policy is ApproverType.USER_GROUP:
            for member in self.directory.get_users_in_group(template.approver_group_id):
                if member.id == primary.id or member.id in exclude:
                    continue
                if not self.ledger.is_user_away(member.id, on_date):
                    return member
            return None

        # Supervisor and director substitutes are configured by hand elsewhere.
        return None

    def substitute_for(
        self,
        template: ApprovalStepTemplate,
        primary: User,
        *,
        today: date | datetime | None = None,
        exclude: AbstractSet[int] = frozenset(),
    ) -> User | None:
        """Stand-in for ``primary`` when they are away on ``today``; None when available or uncovered."""
        on_date = as_date(today) if today is not None else utcnow().date()
        if not self.ledger.is_user_away(primary.id, on_date):
            return None

        substitute = self.find_substitute(template, primary, on_date, exclude)
        if substitute is None:
            logger.info(
                "Approver %s is away on %s and step %s has no substitute; keeping primary",
                primary.id, on_date, template.step_order,
            )
            return None

        logger.info(
            "Approver %s is away on %s, routing step %s to substitute %s",
            primary.id, on_date, template.step_order, substitute.id,
        )
        return substitute

    def effective_assignee(
        self,
        template: ApprovalStepTemplate,
        submitter: User,
        check_availability: bool = True,
        *,
        today: date | datetime | None = None,
    ) -> int | None:
        """Id of whoever should receive the step: primary, substitute, or None to auto-approve."""
        primary = self.resolver.resolve(template, submitter)
        if primary is None:
            return None
        if not check_availability:
            return primary.id

        substitute = self.substitute_for(template, primary, today=today, exclude={submitter.id})
        return substitute.id if substitute is not None else primary.id
