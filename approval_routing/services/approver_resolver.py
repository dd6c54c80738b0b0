"""
Approver Resolver: who must act on an approval step.

Policy dispatch is a closed table keyed by ``ApproverType``; each branch
is a plain function of (step template, submitter, directory) with no
shared state, so every policy can be exercised on its own.

Outcomes:
    resolve()       → one User, or None. None is NOT an error: the
                      orchestrator treats it as "skip this step" and
                      auto-approves it.
    resolve_many()  → candidate list for parallel steps; the submitter is
                      always removed and duplicates collapse (first wins).

Usage:
    from approval_routing.services.approver_resolver import ApproverResolver

    approver = ApproverResolver().resolve(step_template, submitter)
"""

from __future__ import annotations

import logging
from typing import Callable

from approval_routing.core.exceptions import NotFoundError
from approval_routing.models.organization import Department, User, role_rank
from approval_routing.models.workflow import POLICY_PARAMETER, ApprovalStepTemplate, ApproverType
from approval_routing.services.directory import OrganizationDirectory, SqlOrganizationDirectory

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Single-approver policies
# ═════════════════════════════════════════════════════════════════════════════

def _submitter_department(submitter: User, directory: OrganizationDirectory) -> Department | None:
    if submitter.department_id is None:
        logger.warning("User %s has no department assigned", submitter.id)
        return None
    department = directory.get_department_by_id(submitter.department_id)
    if department is None:
        logger.warning("Department %s of user %s not found", submitter.department_id, submitter.id)
    return department


def _guard_self_approval(candidate: User | None, submitter: User, label: str) -> User | None:
    if candidate is not None and candidate.id == submitter.id:
        logger.info("%s of user %s is the submitter; self-approval is not allowed", label, submitter.id)
        return None
    return candidate


def _by_direct_supervisor(template, submitter, directory):
    department = _submitter_department(submitter, directory)
    if department is None:
        return None
    head = directory.get_user_by_id(department.head_of_department_id)
    if head is None:
        logger.warning("Department %s (%s) has no head assigned", department.id, department.name)
        return None
    return _guard_self_approval(head, submitter, "Department head")


def _by_department_director(template, submitter, directory):
    department = _submitter_department(submitter, directory)
    if department is None:
        return None
    director = directory.get_user_by_id(department.director_id)
    if director is None:
        logger.warning("Department %s (%s) has no director assigned", department.id, department.name)
        return None
    return _guard_self_approval(director, submitter, "Department director")


def _by_role(template, submitter, directory):
    """Walk the department chain upwards to the first head senior enough."""
    target = role_rank(template.approver_role)
    if target < 0:
        logger.warning("Step %s has role policy without a valid approver_role", template.step_order)
        return None

    department = _submitter_department(submitter, directory)
    seen: set[int] = set()
    while department is not None and department.id not in seen:
        seen.add(department.id)
        head = directory.get_user_by_id(department.head_of_department_id)
        if head is not None and head.id != submitter.id and role_rank(head.department_role) >= target:
            logger.debug(
                "Found head %s with sufficient role %s in department %s",
                head.id, head.department_role, department.id,
            )
            return head
        department = directory.get_department_by_id(department.parent_department_id)

    logger.warning("No department head with role %s above submitter %s", template.approver_role, submitter.id)
    return None


def _by_specific_user(template, submitter, directory):
    return directory.get_user_by_id(template.specific_user_id)


def _by_user_group(template, submitter, directory):
    # Deterministic, not load-balanced: always the first member.
    members = directory.get_users_in_group(template.approver_group_id)
    if not members:
        logger.warning("RoleGroup %s has no active users", template.approver_group_id)
        return None
    return members[0]


def _by_specific_department(template, submitter, directory):
    department = directory.get_department_by_id(template.specific_department_id)
    if department is None:
        logger.error("Department %s not found", template.specific_department_id)
        return None
    head = directory.get_user_by_id(department.head_of_department_id)
    if head is None:
        logger.warning("Department %s (%s) has no head assigned", department.id, department.name)
    return head


def _by_submitter(template, submitter, directory):
    return submitter


_Policy = Callable[[ApprovalStepTemplate, User, OrganizationDirectory], "User | None"]

_SINGLE_POLICIES: dict[ApproverType, _Policy] = {
    ApproverType.DIRECT_SUPERVISOR: _by_direct_supervisor,
    ApproverType.DEPARTMENT_DIRECTOR: _by_department_director,
    ApproverType.ROLE: _by_role,
    ApproverType.SPECIFIC_USER: _by_specific_user,
    ApproverType.USER_GROUP: _by_user_group,
    ApproverType.SPECIFIC_DEPARTMENT: _by_specific_department,
    ApproverType.SUBMITTER: _by_submitter,
}


# ═════════════════════════════════════════════════════════════════════════════
# Parallel (widened) policies
# ═════════════════════════════════════════════════════════════════════════════

def _many_user_group(template, submitter, directory):
    return directory.get_users_in_group(template.approver_group_id)


def _many_specific_department(template, submitter, directory):
    department = directory.get_department_by_id(template.specific_department_id)
    if department is None:
        return []
    head = directory.get_user_by_id(department.head_of_department_id)
    if head is None:
        return []
    candidates = [head]
    substitute = directory.get_user_by_id(department.head_of_department_substitute_id)
    if substitute is not None:
        candidates.append(substitute)
    return candidates


def _many_role(template, submitter, directory):
    target = role_rank(template.approver_role)
    if target < 0:
        return []
    return [
        user for user in directory.get_all_users()
        if role_rank(user.department_role) >= target
        and user.department_id is not None
        and user.department_id == submitter.department_id
    ]


_MANY_POLICIES: dict[ApproverType, _Policy] = {
    ApproverType.USER_GROUP: _many_user_group,
    ApproverType.SPECIFIC_DEPARTMENT: _many_specific_department,
    ApproverType.ROLE: _many_role,
}


def _distinct_excluding(users: list[User], excluded_id: int) -> list[User]:
    result: list[User] = []
    seen: set[int] = set()
    for user in users:
        if user.id == excluded_id or user.id in seen:
            continue
        seen.add(user.id)
        result.append(user)
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Public API
# ═════════════════════════════════════════════════════════════════════════════

class ApproverResolver:
    """Resolves step approvers from the approver-type policy of a step template."""

    def __init__(self, directory: OrganizationDirectory | None = None) -> None:
        self.directory = directory or SqlOrganizationDirectory()

    def resolve(self, template: ApprovalStepTemplate, submitter: User) -> User | None:
        """Return the single approver for a step, or None to auto-approve it."""
        policy = template.policy
        logger.debug(
            "Resolving approver for step %s, type %s, submitter %s",
            template.step_order, template.approver_type, submitter.id,
        )
        branch = _SINGLE_POLICIES.get(policy) if policy else None
        if branch is None:
            logger.warning("Unknown approver type %r on step %s", template.approver_type, template.step_order)
            return None

        approver = branch(template, submitter, self.directory)
        if approver is None:
            logger.info("No approver found for step %s. Will trigger auto-approval.", template.step_order)
        else:
            logger.debug("Resolved approver %s for step %s", approver.id, template.step_order)
        return approver

    def resolve_many(self, template: ApprovalStepTemplate, submitter: User) -> list[User]:
        """Return every candidate approver for a parallel step."""
        logger.debug(
            "Resolving parallel approvers for step %s, parallel group %s",
            template.step_order, template.parallel_group_id,
        )
        branch = _MANY_POLICIES.get(template.policy)
        if branch is not None:
            candidates = branch(template, submitter, self.directory)
        else:
            single = self.resolve(template, submitter)
            candidates = [single] if single is not None else []

        approvers = _distinct_excluding(candidates, submitter.id)
        logger.info("Resolved %d parallel approvers for step %s", len(approvers), template.step_order)
        return approvers

    def validate_approval_structure(
        self,
        submitter_id: int,
        step_templates: list[ApprovalStepTemplate],
    ) -> tuple[bool, list[str]]:
        """Check a template chain against the submitter's place in the organization.

        Reports malformed policy parameters and hierarchy gaps before a
        request is submitted.

        Raises:
            NotFoundError: submitter does not exist.

        Returns:
            (is_valid, errors)
        """
        submitter = self.directory.get_user_by_id(submitter_id)
        if submitter is None:
            raise NotFoundError(resource="User", resource_id=submitter_id)

        errors: list[str] = []
        for template in sorted(step_templates, key=lambda t: t.step_order):
            policy = template.policy
            if policy is None:
                errors.append(f"Step {template.step_order}: unknown approver type '{template.approver_type}'")
                continue

            param = POLICY_PARAMETER.get(policy)
            if param and getattr(template, param) is None:
                errors.append(f"Step {template.step_order}: {policy.value} requires {param}")
                continue

            if (template.minimum_approvals or 0) < 1:
                errors.append(f"Step {template.step_order}: minimum_approvals must be at least 1")

            if policy in (ApproverType.DIRECT_SUPERVISOR, ApproverType.DEPARTMENT_DIRECTOR):
                if self.resolve(template, submitter) is None:
                    label = "supervisor" if policy is ApproverType.DIRECT_SUPERVISOR else "director"
                    errors.append(f"Step {template.step_order}: no {label} found for user {submitter.id}")

        return not errors, errors
