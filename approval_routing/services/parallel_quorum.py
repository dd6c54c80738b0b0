"""
Parallel Quorum Evaluator: best-N-of-M approval for parallel step groups.

Siblings of a parallel step share ``parallel_group_id`` on their
templates. A group is satisfied for a request once the number of its
approved step instances reaches ``minimum_approvals``. Rejections are
not subtracted: two approvals out of three satisfy a quorum of two even
if the third sibling rejected.

A group id with no step instances for the request is never satisfied.

Usage:
    from approval_routing.services.parallel_quorum import is_parallel_group_satisfied

    if is_parallel_group_satisfied("legal-review", request_id):
        ...
"""

from __future__ import annotations

import logging
from collections import defaultdict

from sqlalchemy import select

from approval_routing.core.exceptions import NotFoundError
from approval_routing.models import db
from approval_routing.models.workflow import (
    STEP_APPROVED,
    STEP_PENDING,
    STEP_REJECTED,
    ApprovalStep,
    ApprovalStepTemplate,
    ApproverType,
    RequestTemplate,
)

logger = logging.getLogger(__name__)

_FAN_OUT_POLICIES = frozenset({
    ApproverType.USER_GROUP,
    ApproverType.SPECIFIC_DEPARTMENT,
    ApproverType.ROLE,
})


def _group_steps(parallel_group_id: str, request_id: int) -> list[ApprovalStep]:
    return list(
        db.session.execute(
            select(ApprovalStep)
            .join(ApprovalStepTemplate, ApprovalStep.step_template_id == ApprovalStepTemplate.id)
            .where(
                ApprovalStep.request_id == request_id,
                ApprovalStepTemplate.parallel_group_id == parallel_group_id,
            )
            .order_by(ApprovalStep.id.asc())
        ).scalars()
    )


def _minimum_for(steps: list[ApprovalStep]) -> int:
    # All siblings should agree; the first one found is authoritative.
    template = steps[0].step_template
    return (template.minimum_approvals if template else None) or 1


def parallel_group_progress(parallel_group_id: str, request_id: int) -> dict:
    """Approval tally for one parallel group of a request.

    Returns:
        {"parallel_group_id", "request_id", "total", "approved", "rejected",
         "pending", "minimum_approvals", "satisfied"}
    """
    steps = _group_steps(parallel_group_id, request_id)
    counts = {STEP_APPROVED: 0, STEP_REJECTED: 0, STEP_PENDING: 0}
    for step in steps:
        counts[step.status] = counts.get(step.status, 0) + 1

    minimum = _minimum_for(steps) if steps else None
    satisfied = bool(steps) and counts[STEP_APPROVED] >= minimum

    return {
        "parallel_group_id": parallel_group_id,
        "request_id": request_id,
        "total": len(steps),
        "approved": counts[STEP_APPROVED],
        "rejected": counts[STEP_REJECTED],
        "pending": counts[STEP_PENDING],
        "minimum_approvals": minimum,
        "satisfied": satisfied,
    }


def is_parallel_group_satisfied(parallel_group_id: str, request_id: int) -> bool:
    """True iff the group's approved count for the request meets its minimum."""
    steps = _group_steps(parallel_group_id, request_id)
    if not steps:
        logger.debug("Parallel group %s has no steps for request %s", parallel_group_id, request_id)
        return False

    approved = sum(1 for s in steps if s.status == STEP_APPROVED)
    minimum = _minimum_for(steps)

    logger.debug(
        "Parallel group %s validation: %d/%d approvals",
        parallel_group_id, approved, minimum,
        extra={"parallel_group_id": parallel_group_id, "request_id": request_id},
    )
    return approved >= minimum


def _fans_out(template: ApprovalStepTemplate) -> bool:
    return bool(template.is_parallel) and template.policy in _FAN_OUT_POLICIES


def check_parallel_group_consistency(request_template_id: int) -> list[dict]:
    """Report parallel groups of a template whose siblings cannot form a sane quorum.

    Flags groups where siblings disagree on ``minimum_approvals`` and
    groups whose minimum exceeds the number of sibling templates. A
    sibling that fans out to several candidates (group, department or
    role policy) can supply more than one instance, so the size check is
    skipped for such groups.

    Raises:
        NotFoundError: template does not exist.

    Returns:
        List of {"parallel_group_id", "issue", "minimums", "sibling_count"}.
    """
    if db.session.get(RequestTemplate, request_template_id) is None:
        raise NotFoundError(resource="RequestTemplate", resource_id=request_template_id)

    templates = db.session.execute(
        select(ApprovalStepTemplate).where(
            ApprovalStepTemplate.request_template_id == request_template_id,
            ApprovalStepTemplate.parallel_group_id.is_not(None),
        )
    ).scalars()

    groups: dict[str, list[ApprovalStepTemplate]] = defaultdict(list)
    for template in templates:
        groups[template.parallel_group_id].append(template)

    issues = []
    for group_id, siblings in sorted(groups.items()):
        minimums = sorted({s.minimum_approvals or 1 for s in siblings})
        if len(minimums) > 1:
            issues.append({
                "parallel_group_id": group_id,
                "issue": "minimum_approvals_mismatch",
                "minimums": minimums,
                "sibling_count": len(siblings),
            })
        elif minimums[0] > len(siblings) and not any(_fans_out(s) for s in siblings):
            issues.append({
                "parallel_group_id": group_id,
                "issue": "minimum_exceeds_siblings",
                "minimums": minimums,
                "sibling_count": len(siblings),
            })

    for issue in issues:
        logger.warning(
            "Parallel group %s on template %s: %s",
            issue["parallel_group_id"], request_template_id, issue["issue"],
            extra={"parallel_group_id": issue["parallel_group_id"]},
        )
    return issues
