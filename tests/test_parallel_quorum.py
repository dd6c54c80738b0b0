"""
Tests: best-N-of-M quorum for parallel approval groups.

Covers:
    - 2-of-3 satisfied regardless of the third sibling's rejection
    - below-minimum and empty groups are never satisfied
    - satisfaction is monotonic as approvals accumulate
    - steps of other requests / other groups are not counted
    - parallel_group_progress tallies
    - check_parallel_group_consistency findings
"""

from __future__ import annotations

import pytest

from approval_routing.core.exceptions import NotFoundError
from approval_routing.models import db as _db
from approval_routing.models.workflow import (
    STEP_APPROVED,
    STEP_PENDING,
    STEP_REJECTED,
    ApprovalStep,
    ApprovalStepTemplate,
    ApproverType,
    Request,
)
from approval_routing.services.parallel_quorum import (
    check_parallel_group_consistency,
    is_parallel_group_satisfied,
    parallel_group_progress,
)


# ── ORM helpers ───────────────────────────────────────────────────────────────


def _make_sibling(rt, user, group="legal", minimum=2, approver_type=ApproverType.SPECIFIC_USER, **kwargs):
    st = ApprovalStepTemplate(
        request_template_id=rt.id,
        step_order=2,
        approver_type=approver_type.value,
        specific_user_id=user.id if approver_type is ApproverType.SPECIFIC_USER else None,
        is_parallel=True,
        parallel_group_id=group,
        **kwargs,
    )
    if minimum is not None:
        st.minimum_approvals = minimum
    _db.session.add(st)
    _db.session.flush()
    return st


def _make_request(rt, submitter) -> Request:
    req = Request(request_template_id=rt.id, submitted_by_id=submitter.id)
    _db.session.add(req)
    _db.session.flush()
    return req


def _make_instance(req, st, status=STEP_PENDING) -> ApprovalStep:
    step = ApprovalStep(
        request_id=req.id,
        step_template_id=st.id,
        step_order=st.step_order,
        assigned_approver_id=st.specific_user_id,
        status=status,
    )
    _db.session.add(step)
    _db.session.flush()
    return step


def _given_legal_review(org, rt, statuses):
    """Three legal siblings (minimum 2) instantiated with the given statuses."""
    req = _make_request(rt, org.alice)
    reviewers = [org.fin_head, org.fin_director, org.coo]
    steps = [
        _make_instance(req, _make_sibling(rt, reviewer), status)
        for reviewer, status in zip(reviewers, statuses)
    ]
    return req, steps


# ═════════════════════════════════════════════════════════════════════════════
# 1. SATISFACTION
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_two_of_three_satisfied_despite_rejection(org, request_template):
    req, _ = _given_legal_review(org, request_template, [STEP_APPROVED, STEP_APPROVED, STEP_REJECTED])
    assert is_parallel_group_satisfied("legal", req.id) is True


@pytest.mark.unit
def test_one_of_three_not_satisfied(org, request_template):
    req, _ = _given_legal_review(org, request_template, [STEP_APPROVED, STEP_PENDING, STEP_REJECTED])
    assert is_parallel_group_satisfied("legal", req.id) is False


@pytest.mark.unit
def test_unknown_group_is_never_satisfied(org, request_template):
    req, _ = _given_legal_review(org, request_template, [STEP_APPROVED] * 3)
    assert is_parallel_group_satisfied("finance-review", req.id) is False


@pytest.mark.unit
def test_satisfaction_is_monotonic(org, request_template):
    req, steps = _given_legal_review(org, request_template, [STEP_PENDING] * 3)

    observed = []
    for step in steps:
        step.status = STEP_APPROVED
        _db.session.flush()
        observed.append(is_parallel_group_satisfied("legal", req.id))

    assert observed == [False, True, True]


@pytest.mark.unit
def test_other_requests_do_not_count(org, request_template):
    req, steps = _given_legal_review(org, request_template, [STEP_APPROVED, STEP_PENDING, STEP_PENDING])
    other = _make_request(request_template, org.bob)
    _make_instance(other, steps[1].step_template, STEP_APPROVED)

    assert is_parallel_group_satisfied("legal", req.id) is False
    assert is_parallel_group_satisfied("legal", other.id) is False


@pytest.mark.unit
def test_minimum_defaults_to_one(org, request_template):
    req = _make_request(request_template, org.alice)
    st = _make_sibling(request_template, org.fin_head, group="solo", minimum=None)
    _make_instance(req, st, STEP_APPROVED)
    assert is_parallel_group_satisfied("solo", req.id) is True


# ═════════════════════════════════════════════════════════════════════════════
# 2. PROGRESS
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_progress_tallies_statuses(org, request_template):
    req, _ = _given_legal_review(org, request_template, [STEP_APPROVED, STEP_REJECTED, STEP_PENDING])

    progress = parallel_group_progress("legal", req.id)
    assert progress["total"] == 3
    assert progress["approved"] == 1
    assert progress["rejected"] == 1
    assert progress["pending"] == 1
    assert progress["minimum_approvals"] == 2
    assert progress["satisfied"] is False


@pytest.mark.unit
def test_progress_of_empty_group(org, request_template):
    req = _make_request(request_template, org.alice)
    progress = parallel_group_progress("legal", req.id)
    assert progress["total"] == 0
    assert progress["minimum_approvals"] is None
    assert progress["satisfied"] is False


# ═════════════════════════════════════════════════════════════════════════════
# 3. CONSISTENCY CHECK
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_consistent_group_has_no_issues(org, request_template):
    _make_sibling(request_template, org.fin_head)
    _make_sibling(request_template, org.coo)
    assert check_parallel_group_consistency(request_template.id) == []


@pytest.mark.unit
def test_mismatched_minimums_flagged(org, request_template):
    _make_sibling(request_template, org.fin_head, minimum=1)
    _make_sibling(request_template, org.coo, minimum=2)

    issues = check_parallel_group_consistency(request_template.id)
    assert len(issues) == 1
    assert issues[0]["parallel_group_id"] == "legal"
    assert issues[0]["issue"] == "minimum_approvals_mismatch"
    assert issues[0]["minimums"] == [1, 2]


@pytest.mark.unit
def test_unreachable_minimum_flagged(org, request_template):
    _make_sibling(request_template, org.fin_head, minimum=3)
    _make_sibling(request_template, org.coo, minimum=3)

    issues = check_parallel_group_consistency(request_template.id)
    assert [i["issue"] for i in issues] == ["minimum_exceeds_siblings"]
    assert issues[0]["sibling_count"] == 2


@pytest.mark.unit
def test_fan_out_sibling_skips_size_check(org, request_template):
    _make_sibling(
        request_template, org.fin_head, group="board", minimum=3,
        approver_type=ApproverType.SPECIFIC_DEPARTMENT, specific_department_id=org.finance.id,
    )
    assert check_parallel_group_consistency(request_template.id) == []


@pytest.mark.unit
def test_consistency_unknown_template_raises():
    with pytest.raises(NotFoundError):
        check_parallel_group_consistency(99999)
