"""
Tests: vacation-aware substitution and the read ports behind it.

Covers:
    - available primary keeps the step
    - department head away → head substitute
    - group member away → next available member; nobody available → primary
    - the submitter is never picked as a substitute
    - supervisor / director have no automatic substitute
    - check_availability=False skips the ledger
    - SqlVacationLedger date coverage, cancelled schedules, inactive substitutes
    - SqlOrganizationDirectory group ordering and misses
"""

from __future__ import annotations

from datetime import date

import pytest

from approval_routing.models import db as _db
from approval_routing.models.organization import RoleGroup
from approval_routing.models.vacation import VacationSchedule
from approval_routing.models.workflow import ApprovalStepTemplate, ApproverType
from approval_routing.services.directory import SqlOrganizationDirectory
from approval_routing.services.substitution import SubstitutionResolver
from approval_routing.services.vacation_ledger import SqlVacationLedger, VacationLedger

TODAY = date(2026, 3, 2)


class _AwayLedger(VacationLedger):
    """In-memory ledger: the given user ids are away every day."""

    def __init__(self, away=()):
        self.away = set(away)

    def is_user_away(self, user_id, on_date):
        return user_id in self.away

    def get_active_substitute(self, user_id, on_date=None):
        return None


# ── ORM helpers ───────────────────────────────────────────────────────────────


def _make_step(rt, approver_type, **kwargs) -> ApprovalStepTemplate:
    st = ApprovalStepTemplate(
        request_template_id=rt.id, step_order=1, approver_type=approver_type.value, **kwargs,
    )
    _db.session.add(st)
    _db.session.flush()
    return st


def _make_group(members) -> RoleGroup:
    group = RoleGroup(name="Approvers")
    _db.session.add(group)
    _db.session.flush()
    for member in members:
        group.add_member(member)
    _db.session.flush()
    return group


def _make_vacation(user, substitute=None, start=TODAY, end=TODAY, status="scheduled") -> VacationSchedule:
    vs = VacationSchedule(
        user_id=user.id,
        substitute_user_id=substitute.id if substitute else None,
        start_date=start,
        end_date=end,
        status=status,
    )
    _db.session.add(vs)
    _db.session.flush()
    return vs


def _resolver(*away_users) -> SubstitutionResolver:
    return SubstitutionResolver(ledger=_AwayLedger(u.id for u in away_users))


# ═════════════════════════════════════════════════════════════════════════════
# 1. EFFECTIVE ASSIGNEE
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_available_primary_keeps_step(org, request_template):
    st = _make_step(request_template, ApproverType.DIRECT_SUPERVISOR)
    assert _resolver().effective_assignee(st, org.alice, today=TODAY) == org.fin_head.id


@pytest.mark.unit
def test_department_head_away_routes_to_head_substitute(org, request_template):
    st = _make_step(request_template, ApproverType.SPECIFIC_DEPARTMENT, specific_department_id=org.finance.id)
    assert _resolver(org.fin_head).effective_assignee(st, org.alice, today=TODAY) == org.fin_sub.id


@pytest.mark.unit
def test_department_head_away_without_substitute_keeps_primary(org, request_template):
    org.finance.head_of_department_substitute_id = None
    _db.session.flush()
    st = _make_step(request_template, ApproverType.SPECIFIC_DEPARTMENT, specific_department_id=org.finance.id)
    assert _resolver(org.fin_head).effective_assignee(st, org.alice, today=TODAY) == org.fin_head.id


@pytest.mark.unit
def test_group_member_away_routes_to_next_available(org, request_template):
    group = _make_group([org.bob, org.fin_sub, org.coo])
    st = _make_step(request_template, ApproverType.USER_GROUP, approver_group_id=group.id)
    resolver = _resolver(org.bob, org.fin_sub)
    assert resolver.effective_assignee(st, org.alice, today=TODAY) == org.coo.id


@pytest.mark.unit
def test_whole_group_away_falls_back_to_primary(org, request_template):
    group = _make_group([org.bob, org.fin_sub])
    st = _make_step(request_template, ApproverType.USER_GROUP, approver_group_id=group.id)
    resolver = _resolver(org.bob, org.fin_sub)
    assert resolver.effective_assignee(st, org.alice, today=TODAY) == org.bob.id


@pytest.mark.unit
def test_group_substitute_skips_submitter(org, request_template):
    group = _make_group([org.coo, org.alice, org.bob])
    st = _make_step(request_template, ApproverType.USER_GROUP, approver_group_id=group.id)
    assert _resolver(org.coo).effective_assignee(st, org.alice, today=TODAY) == org.bob.id


@pytest.mark.unit
def test_head_substitute_who_submitted_is_skipped(org, request_template):
    st = _make_step(request_template, ApproverType.SPECIFIC_DEPARTMENT, specific_department_id=org.finance.id)
    assert _resolver(org.fin_head).effective_assignee(st, org.fin_sub, today=TODAY) == org.fin_head.id


@pytest.mark.unit
def test_substitute_for_honours_exclusions(org, request_template):
    group = _make_group([org.coo, org.fin_head, org.fin_sub])
    st = _make_step(request_template, ApproverType.USER_GROUP, approver_group_id=group.id)
    resolver = _resolver(org.coo)

    assert resolver.substitute_for(st, org.coo, today=TODAY) == org.fin_head
    assert resolver.substitute_for(st, org.coo, today=TODAY, exclude={org.fin_head.id}) == org.fin_sub
    assert resolver.substitute_for(st, org.coo, today=TODAY, exclude={org.fin_head.id, org.fin_sub.id}) is None


@pytest.mark.unit
@pytest.mark.parametrize("approver_type", [ApproverType.DIRECT_SUPERVISOR, ApproverType.DEPARTMENT_DIRECTOR])
def test_supervisor_and_director_have_no_automatic_substitute(org, request_template, approver_type):
    st = _make_step(request_template, approver_type)
    primary = org.fin_head if approver_type is ApproverType.DIRECT_SUPERVISOR else org.fin_director
    assert _resolver(primary).effective_assignee(st, org.alice, today=TODAY) == primary.id


@pytest.mark.unit
def test_check_availability_false_ignores_ledger(org, request_template):
    st = _make_step(request_template, ApproverType.SPECIFIC_DEPARTMENT, specific_department_id=org.finance.id)
    resolver = _resolver(org.fin_head)
    assert resolver.effective_assignee(st, org.alice, check_availability=False, today=TODAY) == org.fin_head.id


@pytest.mark.unit
def test_no_primary_means_no_assignee(org, request_template):
    st = _make_step(request_template, ApproverType.DIRECT_SUPERVISOR)
    assert _resolver().effective_assignee(st, org.fin_head, today=TODAY) is None


@pytest.mark.unit
def test_sql_ledger_drives_substitution(org, request_template):
    _make_vacation(org.fin_head, start=date(2026, 3, 1), end=date(2026, 3, 5))
    st = _make_step(request_template, ApproverType.SPECIFIC_DEPARTMENT, specific_department_id=org.finance.id)
    resolver = SubstitutionResolver()

    assert resolver.effective_assignee(st, org.alice, today=TODAY) == org.fin_sub.id
    assert resolver.effective_assignee(st, org.alice, today=date(2026, 3, 6)) == org.fin_head.id


# ═════════════════════════════════════════════════════════════════════════════
# 2. SQL VACATION LEDGER
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_ledger_range_is_inclusive(org):
    _make_vacation(org.fin_head, start=date(2026, 3, 1), end=date(2026, 3, 3))
    ledger = SqlVacationLedger()

    assert ledger.is_user_away(org.fin_head.id, date(2026, 2, 28)) is False
    assert ledger.is_user_away(org.fin_head.id, date(2026, 3, 1)) is True
    assert ledger.is_user_away(org.fin_head.id, date(2026, 3, 3)) is True
    assert ledger.is_user_away(org.fin_head.id, date(2026, 3, 4)) is False


@pytest.mark.unit
def test_ledger_ignores_cancelled_schedules(org):
    _make_vacation(org.fin_head, status="cancelled")
    assert SqlVacationLedger().is_user_away(org.fin_head.id, TODAY) is False


@pytest.mark.unit
def test_ledger_active_substitute(org):
    _make_vacation(org.fin_head, substitute=org.bob)
    ledger = SqlVacationLedger()
    assert ledger.get_active_substitute(org.fin_head.id, TODAY) == org.bob
    assert ledger.get_active_substitute(org.alice.id, TODAY) is None


@pytest.mark.unit
def test_ledger_inactive_substitute_is_ignored(org):
    _make_vacation(org.fin_head, substitute=org.bob)
    org.bob.is_active = False
    _db.session.flush()
    assert SqlVacationLedger().get_active_substitute(org.fin_head.id, TODAY) is None


# ═════════════════════════════════════════════════════════════════════════════
# 3. SQL ORGANIZATION DIRECTORY
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_directory_misses_return_empty_values(org):
    directory = SqlOrganizationDirectory()
    assert directory.get_user_by_id(99999) is None
    assert directory.get_user_by_id(None) is None
    assert directory.get_department_by_id(99999) is None
    assert directory.get_users_in_group(99999) == []


@pytest.mark.unit
def test_directory_group_members_follow_position(org):
    group = RoleGroup(name="Ordered")
    _db.session.add(group)
    _db.session.flush()
    group.add_member(org.coo, position=2)
    group.add_member(org.bob, position=0)
    group.add_member(org.fin_sub, position=1)

    members = SqlOrganizationDirectory().get_users_in_group(group.id)
    assert members == [org.bob, org.fin_sub, org.coo]


@pytest.mark.unit
def test_directory_all_users_excludes_inactive(org):
    org.bob.is_active = False
    _db.session.flush()
    users = SqlOrganizationDirectory().get_all_users()
    assert org.bob not in users
    assert org.alice in users
