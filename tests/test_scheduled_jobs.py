"""
Tests: scheduler registry, scheduled jobs and the CLI that triggers them.

SchedulerService.run_job opens its own app context (and therefore its own
session); fixture data is committed before it is called.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from approval_routing.models import db as _db
from approval_routing.models.scheduling import ScheduledJob
from approval_routing.models.workflow import (
    STEP_PENDING,
    ApprovalStep,
    ApprovalStepTemplate,
    ApproverType,
    Request,
)
from approval_routing.services.scheduled_jobs import run_escalation_sweep, run_quorum_consistency_check
from approval_routing.services.scheduler_service import SchedulerService, get_registered_jobs
from approval_routing.utils.helpers import utcnow


def _given_overdue_step(org, rt) -> int:
    """Commit a step created 30h ago on a 24h-timeout template; returns the step id."""
    st = ApprovalStepTemplate(
        request_template_id=rt.id,
        step_order=1,
        approver_type=ApproverType.DIRECT_SUPERVISOR.value,
        escalation_timeout_hours=24,
        escalation_user_id=org.fin_director.id,
    )
    req = Request(request_template_id=rt.id, submitted_by_id=org.alice.id)
    _db.session.add_all([st, req])
    _db.session.flush()
    step = ApprovalStep(
        request_id=req.id,
        step_template_id=st.id,
        step_order=1,
        assigned_approver_id=org.fin_head.id,
        status=STEP_PENDING,
        created_at=utcnow() - timedelta(hours=30),
    )
    _db.session.add(step)
    _db.session.commit()
    return step.id


def _job_record(name: str) -> ScheduledJob | None:
    _db.session.expire_all()
    return ScheduledJob.query.filter_by(job_name=name).first()


# ═════════════════════════════════════════════════════════════════════════════
# 1. REGISTRY
# ═════════════════════════════════════════════════════════════════════════════


def test_registered_jobs():
    jobs = get_registered_jobs()
    assert "approval_escalation_sweep" in jobs
    assert "parallel_quorum_consistency_check" in jobs


def test_ensure_jobs_registered_is_idempotent():
    SchedulerService.ensure_jobs_registered()
    assert SchedulerService.ensure_jobs_registered() == []
    for name in get_registered_jobs():
        assert _job_record(name) is not None

    record = _job_record("approval_escalation_sweep")
    assert record.schedule_config["minutes"] == 15
    assert record.is_enabled is True


# ═════════════════════════════════════════════════════════════════════════════
# 2. JOB FUNCTIONS
# ═════════════════════════════════════════════════════════════════════════════


def test_escalation_sweep_job_escalates_overdue_steps(app, org, request_template):
    step_id = _given_overdue_step(org, request_template)

    results = run_escalation_sweep(app)

    assert results["escalated"] == [step_id]
    step = _db.session.get(ApprovalStep, step_id)
    assert step.assigned_approver_id == org.fin_director.id
    assert step.escalated_at is not None


def test_escalation_sweep_respects_configured_limit(app, org, request_template, monkeypatch):
    _given_overdue_step(org, request_template)
    _given_overdue_step(org, request_template)
    monkeypatch.setitem(app.config, "ESCALATION_SWEEP_LIMIT", 1)

    results = run_escalation_sweep(app)
    assert results["checked"] == 1
    assert len(results["escalated"]) == 1


def test_quorum_consistency_job_reports_by_template(app, org, request_template):
    for user, minimum in ((org.fin_head, 1), (org.coo, 2)):
        _db.session.add(ApprovalStepTemplate(
            request_template_id=request_template.id,
            step_order=2,
            approver_type=ApproverType.SPECIFIC_USER.value,
            specific_user_id=user.id,
            is_parallel=True,
            parallel_group_id="legal",
            minimum_approvals=minimum,
        ))
    _db.session.flush()

    results = run_quorum_consistency_check(app)

    assert results["templates_checked"] == 1
    assert results["templates_with_issues"] == 1
    issues = results["issues"][str(request_template.id)]
    assert issues[0]["issue"] == "minimum_approvals_mismatch"


# ═════════════════════════════════════════════════════════════════════════════
# 3. RUN_JOB & CLI
# ═════════════════════════════════════════════════════════════════════════════


def test_run_job_records_outcome(org, request_template):
    SchedulerService.ensure_jobs_registered()
    step_id = _given_overdue_step(org, request_template)

    outcome = SchedulerService.run_job("approval_escalation_sweep")

    assert outcome["status"] == "success"
    assert outcome["result"]["escalated"] == [step_id]
    record = _job_record("approval_escalation_sweep")
    assert record.run_count == 1
    assert record.last_run_status == "success"


def test_run_job_unknown_name():
    outcome = SchedulerService.run_job("no_such_job")
    assert outcome["status"] == "error"
    assert "Unknown job" in outcome["error"]


def test_disabled_job_is_skipped():
    SchedulerService.ensure_jobs_registered()
    SchedulerService.toggle_job("approval_escalation_sweep", False)

    outcome = SchedulerService.run_job("approval_escalation_sweep")

    assert outcome["status"] == "skipped"
    assert _job_record("approval_escalation_sweep").run_count == 0


def test_toggle_unknown_job_returns_none():
    assert SchedulerService.toggle_job("no_such_job", True) is None


def test_cli_run_job(app):
    SchedulerService.ensure_jobs_registered()
    runner = app.test_cli_runner()

    result = runner.invoke(args=["run-job", "parallel_quorum_consistency_check"])
    assert result.exit_code == 0
    assert "parallel_quorum_consistency_check: success" in result.output

    result = runner.invoke(args=["run-job", "no_such_job"])
    assert result.exit_code != 0
    assert "Unknown job" in result.output


def test_cli_list_jobs(app):
    SchedulerService.ensure_jobs_registered()
    result = app.test_cli_runner().invoke(args=["list-jobs"])
    assert result.exit_code == 0
    assert "approval_escalation_sweep: enabled=True" in result.output
