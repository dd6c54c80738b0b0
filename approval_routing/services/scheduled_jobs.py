"""
Scheduled Jobs: periodic work run by an external trigger.

Jobs:
    - approval_escalation_sweep: reassigns pending steps past their timeout
    - parallel_quorum_consistency_check: flags parallel groups whose
      siblings disagree on (or cannot reach) their quorum
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select

from approval_routing.models import db
from approval_routing.models.workflow import RequestTemplate
from approval_routing.services.escalation import EscalationMonitor
from approval_routing.services.parallel_quorum import check_parallel_group_consistency
from approval_routing.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Escalation Sweep
# ═══════════════════════════════════════════════════════════════════════════

@register_job("approval_escalation_sweep")
def run_escalation_sweep(app) -> dict[str, Any]:
    """Escalate pending approval steps that outlived their escalation timeout."""
    limit = app.config.get("ESCALATION_SWEEP_LIMIT")
    results = EscalationMonitor().escalate_due_steps(limit=limit)
    logger.info(
        "Escalation sweep: %d due, %d escalated, %d failed",
        results["checked"], len(results["escalated"]), len(results["failed"]),
        extra={"job_name": "approval_escalation_sweep"},
    )
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Parallel Quorum Consistency
# ═══════════════════════════════════════════════════════════════════════════

@register_job("parallel_quorum_consistency_check")
def run_quorum_consistency_check(app) -> dict[str, Any]:
    """Report parallel groups with inconsistent or unreachable minimum approvals."""
    template_ids = db.session.execute(
        select(RequestTemplate.id)
        .where(RequestTemplate.is_active.is_(True))
        .order_by(RequestTemplate.id)
    ).scalars().all()

    issues = {}
    for template_id in template_ids:
        found = check_parallel_group_consistency(template_id)
        if found:
            issues[str(template_id)] = found

    results = {"templates_checked": len(template_ids), "templates_with_issues": len(issues), "issues": issues}
    logger.info(
        "Quorum consistency check: %d templates, %d with issues",
        len(template_ids), len(issues),
        extra={"job_name": "parallel_quorum_consistency_check"},
    )
    return results
