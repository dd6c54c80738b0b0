"""
Approval Routing Engine
Flask Application Factory.

Flask hosts the engine's configuration, app context, database handle,
scheduler and CLI; the engine itself exposes no HTTP routes.

Usage:
    from approval_routing import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask

from approval_routing.config import config
from approval_routing.middleware.logging_config import configure_logging
from approval_routing.models import db

logger = logging.getLogger(__name__)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    os.makedirs(app.instance_path, exist_ok=True)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)

    # ── Import all models so metadata is complete ────────────────────────
    from approval_routing.models import organization as _organization_models  # noqa: F401
    from approval_routing.models import vacation as _vacation_models          # noqa: F401
    from approval_routing.models import workflow as _workflow_models          # noqa: F401
    from approval_routing.models import delegation as _delegation_models      # noqa: F401
    from approval_routing.models import scheduling as _scheduling_models      # noqa: F401

    with app.app_context():
        db.create_all()
        app.logger.info("db.create_all() completed successfully")

    # ── Scheduler ────────────────────────────────────────────────────────
    if app.config.get("SCHEDULER_ENABLED"):
        from approval_routing.services.scheduler_service import SchedulerService
        SchedulerService.init_app(app)
        SchedulerService.ensure_jobs_registered()

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("run-job")
    @click.argument("job_name")
    def run_job_cmd(job_name):
        """Run one registered scheduler job, e.g. approval_escalation_sweep."""
        from approval_routing.services.scheduler_service import SchedulerService
        outcome = SchedulerService.run_job(job_name)
        logger.info("Job %s finished: %s", job_name, outcome["status"], extra={"job_name": job_name})
        click.echo(f"{job_name}: {outcome['status']}")
        if outcome["status"] in ("error", "failed"):
            raise click.ClickException(outcome.get("error") or "job failed")

    @app.cli.command("list-jobs")
    def list_jobs_cmd():
        """List registered scheduler jobs and their last run."""
        from approval_routing.services.scheduler_service import SchedulerService
        for job in SchedulerService.list_jobs():
            record = job["db_record"] or {}
            click.echo(
                f"{job['job_name']}: enabled={record.get('is_enabled')} "
                f"last_run={record.get('last_run_at')} status={record.get('last_run_status')}"
            )

    return app
