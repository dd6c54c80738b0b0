"""
WSGI / Flask CLI entry point.

Usage:
    FLASK_APP=wsgi flask run-job approval_escalation_sweep
    FLASK_APP=wsgi flask list-jobs
"""

from approval_routing import create_app

app = create_app()
