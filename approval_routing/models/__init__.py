"""
SQLAlchemy models package.

The shared ``db`` handle is bound to the Flask app in ``create_app``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
