"""
HR Onboarding Platform
SQLAlchemy extension instance shared by every model module.

Model modules are imported by ``create_app`` so that ``db.create_all()``
and Alembic autogenerate see every table.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
