"""
Test Reporting Service
SQLAlchemy models.

Every model module imports ``db`` from here; ``create_app`` imports the
modules themselves so ``db.create_all()`` sees every table.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
