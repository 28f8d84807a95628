"""
Reflection Waves
Database handle shared by every model module.

Models are imported by the app factory (see ``reflection.create_app``) so
that ``db.create_all()`` and Alembic see every table.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
