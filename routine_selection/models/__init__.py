"""
Routine Selection Service
Shared SQLAlchemy handle.

Usage:
    from routine_selection.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
