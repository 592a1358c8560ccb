"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi archive-selection-history
"""

from routine_selection import create_app

app = create_app()
