"""
WSGI and Flask-Migrate / Alembic entry point.

Usage:
    flask --app wsgi db init       # first time only (creates migrations/)
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    gunicorn wsgi:app
"""

from curriculum import create_app

app = create_app()
