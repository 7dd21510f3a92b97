"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi seed-badges
    flask --app wsgi create-tenant "Acme" acme
    flask --app wsgi dispatch-events
    flask --app wsgi db migrate -m "description"
"""

from ideahub import create_app

app = create_app()
