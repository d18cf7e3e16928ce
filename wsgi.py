"""
WSGI entry point for the HR Onboarding Platform.

Usage:
    flask --app wsgi run
    flask --app wsgi db upgrade
    flask --app wsgi seed-rbac
"""

from app import create_app

app = create_app()
