"""
WSGI entry point, e.g. `gunicorn app:app`.
"""

import os

from app_factory import create_app

app = create_app(os.environ.get('FLASK_CONFIG', 'production'))
