"""Celery worker entry point."""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
dotenv_path = os.path.join(os.path.dirname(__file__), '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path)

from booking_core import create_app  # noqa: E402
from booking_core.extensions import celery  # noqa: E402

# Create Flask app to initialize Celery configuration and register tasks
app = create_app()

if __name__ == '__main__':
    with app.app_context():
        celery.start()
