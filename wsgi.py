"""WSGI entry point."""

import os

from dotenv import load_dotenv

# Load environment variables from .env file
dotenv_path = os.path.join(os.path.dirname(__file__), '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path)

from booking_core import create_app  # noqa: E402
from booking_core.extensions import db  # noqa: E402
from booking_core.models import Appointment, Organization, User  # noqa: E402

app = create_app()


@app.shell_context_processor
def make_shell_context():
    return {
        'db': db,
        'Organization': Organization,
        'User': User,
        'Appointment': Appointment
    }


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=5000, debug=True)
