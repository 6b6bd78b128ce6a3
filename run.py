"""Local development server for the donation API.

Usage:
    python run.py                 # http://localhost:5001
    PORT=8080 python run.py

Production runs the same factory under a WSGI server, e.g.
    gunicorn "donation_api:create_app('production')"
"""

import os

from dotenv import load_dotenv

load_dotenv()  # .env holds DATABASE_URL and the PAYPAL_* credentials

from donation_api import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    app.run(
        debug=app.config.get("DEBUG", False),
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", 5001)),
    )
