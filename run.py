"""Local development entry point.

Usage:
    python run.py

Reads .env first, so STRIPE_SECRET_KEY / STRIPE_WEBHOOK_SECRET and friends
can live there. Forward webhooks locally with:

    stripe listen --forward-to localhost:5001/stripe/webhooks
"""

import os

from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from app import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=int(os.environ.get("PORT", 5001)))
