"""Local development entry point.

Usage:
    python run.py

Reads .env first so STRIPE_* and DATABASE_URL are in place before the
app factory validates its config. Webhooks can be forwarded with:

    stripe listen --forward-to localhost:5001/webhook
"""

import os

from dotenv import load_dotenv

load_dotenv()

from talentbook import create_app  # noqa: E402

app = create_app(os.environ.get("FLASK_ENV", "development"))

if __name__ == "__main__":
    app.run(debug=app.config.get("DEBUG", False), host="0.0.0.0",
            port=int(os.environ.get("PORT", 5001)))
