"""
WSGI entry point for CrushAI
"""
from dotenv import load_dotenv

load_dotenv()

from crushai.factory import create_app  # noqa: E402

app = create_app()

# Gunicorn/uWSGI compatibility
application = app

if __name__ == "__main__":
    import os

    port = int(os.environ.get("PORT", 5000))
    app.run(host="127.0.0.1", port=port, debug=False)
