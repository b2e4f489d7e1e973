# wsgi.py
"""
WSGI entry point for production deployment (gunicorn wsgi:app).
Configuration is chosen by FLASK_ENV.
"""

from app import create_app

app = create_app()

if __name__ == "__main__":
    app.run()
