"""
WSGI Entry Point - Anime Pipeline Console

Provides the application factory output (Flask app + SocketIO) for production
servers such as Gunicorn.
"""

from app import create_app


app, socketio = create_app()

# The tracking service keeps state in-process: run a single worker.
#   gunicorn -k gthread --threads 8 -w 1 -b 0.0.0.0:5000 wsgi:app
