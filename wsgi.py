"""wsgi.py

Gunicorn entrypoint for SuperPAAC Chat.

  SUPERPAAC_SOCKETIO_ASYNC=eventlet gunicorn -c gunicorn_conf.py wsgi:app

The connection registry, typing state and message locks are in-process, so
exactly one worker may serve the room. The janitor thread runs inside that
worker.
"""

from __future__ import annotations

import os

# eventlet must patch the stdlib before anything else imports socket/threading.
if (os.environ.get("SUPERPAAC_SOCKETIO_ASYNC") or "auto").strip().lower() in {"auto", "eventlet"}:
    try:
        import eventlet  # type: ignore

        eventlet.monkey_patch()
    except ImportError:
        pass  # server_init falls back to threading mode

from pathlib import Path

from constants import CONFIG_FILE
from janitor import start_janitor
from main import configure_logging
from settings import apply_env_overrides, load_settings
from server_init import create_app


def _build():
    settings_path = Path(os.environ.get("SUPERPAAC_CONFIG") or CONFIG_FILE)
    settings = load_settings(settings_path)
    apply_env_overrides(settings)
    configure_logging(settings)

    flask_app, sio = create_app(settings, settings_file=settings_path)
    start_janitor(settings, flask_app.config["SUPERPAAC_SERVICES"].typing)
    flask_app.config["SUPERPAAC_GUNICORN"] = True
    return flask_app, sio


app, socketio = _build()
