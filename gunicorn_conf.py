"""gunicorn_conf.py

Gunicorn config for SuperPAAC Chat + Flask-SocketIO using Eventlet.

Environment variables:
  SUPERPAAC_BIND=0.0.0.0:5000
  SUPERPAAC_GUNICORN_LOGLEVEL=info
  SUPERPAAC_GUNICORN_ACCESSLOG=-
  SUPERPAAC_GUNICORN_ERRORLOG=-
  SUPERPAAC_GUNICORN_TIMEOUT=60
"""

from __future__ import annotations

import os

bind = os.environ.get("SUPERPAAC_BIND", "0.0.0.0:5000")
# In-process connection registry: one worker only.
workers = 1
worker_class = "eventlet"

# WebSockets keep connections open; avoid overly low timeouts.
timeout = int(os.environ.get("SUPERPAAC_GUNICORN_TIMEOUT", "60"))
keepalive = int(os.environ.get("SUPERPAAC_GUNICORN_KEEPALIVE", "5"))

loglevel = os.environ.get("SUPERPAAC_GUNICORN_LOGLEVEL", "info")
accesslog = os.environ.get("SUPERPAAC_GUNICORN_ACCESSLOG", "-")
errorlog = os.environ.get("SUPERPAAC_GUNICORN_ERRORLOG", "-")

# Important for Socket.IO upgrades through reverse proxies.
forwarded_allow_ips = os.environ.get("SUPERPAAC_FORWARDED_ALLOW_IPS", "*")
