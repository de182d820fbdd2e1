#!/usr/bin/env python3
"""
server_init.py
Initialises and runs the SuperPAAC Chat Flask application.

create_app() builds the Flask app, the Socket.IO server and one instance of
every chat service (store, connection registry, broadcaster, fan-out,
mutation engine, typing tracker, auth gate). The services are shared with
routes and socket handlers through app.config["SUPERPAAC_SERVICES"].
"""

from __future__ import annotations

import logging
import os

# Optional WebSocket support
# - Default: auto (use eventlet if available, otherwise fall back to threading/polling)
# - Override with: SUPERPAAC_SOCKETIO_ASYNC=threading|eventlet
SUPERPAAC_SOCKETIO_ASYNC = os.environ.get("SUPERPAAC_SOCKETIO_ASYNC", "auto").strip().lower()
_EVENTLET_AVAILABLE = False
if SUPERPAAC_SOCKETIO_ASYNC in {"auto", "eventlet"}:
    try:
        import eventlet  # type: ignore

        eventlet.monkey_patch()
        _EVENTLET_AVAILABLE = True
    except Exception:
        _EVENTLET_AVAILABLE = False
from datetime import timedelta
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_socketio import SocketIO

from constants import APP_VERSION, get_db_connection_string, redact_postgres_dsn
from database import create_store, get_db_identity
from errors import ChatError, StoreUnavailableError
from janitor import start_janitor
from mutations import MutationEngine
from notifications import NotificationFanout
from permissions import RolePolicy
from realtime.auth_gate import AuthenticationGate
from realtime.broadcaster import DEFAULT_EVENT_ALIASES, RoomBroadcaster
from realtime.registry import ConnectionRegistry
from realtime.typing_tracker import TYPING_EXPIRY_SECONDS, TypingTracker
from routes_auth import register_auth_routes
from routes_chat import register_chat_routes
from settings import ensure_signing_secrets
from socket_handlers import register_socketio_handlers


def _log_boot(settings: Dict[str, Any], settings_file: Optional[Path]) -> None:
    """One block at startup naming the config file, version and store in use."""
    backend = str(settings.get("store_backend") or "postgres")
    where = f"{settings_file} (exists={settings_file.exists()})" if settings_file else "<none>"
    logging.info("── SuperPAAC Chat %s ──", APP_VERSION)
    logging.info("settings: %s", where)
    logging.info("store: %s", backend)
    if backend == "postgres":
        logging.info("dsn: %s", redact_postgres_dsn(get_db_connection_string(settings)))


def _cors_origins(val):
    """None (CORS off), a single origin, or a list. Accepts comma-separated strings."""
    if isinstance(val, str):
        val = val.split(",")
    if not isinstance(val, (list, tuple, set)):
        return None
    origins = [str(o).strip() for o in val if str(o).strip()]
    if not origins:
        return None
    return origins[0] if len(origins) == 1 else origins


def build_services(settings: Dict[str, Any], socketio: SocketIO, store) -> SimpleNamespace:
    """Wire one instance of every chat service around a store."""
    registry = ConnectionRegistry()
    aliases = settings.get("legacy_event_aliases")
    broadcaster = RoomBroadcaster(
        socketio,
        registry,
        aliases=DEFAULT_EVENT_ALIASES if aliases is None else aliases,
    )
    fanout = NotificationFanout(store, registry, broadcaster)
    policy = RolePolicy(store, settings)
    engine = MutationEngine(store, broadcaster, fanout, policy, settings)
    typing = TypingTracker(
        broadcaster,
        expiry_seconds=float(settings.get("typing_expiry_seconds") or TYPING_EXPIRY_SECONDS),
    )
    gate = AuthenticationGate(store, registry, fanout, broadcaster=broadcaster, typing=typing)
    return SimpleNamespace(
        store=store,
        registry=registry,
        broadcaster=broadcaster,
        fanout=fanout,
        policy=policy,
        engine=engine,
        typing=typing,
        gate=gate,
    )


def create_app(
    settings: Dict[str, Any],
    limiter: Optional[Limiter] | None = None,
    settings_file: Optional[Path] | None = None,
    store=None,
) -> tuple[Flask, SocketIO]:
    """Create and configure the Flask + Socket.IO application.

    This function does **not** start a server or the janitor. It is safe to
    import from a Gunicorn `wsgi.py` module and from tests.
    """

    settings_file = Path(settings_file) if isinstance(settings_file, str) else settings_file

    # ───── Flask App Core ─────
    app = Flask(__name__)
    app.config["SUPERPAAC_SETTINGS_FILE"] = str(settings_file) if settings_file else None
    app.config["SUPERPAAC_SETTINGS"] = settings

    secret_key, jwt_secret = ensure_signing_secrets(settings, settings_file)
    app.secret_key = secret_key
    app.config.update(
        SECRET_KEY=secret_key,
        JWT_SECRET_KEY=jwt_secret,
        # Bearer tokens only: the React client keeps the token in localStorage
        # and hands the same token to the Socket.IO `authenticate` event.
        JWT_TOKEN_LOCATION=["headers"],
        JWT_ACCESS_TOKEN_EXPIRES=timedelta(days=int(settings.get("access_token_days", 7))),
        RATELIMIT_ENABLED=bool(settings.get("rate_limit_enabled", True)),
    )
    JWTManager(app)

    @app.after_request
    def _add_security_headers(resp):
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault(
            "Referrer-Policy",
            str(settings.get("referrer_policy") or "strict-origin-when-cross-origin"),
        )
        resp.headers.setdefault("X-Frame-Options", str(settings.get("x_frame_options") or "DENY"))
        return resp

    # ------------------------------------------------------------------
    # CORS
    # ------------------------------------------------------------------
    # Default: CORS is OFF unless explicitly configured.
    cors_origins = _cors_origins(settings.get("cors_allowed_origins"))
    if cors_origins is not None:
        CORS(app, origins=cors_origins)

    storage_uri = settings.get("rate_limit_storage_uri") or "memory://"
    if limiter is None:
        limiter = Limiter(
            key_func=get_remote_address,
            storage_uri=storage_uri,
        )
    limiter.init_app(app)
    # Flask-Limiter keeps only a weak reference to itself on the app.
    app.config["SUPERPAAC_LIMITER"] = limiter

    _log_boot(settings, settings_file)

    # ───── Store ─────
    if store is None:
        store = create_store(settings)
    if getattr(store, "backend", "postgres") == "postgres":
        try:
            ident = get_db_identity()
            logging.info(
                "Connected DB: user=%s db=%s server=%s:%s",
                ident.get("current_user"),
                ident.get("current_database"),
                ident.get("server_addr"),
                ident.get("server_port"),
            )
        except StoreUnavailableError as exc:
            logging.warning("Could not read DB identity: %s", exc)

    # ───── SocketIO Setup ─────
    # Single process, single room: no message queue is configured.
    async_mode = "threading"
    if SUPERPAAC_SOCKETIO_ASYNC == "eventlet" and not _EVENTLET_AVAILABLE:
        logging.warning("[socketio] SUPERPAAC_SOCKETIO_ASYNC=eventlet but eventlet is not installed; falling back to threading")
    if (SUPERPAAC_SOCKETIO_ASYNC in {"auto", "eventlet"}) and _EVENTLET_AVAILABLE:
        async_mode = "eventlet"
    app.config["SUPERPAAC_SOCKETIO_ASYNC_MODE"] = async_mode

    socketio = SocketIO(
        app,
        async_mode=async_mode,
        cors_allowed_origins=cors_origins,
        logger=False,
        engineio_logger=False,
        ping_interval=20,
        ping_timeout=15,
    )
    # Expose the SocketIO instance to HTTP routes that emit events.
    app.config["SUPERPAAC_SOCKETIO"] = socketio

    services = build_services(settings, socketio, store)
    app.config["SUPERPAAC_SERVICES"] = services

    # ───── Global Socket.IO Error Handler ─────
    # Anything that is not a ChatError is a bug or an outage; log it and give
    # the caller a generic error instead of killing the worker.
    @socketio.on_error_default
    def _socketio_default_error_handler(e):
        try:
            sid = getattr(request, "sid", None)
        except RuntimeError:
            sid = None
        if isinstance(e, ChatError):
            payload = e.to_payload()
        else:
            logging.exception("Unhandled Socket.IO handler error (sid=%s)", sid)
            payload = StoreUnavailableError().to_payload()
        if sid:
            services.broadcaster.emit_error(sid, payload["message"])
        return {"success": False, "error": payload["message"]}

    # ───── HTTP errors ─────
    @app.errorhandler(ChatError)
    def _chat_error(e: ChatError):
        if isinstance(e, StoreUnavailableError):
            logging.error("Store unavailable during %s %s", request.method, request.path)
        return jsonify({"success": False, "message": e.message, "code": e.code}), e.status

    # ───── Routes & handlers ─────
    register_auth_routes(app, settings, limiter=limiter)
    register_chat_routes(app, settings, limiter=limiter)
    register_socketio_handlers(socketio, settings, services)

    return app, socketio


def run_web_server(
    settings: Dict[str, Any],
    limiter: Optional[Limiter] | None = None,
    settings_file: Optional[Path] | None = None,
) -> None:
    """Bootstrap the Flask-SocketIO app, attach blueprints & handlers, then run it."""

    app, socketio = create_app(settings, limiter=limiter, settings_file=settings_file)

    # ───── Run Server (dev / single-process) ─────
    host = settings.get("host") or "0.0.0.0"
    port = int(settings.get("port") or 5000)
    debug = bool(settings.get("debug") or False)

    print(f"🚀  Starting SuperPAAC Chat on http://{host}:{port} (debug={debug})")

    # Background janitor: expires stale typing indicators.
    start_janitor(settings, app.config["SUPERPAAC_SERVICES"].typing)

    # Reduce console spam from long-polling by filtering Werkzeug access logs for /socket.io.
    class _SocketIOAccessFilter(logging.Filter):
        def filter(self, record: logging.LogRecord) -> bool:  # type: ignore
            return "/socket.io/" not in record.getMessage()

    logging.getLogger("werkzeug").addFilter(_SocketIOAccessFilter())

    use_reloader = bool(debug and app.config.get("SUPERPAAC_SOCKETIO_ASYNC_MODE") == "threading")
    socketio.run(
        app,
        host=host,
        port=port,
        debug=debug,
        use_reloader=use_reloader,
        log_output=False,
    )
