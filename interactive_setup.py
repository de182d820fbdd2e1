#!/usr/bin/env python3
"""interactive_setup.py

SuperPAAC setup wizard.

  • Quick setup (default): bind address, store backend, database DSN and the
    mentor code teachers use to register.
  • Advanced setup (optional): token lifetime, role policy, logging, pool sizing.

It also *compacts* the saved JSON to only known keys, so server_config.json
stays readable.
"""

from __future__ import annotations

import getpass
import os
import secrets
from typing import Any, Dict

import psycopg2

from constants import DEFAULT_DB_CONNECTION_STRING, sanitize_postgres_dsn
from errors import ChatError


# ──────────────────────────────────────────────────────────────────────────────
# Defaults (compact)
# ──────────────────────────────────────────────────────────────────────────────


def get_default_settings() -> Dict[str, Any]:
    """Return a compact set of defaults.

    Notes:
      - Keep secrets out of JSON when possible; prefer env vars.
      - server_init.py will generate/persist secret_key + jwt_secret if missing.
    """

    dsn = sanitize_postgres_dsn(
        os.getenv("DATABASE_URL")
        or os.getenv("DB_CONNECTION_STRING")
        or DEFAULT_DB_CONNECTION_STRING
    )

    return {
        # ── Core server ──────────────────────────────────────────────────
        "host": "0.0.0.0",
        "port": 5000,
        "debug": False,

        # Secrets (server_init.py will generate/persist if missing)
        "secret_key": "",
        "jwt_secret": "",

        # ── Store ────────────────────────────────────────────────────────
        "store_backend": "postgres",  # or "memory" (dev only, not durable)
        "database_url": dsn,
        "db_pool_min": 1,
        "db_pool_max": 10,

        # ── Auth ─────────────────────────────────────────────────────────
        "access_token_days": 7,
        # Registering with this code grants the teacher role. Empty = disabled.
        "mentor_code": "",

        # ── Message policy ───────────────────────────────────────────────
        "pin_roles": ["teacher", "admin", "mentor"],
        "soft_delete_roles": ["admin"],
        "max_message_length": 4000,
        "max_attachments": 10,
        "history_limit": 200,

        # ── Realtime ─────────────────────────────────────────────────────
        "typing_expiry_seconds": 8,
        "janitor_interval_seconds": 2,
        # Events re-emitted under older client names (null = built-in map).
        "legacy_event_aliases": None,

        # ── CORS / rate limiting ─────────────────────────────────────────
        "cors_allowed_origins": None,  # string, comma-separated string or list
        "rate_limit_enabled": True,
        "rate_limit_storage_uri": "memory://",
        "login_rate_limit": "10 per minute",
        "register_rate_limit": "5 per minute",

        # ── Logging ──────────────────────────────────────────────────────
        "log_level": "INFO",
        "log_file_path": "logs/server.log",
        "log_format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    }


def _compact_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Drop unknown keys so server_config.json stays small."""
    template = get_default_settings()
    return {k: settings.get(k, template[k]) for k in template.keys()}


# ──────────────────────────────────────────────────────────────────────────────
# Prompt helpers
# ──────────────────────────────────────────────────────────────────────────────


def _ask(prompt: str, default, parse=str):
    """Prompt until parse() accepts the answer. Blank input keeps default."""
    while True:
        raw = input(f"{prompt} [{default}]: ").strip()
        if not raw:
            return default
        try:
            return parse(raw)
        except ValueError as e:
            print(f"❌ {e}")


def _yn(prompt: str, default: bool = True) -> bool:
    def parse(raw):
        if raw.lower() in ("y", "yes"):
            return True
        if raw.lower() in ("n", "no"):
            return False
        raise ValueError("Please answer yes or no.")

    return _ask(prompt, "Y" if default else "N", parse) in (True, "Y")


def _prompt_str(prompt: str, default: str) -> str:
    return _ask(prompt, default)


def _prompt_int(prompt: str, default: int, min_val: int, max_val: int) -> int:
    def parse(raw):
        val = int(raw)
        if not min_val <= val <= max_val:
            raise ValueError(f"Must be between {min_val} and {max_val}.")
        return val

    return _ask(prompt, default, parse)


def _prompt_choice(prompt: str, default: str, choices: list[str]) -> str:
    listed = "/".join(choices)

    def parse(raw):
        if raw.lower() not in choices:
            raise ValueError(f"Please choose one of: {listed}")
        return raw.lower()

    return _ask(prompt, default, parse)


def _prompt_password(prompt: str = "Password") -> str:
    while True:
        first = getpass.getpass(f"{prompt}: ").strip()
        if first and first == getpass.getpass("Confirm: ").strip():
            return first
        print("❌ Empty password or confirmation mismatch.")


def _prompt_roles(prompt: str, current) -> list[str]:
    default = ",".join(current or [])
    raw = _prompt_str(prompt, default)
    return [r.strip().lower() for r in raw.split(",") if r.strip()]


def _create_first_admin(settings: Dict[str, Any]) -> None:
    from database import create_store
    from security import hash_password

    name = _prompt_str("Admin display name", "Admin")
    email = _prompt_str("Admin email", "admin@localhost").lower()
    password = _prompt_password("Admin password")
    store = create_store(settings)
    existing = store.find_user_by_email(email)
    if existing:
        store.set_user_role(existing.id, "admin")
        print(f"✅ Existing user {email} promoted to admin")
        return
    store.create_user(name, email, hash_password(password), role="admin")
    print(f"✅ Admin {email} created")


def interactive_setup(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Run the setup wizard and return an updated (compacted) settings dict."""

    # Start from compact defaults, but allow existing values to carry forward.
    base = get_default_settings()
    merged = {**base, **(settings or {})}

    advanced = _yn("Advanced mode? (more prompts)", default=False)

    # ── Core server ───────────────────────────────────────────────────────────
    merged["host"] = _prompt_str("Bind host", str(merged.get("host") or base["host"]))
    merged["port"] = _prompt_int("Bind port", int(merged.get("port") or base["port"]), 1, 65535)

    # ── Store ─────────────────────────────────────────────────────────────────
    merged["store_backend"] = _prompt_choice(
        "Store backend",
        str(merged.get("store_backend") or base["store_backend"]),
        ["postgres", "memory"],
    )
    if merged["store_backend"] == "postgres":
        while True:
            raw_dsn = _prompt_str("PostgreSQL DSN", str(merged.get("database_url") or base["database_url"]))
            merged["database_url"] = str(sanitize_postgres_dsn(raw_dsn))
            if merged["database_url"] != raw_dsn:
                print("⚠️  DSN sanitised (removed placeholder angle brackets / quotes).")
            try:
                test = psycopg2.connect(str(merged["database_url"]))
                test.close()
                print("✅ PostgreSQL connection OK")
                break
            except psycopg2.Error as e:
                print(f"❌ PostgreSQL connection failed: {e}")
                if not _yn("Try again?", default=True):
                    raise SystemExit(1)

    # ── Auth ──────────────────────────────────────────────────────────────────
    merged["mentor_code"] = _prompt_str(
        "Mentor code (teachers enter this when registering; blank = disabled)",
        str(merged.get("mentor_code") or ""),
    )
    if not merged.get("jwt_secret"):
        if _yn("Generate & save a stable jwt_secret now?", default=True):
            merged["jwt_secret"] = secrets.token_hex(32)
            print("✅ jwt_secret generated")

    if advanced:
        merged["access_token_days"] = _prompt_int(
            "Access token days",
            int(merged.get("access_token_days") or base["access_token_days"]),
            1,
            365,
        )
        merged["pin_roles"] = _prompt_roles("Roles allowed to pin (comma-separated)", merged.get("pin_roles"))
        merged["soft_delete_roles"] = _prompt_roles(
            "Roles allowed to delete messages (comma-separated)", merged.get("soft_delete_roles")
        )
        merged["typing_expiry_seconds"] = _prompt_int(
            "Typing indicator expiry (seconds)",
            int(merged.get("typing_expiry_seconds") or base["typing_expiry_seconds"]),
            1,
            300,
        )
        merged["db_pool_min"] = _prompt_int("DB pool min", int(merged.get("db_pool_min") or base["db_pool_min"]), 1, 100)
        merged["db_pool_max"] = _prompt_int("DB pool max", int(merged.get("db_pool_max") or base["db_pool_max"]), 1, 500)
        merged["log_level"] = _prompt_str("Log level (DEBUG/INFO/WARNING/ERROR)", str(merged.get("log_level") or base["log_level"]))
        merged["log_file_path"] = _prompt_str("Log file path", str(merged.get("log_file_path") or base["log_file_path"]))

    # ── First admin ───────────────────────────────────────────────────────────
    if merged["store_backend"] == "postgres" and _yn("Create (or promote) an admin account now?", default=True):
        try:
            _create_first_admin(merged)
        except ChatError as e:
            print(f"⚠️  Could not create admin: {e.message}")
            print("    Register normally and run addadmin.py <email> later.")

    print("\n✅ Setup complete.\n")
    return _compact_settings(merged)
