"""settings.py

Loading, overriding and saving ``server_config.json``.

Layering, lowest first:
  1. interactive_setup.get_default_settings()
  2. the JSON file
  3. environment variables (apply_env_overrides)

Signing secrets (``secret_key``, ``jwt_secret``) are generated on first boot
when neither the file nor the environment provides them. Whether any secret
is ever written back to disk is controlled by ``SUPERPAAC_PERSIST_SECRETS``
(default on). With it off, keep secrets in the environment.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from constants import sanitize_postgres_dsn
from interactive_setup import get_default_settings

# Keys never written to disk when secret persistence is off.
SECRET_SETTING_KEYS = frozenset({"secret_key", "jwt_secret", "database_url", "mentor_code"})

_FALSE = {"0", "false", "no", "n", "off"}


def _env(*names: str) -> str | None:
    for name in names:
        val = os.getenv(name)
        if val is not None and val.strip():
            return val.strip()
    return None


def persist_secrets_enabled() -> bool:
    return (_env("SUPERPAAC_PERSIST_SECRETS") or "1").lower() not in _FALSE


def scrub_secrets(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of settings safe to write to disk under the current persistence policy."""
    if persist_secrets_enabled():
        return dict(settings)
    return {k: v for k, v in settings.items() if k not in SECRET_SETTING_KEYS}


def _backup_corrupt(path: Path) -> Optional[Path]:
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    target = path.with_suffix(path.suffix + f".bad-{stamp}")
    try:
        path.rename(target)
    except OSError as exc:
        logging.warning("Could not back up unreadable settings file %s: %s", path, exc)
        return None
    return target


def _read_json(path: Path) -> Optional[dict]:
    """Parsed file contents, {} when missing, None when unreadable."""
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fp:
            data = json.load(fp)
    except (OSError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def load_settings(path: Path) -> dict:
    """Defaults overlaid with the file at path. An unreadable file is set aside."""
    settings = get_default_settings()
    data = _read_json(path)
    if data is None:
        backup = _backup_corrupt(path)
        print(f"⚠️  {path} is not valid JSON; using defaults (backup: {backup}).")
        print("⚠️  Run with --setup to write a fresh config.")
        return settings
    settings.update(data)
    return settings


def save_settings(path: Path, settings: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fp:
        json.dump(scrub_secrets(settings), fp, indent=2)


def apply_env_overrides(settings: dict) -> None:
    """Environment wins over the file for secrets and deployment knobs."""
    dsn = _env("DB_CONNECTION_STRING", "DATABASE_URL")
    if dsn:
        settings["database_url"] = str(sanitize_postgres_dsn(dsn))

    for key, names in (
        ("secret_key", ("SECRET_KEY",)),
        ("jwt_secret", ("JWT_SECRET_KEY",)),
        ("mentor_code", ("SUPERPAAC_MENTOR_CODE", "MENTOR_CODE")),
    ):
        val = _env(*names)
        if val:
            settings[key] = val

    backend = _env("SUPERPAAC_STORE_BACKEND")
    if backend:
        settings["store_backend"] = backend.lower()

    level = _env("SUPERPAAC_LOG_LEVEL")
    if level:
        settings["log_level"] = level.upper()

    port = _env("SUPERPAAC_PORT", "PORT")
    if port:
        try:
            settings["port"] = int(port)
        except ValueError:
            logging.warning("Ignoring non-numeric port override %r", port)


def _persist_generated(settings: Dict[str, Any], settings_file: Optional[Path]) -> bool:
    """Merge settings into settings_file. False if nothing was written."""
    if not persist_secrets_enabled() or not settings_file:
        return False
    if settings_file.suffix.lower() != ".json":
        logging.warning("Not persisting secrets to non-JSON settings file %s", settings_file)
        return False

    existing = _read_json(settings_file)
    if existing is None:
        if _backup_corrupt(settings_file) is None:
            return False
        existing = {}

    try:
        with settings_file.open("w", encoding="utf-8") as fp:
            json.dump({**existing, **scrub_secrets(settings)}, fp, indent=2)
    except OSError as exc:
        logging.error("Could not persist generated secret to %s: %s", settings_file, exc)
        return False
    return True


def ensure_signing_secrets(settings: Dict[str, Any], settings_file: Optional[Path]) -> Tuple[str, str]:
    """Return (secret_key, jwt_secret), generating whichever is missing."""
    generated = []
    secret_key = settings.get("secret_key") or _env("SECRET_KEY")
    if not secret_key:
        secret_key = settings["secret_key"] = secrets.token_urlsafe(64)
        generated.append("secret_key")

    jwt_secret = settings.get("jwt_secret") or _env("JWT_SECRET_KEY")
    if not jwt_secret:
        jwt_secret = settings["jwt_secret"] = secrets.token_hex(32)
        generated.append("jwt_secret")

    if generated:
        if _persist_generated(settings, settings_file):
            logging.info("Generated and saved %s", ", ".join(generated))
        else:
            # Tokens issued now stop verifying after a restart.
            logging.warning("Generated one-off %s (not saved)", ", ".join(generated))
    return str(secret_key), str(jwt_secret)
