#!/usr/bin/env python3
"""main.py

SuperPAAC Chat server entrypoint (development / single process).

  python main.py                 # run with server_config.json
  python main.py --setup         # re-run the setup wizard first
  python main.py --config PATH   # alternate settings file

For production use gunicorn with wsgi.py (see gunicorn_conf.py).
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from constants import CONFIG_FILE
from interactive_setup import interactive_setup
from settings import apply_env_overrides, load_settings, save_settings

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: dict) -> None:
    """Root logger to the configured file plus stdout."""
    level_name = str(settings.get("log_level") or "INFO").upper()
    fmt = settings.get("log_format") or DEFAULT_LOG_FORMAT
    log_file = settings.get("log_file_path") or "logs/server.log"

    if os.path.dirname(log_file):
        os.makedirs(os.path.dirname(log_file), exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=fmt,
        filename=log_file,
        filemode="a",
    )
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(logging.Formatter(fmt))
    logging.getLogger().addHandler(console)
    logging.info("Logging configured (level=%s, file=%s)", level_name, log_file)


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="SuperPAAC Chat server")
    p.add_argument("--setup", action="store_true", help="run the setup wizard before starting")
    p.add_argument(
        "--config",
        default=os.getenv("SUPERPAAC_CONFIG") or CONFIG_FILE,
        help="path to the settings JSON file",
    )
    return p.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    settings_path = Path(args.config)

    settings = load_settings(settings_path)
    apply_env_overrides(settings)

    if args.setup or not settings_path.exists():
        print("\n=== SuperPAAC Setup Wizard ===\n")
        settings = interactive_setup(settings)
        save_settings(settings_path, settings)
        print(f"✅ Saved settings to {settings_path}\n")

    if not settings.get("mentor_code"):
        print("⚠️  mentor_code is empty. Nobody can self-register as a teacher.")

    configure_logging(settings)

    # Imported late: server_init monkey patches for eventlet on import.
    from server_init import run_web_server

    run_web_server(settings, settings_file=settings_path)


if __name__ == "__main__":
    main()
