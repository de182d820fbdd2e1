#!/usr/bin/env python3
"""addadmin.py

Change the role of an existing user in PostgreSQL (default: admin).

Usage:
  python addadmin.py <email> [--role teacher|admin|mentor|student]

Notes:
  - This does NOT create the user; register first, then promote.
  - Roles are re-read on every privileged action, so the change applies to
    already-connected sessions immediately.
"""

from __future__ import annotations

import argparse
import psycopg2

from constants import USER_ROLES, get_db_connection_string


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("email")
    parser.add_argument("--role", default="admin", choices=USER_ROLES, help="Role to assign")
    parser.add_argument(
        "--dsn",
        default=None,
        help="Override Postgres DSN (otherwise uses env or constants.py fallback)",
    )
    args = parser.parse_args()

    email = args.email.strip().lower()
    if not email:
        print("Email required")
        return 2

    dsn = args.dsn or get_db_connection_string()
    try:
        conn = psycopg2.connect(dsn)
    except psycopg2.Error as e:
        print("❌ Could not connect to Postgres.")
        print("Tip: set DB_CONNECTION_STRING to your real DSN, or pass --dsn <dsn>.")
        print(f"Details: {e}")
        return 3
    try:
        with conn.cursor() as cur:
            cur.execute(
                "UPDATE users SET role = %s WHERE lower(email) = %s RETURNING id;",
                (args.role, email),
            )
            row = cur.fetchone()
            if not row:
                print(f"User not found: {email}")
                return 1
            cur.execute(
                "INSERT INTO audit_log (actor, action, target, details) VALUES (%s, %s, %s, %s);",
                ("addadmin.py", "role_change", row[0], f"role={args.role}"),
            )
        conn.commit()
        print(f"Assigned role '{args.role}' to {email} ✅")
        return 0
    finally:
        conn.close()


if __name__ == "__main__":
    raise SystemExit(main())
