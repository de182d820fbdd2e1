#!/usr/bin/env python3
"""
routes_auth.py

JSON authentication routes: register, login and "who am I".

Both register and login return a bearer access token. The same token is what
the client presents on the Socket.IO `authenticate` event.
"""

import logging
import secrets

from flask import current_app, jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required

from errors import AuthError, ChatError, NotFoundError, ValidationError
from security import hash_password, issue_access_token, verify_password_and_upgrade

MIN_PASSWORD_LENGTH = 8


def _services():
    return current_app.config["SUPERPAAC_SERVICES"]


def _auth_response(user, message: str, status: int = 200):
    return (
        jsonify(
            {
                "success": True,
                "message": message,
                "token": issue_access_token(user),
                "user": {**user.public(), "email": user.email},
            }
        ),
        status,
    )


def register_auth_routes(app, settings, limiter=None):
    def _limit(rule, **kwargs):
        """Apply Flask-Limiter rule if available."""
        if limiter is None:
            return lambda f: f
        return limiter.limit(rule, **kwargs)

    @app.route("/api/auth/register", methods=["POST"])
    @_limit(settings.get("register_rate_limit") or "5 per minute")
    def api_register():
        data = request.get_json(silent=True) or {}
        name = str(data.get("name") or "").strip()
        email = str(data.get("email") or "").strip().lower()
        password = str(data.get("password") or "")
        mentor_code = str(data.get("mentorCode") or data.get("mentor_code") or "").strip()

        if not name or not email or not password:
            raise ValidationError("Name, email and password are required")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password too short (min {MIN_PASSWORD_LENGTH})")

        store = _services().store
        if store.find_user_by_email(email):
            return jsonify({"success": False, "message": "User with this email already exists"}), 409

        # The mentor code is the only self-service way to a privileged role.
        role = "student"
        configured = str(settings.get("mentor_code") or "")
        if mentor_code and configured and secrets.compare_digest(mentor_code, configured):
            role = "teacher"

        user = store.create_user(name, email, hash_password(password), role=role)
        logging.info("Registered user %s (%s)", user.id, role)
        return _auth_response(user, "User registered successfully", 201)

    @app.route("/api/auth/login", methods=["POST"])
    @_limit(settings.get("login_rate_limit") or "10 per minute")
    def api_login():
        data = request.get_json(silent=True) or {}
        email = str(data.get("email") or "").strip().lower()
        password = str(data.get("password") or "")

        if not email or not password:
            raise ValidationError("Email and password are required")

        store = _services().store
        user = store.find_user_by_email(email)
        ok, upgraded_hash = verify_password_and_upgrade(password, user.password_hash) if user else (False, None)
        if not ok:
            logging.info("Failed login for %s from %s", email, request.remote_addr)
            raise AuthError("Invalid email or password")
        if upgraded_hash:
            try:
                store.update_password_hash(user.id, upgraded_hash)
            except ChatError as e:
                logging.warning("Could not upgrade password hash for %s: %s", user.id, e.message)
        return _auth_response(user, "Login successful")

    @app.route("/api/auth/me", methods=["GET"])
    @jwt_required()
    def api_me():
        user = _services().store.find_user(get_jwt_identity())
        if user is None:
            raise NotFoundError("User not found")
        return jsonify({"success": True, "user": {**user.public(), "email": user.email}})
