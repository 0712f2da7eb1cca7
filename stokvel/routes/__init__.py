"""
Routes Package
==============

Thin JSON blueprints. Every handler parses the request, calls one service
and serializes the result; StokvelError is rendered by the app's error
handler.
"""

from functools import wraps
from flask import request
from flask_login import current_user, login_required
from stokvel.errors import AuthorizationError, ValidationError


def admin_required(view):
    """login_required plus an active system admin."""
    @wraps(view)
    @login_required
    def wrapped(*args, **kwargs):
        if not current_user.is_admin:
            raise AuthorizationError("Admin access required")
        return view(*args, **kwargs)
    return wrapped


def get_payload():
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def require_fields(payload, *names):
    missing = [name for name in names if payload.get(name) in (None, '')]
    if missing:
        raise ValidationError([f"{name} is required" for name in missing])
