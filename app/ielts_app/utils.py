"""Utility functions for the Flask application."""
from functools import wraps
from typing import Any, Dict, Optional

from flask import jsonify, request, session

from .services.errors import InvalidInput


def get_current_user_id() -> Optional[str]:
    """Identity of the caller, as established by the hosting auth layer."""
    user_id = session.get('user_id') or request.headers.get('X-User-Id')
    return str(user_id) if user_id else None


def login_required(f):
    """Decorator to require an identified user for a route."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not get_current_user_id():
            return jsonify({'error': 'Not authenticated'}), 401
        return f(*args, **kwargs)
    return decorated_function


def get_json_payload() -> Dict[str, Any]:
    """Return the request's JSON object body or raise InvalidInput."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise InvalidInput('Request body must be a JSON object')
    return payload
