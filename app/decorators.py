"""
Custom route decorators for access control.

- api_login_required: JSON endpoints answer 401 instead of redirecting
  to the login page when the caller is not authenticated.
"""

from functools import wraps

from flask import jsonify
from flask_login import current_user


def api_login_required(f):
    """Require a logged-in user; respond 401 JSON otherwise."""

    @wraps(f)
    def decorated(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({"error": "Authentication required"}), 401
        return f(*args, **kwargs)

    return decorated
