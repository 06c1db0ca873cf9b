"""Auth blueprint — /auth/*

Email + password sessions for the billing pages. Accounts are created
with `flask create-user`; there is no self-service registration.
"""

from flask import Blueprint, flash, redirect, render_template, request, url_for
from flask_login import current_user, login_user, logout_user

from app.extensions import limiter
from app.models.user import User

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

DEFAULT_NEXT = "/dashboard"


def _safe_next(candidate):
    """Only same-site paths; anything absolute or protocol-relative is dropped."""
    if not candidate or not candidate.startswith("/") or candidate.startswith("//"):
        return DEFAULT_NEXT
    return candidate


def _login_form(error=None, email="", next_url=""):
    if error:
        flash(error, "error")
    return render_template("auth/login.html", email=email, next_url=next_url)


# ──────────────────────────────────────────────
# GET/POST /auth/login?next=/checkout/success?session_id=...
# ──────────────────────────────────────────────

@auth_bp.route("/login", methods=["GET", "POST"])
@limiter.limit("15 per minute", methods=["POST"])
def login():
    """Log in, then continue to `next`.

    Stripe sends buyers back to /checkout/success; if their session has
    lapsed they pass through here and `next` carries them on.
    """
    if current_user.is_authenticated:
        return redirect(_safe_next(request.args.get("next")))

    if request.method == "GET":
        return _login_form(next_url=request.args.get("next", ""))

    email = User.normalize_email(request.form.get("email"))
    password = request.form.get("password", "")
    next_url = request.form.get("next") or request.args.get("next", "")

    if not email or not password:
        return _login_form("Email and password are required.", email, next_url)

    user = User.find_by_email(email)
    if user is None or not user.check_password(password):
        return _login_form("Invalid email or password.", email, next_url)
    if not user.is_active:
        return _login_form("Your account has been deactivated.", email, next_url)

    login_user(user, remember=bool(request.form.get("remember")))
    return redirect(_safe_next(next_url))


@auth_bp.route("/logout")
def logout():
    logout_user()
    flash("You have been logged out.", "info")
    return redirect(url_for("auth.login"))
