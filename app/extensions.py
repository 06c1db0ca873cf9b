"""
Flask extension singletons, bound in create_app() via init_app().

`db` is the one data-store handle: every request handler and service
reaches the database through its request-scoped session.
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_wtf.csrf import CSRFProtect
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
csrf = CSRFProtect()

# Storage comes from RATELIMIT_STORAGE_URI; limits are declared per route.
limiter = Limiter(key_func=get_remote_address, default_limits=[])

login_manager = LoginManager()
login_manager.login_view = "auth.login"
login_manager.login_message = "Please log in to continue."
login_manager.login_message_category = "info"


@login_manager.user_loader
def load_user(user_id):
    """Resolve the session's user id; deactivated accounts are logged out."""
    from app.models.user import User

    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user
