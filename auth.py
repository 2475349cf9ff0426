"""
Request authentication.

Credentials are verified by the external auth provider; requests carry the
resulting user id as ``Authorization: Bearer <userId>``. Flask-Login turns
that header into ``current_user`` for routes marked ``@login_required``.
"""

import logging
from typing import Optional

from flask_login import LoginManager, UserMixin

from errors import Unauthorized

login_manager = LoginManager()


class User(UserMixin):
    def __init__(self, user_id: str):
        self.id = user_id

    @property
    def user_id(self) -> str:
        return self.id


def bearer_user_id(header_value: Optional[str]) -> Optional[str]:
    """Extract the user id from an Authorization header, if well-formed."""
    if not header_value or not header_value.startswith("Bearer "):
        return None
    user_id = header_value[len("Bearer "):].strip()
    return user_id or None


@login_manager.request_loader
def load_user_from_request(request):
    user_id = bearer_user_id(request.headers.get("Authorization"))
    return User(user_id) if user_id else None


@login_manager.user_loader
def load_user(user_id):
    # No server-side sessions; only bearer requests are authenticated
    return None


@login_manager.unauthorized_handler
def unauthorized():
    logging.getLogger("auth").info("[auth] Rejected request without bearer credentials")
    raise Unauthorized("Unauthorized")


def init_auth(app):
    login_manager.init_app(app)
