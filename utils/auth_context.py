"""
Request identity. `load_current_user` runs before every request and fills
g.user, g.session and g.auth_source ("bearer", "cookie" or None).
"""
import logging
from functools import wraps

from flask import g, jsonify

from models import db
from models.user import User
from security.session import get_session_from_request

logger = logging.getLogger(__name__)


def load_current_user():
    sess, source = get_session_from_request()
    user = db.session.get(User, sess.user_id) if sess else None
    if sess is not None and user is None:
        logger.warning("Session %s points at missing user %s", sess.id, sess.user_id)
        sess, source = None, None

    g.session = sess
    g.auth_source = source
    g.user = user


def current_user():
    return getattr(g, "user", None)


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if current_user() is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper
