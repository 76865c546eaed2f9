from flask import current_app, g
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_socketio import SocketIO

socketio = SocketIO()
limiter = Limiter(get_remote_address)
cors = CORS()


def user_or_ip():
    """Rate-limit key: the signed-in user when there is one, else the client address."""
    user = getattr(g, 'user', None)
    if user:
        return f"user:{user['id']}"
    return get_remote_address()


def service(name):
    """Panel/Wings/plugin/ads clients and the earn-token store live in app.extensions."""
    return current_app.extensions[name]
