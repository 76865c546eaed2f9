import datetime
import logging
import re
from functools import wraps

import jwt
from flask import current_app, g, jsonify, request
from werkzeug.security import check_password_hash, generate_password_hash

from . import db

log = logging.getLogger(__name__)

TRUSTED_EMAIL_DOMAINS = {
    'gmail.com', 'googlemail.com',
    'outlook.com', 'hotmail.com', 'live.com',
    'yahoo.com', 'yahoo.co.uk', 'yahoo.co.in',
    'icloud.com', 'me.com',
}

_UNITS = {'s': 1, 'm': 60, 'h': 3600, 'd': 86400}


def parse_expiry(value) -> datetime.timedelta:
    """'7d', '12h', '30m', '45s' or a bare number of seconds."""
    match = re.fullmatch(r'\s*(\d+)\s*([smhd]?)\s*', str(value or ''))
    if not match:
        return datetime.timedelta(days=7)
    amount, unit = match.groups()
    return datetime.timedelta(seconds=int(amount) * _UNITS.get(unit or 's'))


def is_trusted_email(email):
    domain = email.rsplit('@', 1)[-1].lower() if '@' in email else ''
    return domain in TRUSTED_EMAIL_DOMAINS


def hash_password(password):
    return generate_password_hash(password)


def verify_password(password_hash, password):
    return bool(password_hash) and check_password_hash(password_hash, password)


# ═══════════════════════════════════════════════
# JWT
# ═══════════════════════════════════════════════

def sign_token(user):
    now = datetime.datetime.now(datetime.timezone.utc)
    payload = {
        'sub': str(user['id']),
        'email': user['email'],
        'role': user['role'],
        'iat': now,
        'exp': now + parse_expiry(current_app.config['JWT_EXPIRES_IN']),
    }
    return jwt.encode(payload, current_app.config['JWT_SECRET'], algorithm='HS256')


def decode_token(token):
    """Return the claims, or None for any invalid/expired token."""
    try:
        return jwt.decode(token, current_app.config['JWT_SECRET'], algorithms=['HS256'])
    except jwt.InvalidTokenError:
        return None


def user_from_token(token):
    claims = decode_token(token) if token else None
    if not claims:
        return None
    try:
        user_id = int(claims.get('sub'))
    except (TypeError, ValueError):
        return None
    return db.get_one('SELECT * FROM users WHERE id = ?', (user_id,))


def public_user(user):
    return {
        'id': user['id'],
        'email': user['email'],
        'role': user['role'],
        'coins': user['coins'],
        'balance': user['balance'],
    }


def client_ip():
    """Peer address; ProxyFix has already resolved it from the trusted proxy hop."""
    return request.remote_addr


# ═══════════════════════════════════════════════
# AUTH DECORATORS
# ═══════════════════════════════════════════════

def _bearer():
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header[7:].strip()
    return None


def login_required(f):
    @wraps(f)
    def wrapper(*a, **kw):
        token = _bearer()
        if not token:
            return jsonify(error='Missing token'), 401
        if not decode_token(token):
            return jsonify(error='Invalid token'), 401
        user = user_from_token(token)
        if not user:
            return jsonify(error='User not found'), 401
        g.user = user
        return f(*a, **kw)

    return wrapper


def admin_required(f):
    @wraps(f)
    @login_required
    def wrapper(*a, **kw):
        if g.user['role'] != 'admin':
            return jsonify(error='Admin access required'), 403
        return f(*a, **kw)
    return wrapper
