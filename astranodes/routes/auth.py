import logging
import secrets

from flask import Blueprint, abort, current_app, g, jsonify, redirect, request, session

from .. import db, oauth
from ..accounts import provision_panel_user, resolve_oauth_user
from ..auth import (client_ip, hash_password, is_trusted_email, login_required, public_user, sign_token,
                    verify_password)
from ..errors import ApiError, PanelError, fail
from ..extensions import limiter, service
from ..schemas import Credentials, ResetPassword, parse

log = logging.getLogger(__name__)

bp = Blueprint('auth', __name__, url_prefix='/api/auth')

AUTH_LIMIT = '10 per 15 minutes'


def _password_auth_enabled():
    if not current_app.config.get('PASSWORD_AUTH_ENABLED'):
        raise ApiError('Email/password authentication is disabled. Sign in with Google or Discord.', 403)


# ═══════════════════════════════════════════════
# PASSWORD AUTH
# ═══════════════════════════════════════════════

@bp.route('/register', methods=['POST'])
@limiter.limit(AUTH_LIMIT)
def register():
    _password_auth_enabled()
    body = parse(Credentials)
    email = body.email.lower()

    if not is_trusted_email(email):
        raise ApiError('Only emails from trusted providers are allowed (gmail.com, googlemail.com, '
                       'outlook.com, hotmail.com, etc.)', 400)
    if db.get_one('SELECT id FROM users WHERE email = ?', (email,)):
        raise ApiError('Email already registered', 409)

    panel = service('panel')
    try:
        panel_id = provision_panel_user(panel, email, email.split('@')[0])
    except PanelError:
        log.error('Panel user creation failed for %s', email)
        raise ApiError('Account provisioning failed. Please try again later.', 502)

    ip = client_ip()
    try:
        user_id = db.execute(
            'INSERT INTO users (email, password_hash, ip_address, last_login_ip, pterodactyl_user_id) '
            'VALUES (?, ?, ?, ?, ?)', (email, hash_password(body.password), ip, ip, panel_id))
    except Exception:
        try:
            panel.delete_user(panel_id)
        except PanelError:
            log.warning('Could not remove orphaned panel user %s', panel_id)
        raise

    user = db.get_one('SELECT * FROM users WHERE id = ?', (user_id,))
    log.info('Registered user %s (%s)', user_id, email)
    return jsonify(token=sign_token(user), user=public_user(user)), 201


@bp.route('/login', methods=['POST'])
@limiter.limit(AUTH_LIMIT)
def login():
    _password_auth_enabled()
    body = parse(Credentials)
    user = db.get_one('SELECT * FROM users WHERE email = ?', (body.email.lower(),))
    if not user or not verify_password(user['password_hash'], body.password):
        raise ApiError('Invalid credentials', 401)

    db.execute('UPDATE users SET last_login_ip = ? WHERE id = ?', (client_ip(), user['id']))
    return jsonify(token=sign_token(user), user=public_user(user))


@bp.route('/reset-password', methods=['POST'])
@login_required
def reset_password():
    body = parse(ResetPassword)
    if body.currentPassword == body.newPassword:
        return fail('New password must be different from current password', 400)

    user = g.user
    if user['oauth_provider'] or not user['password_hash']:
        return fail('Password reset is not available for OAuth accounts', 400)
    if not verify_password(user['password_hash'], body.currentPassword):
        return fail('Current password is incorrect', 401)

    db.execute('UPDATE users SET password_hash = ? WHERE id = ?', (hash_password(body.newPassword), user['id']))
    return jsonify(message='Password reset successfully')


@bp.route('/me')
@login_required
def me():
    return jsonify(public_user(g.user))


# ═══════════════════════════════════════════════
# OAUTH
# ═══════════════════════════════════════════════

@bp.route('/<provider>')
def oauth_start(provider):
    if not oauth.is_configured(current_app.config, provider):
        abort(404)
    state = secrets.token_urlsafe(24)
    session['oauth_state'] = state
    return redirect(oauth.authorize_url(current_app.config, provider, state))


@bp.route('/<provider>/callback')
def oauth_callback(provider):
    if not oauth.is_configured(current_app.config, provider):
        abort(404)
    frontend = current_app.config['FRONTEND_URL']
    expected = session.pop('oauth_state', None)
    code = request.args.get('code')

    if not code or not expected or request.args.get('state') != expected:
        log.warning('OAuth %s callback rejected: missing code or state mismatch', provider)
        return redirect(f'{frontend}/login?error=oauth_failed')

    try:
        profile = oauth.fetch_profile(current_app.config, provider, code)
        user = resolve_oauth_user(service('panel'), provider, profile, client_ip())
    except oauth.OAuthError as e:
        log.error('OAuth %s failed: %s', provider, e)
        return redirect(f'{frontend}/login?error=oauth_failed')
    except Exception:
        log.exception('OAuth %s sign-in failed', provider)
        return redirect(f'{frontend}/login?error=oauth_failed')

    session['pending_token'] = sign_token(user)
    return redirect(f'{frontend}/auth/callback?code=session')


@bp.route('/exchange-token', methods=['POST'])
def exchange_token():
    token = session.pop('pending_token', None)
    if not token:
        raise ApiError('No pending authentication', 401)
    return jsonify(token=token)
