import logging
import re
import secrets
import time

from . import db
from .errors import PanelError

log = logging.getLogger(__name__)


def panel_username(source):
    return re.sub(r'[^a-zA-Z0-9-]', '', source or '')[:20] or f'user{int(time.time() * 1000)}'


def provision_panel_user(panel, email, username, first_name=None, last_name=None):
    """Create the matching panel account with a random password; the user's own password never leaves us."""
    existing = panel.get_user_by_email(email)
    if existing:
        return existing
    return panel.create_user(
        email=email,
        username=panel_username(username),
        first_name=first_name or panel_username(username),
        last_name=last_name or 'User',
        password=secrets.token_urlsafe(24),
    )


def ensure_panel_user(panel, user):
    """Panel id for `user`, creating the panel account on first need."""
    if user.get('pterodactyl_user_id'):
        return user['pterodactyl_user_id']
    panel_id = provision_panel_user(panel, user['email'], user['email'].split('@')[0])
    db.execute('UPDATE users SET pterodactyl_user_id = ? WHERE id = ?', (panel_id, user['id']))
    return panel_id


def resolve_oauth_user(panel, provider, profile, ip):
    """Find the account for an OAuth profile: by provider id, else link by email, else create."""
    user = db.get_one('SELECT * FROM users WHERE oauth_provider = ? AND oauth_id = ?', (provider, profile['id']))
    if user:
        db.execute('UPDATE users SET last_login_ip = ? WHERE id = ?', (ip, user['id']))
        return user

    user = db.get_one('SELECT * FROM users WHERE email = ?', (profile['email'],))
    if user:
        log.info('Linking %s account to existing user %s', provider, user['id'])
        db.execute('UPDATE users SET oauth_provider = ?, oauth_id = ?, email_verified = 1, last_login_ip = ? '
                   'WHERE id = ?', (provider, profile['id'], ip, user['id']))
        return db.get_one('SELECT * FROM users WHERE id = ?', (user['id'],))

    panel_id = None
    try:
        panel_id = provision_panel_user(panel, profile['email'], profile.get('username') or profile['email'],
                                        profile.get('first_name'), profile.get('last_name'))
    except PanelError:
        # created later on first purchase
        log.warning('Panel account for %s could not be created during sign-up', profile['email'])

    user_id = db.execute(
        'INSERT INTO users (email, oauth_provider, oauth_id, pterodactyl_user_id, ip_address, last_login_ip, '
        'email_verified) VALUES (?, ?, ?, ?, ?, ?, 1)',
        (profile['email'], provider, profile['id'], panel_id, ip, ip))
    log.info('Created user %s via %s', user_id, provider)
    return db.get_one('SELECT * FROM users WHERE id = ?', (user_id,))
