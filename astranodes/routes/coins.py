import logging
import math

from flask import Blueprint, g, jsonify

from .. import db
from ..auth import client_ip, login_required
from ..durations import now_iso, parse_iso, utcnow
from ..errors import ApiError
from ..extensions import limiter, service, user_or_ip
from ..schemas import Claim, parse

log = logging.getLogger(__name__)

bp = Blueprint('coins', __name__, url_prefix='/api/coins')

CLAIM_COOLDOWN = 60


def claim_coins(user_id):
    """Credit one AFK reward. Raises 429 with waitSeconds while the cooldown is running."""
    now = utcnow()
    with db.transaction() as conn:
        settings = conn.execute('SELECT coins_per_minute FROM coin_settings WHERE id = 1').fetchone()
        user = conn.execute('SELECT last_claim_time FROM users WHERE id = ?', (user_id,)).fetchone()

        if user and user['last_claim_time']:
            elapsed = math.floor((now - parse_iso(user['last_claim_time'])).total_seconds())
            if elapsed < CLAIM_COOLDOWN:
                raise ApiError('Cooldown active', 429, waitSeconds=CLAIM_COOLDOWN - elapsed)

        reward = max(1, settings['coins_per_minute'] if settings else 1)
        conn.execute('UPDATE users SET coins = coins + ?, last_claim_time = ? WHERE id = ?',
                     (reward, now_iso(), user_id))
    return reward


@bp.route('/balance')
@login_required
def balance():
    user = db.get_one('SELECT coins, balance, last_claim_time FROM users WHERE id = ?', (g.user['id'],))
    return jsonify(user)


@bp.route('/session', methods=['POST'])
@login_required
@limiter.limit('10 per 70 seconds', key_func=user_or_ip, error_message='Too many session requests. Slow down.')
def session():
    if g.user['flagged']:
        log.warning('Flagged user %s asked for an earn session ip=%s', g.user['id'], client_ip())
        raise ApiError('Account flagged. Contact support.', 403)
    token = service('earn_tokens').issue(g.user['id'])
    log.info('Earn token issued for user=%s ip=%s', g.user['id'], client_ip())
    return jsonify(earnToken=token)


@bp.route('/claim', methods=['POST'])
@login_required
@limiter.limit('3 per 70 seconds', key_func=user_or_ip,
               error_message='Too many claim attempts. Wait before trying again.')
def claim():
    user = g.user
    ip = client_ip()
    if user['flagged']:
        log.warning('Flagged user attempted claim user=%s ip=%s', user['id'], ip)
        raise ApiError('Account flagged. Contact support.', 403)

    body = parse(Claim)
    valid, reason = service('earn_tokens').consume(body.earnToken, user['id'])
    if not valid:
        log.warning('Earn token rejected user=%s ip=%s reason=%r', user['id'], ip, reason)
        raise ApiError(reason, 400)

    earned = claim_coins(user['id'])
    log.info('Claim success user=%s earned=%s ip=%s', user['id'], earned, ip)
    return jsonify(earned=earned)
