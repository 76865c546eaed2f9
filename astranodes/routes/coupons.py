import logging

from flask import Blueprint, g, jsonify

from .. import db
from ..auth import client_ip, login_required
from ..durations import parse_iso, utcnow
from ..errors import ApiError
from ..schemas import Redeem, parse

log = logging.getLogger(__name__)

bp = Blueprint('coupons', __name__, url_prefix='/api/coupons')


@bp.route('/redeem', methods=['POST'])
@login_required
def redeem():
    body = parse(Redeem)
    user = g.user
    ip = client_ip()
    if user['flagged']:
        raise ApiError('Account flagged. Contact support.', 403)

    code = body.code.strip().upper()
    with db.transaction() as conn:
        row = conn.execute('SELECT * FROM coupons WHERE code = ? AND active = 1', (code,)).fetchone()
        if not row:
            raise ApiError('Invalid coupon', 404)
        coupon = dict(row)

        if coupon['expires_at'] and parse_iso(coupon['expires_at']) < utcnow():
            raise ApiError('Coupon expired', 400)

        used = conn.execute('SELECT COUNT(*) FROM coupon_redemptions WHERE coupon_id = ?',
                            (coupon['id'],)).fetchone()[0]
        if used >= coupon['max_uses']:
            raise ApiError('Coupon usage limit reached', 400)

        mine = conn.execute('SELECT COUNT(*) FROM coupon_redemptions WHERE coupon_id = ? AND user_id = ?',
                            (coupon['id'], user['id'])).fetchone()[0]
        if mine >= coupon['per_user_limit']:
            raise ApiError('You have already redeemed this coupon', 400)

        shared_ip = conn.execute('SELECT 1 FROM coupon_redemptions WHERE coupon_id = ? AND ip_address = ? '
                                 'AND user_id != ? LIMIT 1', (coupon['id'], ip, user['id'])).fetchone()
        if shared_ip:
            log.warning('Coupon %s blocked for user %s: already redeemed from ip %s', code, user['id'], ip)
            raise ApiError('This coupon was already redeemed from your network', 403)

        conn.execute('UPDATE users SET coins = coins + ? WHERE id = ?', (coupon['coin_reward'], user['id']))
        conn.execute('INSERT INTO coupon_redemptions (coupon_id, user_id, ip_address) VALUES (?, ?, ?)',
                     (coupon['id'], user['id'], ip))

    log.info('User %s redeemed coupon %s for %s coins', user['id'], code, coupon['coin_reward'])
    return jsonify(reward=coupon['coin_reward'])


@bp.route('/history')
@login_required
def history():
    rows = db.query('SELECT cr.id, c.code, c.coin_reward, cr.created_at AS redeemed_at '
                    'FROM coupon_redemptions cr JOIN coupons c ON c.id = cr.coupon_id '
                    'WHERE cr.user_id = ? ORDER BY cr.created_at DESC, cr.id DESC', (g.user['id'],))
    return jsonify(rows)
