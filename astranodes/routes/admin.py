import datetime
import logging

from flask import Blueprint, g, jsonify

from .. import db
from ..auth import admin_required
from ..catalog import PLAN_TABLES
from ..durations import now_iso, to_iso, utcnow
from ..errors import ApiError, PanelError
from ..extensions import service
from ..schemas import CoinPlan, CoinSettings, Coupon, Flag, RealPlan, parse
from ..uploads import remove_file

log = logging.getLogger(__name__)

bp = Blueprint('admin', __name__, url_prefix='/api/admin')

PLAN_MODELS = {'coin': CoinPlan, 'real': RealPlan}


# ═══════════════════════════════════════════════
# USERS
# ═══════════════════════════════════════════════

@bp.route('/users')
@admin_required
def users():
    return jsonify(db.query('SELECT id, email, role, coins, balance, ip_address, last_login_ip, flagged, '
                            'oauth_provider, created_at FROM users ORDER BY created_at DESC, id DESC'))


@bp.route('/users/<int:user_id>/flag', methods=['PATCH'])
@admin_required
def flag_user(user_id):
    body = parse(Flag)
    db.execute('UPDATE users SET flagged = ? WHERE id = ?', (1 if body.flagged else 0, user_id))
    log.info('Admin %s set flagged=%s on user %s', g.user['id'], body.flagged, user_id)
    return jsonify(status='ok')


@bp.route('/users/<int:user_id>', methods=['DELETE'])
@admin_required
def delete_user(user_id):
    if user_id == g.user['id']:
        raise ApiError('Cannot delete your own account', 400)
    user = db.get_one('SELECT id, pterodactyl_user_id FROM users WHERE id = ?', (user_id,))
    if not user:
        raise ApiError('User not found', 404)

    panel = service('panel')
    for srv in db.query('SELECT pterodactyl_server_id FROM servers WHERE user_id = ? '
                        'AND pterodactyl_server_id IS NOT NULL', (user_id,)):
        try:
            panel.delete_server(srv['pterodactyl_server_id'])
        except PanelError:
            log.warning('Panel server %s delete failed, continuing', srv['pterodactyl_server_id'])
    if user['pterodactyl_user_id']:
        try:
            panel.delete_user(user['pterodactyl_user_id'])
        except PanelError:
            log.warning('Panel user %s delete failed, continuing', user['pterodactyl_user_id'])

    screenshots = db.query('SELECT screenshot_path FROM utr_submissions WHERE user_id = ?', (user_id,))
    with db.transaction() as conn:
        conn.execute('DELETE FROM ticket_messages WHERE ticket_id IN (SELECT id FROM tickets WHERE user_id = ?)',
                     (user_id,))
        conn.execute('DELETE FROM ticket_messages WHERE sender_id = ?', (user_id,))
        conn.execute('DELETE FROM tickets WHERE user_id = ?', (user_id,))
        conn.execute('DELETE FROM coupon_redemptions WHERE user_id = ?', (user_id,))
        conn.execute('DELETE FROM utr_submissions WHERE user_id = ?', (user_id,))
        conn.execute('DELETE FROM server_backups WHERE server_id IN (SELECT id FROM servers WHERE user_id = ?)',
                     (user_id,))
        conn.execute('DELETE FROM servers WHERE user_id = ?', (user_id,))
        conn.execute('DELETE FROM users WHERE id = ?', (user_id,))
    for row in screenshots:
        remove_file(row['screenshot_path'])

    log.info('Admin %s deleted user %s', g.user['id'], user_id)
    return jsonify(status='ok')


# ═══════════════════════════════════════════════
# PLANS
# ═══════════════════════════════════════════════

def _plan_row(plan_type):
    row = parse(PLAN_MODELS[plan_type]).model_dump()
    row['limited_stock'] = 1 if row['limited_stock'] else 0
    if 'one_time_purchase' in row:
        row['one_time_purchase'] = 1 if row['one_time_purchase'] else 0
    return row


@bp.route('/plans/<any(coin, real):plan_type>', methods=['POST'])
@admin_required
def create_plan(plan_type):
    row = _plan_row(plan_type)
    cols = ', '.join(row)
    marks = ', '.join('?' for _ in row)
    plan_id = db.execute(f'INSERT INTO {PLAN_TABLES[plan_type]} ({cols}) VALUES ({marks})', tuple(row.values()))
    log.info('%s plan %s created', plan_type.capitalize(), plan_id)
    return jsonify(id=plan_id), 201


@bp.route('/plans/<any(coin, real):plan_type>/<int:plan_id>', methods=['PUT'])
@admin_required
def update_plan(plan_type, plan_id):
    row = _plan_row(plan_type)
    sets = ', '.join(f'{c} = ?' for c in row)
    db.execute(f'UPDATE {PLAN_TABLES[plan_type]} SET {sets} WHERE id = ?', (*row.values(), plan_id))
    return jsonify(status='ok')


@bp.route('/plans/<any(coin, real):plan_type>/<int:plan_id>', methods=['DELETE'])
@admin_required
def delete_plan(plan_type, plan_id):
    db.execute(f'DELETE FROM {PLAN_TABLES[plan_type]} WHERE id = ?', (plan_id,))
    return jsonify(status='ok')


# ═══════════════════════════════════════════════
# COUPONS
# ═══════════════════════════════════════════════

def _coupon_row():
    body = parse(Coupon)
    return (body.code.strip().upper(), body.coin_reward, body.max_uses, body.per_user_limit,
            to_iso(body.expires_at) if body.expires_at else None, 1 if body.active else 0)


@bp.route('/coupons')
@admin_required
def coupons():
    return jsonify(db.query('SELECT c.*, COUNT(cr.id) AS times_used FROM coupons c '
                            'LEFT JOIN coupon_redemptions cr ON cr.coupon_id = c.id '
                            'GROUP BY c.id ORDER BY c.id DESC'))


@bp.route('/coupons', methods=['POST'])
@admin_required
def create_coupon():
    row = _coupon_row()
    if db.get_one('SELECT id FROM coupons WHERE code = ?', (row[0],)):
        raise ApiError('Coupon code already exists', 409)
    coupon_id = db.execute('INSERT INTO coupons (code, coin_reward, max_uses, per_user_limit, expires_at, active) '
                           'VALUES (?, ?, ?, ?, ?, ?)', row)
    return jsonify(id=coupon_id), 201


@bp.route('/coupons/<int:coupon_id>', methods=['PUT'])
@admin_required
def update_coupon(coupon_id):
    row = _coupon_row()
    clash = db.get_one('SELECT id FROM coupons WHERE code = ? AND id != ?', (row[0], coupon_id))
    if clash:
        raise ApiError('Coupon code already exists', 409)
    db.execute('UPDATE coupons SET code = ?, coin_reward = ?, max_uses = ?, per_user_limit = ?, expires_at = ?, '
               'active = ? WHERE id = ?', (*row, coupon_id))
    return jsonify(status='ok')


@bp.route('/coupons/<int:coupon_id>', methods=['DELETE'])
@admin_required
def delete_coupon(coupon_id):
    db.execute('DELETE FROM coupons WHERE id = ?', (coupon_id,))
    return jsonify(status='ok')


# ═══════════════════════════════════════════════
# SERVERS
# ═══════════════════════════════════════════════

def _server(server_id):
    server = db.get_one('SELECT * FROM servers WHERE id = ?', (server_id,))
    if not server:
        raise ApiError('Server not found', 404)
    return server


@bp.route('/servers')
@admin_required
def servers():
    return jsonify(db.query('SELECT s.*, u.email FROM servers s JOIN users u ON u.id = s.user_id '
                            'ORDER BY s.created_at DESC, s.id DESC'))


@bp.route('/servers/expiring')
@admin_required
def expiring_servers():
    soon = to_iso(utcnow() + datetime.timedelta(hours=24))
    return jsonify(db.query("SELECT * FROM servers WHERE status = 'active' AND expires_at <= ? "
                            "ORDER BY expires_at ASC", (soon,)))


@bp.route('/servers/suspended')
@admin_required
def suspended_servers():
    return jsonify(db.query("SELECT * FROM servers WHERE status = 'suspended' ORDER BY suspended_at DESC"))


@bp.route('/servers/<int:server_id>/suspend', methods=['POST'])
@admin_required
def suspend_server(server_id):
    server = _server(server_id)
    service('panel').suspend_server(server['pterodactyl_server_id'])
    db.execute("UPDATE servers SET status = 'suspended', suspended_at = ? WHERE id = ?", (now_iso(), server['id']))
    log.info('Admin %s suspended server %s', g.user['id'], server['id'])
    return jsonify(status='suspended')


@bp.route('/servers/<int:server_id>', methods=['DELETE'])
@admin_required
def delete_server(server_id):
    server = _server(server_id)
    if server['pterodactyl_server_id']:
        service('panel').delete_server(server['pterodactyl_server_id'])
    db.execute("UPDATE servers SET status = 'deleted' WHERE id = ?", (server['id'],))
    log.info('Admin %s deleted server %s', g.user['id'], server['id'])
    return jsonify(status='deleted')


# ═══════════════════════════════════════════════
# COIN SETTINGS / UTR
# ═══════════════════════════════════════════════

@bp.route('/coin-settings', methods=['PATCH'])
@admin_required
def coin_settings():
    body = parse(CoinSettings)
    db.execute('UPDATE coin_settings SET coins_per_minute = ? WHERE id = 1', (body.coins_per_minute,))
    return jsonify(status='ok')


@bp.route('/utr')
@admin_required
def utr_submissions():
    return jsonify(db.query('SELECT u.email, ut.* FROM utr_submissions ut JOIN users u ON u.id = ut.user_id '
                            'ORDER BY ut.created_at DESC, ut.id DESC'))


def _settle(submission_id, status):
    """Move a pending submission to `status` exactly once; approval credits the balance in the same commit."""
    with db.transaction() as conn:
        row = conn.execute("SELECT * FROM utr_submissions WHERE id = ? AND status = 'pending'",
                           (submission_id,)).fetchone()
        if not row:
            raise ApiError('Submission not found', 404)
        cur = conn.execute("UPDATE utr_submissions SET status = ? WHERE id = ? AND status = 'pending'",
                           (status, submission_id))
        if cur.rowcount != 1:
            raise ApiError('Submission not found', 404)
        if status == 'approved':
            conn.execute('UPDATE users SET balance = balance + ? WHERE id = ?', (row['amount'], row['user_id']))
    remove_file(row['screenshot_path'])
    log.info('UTR %s %s (amount %s, user %s)', submission_id, status, row['amount'], row['user_id'])
    return jsonify(status=status)


@bp.route('/utr/<int:submission_id>/approve', methods=['PATCH'])
@admin_required
def approve_utr(submission_id):
    return _settle(submission_id, 'approved')


@bp.route('/utr/<int:submission_id>/reject', methods=['PATCH'])
@admin_required
def reject_utr(submission_id):
    return _settle(submission_id, 'rejected')
