import logging

from flask import Blueprint, g, jsonify

from .. import db
from ..accounts import ensure_panel_user
from ..auth import login_required
from ..catalog import balance_field, get_plan, in_stock, panel_limits, plan_days, price_of, PLAN_TABLES
from ..durations import add_days, parse_iso, renewal_base, to_iso, utcnow
from ..errors import ApiError, PanelError
from ..extensions import service
from ..nodes import eligible_nodes, public_node, select_best_node
from ..schemas import Purchase, Renew, parse

log = logging.getLogger(__name__)

bp = Blueprint('servers', __name__, url_prefix='/api/servers')


@bp.route('/nodes')
@login_required
def nodes():
    return jsonify([public_node(c) for c in eligible_nodes(service('panel'))])


@bp.route('')
@login_required
def list_servers():
    conn = db.get_db()
    rows = conn.execute("SELECT * FROM servers WHERE user_id = ? AND status != 'deleted' "
                        "ORDER BY created_at DESC, id DESC", (g.user['id'],)).fetchall()
    servers = []
    for row in rows:
        server = dict(row)
        plan = get_plan(conn, server['plan_type'], server['plan_id'])
        server['plan'] = plan['name'] if plan else 'Unknown Plan'
        servers.append(server)
    conn.close()
    return jsonify(servers)


@bp.route('/purchase', methods=['POST'])
@login_required
def purchase():
    body = parse(Purchase)
    user = g.user

    conn = db.get_db()
    plan = get_plan(conn, body.plan_type, body.plan_id)
    held = None
    if plan and body.plan_type == 'coin' and plan['one_time_purchase']:
        held = conn.execute("SELECT id FROM servers WHERE user_id = ? AND plan_type = 'coin' AND plan_id = ? "
                            "AND status != 'deleted'", (user['id'], body.plan_id)).fetchone()
    conn.close()

    if not plan:
        raise ApiError('Plan not found', 404)
    if not in_stock(plan):
        raise ApiError('Plan out of stock', 400)
    if held:
        raise ApiError('You already have an active server with this one-time purchase plan. '
                       'You can renew it but cannot purchase it again.', 400)

    price = price_of(body.plan_type, plan)
    field = balance_field(body.plan_type)
    if user[field] < price:
        raise ApiError('Insufficient balance', 400)

    panel = service('panel')
    limits = panel_limits(plan)
    panel_user_id = ensure_panel_user(panel, user)
    node_id, allocation_id = select_best_node(panel, limits['memory'], limits['disk'], body.node_id)
    panel_server_id = panel.create_server(body.server_name, panel_user_id, limits, node_id, allocation_id,
                                          egg_id=body.egg_id)
    expires_at = add_days(None, plan_days(plan))

    try:
        with db.transaction() as tx:
            # re-check inside the write so concurrent purchases cannot overdraw
            cur = tx.execute(f'UPDATE users SET {field} = {field} - ? WHERE id = ? AND {field} >= ?',
                             (price, user['id'], price))
            if cur.rowcount != 1:
                raise ApiError('Insufficient balance', 400)
            if plan['limited_stock']:
                cur = tx.execute(f'UPDATE {PLAN_TABLES[body.plan_type]} SET stock_amount = stock_amount - 1 '
                                 'WHERE id = ? AND stock_amount > 0', (plan['id'],))
                if cur.rowcount != 1:
                    raise ApiError('Plan out of stock', 400)
            tx.execute('INSERT INTO servers (user_id, name, plan_type, plan_id, pterodactyl_server_id, expires_at, '
                       "status, location, software, egg_id) VALUES (?, ?, ?, ?, ?, ?, 'active', ?, ?, ?)",
                       (user['id'], body.server_name, body.plan_type, plan['id'], panel_server_id, expires_at,
                        body.location or '', body.software or 'minecraft', body.egg_id))
    except Exception:
        log.error('Purchase bookkeeping failed, removing panel server %s', panel_server_id)
        try:
            panel.delete_server(panel_server_id)
        except PanelError:
            log.error('Could not remove panel server %s after failed purchase', panel_server_id)
        raise

    log.info('User %s bought %s plan %s (panel server %s)', user['id'], body.plan_type, plan['id'], panel_server_id)
    return jsonify(message='Server created', expires_at=expires_at), 201


@bp.route('/renew', methods=['POST'])
@login_required
def renew():
    body = parse(Renew)
    user = g.user
    now = utcnow()

    conn = db.get_db()
    row = conn.execute('SELECT * FROM servers WHERE id = ? AND user_id = ?', (body.server_id, user['id'])).fetchone()
    server = dict(row) if row else None
    plan = get_plan(conn, server['plan_type'], server['plan_id']) if server else None
    conn.close()

    if not server:
        raise ApiError('Server not found', 404)
    if server['status'] == 'deleted':
        raise ApiError('Server deleted', 400)
    if server['status'] == 'suspended' and server['grace_expires_at']:
        if parse_iso(server['grace_expires_at']) <= now:
            raise ApiError('Grace period expired', 400)
    if not plan:
        raise ApiError('Missing data', 404)

    price = price_of(server['plan_type'], plan)
    field = balance_field(server['plan_type'])
    if user[field] < price:
        raise ApiError('Insufficient balance', 400)

    if server['status'] == 'suspended':
        service('panel').unsuspend_server(server['pterodactyl_server_id'])

    next_expiry = add_days(to_iso(renewal_base(server['expires_at'], now)), plan_days(plan))
    with db.transaction() as tx:
        cur = tx.execute(f'UPDATE users SET {field} = {field} - ? WHERE id = ? AND {field} >= ?',
                         (price, user['id'], price))
        if cur.rowcount != 1:
            raise ApiError('Insufficient balance', 400)
        tx.execute("UPDATE servers SET expires_at = ?, status = 'active', suspended_at = NULL, "
                   "grace_expires_at = NULL WHERE id = ? AND status != 'deleted'", (next_expiry, server['id']))

    log.info('Server %s renewed until %s', server['id'], next_expiry)
    return jsonify(message='Renewed', expires_at=next_expiry)
