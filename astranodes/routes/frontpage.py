import json
import logging

from flask import Blueprint, jsonify

from .. import db
from ..durations import now_iso
from ..auth import admin_required
from ..errors import ApiError
from ..extensions import socketio
from ..schemas import LandingPlan, SectionContent, parse

log = logging.getLogger(__name__)

bp = Blueprint('frontpage', __name__, url_prefix='/api')

SECTIONS = ('hero', 'features', 'about', 'stats', 'footer', 'features_page', 'locations_page',
            'about_page', 'knowledgebase_page', 'status_page')


def _loads(raw, fallback):
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return fallback


def all_sections():
    content = {}
    for row in db.query('SELECT section_name, content_json, updated_at FROM site_content'):
        content[row['section_name']] = {'data': _loads(row['content_json'], {}), 'updatedAt': row['updated_at']}
    return content


def public_plan(row):
    return dict(row, features=_loads(row['features'], []), popular=bool(row['popular']), active=bool(row['active']))


def landing_plans(include_inactive=False):
    where = '' if include_inactive else ' WHERE active = 1'
    rows = db.query(f'SELECT * FROM landing_plans{where} ORDER BY popular DESC, price ASC, id ASC')
    return [public_plan(r) for r in rows]


def _broadcast_plans():
    socketio.emit('plans:update', landing_plans())


# ═══════════════════════════════════════════════
# PUBLIC
# ═══════════════════════════════════════════════

@bp.route('/frontpage')
def frontpage():
    return jsonify(all_sections())


@bp.route('/frontpage/landing-plans')
def public_landing_plans():
    return jsonify(landing_plans())


# ═══════════════════════════════════════════════
# ADMIN SECTIONS
# ═══════════════════════════════════════════════

@bp.route('/admin/frontpage')
@admin_required
def admin_frontpage():
    return jsonify(all_sections())


@bp.route('/admin/frontpage/<section>', methods=['PUT'])
@admin_required
def update_section(section):
    if section not in SECTIONS:
        raise ApiError('Unknown section', 400)
    body = parse(SectionContent)
    db.execute("INSERT INTO site_content (section_name, content_json, updated_at) VALUES (?, ?, ?) "
               "ON CONFLICT(section_name) DO UPDATE SET content_json = excluded.content_json, "
               "updated_at = excluded.updated_at", (section, json.dumps(body.content), now_iso()))

    row = db.get_one('SELECT content_json, updated_at FROM site_content WHERE section_name = ?', (section,))
    data = _loads(row['content_json'], {})
    socketio.emit('frontpage:update', {'section': section, 'data': data, 'updatedAt': row['updated_at']})
    log.info('Frontpage section %s updated', section)
    return jsonify(success=True, section=section, data=data, updatedAt=row['updated_at'])


# ═══════════════════════════════════════════════
# ADMIN LANDING PLANS
# ═══════════════════════════════════════════════

def _plan_values():
    body = parse(LandingPlan)
    return (body.name, body.price, body.ram, body.cpu, body.storage, json.dumps(body.features),
            1 if body.popular else 0, 1 if body.active else 0)


def _landing_plan(plan_id):
    row = db.get_one('SELECT * FROM landing_plans WHERE id = ?', (plan_id,))
    if not row:
        raise ApiError('Plan not found', 404)
    return row


@bp.route('/admin/frontpage/landing-plans')
@admin_required
def admin_landing_plans():
    return jsonify(landing_plans(include_inactive=True))


@bp.route('/admin/frontpage/landing-plans', methods=['POST'])
@admin_required
def create_landing_plan():
    plan_id = db.execute('INSERT INTO landing_plans (name, price, ram, cpu, storage, features, popular, active) '
                         'VALUES (?, ?, ?, ?, ?, ?, ?, ?)', _plan_values())
    _broadcast_plans()
    return jsonify(public_plan(_landing_plan(plan_id))), 201


@bp.route('/admin/frontpage/landing-plans/<int:plan_id>', methods=['PUT'])
@admin_required
def update_landing_plan(plan_id):
    _landing_plan(plan_id)
    db.execute("UPDATE landing_plans SET name = ?, price = ?, ram = ?, cpu = ?, storage = ?, features = ?, "
               "popular = ?, active = ?, updated_at = ? WHERE id = ?", (*_plan_values(), now_iso(), plan_id))
    _broadcast_plans()
    return jsonify(public_plan(_landing_plan(plan_id)))


@bp.route('/admin/frontpage/landing-plans/<int:plan_id>', methods=['DELETE'])
@admin_required
def delete_landing_plan(plan_id):
    _landing_plan(plan_id)
    db.execute('DELETE FROM landing_plans WHERE id = ?', (plan_id,))
    _broadcast_plans()
    return jsonify(success=True)


@bp.route('/admin/frontpage/landing-plans/<int:plan_id>/toggle-<any(active, popular):flag>', methods=['PATCH'])
@admin_required
def toggle_landing_plan(plan_id, flag):
    plan = _landing_plan(plan_id)
    value = 0 if plan[flag] else 1
    db.execute(f"UPDATE landing_plans SET {flag} = ?, updated_at = ? WHERE id = ?", (value, now_iso(), plan_id))
    _broadcast_plans()
    return jsonify({'success': True, flag: bool(value)})
