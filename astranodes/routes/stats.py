import logging

from flask import Blueprint, jsonify

from .. import db
from ..adsterra import public_placement
from ..auth import admin_required
from ..extensions import service

log = logging.getLogger(__name__)

bp = Blueprint('stats', __name__, url_prefix='/api')


@bp.route('/stats')
def stats():
    servers = db.get_one("SELECT COUNT(*) AS count FROM servers WHERE status = 'active'")
    users = db.get_one('SELECT COUNT(*) AS count FROM users')
    return jsonify(activeServers=servers['count'], totalUsers=users['count'])


# ═══════════════════════════════════════════════
# ADS
# ═══════════════════════════════════════════════

@bp.route('/ads/coins')
def coins_ads():
    placements = service('adsterra').coins_page_placements()
    body = {slot: public_placement(placements.get(slot), slot) for slot in ('nativeBanner', 'banner')}
    log.debug('Coins ads: native=%s banner=%s',
              (body['nativeBanner'] or {}).get('id'), (body['banner'] or {}).get('id'))
    return jsonify(body)


@bp.route('/ads/test')
@admin_required
def ads_test():
    placements = service('adsterra').validate_config()
    return jsonify(
        success=True,
        message='Adsterra configuration is valid',
        totalPlacements=len(placements),
        placements=[{
            'id': p.get('id'),
            'title': p.get('title'),
            'alias': p.get('alias'),
            'key': p.get('key') or None,
            'format': p.get('format') or None,
            'width': p.get('width'),
            'height': p.get('height'),
            'direct_url': bool(p.get('direct_url')),
        } for p in placements],
    )
