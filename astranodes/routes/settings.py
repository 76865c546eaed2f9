import logging
import time
from functools import wraps

from flask import Blueprint, current_app, request

from .. import db
from ..auth import admin_required
from ..db import DEFAULT_SITE_SETTINGS
from ..errors import ApiError, fail, ok
from ..schemas import SiteSettings, parse
from ..uploads import save_site_asset

log = logging.getLogger(__name__)

bp = Blueprint('settings', __name__, url_prefix='/api')

FAVICON_EXT = {'.ico', '.png', '.svg'}

# request field -> column
SETTING_COLUMNS = {
    'siteName': 'site_name',
    'heroTitle': 'hero_title',
    'heroSubtitle': 'hero_subtitle',
    'backgroundOverlayOpacity': 'background_overlay_opacity',
    'maintenanceMode': 'maintenance_mode',
}


def settings_row_id():
    row = db.get_one('SELECT id FROM site_settings ORDER BY id ASC LIMIT 1')
    if row:
        return row['id']
    cols = ', '.join(DEFAULT_SITE_SETTINGS)
    marks = ', '.join('?' for _ in DEFAULT_SITE_SETTINGS)
    return db.execute(f'INSERT INTO site_settings ({cols}) VALUES ({marks})', tuple(DEFAULT_SITE_SETTINGS.values()))


@bp.route('/settings/payment')
def payment_settings():
    return ok('Payment settings loaded', {
        'upiId': current_app.config.get('UPI_ID') or None,
        'upiName': current_app.config.get('UPI_NAME') or None,
    })


@bp.route('/settings/site')
def site_settings():
    data = db.get_one('SELECT * FROM site_settings ORDER BY id ASC LIMIT 1') or DEFAULT_SITE_SETTINGS
    opacity = data.get('background_overlay_opacity')
    return ok('Site settings loaded', {
        'siteName': data.get('site_name') or 'AstraNodes',
        'backgroundImage': data.get('background_image') or '',
        'backgroundOverlayOpacity': float(opacity if opacity is not None else 0.45),
        'faviconPath': data.get('favicon_path') or '',
        'logoPath': data.get('logo_path') or '',
        'heroTitle': data.get('hero_title') or '',
        'heroSubtitle': data.get('hero_subtitle') or '',
        'maintenanceMode': bool(data.get('maintenance_mode')),
    })


@bp.route('/admin/settings', methods=['PUT'])
@admin_required
def update_site_settings():
    body = parse(SiteSettings).model_dump(exclude_none=True)
    row_id = settings_row_id()
    changes = {SETTING_COLUMNS[k]: v for k, v in body.items()}
    if 'maintenance_mode' in changes:
        changes['maintenance_mode'] = 1 if changes['maintenance_mode'] else 0
    if changes:
        sets = ', '.join(f'{c} = ?' for c in changes)
        db.execute(f'UPDATE site_settings SET {sets} WHERE id = ?', (*changes.values(), row_id))
        log.info('Site settings updated: %s', ', '.join(changes))
    return ok('Site settings updated')


def envelope_errors(f):
    """Asset uploads answer in the {success, message, data} envelope, errors included."""
    @wraps(f)
    def wrapper(*a, **kw):
        try:
            return f(*a, **kw)
        except ApiError as e:
            return fail(e.message, e.status_code)
    return wrapper


def _store_asset(field, kind, column, label, allowed_ext=None):
    storage = request.files.get(field)
    if not storage or not storage.filename:
        raise ApiError(f'{label} file is required', 400)
    path = save_site_asset(storage, kind, allowed_ext)
    db.execute(f'UPDATE site_settings SET {column} = ? WHERE id = ?', (path, settings_row_id()))
    log.info('%s stored at %s', label, path)
    return path


@bp.route('/admin/settings/background-image', methods=['POST'])
@admin_required
@envelope_errors
def upload_background():
    path = _store_asset('background', 'background', 'background_image', 'Background image')
    return ok('Background image updated', {'backgroundImage': path})


@bp.route('/admin/settings/favicon', methods=['POST'])
@admin_required
@envelope_errors
def upload_favicon():
    path = _store_asset('favicon', 'favicon', 'favicon_path', 'Favicon', FAVICON_EXT)
    return ok('Favicon updated', {'faviconPath': path, 'version': int(time.time() * 1000)})


@bp.route('/admin/settings/logo', methods=['POST'])
@admin_required
@envelope_errors
def upload_logo():
    path = _store_asset('logo', 'logo', 'logo_path', 'Logo')
    return ok('Logo updated', {'logoPath': path, 'version': int(time.time() * 1000)})
