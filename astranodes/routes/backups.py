from flask import Blueprint, g, jsonify

from .. import backups
from ..auth import login_required
from ..durations import utcnow
from ..errors import ApiError
from ..extensions import service
from ..schemas import BackupCreate, parse
from .manage import owned_server

bp = Blueprint('backups', __name__, url_prefix='/api/servers')


def _tracked_or_404(backup_uuid):
    if not backups.find_backup(g.server['id'], backup_uuid):
        raise ApiError('Backup not found', 404)


@bp.route('/<server_id>/backups')
@login_required
@owned_server
def list_backups():
    rows = backups.tracked_backups(g.server['id'])
    items = [{
        'uuid': b['uuid'],
        'name': b['name'],
        'created_at': b['created_at'],
        'is_successful': True,
        'tracked': True,
    } for b in rows]
    return jsonify(backups=items, limit=backups.backup_limit(g.server), used=len(items))


@bp.route('/<server_id>/backups', methods=['POST'])
@login_required
@owned_server
def create_backup():
    body = parse(BackupCreate)
    limit = backups.backup_limit(g.server)
    if limit == 0:
        raise ApiError('Your plan does not include backups', 403)
    if len(backups.tracked_backups(g.server['id'])) >= limit:
        raise ApiError(f'Backup limit reached ({limit}). Please delete old backups first.', 403)

    name = body.name or f"backup-{utcnow().strftime('%Y-%m-%d')}"
    backup_uuid = backups.create_backup(service('wings'), g.server, g.ptero, name)
    return jsonify(message='Backup created successfully', uuid=backup_uuid), 201


@bp.route('/<server_id>/backups/<backup_uuid>', methods=['DELETE'])
@login_required
@owned_server
def delete_backup(backup_uuid):
    _tracked_or_404(backup_uuid)
    backups.delete_backup(service('wings'), g.server, g.ptero, backup_uuid)
    return jsonify(message='Backup deleted successfully')


@bp.route('/<server_id>/backups/<backup_uuid>/restore', methods=['POST'])
@login_required
@owned_server
def restore_backup(backup_uuid):
    _tracked_or_404(backup_uuid)
    service('wings').restore_backup(g.ptero['uuid'], g.ptero['node'], backup_uuid)
    return jsonify(message='Backup restore initiated successfully')


@bp.route('/<server_id>/backups/<backup_uuid>/download')
@login_required
@owned_server
def download_backup(backup_uuid):
    _tracked_or_404(backup_uuid)
    url = service('wings').backup_download_url(g.ptero['uuid'], g.ptero['node'], backup_uuid)
    return jsonify(url=url)
