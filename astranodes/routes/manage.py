import logging
import time
from functools import wraps

import requests
from flask import Blueprint, Response, current_app, g, jsonify, request

from .. import db
from ..auth import login_required
from ..errors import ApiError, PanelError
from ..extensions import service
from ..plugins import PROJECT_TYPES, project_type, sanitize_filename
from ..schemas import (Command, CreateFolder, DeleteFiles, DeletePlugin, InstallPlugin, PlayerAction, Power,
                       Properties, RenameFiles, StartupVariable, Version, World, WriteFile, parse)
from ..status import ping_players

log = logging.getLogger(__name__)

bp = Blueprint('manage', __name__, url_prefix='/api/servers')

EULA = 'eula=true\n'


def owned_server(f):
    """Resolve <server_id> to the caller's live server plus its panel details (g.server, g.ptero)."""
    @wraps(f)
    def wrapper(server_id, *a, **kw):
        try:
            sid = int(server_id)
        except (TypeError, ValueError):
            sid = 0
        if sid <= 0:
            return jsonify(error='Invalid server ID'), 400

        server = db.get_one("SELECT * FROM servers WHERE id = ? AND user_id = ? AND status != 'deleted'",
                            (sid, g.user['id']))
        if not server:
            return jsonify(error='Server not found or access denied'), 404
        try:
            g.ptero = service('panel').get_server(server['pterodactyl_server_id'])
        except PanelError:
            return jsonify(error='Failed to reach server panel'), 502
        g.server = server
        return f(*a, **kw)

    return wrapper


def target():
    """(uuid, node) pair every Wings call needs."""
    return g.ptero['uuid'], g.ptero['node']


def _resources():
    try:
        return service('wings').resources(*target())
    except PanelError:
        return None


def parse_properties(raw):
    props = {}
    for line in raw.split('\n'):
        t = line.strip()
        if not t or t.startswith('#'):
            continue
        key, sep, value = t.partition('=')
        if sep and key.strip():
            props[key.strip()] = value.strip()
    return props


def delete_world(world_name):
    wings = service('wings')
    names = {world_name, f'{world_name}_nether', f'{world_name}_the_end'}
    existing = [f['name'] for f in wings.list_files(*target(), '/') if not f['is_file'] and f['name'] in names]
    if existing:
        wings.delete_files(*target(), '/', existing)
    return existing


# ═══════════════════════════════════════════════
# OVERVIEW / POWER
# ═══════════════════════════════════════════════

@bp.route('/<server_id>/manage')
@login_required
@owned_server
def overview():
    p = g.ptero
    return jsonify(server={
        'id': g.server['id'],
        'name': g.server['name'],
        'status': g.server['status'],
        'pterodactyl_id': p['id'],
        'identifier': p['identifier'],
        'node': p['node'],
        'limits': p['limits'],
        'feature_limits': p['feature_limits'],
        'allocations': p['allocations'],
        'is_suspended': p['suspended'],
        'expires_at': g.server['expires_at'],
    }, resources=_resources(), players=ping_players(p))


@bp.route('/<server_id>/command', methods=['POST'])
@login_required
@owned_server
def command():
    body = parse(Command)
    service('wings').send_command(*target(), body.command)
    return jsonify(success=True)


@bp.route('/<server_id>/power', methods=['POST'])
@login_required
@owned_server
def power():
    body = parse(Power)
    wings = service('wings')
    if body.signal in ('start', 'restart'):
        try:
            wings.write_file(*target(), '/eula.txt', EULA)
        except PanelError:
            log.warning('Could not pre-accept EULA for server %s', g.server['id'])
    wings.power(*target(), body.signal)
    return jsonify(success=True)


@bp.route('/<server_id>/eula', methods=['POST'])
@login_required
@owned_server
def eula():
    service('wings').write_file(*target(), '/eula.txt', EULA)
    return jsonify(success=True)


# ═══════════════════════════════════════════════
# FILES
# ═══════════════════════════════════════════════

@bp.route('/<server_id>/files')
@login_required
@owned_server
def list_files():
    return jsonify(service('wings').list_files(*target(), request.args.get('path') or '/'))


@bp.route('/<server_id>/file')
@login_required
@owned_server
def read_file():
    path = request.args.get('path')
    if not path:
        raise ApiError('Path required', 400)
    content = service('wings').file_contents(*target(), path)
    return Response(content, mimetype='text/plain')


@bp.route('/<server_id>/file/write', methods=['POST'])
@login_required
@owned_server
def write_file():
    body = parse(WriteFile)
    service('wings').write_file(*target(), body.path, body.content)
    return jsonify(success=True)


@bp.route('/<server_id>/file/delete', methods=['POST'])
@login_required
@owned_server
def delete_files():
    body = parse(DeleteFiles)
    service('wings').delete_files(*target(), body.root, body.files)
    return jsonify(success=True)


@bp.route('/<server_id>/file/create-folder', methods=['POST'])
@login_required
@owned_server
def create_folder():
    body = parse(CreateFolder)
    service('wings').create_directory(*target(), body.root, body.name)
    return jsonify(success=True)


@bp.route('/<server_id>/file/rename', methods=['POST'])
@login_required
@owned_server
def rename_files():
    body = parse(RenameFiles)
    files = [pair.model_dump(by_alias=True) for pair in body.files]
    service('wings').rename_files(*target(), body.root, files)
    return jsonify(success=True)


# ═══════════════════════════════════════════════
# PROPERTIES / WORLDS
# ═══════════════════════════════════════════════

@bp.route('/<server_id>/properties')
@login_required
@owned_server
def get_properties():
    raw = service('wings').file_contents(*target(), '/server.properties')
    return jsonify(raw=raw, properties=parse_properties(raw))


@bp.route('/<server_id>/properties', methods=['PUT'])
@login_required
@owned_server
def put_properties():
    body = parse(Properties)
    service('wings').write_file(*target(), '/server.properties', body.content)
    return jsonify(success=True)


@bp.route('/<server_id>/world/delete', methods=['POST'])
@login_required
@owned_server
def world_delete():
    body = parse(World)
    return jsonify(success=True, deleted=delete_world(body.world_name))


@bp.route('/<server_id>/world/reset', methods=['POST'])
@login_required
@owned_server
def world_reset():
    body = parse(World)
    wings = service('wings')
    wings.power(*target(), 'stop')
    time.sleep(current_app.config.get('WORLD_RESET_DELAY', 5))
    deleted = delete_world(body.world_name)
    wings.power(*target(), 'start')
    log.info('World %s reset on server %s', body.world_name, g.server['id'])
    return jsonify(success=True, deleted=deleted, message='World reset initiated. Server is restarting.')


# ═══════════════════════════════════════════════
# PLUGINS
# ═══════════════════════════════════════════════

@bp.route('/<server_id>/plugins/sources')
@login_required
@owned_server
def plugin_sources():
    return jsonify(modrinth=True, curseforge=service('plugins').has_curseforge)


@bp.route('/<server_id>/plugins/search')
@login_required
@owned_server
def plugin_search():
    q = request.args.get('q', '')
    type_ = request.args.get('type')
    type_ = type_ if type_ in PROJECT_TYPES else 'plugin'
    source = request.args.get('source')
    source = source if source in ('modrinth', 'curseforge', 'all') else 'all'
    if len(q) < 2:
        q = {'mod': 'fabric', 'datapack': 'vanilla'}.get(type_, 'essentials')
    return jsonify(service('plugins').search(q, type_=type_, source=source))


@bp.route('/<server_id>/plugins/<slug>/versions')
@login_required
@owned_server
def plugin_versions(slug):
    try:
        return jsonify(service('plugins').get_versions(slug))
    except requests.RequestException:
        log.exception('Failed to fetch versions for %s', slug)
        raise ApiError('Failed to fetch versions', 502)


@bp.route('/<server_id>/plugins/install', methods=['POST'])
@login_required
@owned_server
def plugin_install():
    body = parse(InstallPlugin)
    if body.source == 'modrinth' and not body.slug:
        raise ApiError('slug is required for Modrinth installs', 400)
    if body.source == 'curseforge' and not body.projectId:
        raise ApiError('projectId is required for CurseForge installs', 400)
    result = service('plugins').install(*target(), source=body.source, slug=body.slug,
                                        project_id=body.projectId, file_id=body.fileId,
                                        version_id=body.versionId, type_=body.type)
    return jsonify(result)


@bp.route('/<server_id>/plugins')
@login_required
@owned_server
def installed_plugins():
    directory = '/mods' if request.args.get('type') == 'mod' else '/plugins'
    try:
        files = service('wings').list_files(*target(), directory)
    except PanelError as e:
        if e.status_code == 404:
            return jsonify([])
        raise
    return jsonify([f for f in files if f['is_file'] and (f['name'] or '').endswith('.jar')])


@bp.route('/<server_id>/plugins/delete', methods=['POST'])
@login_required
@owned_server
def plugin_delete():
    body = parse(DeletePlugin)
    filename = sanitize_filename(body.filename)
    root = '/' + project_type(body.type)['dir'].strip('./')
    service('wings').delete_files(*target(), root, [filename])
    return jsonify(success=True)


# ═══════════════════════════════════════════════
# VERSION / STARTUP / PLAYERS
# ═══════════════════════════════════════════════

@bp.route('/<server_id>/version', methods=['POST'])
@login_required
@owned_server
def change_version():
    body = parse(Version)
    panel = service('panel')
    panel.update_startup_variable(g.server['pterodactyl_server_id'], 'MINECRAFT_VERSION', body.version)
    panel.reinstall_server(g.server['pterodactyl_server_id'])
    return jsonify(success=True, message=f'Version change to {body.version} initiated. Server is reinstalling.')


@bp.route('/<server_id>/settings')
@login_required
@owned_server
def server_settings():
    p = g.ptero
    try:
        variables = service('panel').get_startup_variables(g.server['pterodactyl_server_id'])
    except PanelError:
        variables = []
    return jsonify(
        name=p['name'],
        identifier=p['identifier'],
        uuid=p['uuid'],
        node=p['node'],
        limits=p['limits'],
        feature_limits=p['feature_limits'],
        allocations=p['allocations'],
        suspended=p['suspended'],
        resources=_resources(),
        startup_variables=variables,
    )


@bp.route('/<server_id>/startup')
@login_required
@owned_server
def startup_variables():
    return jsonify(service('panel').get_startup_variables(g.server['pterodactyl_server_id']))


@bp.route('/<server_id>/startup', methods=['PUT'])
@login_required
@owned_server
def update_startup():
    body = parse(StartupVariable)
    service('panel').update_startup_variable(g.server['pterodactyl_server_id'], body.key, body.value)
    return jsonify(success=True)


@bp.route('/<server_id>/players', methods=['POST'])
@login_required
@owned_server
def players():
    body = parse(PlayerAction)
    if body.action != 'list' and not body.player:
        raise ApiError('Player name required', 400)
    cmd = 'list' if body.action == 'list' else f'{body.action} {body.player}'
    service('wings').send_command(*target(), cmd)
    return jsonify(success=True, command=cmd)
