import json
import logging
import os
from urllib.parse import urlparse

import requests

from .errors import ApiError, PanelError

log = logging.getLogger(__name__)

MODRINTH_API = 'https://api.modrinth.com/v2'
CURSEFORGE_API = 'https://api.curseforge.com/v1'
CF_GAME_MINECRAFT = 432
CF_CLASS_PLUGINS = 5
CF_CLASS_MODS = 6

ALLOWED_DOWNLOAD_HOSTS = {
    'cdn.modrinth.com',
    'edge.forgecdn.net',
    'mediafilez.forgecdn.net',
    'media.forgecdn.net',
}
MAX_DOWNLOAD_BYTES = 500 * 1024 * 1024

PROJECT_TYPES = {
    'plugin': {'dir': 'plugins', 'loaders': ['paper', 'spigot', 'purpur', 'bukkit', 'folia']},
    'mod': {'dir': 'mods', 'loaders': ['forge', 'fabric', 'neoforge', 'quilt']},
    'datapack': {'dir': 'world/datapacks', 'loaders': ['datapack']},
    'shader': {'dir': 'shaderpacks', 'loaders': ['iris', 'optifine', 'canvas']},
    'resourcepack': {'dir': 'resourcepacks', 'loaders': ['minecraft']},
    'modpack': {'dir': '.', 'loaders': ['forge', 'fabric', 'neoforge', 'quilt']},
}


def project_type(name):
    return PROJECT_TYPES.get(name) or PROJECT_TYPES['plugin']


def validate_download_url(url):
    parsed = urlparse(url or '')
    if parsed.scheme != 'https':
        raise ApiError('Only HTTPS download URLs are allowed', 400)
    if parsed.hostname not in ALLOWED_DOWNLOAD_HOSTS:
        raise ApiError(f'Untrusted download host: {parsed.hostname}', 400)


def sanitize_filename(name):
    if not name or not isinstance(name, str):
        raise ApiError('Missing filename', 400)
    safe = os.path.basename(name.replace('\\', '/'))
    if not safe or safe.startswith('.') or '..' in safe:
        raise ApiError('Invalid filename', 400)
    return safe


class PluginInstaller:
    """Search Modrinth/CurseForge and push the chosen file to a server through Wings."""

    def __init__(self, wings, curseforge_key=None, timeout=10):
        self.wings = wings
        self.curseforge_key = curseforge_key
        self.timeout = timeout

    @property
    def has_curseforge(self):
        return bool(self.curseforge_key)

    def _cf_headers(self):
        return {'x-api-key': self.curseforge_key, 'Accept': 'application/json'}

    # ═══════════════════════════════════════════════
    # MODRINTH
    # ═══════════════════════════════════════════════

    def search_modrinth(self, query, type_='plugin', limit=15, offset=0):
        facet = f"project_type:{type_ if type_ in PROJECT_TYPES else 'plugin'}"
        resp = requests.get(f'{MODRINTH_API}/search', timeout=self.timeout, params={
            'query': query,
            'limit': limit,
            'offset': offset,
            'facets': json.dumps([[facet]]),
            'index': 'relevance',
        })
        resp.raise_for_status()
        body = resp.json()
        hits = [{
            'source': 'modrinth',
            'id': p.get('slug'),
            'slug': p.get('slug'),
            'project_id': p.get('project_id'),
            'title': p.get('title'),
            'description': p.get('description'),
            'downloads': p.get('downloads'),
            'icon_url': p.get('icon_url'),
            'categories': p.get('categories'),
            'author': p.get('author'),
            'latest_version': p.get('latest_version'),
            'date_created': p.get('date_created'),
            'date_modified': p.get('date_modified'),
            'project_type': p.get('project_type'),
            'type': type_,
        } for p in body.get('hits') or []]
        return {'results': hits, 'total': body.get('total_hits') or len(hits)}

    def _modrinth_versions(self, slug):
        resp = requests.get(f'{MODRINTH_API}/project/{slug}/version', timeout=self.timeout)
        if resp.status_code == 404:
            raise ApiError('Project not found', 404)
        resp.raise_for_status()
        return resp.json()

    def get_versions(self, slug):
        return [{
            'id': v.get('id'),
            'version_number': v.get('version_number'),
            'version_type': v.get('version_type'),
            'name': v.get('name'),
            'changelog': v.get('changelog'),
            'date_published': v.get('date_published'),
            'downloads': v.get('downloads'),
            'game_versions': v.get('game_versions'),
            'loaders': v.get('loaders'),
            'files': [{
                'url': f.get('url'),
                'filename': f.get('filename'),
                'primary': f.get('primary'),
                'size': f.get('size'),
                'file_type': f.get('file_type'),
            } for f in v.get('files') or []],
            'dependencies': v.get('dependencies'),
        } for v in self._modrinth_versions(slug)]

    def install_from_modrinth(self, server_uuid, node_id, slug, type_='plugin', version_id=None):
        versions = self._modrinth_versions(slug)
        if not versions:
            raise ApiError('No versions found for this project', 404)

        if version_id:
            target = next((v for v in versions if v.get('id') == version_id), None)
            if not target:
                raise ApiError('Specified version not found', 404)
        else:
            loaders = project_type(type_)['loaders']
            target = next((v for v in versions
                           if any(str(l).lower() in loaders for l in v.get('loaders') or [])), versions[0])

        files = target.get('files') or []
        chosen = (next((f for f in files if f.get('primary')), None)
                  or next((f for f in files if f.get('filename', '').endswith(('.jar', '.zip'))), None)
                  or (files[0] if files else None))
        if not chosen:
            raise ApiError('No downloadable file found in this version', 404)

        blob = download(chosen.get('url'))
        filename = sanitize_filename(chosen.get('filename'))
        self._upload(server_uuid, node_id, project_type(type_)['dir'], filename, blob)
        log.info('Installed %s (%s) from Modrinth on %s', slug, target.get('version_number'), server_uuid)
        return {
            'success': True,
            'source': 'modrinth',
            'name': slug,
            'filename': filename,
            'version': target.get('version_number'),
            'version_id': target.get('id'),
            'type': type_,
        }

    # ═══════════════════════════════════════════════
    # CURSEFORGE
    # ═══════════════════════════════════════════════

    def search_curseforge(self, query, type_='plugin', limit=15, offset=0):
        if not self.has_curseforge:
            return {'results': [], 'total': 0}
        resp = requests.get(f'{CURSEFORGE_API}/mods/search', headers=self._cf_headers(), timeout=self.timeout,
                            params={
                                'gameId': CF_GAME_MINECRAFT,
                                'classId': CF_CLASS_MODS if type_ == 'mod' else CF_CLASS_PLUGINS,
                                'searchFilter': query,
                                'pageSize': limit,
                                'index': offset,
                                'sortField': 2,
                                'sortOrder': 'desc',
                            })
        resp.raise_for_status()
        body = resp.json()
        items = []
        for m in body.get('data') or []:
            latest = m.get('latestFiles') or [{}]
            items.append({
                'source': 'curseforge',
                'id': str(m.get('id')),
                'slug': m.get('slug'),
                'title': m.get('name'),
                'description': m.get('summary'),
                'downloads': m.get('downloadCount'),
                'icon_url': (m.get('logo') or {}).get('thumbnailUrl') or '',
                'categories': [c.get('name') for c in m.get('categories') or []],
                'type': type_,
                'projectId': m.get('id'),
                'fileId': m.get('mainFileId') or latest[0].get('id'),
            })
        total = (body.get('pagination') or {}).get('totalCount') or len(items)
        return {'results': items, 'total': total}

    def install_from_curseforge(self, server_uuid, node_id, project_id, file_id=None, type_='plugin'):
        if not self.has_curseforge:
            raise ApiError('CurseForge API key not configured', 400)

        if not file_id:
            resp = requests.get(f'{CURSEFORGE_API}/mods/{project_id}/files', headers=self._cf_headers(),
                                params={'pageSize': 10}, timeout=self.timeout)
            resp.raise_for_status()
            files = resp.json().get('data') or []
            if not files:
                raise ApiError('No files found for this project', 404)
            file_id = files[0]['id']

        resp = requests.get(f'{CURSEFORGE_API}/mods/{project_id}/files/{file_id}', headers=self._cf_headers(),
                            timeout=self.timeout)
        if resp.status_code == 404:
            raise ApiError('File not found', 404)
        resp.raise_for_status()
        data = resp.json().get('data')
        if not data:
            raise ApiError('File not found', 404)

        url = data.get('downloadUrl')
        if not url:
            # some projects hide downloadUrl; the CDN path is derived from the file id
            fid = str(data['id'])
            url = f"https://edge.forgecdn.net/files/{fid[:4]}/{fid[4:]}/{data.get('fileName')}"

        blob = download(url)
        filename = sanitize_filename(data.get('fileName'))
        self._upload(server_uuid, node_id, 'mods' if type_ == 'mod' else 'plugins', filename, blob)
        log.info('Installed CurseForge file %s on %s', filename, server_uuid)
        return {
            'success': True,
            'source': 'curseforge',
            'name': data.get('displayName') or filename,
            'filename': filename,
            'version': data.get('displayName') or str(data.get('id')),
            'type': type_,
        }

    # ═══════════════════════════════════════════════
    # UNIFIED
    # ═══════════════════════════════════════════════

    def search(self, query, type_='plugin', source='all', limit=15, offset=0):
        responses = []
        if source in ('modrinth', 'all'):
            try:
                responses.append(self.search_modrinth(query, type_, limit, offset))
            except requests.RequestException as e:
                log.warning('Modrinth search failed: %s', e)
        if source in ('curseforge', 'all') and self.has_curseforge and type_ in ('plugin', 'mod'):
            try:
                responses.append(self.search_curseforge(query, type_, limit, offset))
            except requests.RequestException as e:
                log.warning('CurseForge search failed: %s', e)
        results = [item for r in responses for item in r['results']]
        total = max([r['total'] for r in responses] + [0])
        return {'results': results, 'total': total, 'offset': offset, 'limit': limit}

    def install(self, server_uuid, node_id, source='modrinth', slug=None, project_id=None, file_id=None,
                version_id=None, type_='plugin'):
        try:
            if source == 'curseforge':
                return self.install_from_curseforge(server_uuid, node_id, project_id, file_id, type_)
            return self.install_from_modrinth(server_uuid, node_id, slug, type_, version_id)
        except requests.RequestException as e:
            log.error('Plugin install from %s failed: %s', source, e)
            raise ApiError('Failed to fetch plugin from source', 502)

    def _upload(self, server_uuid, node_id, directory, filename, blob):
        current = '/'
        for part in [p for p in directory.split('/') if p and p != '.']:
            try:
                self.wings.create_directory(server_uuid, node_id, current, part)
            except PanelError:
                pass  # already exists
            current += part + '/'
        self.wings.upload_file(server_uuid, node_id, f'{current}{filename}', blob)


def download(url, limit=MAX_DOWNLOAD_BYTES):
    validate_download_url(url)
    with requests.get(url, stream=True, timeout=120) as resp:
        resp.raise_for_status()
        declared = resp.headers.get('Content-Length')
        if declared and declared.isdigit() and int(declared) > limit:
            raise ApiError('Download exceeds the 500 MB limit', 400)
        chunks = []
        size = 0
        for chunk in resp.iter_content(chunk_size=1024 * 64):
            size += len(chunk)
            if size > limit:
                raise ApiError('Download exceeds the 500 MB limit', 400)
            chunks.append(chunk)
    return b''.join(chunks)
