"""Direct Wings daemon access using each node's daemon token, fetched through the Application API."""
import logging
import threading
import time
import uuid

import jwt
import requests

from .errors import PanelError

log = logging.getLogger(__name__)

NODE_CACHE_TTL = 600
ZERO_UUID = '00000000-0000-0000-0000-000000000000'


class WingsClient:

    def __init__(self, panel, timeout=30):
        self.panel = panel
        self.timeout = timeout
        self._cache = {}
        self._lock = threading.Lock()

    # ═══════════════════════════════════════════════
    # NODE CONFIG
    # ═══════════════════════════════════════════════

    def node_config(self, node_id):
        with self._lock:
            cached = self._cache.get(node_id)
            if cached and time.monotonic() - cached['cached_at'] < NODE_CACHE_TTL:
                return cached

        try:
            node = self.panel.get_node(node_id)
            daemon = self.panel.get_node_configuration(node_id)
        except requests.RequestException as e:
            log.error('Could not load config for node %s: %s', node_id, e)
            raise PanelError('Failed to reach server panel', 502)

        config = {
            'fqdn': node['fqdn'],
            'scheme': node.get('scheme', 'https'),
            'port': node.get('daemon_listen', 8080),
            'token': daemon.get('token'),
            'cached_at': time.monotonic(),
        }
        if not config['token']:
            log.warning('Node %s configuration has no daemon token', node_id)
        log.info('Node %s config cached: %s://%s:%s', node_id, config['scheme'], config['fqdn'], config['port'])
        with self._lock:
            self._cache[node_id] = config
        return config

    def invalidate(self, node_id):
        with self._lock:
            self._cache.pop(node_id, None)

    def base_url(self, node):
        return f"{node['scheme']}://{node['fqdn']}:{node['port']}"

    def request(self, node_id, server_uuid, method, path, action, content_type='application/json',
                timeout=None, **kw) -> requests.Response:
        node = self.node_config(node_id)
        url = f'{self.base_url(node)}/api/servers/{server_uuid}{path}'
        headers = {
            'Authorization': f"Bearer {node['token']}",
            'Accept': 'application/json',
            'Content-Type': content_type,
        }
        try:
            # Wings usually runs with a self-signed certificate
            resp = requests.request(method, url, headers=headers, timeout=timeout or self.timeout,
                                    verify=False, **kw)
            resp.raise_for_status()
            return resp
        except requests.RequestException as e:
            status = e.response.status_code if e.response is not None else None
            log.error('%s failed on %s: %s (status=%s)', action, server_uuid, e, status)
            if status == 401:
                # daemon token rotated; reload it on the next call
                self.invalidate(node_id)
            raise PanelError(f'{action} failed. Please try again.', 404 if status == 404 else 502)

    # ═══════════════════════════════════════════════
    # STATE / POWER
    # ═══════════════════════════════════════════════

    def resources(self, server_uuid, node_id):
        d = self.request(node_id, server_uuid, 'GET', '', 'Get server resources').json()
        u = d.get('utilization') or {}
        net = u.get('network') or {}
        return {
            'current_state': d.get('state'),
            'is_suspended': d.get('is_suspended'),
            'resources': {
                'memory_bytes': u.get('memory_bytes', 0),
                'cpu_absolute': u.get('cpu_absolute', 0),
                'disk_bytes': u.get('disk_bytes', 0),
                'network_rx_bytes': net.get('rx_bytes', 0),
                'network_tx_bytes': net.get('tx_bytes', 0),
                'uptime': u.get('uptime', 0),
            },
        }

    def send_command(self, server_uuid, node_id, command):
        self.request(node_id, server_uuid, 'POST', '/commands', 'Send command', json={'commands': [command]})

    def power(self, server_uuid, node_id, signal):
        self.request(node_id, server_uuid, 'POST', '/power', 'Power action', json={'action': signal})

    # ═══════════════════════════════════════════════
    # FILES
    # ═══════════════════════════════════════════════

    def list_files(self, server_uuid, node_id, directory='/'):
        data = self.request(node_id, server_uuid, 'GET', '/files/list-directory', 'List files',
                            params={'directory': directory}).json()
        return [{
            'name': f.get('name'),
            'mode': f.get('mode'),
            'size': f.get('size'),
            'is_file': f.get('file'),
            'is_symlink': f.get('symlink'),
            'mimetype': f.get('mime'),
            'created_at': f.get('created'),
            'modified_at': f.get('modified'),
        } for f in data or []]

    def file_contents(self, server_uuid, node_id, path):
        return self.request(node_id, server_uuid, 'GET', '/files/contents', 'Get file contents',
                            params={'file': path}).text

    def write_file(self, server_uuid, node_id, path, content):
        self.request(node_id, server_uuid, 'POST', '/files/write', 'Write file',
                     content_type='text/plain', params={'file': path}, data=content.encode('utf-8'))

    def upload_file(self, server_uuid, node_id, path, blob):
        self.request(node_id, server_uuid, 'POST', '/files/write', 'Upload file',
                     content_type='application/octet-stream', timeout=120, params={'file': path}, data=blob)

    def delete_files(self, server_uuid, node_id, root, files):
        self.request(node_id, server_uuid, 'POST', '/files/delete', 'Delete files',
                     json={'root': root, 'files': files})

    def create_directory(self, server_uuid, node_id, root, name):
        self.request(node_id, server_uuid, 'POST', '/files/create-directory', 'Create directory',
                     json={'name': name, 'path': root})

    def rename_files(self, server_uuid, node_id, root, files):
        self.request(node_id, server_uuid, 'PUT', '/files/rename', 'Rename file',
                     json={'root': root, 'files': files})

    # ═══════════════════════════════════════════════
    # BACKUPS
    # ═══════════════════════════════════════════════

    def create_backup(self, server_uuid, node_id, backup_uuid):
        self.request(node_id, server_uuid, 'POST', '/backup', 'Create backup',
                     json={'adapter': 'wings', 'uuid': backup_uuid, 'ignore': ''})

    def delete_backup(self, server_uuid, node_id, backup_uuid):
        try:
            self.request(node_id, server_uuid, 'DELETE', f'/backup/{backup_uuid}', 'Delete backup')
        except PanelError as e:
            if e.status_code != 404:
                raise
            log.info('Backup %s already gone', backup_uuid)

    def restore_backup(self, server_uuid, node_id, backup_uuid):
        self.request(node_id, server_uuid, 'POST', f'/backup/{backup_uuid}/restore', 'Restore backup',
                     json={'adapter': 'wings', 'truncate_directory': False, 'download_url': ''})

    def backup_download_url(self, server_uuid, node_id, backup_uuid):
        node = self.node_config(node_id)
        token = jwt.encode({
            'backup_uuid': backup_uuid,
            'server_uuid': server_uuid,
            'unique_id': uuid.uuid4().hex,
            'iat': int(time.time()),
            'exp': int(time.time()) + 900,
        }, node['token'], algorithm='HS256')
        return f'{self.base_url(node)}/download/backup?token={token}'

    # ═══════════════════════════════════════════════
    # CONSOLE
    # ═══════════════════════════════════════════════

    def console_token(self, server_uuid, node_id):
        """Signed console JWT plus the websocket URL and bearer token for the daemon."""
        node = self.node_config(node_id)
        now = int(time.time())
        token = jwt.encode({
            'server_uuid': server_uuid,
            'permissions': ['*'],
            'user_uuid': ZERO_UUID,
            'iss': self.panel.base_url,
            'jti': str(uuid.uuid4()),
            'iat': now,
            'exp': now + 600,
        }, node['token'], algorithm='HS256')
        ws_scheme = 'wss' if node['scheme'] == 'https' else 'ws'
        return {
            'token': token,
            'bearer': node['token'],
            'socket': f"{ws_scheme}://{node['fqdn']}:{node['port']}/api/servers/{server_uuid}/ws",
            'origin': self.panel.base_url,
        }
