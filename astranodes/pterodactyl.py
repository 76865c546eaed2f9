import json
import logging

import requests

from .errors import ApiError, PanelError

log = logging.getLogger(__name__)

PROVISION_FAILED = 'Server provisioning failed. Please try again or contact support.'


class PanelClient:
    """Pterodactyl Application API, authenticated with the admin (PTLA_) key."""

    def __init__(self, base_url, api_key, defaults=None, timeout=15):
        self.base_url = base_url.rstrip('/')
        self.api = f'{self.base_url}/api/application'
        self.timeout = timeout
        self.defaults = defaults or {}
        self.session = requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {api_key}',
            'Accept': 'application/json',
            'Content-Type': 'application/json',
        })

    @classmethod
    def from_config(cls, config):
        return cls(config['PTERODACTYL_URL'], config['PTERODACTYL_API_KEY'], defaults={
            'egg': config['PTERODACTYL_DEFAULT_EGG'],
            'docker_image': config['PTERODACTYL_DEFAULT_DOCKER_IMAGE'],
            'startup': config['PTERODACTYL_DEFAULT_STARTUP'],
            'environment': config['PTERODACTYL_DEFAULT_ENV'],
        })

    def _call(self, method, path, **kw) -> requests.Response:
        resp = self.session.request(method, self.api + path, timeout=self.timeout, **kw)
        resp.raise_for_status()
        return resp

    def request(self, method, path, action, message=None, **kw) -> requests.Response:
        """Call the panel; any failure is logged and re-raised as a generic PanelError."""
        try:
            return self._call(method, path, **kw)
        except requests.RequestException as e:
            status = e.response.status_code if e.response is not None else None
            log.error('%s failed: %s (status=%s)', action, e, status)
            code = 404 if status == 404 else 502
            raise PanelError(message or f'{action} failed. Please try again.', code)

    def paginate(self, path, per_page=50, params=None):
        page = 1
        while True:
            q = dict(params or {}, per_page=per_page, page=page)
            body = self._call('GET', path, params=q).json()
            for item in body.get('data') or []:
                yield item['attributes']
            pagination = (body.get('meta') or {}).get('pagination')
            if not pagination or page >= pagination.get('total_pages', 1):
                break
            page += 1

    # ═══════════════════════════════════════════════
    # USERS
    # ═══════════════════════════════════════════════

    def create_user(self, email, username, first_name, last_name, password):
        log.info('Creating panel user %s', email)
        resp = self.request('POST', '/users', 'User creation', PROVISION_FAILED, json={
            'email': email,
            'username': username,
            'first_name': first_name,
            'last_name': last_name,
            'password': password,
            'language': 'en',
        })
        user_id = resp.json()['attributes']['id']
        log.info('Panel user created with id %s', user_id)
        return user_id

    def get_user_by_email(self, email):
        try:
            body = self._call('GET', '/users', params={'filter[email]': email, 'per_page': 1}).json()
        except requests.RequestException as e:
            log.warning('Panel user lookup for %s failed: %s', email, e)
            return None
        data = body.get('data') or []
        return data[0]['attributes']['id'] if data else None

    def delete_user(self, panel_user_id):
        try:
            self._call('DELETE', f'/users/{panel_user_id}')
        except requests.HTTPError as e:
            if e.response is not None and e.response.status_code == 404:
                log.info('Panel user %s already gone', panel_user_id)
                return
            log.error('User deletion failed: %s', e)
            raise PanelError(PROVISION_FAILED)
        except requests.RequestException as e:
            log.error('User deletion failed: %s', e)
            raise PanelError(PROVISION_FAILED)

    # ═══════════════════════════════════════════════
    # SERVERS
    # ═══════════════════════════════════════════════

    def default_environment(self):
        raw = self.defaults.get('environment') or '{}'
        if isinstance(raw, dict):
            return raw
        try:
            return json.loads(raw)
        except ValueError:
            raise ApiError('Invalid PTERODACTYL_DEFAULT_ENV JSON', 500)

    def create_server(self, name, user_id, limits, node_id, allocation_id, egg_id=None):
        """Create a server on an already chosen node/allocation. `limits` uses MB and whole cores."""
        payload = {
            'name': name,
            'user': user_id,
            'egg': egg_id or self.defaults.get('egg'),
            'node': node_id,
            'allocation': {'default': allocation_id},
            'docker_image': self.defaults.get('docker_image'),
            'startup': self.defaults.get('startup'),
            'environment': self.default_environment(),
            'limits': {
                'memory': limits['memory'],
                'swap': 0,
                'disk': limits['disk'],
                'io': 500,
                'cpu': limits['cpu'] * 100,
            },
            'feature_limits': {
                'databases': 0,
                'allocations': limits.get('allocations') or 0,
                'backups': limits.get('backups') or 0,
            },
            'start_on_completion': True,
        }
        log.info('Creating server %r for panel user %s on node %s', name, user_id, node_id)
        resp = self.request('POST', '/servers', 'Server creation', PROVISION_FAILED, json=payload)
        server_id = resp.json()['attributes']['id']
        log.info('Panel server created with id %s', server_id)
        return server_id

    def suspend_server(self, server_id):
        self.request('POST', f'/servers/{server_id}/suspend', 'Suspension', PROVISION_FAILED)

    def unsuspend_server(self, server_id):
        self.request('POST', f'/servers/{server_id}/unsuspend', 'Unsuspend', PROVISION_FAILED)

    def delete_server(self, server_id):
        try:
            self._call('DELETE', f'/servers/{server_id}')
        except requests.HTTPError as e:
            if e.response is not None and e.response.status_code == 404:
                log.info('Panel server %s already gone', server_id)
                return
            log.error('Server delete failed: %s', e)
            raise PanelError(PROVISION_FAILED)
        except requests.RequestException as e:
            log.error('Server delete failed: %s', e)
            raise PanelError(PROVISION_FAILED)

    def reinstall_server(self, server_id):
        self.request('POST', f'/servers/{server_id}/reinstall', 'Reinstall server')

    def get_server(self, server_id):
        a = self.request('GET', f'/servers/{server_id}', 'Get server details',
                         params={'include': 'allocations'}).json()['attributes']
        allocations = [{
            'id': al['attributes']['id'],
            'ip': al['attributes']['ip'],
            'alias': al['attributes'].get('alias'),
            'port': al['attributes']['port'],
            'is_default': al['attributes'].get('is_default', al['attributes']['id'] == a.get('allocation')),
        } for al in ((a.get('relationships') or {}).get('allocations') or {}).get('data', [])]
        return {
            'id': a['id'],
            'identifier': a.get('identifier'),
            'uuid': a['uuid'],
            'name': a.get('name'),
            'description': a.get('description'),
            'status': a.get('status'),
            'suspended': a.get('suspended'),
            'limits': a.get('limits'),
            'feature_limits': a.get('feature_limits'),
            'node': a.get('node'),
            'egg': a.get('egg'),
            'container': a.get('container'),
            'allocations': allocations,
        }

    def _server_with_variables(self, server_id, action):
        return self.request('GET', f'/servers/{server_id}', action,
                            params={'include': 'variables'}).json()['attributes']

    def get_startup_variables(self, server_id):
        attrs = self._server_with_variables(server_id, 'Get startup variables')
        variables = ((attrs.get('relationships') or {}).get('variables') or {}).get('data', [])
        return [{
            'name': v['attributes'].get('name'),
            'description': v['attributes'].get('description'),
            'env_variable': v['attributes'].get('env_variable'),
            'default_value': v['attributes'].get('default_value'),
            'server_value': v['attributes'].get('server_value'),
            'is_editable': v['attributes'].get('is_editable'),
            'rules': v['attributes'].get('rules'),
        } for v in variables]

    def update_startup_variable(self, server_id, key, value):
        """The startup endpoint wants the full environment, so current values are re-sent with one change."""
        attrs = self._server_with_variables(server_id, 'Update startup variable')
        environment = {}
        for v in ((attrs.get('relationships') or {}).get('variables') or {}).get('data', []):
            va = v['attributes']
            current = va.get('server_value')
            if current is None:
                current = va.get('default_value')
            environment[va['env_variable']] = current if current is not None else ''
        environment[key] = value
        container = attrs.get('container') or {}
        self.request('PATCH', f'/servers/{server_id}/startup', 'Update startup variable', json={
            'startup': container.get('startup_command'),
            'egg': attrs.get('egg'),
            'image': container.get('image'),
            'environment': environment,
            'skip_scripts': False,
        })

    # ═══════════════════════════════════════════════
    # NESTS / NODES
    # ═══════════════════════════════════════════════

    def get_eggs(self):
        try:
            nests = self._call('GET', '/nests').json().get('data') or []
        except requests.RequestException as e:
            log.error('Failed to fetch nests: %s', e)
            return []
        eggs = []
        for nest in nests:
            nest_id = nest['attributes']['id']
            try:
                data = self._call('GET', f'/nests/{nest_id}/eggs').json().get('data') or []
            except requests.RequestException as e:
                log.warning('Could not fetch eggs for nest %s: %s', nest_id, e)
                continue
            for egg in data:
                attr = egg['attributes']
                eggs.append({
                    'id': attr['id'],
                    'name': attr.get('name'),
                    'description': attr.get('description') or '',
                    'nestId': nest_id,
                    'nestName': nest['attributes'].get('name'),
                    'author': attr.get('author'),
                    'dockerImage': attr.get('docker_image'),
                })
        log.info('Found %d eggs', len(eggs))
        return eggs

    def list_nodes(self):
        return list(self.paginate('/nodes', per_page=50))

    def free_allocations(self, node_id):
        return [a for a in self.paginate(f'/nodes/{node_id}/allocations', per_page=100) if not a.get('assigned')]

    def get_node(self, node_id):
        return self._call('GET', f'/nodes/{node_id}').json()['attributes']

    def get_node_configuration(self, node_id):
        return self._call('GET', f'/nodes/{node_id}/configuration').json()
