import itertools

import pytest

from astranodes import create_app, db
from astranodes.auth import hash_password, sign_token
from astranodes.errors import PanelError
from astranodes.plugins import PluginInstaller


class Recorder:
    """Records every call; any method listed in `failing` raises PanelError instead."""

    def __init__(self):
        self.calls = []
        self.failing = set()

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.failing:
            raise PanelError(f'{name} failed', 502)

    def called(self, name):
        return [c for c in self.calls if c[0] == name]


class FakePanel(Recorder):
    base_url = 'https://panel.test'

    def __init__(self):
        super().__init__()
        self._ids = itertools.count(100)
        self.nodes = [{
            'id': 1, 'name': 'node-1', 'memory': 65536, 'disk': 512000,
            'memory_overallocate': 0, 'disk_overallocate': 0,
            'allocated_resources': {'memory': 0, 'disk': 0},
        }]
        self.allocations = {1: [{'id': 11, 'assigned': False}]}
        self.variables = []

    def create_user(self, email, username, first_name, last_name, password):
        self._record('create_user', email)
        return next(self._ids)

    def get_user_by_email(self, email):
        self._record('get_user_by_email', email)
        return None

    def delete_user(self, panel_user_id):
        self._record('delete_user', panel_user_id)

    def create_server(self, name, user_id, limits, node_id, allocation_id, egg_id=None):
        self._record('create_server', name, user_id, limits, node_id, allocation_id, egg_id)
        return next(self._ids)

    def suspend_server(self, server_id):
        self._record('suspend_server', server_id)

    def unsuspend_server(self, server_id):
        self._record('unsuspend_server', server_id)

    def delete_server(self, server_id):
        self._record('delete_server', server_id)

    def reinstall_server(self, server_id):
        self._record('reinstall_server', server_id)

    def get_server(self, server_id):
        self._record('get_server', server_id)
        return {
            'id': server_id,
            'identifier': f'id{server_id}',
            'uuid': f'uuid-{server_id}',
            'name': f'server-{server_id}',
            'description': '',
            'status': None,
            'suspended': False,
            'limits': {'memory': 2048, 'disk': 10240, 'cpu': 100},
            'feature_limits': {'backups': 2, 'allocations': 0, 'databases': 0},
            'node': 1,
            'egg': 1,
            'container': {},
            'allocations': [{'id': 11, 'ip': '127.0.0.1', 'alias': None, 'port': 25565, 'is_default': True}],
        }

    def get_startup_variables(self, server_id):
        self._record('get_startup_variables', server_id)
        return self.variables

    def update_startup_variable(self, server_id, key, value):
        self._record('update_startup_variable', server_id, key, value)

    def get_eggs(self):
        return [{'id': 1, 'name': 'Paper'}]

    def list_nodes(self):
        return self.nodes

    def free_allocations(self, node_id):
        return [a for a in self.allocations.get(node_id, []) if not a['assigned']]


class FakeWings(Recorder):

    def __init__(self):
        super().__init__()
        self.files = {}
        self.listing = []

    def resources(self, server_uuid, node_id):
        self._record('resources', server_uuid)
        return {'current_state': 'running', 'is_suspended': False, 'resources': {}}

    def send_command(self, server_uuid, node_id, command):
        self._record('send_command', server_uuid, command)

    def power(self, server_uuid, node_id, signal):
        self._record('power', server_uuid, signal)

    def list_files(self, server_uuid, node_id, directory='/'):
        self._record('list_files', server_uuid, directory)
        return self.listing

    def file_contents(self, server_uuid, node_id, path):
        self._record('file_contents', server_uuid, path)
        return self.files.get(path, '')

    def write_file(self, server_uuid, node_id, path, content):
        self._record('write_file', server_uuid, path, content)
        self.files[path] = content

    def upload_file(self, server_uuid, node_id, path, blob):
        self._record('upload_file', server_uuid, path, blob)

    def delete_files(self, server_uuid, node_id, root, files):
        self._record('delete_files', server_uuid, root, list(files))

    def create_directory(self, server_uuid, node_id, root, name):
        self._record('create_directory', server_uuid, root, name)

    def rename_files(self, server_uuid, node_id, root, files):
        self._record('rename_files', server_uuid, root, files)

    def create_backup(self, server_uuid, node_id, backup_uuid):
        self._record('create_backup', server_uuid, backup_uuid)

    def delete_backup(self, server_uuid, node_id, backup_uuid):
        self._record('delete_backup', server_uuid, backup_uuid)

    def restore_backup(self, server_uuid, node_id, backup_uuid):
        self._record('restore_backup', server_uuid, backup_uuid)

    def backup_download_url(self, server_uuid, node_id, backup_uuid):
        return f'https://wings.test/download/backup?token={backup_uuid}'

    def console_token(self, server_uuid, node_id):
        self._record('console_token', server_uuid)
        return {'token': 'console-jwt', 'bearer': 'daemon', 'socket': 'wss://wings.test/ws',
                'origin': 'https://panel.test'}


TEST_SETTINGS = {
    'TESTING': True,
    'JWT_SECRET': 'test-secret-that-is-long-enough-for-hs256',
    'SECRET_KEY': 'test-session-secret',
    'RATELIMIT_ENABLED': False,
    'TRUST_PROXY_HOPS': 0,
    'WORLD_RESET_DELAY': 0,
    'SCHEDULER_ENABLED': False,
    'PASSWORD_AUTH_ENABLED': True,
    'PTERODACTYL_URL': 'https://panel.test',
    'PTERODACTYL_API_KEY': 'ptla_test',
    'DISCORD_WEBHOOK_URL': '',
    'DISCORD_SUPPORT_WEBHOOK_URL': '',
    'ADSTERRA_API_TOKEN': '',
    'ADSTERRA_DOMAIN_ID': '',
    'CURSEFORGE_API_KEY': '',
    'GOOGLE_CLIENT_ID': '',
    'DISCORD_CLIENT_ID': '',
    'UPI_ID': '',
    'UPI_NAME': '',
}


@pytest.fixture
def settings(tmp_path):
    return dict(TEST_SETTINGS, DB_PATH=str(tmp_path / 'test.sqlite'), UPLOAD_DIR=str(tmp_path / 'uploads'))


@pytest.fixture
def app(settings):
    app = create_app(settings)
    app.extensions['panel'] = FakePanel()
    app.extensions['wings'] = FakeWings()
    app.extensions['plugins'] = PluginInstaller(app.extensions['wings'])
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def panel(app):
    return app.extensions['panel']


@pytest.fixture
def wings(app):
    return app.extensions['wings']


_emails = itertools.count(1)


@pytest.fixture
def make_user(app):
    def make(email=None, role='user', coins=0, balance=0, flagged=0, password=None, pterodactyl_user_id=None,
             **extra):
        email = email or f'user{next(_emails)}@gmail.com'
        cols = dict(email=email, role=role, coins=coins, balance=balance, flagged=flagged,
                    password_hash=hash_password(password) if password else None,
                    pterodactyl_user_id=pterodactyl_user_id, **extra)
        names = ', '.join(cols)
        marks = ', '.join('?' for _ in cols)
        user_id = db.execute(f'INSERT INTO users ({names}) VALUES ({marks})', tuple(cols.values()))
        return db.get_one('SELECT * FROM users WHERE id = ?', (user_id,))
    return make


@pytest.fixture
def headers_for(app):
    def headers(user):
        return {'Authorization': f'Bearer {sign_token(user)}'}
    return headers


@pytest.fixture
def user(make_user):
    return make_user(coins=500, balance=100.0, pterodactyl_user_id=7)


@pytest.fixture
def admin(make_user):
    return make_user(email='admin@gmail.com', role='admin')


@pytest.fixture
def make_plan(app):
    def make(plan_type='coin', **overrides):
        row = dict(name='Starter', ram=2, cpu=1, storage=10, duration_type='monthly', duration_days=None,
                   limited_stock=0, stock_amount=None, backup_count=0, extra_ports=0)
        if plan_type == 'coin':
            row.update(coin_price=100, one_time_purchase=0)
        else:
            row.update(price=5.0)
        row.update(overrides)
        table = 'plans_coin' if plan_type == 'coin' else 'plans_real'
        names = ', '.join(row)
        marks = ', '.join('?' for _ in row)
        plan_id = db.execute(f'INSERT INTO {table} ({names}) VALUES ({marks})', tuple(row.values()))
        return db.get_one(f'SELECT * FROM {table} WHERE id = ?', (plan_id,))
    return make


@pytest.fixture
def make_server(app):
    def make(owner, plan, plan_type='coin', **overrides):
        row = dict(user_id=owner['id'], name='survival', plan_type=plan_type, plan_id=plan['id'],
                   pterodactyl_server_id=42, expires_at='2099-01-01T00:00:00.000Z', status='active')
        row.update(overrides)
        names = ', '.join(row)
        marks = ', '.join('?' for _ in row)
        server_id = db.execute(f'INSERT INTO servers ({names}) VALUES ({marks})', tuple(row.values()))
        return db.get_one('SELECT * FROM servers WHERE id = ?', (server_id,))
    return make
