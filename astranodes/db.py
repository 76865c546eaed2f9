import json
import logging
import os
import sqlite3
from contextlib import contextmanager

log = logging.getLogger(__name__)

_db_path = './data/astranodes.sqlite'


def configure(path):
    global _db_path
    _db_path = path
    folder = os.path.dirname(os.path.abspath(path))
    if not os.path.exists(folder):
        os.makedirs(folder)


def get_db():
    conn = sqlite3.connect(_db_path, timeout=15)
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA foreign_keys = ON')
    return conn


@contextmanager
def transaction():
    """Commit on success, roll back on any exception, always close."""
    conn = get_db()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def query(sql, params=()):
    conn = get_db()
    try:
        return [dict(row) for row in conn.execute(sql, params).fetchall()]
    finally:
        conn.close()


def get_one(sql, params=()):
    conn = get_db()
    try:
        row = conn.execute(sql, params).fetchone()
        return dict(row) if row else None
    finally:
        conn.close()


def execute(sql, params=()):
    """Run a single write and return the new row id."""
    with transaction() as conn:
        cur = conn.execute(sql, params)
        return cur.lastrowid


# ═══════════════════════════════════════════════
# SCHEMA
# ═══════════════════════════════════════════════

SCHEMA = [
    '''CREATE TABLE IF NOT EXISTS users
       (id INTEGER PRIMARY KEY AUTOINCREMENT, email TEXT UNIQUE NOT NULL, password_hash TEXT,
        role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('user', 'admin')),
        coins INTEGER NOT NULL DEFAULT 0, balance REAL NOT NULL DEFAULT 0,
        ip_address TEXT, last_login_ip TEXT, pterodactyl_user_id INTEGER,
        flagged INTEGER NOT NULL DEFAULT 0, last_claim_time TEXT,
        oauth_provider TEXT, oauth_id TEXT, email_verified INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')))''',

    '''CREATE TABLE IF NOT EXISTS plans_coin
       (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL, icon TEXT DEFAULT 'Package',
        ram INTEGER NOT NULL, cpu INTEGER NOT NULL, storage INTEGER NOT NULL,
        coin_price INTEGER NOT NULL, duration_type TEXT NOT NULL DEFAULT 'days',
        duration_days INTEGER, limited_stock INTEGER NOT NULL DEFAULT 0, stock_amount INTEGER,
        one_time_purchase INTEGER NOT NULL DEFAULT 0)''',

    '''CREATE TABLE IF NOT EXISTS plans_real
       (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL, icon TEXT DEFAULT 'Server',
        ram INTEGER NOT NULL, cpu INTEGER NOT NULL, storage INTEGER NOT NULL,
        price REAL NOT NULL, duration_type TEXT NOT NULL DEFAULT 'days',
        duration_days INTEGER, limited_stock INTEGER NOT NULL DEFAULT 0, stock_amount INTEGER)''',

    '''CREATE TABLE IF NOT EXISTS servers
       (id INTEGER PRIMARY KEY AUTOINCREMENT, user_id INTEGER NOT NULL REFERENCES users(id),
        name TEXT, plan_type TEXT NOT NULL CHECK (plan_type IN ('coin', 'real')),
        plan_id INTEGER NOT NULL, pterodactyl_server_id INTEGER, expires_at TEXT,
        status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'suspended', 'deleted')),
        suspended_at TEXT, grace_expires_at TEXT,
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')))''',

    '''CREATE TABLE IF NOT EXISTS coupons
       (id INTEGER PRIMARY KEY AUTOINCREMENT, code TEXT UNIQUE NOT NULL,
        coin_reward INTEGER NOT NULL, max_uses INTEGER NOT NULL,
        per_user_limit INTEGER NOT NULL DEFAULT 1, expires_at TEXT,
        active INTEGER NOT NULL DEFAULT 1)''',

    '''CREATE TABLE IF NOT EXISTS coupon_redemptions
       (id INTEGER PRIMARY KEY AUTOINCREMENT, coupon_id INTEGER NOT NULL REFERENCES coupons(id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users(id), ip_address TEXT,
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')))''',

    '''CREATE TABLE IF NOT EXISTS utr_submissions
       (id INTEGER PRIMARY KEY AUTOINCREMENT, user_id INTEGER NOT NULL REFERENCES users(id),
        amount REAL NOT NULL, utr_number TEXT NOT NULL, screenshot_path TEXT,
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'approved', 'rejected')),
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')))''',

    '''CREATE TABLE IF NOT EXISTS tickets
       (id INTEGER PRIMARY KEY AUTOINCREMENT, user_id INTEGER NOT NULL REFERENCES users(id),
        username TEXT, email TEXT, category TEXT NOT NULL, subject TEXT NOT NULL,
        priority TEXT NOT NULL DEFAULT 'Medium',
        status TEXT NOT NULL DEFAULT 'open' CHECK (status IN ('open', 'closed')),
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
        updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')))''',

    '''CREATE TABLE IF NOT EXISTS ticket_messages
       (id INTEGER PRIMARY KEY AUTOINCREMENT, ticket_id INTEGER NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
        sender_type TEXT NOT NULL CHECK (sender_type IN ('user', 'admin')), sender_id INTEGER NOT NULL,
        message TEXT NOT NULL, image TEXT,
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')))''',

    '''CREATE TABLE IF NOT EXISTS coin_settings
       (id INTEGER PRIMARY KEY CHECK (id = 1), coins_per_minute INTEGER NOT NULL DEFAULT 1)''',

    '''CREATE TABLE IF NOT EXISTS site_content
       (id INTEGER PRIMARY KEY AUTOINCREMENT, section_name TEXT UNIQUE NOT NULL,
        content_json TEXT NOT NULL, updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')))''',

    '''CREATE TABLE IF NOT EXISTS site_settings
       (id INTEGER PRIMARY KEY AUTOINCREMENT, site_name TEXT DEFAULT 'AstraNodes',
        background_image TEXT DEFAULT '', background_overlay_opacity REAL DEFAULT 0.45,
        favicon_path TEXT DEFAULT '', hero_title TEXT DEFAULT '', hero_subtitle TEXT DEFAULT '',
        maintenance_mode INTEGER DEFAULT 0)''',

    '''CREATE TABLE IF NOT EXISTS landing_plans
       (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL, price REAL NOT NULL DEFAULT 0,
        ram INTEGER NOT NULL, cpu INTEGER NOT NULL, storage INTEGER NOT NULL,
        features TEXT NOT NULL DEFAULT '[]', popular INTEGER NOT NULL DEFAULT 0,
        active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
        updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')))''',

    '''CREATE TABLE IF NOT EXISTS server_backups
       (id INTEGER PRIMARY KEY AUTOINCREMENT, server_id INTEGER NOT NULL REFERENCES servers(id) ON DELETE CASCADE,
        pterodactyl_backup_uuid TEXT UNIQUE NOT NULL, name TEXT,
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')))''',

    'CREATE INDEX IF NOT EXISTS idx_servers_user ON servers(user_id)',
    'CREATE INDEX IF NOT EXISTS idx_servers_status_expiry ON servers(status, expires_at)',
    'CREATE INDEX IF NOT EXISTS idx_redemptions_coupon ON coupon_redemptions(coupon_id)',
    'CREATE INDEX IF NOT EXISTS idx_ticket_messages_ticket ON ticket_messages(ticket_id)',
]

# Columns that arrived after the first release; added in place on older databases.
LATE_COLUMNS = [
    ('plans_coin', 'backup_count', "INTEGER NOT NULL DEFAULT 0"),
    ('plans_coin', 'extra_ports', "INTEGER NOT NULL DEFAULT 0"),
    ('plans_real', 'backup_count', "INTEGER NOT NULL DEFAULT 0"),
    ('plans_real', 'extra_ports', "INTEGER NOT NULL DEFAULT 0"),
    ('servers', 'location', "TEXT DEFAULT ''"),
    ('servers', 'software', "TEXT DEFAULT 'minecraft'"),
    ('servers', 'egg_id', "INTEGER"),
    ('site_settings', 'logo_path', "TEXT DEFAULT ''"),
]

DEFAULT_SITE_SETTINGS = {
    'site_name': 'AstraNodes',
    'background_image': '',
    'background_overlay_opacity': 0.45,
    'favicon_path': '',
    'logo_path': '',
    'hero_title': 'Hosting crafted for Minecraft empires.',
    'hero_subtitle': 'Launch servers in seconds with premium infrastructure.',
    'maintenance_mode': 0,
}

DEFAULT_SITE_CONTENT = {
    'hero': {
        'title': 'Hosting crafted for Minecraft empires.',
        'subtitle': ('Launch servers in seconds, keep renewals automatic, and protect revenue with '
                     'enterprise-grade abuse prevention. Built on Pterodactyl with a modern finance engine.'),
        'primaryButtonText': 'Launch Dashboard',
        'primaryButtonLink': '/register',
        'secondaryButtonText': 'View Plans',
        'secondaryButtonLink': '/plans',
        'backgroundImage': '',
    },
    'features': [
        {'title': 'Automated Renewal',
         'description': 'Coins or balance renewals execute automatically with 12h grace protection.',
         'icon': 'Zap'},
        {'title': 'Anti-Abuse Core',
         'description': 'IP-based coupon protection, flagging, and rate-limited endpoints.',
         'icon': 'ShieldCheck'},
        {'title': 'Coin Economy',
         'description': 'AFK earning, coin plans, and live usage insights in one dashboard.',
         'icon': 'Coins'},
        {'title': 'Pterodactyl Ready',
         'description': 'Server lifecycle actions handled securely via Admin API.',
         'icon': 'Server'},
    ],
    'about': {
        'heading': 'Ready for production-grade hosting?',
        'description': 'Spin up a secure dashboard and keep every server in compliance.',
    },
    'stats': {'activeServers': '500+', 'totalUsers': '1,200+', 'uptime': '99.9%'},
    'footer': {
        'text': '© 2026 AstraNodes. All rights reserved.',
        'links': ['Privacy', 'Terms', 'Status'],
    },
}


def _columns(conn, table):
    return {row['name'] for row in conn.execute(f'PRAGMA table_info({table})').fetchall()}


def init_db():
    conn = get_db()
    c = conn.cursor()

    for stmt in SCHEMA:
        c.execute(stmt)

    for table, column, ddl in LATE_COLUMNS:
        if column not in _columns(conn, table):
            log.info('Adding column %s.%s', table, column)
            c.execute(f'ALTER TABLE {table} ADD COLUMN {column} {ddl}')

    c.execute('INSERT OR IGNORE INTO coin_settings (id, coins_per_minute) VALUES (1, 1)')

    for section, content in DEFAULT_SITE_CONTENT.items():
        c.execute('INSERT OR IGNORE INTO site_content (section_name, content_json) VALUES (?, ?)',
                  (section, json.dumps(content)))

    if not c.execute('SELECT id FROM site_settings LIMIT 1').fetchone():
        cols = ', '.join(DEFAULT_SITE_SETTINGS)
        marks = ', '.join('?' for _ in DEFAULT_SITE_SETTINGS)
        c.execute(f'INSERT INTO site_settings ({cols}) VALUES ({marks})', tuple(DEFAULT_SITE_SETTINGS.values()))

    conn.commit()
    conn.close()
    log.info('Database ready at %s', _db_path)
