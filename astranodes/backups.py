import logging
import uuid

from . import db
from .catalog import PLAN_TABLES

log = logging.getLogger(__name__)


def backup_limit(server):
    row = db.get_one(f"SELECT backup_count FROM {PLAN_TABLES[server['plan_type']]} WHERE id = ?",
                     (server['plan_id'],))
    return (row or {}).get('backup_count') or 0


def tracked_backups(server_id):
    return db.query('SELECT id, pterodactyl_backup_uuid AS uuid, name, created_at FROM server_backups '
                    'WHERE server_id = ? ORDER BY created_at DESC, id DESC', (server_id,))


def find_backup(server_id, backup_uuid):
    return db.get_one('SELECT * FROM server_backups WHERE server_id = ? AND pterodactyl_backup_uuid = ?',
                      (server_id, backup_uuid))


def create_backup(wings, server, ptero, name):
    backup_uuid = str(uuid.uuid4())
    wings.create_backup(ptero['uuid'], ptero['node'], backup_uuid)
    db.execute('INSERT OR IGNORE INTO server_backups (server_id, pterodactyl_backup_uuid, name) VALUES (?, ?, ?)',
               (server['id'], backup_uuid, name))
    log.info('Backup %s (%s) created for server %s', backup_uuid, name, server['id'])
    return backup_uuid


def delete_backup(wings, server, ptero, backup_uuid):
    wings.delete_backup(ptero['uuid'], ptero['node'], backup_uuid)
    db.execute('DELETE FROM server_backups WHERE server_id = ? AND pterodactyl_backup_uuid = ?',
               (server['id'], backup_uuid))
    log.info('Backup %s deleted for server %s', backup_uuid, server['id'])
