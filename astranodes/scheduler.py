"""Background jobs: expiry/auto-renew every 5 minutes and nightly backup rotation."""
import datetime
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from . import backups, db
from .catalog import balance_field, get_plan, plan_days, price_of
from .durations import add_days, parse_iso, to_iso, utcnow
from .errors import PanelError

log = logging.getLogger(__name__)

GRACE_PERIOD = datetime.timedelta(hours=12)
BACKUP_MAX_AGE = datetime.timedelta(hours=24)


# ═══════════════════════════════════════════════
# EXPIRY
# ═══════════════════════════════════════════════

def _auto_renew(server, plan, now):
    """Debit the owner and extend the server. False when the balance does not cover the price."""
    price = price_of(server['plan_type'], plan)
    field = balance_field(server['plan_type'])
    base = parse_iso(server['expires_at'])
    start = server['expires_at'] if base and base > now else to_iso(now)
    next_expiry = add_days(start, plan_days(plan))

    with db.transaction() as conn:
        cur = conn.execute(f'UPDATE users SET {field} = {field} - ? WHERE id = ? AND {field} >= ?',
                           (price, server['user_id'], price))
        if cur.rowcount != 1:
            return False
        conn.execute("UPDATE servers SET expires_at = ? WHERE id = ? AND status = 'active'",
                     (next_expiry, server['id']))
    log.info('Server %s auto-renewed until %s', server['id'], next_expiry)
    return True


def process_expiring(panel, now=None):
    now = now or utcnow()
    conn = db.get_db()
    rows = conn.execute("SELECT * FROM servers WHERE status = 'active' AND expires_at <= ?", (to_iso(now),)).fetchall()
    due = []
    for row in rows:
        server = dict(row)
        due.append((server, get_plan(conn, server['plan_type'], server['plan_id'])))
    conn.close()

    for server, plan in due:
        if not plan:
            log.warning('Server %s has no plan %s/%s, skipping', server['id'], server['plan_type'], server['plan_id'])
            continue
        if _auto_renew(server, plan, now):
            continue

        try:
            panel.suspend_server(server['pterodactyl_server_id'])
        except PanelError:
            log.error('Suspending server %s failed, will retry next run', server['id'])
            continue
        db.execute("UPDATE servers SET status = 'suspended', suspended_at = ?, grace_expires_at = ? "
                   "WHERE id = ? AND status = 'active'", (to_iso(now), to_iso(now + GRACE_PERIOD), server['id']))
        log.info('Server %s suspended, grace period until %s', server['id'], to_iso(now + GRACE_PERIOD))


def process_grace_expired(panel, now=None):
    now = now or utcnow()
    rows = db.query("SELECT * FROM servers WHERE status = 'suspended' AND grace_expires_at <= ?", (to_iso(now),))
    for server in rows:
        try:
            if server['pterodactyl_server_id']:
                panel.delete_server(server['pterodactyl_server_id'])
        except PanelError:
            log.error('Deleting server %s failed, will retry next run', server['id'])
            continue
        db.execute("UPDATE servers SET status = 'deleted' WHERE id = ? AND status = 'suspended'", (server['id'],))
        log.info('Server %s deleted after grace period', server['id'])


# ═══════════════════════════════════════════════
# BACKUPS
# ═══════════════════════════════════════════════

def rotate_backups(panel, wings, now=None):
    now = now or utcnow()
    servers = db.query("SELECT * FROM servers WHERE status = 'active'")
    log.info('Backup rotation over %d active servers', len(servers))

    for server in servers:
        limit = backups.backup_limit(server)
        if limit == 0:
            continue
        try:
            ptero = panel.get_server(server['pterodactyl_server_id'])
        except PanelError:
            log.error('Skipping backups for server %s: panel lookup failed', server['id'])
            continue

        for backup in backups.tracked_backups(server['id']):
            created = parse_iso(backup['created_at'])
            if created and now - created > BACKUP_MAX_AGE:
                try:
                    backups.delete_backup(wings, server, ptero, backup['uuid'])
                except PanelError:
                    log.error('Failed to delete old backup %s of server %s', backup['uuid'], server['id'])

        if len(backups.tracked_backups(server['id'])) >= limit:
            log.info('Server %s already at its backup limit (%s)', server['id'], limit)
            continue
        try:
            backups.create_backup(wings, server, ptero, f"auto-backup-{now.strftime('%Y-%m-%d')}")
        except PanelError:
            log.error('Failed to create backup for server %s', server['id'])


# ═══════════════════════════════════════════════
# SCHEDULER
# ═══════════════════════════════════════════════

def create_scheduler(app):
    scheduler = BackgroundScheduler(daemon=True)

    def expiry_job():
        with app.app_context():
            panel = app.extensions['panel']
            process_expiring(panel)
            process_grace_expired(panel)

    def backup_job():
        with app.app_context():
            rotate_backups(app.extensions['panel'], app.extensions['wings'])

    scheduler.add_job(expiry_job, trigger=IntervalTrigger(minutes=5), id='expiry', replace_existing=True)
    scheduler.add_job(backup_job, trigger=CronTrigger(hour=3), id='backups', replace_existing=True)
    return scheduler
