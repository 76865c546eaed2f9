import datetime

from astranodes import db
from astranodes.durations import to_iso, utcnow
from astranodes.scheduler import create_scheduler, process_expiring, process_grace_expired, rotate_backups

NOW = datetime.datetime(2030, 6, 1, 12, 0, tzinfo=datetime.timezone.utc)


def server_row(server_id):
    return db.get_one('SELECT * FROM servers WHERE id = ?', (server_id,))


def test_expired_server_auto_renews(user, make_plan, make_server, panel):
    plan = make_plan(coin_price=100, duration_type='weekly')
    server = make_server(user, plan, expires_at='2030-06-01T11:00:00.000Z')
    process_expiring(panel, NOW)

    assert server_row(server['id'])['expires_at'] == '2030-06-08T12:00:00.000Z'
    assert db.get_one('SELECT coins FROM users WHERE id = ?', (user['id'],))['coins'] == 400
    assert panel.called('suspend_server') == []


def test_unaffordable_server_is_suspended_with_grace(make_user, make_plan, make_server, panel):
    poor = make_user(coins=10)
    server = make_server(poor, make_plan(coin_price=100), expires_at='2030-06-01T11:00:00.000Z')
    process_expiring(panel, NOW)

    row = server_row(server['id'])
    assert row['status'] == 'suspended'
    assert row['suspended_at'] == '2030-06-01T12:00:00.000Z'
    assert row['grace_expires_at'] == '2030-06-02T00:00:00.000Z'
    assert panel.called('suspend_server') == [('suspend_server', 42)]
    assert db.get_one('SELECT coins FROM users WHERE id = ?', (poor['id'],))['coins'] == 10


def test_real_plan_renews_from_balance(user, make_plan, make_server, panel):
    server = make_server(user, make_plan('real', price=30.0), plan_type='real', expires_at='2030-05-01T00:00:00.000Z')
    process_expiring(panel, NOW)
    assert server_row(server['id'])['status'] == 'active'
    assert db.get_one('SELECT balance FROM users WHERE id = ?', (user['id'],))['balance'] == 70.0


def test_suspend_failure_is_retried_later(make_user, make_plan, make_server, panel):
    poor = make_user()
    server = make_server(poor, make_plan(), expires_at='2030-06-01T11:00:00.000Z')
    panel.failing.add('suspend_server')
    process_expiring(panel, NOW)
    assert server_row(server['id'])['status'] == 'active'

    panel.failing.clear()
    process_expiring(panel, NOW)
    assert server_row(server['id'])['status'] == 'suspended'


def test_servers_not_yet_due_are_untouched(make_user, make_plan, make_server, panel):
    server = make_server(make_user(), make_plan(), expires_at='2030-06-01T12:00:01.000Z')
    process_expiring(panel, NOW)
    assert server_row(server['id'])['status'] == 'active'


def test_grace_expired_servers_are_deleted(make_user, make_plan, make_server, panel):
    owner = make_user()
    plan = make_plan()
    gone = make_server(owner, plan, status='suspended', grace_expires_at='2030-06-01T11:59:00.000Z')
    waiting = make_server(owner, plan, status='suspended', grace_expires_at='2030-06-01T18:00:00.000Z')
    process_grace_expired(panel, NOW)

    assert server_row(gone['id'])['status'] == 'deleted'
    assert server_row(waiting['id'])['status'] == 'suspended'
    assert panel.called('delete_server') == [('delete_server', 42)]


def test_grace_delete_failure_keeps_server(make_user, make_plan, make_server, panel):
    server = make_server(make_user(), make_plan(), status='suspended', grace_expires_at='2030-06-01T00:00:00.000Z')
    panel.failing.add('delete_server')
    process_grace_expired(panel, NOW)
    assert server_row(server['id'])['status'] == 'suspended'


# ═══════════════════════════════════════════════
# BACKUPS
# ═══════════════════════════════════════════════

def track(server, backup_uuid, created_at):
    db.execute('INSERT INTO server_backups (server_id, pterodactyl_backup_uuid, name, created_at) VALUES (?, ?, ?, ?)',
               (server['id'], backup_uuid, backup_uuid, created_at))


def test_rotation_deletes_old_and_creates_new(user, make_plan, make_server, panel, wings):
    server = make_server(user, make_plan(backup_count=2))
    track(server, 'old', '2030-05-30 12:00:00')
    track(server, 'fresh', '2030-06-01 06:00:00')
    rotate_backups(panel, wings, NOW)

    assert wings.called('delete_backup') == [('delete_backup', 'uuid-42', 'old')]
    (created,) = wings.called('create_backup')
    names = {b['name'] for b in db.query('SELECT name FROM server_backups')}
    assert names == {'fresh', 'auto-backup-2030-06-01'}
    assert created[1] == 'uuid-42'


def test_rotation_respects_limit(user, make_plan, make_server, panel, wings):
    server = make_server(user, make_plan(backup_count=1))
    track(server, 'recent', '2030-06-01 11:00:00')
    rotate_backups(panel, wings, NOW)
    assert wings.called('create_backup') == []


def test_rotation_skips_plans_without_backups(user, make_plan, make_server, panel, wings):
    make_server(user, make_plan(backup_count=0))
    rotate_backups(panel, wings, NOW)
    assert wings.calls == []
    assert panel.called('get_server') == []


def test_rotation_continues_after_failures(user, make_plan, make_server, panel, wings):
    plan = make_plan(backup_count=1)
    make_server(user, plan)
    make_server(user, plan, pterodactyl_server_id=43)
    wings.failing.add('create_backup')
    rotate_backups(panel, wings, NOW)
    assert len(wings.called('create_backup')) == 2
    assert db.query('SELECT id FROM server_backups') == []


def test_scheduler_jobs(app):
    scheduler = create_scheduler(app)
    assert {job.id for job in scheduler.get_jobs()} == {'expiry', 'backups'}


def test_renewal_of_recently_created_server_is_not_due(user, make_plan, make_server, panel):
    server = make_server(user, make_plan(), expires_at=to_iso(utcnow() + datetime.timedelta(days=1)))
    process_expiring(panel)
    assert server_row(server['id'])['status'] == 'active'
