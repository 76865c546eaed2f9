"""Plan lookups shared by purchase/renew routes and the expiry job."""
from .durations import get_duration_days

PLAN_TABLES = {'coin': 'plans_coin', 'real': 'plans_real'}


def get_plan(conn, plan_type, plan_id):
    row = conn.execute(f'SELECT * FROM {PLAN_TABLES[plan_type]} WHERE id = ?', (plan_id,)).fetchone()
    return dict(row) if row else None


def price_of(plan_type, plan):
    return plan['coin_price'] if plan_type == 'coin' else plan['price']


def balance_field(plan_type):
    return 'coins' if plan_type == 'coin' else 'balance'


def plan_days(plan):
    return get_duration_days(plan['duration_type'], plan.get('duration_days'))


def panel_limits(plan):
    """Plan sizes are whole GB and cores; the panel wants MB and percent (cpu is scaled by the client)."""
    return {
        'memory': plan['ram'] * 1024,
        'disk': plan['storage'] * 1024,
        'cpu': plan['cpu'],
        'backups': plan.get('backup_count') or 0,
        'allocations': plan.get('extra_ports') or 0,
    }


def in_stock(plan):
    return not plan.get('limited_stock') or (plan.get('stock_amount') or 0) > 0
