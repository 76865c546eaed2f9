from . import (admin, admin_tickets, auth, backups, billing, coins, coupons, frontpage, manage, plans, servers,
               settings, stats, tickets)

BLUEPRINTS = [
    auth.bp,
    plans.bp,
    servers.bp,
    manage.bp,
    backups.bp,
    coins.bp,
    coupons.bp,
    billing.bp,
    tickets.bp,
    admin_tickets.bp,
    admin.bp,
    frontpage.bp,
    settings.bp,
    stats.bp,
]
