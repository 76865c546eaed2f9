import logging

from mcstatus import JavaServer

log = logging.getLogger(__name__)


def default_allocation(details):
    allocations = details.get('allocations') or []
    return next((a for a in allocations if a.get('is_default')), allocations[0] if allocations else None)


def ping_players(details, timeout=2):
    """Live player count from a status ping of the server's default allocation, or None."""
    alloc = default_allocation(details)
    if not alloc:
        return None
    host = alloc.get('alias') or alloc.get('ip')
    try:
        server = JavaServer.lookup(f"{host}:{alloc['port']}", timeout=timeout)
        status = server.status()
        return {
            'online': status.players.online,
            'max': status.players.max,
            'version': status.version.name,
        }
    except Exception as e:
        log.debug('Status ping of %s:%s failed: %s', host, alloc.get('port'), e)
        return None
