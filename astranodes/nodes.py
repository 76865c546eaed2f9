"""Node selection: pick the node with the most free memory that can still fit a server."""
import logging
import math

import requests

from .errors import ApiError

log = logging.getLogger(__name__)


def effective_capacity(limit, overallocate):
    if overallocate == -1:
        return math.inf
    pct = max(0, overallocate or 0)
    return math.floor(limit * (1 + pct / 100))


def _fmt(value):
    return 'unlimited' if value == math.inf else f'{value}MB'


def eligible_nodes(panel, memory=0, disk=0):
    """Return every node that fits `memory`/`disk` MB and has a free allocation, best first."""
    try:
        nodes = panel.list_nodes()
    except requests.RequestException as e:
        log.error('Failed to fetch node list: %s', e)
        raise ApiError('Could not retrieve node list from Pterodactyl panel.', 502)

    if not nodes:
        raise ApiError('No nodes are configured in the Pterodactyl panel.', 503)

    candidates = []
    for node in nodes:
        used = node.get('allocated_resources') or {}
        cap_mem = effective_capacity(node['memory'], node.get('memory_overallocate', 0))
        cap_disk = effective_capacity(node['disk'], node.get('disk_overallocate', 0))
        free_mem = cap_mem - (used.get('memory') or 0)
        free_disk = cap_disk - (used.get('disk') or 0)
        tag = f"Node {node['id']} ({node.get('name')})"

        if free_mem < memory:
            log.debug('%s skipped: memory too low (%s < %s)', tag, _fmt(free_mem), memory)
            continue
        if free_disk < disk:
            log.debug('%s skipped: disk too low (%s < %s)', tag, _fmt(free_disk), disk)
            continue

        try:
            free = panel.free_allocations(node['id'])
        except requests.RequestException as e:
            log.warning('%s skipped: could not fetch allocations: %s', tag, e)
            continue
        if not free:
            log.debug('%s skipped: no free allocations', tag)
            continue

        candidates.append({
            'nodeId': node['id'],
            'name': node.get('name'),
            'freeMemory': free_mem,
            'freeDisk': free_disk,
            'freeAllocCount': len(free),
            'allocationId': free[0]['id'],
        })

    # unlimited first (ties broken by free allocations), then by free memory
    candidates.sort(key=lambda c: (
        c['freeMemory'] != math.inf,
        -c['freeAllocCount'] if c['freeMemory'] == math.inf else -c['freeMemory'],
    ))
    return candidates


def select_best_node(panel, memory, disk, preferred_node_id=None):
    """Return (node_id, allocation_id) for a new server."""
    log.info('Looking for a node with >=%sMB RAM and >=%sMB disk', memory, disk)
    candidates = eligible_nodes(panel, memory, disk)

    if preferred_node_id is not None:
        candidates = [c for c in candidates if c['nodeId'] == int(preferred_node_id)]
        if not candidates:
            raise ApiError('Selected node cannot fit this server. Pick another node.', 503)

    if not candidates:
        log.error('No eligible nodes: all are full or have no free allocations')
        raise ApiError('All nodes are currently full. Please try again later.', 503)

    best = candidates[0]
    log.info('Selected node %s (%s), free memory %s, allocation %s',
             best['nodeId'], best['name'], _fmt(best['freeMemory']), best['allocationId'])
    return best['nodeId'], best['allocationId']


def public_node(candidate):
    """JSON-safe view of a candidate; unlimited capacity is reported as null."""
    return {
        'nodeId': candidate['nodeId'],
        'name': candidate['name'],
        'freeMemory': None if candidate['freeMemory'] == math.inf else candidate['freeMemory'],
        'freeDisk': None if candidate['freeDisk'] == math.inf else candidate['freeDisk'],
        'freeAllocCount': candidate['freeAllocCount'],
    }
