import logging
import os

import requests

from .durations import now_iso

log = logging.getLogger(__name__)

COLORS = {
    'open': 0x22c55e,
    'closed': 0xef4444,
    'reply': 0x3b82f6,
    'created': 0x10b981,
}

TITLES = {
    'created': '🎫 New Support Ticket Created',
    'reply': '💬 User Replied to Ticket',
    'admin_reply': '👨‍💼 Admin Responded to Ticket',
    'closed': '🔒 Ticket Closed',
    'reopened': '🔓 Ticket Reopened',
}


def embed_color(event, status):
    if event == 'created':
        return COLORS['created']
    if event == 'closed':
        return COLORS['closed']
    if event == 'reopened':
        return COLORS['open']
    if event in ('reply', 'admin_reply'):
        return COLORS['reply']
    return COLORS['open'] if status == 'open' else COLORS['closed']


def preview(message, limit=200):
    return message[:limit] + '...' if len(message) > limit else message


def ticket_embed(event, ticket, user, message=None, admin_url='http://localhost:5173'):
    fields = [
        {'name': '👤 User', 'value': user.get('username') or 'Unknown', 'inline': True},
        {'name': '📧 Email', 'value': user.get('email') or 'N/A', 'inline': True},
        {'name': '🎫 Ticket ID', 'value': f"#{ticket['id']}", 'inline': True},
        {'name': '📂 Category', 'value': ticket.get('category') or 'Other', 'inline': True},
        {'name': '⚡ Priority', 'value': ticket.get('priority') or 'Medium', 'inline': True},
        {'name': '📊 Status', 'value': '🟢 Open' if ticket.get('status') == 'open' else '🔴 Closed', 'inline': True},
        {'name': '📝 Subject', 'value': ticket.get('subject') or 'No subject', 'inline': False},
    ]
    if message and event in ('reply', 'admin_reply'):
        fields.append({
            'name': '💬 Admin Response' if event == 'admin_reply' else '💬 User Message',
            'value': preview(message),
            'inline': False,
        })
    fields.append({
        'name': '🔗 Admin Panel',
        'value': f"[View Ticket]({admin_url}/admin/tickets/{ticket['id']})",
        'inline': False,
    })
    return {
        'title': TITLES.get(event, '🔔 Ticket Update'),
        'color': embed_color(event, ticket.get('status')),
        'fields': fields,
        'footer': {'text': 'AstraNodes Support System'},
        'timestamp': now_iso(),
    }


def send_ticket_notification(webhook_url, event, ticket, user, message=None, admin_url='http://localhost:5173'):
    """Post a ticket event embed. Never raises; ticket operations must not fail on Discord."""
    if not webhook_url:
        log.warning('Discord support webhook URL not configured')
        return False
    payload = {
        'embeds': [ticket_embed(event, ticket, user, message, admin_url)],
        'username': 'AstraNodes Support',
        'avatar_url': 'https://cdn.discordapp.com/embed/avatars/0.png',
    }
    try:
        requests.post(webhook_url, json=payload, timeout=10).raise_for_status()
    except requests.RequestException as e:
        log.error('Failed to send Discord notification: %s', e)
        return False
    log.info('Sent %s notification for ticket #%s', event, ticket['id'])
    return True


def send_utr_notification(webhook_url, email, amount, utr_number, screenshot_path):
    """Post a UTR submission with its screenshot. Raises on failure so the caller can roll back."""
    if not webhook_url:
        log.warning('Discord webhook URL not configured, skipping UTR notification')
        return
    content = f'New UTR submission from {email}\nAmount: {amount}\nUTR: {utr_number}'
    with open(screenshot_path, 'rb') as fh:
        resp = requests.post(webhook_url, data={'content': content},
                             files={'file': (os.path.basename(screenshot_path), fh)}, timeout=15)
    resp.raise_for_status()
