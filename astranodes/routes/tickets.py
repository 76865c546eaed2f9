import logging

from flask import Blueprint, current_app, g, jsonify, request

from .. import db
from ..durations import now_iso
from ..auth import login_required
from ..errors import ApiError
from ..extensions import limiter, user_or_ip
from ..schemas import TicketCreate, TicketReply, parse
from ..uploads import save_ticket_image
from ..webhooks import send_ticket_notification

log = logging.getLogger(__name__)

bp = Blueprint('tickets', __name__, url_prefix='/api/tickets')


def body_data():
    """Tickets accept multipart (with an optional image) or plain JSON."""
    if request.form:
        return request.form.to_dict()
    return request.get_json(silent=True) or {}


def attached_image():
    image = request.files.get('image')
    if not image or not image.filename:
        return None
    return '/uploads/' + save_ticket_image(image)


def ticket_messages(ticket_id):
    return db.query('SELECT tm.id, tm.sender_type, tm.message, tm.image, tm.created_at, '
                    'u.email AS sender_email, u.email AS sender_name '
                    'FROM ticket_messages tm JOIN users u ON u.id = tm.sender_id '
                    'WHERE tm.ticket_id = ? ORDER BY tm.created_at ASC, tm.id ASC', (ticket_id,))


def notify(event, ticket, email, message=None):
    send_ticket_notification(current_app.config['DISCORD_SUPPORT_WEBHOOK_URL'], event, ticket,
                             {'username': email, 'email': email}, message,
                             admin_url=current_app.config['FRONTEND_URL'])


@bp.route('', methods=['POST'])
@login_required
@limiter.limit('5 per 15 minutes', key_func=user_or_ip,
               error_message='Too many tickets created. Please wait before creating another.')
def create_ticket():
    body = parse(TicketCreate, body_data())
    image = attached_image()
    user = g.user

    with db.transaction() as conn:
        cur = conn.execute("INSERT INTO tickets (user_id, username, email, category, subject, priority, status) "
                           "VALUES (?, ?, ?, ?, ?, ?, 'open')",
                           (user['id'], user['email'], user['email'], body.category, body.subject, body.priority))
        ticket_id = cur.lastrowid
        conn.execute("INSERT INTO ticket_messages (ticket_id, sender_type, sender_id, message, image) "
                     "VALUES (?, 'user', ?, ?, ?)", (ticket_id, user['id'], body.message, image))

    notify('created', {'id': ticket_id, 'subject': body.subject, 'category': body.category,
                       'status': 'open', 'priority': body.priority}, user['email'], body.message)
    log.info('Ticket #%s opened by user %s', ticket_id, user['id'])
    return jsonify(id=ticket_id, message='Ticket created successfully'), 201


@bp.route('/my')
@login_required
def my_tickets():
    rows = db.query('SELECT t.id, t.category, t.subject, t.status, t.priority, t.created_at, t.updated_at, '
                    'COUNT(tm.id) AS message_count FROM tickets t '
                    'LEFT JOIN ticket_messages tm ON tm.ticket_id = t.id '
                    'WHERE t.user_id = ? GROUP BY t.id ORDER BY t.updated_at DESC, t.id DESC', (g.user['id'],))
    return jsonify(rows)


def _own_ticket(ticket_id):
    ticket = db.get_one('SELECT * FROM tickets WHERE id = ? AND user_id = ?', (ticket_id, g.user['id']))
    if not ticket:
        raise ApiError('Ticket not found', 404)
    return ticket


@bp.route('/<int:ticket_id>')
@login_required
def get_ticket(ticket_id):
    ticket = _own_ticket(ticket_id)
    return jsonify(dict(ticket, messages=ticket_messages(ticket_id)))


@bp.route('/<int:ticket_id>/reply', methods=['POST'])
@login_required
def reply(ticket_id):
    ticket = _own_ticket(ticket_id)
    body = parse(TicketReply, body_data())
    if ticket['status'] == 'closed':
        raise ApiError('Cannot reply to closed ticket', 400)
    image = attached_image()

    with db.transaction() as conn:
        conn.execute("INSERT INTO ticket_messages (ticket_id, sender_type, sender_id, message, image) "
                     "VALUES (?, 'user', ?, ?, ?)", (ticket_id, g.user['id'], body.message, image))
        conn.execute('UPDATE tickets SET updated_at = ? WHERE id = ?', (now_iso(), ticket_id))

    notify('reply', ticket, g.user['email'], body.message)
    return jsonify(message='Reply added successfully')
