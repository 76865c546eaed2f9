from flask import Blueprint, g, jsonify, request

from .. import db
from ..durations import now_iso
from ..auth import admin_required
from ..errors import ApiError
from ..schemas import TicketReply, TicketStatus, parse
from .tickets import attached_image, body_data, notify, ticket_messages

bp = Blueprint('admin_tickets', __name__, url_prefix='/api/admin/tickets')


def _ticket(ticket_id):
    ticket = db.get_one('SELECT * FROM tickets WHERE id = ?', (ticket_id,))
    if not ticket:
        raise ApiError('Ticket not found', 404)
    return ticket


def _owner_email(ticket):
    owner = db.get_one('SELECT email FROM users WHERE id = ?', (ticket['user_id'],))
    return owner['email'] if owner else ticket.get('email')


@bp.route('')
@admin_required
def list_tickets():
    status = request.args.get('status')
    sql = ('SELECT t.id, t.user_id, t.username, t.email, t.category, t.subject, t.status, t.priority, '
           't.created_at, t.updated_at, COUNT(tm.id) AS message_count FROM tickets t '
           'LEFT JOIN ticket_messages tm ON tm.ticket_id = t.id')
    params = ()
    if status in ('open', 'closed'):
        sql += ' WHERE t.status = ?'
        params = (status,)
    sql += ' GROUP BY t.id ORDER BY t.updated_at DESC, t.id DESC'
    return jsonify(db.query(sql, params))


@bp.route('/<int:ticket_id>')
@admin_required
def get_ticket(ticket_id):
    ticket = db.get_one('SELECT t.*, u.email AS user_username, u.email AS user_email, '
                        'u.created_at AS user_created_at FROM tickets t JOIN users u ON u.id = t.user_id '
                        'WHERE t.id = ?', (ticket_id,))
    if not ticket:
        raise ApiError('Ticket not found', 404)
    return jsonify(dict(ticket, messages=ticket_messages(ticket_id)))


@bp.route('/<int:ticket_id>/reply', methods=['POST'])
@admin_required
def reply(ticket_id):
    ticket = _ticket(ticket_id)
    body = parse(TicketReply, body_data())
    if ticket['status'] == 'closed':
        raise ApiError('Cannot reply to closed ticket. Reopen it first.', 400)
    image = attached_image()

    with db.transaction() as conn:
        conn.execute("INSERT INTO ticket_messages (ticket_id, sender_type, sender_id, message, image) "
                     "VALUES (?, 'admin', ?, ?, ?)", (ticket_id, g.user['id'], body.message, image))
        conn.execute('UPDATE tickets SET updated_at = ? WHERE id = ?', (now_iso(), ticket_id))

    notify('admin_reply', ticket, _owner_email(ticket), body.message)
    return jsonify(message='Reply sent successfully')


@bp.route('/<int:ticket_id>/status', methods=['PATCH'])
@admin_required
def set_status(ticket_id):
    body = parse(TicketStatus)
    ticket = _ticket(ticket_id)
    db.execute('UPDATE tickets SET status = ?, updated_at = ? WHERE id = ?', (body.status, now_iso(), ticket_id))
    notify('closed' if body.status == 'closed' else 'reopened', dict(ticket, status=body.status),
           _owner_email(ticket))
    return jsonify(status=body.status)


@bp.route('/<int:ticket_id>', methods=['DELETE'])
@admin_required
def delete_ticket(ticket_id):
    _ticket(ticket_id)
    with db.transaction() as conn:
        conn.execute('DELETE FROM ticket_messages WHERE ticket_id = ?', (ticket_id,))
        conn.execute('DELETE FROM tickets WHERE id = ?', (ticket_id,))
    return jsonify(message='Ticket deleted successfully')
