import io
import os
import re

import pytest

from astranodes import db

TICKET = {'category': 'Billing', 'subject': 'Charged twice', 'message': 'My card was charged two times today.'}


@pytest.fixture
def open_ticket(client, user, headers_for):
    res = client.post('/api/tickets', headers=headers_for(user), json=TICKET)
    assert res.status_code == 201
    return res.get_json()['id']


def test_create_ticket(client, user, headers_for, open_ticket):
    ticket = client.get(f'/api/tickets/{open_ticket}', headers=headers_for(user)).get_json()
    assert ticket['status'] == 'open'
    assert ticket['priority'] == 'Medium'
    assert [(m['sender_type'], m['message']) for m in ticket['messages']] == [('user', TICKET['message'])]


def test_create_ticket_validation(client, user, headers_for):
    res = client.post('/api/tickets', headers=headers_for(user), json=dict(TICKET, category='Refund'))
    assert res.status_code == 400
    res = client.post('/api/tickets', headers=headers_for(user), json=dict(TICKET, message='short'))
    assert res.status_code == 400


def test_create_ticket_with_image(client, app, user, headers_for):
    data = dict(TICKET, image=(io.BytesIO(b'\xff\xd8\xff' + b'\x00' * 32), 'shot.jpg', 'image/jpeg'))
    res = client.post('/api/tickets', headers=headers_for(user), data=data, content_type='multipart/form-data')
    assert res.status_code == 201
    message = db.get_one('SELECT image FROM ticket_messages WHERE ticket_id = ?', (res.get_json()['id'],))
    assert message['image'].startswith('/uploads/tickets/ticket-')
    stored = os.path.join(app.config['UPLOAD_DIR'], message['image'][len('/uploads/'):])
    assert os.path.exists(stored)


def test_my_tickets_counts_messages(client, user, headers_for, open_ticket):
    headers = headers_for(user)
    client.post(f'/api/tickets/{open_ticket}/reply', headers=headers, json={'message': 'Any update?'})
    (ticket,) = client.get('/api/tickets/my', headers=headers).get_json()
    assert ticket['message_count'] == 2


def test_other_users_ticket_is_hidden(client, make_user, headers_for, open_ticket):
    stranger = headers_for(make_user())
    assert client.get(f'/api/tickets/{open_ticket}', headers=stranger).status_code == 404
    res = client.post(f'/api/tickets/{open_ticket}/reply', headers=stranger, json={'message': 'hi'})
    assert res.status_code == 404


def test_reply_to_closed_ticket(client, user, headers_for, open_ticket):
    db.execute("UPDATE tickets SET status = 'closed' WHERE id = ?", (open_ticket,))
    res = client.post(f'/api/tickets/{open_ticket}/reply', headers=headers_for(user), json={'message': 'hello'})
    assert res.status_code == 400
    assert res.get_json() == {'error': 'Cannot reply to closed ticket'}


# ═══════════════════════════════════════════════
# ADMIN
# ═══════════════════════════════════════════════

def test_admin_lists_and_filters(client, admin, headers_for, open_ticket):
    headers = headers_for(admin)
    assert [t['id'] for t in client.get('/api/admin/tickets', headers=headers).get_json()] == [open_ticket]
    assert client.get('/api/admin/tickets?status=closed', headers=headers).get_json() == []


def test_admin_reply_and_close(client, admin, user, headers_for, open_ticket):
    headers = headers_for(admin)
    res = client.post(f'/api/admin/tickets/{open_ticket}/reply', headers=headers, json={'message': 'Refunded.'})
    assert res.get_json() == {'message': 'Reply sent successfully'}

    res = client.patch(f'/api/admin/tickets/{open_ticket}/status', headers=headers, json={'status': 'closed'})
    assert res.get_json() == {'status': 'closed'}

    res = client.post(f'/api/admin/tickets/{open_ticket}/reply', headers=headers, json={'message': 'Again'})
    assert res.status_code == 400

    ticket = client.get(f'/api/admin/tickets/{open_ticket}', headers=headers).get_json()
    assert ticket['user_email'] == user['email']
    assert [m['sender_type'] for m in ticket['messages']] == ['user', 'admin']


ISO_UTC = re.compile(r'^\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z$')


def test_timestamps_are_utc_iso(client, admin, user, headers_for, open_ticket):
    before = db.get_one('SELECT created_at, updated_at FROM tickets WHERE id = ?', (open_ticket,))
    client.post(f'/api/admin/tickets/{open_ticket}/reply', headers=headers_for(admin), json={'message': 'On it.'})
    after = db.get_one('SELECT created_at, updated_at FROM tickets WHERE id = ?', (open_ticket,))

    for value in (before['created_at'], before['updated_at'], after['updated_at']):
        assert ISO_UTC.match(value)
    assert after['updated_at'] >= before['updated_at']
    messages = client.get(f'/api/tickets/{open_ticket}', headers=headers_for(user)).get_json()['messages']
    assert all(ISO_UTC.match(m['created_at']) for m in messages)


def test_admin_invalid_status(client, admin, headers_for, open_ticket):
    res = client.patch(f'/api/admin/tickets/{open_ticket}/status', headers=headers_for(admin),
                       json={'status': 'archived'})
    assert res.status_code == 400


def test_admin_delete_ticket(client, admin, headers_for, open_ticket):
    headers = headers_for(admin)
    assert client.delete(f'/api/admin/tickets/{open_ticket}', headers=headers).status_code == 200
    assert db.query('SELECT id FROM ticket_messages') == []
    assert client.delete(f'/api/admin/tickets/{open_ticket}', headers=headers).status_code == 404
