import datetime

from astranodes import db
from astranodes.durations import to_iso, utcnow


def start_session(client, headers):
    res = client.post('/api/coins/session', headers=headers)
    assert res.status_code == 200
    return res.get_json()['earnToken']


def coins(user):
    return db.get_one('SELECT coins FROM users WHERE id = ?', (user['id'],))['coins']


def test_session_then_claim(client, user, headers_for):
    headers = headers_for(user)
    token = start_session(client, headers)
    res = client.post('/api/coins/claim', headers=headers, json={'earnToken': token})
    assert res.status_code == 200
    assert res.get_json() == {'earned': 1}
    assert coins(user) == 501


def test_reward_follows_coin_settings(client, user, headers_for):
    db.execute('UPDATE coin_settings SET coins_per_minute = 5 WHERE id = 1')
    headers = headers_for(user)
    res = client.post('/api/coins/claim', headers=headers, json={'earnToken': start_session(client, headers)})
    assert res.get_json() == {'earned': 5}


def test_replayed_token_is_rejected(client, user, headers_for):
    headers = headers_for(user)
    token = start_session(client, headers)
    client.post('/api/coins/claim', headers=headers, json={'earnToken': token})
    res = client.post('/api/coins/claim', headers=headers, json={'earnToken': token})
    assert res.status_code == 400
    assert res.get_json() == {'error': 'Token not found or already used'}


def test_token_of_another_user(client, user, make_user, headers_for):
    token = start_session(client, headers_for(user))
    other = make_user()
    res = client.post('/api/coins/claim', headers=headers_for(other), json={'earnToken': token})
    assert res.status_code == 400
    assert res.get_json() == {'error': 'Token user mismatch'}


def test_claim_cooldown(client, make_user, headers_for):
    u = make_user(last_claim_time=to_iso(utcnow() - datetime.timedelta(seconds=20)))
    headers = headers_for(u)
    res = client.post('/api/coins/claim', headers=headers, json={'earnToken': start_session(client, headers)})
    assert res.status_code == 429
    body = res.get_json()
    assert body['error'] == 'Cooldown active'
    assert 38 <= body['waitSeconds'] <= 40
    assert coins(u) == 0


def test_claim_after_cooldown(client, make_user, headers_for):
    u = make_user(last_claim_time=to_iso(utcnow() - datetime.timedelta(seconds=61)))
    headers = headers_for(u)
    res = client.post('/api/coins/claim', headers=headers, json={'earnToken': start_session(client, headers)})
    assert res.status_code == 200


def test_flagged_user_cannot_earn(client, make_user, headers_for):
    u = make_user(flagged=1)
    headers = headers_for(u)
    assert client.post('/api/coins/session', headers=headers).status_code == 403
    res = client.post('/api/coins/claim', headers=headers, json={'earnToken': 'a' * 64})
    assert res.status_code == 403
    assert res.get_json() == {'error': 'Account flagged. Contact support.'}


def test_malformed_token(client, user, headers_for):
    res = client.post('/api/coins/claim', headers=headers_for(user), json={'earnToken': 'short'})
    assert res.status_code == 400
    assert res.get_json()['error'] == 'Validation failed'


def test_balance(client, user, headers_for):
    res = client.get('/api/coins/balance', headers=headers_for(user))
    assert res.get_json() == {'coins': 500, 'balance': 100.0, 'last_claim_time': None}
