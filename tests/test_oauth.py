import pytest
import responses

from astranodes import db
from astranodes.oauth import PROVIDERS
from astranodes.routes import auth as auth_routes


@pytest.fixture
def settings(settings):
    return dict(settings, GOOGLE_CLIENT_ID='gid', GOOGLE_CLIENT_SECRET='gsecret',
                DISCORD_CLIENT_ID='did', DISCORD_CLIENT_SECRET='dsecret')


@pytest.fixture
def rsps():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        yield mock


def sign_in(client, rsps, profile, provider='google'):
    rsps.add(responses.POST, PROVIDERS[provider]['token'], json={'access_token': 'at-1'})
    rsps.add(responses.GET, PROVIDERS[provider]['profile'], json=profile)
    with client.session_transaction() as sess:
        sess['oauth_state'] = 'st-1'
    return client.get(f'/api/auth/{provider}/callback?code=c-1&state=st-1')


def signed_in_email(client):
    token = client.post('/api/auth/exchange-token').get_json()['token']
    return client.get('/api/auth/me', headers={'Authorization': f'Bearer {token}'}).get_json()['email']


def test_start_redirects_to_provider(client):
    res = client.get('/api/auth/discord')
    assert res.status_code == 302
    assert res.headers['Location'].startswith(PROVIDERS['discord']['authorize'])
    with client.session_transaction() as sess:
        assert sess['oauth_state']


def test_new_user_is_created_with_panel_account(client, rsps, panel):
    res = sign_in(client, rsps, {'sub': 'g-1', 'email': 'New@gmail.com', 'name': 'New Person',
                                 'given_name': 'New', 'family_name': 'Person'})
    assert res.status_code == 302
    assert res.headers['Location'].endswith('/auth/callback?code=session')

    row = db.get_one('SELECT * FROM users WHERE email = ?', ('new@gmail.com',))
    assert (row['oauth_provider'], row['oauth_id'], row['email_verified']) == ('google', 'g-1', 1)
    assert row['pterodactyl_user_id'] == 100
    assert panel.called('create_user') == [('create_user', 'new@gmail.com')]
    assert signed_in_email(client) == 'new@gmail.com'


def test_new_user_survives_panel_outage(client, rsps, panel):
    panel.failing.add('create_user')
    res = sign_in(client, rsps, {'sub': 'g-2', 'email': 'later@gmail.com'})
    assert res.headers['Location'].endswith('/auth/callback?code=session')
    assert db.get_one('SELECT pterodactyl_user_id FROM users WHERE email = ?',
                      ('later@gmail.com',))['pterodactyl_user_id'] is None


def test_returning_user_matches_on_provider_id(client, rsps, make_user, panel):
    existing = make_user(email='old@gmail.com', oauth_provider='google', oauth_id='g-7')
    sign_in(client, rsps, {'sub': 'g-7', 'email': 'renamed@gmail.com'})

    assert db.get_one('SELECT COUNT(*) AS n FROM users')['n'] == 1
    assert db.get_one('SELECT last_login_ip FROM users WHERE id = ?', (existing['id'],))['last_login_ip'] == '127.0.0.1'
    assert panel.called('create_user') == []
    assert signed_in_email(client) == 'old@gmail.com'


def test_email_account_gets_linked(client, rsps, make_user):
    existing = make_user(email='mail@gmail.com', password='hunter2hunter2')
    sign_in(client, rsps, {'id': 'd-1', 'email': 'Mail@gmail.com', 'username': 'mail'}, provider='discord')

    row = db.get_one('SELECT * FROM users WHERE id = ?', (existing['id'],))
    assert (row['oauth_provider'], row['oauth_id'], row['email_verified']) == ('discord', 'd-1', 1)
    assert db.get_one('SELECT COUNT(*) AS n FROM users')['n'] == 1


def test_token_exchange_failure_redirects(client, rsps):
    rsps.add(responses.POST, PROVIDERS['google']['token'], status=400)
    with client.session_transaction() as sess:
        sess['oauth_state'] = 'st-1'
    res = client.get('/api/auth/google/callback?code=c-1&state=st-1')
    assert res.headers['Location'].endswith('/login?error=oauth_failed')
    assert client.post('/api/auth/exchange-token').status_code == 401


def test_unexpected_failure_redirects(client, rsps, monkeypatch):
    def broken(*args):
        raise RuntimeError('database is locked')
    monkeypatch.setattr(auth_routes, 'resolve_oauth_user', broken)

    res = sign_in(client, rsps, {'sub': 'g-3', 'email': 'x@gmail.com'})
    assert res.status_code == 302
    assert res.headers['Location'].endswith('/login?error=oauth_failed')
