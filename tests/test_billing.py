import io
import os

import pytest
import responses

from astranodes import create_app, db

WEBHOOK = 'https://discord.test/api/webhooks/1/abc'
PNG = b'\x89PNG\r\n\x1a\n' + b'\x00' * 64


def utr_form(**overrides):
    form = {'amount': '199', 'utr_number': '412345678901', 'screenshot': (io.BytesIO(PNG), 'proof.png', 'image/png')}
    form.update(overrides)
    return form


@pytest.fixture
def hooked(settings):
    app = create_app(dict(settings, DISCORD_WEBHOOK_URL=WEBHOOK))
    with app.app_context():
        yield app


def test_submit_without_webhook_configured(client, user, headers_for):
    res = client.post('/api/billing/utr', headers=headers_for(user), data=utr_form(),
                      content_type='multipart/form-data')
    assert res.status_code == 201
    row = db.get_one('SELECT * FROM utr_submissions WHERE id = ?', (res.get_json()['id'],))
    assert row['status'] == 'pending'
    assert row['amount'] == 199
    assert os.path.exists(row['screenshot_path'])

    listing = client.get('/api/billing/utr', headers=headers_for(user)).get_json()
    assert [s['utr_number'] for s in listing] == ['412345678901']


def test_screenshot_required(client, user, headers_for):
    form = utr_form()
    del form['screenshot']
    res = client.post('/api/billing/utr', headers=headers_for(user), data=form, content_type='multipart/form-data')
    assert res.status_code == 400
    assert res.get_json() == {'error': 'Screenshot required'}


def test_screenshot_must_be_an_image(client, user, headers_for):
    form = utr_form(screenshot=(io.BytesIO(b'MZ'), 'proof.exe', 'application/octet-stream'))
    res = client.post('/api/billing/utr', headers=headers_for(user), data=form, content_type='multipart/form-data')
    assert res.status_code == 400
    assert db.query('SELECT id FROM utr_submissions') == []


@responses.activate
def test_submission_is_forwarded_to_discord(hooked, make_user, headers_for):
    responses.add(responses.POST, WEBHOOK, status=204)
    u = make_user()
    res = hooked.test_client().post('/api/billing/utr', headers=headers_for(u), data=utr_form(),
                                    content_type='multipart/form-data')
    assert res.status_code == 201
    assert len(responses.calls) == 1
    assert b'412345678901' in responses.calls[0].request.body


@responses.activate
def test_webhook_failure_rolls_back(hooked, make_user, headers_for):
    responses.add(responses.POST, WEBHOOK, status=500)
    u = make_user()
    res = hooked.test_client().post('/api/billing/utr', headers=headers_for(u), data=utr_form(),
                                    content_type='multipart/form-data')
    assert res.status_code == 502
    assert res.get_json() == {'error': 'Failed to submit payment proof. Please try again.'}
    assert db.query('SELECT id FROM utr_submissions') == []
    assert os.listdir(hooked.config['UPLOAD_DIR']) == []
