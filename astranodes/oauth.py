import logging
from urllib.parse import urlencode

import requests

log = logging.getLogger(__name__)

PROVIDERS = {
    'google': {
        'authorize': 'https://accounts.google.com/o/oauth2/v2/auth',
        'token': 'https://oauth2.googleapis.com/token',
        'profile': 'https://openidconnect.googleapis.com/v1/userinfo',
        'scope': 'openid email profile',
    },
    'discord': {
        'authorize': 'https://discord.com/api/oauth2/authorize',
        'token': 'https://discord.com/api/oauth2/token',
        'profile': 'https://discord.com/api/users/@me',
        'scope': 'identify email',
    },
}


class OAuthError(Exception):
    pass


def credentials(config, provider):
    prefix = provider.upper()
    return config.get(f'{prefix}_CLIENT_ID'), config.get(f'{prefix}_CLIENT_SECRET')


def is_configured(config, provider):
    client_id, secret = credentials(config, provider)
    return provider in PROVIDERS and bool(client_id and secret)


def redirect_uri(config, provider):
    return f"{config['OAUTH_CALLBACK_URL']}/api/auth/{provider}/callback"


def authorize_url(config, provider, state):
    p = PROVIDERS[provider]
    client_id, _ = credentials(config, provider)
    params = {
        'response_type': 'code',
        'client_id': client_id,
        'redirect_uri': redirect_uri(config, provider),
        'scope': p['scope'],
        'state': state,
    }
    if provider == 'google':
        params['prompt'] = 'select_account'
    return f"{p['authorize']}?{urlencode(params)}"


def fetch_profile(config, provider, code):
    """Exchange the code and return {id, email, username, first_name, last_name}."""
    p = PROVIDERS[provider]
    client_id, secret = credentials(config, provider)
    try:
        resp = requests.post(p['token'], timeout=15, headers={'Accept': 'application/json'}, data={
            'grant_type': 'authorization_code',
            'code': code,
            'client_id': client_id,
            'client_secret': secret,
            'redirect_uri': redirect_uri(config, provider),
        })
        resp.raise_for_status()
        access_token = resp.json()['access_token']
        me = requests.get(p['profile'], timeout=15, headers={'Authorization': f'Bearer {access_token}'})
        me.raise_for_status()
        data = me.json()
    except (requests.RequestException, KeyError, ValueError) as e:
        raise OAuthError(f'{provider} token exchange failed: {e}')

    email = (data.get('email') or '').lower()
    if not email:
        raise OAuthError(f'{provider} did not return an email address')

    if provider == 'google':
        return {
            'id': str(data.get('sub')),
            'email': email,
            'username': data.get('name') or email.split('@')[0],
            'first_name': data.get('given_name'),
            'last_name': data.get('family_name'),
        }
    return {
        'id': str(data.get('id')),
        'email': email,
        'username': data.get('username') or email.split('@')[0],
        'first_name': data.get('username'),
        'last_name': None,
    }
