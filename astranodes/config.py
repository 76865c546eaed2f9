import os
import logging

from dotenv import load_dotenv

load_dotenv()

log = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    pass


def _env(key, default=None):
    value = os.environ.get(key)
    if value is None or value.strip() == '':
        return default
    return value.strip()


def _int(key, default):
    value = _env(key)
    try:
        return int(value) if value is not None else default
    except ValueError:
        raise ConfigError(f'{key} must be an integer, got {value!r}')


def _bool(key, default=False):
    value = _env(key)
    if value is None:
        return default
    return value.lower() in ('1', 'true', 'yes', 'on')


def load_settings() -> dict:
    """Read every setting from the environment (and .env) into a flat dict for app.config."""
    window_ms = _int('RATE_LIMIT_WINDOW', 900000)
    max_requests = _int('RATE_LIMIT_MAX', 200)

    return {
        'ENV_NAME': _env('FLASK_ENV', 'development'),
        'PORT': _int('PORT', 4000),
        'LOG_LEVEL': _env('LOG_LEVEL', 'INFO'),
        'FRONTEND_URL': _env('FRONTEND_URL', 'http://localhost:5173').rstrip('/'),

        'JWT_SECRET': _env('JWT_SECRET', ''),
        'JWT_EXPIRES_IN': _env('JWT_EXPIRES_IN', '7d'),
        'SECRET_KEY': _env('SESSION_SECRET', _env('JWT_SECRET', '')),

        'DB_PATH': _env('DB_PATH', './data/astranodes.sqlite'),
        'UPLOAD_DIR': _env('UPLOAD_DIR', './uploads'),
        'MAX_CONTENT_LENGTH': 10 * 1024 * 1024,

        'RATELIMIT_ENABLED': _bool('RATE_LIMIT_ENABLED', True),
        'RATELIMIT_DEFAULT': f'{max_requests} per {max(1, window_ms // 1000)} second',
        'RATELIMIT_STORAGE_URI': _env('RATE_LIMIT_STORAGE_URI', 'memory://'),
        'RATELIMIT_HEADERS_ENABLED': True,
        # reverse proxies in front of the app; 0 when clients connect directly
        'TRUST_PROXY_HOPS': _int('TRUST_PROXY_HOPS', 1),

        'PTERODACTYL_URL': (_env('PTERODACTYL_URL', '') or '').rstrip('/'),
        'PTERODACTYL_API_KEY': _env('PTERODACTYL_API_KEY', ''),
        'PTERODACTYL_DEFAULT_EGG': _int('PTERODACTYL_DEFAULT_EGG', 1),
        'PTERODACTYL_DEFAULT_DOCKER_IMAGE': _env('PTERODACTYL_DEFAULT_DOCKER_IMAGE', 'ghcr.io/pterodactyl/yolks:java_21'),
        'PTERODACTYL_DEFAULT_STARTUP': _env(
            'PTERODACTYL_DEFAULT_STARTUP',
            'java -Xms128M -Xmx{{SERVER_MEMORY}}M -jar {{SERVER_JARFILE}}'),
        'PTERODACTYL_DEFAULT_ENV': _env('PTERODACTYL_DEFAULT_ENV', '{}'),

        'DISCORD_WEBHOOK_URL': _env('DISCORD_WEBHOOK_URL', ''),
        'DISCORD_SUPPORT_WEBHOOK_URL': _env('DISCORD_SUPPORT_WEBHOOK_URL', ''),

        'UPI_ID': _env('UPI_ID', ''),
        'UPI_NAME': _env('UPI_NAME', ''),

        'ADSTERRA_API_TOKEN': _env('ADSTERRA_API_TOKEN', ''),
        'ADSTERRA_DOMAIN_ID': _env('ADSTERRA_DOMAIN_ID', ''),
        'ADSTERRA_NATIVE_BANNER_ID': _env('ADSTERRA_NATIVE_BANNER_ID'),
        'ADSTERRA_BANNER_ID': _env('ADSTERRA_BANNER_ID'),
        'ADSTERRA_NATIVE_BANNER_KEY': _env('ADSTERRA_NATIVE_BANNER_KEY'),
        'ADSTERRA_BANNER_KEY': _env('ADSTERRA_BANNER_KEY'),
        'ADSTERRA_NATIVE_BANNER_SCRIPT': _env('ADSTERRA_NATIVE_BANNER_SCRIPT'),
        'ADSTERRA_BANNER_SCRIPT': _env('ADSTERRA_BANNER_SCRIPT'),
        'ADSTERRA_NATIVE_CONTAINER_ID': _env('ADSTERRA_NATIVE_CONTAINER_ID'),

        'CURSEFORGE_API_KEY': _env('CURSEFORGE_API_KEY', ''),

        'GOOGLE_CLIENT_ID': _env('GOOGLE_CLIENT_ID', ''),
        'GOOGLE_CLIENT_SECRET': _env('GOOGLE_CLIENT_SECRET', ''),
        'DISCORD_CLIENT_ID': _env('DISCORD_CLIENT_ID', ''),
        'DISCORD_CLIENT_SECRET': _env('DISCORD_CLIENT_SECRET', ''),
        'OAUTH_CALLBACK_URL': (_env('OAUTH_CALLBACK_URL', 'http://localhost:4000') or '').rstrip('/'),

        'PASSWORD_AUTH_ENABLED': _bool('PASSWORD_AUTH_ENABLED', False),
        'SCHEDULER_ENABLED': _bool('SCHEDULER_ENABLED', True),
        'WORLD_RESET_DELAY': _int('WORLD_RESET_DELAY', 5),
    }


def check_required(settings: dict):
    problems = []
    if len(settings.get('JWT_SECRET') or '') < 32:
        problems.append('JWT_SECRET must be at least 32 characters')
    if not settings.get('PTERODACTYL_URL'):
        problems.append('PTERODACTYL_URL is required')
    if not settings.get('PTERODACTYL_API_KEY'):
        problems.append('PTERODACTYL_API_KEY is required')
    if problems:
        for p in problems:
            log.error('Invalid environment configuration: %s', p)
        raise ConfigError('; '.join(problems))


def configure_logging(level='INFO'):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s %(levelname)-7s [%(name)s] %(message)s',
    )
