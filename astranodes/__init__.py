import logging
import os

from flask import Flask, jsonify, request, send_from_directory
from werkzeug.middleware.proxy_fix import ProxyFix

from . import db
from .adsterra import AdsterraClient
from .cli import register_cli
from .config import check_required, configure_logging, load_settings
from .earn import EarnTokenStore
from .errors import register_error_handlers
from .extensions import cors, limiter, socketio
from .plugins import PluginInstaller
from .pterodactyl import PanelClient
from .wings import WingsClient

log = logging.getLogger(__name__)

JSON_BODY_LIMIT = 2 * 1024 * 1024
# file contents are posted as JSON and may run past the normal body limit
LARGE_JSON_ENDPOINTS = {'manage.write_file'}


def create_app(overrides=None):
    app = Flask(__name__)
    app.config.update(load_settings())
    if overrides:
        app.config.update(overrides)
    hops = app.config.get('TRUST_PROXY_HOPS', 0)
    if hops:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=hops, x_proto=hops, x_host=hops)

    configure_logging(app.config['LOG_LEVEL'])
    if not app.config.get('TESTING'):
        check_required(app.config)

    db.configure(app.config['DB_PATH'])
    db.init_db()
    os.makedirs(app.config['UPLOAD_DIR'], exist_ok=True)

    cors.init_app(app, resources={r'/api/*': {'origins': app.config['FRONTEND_URL']}}, supports_credentials=True)
    limiter.init_app(app)
    socketio.init_app(app, cors_allowed_origins='*', async_mode='threading')

    panel = PanelClient.from_config(app.config)
    wings = WingsClient(panel)
    app.extensions['panel'] = panel
    app.extensions['wings'] = wings
    app.extensions['plugins'] = PluginInstaller(wings, app.config.get('CURSEFORGE_API_KEY'))
    app.extensions['earn_tokens'] = EarnTokenStore()
    app.extensions['adsterra'] = AdsterraClient(app.config)

    register_error_handlers(app)

    from . import console  # noqa: F401  registers the Socket.IO handlers
    from .routes import BLUEPRINTS
    for bp in BLUEPRINTS:
        app.register_blueprint(bp)
    register_cli(app)

    @app.before_request
    def limit_json_body():
        if (request.is_json and request.content_length and request.content_length > JSON_BODY_LIMIT
                and request.endpoint not in LARGE_JSON_ENDPOINTS):
            return jsonify(error='Request body too large'), 413

    @app.route('/health')
    @limiter.exempt
    def health():
        return jsonify(status='ok', service='astranodes-api')

    @app.route('/uploads/<path:filename>')
    def uploads(filename):
        return send_from_directory(os.path.abspath(app.config['UPLOAD_DIR']), filename)

    log.info('AstraNodes API ready (%s)', app.config['ENV_NAME'])
    return app
