import logging

from flask import jsonify, request
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

log = logging.getLogger(__name__)


class ApiError(Exception):
    status_code = 400

    def __init__(self, message, status_code=None, **extra):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_dict(self):
        return {'error': self.message, **self.extra}


class PanelError(ApiError):
    """Pterodactyl or Wings call failed. The message is safe to show; details only go to the log."""
    status_code = 502


def ok(message, data=None, status_code=200):
    return jsonify(success=True, message=message, data=data or {}), status_code


def fail(message, status_code=400, data=None):
    return jsonify(success=False, message=message, data=data or {}), status_code


def validation_details(exc: ValidationError):
    details = []
    for err in exc.errors():
        details.append({
            'path': [str(p) for p in err.get('loc', ())],
            'message': err.get('msg', 'Invalid value'),
        })
    return details


def register_error_handlers(app):

    @app.errorhandler(ApiError)
    def handle_api_error(e):
        if e.status_code >= 500:
            log.error('%s %s -> %s %s', request.method, request.path, e.status_code, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        details = validation_details(e)
        log.info('Validation failed on %s: %s', request.path, details)
        return jsonify(error='Validation failed', details=details), 400

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(e):
        return jsonify(error='File too large'), 413

    @app.errorhandler(429)
    def handle_rate_limited(e):
        message = getattr(getattr(e, 'limit', None), 'error_message', None)
        if callable(message):
            message = message()
        return jsonify(error=message or 'Too many requests. Please slow down.'), 429

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify(error=e.description or e.name), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        log.exception('Unhandled error on %s %s', request.method, request.path)
        return jsonify(error='Internal server error'), 500
