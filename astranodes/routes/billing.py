import logging

import requests
from flask import Blueprint, current_app, g, jsonify, request

from .. import db
from ..auth import login_required
from ..errors import ApiError
from ..schemas import UtrSubmission, parse
from ..uploads import remove_file, save_screenshot
from ..webhooks import send_utr_notification

log = logging.getLogger(__name__)

bp = Blueprint('billing', __name__, url_prefix='/api/billing')


@bp.route('/utr', methods=['POST'])
@login_required
def submit_utr():
    screenshot = request.files.get('screenshot')
    if not screenshot or not screenshot.filename:
        raise ApiError('Screenshot required', 400)
    body = parse(UtrSubmission, request.form.to_dict())

    path = save_screenshot(screenshot)
    submission_id = db.execute(
        "INSERT INTO utr_submissions (user_id, amount, utr_number, screenshot_path, status) "
        "VALUES (?, ?, ?, ?, 'pending')", (g.user['id'], body.amount, body.utr_number, path))

    try:
        send_utr_notification(current_app.config['DISCORD_WEBHOOK_URL'], g.user['email'],
                              body.amount, body.utr_number, path)
    except (requests.RequestException, OSError) as e:
        log.error('UTR %s could not be forwarded to Discord: %s', submission_id, e)
        db.execute('DELETE FROM utr_submissions WHERE id = ?', (submission_id,))
        remove_file(path)
        raise ApiError('Failed to submit payment proof. Please try again.', 502)

    log.info('UTR submission %s from user %s (%s)', submission_id, g.user['id'], body.amount)
    return jsonify(id=submission_id), 201


@bp.route('/utr')
@login_required
def my_submissions():
    rows = db.query('SELECT id, amount, utr_number, status, created_at FROM utr_submissions '
                    'WHERE user_id = ? ORDER BY created_at DESC, id DESC', (g.user['id'],))
    return jsonify(rows)
