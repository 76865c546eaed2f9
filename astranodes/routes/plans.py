from flask import Blueprint, jsonify

from .. import db
from ..auth import login_required
from ..extensions import service

bp = Blueprint('plans', __name__, url_prefix='/api/plans')


@bp.route('/coin')
def coin_plans():
    return jsonify(db.query('SELECT * FROM plans_coin ORDER BY coin_price ASC, id ASC'))


@bp.route('/real')
def real_plans():
    return jsonify(db.query('SELECT * FROM plans_real ORDER BY price ASC, id ASC'))


@bp.route('/eggs')
@login_required
def eggs():
    return jsonify(service('panel').get_eggs())
