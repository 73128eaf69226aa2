from flask import Blueprint, jsonify
from sqlalchemy import text

from crm import db

bp = Blueprint('main', __name__)


@bp.route('/health')
def health():
    """Liveness check that also touches the database"""
    db.session.execute(text('SELECT 1'))
    return jsonify({'success': True, 'status': 'ok'})
