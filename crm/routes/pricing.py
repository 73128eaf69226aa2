import logging

from flask import Blueprint, current_app, jsonify

from crm import csrf, services
from crm.pricing_config import reload_pricing_table

logger = logging.getLogger(__name__)

bp = Blueprint('pricing', __name__)


@bp.route('')
def current_pricing():
    table = services.current_pricing_table()
    return jsonify({'success': True, 'source': table.source, 'pricing': table.to_dict()})


@bp.route('/reload', methods=['POST'])
@csrf.exempt
def reload_pricing():
    """Re-read the pricing file now instead of waiting for an mtime change"""
    table = reload_pricing_table(current_app.config.get('PRICING_TABLE_PATH'))
    logger.info("Pricing table reloaded from %s", table.source)
    return jsonify({'success': True, 'source': table.source, 'pricing': table.to_dict()})
