import logging

from flask import Blueprint, jsonify, make_response

from crm import csrf, db, services
from crm.constants import CommissionPhase, EstimateStatus
from crm.errors import CRMError
from crm.models import Estimate
from crm.routes import json_body

logger = logging.getLogger(__name__)

bp = Blueprint('estimates', __name__)


@bp.route('/<estimate_id>')
def detail_estimate(estimate_id):
    estimate = services.get_or_404(Estimate, estimate_id, 'Estimate')
    return jsonify({'success': True, 'estimate': estimate.to_dict()})


def _transition_response(estimate):
    data = estimate.to_dict()
    commission = None
    if estimate.status == EstimateStatus.APPROVED.value:
        earned = [c for c in estimate.job.commissions if c.estimate_id == estimate.id and c.phase == CommissionPhase.FRONTEND.value]
        commission = earned[0].to_dict() if earned else None
    return jsonify({'success': True, 'estimate': data, 'frontend_commission': commission})


def _run_transition(estimate_id, action, target=None):
    data = json_body(required=False)
    actor_id = data.get('actor_id')
    try:
        if target is None:
            estimate = services.submit_estimate(estimate_id, actor_id=actor_id)
        else:
            estimate = services.transition_estimate(estimate_id, target, actor_id=actor_id)
    except CRMError:
        raise
    except Exception as e:
        db.session.rollback()
        logger.exception("Unexpected error while trying to %s estimate %s", action, estimate_id)
        return jsonify({'success': False, 'error': f'{action} failed: {e}', 'code': 'INTERNAL_ERROR'}), 500
    return _transition_response(estimate)


@bp.route('/<estimate_id>/submit', methods=['POST'])
@csrf.exempt
def submit_estimate(estimate_id):
    """Auto-approve below the threshold, otherwise queue for a manager"""
    return _run_transition(estimate_id, 'submit')


@bp.route('/<estimate_id>/send', methods=['POST'])
@csrf.exempt
def send_estimate(estimate_id):
    return _run_transition(estimate_id, 'send', EstimateStatus.SENT)


@bp.route('/<estimate_id>/approve', methods=['POST'])
@csrf.exempt
def approve_estimate(estimate_id):
    return _run_transition(estimate_id, 'approve', EstimateStatus.APPROVED)


@bp.route('/<estimate_id>/reject', methods=['POST'])
@csrf.exempt
def reject_estimate(estimate_id):
    return _run_transition(estimate_id, 'reject', EstimateStatus.REJECTED)


@bp.route('/<estimate_id>/items', methods=['PATCH'])
@csrf.exempt
def override_item_prices(estimate_id):
    """Manager unit-price overrides: {"actor_id": ..., "price_overrides": {measurement_id: price}}"""
    data = json_body()
    try:
        estimate = services.set_price_overrides(estimate_id, data.get('price_overrides'),
                                                actor_id=data.get('actor_id'))
    except CRMError:
        raise
    except Exception as e:
        db.session.rollback()
        logger.exception("Unexpected error while overriding prices on estimate %s", estimate_id)
        return jsonify({'success': False, 'error': f'price override failed: {e}', 'code': 'INTERNAL_ERROR'}), 500
    return jsonify({'success': True, 'estimate': estimate.to_dict()})


@bp.route('/<estimate_id>/pdf')
def export_estimate_pdf(estimate_id):
    """Customer estimate as a PDF download"""
    from crm.pdf_reports import generate_estimate_pdf, get_estimate_filename

    estimate = services.get_or_404(Estimate, estimate_id, 'Estimate')
    try:
        pdf_buffer = generate_estimate_pdf(estimate)
    except Exception as e:
        logger.exception("PDF generation failed for estimate %s", estimate_id)
        return jsonify({'success': False, 'error': f'PDF generation failed: {e}', 'code': 'INTERNAL_ERROR'}), 500

    response = make_response(pdf_buffer.getvalue())
    response.headers['Content-Type'] = 'application/pdf'
    response.headers['Content-Disposition'] = f'attachment; filename="{get_estimate_filename(estimate)}"'
    return response
