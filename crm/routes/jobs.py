import logging

from flask import Blueprint, jsonify

from crm import csrf, db, services
from crm.errors import CRMError
from crm.models import Job
from crm.routes import json_body

logger = logging.getLogger(__name__)

bp = Blueprint('jobs', __name__)


def _unexpected(action, error):
    db.session.rollback()
    logger.exception("Unexpected error while %s", action)
    return jsonify({'success': False, 'error': f'{action} failed: {error}', 'code': 'INTERNAL_ERROR'}), 500


@bp.route('', methods=['POST'])
@csrf.exempt
def create_job():
    """Create a job from a JSON body"""
    data = json_body()
    try:
        job = services.create_job(data)
    except CRMError:
        raise
    except Exception as e:
        return _unexpected('creating job', e)
    return jsonify({'success': True, 'job': job.to_dict()}), 201


@bp.route('/<job_id>')
def get_job(job_id):
    """Job with its measurements, HVAC systems and estimates"""
    job = services.get_or_404(Job, job_id, 'Job')
    data = job.to_dict()
    data['measurements'] = [m.to_dict() for m in job.measurements]
    data['hvac_systems'] = [s.to_dict() for s in job.hvac_systems]
    data['estimates'] = [e.to_dict() for e in job.estimates]
    return jsonify({'success': True, 'job': data})


@bp.route('/<job_id>/measurements', methods=['POST'])
@csrf.exempt
def add_measurement(job_id):
    data = json_body()
    try:
        measurement = services.add_measurement(job_id, data)
    except CRMError:
        raise
    except Exception as e:
        return _unexpected('adding measurement', e)

    job = db.session.get(Job, job_id)
    return jsonify({
        'success': True,
        'measurement': measurement.to_dict(),
        'total_square_feet': str(job.total_square_feet),
    }), 201


@bp.route('/<job_id>/measurements/<measurement_id>', methods=['DELETE'])
@csrf.exempt
def delete_measurement(job_id, measurement_id):
    try:
        removed = services.delete_measurement(job_id, measurement_id)
    except CRMError:
        raise
    except Exception as e:
        return _unexpected('deleting measurement', e)

    job = db.session.get(Job, job_id)
    return jsonify({
        'success': True,
        'removed_square_feet': str(removed),
        'total_square_feet': str(job.total_square_feet),
    })


@bp.route('/<job_id>/hvac-systems', methods=['POST'])
@csrf.exempt
def add_hvac_system(job_id):
    data = json_body()
    try:
        system = services.add_hvac_system(job_id, data)
    except CRMError:
        raise
    except Exception as e:
        return _unexpected('adding HVAC system', e)
    return jsonify({'success': True, 'hvac_system': system.to_dict()}), 201


@bp.route('/<job_id>/estimate/generate', methods=['POST'])
@csrf.exempt
def generate_estimate(job_id):
    """Price the job; optional body keys: markup_percentage, cost_basis"""
    data = json_body(required=False)
    try:
        estimate = services.generate_estimate(
            job_id,
            markup_percentage=data.get('markup_percentage'),
            cost_basis=data.get('cost_basis'),
        )
    except CRMError:
        raise
    except Exception as e:
        return _unexpected('generating estimate', e)
    return jsonify({'success': True, 'estimate': estimate.to_dict()}), 201


@bp.route('/<job_id>/complete', methods=['POST'])
@csrf.exempt
def complete_job(job_id):
    try:
        job, commission = services.complete_job(job_id)
    except CRMError:
        raise
    except Exception as e:
        return _unexpected('completing job', e)
    return jsonify({
        'success': True,
        'job': job.to_dict(),
        'backend_commission': commission.to_dict() if commission else None,
    })


@bp.route('/<job_id>/lost', methods=['POST'])
@csrf.exempt
def mark_lost(job_id):
    job = services.mark_job_lost(job_id)
    return jsonify({'success': True, 'job': job.to_dict()})
