from flask import Blueprint, jsonify, make_response, request

from crm import services
from crm.exports import XLSX_MIMETYPE, build_commission_workbook, commission_export_filename
from crm.utils import parse_month

bp = Blueprint('analytics', __name__)


def _stringify(totals):
    return {key: str(value) for key, value in totals.items()}


@bp.route('/commission')
def commission():
    """Commission payouts per user; filters: user_id, month (YYYY-MM)"""
    user_id = request.args.get('user_id') or None
    month = request.args.get('month') or None
    summary = services.commission_summary(user_id=user_id, month=month)
    return jsonify({
        'success': True,
        'month': parse_month(month),
        'commissions': {uid: _stringify(amounts) for uid, amounts in summary.items()},
    })


@bp.route('/commission/export')
def export_commission():
    user_id = request.args.get('user_id') or None
    month = parse_month(request.args.get('month'))

    rows = services.commissions_for_export(month=month, user_id=user_id)
    summary = services.commission_summary(user_id=user_id, month=month)
    output = build_commission_workbook(rows, summary, month)

    response = make_response(output.read())
    response.headers['Content-Type'] = XLSX_MIMETYPE
    response.headers['Content-Disposition'] = f'attachment; filename="{commission_export_filename(month)}"'
    return response


@bp.route('/revenue-by-source')
def revenue_by_source():
    month = request.args.get('month') or None
    return jsonify({
        'success': True,
        'month': parse_month(month),
        'revenue': _stringify(services.revenue_by_source(month=month)),
    })


@bp.route('/revenue-by-month')
def revenue_by_month():
    year = request.args.get('year') or None
    return jsonify({
        'success': True,
        'year': year,
        'revenue': _stringify(services.revenue_by_month(year=year)),
    })


@bp.route('/leaderboard')
def leaderboard():
    """Salesperson ranking; filter: month (YYYY-MM)"""
    month = request.args.get('month') or None
    ranked = services.performance_leaderboard(month=month)
    for row in ranked:
        row.update({key: str(row[key]) for key in ('revenue', 'commission', 'score')})
    return jsonify({'success': True, 'month': parse_month(month), 'leaderboard': ranked})
