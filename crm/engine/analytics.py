"""Read-only rollups over commission and revenue records."""
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from crm.constants import LEAD_SOURCES, CommissionPhase
from crm.utils import parse_month, round_money

ZERO = Decimal('0.00')
FALLBACK_SOURCE = 'other'

POINTS_PER_JOB_WON = 10
REVENUE_PER_POINT = Decimal('1000')


@dataclass(frozen=True)
class RevenueEntry:
    lead_source: str
    month: str
    amount: Decimal
    # Salesperson credited with the won job
    user_id: Optional[str] = None


def _empty_bucket():
    return {'frontend': ZERO, 'backend': ZERO, 'total': ZERO}


def summarize_commissions(commissions: Iterable, user_id=None, month=None):
    """
    Sum frontend and backend commission per user.

    ``commissions`` is any iterable of objects exposing ``user_id``, ``phase``,
    ``amount`` and ``paid_month``. A requested user with no payouts is still
    reported, with zeros.
    """
    month = parse_month(month)
    summary = OrderedDict()
    if user_id:
        summary[user_id] = _empty_bucket()

    for commission in commissions:
        if user_id and commission.user_id != user_id:
            continue
        if month and commission.paid_month != month:
            continue
        bucket = summary.setdefault(commission.user_id, _empty_bucket())
        phase = CommissionPhase(commission.phase).value
        amount = round_money(commission.amount)
        bucket[phase] += amount
        bucket['total'] += amount
    return dict(summary)


def summarize_revenue_by_source(entries: Iterable[RevenueEntry], month=None):
    """Revenue per lead source; every known source is present, zero or not"""
    month = parse_month(month)
    totals = OrderedDict((source, ZERO) for source in LEAD_SOURCES)
    for entry in entries:
        if month and entry.month != month:
            continue
        source = entry.lead_source if entry.lead_source in totals else FALLBACK_SOURCE
        totals[source] += round_money(entry.amount)
    return dict(totals)


def summarize_revenue_by_month(entries: Iterable[RevenueEntry], year=None):
    """Revenue per 'YYYY-MM'. With a year, all twelve months are reported."""
    totals = OrderedDict()
    if year:
        for mon in range(1, 13):
            totals[f'{int(year):04d}-{mon:02d}'] = ZERO
    for entry in entries:
        if year and not entry.month.startswith(f'{int(year):04d}-'):
            continue
        totals[entry.month] = totals.get(entry.month, ZERO) + round_money(entry.amount)
    return dict(sorted(totals.items()))


def performance_leaderboard(salespeople: Mapping[str, str], entries: Iterable[RevenueEntry],
                            commissions: Iterable, month=None):
    """
    Rank salespeople for a month, or for all time when no month is given.

    ``salespeople`` maps user id to display name and decides who is ranked;
    anyone in it who closed nothing is still listed with zeros. The score is
    10 points per won job plus one point per $1,000 of won revenue. Ties are
    broken by name.
    """
    month = parse_month(month)
    rows = OrderedDict(
        (user_id, {'user_id': user_id, 'name': name, 'jobs_won': 0, 'revenue': ZERO, 'commission': ZERO})
        for user_id, name in salespeople.items()
    )

    for entry in entries:
        if entry.user_id not in rows or (month and entry.month != month):
            continue
        rows[entry.user_id]['jobs_won'] += 1
        rows[entry.user_id]['revenue'] += round_money(entry.amount)

    for commission in commissions:
        if commission.user_id not in rows or (month and commission.paid_month != month):
            continue
        rows[commission.user_id]['commission'] += round_money(commission.amount)

    for row in rows.values():
        row['score'] = round_money(row['jobs_won'] * POINTS_PER_JOB_WON + row['revenue'] / REVENUE_PER_POINT)

    ranked = sorted(rows.values(), key=lambda row: (-row['score'], row['name']))
    for rank, row in enumerate(ranked, 1):
        row['rank'] = rank
    return ranked
