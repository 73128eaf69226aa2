# crm/engine/commissions.py: two-phase sales commission
#
# Frontend commission rewards a profitable estimate approval, backend commission
# rewards job completion. These functions only compute; crm.services persists
# the result once per (user, job, phase).

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from crm.constants import BusinessRules, CommissionPhase, EstimateStatus, JobStatus
from crm.engine.estimates import Estimate
from crm.errors import ConsistencyError, ValidationError
from crm.utils import month_key, round_money, utcnow

DEFAULT_TIMEZONE = BusinessRules.BUSINESS_TIMEZONE


@dataclass(frozen=True)
class CommissionDraft:
    user_id: str
    job_id: str
    phase: CommissionPhase
    rate: Decimal
    base_amount: Decimal
    paid_month: str

    @property
    def amount(self):
        return round_money(self.base_amount * self.rate)

    @property
    def key(self):
        return (self.user_id, self.job_id, self.phase)


@dataclass(frozen=True)
class CompletedJob:
    job_id: str
    status: JobStatus
    approved_estimate: Optional[Estimate]
    completion_confirmed: bool = False
    completed_at: Optional[datetime] = None


def _require_user(user_id):
    if not user_id:
        raise ValidationError('user_id', 'a salesperson is required to earn commission')


def compute_frontend_commission(estimate: Estimate, user_id, tz_name=DEFAULT_TIMEZONE) -> Optional[CommissionDraft]:
    """
    2% of the approved total, paid only when the estimate is profitable and
    meets the minimum commissionable job value. Returns None otherwise.
    """
    if estimate.status is not EstimateStatus.APPROVED:
        raise ConsistencyError(
            f"Frontend commission requires an approved estimate (status is '{estimate.status.value}')",
            {'status': estimate.status.value},
        )
    if not estimate.job_id:
        raise ConsistencyError('Frontend commission requires an estimate attached to a job')
    _require_user(user_id)

    if estimate.profit <= 0:
        return None
    if estimate.total_amount < BusinessRules.MIN_JOB_VALUE:
        return None

    approved_at = estimate.approved_at or utcnow()
    return CommissionDraft(
        user_id=user_id,
        job_id=estimate.job_id,
        phase=CommissionPhase.FRONTEND,
        rate=BusinessRules.FRONTEND_RATE,
        base_amount=estimate.total_amount,
        paid_month=month_key(approved_at, tz_name),
    )


def compute_backend_commission(job: CompletedJob, user_id, tz_name=DEFAULT_TIMEZONE) -> Optional[CommissionDraft]:
    """
    1% of the approved total once the job is won and completion is confirmed.
    Independent of whether a frontend commission was paid.
    """
    if job.status is not JobStatus.WON:
        raise ConsistencyError(
            f"Backend commission requires a won job (status is '{job.status.value}')",
            {'status': job.status.value},
        )
    if job.approved_estimate is None or job.approved_estimate.status is not EstimateStatus.APPROVED:
        raise ConsistencyError('Backend commission requires an approved estimate for the job')
    _require_user(user_id)

    if not job.completion_confirmed:
        return None

    completed_at = job.completed_at or utcnow()
    return CommissionDraft(
        user_id=user_id,
        job_id=job.job_id,
        phase=CommissionPhase.BACKEND,
        rate=BusinessRules.BACKEND_RATE,
        base_amount=job.approved_estimate.total_amount,
        paid_month=month_key(completed_at, tz_name),
    )
