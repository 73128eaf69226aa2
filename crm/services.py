"""
Workflow services: the only code that reads and writes CRM records.

Routes call these functions; these functions call the pure engine in
``crm.engine`` and persist what it returns. Each public function commits its
own transaction and raises ``crm.errors`` exceptions on failure, leaving the
caller (normally the app error handler) to roll back.
"""
import logging
from decimal import Decimal

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from crm import db
from crm.constants import (
    ALTERNATE_TIER_FLAGS,
    LEAD_SOURCES,
    MUTABLE_ESTIMATE_STATUSES,
    BuildingType,
    CommissionPhase,
    EstimateStatus,
    HvacSystemType,
    JobStatus,
    ServiceType,
    UserRole,
)
from crm.engine import analytics as engine_analytics
from crm.engine import estimates as engine_estimates
from crm.engine.commissions import (
    DEFAULT_TIMEZONE,
    CompletedJob,
    compute_backend_commission,
    compute_frontend_commission,
)
from crm.engine.measurements import normalize_measurement
from crm.engine.pricing import HvacEntry, price_hvac_system, price_line_item, price_prep_work
from crm.errors import (
    AuthorizationError,
    ConsistencyError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from crm.models import Commission, Estimate, EstimateLineItem, HvacSystem, Job, Lead, Measurement, User
from crm.pricing_config import load_pricing_table
from crm.utils import month_key, parse_month, round_half_up, to_decimal, utcnow

logger = logging.getLogger(__name__)

# Largest value a Numeric(12, 4) unit price column holds
MAX_OVERRIDE_UNIT_PRICE = Decimal('99999999')


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def _business_timezone():
    return current_app.config.get('BUSINESS_TIMEZONE', DEFAULT_TIMEZONE)


def _minimum_policy():
    return current_app.config.get('MINIMUM_JOB_VALUE_POLICY', engine_estimates.MINIMUM_POLICY_FLAG)


def current_pricing_table():
    return load_pricing_table(current_app.config.get('PRICING_TABLE_PATH'))


def get_or_404(model, record_id, resource=None):
    record = db.session.get(model, record_id) if record_id else None
    if record is None:
        raise NotFoundError(resource or model.__name__, record_id)
    return record


def _enum_value(enum_cls, value, field, default=None):
    if value is None or value == '':
        if default is None:
            raise ValidationError(field, 'is required')
        return default.value
    try:
        return enum_cls(value).value
    except ValueError:
        allowed = ', '.join(member.value for member in enum_cls)
        raise ValidationError(field, f"'{value}' is not one of: {allowed}")


def _load_actor(actor_id):
    if not actor_id:
        return None
    user = get_or_404(User, actor_id, 'User')
    return engine_estimates.Actor.of(user.id, user.role)


def _commission_recipient(job):
    if job.salesperson_id:
        return job.salesperson_id
    if job.lead and job.lead.assigned_to:
        return job.lead.assigned_to
    return None


# ---------------------------------------------------------------------
# Users, leads and jobs
# ---------------------------------------------------------------------

def create_user(full_name, email, role=UserRole.SALESPERSON.value):
    if not full_name or not str(full_name).strip():
        raise ValidationError('full_name', 'is required')
    if not email or '@' not in email:
        raise ValidationError('email', 'a valid email address is required')
    if User.query.filter_by(email=email).first():
        raise ValidationError('email', f"'{email}' is already registered")

    user = User(full_name=full_name.strip(), email=email,
                role=_enum_value(UserRole, role, 'role', UserRole.SALESPERSON))
    db.session.add(user)
    db.session.commit()
    logger.info("Created user %s (%s)", user.email, user.role)
    return user


def create_lead(name, lead_source='other', assigned_to=None):
    if not name or not str(name).strip():
        raise ValidationError('name', 'is required')
    if lead_source not in LEAD_SOURCES:
        raise ValidationError('lead_source', f"'{lead_source}' is not one of: {', '.join(LEAD_SOURCES)}")
    if assigned_to:
        get_or_404(User, assigned_to, 'User')

    lead = Lead(name=name.strip(), lead_source=lead_source, assigned_to=assigned_to)
    db.session.add(lead)
    db.session.commit()
    logger.info("Created lead %s from %s", lead.id, lead.lead_source)
    return lead


def create_job(data):
    job_name = (data.get('job_name') or '').strip()
    if not job_name:
        raise ValidationError('job_name', 'is required')
    if len(job_name) > 100:
        raise ValidationError('job_name', 'must be 100 characters or fewer')

    service_type = _enum_value(ServiceType, data.get('service_type'), 'service_type', ServiceType.INSULATION)
    building_type = _enum_value(BuildingType, data.get('building_type'), 'building_type', BuildingType.RESIDENTIAL)

    tier_flag = data.get('tier_flag') or None
    if tier_flag and tier_flag != ALTERNATE_TIER_FLAGS[BuildingType(building_type)]:
        raise ValidationError('tier_flag', f"'{tier_flag}' does not apply to {building_type} buildings")

    prep_hours = None
    if data.get('prep_hours') not in (None, ''):
        prep_hours = to_decimal(data['prep_hours'], 'prep_hours')
        if prep_hours < 0:
            raise ValidationError('prep_hours', 'cannot be negative')

    lead_id = data.get('lead_id') or None
    salesperson_id = data.get('salesperson_id') or None
    lead = get_or_404(Lead, lead_id, 'Lead') if lead_id else None
    if salesperson_id:
        get_or_404(User, salesperson_id, 'User')
    elif lead is not None:
        salesperson_id = lead.assigned_to

    job = Job(
        job_name=job_name,
        service_type=service_type,
        building_type=building_type,
        tier_flag=tier_flag,
        prep_hours=prep_hours,
        lead_id=lead_id,
        salesperson_id=salesperson_id,
    )
    db.session.add(job)
    db.session.commit()
    logger.info("Created %s job %s (%s)", job.service_type, job.id, job.building_type)
    return job


def mark_job_lost(job_id):
    """Close a job as lost. Frontend commission already paid is kept."""
    job = get_or_404(Job, job_id, 'Job')
    if job.status == JobStatus.LOST.value:
        return job
    if job.completed_at is not None:
        raise ConsistencyError('A completed job cannot be marked lost', {'job_id': job.id})

    job.status = JobStatus.LOST.value
    db.session.commit()
    logger.info("Job %s marked lost", job.id)
    return job


# ---------------------------------------------------------------------
# Measurements and HVAC systems
# ---------------------------------------------------------------------

def _require_open_job(job):
    if job.status in (JobStatus.WON.value, JobStatus.LOST.value):
        raise ConsistencyError(f"Job is {job.status}; its scope can no longer change",
                               {'job_id': job.id, 'status': job.status})


def _adjust_square_feet(job_id, delta):
    db.session.execute(
        update(Job)
        .where(Job.id == job_id)
        .values(total_square_feet=Job.total_square_feet + delta)
        .execution_options(synchronize_session=False)
    )


def add_measurement(job_id, raw):
    """Validate and store a room measurement, growing the job's square footage"""
    job = get_or_404(Job, job_id, 'Job')
    _require_open_job(job)

    record = normalize_measurement(raw)
    if job.service_type != ServiceType.HVAC.value:
        # Reject unpriceable measurements now rather than at estimate time
        price_line_item(record, current_pricing_table(), job.service_type)

    measurement = Measurement.from_record(job.id, record)
    db.session.add(measurement)
    _adjust_square_feet(job.id, record.square_feet)
    db.session.commit()

    logger.info("Added measurement %s (%s sqft) to job %s", measurement.id, record.square_feet, job.id)
    return measurement


def delete_measurement(job_id, measurement_id):
    measurement = get_or_404(Measurement, measurement_id, 'Measurement')
    if measurement.job_id != job_id:
        raise NotFoundError('Measurement', measurement_id)

    approved_reference = (
        db.session.query(EstimateLineItem.id)
        .join(Estimate, Estimate.id == EstimateLineItem.estimate_id)
        .filter(EstimateLineItem.measurement_id == measurement.id,
                Estimate.status == EstimateStatus.APPROVED.value)
        .first()
    )
    if approved_reference is not None:
        raise ConsistencyError('Measurement is part of an approved estimate and cannot be deleted',
                               {'measurement_id': measurement.id})

    square_feet = measurement.square_feet
    db.session.delete(measurement)
    _adjust_square_feet(job_id, -square_feet)
    db.session.commit()

    logger.info("Deleted measurement %s (%s sqft) from job %s", measurement_id, square_feet, job_id)
    return square_feet


def recalculate_job_square_footage(job_id):
    """Rebuild total_square_feet from the job's measurements"""
    job = get_or_404(Job, job_id, 'Job')
    total = (
        db.session.query(func.coalesce(func.sum(Measurement.square_feet), 0))
        .filter(Measurement.job_id == job.id)
        .scalar()
    )
    total = Decimal(str(total)).quantize(Decimal('0.01'))
    if Decimal(job.total_square_feet) != total:
        logger.warning("Job %s square footage drifted: stored %s, measured %s",
                       job.id, job.total_square_feet, total)
    job.total_square_feet = total
    db.session.commit()
    return total


def _hvac_entry(data):
    system_type = HvacSystemType(_enum_value(HvacSystemType, data.get('system_type'), 'system_type'))
    if data.get('tonnage') in (None, ''):
        raise ValidationError('tonnage', 'is required')

    vent_count = data.get('vent_count') or 0
    if isinstance(vent_count, bool) or not isinstance(vent_count, (int, str)):
        raise ValidationError('vent_count', 'must be a whole number')
    try:
        vent_count = int(vent_count)
    except ValueError:
        raise ValidationError('vent_count', f"'{vent_count}' is not a whole number")

    return HvacEntry(
        system_type=system_type,
        tonnage=to_decimal(data['tonnage'], 'tonnage'),
        ductwork_linear_ft=to_decimal(data.get('ductwork_linear_ft') or 0, 'ductwork_linear_ft'),
        vent_count=vent_count,
        label=(data.get('label') or '').strip()[:100],
    )


def add_hvac_system(job_id, data):
    job = get_or_404(Job, job_id, 'Job')
    _require_open_job(job)
    if job.service_type != ServiceType.HVAC.value:
        raise ValidationError('service_type', f'HVAC systems can only be added to HVAC jobs, not {job.service_type}')

    entry = _hvac_entry(data)
    price_hvac_system(entry, current_pricing_table())

    system = HvacSystem(
        job_id=job.id,
        system_type=entry.system_type.value,
        tonnage=entry.tonnage,
        ductwork_linear_ft=entry.ductwork_linear_ft,
        vent_count=entry.vent_count,
        label=entry.label,
    )
    db.session.add(system)
    db.session.commit()
    logger.info("Added %s (%s ton) to job %s", system.system_type, system.tonnage, job.id)
    return system


# ---------------------------------------------------------------------
# Estimates
# ---------------------------------------------------------------------

def _price_job(job, table):
    """Line items for a job plus the measurement id behind each line"""
    items, measurement_ids = [], []
    if job.service_type == ServiceType.HVAC.value:
        for system in job.hvac_systems:
            lines = price_hvac_system(system.to_entry(), table)
            items.extend(lines)
            measurement_ids.extend([None] * len(lines))
        return items, measurement_ids

    for measurement in job.measurements:
        items.append(price_line_item(measurement.to_record(), table, job.service_type))
        measurement_ids.append(measurement.id)

    if job.service_type == ServiceType.PLASTER.value and job.prep_hours:
        items.append(price_prep_work(job.prep_hours, table))
        measurement_ids.append(None)
    return items, measurement_ids


def generate_estimate(job_id, markup_percentage=None, cost_basis=None):
    """
    Price the job and store the result.

    An open (draft or pending) estimate is repriced in place. After approval or
    rejection a new revision is created instead; a sent estimate must first get
    the customer's answer.
    """
    job = get_or_404(Job, job_id, 'Job')
    _require_open_job(job)

    table = current_pricing_table()
    items, measurement_ids = _price_job(job, table)
    if not items:
        raise ValidationError('line_items', 'job has no measurements or systems to price')

    priced = engine_estimates.aggregate_estimate(
        items, job.building_type, job.tier_flag,
        table=table,
        job_id=job.id,
        service_type=job.service_type,
        markup_percentage=markup_percentage,
        cost_basis=cost_basis,
        minimum_policy=_minimum_policy(),
    )

    current = job.current_estimate
    if current is not None and EstimateStatus(current.status) in MUTABLE_ESTIMATE_STATUSES:
        revised = engine_estimates.revise_estimate(current.to_priced(), line_items=priced.line_items,
                                                   markup_percentage=priced.markup_percentage)
        current.line_items = [
            EstimateLineItem.from_line_item(item, sort_order=index, measurement_id=measurement_ids[index])
            for index, item in enumerate(revised.line_items)
        ]
        current.markup_percentage = revised.markup_percentage
        current.subtotal = revised.subtotal
        current.total_amount = revised.total_amount
        current.cost_basis = priced.cost_basis
        current.minimum_job_value = priced.minimum_job_value
        current.tier_flag = priced.tier_flag
        estimate = current
        logger.info("Repriced estimate %s: %s", estimate.estimate_number, revised.total_amount)
    elif current is not None and current.status == EstimateStatus.SENT.value:
        raise InvalidTransitionError(current.status, current.status,
                                     'estimate is with the customer; record their answer first')
    else:
        revision = current.revision_number + 1 if current is not None else 0
        estimate = Estimate.from_priced(priced, revision_number=revision,
                                        supersedes_id=current.id if current is not None else None,
                                        measurement_ids=measurement_ids)
        db.session.add(estimate)
        logger.info("Generated estimate %s rev %s for job %s: %s",
                    estimate.estimate_number, revision, job.id, priced.total_amount)

    if priced.below_minimum:
        logger.warning("Estimate for job %s is below the %s minimum of %s",
                       job.id, job.service_type, priced.minimum_job_value)

    if job.status == JobStatus.PENDING.value:
        job.status = JobStatus.IN_PROGRESS.value
    db.session.commit()
    return estimate


def set_price_overrides(estimate_id, overrides, actor_id=None):
    """
    Apply manager unit-price overrides to the measurements behind an open
    estimate, then reprice it in place.

    ``overrides`` maps measurement id to a unit price; ``None`` clears the
    override on that measurement.
    """
    row = get_or_404(Estimate, estimate_id, 'Estimate')
    if not isinstance(overrides, dict) or not overrides:
        raise ValidationError('price_overrides', 'must map measurement ids to unit prices')

    actor = _load_actor(actor_id)
    if actor is None or actor.role not in (UserRole.MANAGER, UserRole.ADMIN):
        raise AuthorizationError(row.status, row.status, 'only managers may override unit prices')
    if EstimateStatus(row.status) not in MUTABLE_ESTIMATE_STATUSES:
        raise InvalidTransitionError(row.status, row.status, 'estimate is closed; create a new revision instead')

    job = row.job
    _require_open_job(job)
    if job.service_type == ServiceType.HVAC.value:
        raise ValidationError('price_overrides', 'HVAC estimates are priced from system entries')
    if job.current_estimate is not row:
        raise ConsistencyError('Only the latest revision can be repriced', {'estimate_id': row.id})

    now = utcnow()
    for measurement_id, price in overrides.items():
        measurement = get_or_404(Measurement, measurement_id, 'Measurement')
        if measurement.job_id != job.id:
            raise NotFoundError('Measurement', measurement_id)
        if price in (None, ''):
            measurement.override_unit_price = None
            measurement.override_set_at = None
            measurement.override_set_by = None
            continue
        price = to_decimal(price, 'price_overrides')
        if not 0 < price < MAX_OVERRIDE_UNIT_PRICE:
            raise ValidationError('price_overrides',
                                  f'unit price for {measurement_id} must be between 0 and {MAX_OVERRIDE_UNIT_PRICE}')
        measurement.override_unit_price = round_half_up(price, 4)
        measurement.override_set_at = now
        measurement.override_set_by = actor.user_id

    logger.info("Unit price overrides on %s measurement(s) of job %s by %s",
                len(overrides), job.id, actor.user_id)
    return generate_estimate(job.id, markup_percentage=row.markup_percentage, cost_basis=row.cost_basis)


def _apply_transition(row, updated, expected_status, now):
    """Write a status change only if the row still holds ``expected_status``"""
    values = {'status': updated.status.value, 'updated_at': now}
    if updated.status is EstimateStatus.APPROVED:
        values['approved_by'] = updated.approved_by
        values['approved_at'] = updated.approved_at
    elif updated.status is EstimateStatus.SENT:
        values['sent_at'] = now
    elif updated.status is EstimateStatus.REJECTED:
        values['rejected_at'] = now

    result = db.session.execute(
        update(Estimate)
        .where(Estimate.id == row.id, Estimate.status == expected_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise InvalidTransitionError(expected_status, updated.status, 'estimate was changed by another request')
    db.session.expire(row)


def _finish_transition(row, updated, expected_status):
    now = updated.approved_at or utcnow()
    _apply_transition(row, updated, expected_status, now)

    if updated.status is EstimateStatus.APPROVED:
        job = row.job
        if job.status != JobStatus.WON.value:
            job.status = JobStatus.WON.value
    db.session.commit()
    logger.info("Estimate %s: %s -> %s", row.estimate_number, expected_status, updated.status.value)

    if updated.status is EstimateStatus.APPROVED:
        award_frontend_commission(row.id)
    return row


def _check_job_accepts(row, target):
    if target is EstimateStatus.APPROVED and row.job.status == JobStatus.LOST.value:
        raise ConsistencyError('Estimates of a lost job cannot be approved', {'job_id': row.job_id})


def transition_estimate(estimate_id, target_status, actor_id=None):
    row = get_or_404(Estimate, estimate_id, 'Estimate')
    actor = _load_actor(actor_id)
    expected = row.status

    updated = engine_estimates.transition_estimate(row.to_priced(), target_status, actor, utcnow())
    _check_job_accepts(row, updated.status)
    return _finish_transition(row, updated, expected)


def submit_estimate(estimate_id, actor_id=None):
    """Auto-approve a small draft or queue it for manager approval"""
    row = get_or_404(Estimate, estimate_id, 'Estimate')
    actor = _load_actor(actor_id)
    expected = row.status

    updated = engine_estimates.submit_estimate(row.to_priced(), actor, utcnow())
    _check_job_accepts(row, updated.status)
    return _finish_transition(row, updated, expected)


def complete_job(job_id):
    """Confirm a won job is finished and pay the backend commission"""
    job = get_or_404(Job, job_id, 'Job')
    if job.status != JobStatus.WON.value:
        raise ConsistencyError(f"Only won jobs can be completed (status is '{job.status}')",
                               {'job_id': job.id, 'status': job.status})
    if job.approved_estimate is None:
        raise ConsistencyError('Job has no approved estimate', {'job_id': job.id})

    if job.completed_at is None:
        job.completed_at = utcnow()
        db.session.commit()
        logger.info("Job %s completed", job.id)

    return job, award_backend_commission(job.id)


# ---------------------------------------------------------------------
# Commissions
# ---------------------------------------------------------------------

def _find_commission(user_id, job_id, phase):
    return Commission.query.filter_by(user_id=user_id, job_id=job_id,
                                      phase=CommissionPhase(phase).value).first()


def _record_commission(draft, estimate_id):
    existing = _find_commission(*draft.key)
    if existing is not None:
        logger.debug("Commission %s for job %s already recorded", draft.phase.value, draft.job_id)
        return existing

    commission = Commission.from_draft(draft, estimate_id=estimate_id)
    db.session.add(commission)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.warning("Duplicate %s commission for job %s; keeping the first",
                       draft.phase.value, draft.job_id)
        return _find_commission(*draft.key)

    logger.info("Recorded %s commission %s for user %s on job %s (%s)",
                commission.phase, commission.amount, commission.user_id, commission.job_id,
                commission.paid_month)
    return commission


def award_frontend_commission(estimate_id):
    """Returns the commission, or None when the estimate does not earn one"""
    row = get_or_404(Estimate, estimate_id, 'Estimate')
    user_id = _commission_recipient(row.job)
    if user_id is None:
        logger.warning("Estimate %s approved but job %s has no salesperson", row.estimate_number, row.job_id)
        return None

    draft = compute_frontend_commission(row.to_priced(), user_id, _business_timezone())
    if draft is None:
        logger.debug("Estimate %s earns no frontend commission", row.estimate_number)
        return None
    return _record_commission(draft, row.id)


def award_backend_commission(job_id):
    job = get_or_404(Job, job_id, 'Job')
    approved = job.approved_estimate
    user_id = _commission_recipient(job)
    if user_id is None:
        logger.warning("Job %s completed without a salesperson", job.id)
        return None

    completed = CompletedJob(
        job_id=job.id,
        status=JobStatus(job.status),
        approved_estimate=approved.to_priced() if approved else None,
        completion_confirmed=job.completed_at is not None,
        completed_at=job.completed_at,
    )
    draft = compute_backend_commission(completed, user_id, _business_timezone())
    if draft is None:
        return None
    return _record_commission(draft, approved.id)


# ---------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------

def commission_summary(user_id=None, month=None):
    month = parse_month(month)
    query = Commission.query
    if user_id:
        query = query.filter(Commission.user_id == user_id)
    if month:
        query = query.filter(Commission.paid_month == month)
    return engine_analytics.summarize_commissions(query.all(), user_id=user_id, month=month)


def _revenue_entries():
    tz_name = _business_timezone()
    entries = []
    for job in Job.query.filter(Job.status == JobStatus.WON.value).all():
        approved = job.approved_estimate
        if approved is None or approved.approved_at is None:
            continue
        entries.append(engine_analytics.RevenueEntry(
            lead_source=job.lead_source or engine_analytics.FALLBACK_SOURCE,
            month=month_key(approved.approved_at, tz_name),
            amount=Decimal(approved.total_amount),
            user_id=_commission_recipient(job),
        ))
    return entries


def revenue_by_source(month=None):
    return engine_analytics.summarize_revenue_by_source(_revenue_entries(), month=month)


def revenue_by_month(year=None):
    if year not in (None, ''):
        try:
            year = int(year)
        except (TypeError, ValueError):
            raise ValidationError('year', f"'{year}' is not a year")
        if not 1900 <= year <= 9999:
            raise ValidationError('year', 'must be a four digit year')
    else:
        year = None
    return engine_analytics.summarize_revenue_by_month(_revenue_entries(), year=year)


def commissions_for_export(month=None, user_id=None):
    """Commission rows with their salesperson and job, newest month first"""
    month = parse_month(month)
    query = Commission.query
    if user_id:
        query = query.filter(Commission.user_id == user_id)
    if month:
        query = query.filter(Commission.paid_month == month)
    return query.order_by(Commission.paid_month.desc(), Commission.created_at).all()


def performance_leaderboard(month=None):
    """Active salespeople ranked by won jobs, revenue and commission"""
    month = parse_month(month)
    active = (
        User.query.filter_by(role=UserRole.SALESPERSON.value, is_active=True)
        .order_by(User.full_name)
        .all()
    )
    salespeople = {user.id: user.full_name for user in active}
    query = Commission.query
    if month:
        query = query.filter(Commission.paid_month == month)
    return engine_analytics.performance_leaderboard(salespeople, _revenue_entries(), query.all(), month=month)
