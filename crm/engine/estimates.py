"""
Estimate aggregation and the estimate status state machine.

``aggregate_estimate`` turns priced line items into a draft ``Estimate``; the
transition functions move it forward. Every function returns a new Estimate,
the input is never modified.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence, Tuple

from crm.constants import (
    ALTERNATE_TIER_FLAGS,
    MUTABLE_ESTIMATE_STATUSES,
    TERMINAL_ESTIMATE_STATUSES,
    BuildingType,
    BusinessRules,
    EstimateStatus,
    ServiceType,
    UserRole,
)
from crm.engine.pricing import LineItem, line_items_subtotal
from crm.errors import AuthorizationError, InvalidTransitionError, ValidationError
from crm.pricing_config import PricingTable
from crm.utils import format_currency, round_money, to_decimal, utcnow

MINIMUM_POLICY_FLAG = 'flag'
MINIMUM_POLICY_BLOCK = 'block'

APPROVAL_MESSAGE = (
    f'Estimates of {format_currency(BusinessRules.AUTO_APPROVAL_THRESHOLD)} or more '
    f'require manager approval'
)


@dataclass(frozen=True)
class Actor:
    """Whoever is acting on an estimate. ``None`` means the system itself."""
    user_id: str
    role: UserRole

    @classmethod
    def of(cls, user_id, role):
        return cls(user_id=user_id, role=UserRole(role))


@dataclass(frozen=True)
class Estimate:
    job_id: Optional[str]
    building_type: BuildingType
    line_items: Tuple[LineItem, ...]
    markup_percentage: Decimal
    subtotal: Decimal
    total_amount: Decimal
    status: EstimateStatus = EstimateStatus.DRAFT
    tier_flag: Optional[str] = None
    service_type: Optional[ServiceType] = None
    cost_basis: Optional[Decimal] = None
    minimum_job_value: Optional[Decimal] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    history: Tuple[Tuple[str, str, Optional[str]], ...] = field(default=())

    @property
    def requires_approval(self):
        return self.total_amount >= BusinessRules.AUTO_APPROVAL_THRESHOLD

    @property
    def approval_message(self):
        if self.requires_approval and self.approved_by is None:
            return APPROVAL_MESSAGE
        return None

    @property
    def below_minimum(self):
        return self.minimum_job_value is not None and self.subtotal < self.minimum_job_value

    @property
    def profit(self):
        basis = self.cost_basis if self.cost_basis is not None else self.subtotal
        return self.total_amount - basis

    @property
    def is_closed(self):
        return self.status in TERMINAL_ESTIMATE_STATUSES

    def to_dict(self):
        return {
            'job_id': self.job_id,
            'building_type': self.building_type.value,
            'tier_flag': self.tier_flag,
            'service_type': self.service_type.value if self.service_type else None,
            'line_items': [item.to_dict() for item in self.line_items],
            'markup_percentage': str(self.markup_percentage),
            'subtotal': str(self.subtotal),
            'total_amount': str(self.total_amount),
            'status': self.status.value,
            'requires_approval': self.requires_approval,
            'approval_message': self.approval_message,
            'minimum_job_value': str(self.minimum_job_value) if self.minimum_job_value is not None else None,
            'below_minimum': self.below_minimum,
            'approved_by': self.approved_by,
        }


def compute_total(subtotal, markup_percentage):
    """subtotal * (1 + markup/100), rounded half-up to cents"""
    return round_money(Decimal(subtotal) * (1 + Decimal(markup_percentage) / 100))


def validate_markup(markup_percentage):
    markup = to_decimal(markup_percentage, 'markup_percentage')
    if markup < BusinessRules.MARKUP_PERCENTAGE_MIN:
        raise ValidationError('markup_percentage', f'must be at least {BusinessRules.MARKUP_PERCENTAGE_MIN}%')
    if markup > BusinessRules.MARKUP_PERCENTAGE_MAX:
        raise ValidationError('markup_percentage', f'cannot exceed {BusinessRules.MARKUP_PERCENTAGE_MAX}%')
    return markup


def resolve_markup(table: PricingTable, building_type, tier_flag=None):
    """Markup percentage for a building type, honoring its alternate tier flag"""
    try:
        building_type = BuildingType(building_type)
    except ValueError:
        raise ValidationError('building_type', f"'{building_type}' is not a known building type")

    if tier_flag:
        allowed = ALTERNATE_TIER_FLAGS[building_type]
        if tier_flag != allowed:
            raise ValidationError(
                'tier_flag',
                f"'{tier_flag}' does not apply to {building_type.value} buildings (expected '{allowed}')",
            )
    return validate_markup(table.markup_tier(building_type).percentage_for(tier_flag or None))


def aggregate_estimate(line_items: Sequence[LineItem], building_type, tier_flag=None, *,
                       table: PricingTable, job_id=None, service_type=None,
                       markup_percentage=None, cost_basis=None,
                       minimum_policy=MINIMUM_POLICY_FLAG) -> Estimate:
    """
    Combine priced line items into a draft estimate.

    An explicit ``markup_percentage`` overrides the tier lookup but is held to
    the same bounds. With the ``block`` policy an estimate whose subtotal is
    below the service's minimum job value is rejected; with ``flag`` it is
    returned with ``below_minimum`` set.
    """
    try:
        building_type = BuildingType(building_type)
    except ValueError:
        raise ValidationError('building_type', f"'{building_type}' is not a known building type")

    if markup_percentage is None:
        markup = resolve_markup(table, building_type, tier_flag)
    else:
        markup = validate_markup(markup_percentage)

    items = tuple(line_items)
    subtotal = line_items_subtotal(items)

    minimum = None
    if service_type is not None:
        service_type = ServiceType(service_type)
        minimum = table.minimum_job_value(service_type)
        if minimum_policy == MINIMUM_POLICY_BLOCK and subtotal < minimum:
            raise ValidationError(
                'subtotal',
                f'{format_currency(subtotal)} is below the {service_type.value} minimum of {format_currency(minimum)}',
            )

    if cost_basis is not None:
        cost_basis = round_money(to_decimal(cost_basis, 'cost_basis'))

    return Estimate(
        job_id=job_id,
        building_type=building_type,
        tier_flag=tier_flag or None,
        service_type=service_type,
        line_items=items,
        markup_percentage=markup,
        subtotal=subtotal,
        total_amount=compute_total(subtotal, markup),
        cost_basis=cost_basis,
        minimum_job_value=minimum,
    )


def revise_estimate(estimate: Estimate, line_items=None, markup_percentage=None) -> Estimate:
    """Change line items or markup of an estimate that is still open"""
    if estimate.status not in MUTABLE_ESTIMATE_STATUSES:
        raise InvalidTransitionError(estimate.status, estimate.status,
                                     'estimate is closed; create a new revision instead')
    items = tuple(line_items) if line_items is not None else estimate.line_items
    markup = validate_markup(markup_percentage) if markup_percentage is not None else estimate.markup_percentage
    subtotal = line_items_subtotal(items)
    return replace(estimate, line_items=items, markup_percentage=markup,
                   subtotal=subtotal, total_amount=compute_total(subtotal, markup))


# ---------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------

ALLOWED_TRANSITIONS = {
    EstimateStatus.DRAFT: {EstimateStatus.PENDING_APPROVAL, EstimateStatus.SENT, EstimateStatus.APPROVED},
    EstimateStatus.PENDING_APPROVAL: {EstimateStatus.APPROVED, EstimateStatus.REJECTED},
    EstimateStatus.SENT: {EstimateStatus.APPROVED, EstimateStatus.REJECTED},
    EstimateStatus.APPROVED: set(),
    EstimateStatus.REJECTED: set(),
}


def can_approve(role, amount):
    role = UserRole(role)
    if role in (UserRole.ADMIN, UserRole.MANAGER):
        return True
    return role is UserRole.SALESPERSON and amount < BusinessRules.AUTO_APPROVAL_THRESHOLD


def transition_estimate(estimate: Estimate, target_status, actor: Optional[Actor] = None,
                        now=None) -> Estimate:
    """Move an estimate to ``target_status`` or raise InvalidTransitionError"""
    try:
        target = EstimateStatus(target_status)
    except ValueError:
        raise ValidationError('status', f"'{target_status}' is not an estimate status")

    current = estimate.status
    if target not in ALLOWED_TRANSITIONS[current]:
        reason = 'estimate is closed' if current in TERMINAL_ESTIMATE_STATUSES else None
        raise InvalidTransitionError(current, target, reason)

    # Large drafts go through pending_approval before approval or the customer
    if (current is EstimateStatus.DRAFT and estimate.requires_approval
            and target in (EstimateStatus.APPROVED, EstimateStatus.SENT)):
        raise InvalidTransitionError(current, target, APPROVAL_MESSAGE)

    if current is EstimateStatus.SENT and estimate.requires_approval:
        raise InvalidTransitionError(current, target, APPROVAL_MESSAGE)

    if current is EstimateStatus.PENDING_APPROVAL:
        if actor is None:
            raise ValidationError('actor', 'an approver is required to close a pending estimate')
        if not can_approve(actor.role, estimate.total_amount):
            raise AuthorizationError(current, target,
                                     f'{actor.role.value} may not approve {format_currency(estimate.total_amount)}')

    moment = now or utcnow()
    changes = {
        'status': target,
        'history': estimate.history + ((current.value, target.value, actor.user_id if actor else None),),
    }
    if target is EstimateStatus.APPROVED:
        changes['approved_by'] = actor.user_id if actor else 'system'
        changes['approved_at'] = moment
    return replace(estimate, **changes)


def submit_estimate(estimate: Estimate, actor: Optional[Actor] = None, now=None) -> Estimate:
    """Auto-approve small estimates, queue the rest for approval"""
    if estimate.status is not EstimateStatus.DRAFT:
        raise InvalidTransitionError(estimate.status, EstimateStatus.PENDING_APPROVAL, 'only drafts can be submitted')
    if estimate.requires_approval:
        return transition_estimate(estimate, EstimateStatus.PENDING_APPROVAL, actor, now)
    return transition_estimate(estimate, EstimateStatus.APPROVED, None, now)
