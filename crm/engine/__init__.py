from crm.engine.analytics import (
    RevenueEntry,
    summarize_commissions,
    summarize_revenue_by_month,
    summarize_revenue_by_source,
)
from crm.engine.commissions import (
    CommissionDraft,
    CompletedJob,
    compute_backend_commission,
    compute_frontend_commission,
)
from crm.engine.estimates import (
    Actor,
    Estimate,
    aggregate_estimate,
    resolve_markup,
    revise_estimate,
    submit_estimate,
    transition_estimate,
)
from crm.engine.measurements import MeasurementRecord, normalize_measurement
from crm.engine.pricing import (
    HvacEntry,
    LineItem,
    price_hvac_system,
    price_line_item,
    price_prep_work,
)

__all__ = [
    'Actor',
    'CommissionDraft',
    'CompletedJob',
    'Estimate',
    'HvacEntry',
    'LineItem',
    'MeasurementRecord',
    'RevenueEntry',
    'aggregate_estimate',
    'compute_backend_commission',
    'compute_frontend_commission',
    'normalize_measurement',
    'price_hvac_system',
    'price_line_item',
    'price_prep_work',
    'resolve_markup',
    'revise_estimate',
    'submit_estimate',
    'summarize_commissions',
    'summarize_revenue_by_month',
    'summarize_revenue_by_source',
    'transition_estimate',
]
