# crm/pricing_config.py: typed pricing table + loader with mtime cache
#
# The table is built from DEFAULT_PRICING overlaid with an optional JSON file.
# Every enumerated key must resolve to a positive number at load time, so a
# lookup during pricing can never hit a missing entry.

import copy
import json
import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from crm.constants import (
    ALTERNATE_TIER_FLAGS,
    DEFAULT_PRICING,
    BuildingType,
    BusinessRules,
    HvacSystemType,
    InsulationType,
    PlasterCondition,
    ServiceType,
    SurfaceType,
)
from crm.errors import PricingConfigError, ValidationError
from crm.utils import to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InsulationRate:
    base_price_per_sqft: Decimal
    r_value_per_inch: Decimal
    max_thickness_inches: Decimal


@dataclass(frozen=True)
class HybridRate:
    closed_cell_base: Decimal
    open_cell_base: Decimal
    complexity_multiplier: Decimal


@dataclass(frozen=True)
class HvacRate:
    base_price_per_ton: Decimal
    ductwork_price_per_linear_ft: Decimal
    vent_price_each: Decimal


@dataclass(frozen=True)
class PlasterRates:
    per_sqft: Dict[SurfaceType, Dict[PlasterCondition, Decimal]]
    prep_work_hourly: Decimal

    def price_for(self, surface, condition):
        return self.per_sqft[SurfaceType(surface)][PlasterCondition(condition)]


@dataclass(frozen=True)
class MarkupTier:
    default: Decimal
    alternates: Dict[str, Decimal]

    def percentage_for(self, tier_flag=None):
        if tier_flag is None:
            return self.default
        return self.alternates[tier_flag]


@dataclass(frozen=True)
class PricingTable:
    insulation: Dict[InsulationType, InsulationRate]
    hybrid: HybridRate
    hvac: Dict[HvacSystemType, HvacRate]
    plaster: PlasterRates
    markup_tiers: Dict[BuildingType, MarkupTier]
    minimum_job_values: Dict[ServiceType, Decimal]
    source: str = 'defaults'

    def insulation_rate(self, insulation_type):
        return self.insulation[InsulationType(insulation_type)]

    def hvac_rate(self, system_type):
        return self.hvac[HvacSystemType(system_type)]

    def markup_tier(self, building_type):
        return self.markup_tiers[BuildingType(building_type)]

    def minimum_job_value(self, service_type):
        return self.minimum_job_values[ServiceType(service_type)]

    def to_dict(self):
        """JSON-friendly view used by the pricing endpoint"""
        return {
            'source': self.source,
            'insulation': {
                k.value: {
                    'base_price_per_sqft': str(v.base_price_per_sqft),
                    'r_value_per_inch': str(v.r_value_per_inch),
                    'max_thickness_inches': str(v.max_thickness_inches),
                } for k, v in self.insulation.items()
            },
            'hybrid': {
                'closed_cell_base': str(self.hybrid.closed_cell_base),
                'open_cell_base': str(self.hybrid.open_cell_base),
                'complexity_multiplier': str(self.hybrid.complexity_multiplier),
            },
            'hvac': {
                k.value: {
                    'base_price_per_ton': str(v.base_price_per_ton),
                    'ductwork_price_per_linear_ft': str(v.ductwork_price_per_linear_ft),
                    'vent_price_each': str(v.vent_price_each),
                } for k, v in self.hvac.items()
            },
            'plaster': {
                **{
                    surface.value: {c.value: str(p) for c, p in prices.items()}
                    for surface, prices in self.plaster.per_sqft.items()
                },
                'prep_work_hourly': str(self.plaster.prep_work_hourly),
            },
            'markup_tiers': {
                k.value: {'default': str(v.default), **{f: str(p) for f, p in v.alternates.items()}}
                for k, v in self.markup_tiers.items()
            },
            'minimum_job_values': {k.value: str(v) for k, v in self.minimum_job_values.items()},
        }


# ---------------------------------------------------------------------
# Building + validation
# ---------------------------------------------------------------------

def _merge(base, overlay):
    merged = copy.deepcopy(base)
    for key, value in (overlay or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _section(raw, path):
    node = raw
    for key in path:
        if not isinstance(node, dict) or key not in node:
            raise PricingConfigError('.'.join(path), 'is missing from the pricing table')
        node = node[key]
    return node


def _positive(raw, *path, allow_zero=False):
    field = '.'.join(path)
    value = _section(raw, path)
    try:
        number = to_decimal(value, field)
    except ValidationError as exc:
        raise PricingConfigError(field, exc.reason)
    if number < 0 or (number == 0 and not allow_zero):
        raise PricingConfigError(field, 'must be greater than 0')
    return number


def build_pricing_table(raw: Dict[str, Any], source='defaults') -> PricingTable:
    """Turn a nested dict into a validated PricingTable"""
    insulation = {}
    for insulation_type in InsulationType:
        if insulation_type is InsulationType.HYBRID:
            continue
        key = insulation_type.value
        insulation[insulation_type] = InsulationRate(
            base_price_per_sqft=_positive(raw, 'insulation', key, 'base_price_per_sqft'),
            r_value_per_inch=_positive(raw, 'insulation', key, 'r_value_per_inch'),
            max_thickness_inches=_positive(raw, 'insulation', key, 'max_thickness_inches'),
        )

    hybrid = HybridRate(
        closed_cell_base=_positive(raw, 'hybrid', 'closed_cell_base'),
        open_cell_base=_positive(raw, 'hybrid', 'open_cell_base'),
        complexity_multiplier=_positive(raw, 'hybrid', 'complexity_multiplier'),
    )

    hvac = {
        system_type: HvacRate(
            base_price_per_ton=_positive(raw, 'hvac', system_type.value, 'base_price_per_ton'),
            ductwork_price_per_linear_ft=_positive(raw, 'hvac', system_type.value, 'ductwork_price_per_linear_ft'),
            vent_price_each=_positive(raw, 'hvac', system_type.value, 'vent_price_each'),
        )
        for system_type in HvacSystemType
    }

    plaster = PlasterRates(
        per_sqft={
            surface: {
                condition: _positive(raw, 'plaster', surface.value, condition.value)
                for condition in PlasterCondition
            }
            for surface in SurfaceType
        },
        prep_work_hourly=_positive(raw, 'plaster', 'prep_work_hourly'),
    )

    markup_tiers = {}
    for building_type in BuildingType:
        flag = ALTERNATE_TIER_FLAGS[building_type]
        default = _positive(raw, 'markup_tiers', building_type.value, 'default')
        alternate = _positive(raw, 'markup_tiers', building_type.value, flag)
        for field, pct in ((f'{building_type.value}.default', default), (f'{building_type.value}.{flag}', alternate)):
            if not BusinessRules.MARKUP_PERCENTAGE_MIN <= pct <= BusinessRules.MARKUP_PERCENTAGE_MAX:
                raise PricingConfigError(
                    f'markup_tiers.{field}',
                    f'must be between {BusinessRules.MARKUP_PERCENTAGE_MIN} and {BusinessRules.MARKUP_PERCENTAGE_MAX}',
                )
        markup_tiers[building_type] = MarkupTier(default=default, alternates={flag: alternate})

    minimum_job_values = {
        service_type: _positive(raw, 'minimum_job_values', service_type.value, allow_zero=True)
        for service_type in ServiceType
    }

    return PricingTable(
        insulation=insulation,
        hybrid=hybrid,
        hvac=hvac,
        plaster=plaster,
        markup_tiers=markup_tiers,
        minimum_job_values=minimum_job_values,
        source=source,
    )


def default_pricing_table() -> PricingTable:
    return build_pricing_table(DEFAULT_PRICING)


# ---------- simple in-process cache ----------
_TABLE_CACHE: Optional[PricingTable] = None
_TABLE_KEY = None


def _read_table_from_disk(path) -> PricingTable:
    with open(path, 'r') as f:
        try:
            overlay = json.load(f)
        except json.JSONDecodeError as exc:
            raise PricingConfigError('pricing_file', f'{path} is not valid JSON ({exc.msg})')
    if not isinstance(overlay, dict):
        raise PricingConfigError('pricing_file', f'{path} must contain a JSON object')
    return build_pricing_table(_merge(DEFAULT_PRICING, overlay), source=path)


def load_pricing_table(path=None) -> PricingTable:
    """
    Return the current pricing table. With a path, the file is re-read whenever
    its mtime changes; without one the built-in defaults are used.
    """
    global _TABLE_CACHE, _TABLE_KEY
    if not path:
        key = ('defaults', None)
    else:
        if not os.path.exists(path):
            raise PricingConfigError('pricing_file', f'missing pricing table at {path}')
        key = (path, os.path.getmtime(path))

    if _TABLE_CACHE is None or _TABLE_KEY != key:
        table = _read_table_from_disk(path) if path else default_pricing_table()
        logger.info("Loaded pricing table from %s", table.source)
        _TABLE_CACHE = table
        _TABLE_KEY = key
    return _TABLE_CACHE


def reload_pricing_table(path=None) -> PricingTable:
    """
    Force cache invalidation + re-read from disk.
    """
    global _TABLE_CACHE, _TABLE_KEY
    _TABLE_CACHE = None
    _TABLE_KEY = None
    return load_pricing_table(path)
