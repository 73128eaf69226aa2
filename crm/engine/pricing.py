# crm/engine/pricing.py: measurement/HVAC/plaster entries -> priced line items
#
# Pure functions over a PricingTable. The calculator reports raw totals only;
# minimum job values are the estimate aggregator's concern.

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import List, Optional

from crm.constants import (
    FRAMING_CAVITY_DEPTHS,
    HvacSystemType,
    InsulationType,
    ServiceType,
)
from crm.engine.measurements import MeasurementRecord
from crm.errors import ValidationError
from crm.pricing_config import PricingTable
from crm.utils import UNIT_PRICE_PLACES, round_half_up, round_money, to_decimal

UOM_SQFT = 'SQFT'
UOM_TON = 'TON'
UOM_LINEAR_FT = 'LF'
UOM_EACH = 'EA'
UOM_HOUR = 'HR'


@dataclass(frozen=True)
class LineItem:
    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    category: ServiceType
    r_value: Optional[str] = None

    @property
    def total(self):
        return round_money(self.quantity * self.unit_price)

    def to_dict(self):
        return {
            'description': self.description,
            'quantity': str(self.quantity),
            'unit': self.unit,
            'unit_price': str(self.unit_price),
            'total': str(self.total),
            'category': self.category.value,
            'r_value': self.r_value,
        }


@dataclass(frozen=True)
class HvacEntry:
    system_type: HvacSystemType
    tonnage: Decimal
    ductwork_linear_ft: Decimal = Decimal('0')
    vent_count: int = 0
    label: str = ''


def _unit_price(value):
    return Decimal(value).quantize(UNIT_PRICE_PLACES)


def format_r_value(value, suffix=None):
    label = f'R-{round_half_up(value)}'
    return f'{label} ({suffix})' if suffix else label


def _inches_label(inches):
    return f'{inches.normalize():f}"'


# ---------------------------------------------------------------------
# Insulation
# ---------------------------------------------------------------------

def _check_thickness(inches, max_inches, field):
    if inches <= 0:
        raise ValidationError(field, 'thickness must be greater than 0')
    if inches > max_inches:
        raise ValidationError(field, f'{inches}" exceeds the maximum of {max_inches}"')


def _price_single_insulation(record: MeasurementRecord, table: PricingTable) -> LineItem:
    rate = table.insulation_rate(record.insulation_type)
    r_value = None
    description = f'{record.insulation_type.value.replace("_", " ").title()} insulation - {record.room_name}'
    if record.thickness_inches is not None:
        _check_thickness(record.thickness_inches, rate.max_thickness_inches, 'thickness_inches')
        r_value = format_r_value(rate.r_value_per_inch * record.thickness_inches)
        description = f'{description} ({_inches_label(record.thickness_inches)}, {r_value})'

    return LineItem(
        description=description,
        quantity=record.square_feet,
        unit=UOM_SQFT,
        unit_price=_unit_price(rate.base_price_per_sqft),
        category=ServiceType.INSULATION,
        r_value=r_value,
    )


def hybrid_unit_price(closed_cell_inches, open_cell_inches, table: PricingTable):
    """Per square foot price of a closed cell + open cell system"""
    hybrid = table.hybrid
    layered = closed_cell_inches * hybrid.closed_cell_base + open_cell_inches * hybrid.open_cell_base
    return _unit_price(layered * hybrid.complexity_multiplier)


def hybrid_r_value(closed_cell_inches, open_cell_inches, table: PricingTable):
    closed = table.insulation_rate(InsulationType.CLOSED_CELL)
    open_ = table.insulation_rate(InsulationType.OPEN_CELL)
    return closed_cell_inches * closed.r_value_per_inch + open_cell_inches * open_.r_value_per_inch


def _price_hybrid_insulation(record: MeasurementRecord, table: PricingTable) -> LineItem:
    closed_in = record.closed_cell_inches
    open_in = record.open_cell_inches
    # A hybrid with an empty layer is really a single-type job
    if closed_in is None or closed_in <= 0:
        raise ValidationError('closed_cell_inches', 'hybrid systems need a closed cell layer greater than 0')
    if open_in is None or open_in <= 0:
        raise ValidationError('open_cell_inches', 'hybrid systems need an open cell layer greater than 0')

    _check_thickness(closed_in, table.insulation_rate(InsulationType.CLOSED_CELL).max_thickness_inches,
                     'closed_cell_inches')
    _check_thickness(open_in, table.insulation_rate(InsulationType.OPEN_CELL).max_thickness_inches,
                     'open_cell_inches')

    if record.framing_size:
        depth = FRAMING_CAVITY_DEPTHS[record.framing_size]
        if closed_in + open_in > depth:
            raise ValidationError(
                'framing_size',
                f'total insulation {_inches_label(closed_in + open_in)} exceeds '
                f'{record.framing_size} cavity depth of {_inches_label(depth)}',
            )

    r_value = format_r_value(hybrid_r_value(closed_in, open_in, table), 'hybrid')
    return LineItem(
        description=(
            f'Hybrid insulation - {record.room_name} '
            f'({_inches_label(closed_in)} closed cell + {_inches_label(open_in)} open cell, {r_value})'
        ),
        quantity=record.square_feet,
        unit=UOM_SQFT,
        unit_price=hybrid_unit_price(closed_in, open_in, table),
        category=ServiceType.INSULATION,
        r_value=r_value,
    )


# ---------------------------------------------------------------------
# Plaster
# ---------------------------------------------------------------------

def _price_plaster(record: MeasurementRecord, table: PricingTable) -> LineItem:
    if record.condition is None:
        raise ValidationError('condition', 'plaster measurements need a condition (good, fair or poor)')
    price = table.plaster.price_for(record.surface_type, record.condition)
    return LineItem(
        description=(
            f'{record.surface_type.value.title()} plaster repair - {record.room_name} '
            f'({record.condition.value} condition)'
        ),
        quantity=record.square_feet,
        unit=UOM_SQFT,
        unit_price=_unit_price(price),
        category=ServiceType.PLASTER,
    )


def price_prep_work(hours, table: PricingTable) -> LineItem:
    hours = to_decimal(hours, 'prep_hours')
    if hours <= 0:
        raise ValidationError('prep_hours', 'must be greater than 0')
    return LineItem(
        description='Plaster prep work',
        quantity=hours,
        unit=UOM_HOUR,
        unit_price=_unit_price(table.plaster.prep_work_hourly),
        category=ServiceType.PLASTER,
    )


# ---------------------------------------------------------------------
# HVAC
# ---------------------------------------------------------------------

def price_hvac_system(entry: HvacEntry, table: PricingTable) -> List[LineItem]:
    """Equipment, ductwork and vents are billed as separate lines"""
    if entry.tonnage <= 0:
        raise ValidationError('tonnage', 'must be greater than 0')
    if entry.ductwork_linear_ft < 0:
        raise ValidationError('ductwork_linear_ft', 'cannot be negative')
    if entry.vent_count < 0:
        raise ValidationError('vent_count', 'cannot be negative')

    rate = table.hvac_rate(entry.system_type)
    name = entry.system_type.value.replace('_', ' ').title()
    if entry.label:
        name = f'{name} - {entry.label}'

    items = [LineItem(
        description=f'{name} ({entry.tonnage.normalize():f} ton)',
        quantity=entry.tonnage,
        unit=UOM_TON,
        unit_price=_unit_price(rate.base_price_per_ton),
        category=ServiceType.HVAC,
    )]
    if entry.ductwork_linear_ft > 0:
        items.append(LineItem(
            description=f'{name} ductwork',
            quantity=entry.ductwork_linear_ft,
            unit=UOM_LINEAR_FT,
            unit_price=_unit_price(rate.ductwork_price_per_linear_ft),
            category=ServiceType.HVAC,
        ))
    if entry.vent_count > 0:
        items.append(LineItem(
            description=f'{name} vents',
            quantity=Decimal(entry.vent_count),
            unit=UOM_EACH,
            unit_price=_unit_price(rate.vent_price_each),
            category=ServiceType.HVAC,
        ))
    return items


# ---------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------

def _price_measurement(record: MeasurementRecord, table: PricingTable, service_type: ServiceType) -> LineItem:
    if service_type is ServiceType.PLASTER:
        return _price_plaster(record, table)
    if service_type is ServiceType.HVAC:
        raise ValidationError('service_type', 'HVAC jobs are priced from system entries, not room measurements')

    if record.insulation_type is None:
        raise ValidationError('insulation_type', 'is required to price an insulation measurement')
    if record.insulation_type is InsulationType.HYBRID:
        return _price_hybrid_insulation(record, table)
    return _price_single_insulation(record, table)


def price_line_item(record: MeasurementRecord, table: PricingTable,
                    service_type=ServiceType.INSULATION) -> LineItem:
    """
    Price one measurement for an insulation or plaster job.

    A manager override on the record wins over every table price. The record is
    still run through the normal rules first, so an invalid measurement stays
    invalid and the R-value label is kept.
    """
    item = _price_measurement(record, table, ServiceType(service_type))
    override = record.override_unit_price
    if override is None:
        return item
    if override <= 0:
        raise ValidationError('override_unit_price', 'must be greater than 0')
    return replace(item, unit_price=_unit_price(override))


def line_items_subtotal(line_items):
    return round_money(sum((item.total for item in line_items), Decimal('0')))
