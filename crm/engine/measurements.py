"""
Measurement normalization.

Raw field or drawing capture arrives as loosely typed strings and numbers.
``normalize_measurement`` validates every field against the business limits and
returns an immutable ``MeasurementRecord`` whose square footage is always the
product of its height and width.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Mapping, Optional

from crm.constants import (
    FRAMING_CAVITY_DEPTHS,
    AreaType,
    BusinessRules,
    InsulationType,
    PlasterCondition,
    SurfaceType,
)
from crm.errors import ValidationError
from crm.utils import CENT, to_decimal

MAX_ROOM_NAME_LENGTH = 50
MAX_NOTES_LENGTH = 500


@dataclass(frozen=True)
class MeasurementRecord:
    room_name: str
    surface_type: SurfaceType
    area_type: Optional[AreaType]
    height_ft: Decimal
    width_ft: Decimal
    insulation_type: Optional[InsulationType] = None
    thickness_inches: Optional[Decimal] = None
    closed_cell_inches: Optional[Decimal] = None
    open_cell_inches: Optional[Decimal] = None
    framing_size: Optional[str] = None
    condition: Optional[PlasterCondition] = None
    notes: str = ''
    # Manager-set price per square foot; replaces the computed unit price
    override_unit_price: Optional[Decimal] = None

    @property
    def square_feet(self):
        return (self.height_ft * self.width_ft).quantize(CENT, rounding=ROUND_HALF_UP)

    def to_dict(self):
        return {
            'room_name': self.room_name,
            'surface_type': self.surface_type.value,
            'area_type': self.area_type.value if self.area_type else None,
            'height_ft': str(self.height_ft),
            'width_ft': str(self.width_ft),
            'square_feet': str(self.square_feet),
            'insulation_type': self.insulation_type.value if self.insulation_type else None,
            'thickness_inches': _opt_str(self.thickness_inches),
            'closed_cell_inches': _opt_str(self.closed_cell_inches),
            'open_cell_inches': _opt_str(self.open_cell_inches),
            'framing_size': self.framing_size,
            'condition': self.condition.value if self.condition else None,
            'notes': self.notes,
            'override_unit_price': _opt_str(self.override_unit_price),
        }


def _opt_str(value):
    return str(value) if value is not None else None


def _blank(value):
    return value is None or (isinstance(value, str) and not value.strip())


def _required_text(raw, field):
    value = raw.get(field)
    if _blank(value):
        raise ValidationError(field, 'is required')
    return str(value).strip()


def _choice(enum_cls, value, field, required=False):
    if _blank(value):
        if required:
            raise ValidationError(field, 'is required')
        return None
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ', '.join(member.value for member in enum_cls)
        raise ValidationError(field, f"'{value}' is not one of: {allowed}")


def _two_places(number, field):
    """Heights, widths and depths are stored with two decimals; round the same way here"""
    try:
        return number.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(field, f'{number} is too large')


def _bounded(raw, field, lower, upper):
    value = raw.get(field)
    if _blank(value):
        raise ValidationError(field, 'is required')
    number = to_decimal(value, field)
    if number < lower or number > upper:
        raise ValidationError(field, f'must be between {lower} and {upper} feet')
    return _two_places(number, field)


def _optional_inches(raw, field):
    value = raw.get(field)
    if _blank(value):
        return None
    number = to_decimal(value, field)
    if number < 0:
        raise ValidationError(field, 'cannot be negative')
    return _two_places(number, field)


def normalize_measurement(raw: Mapping[str, Any]) -> MeasurementRecord:
    """Validate a raw measurement payload and build a MeasurementRecord"""
    room_name = _required_text(raw, 'room_name')
    if len(room_name) > MAX_ROOM_NAME_LENGTH:
        raise ValidationError('room_name', f'must be less than {MAX_ROOM_NAME_LENGTH} characters')

    surface_type = _choice(SurfaceType, raw.get('surface_type'), 'surface_type', required=True)
    area_type = _choice(AreaType, raw.get('area_type'), 'area_type')

    height = _bounded(raw, 'height', BusinessRules.MIN_HEIGHT_FEET, BusinessRules.MAX_HEIGHT_FEET)
    width = _bounded(raw, 'width', BusinessRules.MIN_WIDTH_FEET, BusinessRules.MAX_WIDTH_FEET)

    square_feet = height * width
    if square_feet < BusinessRules.MIN_ROOM_SIZE_SQFT or square_feet > BusinessRules.MAX_ROOM_SIZE_SQFT:
        raise ValidationError(
            'square_feet',
            f'{square_feet.quantize(CENT)} is outside '
            f'{BusinessRules.MIN_ROOM_SIZE_SQFT}-{BusinessRules.MAX_ROOM_SIZE_SQFT} sq ft',
        )

    insulation_type = _choice(InsulationType, raw.get('insulation_type'), 'insulation_type')

    framing_size = None
    if not _blank(raw.get('framing_size')):
        framing_size = str(raw['framing_size']).strip().lower()
        if framing_size not in FRAMING_CAVITY_DEPTHS:
            allowed = ', '.join(FRAMING_CAVITY_DEPTHS)
            raise ValidationError('framing_size', f"'{raw['framing_size']}' is not one of: {allowed}")

    notes = '' if _blank(raw.get('notes')) else str(raw['notes']).strip()
    if len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError('notes', f'must be less than {MAX_NOTES_LENGTH} characters')

    return MeasurementRecord(
        room_name=room_name,
        surface_type=surface_type,
        area_type=area_type,
        height_ft=height,
        width_ft=width,
        insulation_type=insulation_type,
        thickness_inches=_optional_inches(raw, 'thickness_inches'),
        closed_cell_inches=_optional_inches(raw, 'closed_cell_inches'),
        open_cell_inches=_optional_inches(raw, 'open_cell_inches'),
        framing_size=framing_size,
        condition=_choice(PlasterCondition, raw.get('condition'), 'condition'),
        notes=notes,
    )
