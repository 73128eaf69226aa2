"""
Business constants for the home services CRM.

Enumerations are closed sets; the pricing defaults below seed the typed
pricing table in ``crm.pricing_config`` when no pricing file is configured.
"""
from decimal import Decimal
from enum import Enum


class ServiceType(str, Enum):
    INSULATION = 'insulation'
    HVAC = 'hvac'
    PLASTER = 'plaster'


class BuildingType(str, Enum):
    RESIDENTIAL = 'residential'
    COMMERCIAL = 'commercial'
    INDUSTRIAL = 'industrial'


class SurfaceType(str, Enum):
    WALL = 'wall'
    CEILING = 'ceiling'


class AreaType(str, Enum):
    EXTERIOR_WALLS = 'exterior_walls'
    INTERIOR_WALLS = 'interior_walls'
    CEILING = 'ceiling'
    GABLE = 'gable'
    ROOF = 'roof'
    CONCRETE = 'concrete'


class InsulationType(str, Enum):
    CLOSED_CELL = 'closed_cell'
    OPEN_CELL = 'open_cell'
    BATT = 'batt'
    BLOWN_IN = 'blown_in'
    HYBRID = 'hybrid'


class HvacSystemType(str, Enum):
    CENTRAL_AIR = 'central_air'
    HEAT_PUMP = 'heat_pump'
    FURNACE = 'furnace'


class PlasterCondition(str, Enum):
    GOOD = 'good'
    FAIR = 'fair'
    POOR = 'poor'


class EstimateStatus(str, Enum):
    DRAFT = 'draft'
    PENDING_APPROVAL = 'pending_approval'
    SENT = 'sent'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class JobStatus(str, Enum):
    PENDING = 'pending'
    IN_PROGRESS = 'in_progress'
    WON = 'won'
    LOST = 'lost'


class CommissionPhase(str, Enum):
    FRONTEND = 'frontend'
    BACKEND = 'backend'


class UserRole(str, Enum):
    MANAGER = 'manager'
    SALESPERSON = 'salesperson'
    ADMIN = 'admin'


LEAD_SOURCES = (
    'drive_by',
    'permit',
    'referral',
    'website',
    'csv_import',
    'other',
)

# Actual cavity depth in inches for nominal framing sizes
FRAMING_CAVITY_DEPTHS = {
    '2x4': Decimal('3.5'),
    '2x6': Decimal('5.5'),
    '2x8': Decimal('7.25'),
    '2x10': Decimal('9.25'),
    '2x12': Decimal('11.25'),
}

TERMINAL_ESTIMATE_STATUSES = frozenset({EstimateStatus.APPROVED, EstimateStatus.REJECTED})
MUTABLE_ESTIMATE_STATUSES = frozenset({EstimateStatus.DRAFT, EstimateStatus.PENDING_APPROVAL})


class BusinessRules:
    """Thresholds shared by the estimate and commission rules"""

    # Estimates
    AUTO_APPROVAL_THRESHOLD = Decimal('5000')
    MARKUP_PERCENTAGE_MIN = Decimal('10')
    MARKUP_PERCENTAGE_MAX = Decimal('50')
    VALIDITY_DAYS = 30

    # Measurements
    MIN_ROOM_SIZE_SQFT = Decimal('1')
    MAX_ROOM_SIZE_SQFT = Decimal('10000')
    MIN_HEIGHT_FEET = Decimal('0.5')
    MAX_HEIGHT_FEET = Decimal('30')
    MIN_WIDTH_FEET = Decimal('0.5')
    MAX_WIDTH_FEET = Decimal('100')

    # Commission
    FRONTEND_RATE = Decimal('0.02')
    BACKEND_RATE = Decimal('0.01')
    MIN_JOB_VALUE = Decimal('500')

    # Calendar months for commissions and revenue
    BUSINESS_TIMEZONE = 'America/New_York'


DEFAULT_PRICING = {
    'insulation': {
        'closed_cell': {
            'base_price_per_sqft': '2.50',
            'r_value_per_inch': '6.5',
            'max_thickness_inches': '6',
        },
        'open_cell': {
            'base_price_per_sqft': '1.75',
            'r_value_per_inch': '3.7',
            'max_thickness_inches': '12',
        },
        'batt': {
            'base_price_per_sqft': '1.00',
            'r_value_per_inch': '3.2',
            'max_thickness_inches': '12',
        },
        'blown_in': {
            'base_price_per_sqft': '1.10',
            'r_value_per_inch': '2.5',
            'max_thickness_inches': '20',
        },
    },
    'hybrid': {
        'closed_cell_base': '2.50',
        'open_cell_base': '1.75',
        'complexity_multiplier': '1.15',
    },
    'hvac': {
        'central_air': {
            'base_price_per_ton': '3500',
            'ductwork_price_per_linear_ft': '45',
            'vent_price_each': '125',
        },
        'heat_pump': {
            'base_price_per_ton': '4200',
            'ductwork_price_per_linear_ft': '45',
            'vent_price_each': '125',
        },
        'furnace': {
            'base_price_per_ton': '2800',
            'ductwork_price_per_linear_ft': '45',
            'vent_price_each': '125',
        },
    },
    'plaster': {
        'wall': {'good': '8.50', 'fair': '12.00', 'poor': '18.50'},
        'ceiling': {'good': '10.50', 'fair': '15.00', 'poor': '22.00'},
        'prep_work_hourly': '75',
    },
    'markup_tiers': {
        'residential': {'default': '25', 'premium': '35'},
        'commercial': {'default': '20', 'volume': '15'},
        'industrial': {'default': '18', 'specialized': '30'},
    },
    'minimum_job_values': {
        'insulation': '800',
        'hvac': '2500',
        'plaster': '500',
    },
}

# Tier flag each building type accepts besides its default tier
ALTERNATE_TIER_FLAGS = {
    BuildingType.RESIDENTIAL: 'premium',
    BuildingType.COMMERCIAL: 'volume',
    BuildingType.INDUSTRIAL: 'specialized',
}
