import uuid
from datetime import timedelta
from decimal import Decimal

from crm import db
from crm.constants import (
    AreaType,
    BuildingType,
    BusinessRules,
    CommissionPhase,
    EstimateStatus,
    HvacSystemType,
    InsulationType,
    JobStatus,
    PlasterCondition,
    ServiceType,
    SurfaceType,
    UserRole,
)
from crm.engine.estimates import Estimate as PricedEstimate
from crm.engine.measurements import MeasurementRecord
from crm.engine.pricing import HvacEntry, LineItem
from crm.utils import utcnow


def new_id():
    return str(uuid.uuid4())


def _dec(value):
    return str(value) if value is not None else None


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    full_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    role = db.Column(db.String(20), nullable=False, default=UserRole.SALESPERSON.value)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    def __repr__(self):
        return f'<User {self.email}>'


class Lead(db.Model):
    __tablename__ = 'leads'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(100), nullable=False)
    lead_source = db.Column(db.String(20), nullable=False, default='other', index=True)
    status = db.Column(db.String(30), nullable=False, default='new')
    assigned_to = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    salesperson = db.relationship('User')

    def __repr__(self):
        return f'<Lead {self.name} ({self.lead_source})>'


class Job(db.Model):
    __tablename__ = 'jobs'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    lead_id = db.Column(db.String(36), db.ForeignKey('leads.id'), nullable=True)
    salesperson_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=True)
    job_name = db.Column(db.String(100), nullable=False)
    service_type = db.Column(db.String(20), nullable=False, default=ServiceType.INSULATION.value)
    building_type = db.Column(db.String(20), nullable=False, default=BuildingType.RESIDENTIAL.value)
    tier_flag = db.Column(db.String(20), nullable=True)
    status = db.Column(db.String(20), nullable=False, default=JobStatus.PENDING.value, index=True)
    total_square_feet = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal('0.00'))
    prep_hours = db.Column(db.Numeric(8, 2), nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    lead = db.relationship('Lead', backref='jobs')
    salesperson = db.relationship('User')
    measurements = db.relationship('Measurement', backref='job', cascade='all, delete-orphan',
                                   order_by='Measurement.created_at')
    hvac_systems = db.relationship('HvacSystem', backref='job', cascade='all, delete-orphan',
                                   order_by='HvacSystem.created_at')
    estimates = db.relationship('Estimate', backref='job', cascade='all, delete-orphan',
                                order_by='Estimate.revision_number')

    @property
    def current_estimate(self):
        return self.estimates[-1] if self.estimates else None

    @property
    def approved_estimate(self):
        approved = [e for e in self.estimates if e.status == EstimateStatus.APPROVED.value]
        return approved[-1] if approved else None

    @property
    def lead_source(self):
        return self.lead.lead_source if self.lead else None

    def to_dict(self):
        current = self.current_estimate
        return {
            'id': self.id,
            'lead_id': self.lead_id,
            'salesperson_id': self.salesperson_id,
            'job_name': self.job_name,
            'service_type': self.service_type,
            'building_type': self.building_type,
            'tier_flag': self.tier_flag,
            'status': self.status,
            'total_square_feet': _dec(self.total_square_feet),
            'prep_hours': _dec(self.prep_hours),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'measurement_count': len(self.measurements),
            'current_estimate_id': current.id if current else None,
        }

    def __repr__(self):
        return f'<Job {self.job_name} [{self.status}]>'


class Measurement(db.Model):
    __tablename__ = 'measurements'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    job_id = db.Column(db.String(36), db.ForeignKey('jobs.id'), nullable=False, index=True)
    room_name = db.Column(db.String(50), nullable=False)
    surface_type = db.Column(db.String(20), nullable=False)
    area_type = db.Column(db.String(20), nullable=True)
    height = db.Column(db.Numeric(8, 2), nullable=False)
    width = db.Column(db.Numeric(8, 2), nullable=False)
    # Written once from height * width and never edited on its own
    square_feet = db.Column(db.Numeric(12, 2), nullable=False)
    insulation_type = db.Column(db.String(20), nullable=True)
    thickness_inches = db.Column(db.Numeric(6, 2), nullable=True)
    closed_cell_inches = db.Column(db.Numeric(6, 2), nullable=True)
    open_cell_inches = db.Column(db.Numeric(6, 2), nullable=True)
    framing_size = db.Column(db.String(10), nullable=True)
    condition = db.Column(db.String(10), nullable=True)
    notes = db.Column(db.Text, default='')
    # Manager override of the computed unit price
    override_unit_price = db.Column(db.Numeric(12, 4), nullable=True)
    override_set_at = db.Column(db.DateTime, nullable=True)
    override_set_by = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    @classmethod
    def from_record(cls, job_id, record: MeasurementRecord):
        return cls(
            job_id=job_id,
            room_name=record.room_name,
            surface_type=record.surface_type.value,
            area_type=record.area_type.value if record.area_type else None,
            height=record.height_ft,
            width=record.width_ft,
            square_feet=record.square_feet,
            insulation_type=record.insulation_type.value if record.insulation_type else None,
            thickness_inches=record.thickness_inches,
            closed_cell_inches=record.closed_cell_inches,
            open_cell_inches=record.open_cell_inches,
            framing_size=record.framing_size,
            condition=record.condition.value if record.condition else None,
            notes=record.notes,
        )

    def to_record(self) -> MeasurementRecord:
        return MeasurementRecord(
            room_name=self.room_name,
            surface_type=SurfaceType(self.surface_type),
            area_type=AreaType(self.area_type) if self.area_type else None,
            height_ft=Decimal(self.height),
            width_ft=Decimal(self.width),
            insulation_type=InsulationType(self.insulation_type) if self.insulation_type else None,
            thickness_inches=self.thickness_inches,
            closed_cell_inches=self.closed_cell_inches,
            open_cell_inches=self.open_cell_inches,
            framing_size=self.framing_size,
            condition=PlasterCondition(self.condition) if self.condition else None,
            notes=self.notes or '',
            override_unit_price=Decimal(self.override_unit_price) if self.override_unit_price is not None else None,
        )

    def to_dict(self):
        data = self.to_record().to_dict()
        data.update({'id': self.id, 'job_id': self.job_id,
                     'override_set_at': self.override_set_at.isoformat() if self.override_set_at else None})
        return data

    def __repr__(self):
        return f'<Measurement {self.room_name} {self.square_feet} sqft>'


class HvacSystem(db.Model):
    __tablename__ = 'hvac_systems'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    job_id = db.Column(db.String(36), db.ForeignKey('jobs.id'), nullable=False, index=True)
    system_type = db.Column(db.String(20), nullable=False)
    tonnage = db.Column(db.Numeric(6, 2), nullable=False)
    ductwork_linear_ft = db.Column(db.Numeric(8, 2), default=Decimal('0'))
    vent_count = db.Column(db.Integer, default=0)
    label = db.Column(db.String(100), default='')
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_entry(self) -> HvacEntry:
        return HvacEntry(
            system_type=HvacSystemType(self.system_type),
            tonnage=Decimal(self.tonnage),
            ductwork_linear_ft=Decimal(self.ductwork_linear_ft or 0),
            vent_count=int(self.vent_count or 0),
            label=self.label or '',
        )

    def to_dict(self):
        return {
            'id': self.id,
            'job_id': self.job_id,
            'system_type': self.system_type,
            'tonnage': _dec(self.tonnage),
            'ductwork_linear_ft': _dec(self.ductwork_linear_ft),
            'vent_count': self.vent_count,
            'label': self.label,
        }


class Estimate(db.Model):
    __tablename__ = 'estimates'
    __table_args__ = (
        db.UniqueConstraint('job_id', 'revision_number', name='uq_estimate_job_revision'),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    job_id = db.Column(db.String(36), db.ForeignKey('jobs.id'), nullable=False, index=True)
    estimate_number = db.Column(db.String(30), unique=True, nullable=False)
    revision_number = db.Column(db.Integer, nullable=False, default=0)
    supersedes_id = db.Column(db.String(36), db.ForeignKey('estimates.id'), nullable=True)
    building_type = db.Column(db.String(20), nullable=False)
    tier_flag = db.Column(db.String(20), nullable=True)
    service_type = db.Column(db.String(20), nullable=True)
    markup_percentage = db.Column(db.Numeric(5, 2), nullable=False)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal('0.00'))
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal('0.00'))
    cost_basis = db.Column(db.Numeric(12, 2), nullable=True)
    minimum_job_value = db.Column(db.Numeric(12, 2), nullable=True)
    status = db.Column(db.String(20), nullable=False, default=EstimateStatus.DRAFT.value, index=True)
    approved_by = db.Column(db.String(36), nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True, index=True)
    sent_at = db.Column(db.DateTime, nullable=True)
    rejected_at = db.Column(db.DateTime, nullable=True)
    valid_until = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    line_items = db.relationship('EstimateLineItem', backref='estimate', cascade='all, delete-orphan',
                                 order_by='EstimateLineItem.sort_order')
    supersedes = db.relationship('Estimate', remote_side=[id])

    @staticmethod
    def generate_number(moment=None):
        moment = moment or utcnow()
        return f"EST-{moment.strftime('%Y%m%d')}-{str(uuid.uuid4())[:8].upper()}"

    @classmethod
    def from_priced(cls, priced: PricedEstimate, revision_number=0, supersedes_id=None,
                    measurement_ids=None):
        created = utcnow()
        measurement_ids = list(measurement_ids or [])
        measurement_ids += [None] * (len(priced.line_items) - len(measurement_ids))
        estimate = cls(
            job_id=priced.job_id,
            estimate_number=cls.generate_number(created),
            revision_number=revision_number,
            supersedes_id=supersedes_id,
            building_type=priced.building_type.value,
            tier_flag=priced.tier_flag,
            service_type=priced.service_type.value if priced.service_type else None,
            markup_percentage=priced.markup_percentage,
            subtotal=priced.subtotal,
            total_amount=priced.total_amount,
            cost_basis=priced.cost_basis,
            minimum_job_value=priced.minimum_job_value,
            status=priced.status.value,
            created_at=created,
            valid_until=(created + timedelta(days=BusinessRules.VALIDITY_DAYS)).date(),
        )
        estimate.line_items = [
            EstimateLineItem.from_line_item(item, sort_order=index, measurement_id=measurement_ids[index])
            for index, item in enumerate(priced.line_items)
        ]
        return estimate

    def to_priced(self) -> PricedEstimate:
        """Rebuild the engine's view of this estimate"""
        return PricedEstimate(
            job_id=self.job_id,
            building_type=BuildingType(self.building_type),
            tier_flag=self.tier_flag,
            service_type=ServiceType(self.service_type) if self.service_type else None,
            line_items=tuple(item.to_line_item() for item in self.line_items),
            markup_percentage=Decimal(self.markup_percentage),
            subtotal=Decimal(self.subtotal),
            total_amount=Decimal(self.total_amount),
            status=EstimateStatus(self.status),
            cost_basis=self.cost_basis,
            minimum_job_value=self.minimum_job_value,
            approved_by=self.approved_by,
            approved_at=self.approved_at,
        )

    @property
    def is_closed(self):
        return self.status in (EstimateStatus.APPROVED.value, EstimateStatus.REJECTED.value)

    def to_dict(self):
        priced = self.to_priced()
        data = priced.to_dict()
        data.update({
            'id': self.id,
            'estimate_number': self.estimate_number,
            'revision_number': self.revision_number,
            'supersedes_id': self.supersedes_id,
            'cost_basis': _dec(self.cost_basis),
            'approved_at': self.approved_at.isoformat() if self.approved_at else None,
            'sent_at': self.sent_at.isoformat() if self.sent_at else None,
            'valid_until': self.valid_until.isoformat() if self.valid_until else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        })
        return data

    def __repr__(self):
        return f'<Estimate {self.estimate_number} Rev.{self.revision_number} [{self.status}]>'


class EstimateLineItem(db.Model):
    __tablename__ = 'estimate_line_items'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    estimate_id = db.Column(db.String(36), db.ForeignKey('estimates.id'), nullable=False, index=True)
    # Set for lines priced from a room measurement
    measurement_id = db.Column(db.String(36), db.ForeignKey('measurements.id', ondelete='SET NULL'),
                               nullable=True, index=True)
    sort_order = db.Column(db.Integer, default=0)
    description = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Numeric(12, 4), nullable=False)
    unit = db.Column(db.String(10), nullable=False)
    unit_price = db.Column(db.Numeric(12, 4), nullable=False)
    total = db.Column(db.Numeric(12, 2), nullable=False)
    category = db.Column(db.String(20), nullable=False)
    r_value = db.Column(db.String(30), nullable=True)

    @classmethod
    def from_line_item(cls, item: LineItem, sort_order=0, measurement_id=None):
        return cls(
            measurement_id=measurement_id,
            sort_order=sort_order,
            description=item.description,
            quantity=item.quantity,
            unit=item.unit,
            unit_price=item.unit_price,
            total=item.total,
            category=item.category.value,
            r_value=item.r_value,
        )

    def to_line_item(self) -> LineItem:
        return LineItem(
            description=self.description,
            quantity=Decimal(self.quantity),
            unit=self.unit,
            unit_price=Decimal(self.unit_price),
            category=ServiceType(self.category),
            r_value=self.r_value,
        )


class Commission(db.Model):
    __tablename__ = 'commissions'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'job_id', 'phase', name='uq_commission_user_job_phase'),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    job_id = db.Column(db.String(36), db.ForeignKey('jobs.id'), nullable=False, index=True)
    estimate_id = db.Column(db.String(36), db.ForeignKey('estimates.id'), nullable=True)
    phase = db.Column(db.String(10), nullable=False)
    rate = db.Column(db.Numeric(6, 4), nullable=False)
    base_amount = db.Column(db.Numeric(12, 2), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    paid_month = db.Column(db.String(7), nullable=False, index=True)  # "YYYY-MM"
    created_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship('User')
    job = db.relationship('Job', backref='commissions')

    @classmethod
    def from_draft(cls, draft, estimate_id=None):
        return cls(
            user_id=draft.user_id,
            job_id=draft.job_id,
            estimate_id=estimate_id,
            phase=CommissionPhase(draft.phase).value,
            rate=draft.rate,
            base_amount=draft.base_amount,
            amount=draft.amount,
            paid_month=draft.paid_month,
        )

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'job_id': self.job_id,
            'estimate_id': self.estimate_id,
            'phase': self.phase,
            'rate': _dec(self.rate),
            'base_amount': _dec(self.base_amount),
            'amount': _dec(self.amount),
            'paid_month': self.paid_month,
        }

    def __repr__(self):
        return f'<Commission {self.phase} {self.amount} ({self.paid_month})>'
