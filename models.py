# models.py
from contextlib import contextmanager
from datetime import datetime
from enum import Enum

from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

db = SQLAlchemy()


@contextmanager
def transaction():
    """
    Unit of work over db.session.

    Everything flushed inside the block commits together; any exception
    rolls the session back and propagates.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


# =============================================================================
# ENUMERATIONS (stored as plain strings)
# =============================================================================

class DealType(str, Enum):
    CASH = 'CASH'
    FINANCE = 'FINANCE'
    LEASE = 'LEASE'


class DocumentType(str, Enum):
    BUYERS_ORDER = 'BUYERS_ORDER'
    ODOMETER_DISCLOSURE = 'ODOMETER_DISCLOSURE'
    PRIVACY_NOTICE = 'PRIVACY_NOTICE'
    RETAIL_INSTALLMENT_CONTRACT = 'RETAIL_INSTALLMENT_CONTRACT'
    TITLE_REG_APPLICATION = 'TITLE_REG_APPLICATION'
    WE_OWE = 'WE_OWE'


class TemplateEngine(str, Enum):
    HTML = 'HTML'
    DOCX = 'DOCX'


class DealDocumentStatus(str, Enum):
    GENERATED = 'GENERATED'
    SENT_FOR_SIGNATURE = 'SENT_FOR_SIGNATURE'
    PARTIALLY_SIGNED = 'PARTIALLY_SIGNED'
    COMPLETED = 'COMPLETED'
    VOIDED = 'VOIDED'
    FAILED = 'FAILED'


class EnvelopeStatus(str, Enum):
    DRAFT = 'DRAFT'
    SENT = 'SENT'
    PARTIALLY_SIGNED = 'PARTIALLY_SIGNED'
    COMPLETED = 'COMPLETED'
    VOIDED = 'VOIDED'
    DECLINED = 'DECLINED'
    ERROR = 'ERROR'


class ChecklistItemStatus(str, Enum):
    PENDING = 'PENDING'
    BLOCKED = 'BLOCKED'
    MISSING_DATA = 'MISSING_DATA'
    GENERATED = 'GENERATED'


def _iso(value):
    return value.isoformat() if value else None


# =============================================================================
# DEALERSHIP
# =============================================================================

class Organization(db.Model):
    __tablename__ = 'organizations'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    tax_rate = db.Column(db.Numeric(6, 4), nullable=False, default=0)
    doc_fee = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    license_fee = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f'<Organization {self.name}>'


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256))
    first_name = db.Column(db.String(80), nullable=False)
    last_name = db.Column(db.String(80), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='sales')  # sales, finance, compliance, admin
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    organization = db.relationship('Organization', backref=db.backref('users', lazy=True))

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def __repr__(self):
        return f'<User {self.email}>'


class Customer(db.Model):
    __tablename__ = 'customers'

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    first_name = db.Column(db.String(80), nullable=False)
    last_name = db.Column(db.String(80), nullable=False)
    email = db.Column(db.String(120))
    phone = db.Column(db.String(20))
    address1 = db.Column(db.String(200))
    city = db.Column(db.String(100))
    state = db.Column(db.String(2))
    postal_code = db.Column(db.String(20))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f'<Customer {self.first_name} {self.last_name}>'


class Vehicle(db.Model):
    __tablename__ = 'vehicles'

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    year = db.Column(db.Integer, nullable=False)
    make = db.Column(db.String(50), nullable=False)
    model = db.Column(db.String(50), nullable=False)
    trim = db.Column(db.String(50))
    vin = db.Column(db.String(17))
    mileage = db.Column(db.Integer, nullable=False, default=0)
    stock_number = db.Column(db.String(30), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f'<Vehicle {self.stock_number}>'


class Deal(db.Model):
    __tablename__ = 'deals'

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False)
    vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicles.id'), nullable=False)
    deal_number = db.Column(db.String(30), nullable=False)
    stage = db.Column(db.String(30), nullable=False, default='DRAFT')
    deal_type = db.Column(db.String(20), nullable=False, default=DealType.CASH.value)
    jurisdiction = db.Column(db.String(2))

    # Money
    sale_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    down_payment = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    taxes = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    fees = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    financed_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    monthly_payment = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    apr = db.Column(db.Numeric(6, 3), nullable=False, default=0)
    term_months = db.Column(db.Integer)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                           onupdate=datetime.utcnow)

    organization = db.relationship('Organization')
    customer = db.relationship('Customer', backref=db.backref('deals', lazy=True))
    vehicle = db.relationship('Vehicle', backref=db.backref('deals', lazy=True))
    trade_ins = db.relationship('TradeIn', backref='deal', lazy=True,
                                order_by='TradeIn.id')

    @classmethod
    def get_for_org(cls, org_id, deal_id):
        return cls.query.filter_by(id=deal_id, org_id=org_id).first()

    def __repr__(self):
        return f'<Deal {self.deal_number}>'


class TradeIn(db.Model):
    __tablename__ = 'trade_ins'

    id = db.Column(db.Integer, primary_key=True)
    deal_id = db.Column(db.Integer, db.ForeignKey('deals.id', ondelete='CASCADE'), nullable=False, index=True)
    vin = db.Column(db.String(17))
    year = db.Column(db.Integer)
    make = db.Column(db.String(50))
    model = db.Column(db.String(50))
    mileage = db.Column(db.Integer)
    allowance = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    payoff = db.Column(db.Numeric(12, 2), nullable=False, default=0)


# =============================================================================
# COMPLIANCE CONFIGURATION
# =============================================================================

class ComplianceRuleSet(db.Model):
    """
    Jurisdiction rule body, versioned per scope.

    org_id NULL marks a global default; an org row for the same
    jurisdiction is evaluated after the global one and overrides it.
    """
    __tablename__ = 'compliance_rule_sets'
    __table_args__ = (
        db.UniqueConstraint('jurisdiction', 'org_id', 'version', name='uq_rule_set_scope_version'),
        # NULL org_id never collides in the constraint above
        db.Index('uq_rule_set_global_version', 'jurisdiction', 'version', unique=True,
                 postgresql_where=db.text('org_id IS NULL'), sqlite_where=db.text('org_id IS NULL')),
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=True, index=True)
    jurisdiction = db.Column(db.String(2), nullable=False)
    version = db.Column(db.Integer, nullable=False)
    effective_from = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    effective_to = db.Column(db.DateTime)
    rules_json = db.Column(db.JSON, nullable=False, default=dict)
    created_by_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                           onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'org_id': self.org_id,
            'jurisdiction': self.jurisdiction,
            'version': self.version,
            'effective_from': _iso(self.effective_from),
            'effective_to': _iso(self.effective_to),
            'rules_json': self.rules_json,
        }

    def __repr__(self):
        scope = self.org_id or 'global'
        return f'<ComplianceRuleSet {self.jurisdiction} v{self.version} ({scope})>'


class DocumentTemplate(db.Model):
    __tablename__ = 'document_templates'
    __table_args__ = (
        db.UniqueConstraint('org_id', 'jurisdiction', 'doc_type', 'deal_type', 'version',
                            name='uq_document_template_scope_version'),
        db.Index('uq_document_template_global_version', 'jurisdiction', 'doc_type', 'deal_type', 'version',
                 unique=True,
                 postgresql_where=db.text('org_id IS NULL'), sqlite_where=db.text('org_id IS NULL')),
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=True, index=True)
    name = db.Column(db.String(200), nullable=False)
    doc_type = db.Column(db.String(40), nullable=False)
    jurisdiction = db.Column(db.String(2), nullable=False)
    deal_type = db.Column(db.String(20), nullable=False)
    version = db.Column(db.Integer, nullable=False, default=1)
    template_engine = db.Column(db.String(10), nullable=False, default=TemplateEngine.HTML.value)
    source_html = db.Column(db.Text)
    source_docx_key = db.Column(db.String(500))
    source_hash = db.Column(db.String(64))
    required_fields_json = db.Column(db.JSON, nullable=False, default=dict)
    effective_from = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    effective_to = db.Column(db.DateTime)
    default_for_org = db.Column(db.Boolean, nullable=False, default=False)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    metadata_json = db.Column(db.JSON)
    deleted_at = db.Column(db.DateTime)
    created_by_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                           onupdate=datetime.utcnow)

    @property
    def required_paths(self):
        fields = self.required_fields_json or {}
        paths = fields.get('requiredPaths') or fields.get('required') or []
        return [p for p in paths if isinstance(p, str)]

    def to_dict(self, include_source=False):
        data = {
            'id': self.id,
            'org_id': self.org_id,
            'name': self.name,
            'doc_type': self.doc_type,
            'jurisdiction': self.jurisdiction,
            'deal_type': self.deal_type,
            'version': self.version,
            'template_engine': self.template_engine,
            'source_docx_key': self.source_docx_key,
            'source_hash': self.source_hash,
            'required_fields_json': self.required_fields_json,
            'effective_from': _iso(self.effective_from),
            'effective_to': _iso(self.effective_to),
            'default_for_org': self.default_for_org,
            'is_default': self.is_default,
            'deleted_at': _iso(self.deleted_at),
        }
        if include_source:
            data['source_html'] = self.source_html
        return data

    def __repr__(self):
        return f'<DocumentTemplate {self.doc_type} {self.jurisdiction}/{self.deal_type} v{self.version}>'


# =============================================================================
# GENERATED DOCUMENTS AND SIGNATURES
# =============================================================================

class DealDocument(db.Model):
    __tablename__ = 'deal_documents'

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    deal_id = db.Column(db.Integer, db.ForeignKey('deals.id', ondelete='CASCADE'), nullable=False, index=True)
    template_id = db.Column(db.Integer, db.ForeignKey('document_templates.id', ondelete='SET NULL'))
    doc_type = db.Column(db.String(40), nullable=False)
    status = db.Column(db.String(30), nullable=False, default=DealDocumentStatus.GENERATED.value)
    file_key = db.Column(db.String(500))
    file_hash = db.Column(db.String(64))
    envelope_id = db.Column(db.Integer, db.ForeignKey('document_envelopes.id', ondelete='SET NULL'), index=True)
    regenerate_reason = db.Column(db.String(500))
    metadata_json = db.Column(db.JSON)
    generated_at = db.Column(db.DateTime)
    created_by_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                           onupdate=datetime.utcnow)

    deal = db.relationship('Deal', backref=db.backref('documents', lazy=True,
                                                       order_by='DealDocument.created_at.desc()'))
    template = db.relationship('DocumentTemplate')
    envelope = db.relationship('DocumentEnvelope', backref=db.backref('documents', lazy=True,
                                                                       order_by='DealDocument.id'))

    @classmethod
    def current_for(cls, deal_id, doc_type):
        """Most recently created non-voided row for the deal and type."""
        return cls.query.filter(
            cls.deal_id == deal_id,
            cls.doc_type == doc_type,
            cls.status != DealDocumentStatus.VOIDED.value,
        ).order_by(cls.created_at.desc(), cls.id.desc()).first()

    def to_dict(self):
        return {
            'id': self.id,
            'deal_id': self.deal_id,
            'template_id': self.template_id,
            'doc_type': self.doc_type,
            'status': self.status,
            'file_key': self.file_key,
            'file_hash': self.file_hash,
            'envelope_id': self.envelope_id,
            'regenerate_reason': self.regenerate_reason,
            'metadata_json': self.metadata_json,
            'generated_at': _iso(self.generated_at),
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<DealDocument {self.doc_type} deal={self.deal_id} {self.status}>'


class DocumentEnvelope(db.Model):
    __tablename__ = 'document_envelopes'
    __table_args__ = (
        db.UniqueConstraint('org_id', 'request_id', name='uq_document_envelope_request'),
        db.Index('ix_document_envelopes_provider_ref', 'provider', 'provider_envelope_id'),
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    deal_id = db.Column(db.Integer, db.ForeignKey('deals.id', ondelete='CASCADE'), nullable=False, index=True)
    provider = db.Column(db.String(30), nullable=False)
    provider_envelope_id = db.Column(db.String(100))
    request_id = db.Column(db.String(100), nullable=False)
    status = db.Column(db.String(30), nullable=False, default=EnvelopeStatus.DRAFT.value)
    recipients_json = db.Column(db.JSON, nullable=False, default=list)
    sent_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    metadata_json = db.Column(db.JSON)
    created_by_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                           onupdate=datetime.utcnow)

    deal = db.relationship('Deal', backref=db.backref('envelopes', lazy=True,
                                                       order_by='DocumentEnvelope.created_at.desc()'))

    def to_dict(self):
        return {
            'id': self.id,
            'deal_id': self.deal_id,
            'provider': self.provider,
            'provider_envelope_id': self.provider_envelope_id,
            'request_id': self.request_id,
            'status': self.status,
            'recipients': self.recipients_json,
            'sent_at': _iso(self.sent_at),
            'completed_at': _iso(self.completed_at),
            'metadata_json': self.metadata_json,
            'document_ids': [d.id for d in self.documents],
        }

    def __repr__(self):
        return f'<DocumentEnvelope {self.request_id} {self.status}>'


class DocumentEvent(db.Model):
    """Inbound provider callback, kept only so each event is processed once."""
    __tablename__ = 'document_events'
    __table_args__ = (
        db.UniqueConstraint('provider', 'provider_event_id', name='uq_document_event_provider_event'),
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    envelope_id = db.Column(db.Integer, db.ForeignKey('document_envelopes.id', ondelete='CASCADE'), index=True)
    provider = db.Column(db.String(30), nullable=False)
    provider_event_id = db.Column(db.String(200), nullable=False)
    event_type = db.Column(db.String(60), nullable=False)
    payload_json = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)


class DocumentPackTemplate(db.Model):
    __tablename__ = 'document_pack_templates'

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    state = db.Column(db.String(2), nullable=False)
    sale_type = db.Column(db.String(20), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    items = db.relationship('DocumentPackItem', backref='pack_template', lazy=True,
                            cascade='all, delete-orphan',
                            order_by='DocumentPackItem.sort_order')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'state': self.state,
            'sale_type': self.sale_type,
            'items': [item.to_dict() for item in self.items],
        }


class DocumentPackItem(db.Model):
    __tablename__ = 'document_pack_items'

    id = db.Column(db.Integer, primary_key=True)
    pack_template_id = db.Column(db.Integer, db.ForeignKey('document_pack_templates.id', ondelete='CASCADE'),
                                 nullable=False, index=True)
    document_type = db.Column(db.String(40), nullable=False)
    required = db.Column(db.Boolean, nullable=False, default=True)
    blocking = db.Column(db.Boolean, nullable=False, default=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    document_template_id = db.Column(db.Integer, db.ForeignKey('document_templates.id', ondelete='SET NULL'))

    document_template = db.relationship('DocumentTemplate')

    def to_dict(self):
        return {
            'id': self.id,
            'document_type': self.document_type,
            'required': self.required,
            'blocking': self.blocking,
            'sort_order': self.sort_order,
            'document_template_id': self.document_template_id,
        }


class DealDocumentChecklistItem(db.Model):
    __tablename__ = 'deal_document_checklist_items'
    __table_args__ = (
        db.UniqueConstraint('deal_id', 'pack_template_id', 'document_type', name='uq_deal_checklist_item'),
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    deal_id = db.Column(db.Integer, db.ForeignKey('deals.id', ondelete='CASCADE'), nullable=False, index=True)
    pack_template_id = db.Column(db.Integer, db.ForeignKey('document_pack_templates.id', ondelete='CASCADE'),
                                 nullable=False)
    document_type = db.Column(db.String(40), nullable=False)
    required = db.Column(db.Boolean, nullable=False, default=True)
    blocking = db.Column(db.Boolean, nullable=False, default=True)
    status = db.Column(db.String(20), nullable=False, default=ChecklistItemStatus.PENDING.value)
    generated_document_id = db.Column(db.Integer, db.ForeignKey('deal_documents.id', ondelete='SET NULL'))
    missing_fields_json = db.Column(db.JSON)
    notes = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                           onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'deal_id': self.deal_id,
            'pack_template_id': self.pack_template_id,
            'document_type': self.document_type,
            'required': self.required,
            'blocking': self.blocking,
            'status': self.status,
            'generated_document_id': self.generated_document_id,
            'missing_fields': self.missing_fields_json or [],
            'notes': self.notes,
        }


# =============================================================================
# AUDIT AND OUTBOX
# =============================================================================

class AuditEvent(db.Model):
    __tablename__ = 'audit_events'

    # Actions
    CREATE = 'CREATE'
    UPDATE = 'UPDATE'
    DELETE = 'DELETE'
    DOWNLOAD = 'DOWNLOAD'
    STATUS_CHANGE = 'STATUS_CHANGE'
    VOID = 'VOID'

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=True, index=True)
    actor_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), index=True)
    entity_type = db.Column(db.String(50), nullable=False)
    entity_id = db.Column(db.String(50), nullable=False)
    action = db.Column(db.String(30), nullable=False)
    before_json = db.Column(db.JSON)
    after_json = db.Column(db.JSON)
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    actor = db.relationship('User')

    @classmethod
    def for_entity(cls, entity_type, entity_id):
        return cls.query.filter_by(entity_type=entity_type, entity_id=str(entity_id))\
            .order_by(cls.created_at.asc(), cls.id.asc()).all()

    def __repr__(self):
        return f'<AuditEvent {self.action} {self.entity_type}:{self.entity_id}>'


class DomainEvent(db.Model):
    """Outbox row picked up by the webhook fan-out worker."""
    __tablename__ = 'domain_events'

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    event_type = db.Column(db.String(60), nullable=False)
    entity_type = db.Column(db.String(50), nullable=False)
    entity_id = db.Column(db.String(50), nullable=False)
    payload_json = db.Column(db.JSON)
    status = db.Column(db.String(20), nullable=False, default='pending')
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
