"""create dealership and document workflow tables

Revision ID: a1c0d0c5e001
Revises:
Create Date: 2026-01-20

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

# revision identifiers, used by Alembic.
revision = 'a1c0d0c5e001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    conn = op.get_bind()
    inspector = inspect(conn)
    tables = inspector.get_table_names()

    # Dealership
    if 'organizations' not in tables:
        op.create_table(
            'organizations',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=200), nullable=False),
            sa.Column('tax_rate', sa.Numeric(6, 4), nullable=False, server_default='0'),
            sa.Column('doc_fee', sa.Numeric(10, 2), nullable=False, server_default='0'),
            sa.Column('license_fee', sa.Numeric(10, 2), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
            sa.PrimaryKeyConstraint('id', name='pk_organizations')
        )

    if 'users' not in tables:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('org_id', sa.Integer(), nullable=False),
            sa.Column('email', sa.String(length=120), nullable=False),
            sa.Column('password_hash', sa.String(length=256), nullable=True),
            sa.Column('first_name', sa.String(length=80), nullable=False),
            sa.Column('last_name', sa.String(length=80), nullable=False),
            sa.Column('role', sa.String(length=20), nullable=False, server_default='sales'),
            sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
            sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], name='fk_users_org_id'),
            sa.PrimaryKeyConstraint('id', name='pk_users'),
            sa.UniqueConstraint('email', name='uq_users_email')
        )
        op.create_index('ix_users_org_id', 'users', ['org_id'], unique=False)

    if 'customers' not in tables:
        op.create_table(
            'customers',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('org_id', sa.Integer(), nullable=False),
            sa.Column('first_name', sa.String(length=80), nullable=False),
            sa.Column('last_name', sa.String(length=80), nullable=False),
            sa.Column('email', sa.String(length=120), nullable=True),
            sa.Column('phone', sa.String(length=20), nullable=True),
            sa.Column('address1', sa.String(length=200), nullable=True),
            sa.Column('city', sa.String(length=100), nullable=True),
            sa.Column('state', sa.String(length=2), nullable=True),
            sa.Column('postal_code', sa.String(length=20), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
            sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], name='fk_customers_org_id'),
            sa.PrimaryKeyConstraint('id', name='pk_customers')
        )
        op.create_index('ix_customers_org_id', 'customers', ['org_id'], unique=False)

    if 'vehicles' not in tables:
        op.create_table(
            'vehicles',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('org_id', sa.Integer(), nullable=False),
            sa.Column('year', sa.Integer(), nullable=False),
            sa.Column('make', sa.String(length=50), nullable=False),
            sa.Column('model', sa.String(length=50), nullable=False),
            sa.Column('trim', sa.String(length=50), nullable=True),
            sa.Column('vin', sa.String(length=17), nullable=True),
            sa.Column('mileage', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('stock_number', sa.String(length=30), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
            sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], name='fk_vehicles_org_id'),
            sa.PrimaryKeyConstraint('id', name='pk_vehicles')
        )
        op.create_index('ix_vehicles_org_id', 'vehicles', ['org_id'], unique=False)

    if 'deals' not in tables:
        op.create_table(
            'deals',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('org_id', sa.Integer(), nullable=False),
            sa.Column('customer_id', sa.Integer(), nullable=False),
            sa.Column('vehicle_id', sa.Integer(), nullable=False),
            sa.Column('deal_number', sa.String(length=30), nullable=False),
            sa.Column('stage', sa.String(length=30), nullable=False, server_default='DRAFT'),
            sa.Column('deal_type', sa.String(length=20), nullable=False, server_default='CASH'),
            sa.Column('jurisdiction', sa.String(length=2), nullable=True),
            sa.Column('sale_price', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('down_payment', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('taxes', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('fees', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('financed_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('monthly_payment', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('apr', sa.Numeric(6, 3), nullable=False, server_default='0'),
            sa.Column('term_months', sa.Integer(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], name='fk_deals_org_id'),
            sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], name='fk_deals_customer_id'),
            sa.ForeignKeyConstraint(['vehicle_id'], ['vehicles.id'], name='fk_deals_vehicle_id'),
            sa.PrimaryKeyConstraint('id', name='pk_deals')
        )
        op.create_index('ix_deals_org_id', 'deals', ['org_id'], unique=False)

    if 'trade_ins' not in tables:
        op.create_table(
            'trade_ins',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('deal_id', sa.Integer(), nullable=False),
            sa.Column('vin', sa.String(length=17), nullable=True),
            sa.Column('year', sa.Integer(), nullable=True),
            sa.Column('make', sa.String(length=50), nullable=True),
            sa.Column('model', sa.String(length=50), nullable=True),
            sa.Column('mileage', sa.Integer(), nullable=True),
            sa.Column('allowance', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('payoff', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.ForeignKeyConstraint(['deal_id'], ['deals.id'], name='fk_trade_ins_deal_id', ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id', name='pk_trade_ins')
        )
        op.create_index('ix_trade_ins_deal_id', 'trade_ins', ['deal_id'], unique=False)

    # Compliance configuration
    if 'compliance_rule_sets' not in tables:
        op.create_table(
            'compliance_rule_sets',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('org_id', sa.Integer(), nullable=True),
            sa.Column('jurisdiction', sa.String(length=2), nullable=False),
            sa.Column('version', sa.Integer(), nullable=False),
            sa.Column('effective_from', sa.DateTime(), nullable=False),
            sa.Column('effective_to', sa.DateTime(), nullable=True),
            sa.Column('rules_json', sa.JSON(), nullable=False),
            sa.Column('created_by_id', sa.Integer(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], name='fk_compliance_rule_sets_org_id'),
            sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], name='fk_compliance_rule_sets_created_by_id', ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id', name='pk_compliance_rule_sets'),
            sa.UniqueConstraint('jurisdiction', 'org_id', 'version', name='uq_rule_set_scope_version')
        )
        op.create_index('ix_compliance_rule_sets_org_id', 'compliance_rule_sets', ['org_id'], unique=False)
        op.create_index('uq_rule_set_global_version', 'compliance_rule_sets', ['jurisdiction', 'version'],
                        unique=True, postgresql_where=sa.text('org_id IS NULL'),
                        sqlite_where=sa.text('org_id IS NULL'))

    if 'document_templates' not in tables:
        op.create_table(
            'document_templates',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('org_id', sa.Integer(), nullable=True),
            sa.Column('name', sa.String(length=200), nullable=False),
            sa.Column('doc_type', sa.String(length=40), nullable=False),
            sa.Column('jurisdiction', sa.String(length=2), nullable=False),
            sa.Column('deal_type', sa.String(length=20), nullable=False),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('template_engine', sa.String(length=10), nullable=False, server_default='HTML'),
            sa.Column('source_html', sa.Text(), nullable=True),
            sa.Column('source_docx_key', sa.String(length=500), nullable=True),
            sa.Column('source_hash', sa.String(length=64), nullable=True),
            sa.Column('required_fields_json', sa.JSON(), nullable=False),
            sa.Column('effective_from', sa.DateTime(), nullable=False),
            sa.Column('effective_to', sa.DateTime(), nullable=True),
            sa.Column('default_for_org', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('metadata_json', sa.JSON(), nullable=True),
            sa.Column('deleted_at', sa.DateTime(), nullable=True),
            sa.Column('created_by_id', sa.Integer(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], name='fk_document_templates_org_id'),
            sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], name='fk_document_templates_created_by_id', ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id', name='pk_document_templates'),
            sa.UniqueConstraint('org_id', 'jurisdiction', 'doc_type', 'deal_type', 'version',
                                name='uq_document_template_scope_version')
        )
        op.create_index('ix_document_templates_org_id', 'document_templates', ['org_id'], unique=False)
        op.create_index('uq_document_template_global_version', 'document_templates',
                        ['jurisdiction', 'doc_type', 'deal_type', 'version'],
                        unique=True, postgresql_where=sa.text('org_id IS NULL'),
                        sqlite_where=sa.text('org_id IS NULL'))

    # Generated documents and signatures
    if 'document_envelopes' not in tables:
        op.create_table(
            'document_envelopes',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('org_id', sa.Integer(), nullable=False),
            sa.Column('deal_id', sa.Integer(), nullable=False),
            sa.Column('provider', sa.String(length=30), nullable=False),
            sa.Column('provider_envelope_id', sa.String(length=100), nullable=True),
            sa.Column('request_id', sa.String(length=100), nullable=False),
            sa.Column('status', sa.String(length=30), nullable=False, server_default='DRAFT'),
            sa.Column('recipients_json', sa.JSON(), nullable=False),
            sa.Column('sent_at', sa.DateTime(), nullable=True),
            sa.Column('completed_at', sa.DateTime(), nullable=True),
            sa.Column('metadata_json', sa.JSON(), nullable=True),
            sa.Column('created_by_id', sa.Integer(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], name='fk_document_envelopes_org_id'),
            sa.ForeignKeyConstraint(['deal_id'], ['deals.id'], name='fk_document_envelopes_deal_id', ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], name='fk_document_envelopes_created_by_id', ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id', name='pk_document_envelopes'),
            sa.UniqueConstraint('org_id', 'request_id', name='uq_document_envelope_request')
        )
        op.create_index('ix_document_envelopes_org_id', 'document_envelopes', ['org_id'], unique=False)
        op.create_index('ix_document_envelopes_deal_id', 'document_envelopes', ['deal_id'], unique=False)
        op.create_index('ix_document_envelopes_provider_ref', 'document_envelopes',
                        ['provider', 'provider_envelope_id'], unique=False)

    if 'deal_documents' not in tables:
        op.create_table(
            'deal_documents',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('org_id', sa.Integer(), nullable=False),
            sa.Column('deal_id', sa.Integer(), nullable=False),
            sa.Column('template_id', sa.Integer(), nullable=True),
            sa.Column('doc_type', sa.String(length=40), nullable=False),
            sa.Column('status', sa.String(length=30), nullable=False, server_default='GENERATED'),
            sa.Column('file_key', sa.String(length=500), nullable=True),
            sa.Column('file_hash', sa.String(length=64), nullable=True),
            sa.Column('envelope_id', sa.Integer(), nullable=True),
            sa.Column('regenerate_reason', sa.String(length=500), nullable=True),
            sa.Column('metadata_json', sa.JSON(), nullable=True),
            sa.Column('generated_at', sa.DateTime(), nullable=True),
            sa.Column('created_by_id', sa.Integer(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], name='fk_deal_documents_org_id'),
            sa.ForeignKeyConstraint(['deal_id'], ['deals.id'], name='fk_deal_documents_deal_id', ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['template_id'], ['document_templates.id'], name='fk_deal_documents_template_id', ondelete='SET NULL'),
            sa.ForeignKeyConstraint(['envelope_id'], ['document_envelopes.id'], name='fk_deal_documents_envelope_id', ondelete='SET NULL'),
            sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], name='fk_deal_documents_created_by_id', ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id', name='pk_deal_documents')
        )
        op.create_index('ix_deal_documents_org_id', 'deal_documents', ['org_id'], unique=False)
        op.create_index('ix_deal_documents_deal_id', 'deal_documents', ['deal_id'], unique=False)
        op.create_index('ix_deal_documents_envelope_id', 'deal_documents', ['envelope_id'], unique=False)

    if 'document_events' not in tables:
        op.create_table(
            'document_events',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('org_id', sa.Integer(), nullable=False),
            sa.Column('envelope_id', sa.Integer(), nullable=True),
            sa.Column('provider', sa.String(length=30), nullable=False),
            sa.Column('provider_event_id', sa.String(length=200), nullable=False),
            sa.Column('event_type', sa.String(length=60), nullable=False),
            sa.Column('payload_json', sa.JSON(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
            sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], name='fk_document_events_org_id'),
            sa.ForeignKeyConstraint(['envelope_id'], ['document_envelopes.id'], name='fk_document_events_envelope_id', ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id', name='pk_document_events'),
            sa.UniqueConstraint('provider', 'provider_event_id', name='uq_document_event_provider_event')
        )
        op.create_index('ix_document_events_org_id', 'document_events', ['org_id'], unique=False)
        op.create_index('ix_document_events_envelope_id', 'document_events', ['envelope_id'], unique=False)

    # Document packs
    if 'document_pack_templates' not in tables:
        op.create_table(
            'document_pack_templates',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('org_id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=200), nullable=False),
            sa.Column('state', sa.String(length=2), nullable=False),
            sa.Column('sale_type', sa.String(length=20), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
            sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], name='fk_document_pack_templates_org_id'),
            sa.PrimaryKeyConstraint('id', name='pk_document_pack_templates')
        )
        op.create_index('ix_document_pack_templates_org_id', 'document_pack_templates', ['org_id'], unique=False)

    if 'document_pack_items' not in tables:
        op.create_table(
            'document_pack_items',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('pack_template_id', sa.Integer(), nullable=False),
            sa.Column('document_type', sa.String(length=40), nullable=False),
            sa.Column('required', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('blocking', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('document_template_id', sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(['pack_template_id'], ['document_pack_templates.id'], name='fk_document_pack_items_pack_template_id', ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['document_template_id'], ['document_templates.id'], name='fk_document_pack_items_document_template_id', ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id', name='pk_document_pack_items')
        )
        op.create_index('ix_document_pack_items_pack_template_id', 'document_pack_items', ['pack_template_id'], unique=False)

    if 'deal_document_checklist_items' not in tables:
        op.create_table(
            'deal_document_checklist_items',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('org_id', sa.Integer(), nullable=False),
            sa.Column('deal_id', sa.Integer(), nullable=False),
            sa.Column('pack_template_id', sa.Integer(), nullable=False),
            sa.Column('document_type', sa.String(length=40), nullable=False),
            sa.Column('required', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('blocking', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING'),
            sa.Column('generated_document_id', sa.Integer(), nullable=True),
            sa.Column('missing_fields_json', sa.JSON(), nullable=True),
            sa.Column('notes', sa.String(length=500), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], name='fk_deal_document_checklist_items_org_id'),
            sa.ForeignKeyConstraint(['deal_id'], ['deals.id'], name='fk_deal_document_checklist_items_deal_id', ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['pack_template_id'], ['document_pack_templates.id'], name='fk_deal_document_checklist_items_pack_template_id', ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['generated_document_id'], ['deal_documents.id'], name='fk_deal_document_checklist_items_generated_document_id', ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id', name='pk_deal_document_checklist_items'),
            sa.UniqueConstraint('deal_id', 'pack_template_id', 'document_type', name='uq_deal_checklist_item')
        )
        op.create_index('ix_deal_document_checklist_items_org_id', 'deal_document_checklist_items', ['org_id'], unique=False)
        op.create_index('ix_deal_document_checklist_items_deal_id', 'deal_document_checklist_items', ['deal_id'], unique=False)

    # Audit and outbox
    if 'audit_events' not in tables:
        op.create_table(
            'audit_events',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('org_id', sa.Integer(), nullable=True),
            sa.Column('actor_id', sa.Integer(), nullable=True),
            sa.Column('entity_type', sa.String(length=50), nullable=False),
            sa.Column('entity_id', sa.String(length=50), nullable=False),
            sa.Column('action', sa.String(length=30), nullable=False),
            sa.Column('before_json', sa.JSON(), nullable=True),
            sa.Column('after_json', sa.JSON(), nullable=True),
            sa.Column('ip_address', sa.String(length=45), nullable=True),
            sa.Column('user_agent', sa.String(length=500), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
            sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], name='fk_audit_events_org_id'),
            sa.ForeignKeyConstraint(['actor_id'], ['users.id'], name='fk_audit_events_actor_id', ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id', name='pk_audit_events')
        )
        op.create_index('ix_audit_events_org_id', 'audit_events', ['org_id'], unique=False)
        op.create_index('ix_audit_events_actor_id', 'audit_events', ['actor_id'], unique=False)
        op.create_index('ix_audit_events_created_at', 'audit_events', ['created_at'], unique=False)
        op.create_index('ix_audit_events_entity', 'audit_events', ['entity_type', 'entity_id'], unique=False)

    if 'domain_events' not in tables:
        op.create_table(
            'domain_events',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('org_id', sa.Integer(), nullable=False),
            sa.Column('event_type', sa.String(length=60), nullable=False),
            sa.Column('entity_type', sa.String(length=50), nullable=False),
            sa.Column('entity_id', sa.String(length=50), nullable=False),
            sa.Column('payload_json', sa.JSON(), nullable=True),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
            sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
            sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], name='fk_domain_events_org_id'),
            sa.PrimaryKeyConstraint('id', name='pk_domain_events')
        )
        op.create_index('ix_domain_events_org_id', 'domain_events', ['org_id'], unique=False)
        op.create_index('ix_domain_events_status', 'domain_events', ['status'], unique=False)


def downgrade():
    conn = op.get_bind()
    inspector = inspect(conn)
    tables = inspector.get_table_names()

    # Children before parents
    for table in (
        'domain_events',
        'audit_events',
        'deal_document_checklist_items',
        'document_pack_items',
        'document_pack_templates',
        'document_events',
        'deal_documents',
        'document_envelopes',
        'document_templates',
        'compliance_rule_sets',
        'trade_ins',
        'deals',
        'vehicles',
        'customers',
        'users',
        'organizations',
    ):
        if table in tables:
            op.drop_table(table)
