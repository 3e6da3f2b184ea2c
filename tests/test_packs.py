"""
Document pack tests: pack creation, ordered generation and the per-deal
checklist.
"""

import sys
from datetime import datetime
from pathlib import Path

import jsonschema
import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from conftest import make_template
from models import db, AuditEvent, DealDocument, DealDocumentChecklistItem
from services.documents import (
    GenerationOutcome,
    create_pack_template,
    generate_document_pack,
    get_deal_checklist,
    list_pack_templates,
    resolve_checklist_status,
)
from services.errors import AppError, NotFoundError


def pack_payload(**overrides):
    payload = {
        'name': 'Texas cash retail',
        'state': 'tx',
        'sale_type': 'CASH',
        'items': [
            {'document_type': 'BUYERS_ORDER', 'sort_order': 2},
            {'document_type': 'PRIVACY_NOTICE', 'sort_order': 1},
            {'document_type': 'WE_OWE', 'sort_order': 3, 'blocking': False, 'required': False},
        ],
    }
    payload.update(overrides)
    return payload


def statuses(result):
    return {row['document_type']: row['status'] for row in result['checklist']}


class TestPackTemplates:

    def test_create_pack(self, org, user):
        pack = create_pack_template(org.id, user.id, pack_payload())

        assert pack.state == 'TX'
        assert [i.document_type for i in pack.items] == ['PRIVACY_NOTICE', 'BUYERS_ORDER', 'WE_OWE']
        assert [e.action for e in AuditEvent.for_entity('DocumentPackTemplate', pack.id)] == ['CREATE']
        assert list_pack_templates(org.id)[0]['name'] == 'Texas cash retail'

    def test_repeated_document_type_rejected(self, org, user):
        payload = pack_payload(items=[{'document_type': 'WE_OWE'}, {'document_type': 'WE_OWE'}])
        with pytest.raises(AppError):
            create_pack_template(org.id, user.id, payload)

    def test_unknown_pinned_template_rejected(self, org, user):
        payload = pack_payload(items=[{'document_type': 'WE_OWE', 'document_template_id': 999}])
        with pytest.raises(NotFoundError):
            create_pack_template(org.id, user.id, payload)

    def test_other_organization_template_cannot_be_pinned(self, org, other_org, user):
        foreign = make_template('WE_OWE', org_id=other_org.id)
        payload = pack_payload(items=[{'document_type': 'WE_OWE', 'document_template_id': foreign.id}])
        with pytest.raises(NotFoundError):
            create_pack_template(org.id, user.id, payload)

    def test_invalid_payload(self, org, user):
        with pytest.raises(jsonschema.ValidationError):
            create_pack_template(org.id, user.id, pack_payload(sale_type='RENTAL'))
        with pytest.raises(jsonschema.ValidationError):
            create_pack_template(org.id, user.id, pack_payload(items=[]))


class TestPackGeneration:

    def test_items_run_in_order_and_fill_checklist(self, org, user, workspace):
        pack = create_pack_template(org.id, user.id, pack_payload())

        result = generate_document_pack(org.id, user.id, workspace.id, pack.id)

        assert [r['doc_type'] for r in result['results']] == ['PRIVACY_NOTICE', 'BUYERS_ORDER', 'WE_OWE']
        # No WE_OWE template is configured
        assert statuses(result) == {
            'PRIVACY_NOTICE': 'GENERATED',
            'BUYERS_ORDER': 'GENERATED',
            'WE_OWE': 'BLOCKED',
        }
        buyers_order = [r for r in result['checklist'] if r['document_type'] == 'BUYERS_ORDER'][0]
        assert buyers_order['generated_document_id'] == DealDocument.current_for(workspace.id, 'BUYERS_ORDER').id
        assert DealDocument.current_for(workspace.id, 'BUYERS_ORDER').metadata_json['reason'] == \
            'Pack: Texas cash retail'

    def test_missing_data_status(self, org, user, workspace, vehicle):
        vehicle.vin = None
        db.session.commit()
        pack = create_pack_template(org.id, user.id, pack_payload(
            items=[{'document_type': 'ODOMETER_DISCLOSURE'}]
        ))

        result = generate_document_pack(org.id, user.id, workspace.id, pack.id)

        row = result['checklist'][0]
        assert row['status'] == 'MISSING_DATA'
        assert row['missing_fields'] == ['vehicle.vin']
        assert row['generated_document_id'] is None

    def test_rerun_updates_rows_in_place(self, org, user, workspace):
        pack = create_pack_template(org.id, user.id, pack_payload())
        generate_document_pack(org.id, user.id, workspace.id, pack.id)

        result = generate_document_pack(org.id, user.id, workspace.id, pack.id)

        assert result['results'][0]['outcome'] == 'SKIPPED_EXISTING'
        assert statuses(result)['PRIVACY_NOTICE'] == 'GENERATED'
        assert DealDocumentChecklistItem.query.filter_by(deal_id=workspace.id).count() == 3
        row_id = result['checklist'][0]['id']
        assert [e.action for e in AuditEvent.for_entity('DealDocumentChecklistItem', row_id)] == ['CREATE', 'UPDATE']

    def test_pinned_template_is_used(self, org, user, workspace):
        pinned = make_template('BUYERS_ORDER', org_id=org.id, version=1, name='Pinned buyers order')
        make_template('BUYERS_ORDER', org_id=org.id, version=2, default_for_org=True)
        pack = create_pack_template(org.id, user.id, pack_payload(
            items=[{'document_type': 'BUYERS_ORDER', 'document_template_id': pinned.id}]
        ))

        result = generate_document_pack(org.id, user.id, workspace.id, pack.id)

        assert result['results'][0]['template_id'] == pinned.id

    def test_inactive_pinned_template_falls_back_to_resolution(self, org, user, workspace, tx_templates):
        pinned = make_template('BUYERS_ORDER', org_id=org.id, effective_to=datetime(2024, 6, 30))
        pack = create_pack_template(org.id, user.id, pack_payload(
            items=[{'document_type': 'BUYERS_ORDER', 'document_template_id': pinned.id}]
        ))

        result = generate_document_pack(org.id, user.id, workspace.id, pack.id)

        assert result['results'][0]['template_id'] == tx_templates['BUYERS_ORDER'].id

    def test_cap_leaves_later_items_pending(self, app, org, user, workspace):
        app.config['GENERATION_MAX_DOCS_PER_REQUEST'] = 1
        pack = create_pack_template(org.id, user.id, pack_payload())

        result = generate_document_pack(org.id, user.id, workspace.id, pack.id)

        assert len(result['results']) == 1
        assert statuses(result) == {
            'PRIVACY_NOTICE': 'GENERATED',
            'BUYERS_ORDER': 'PENDING',
            'WE_OWE': 'PENDING',
        }
        assert result['notices'] == [
            'Generation capped at 1 documents per request; 2 remaining. Re-run to continue.'
        ]

    def test_pack_must_match_deal(self, org, user, workspace):
        florida = create_pack_template(org.id, user.id, pack_payload(state='FL'))
        finance = create_pack_template(org.id, user.id, pack_payload(sale_type='FINANCE'))

        with pytest.raises(AppError):
            generate_document_pack(org.id, user.id, workspace.id, florida.id)
        with pytest.raises(AppError):
            generate_document_pack(org.id, user.id, workspace.id, finance.id)

    def test_unknown_pack(self, org, user, workspace):
        with pytest.raises(NotFoundError):
            generate_document_pack(org.id, user.id, workspace.id, 999)

    def test_deal_checklist(self, org, user, workspace):
        pack = create_pack_template(org.id, user.id, pack_payload())
        generate_document_pack(org.id, user.id, workspace.id, pack.id)

        rows = get_deal_checklist(org.id, workspace.id)

        assert len(rows) == 3
        assert get_deal_checklist(org.id, workspace.id, pack_template_id=pack.id + 1) == []


class TestChecklistStatus:

    def test_current_document_wins(self):
        assert resolve_checklist_status(GenerationOutcome.SKIPPED_EXISTING, True) == 'GENERATED'
        assert resolve_checklist_status(GenerationOutcome.REGENERATE_REASON_REQUIRED, True) == 'GENERATED'

    def test_status_by_outcome(self):
        assert resolve_checklist_status(GenerationOutcome.MISSING_TEMPLATE, False) == 'BLOCKED'
        assert resolve_checklist_status(GenerationOutcome.UNSUPPORTED_TEMPLATE, False) == 'BLOCKED'
        assert resolve_checklist_status(GenerationOutcome.MISSING_FIELDS, False) == 'MISSING_DATA'
