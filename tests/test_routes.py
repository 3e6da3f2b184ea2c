"""
JSON API tests through the Flask test client: authentication, role checks,
error mapping and the main document workflow.
"""

import json
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from models import db, DealDocument, DocumentEnvelope, User

RECIPIENTS = [{'role': 'buyer', 'name': 'Sam Buyer', 'email': 'sam@example.com'}]


def login(client, user):
    with client.session_transaction() as sess:
        sess['_user_id'] = str(user.id)
        sess['_fresh'] = True


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(client, user):
    login(client, user)
    return client


@pytest.fixture
def sales_user(org):
    sales = User(org_id=org.id, email='sales@lonestar.test', first_name='Riley',
                 last_name='Ortiz', role='sales')
    sales.set_password('secret-password')
    db.session.add(sales)
    db.session.commit()
    return sales


class TestAuthentication:

    def test_api_requires_login(self, client, deal):
        response = client.get(f'/api/deals/{deal.id}/documents')

        assert response.status_code == 401
        assert response.get_json() == {'success': False, 'error': 'Authentication required'}

    def test_admin_routes_reject_other_roles(self, client, sales_user):
        login(client, sales_user)

        response = client.post('/api/compliance/templates', json={'name': 'x'})

        assert response.status_code == 403
        assert response.get_json()['success'] is False

    def test_sales_can_read_templates(self, client, sales_user):
        login(client, sales_user)
        response = client.get('/api/compliance/templates')
        assert response.status_code == 200
        assert response.get_json()['templates'] == []


class TestDocumentRoutes:

    def test_workspace(self, admin_client, workspace):
        response = admin_client.get(f'/api/deals/{workspace.id}/documents')

        data = response.get_json()
        assert response.status_code == 200
        assert data['success'] is True
        assert [item['doc_type'] for item in data['checklist']][0] == 'BUYERS_ORDER'

    def test_workspace_of_unknown_deal(self, admin_client, workspace):
        response = admin_client.get('/api/deals/9999/documents')
        assert response.status_code == 404
        assert response.get_json()['success'] is False

    def test_generate_and_download(self, admin_client, workspace):
        response = admin_client.post(f'/api/deals/{workspace.id}/documents/generate',
                                     json={'doc_types': ['BUYERS_ORDER']})

        result = response.get_json()['results'][0]
        assert result['outcome'] == 'GENERATED'

        download = admin_client.get(f"/api/deals/{workspace.id}/documents/{result['document_id']}/download")
        assert download.status_code == 200
        assert download.headers['Content-Disposition'].startswith('attachment')
        assert b'D-1001' in download.data

    def test_regenerate_flag_accepts_strings(self, admin_client, workspace):
        url = f'/api/deals/{workspace.id}/documents/generate'
        admin_client.post(url, json={'doc_types': ['BUYERS_ORDER']})

        response = admin_client.post(url, json={'doc_types': ['BUYERS_ORDER'], 'regenerate': 'true'})

        assert response.get_json()['results'][0]['outcome'] == 'REGENERATE_REASON_REQUIRED'


class TestSigningRoutes:

    @pytest.fixture(autouse=True)
    def setup(self, admin_client, workspace, pdf_renderer):
        self.client = admin_client
        self.deal = workspace
        admin_client.post(f'/api/deals/{workspace.id}/documents/generate', json={'doc_types': ['BUYERS_ORDER']})
        self.document = DealDocument.current_for(workspace.id, 'BUYERS_ORDER')

    def send(self, request_id='req-api'):
        return self.client.post(f'/api/deals/{self.deal.id}/esign/send', json={
            'document_ids': [self.document.id],
            'recipients': RECIPIENTS,
            'request_id': request_id,
        })

    def test_send_is_idempotent(self):
        first = self.send()
        second = self.send()

        assert first.status_code == 200
        assert first.get_json()['envelope']['status'] == 'SENT'
        assert second.get_json()['envelope']['id'] == first.get_json()['envelope']['id']
        assert DocumentEnvelope.query.count() == 1

    def test_send_validates_recipients(self):
        response = self.client.post(f'/api/deals/{self.deal.id}/esign/send', json={
            'document_ids': [self.document.id],
            'recipients': [{'role': 'buyer', 'name': 'Sam Buyer'}],
        })
        assert response.status_code == 400

    def test_void_requires_reason(self):
        envelope_id = self.send().get_json()['envelope']['id']

        response = self.client.post(f'/api/deals/{self.deal.id}/esign/{envelope_id}/void',
                                    json={'reason': 'no'})

        assert response.status_code == 400
        assert db.session.get(DocumentEnvelope, envelope_id).status == 'SENT'

    def test_void(self):
        envelope_id = self.send().get_json()['envelope']['id']

        response = self.client.post(f'/api/deals/{self.deal.id}/esign/{envelope_id}/void',
                                    json={'reason': 'Customer cancelled'})

        assert response.get_json()['envelope']['status'] == 'VOIDED'

    def test_refresh(self):
        envelope_id = self.send().get_json()['envelope']['id']

        response = self.client.post(f'/api/deals/{self.deal.id}/esign/{envelope_id}/refresh')

        assert response.status_code == 200
        assert response.get_json()['envelope']['status'] == 'SENT'

    def test_complete_stub_and_download_signed(self):
        envelope_id = self.send().get_json()['envelope']['id']

        response = self.client.post(f'/api/deals/{self.deal.id}/esign/{envelope_id}/complete-stub')
        assert response.get_json()['envelope']['status'] == 'COMPLETED'

        download = self.client.get(f'/api/deals/{self.deal.id}/esign/{envelope_id}/download')
        assert download.status_code == 200
        assert download.mimetype == 'application/pdf'
        assert download.data.startswith(b'%PDF')

    def test_webhook_needs_no_login(self, app):
        envelope = self.send().get_json()['envelope']
        body = json.dumps({
            'providerEnvelopeId': envelope['provider_envelope_id'],
            'eventId': 'evt-api',
            'eventType': 'envelope.partially_signed',
            'status': 'PARTIALLY_SIGNED',
        })

        anonymous = app.test_client()
        response = anonymous.post('/api/esign/webhooks/stub', data=body, content_type='application/json')

        assert response.status_code == 200
        assert response.get_json()['status'] == 'accepted'
        assert response.get_json()['result'] == 'processed'


class TestWebhookRoute:

    def test_rejects_unverifiable_body(self, client, app):
        response = client.post('/api/esign/webhooks/stub', data=b'not json', content_type='application/json')
        assert response.status_code == 401

    def test_unknown_provider(self, client, app):
        response = client.post('/api/esign/webhooks/nobody', data=b'{}', content_type='application/json')
        assert response.status_code == 404


class TestComplianceRoutes:

    def test_create_template(self, admin_client):
        response = admin_client.post('/api/compliance/templates', json={
            'name': 'Buyers order',
            'doc_type': 'BUYERS_ORDER',
            'jurisdiction': 'TX',
            'deal_type': 'CASH',
            'source_html': '<p>{{ deal.dealNumber }}</p>',
        })

        assert response.status_code == 201
        template = response.get_json()['template']
        assert template['version'] == 1
        assert template['source_html'] == '<p>{{ deal.dealNumber }}</p>'

    def test_schema_errors_are_400(self, admin_client):
        response = admin_client.post('/api/compliance/templates', json={'name': 'No scope'})
        assert response.status_code == 400
        assert response.get_json()['success'] is False

    def test_evaluate_rule_sets(self, admin_client, workspace):
        response = admin_client.post('/api/compliance/rulesets/evaluate', json={'deal_id': workspace.id})

        data = response.get_json()
        assert response.status_code == 200
        assert data['evaluation']['computed_fields']['suggested_tax_rate'] == 0.0625

    def test_evaluate_needs_deal(self, admin_client):
        response = admin_client.post('/api/compliance/rulesets/evaluate', json={})
        assert response.status_code == 400


class TestDocumentPackRoutes:

    def test_create_and_generate_pack(self, admin_client, workspace):
        created = admin_client.post('/api/document-packs', json={
            'name': 'Texas cash retail',
            'state': 'TX',
            'sale_type': 'CASH',
            'items': [{'document_type': 'BUYERS_ORDER'}, {'document_type': 'WE_OWE'}],
        })
        assert created.status_code == 201
        pack_id = created.get_json()['pack']['id']

        response = admin_client.post(f'/api/deals/{workspace.id}/document-packs/{pack_id}/generate')
        assert [row['status'] for row in response.get_json()['checklist']] == ['GENERATED', 'BLOCKED']

        checklist = admin_client.get(f'/api/deals/{workspace.id}/checklist')
        assert len(checklist.get_json()['items']) == 2
