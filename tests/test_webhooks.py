"""
Webhook ingestion tests: deduplication, ordering, terminal handling and
provider verification.
"""

import json
import sys
from pathlib import Path

import pytest
import requests

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from models import AuditEvent, DealDocument, DocumentEvent
from services.documents import generate_all_required_documents
from services.errors import AppError, NotFoundError
from services.object_storage import StorageError
from services.esign import (
    DocuSealProvider,
    EnvelopeDocument,
    ProviderError,
    RawWebhookRequest,
    Recipient,
    StubESignProvider,
    process_webhook,
    refresh_envelope,
    send_for_signature,
    void_envelope,
)

RECIPIENTS = [{'role': 'buyer', 'name': 'Sam Buyer', 'email': 'sam@example.com'}]


def stub_request(provider_envelope_id, status, event_id=None, event_type=None):
    body = {
        'providerEnvelopeId': provider_envelope_id,
        'eventType': event_type or f"envelope.{status.lower()}",
        'status': status,
    }
    if event_id:
        body['eventId'] = event_id
    return RawWebhookRequest(headers={'Content-Type': 'application/json'}, body=json.dumps(body).encode())


def envelope_status_changes(envelope_id):
    return [e for e in AuditEvent.for_entity('DocumentEnvelope', envelope_id) if e.action == 'STATUS_CHANGE']


@pytest.fixture
def envelope(org, user, workspace, pdf_renderer):
    generate_all_required_documents(org.id, user.id, workspace.id, doc_types=['BUYERS_ORDER'])
    document = DealDocument.current_for(workspace.id, 'BUYERS_ORDER')
    return send_for_signature(org.id, user.id, workspace.id, [document.id], RECIPIENTS, request_id='req-hook')


class TestStubWebhooks:

    def test_status_update_is_applied(self, envelope, events):
        result = process_webhook('stub', stub_request(envelope.provider_envelope_id, 'PARTIALLY_SIGNED', 'evt-1'))

        assert result == {
            'result': 'processed',
            'envelope_id': envelope.id,
            'previous_status': 'SENT',
            'next_status': 'PARTIALLY_SIGNED',
        }
        assert envelope.status == 'PARTIALLY_SIGNED'
        assert envelope.documents[0].status == 'PARTIALLY_SIGNED'
        assert events[-1]['payload']['nextStatus'] == 'PARTIALLY_SIGNED'

    def test_duplicate_delivery_is_processed_once(self, envelope, events):
        before = len(envelope_status_changes(envelope.id))
        request = stub_request(envelope.provider_envelope_id, 'PARTIALLY_SIGNED', 'evt-dup')

        first = process_webhook('stub', request)
        second = process_webhook('stub', request)

        assert first['result'] == 'processed'
        assert second == {'result': 'duplicate_event', 'envelope_id': envelope.id}
        assert DocumentEvent.query.filter_by(provider='stub', provider_event_id='evt-dup').count() == 1
        assert len(envelope_status_changes(envelope.id)) == before + 1
        assert len([e for e in events if e['eventType'] == 'envelope.statusChanged']) == 1

    def test_body_hash_deduplicates_without_event_id(self, envelope):
        request = stub_request(envelope.provider_envelope_id, 'PARTIALLY_SIGNED')

        assert process_webhook('stub', request)['result'] == 'processed'
        assert process_webhook('stub', request)['result'] == 'duplicate_event'

    def test_out_of_order_event_does_not_regress(self, envelope, events):
        process_webhook('stub', stub_request(envelope.provider_envelope_id, 'PARTIALLY_SIGNED', 'evt-2'))
        emitted = len(events)

        result = process_webhook('stub', stub_request(envelope.provider_envelope_id, 'SENT', 'evt-1'))

        assert result['next_status'] == 'PARTIALLY_SIGNED'
        assert envelope.status == 'PARTIALLY_SIGNED'
        assert len(events) == emitted

    def test_completion_finalizes(self, envelope):
        result = process_webhook('stub', stub_request(envelope.provider_envelope_id, 'COMPLETED', 'evt-done'))

        assert result['next_status'] == 'COMPLETED'
        assert envelope.metadata_json['signed_file_key'].startswith('local:')
        assert envelope.documents[0].status == 'COMPLETED'

    def test_events_after_terminal_are_ignored(self, org, user, workspace, envelope):
        void_envelope(org.id, user.id, workspace.id, envelope.id, 'Customer cancelled')

        result = process_webhook('stub', stub_request(envelope.provider_envelope_id, 'COMPLETED', 'evt-late'))

        assert result == {'result': 'ignored_terminal', 'envelope_id': envelope.id, 'status': 'VOIDED'}
        assert envelope.status == 'VOIDED'
        stub = StubESignProvider()
        assert stub.get_envelope(envelope.id, envelope.provider_envelope_id).status == 'VOIDED'
        # Recorded so a redelivery is a duplicate
        assert DocumentEvent.query.filter_by(provider_event_id='evt-late').count() == 1

    def test_unknown_envelope(self, app):
        result = process_webhook('stub', stub_request('stub-missing', 'COMPLETED', 'evt-x'))
        assert result == {'result': 'envelope_not_found'}

    def test_malformed_body_is_rejected(self, app):
        with pytest.raises(AppError) as exc:
            process_webhook('stub', RawWebhookRequest(headers={}, body=b'not json'))
        assert exc.value.status_code == 401

    def test_unknown_provider(self, app):
        with pytest.raises(NotFoundError):
            process_webhook('adobe-sign', stub_request('stub-1', 'SENT', 'evt-1'))

    def test_refresh_failure_rolls_back_event(self, envelope, monkeypatch):
        def failing_get_envelope(self, envelope_id, provider_envelope_id):
            raise ProviderError("Stub outage", provider_status=503)

        request = stub_request(envelope.provider_envelope_id, 'PARTIALLY_SIGNED', 'evt-retry')
        with monkeypatch.context() as patch:
            patch.setattr(StubESignProvider, 'get_envelope', failing_get_envelope)
            with pytest.raises(ProviderError):
                process_webhook('stub', request)

        assert DocumentEvent.query.filter_by(provider_event_id='evt-retry').count() == 0
        assert envelope.status == 'SENT'

        # The provider redelivers once we answer with an error
        assert process_webhook('stub', request)['result'] == 'processed'

    def test_redelivery_does_not_call_provider(self, envelope, monkeypatch):
        request = stub_request(envelope.provider_envelope_id, 'PARTIALLY_SIGNED', 'evt-once')
        process_webhook('stub', request)

        calls = []

        def counting_get_envelope(self, envelope_id, provider_envelope_id):
            calls.append(provider_envelope_id)

        monkeypatch.setattr(StubESignProvider, 'get_envelope', counting_get_envelope)

        assert process_webhook('stub', request)['result'] == 'duplicate_event'
        assert calls == []

    def test_duplicate_leaves_stub_state_alone(self, envelope):
        process_webhook('stub', stub_request(envelope.provider_envelope_id, 'PARTIALLY_SIGNED', 'evt-7'))

        result = process_webhook('stub', stub_request(envelope.provider_envelope_id, 'COMPLETED', 'evt-7'))

        assert result['result'] == 'duplicate_event'
        stub = StubESignProvider()
        assert stub.get_envelope(envelope.id, envelope.provider_envelope_id).status == 'PARTIALLY_SIGNED'
        assert envelope.status == 'PARTIALLY_SIGNED'


class TestFinalizationRetry:

    @pytest.fixture(autouse=True)
    def setup(self, org, user, workspace, envelope, monkeypatch):
        self.org = org
        self.user = user
        self.deal = workspace
        self.envelope = envelope

        def failing_put_object(*args, **kwargs):
            raise StorageError("Bucket unavailable")

        with monkeypatch.context() as patch:
            patch.setattr('services.esign.lifecycle.put_object', failing_put_object)
            result = process_webhook('stub', stub_request(envelope.provider_envelope_id, 'COMPLETED', 'evt-a'))

        assert result['next_status'] == 'COMPLETED'
        assert 'signed_file_key' not in envelope.metadata_json

    def test_later_event_finalizes(self):
        result = process_webhook('stub', stub_request(self.envelope.provider_envelope_id, 'COMPLETED', 'evt-b'))

        assert result == {
            'result': 'finalize_retried',
            'envelope_id': self.envelope.id,
            'status': 'COMPLETED',
            'finalized': True,
        }
        assert self.envelope.metadata_json['signed_file_key'].startswith('local:')
        assert DocumentEvent.query.filter_by(provider_event_id='evt-b').count() == 1

    def test_finalized_envelope_ignores_later_events(self):
        process_webhook('stub', stub_request(self.envelope.provider_envelope_id, 'COMPLETED', 'evt-b'))
        signed_key = self.envelope.metadata_json['signed_file_key']

        result = process_webhook('stub', stub_request(self.envelope.provider_envelope_id, 'COMPLETED', 'evt-c'))

        assert result['result'] == 'ignored_terminal'
        assert self.envelope.metadata_json['signed_file_key'] == signed_key

    def test_operator_refresh_finalizes(self):
        envelope = refresh_envelope(self.org.id, self.user.id, self.deal.id, self.envelope.id)

        assert envelope.status == 'COMPLETED'
        assert envelope.metadata_json['signed_file_key'].startswith('local:')


class TestRefreshEnvelope:

    def test_pulls_status_for_open_envelope(self, org, user, workspace, envelope, events):
        StubESignProvider().simulate_status(envelope.provider_envelope_id, 'PARTIALLY_SIGNED')

        refreshed = refresh_envelope(org.id, user.id, workspace.id, envelope.id)

        assert refreshed.status == 'PARTIALLY_SIGNED'
        assert events[-1]['payload']['nextStatus'] == 'PARTIALLY_SIGNED'

    def test_voided_envelope_is_left_alone(self, org, user, workspace, envelope):
        void_envelope(org.id, user.id, workspace.id, envelope.id, 'Customer cancelled')

        refreshed = refresh_envelope(org.id, user.id, workspace.id, envelope.id)

        assert refreshed.status == 'VOIDED'
        assert 'signed_file_key' not in refreshed.metadata_json

    def test_unknown_envelope(self, org, user, workspace):
        with pytest.raises(NotFoundError):
            refresh_envelope(org.id, user.id, workspace.id, 999)


class TestDocuSealProvider:

    @pytest.fixture(autouse=True)
    def setup(self, app):
        app.config['DOCUSEAL_API_KEY'] = 'test-key'
        app.config['DOCUSEAL_WEBHOOK_SECRET'] = 'shh'
        self.provider = DocuSealProvider()

    def webhook(self, payload, secret='shh'):
        return RawWebhookRequest(headers={'X-Docuseal-Secret': secret}, body=json.dumps(payload).encode())

    def test_rejects_wrong_secret(self):
        verification = self.provider.verify_webhook(self.webhook({'event_type': 'form.completed'}, secret='nope'))
        assert not verification.ok
        assert verification.error == 'invalid_secret'

    def test_submission_event_uses_submission_id(self):
        verification = self.provider.verify_webhook(self.webhook({
            'event_type': 'submission.completed',
            'timestamp': '2026-01-15T10:00:00Z',
            'data': {'id': 501},
        }))
        assert verification.ok
        assert verification.event.provider_envelope_id == '501'
        assert verification.event.provider_event_id == 'submission.completed:501:501:2026-01-15T10:00:00Z'

    def test_form_event_uses_submitter_submission(self):
        verification = self.provider.verify_webhook(self.webhook({
            'event_type': 'form.completed',
            'timestamp': '2026-01-15T10:00:00Z',
            'data': {'id': 77, 'submission_id': 501},
        }))
        assert verification.ok
        assert verification.event.provider_envelope_id == '501'

    def test_missing_submission_is_rejected(self):
        verification = self.provider.verify_webhook(self.webhook({'event_type': 'form.viewed', 'data': {}}))
        assert not verification.ok

    def test_submission_status_mapping(self):
        status = DocuSealProvider.map_submission_status
        assert status({'status': 'completed'}) == 'COMPLETED'
        assert status({'status': 'pending', 'submitters': [{'status': 'declined'}]}) == 'DECLINED'
        assert status({'status': 'expired'}) == 'VOIDED'
        assert status({'status': 'pending', 'submitters': [{'status': 'completed'}, {'status': 'sent'}]}) \
            == 'PARTIALLY_SIGNED'
        assert status({'status': 'pending', 'submitters': [{'status': 'opened'}]}) == 'SENT'

    def test_anchors_use_text_tags(self):
        anchors = self.provider.signature_anchors()
        assert anchors['SIGN_BUYER_1'] == '{{Buyer Signature;role=Buyer;type=signature}}'

    def test_create_envelope_posts_submission(self, monkeypatch):
        calls = []

        def fake_request(method, url, **kwargs):
            calls.append((method, url, kwargs))
            return FakeResponse([{'id': 31, 'submission_id': 900, 'role': 'Buyer'}])

        monkeypatch.setattr('services.esign.docuseal_provider.requests.request', fake_request)
        documents = [EnvelopeDocument(document_id=1, name='BUYERS_ORDER.pdf', file_key='local:x',
                                      sha256='0' * 64, buffer=b'%PDF-1.4')]
        recipients = [
            Recipient(role='dealer', name='Dana Reyes', email='finance@lonestar.test', order=2),
            Recipient(role='buyer', name='Sam Buyer', email='sam@example.com', order=1),
        ]

        created = self.provider.create_envelope(1, 17, documents, recipients, 'req-ds')

        assert created.provider_envelope_id == '900'
        assert created.status == 'SENT'
        method, url, kwargs = calls[0]
        assert (method, url) == ('POST', 'https://api.docuseal.com/submissions/pdf')
        assert kwargs['headers']['X-Auth-Token'] == 'test-key'
        assert [s['role'] for s in kwargs['json']['submitters']] == ['Buyer', 'Dealer']
        assert kwargs['json']['external_id'] == 'req-ds'

    def test_api_failure_raises_provider_error(self, monkeypatch):
        def failing_request(method, url, **kwargs):
            raise requests.exceptions.ConnectionError("connection refused")

        monkeypatch.setattr('services.esign.docuseal_provider.requests.request', failing_request)

        with pytest.raises(ProviderError) as exc:
            self.provider.void_envelope(1, '900', 'Customer cancelled')
        assert exc.value.status_code == 502


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code
        self.content = json.dumps(payload).encode()
        self.text = self.content.decode()

    def json(self):
        return self.payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error", response=self)
