"""
Stub E-Sign Provider

In-process stand-in for a signing service, for development and tests.
Envelopes live in a module-level store for the life of the process.

With ESIGN_STUB_AUTO_COMPLETE (default on) envelopes come back COMPLETED
immediately; otherwise they stay SENT until a webhook reports otherwise.

Webhook body (JSON):
    {"providerEnvelopeId": "stub-...", "eventType": "envelope.completed",
     "status": "COMPLETED", "eventId": "evt-1"}
"""

import hashlib
import json
import logging
import uuid
from typing import Dict, List

from flask import current_app

from models import EnvelopeStatus
from .provider import (
    CreatedEnvelope,
    EnvelopeDetails,
    EnvelopeDocument,
    ESignProvider,
    ProviderEvent,
    RawWebhookRequest,
    Recipient,
    WebhookVerification,
    register_provider,
)

logger = logging.getLogger(__name__)

STATUSES = {s.value for s in EnvelopeStatus}

# provider_envelope_id -> {'status', 'recipients', 'deal_id'}
_stub_store: Dict[str, Dict] = {}


def reset_stub_store() -> None:
    """Forget every stub envelope. Mainly for testing."""
    _stub_store.clear()


class StubESignProvider(ESignProvider):
    name = 'stub'

    def __init__(self, auto_complete: bool = None):
        if auto_complete is None:
            auto_complete = current_app.config.get('ESIGN_STUB_AUTO_COMPLETE', True)
        self.auto_complete = auto_complete

    def create_envelope(self, org_id, deal_id, documents: List[EnvelopeDocument],
                        recipients: List[Recipient], request_id: str) -> CreatedEnvelope:
        provider_envelope_id = f"stub-{deal_id}-{uuid.uuid4().hex}"
        status = EnvelopeStatus.COMPLETED.value if self.auto_complete else EnvelopeStatus.SENT.value
        _stub_store[provider_envelope_id] = {
            'status': status,
            'recipients': [r.to_dict() for r in recipients],
            'deal_id': deal_id,
        }
        logger.info(f"[STUB] Created envelope {provider_envelope_id} ({len(documents)} docs) -> {status}")
        return CreatedEnvelope(provider_envelope_id=provider_envelope_id, status=status)

    def get_envelope(self, envelope_id, provider_envelope_id: str) -> EnvelopeDetails:
        state = _stub_store.get(provider_envelope_id)
        # No signed artifact: finalization falls back to the stored document
        return EnvelopeDetails(status=state['status'] if state else EnvelopeStatus.SENT.value)

    def void_envelope(self, envelope_id, provider_envelope_id: str, reason: str) -> None:
        state = _stub_store.get(provider_envelope_id)
        if state:
            state['status'] = EnvelopeStatus.VOIDED.value
        logger.info(f"[STUB] Voided envelope {provider_envelope_id}: {reason}")

    def simulate_status(self, provider_envelope_id: str, status: str) -> None:
        state = _stub_store.setdefault(provider_envelope_id, {'recipients': [], 'deal_id': None})
        state['status'] = status

    def accept_event(self, event: ProviderEvent) -> None:
        # The stub has no remote side; a new callback is what changes its state
        if event.status:
            self.simulate_status(event.provider_envelope_id, event.status)

    def verify_webhook(self, request: RawWebhookRequest) -> WebhookVerification:
        try:
            body = json.loads(request.body or b'null')
        except ValueError:
            return WebhookVerification(ok=False, error='invalid_json')

        if not isinstance(body, dict):
            return WebhookVerification(ok=False, error='invalid_body')

        provider_envelope_id = body.get('providerEnvelopeId')
        event_type = body.get('eventType')
        status = body.get('status')
        if not provider_envelope_id or not event_type or status not in STATUSES:
            return WebhookVerification(ok=False, error='missing_fields')

        event_id = body.get('eventId')
        return WebhookVerification(ok=True, event=ProviderEvent(
            provider_envelope_id=provider_envelope_id,
            event_type=event_type,
            provider_event_id=event_id,
            idempotency_key=f"stub:{event_id}" if event_id else f"stub:{hashlib.sha256(request.body).hexdigest()}",
            status=status,
            payload=body,
        ))


register_provider('stub', StubESignProvider)
