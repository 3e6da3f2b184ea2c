"""
DocuSeal E-Sign Provider

Sends generated PDFs to DocuSeal as one submission per envelope
(POST /submissions/pdf). Signature positions come from DocuSeal text
tags rendered into the PDF in place of the SIGN_* template tokens.

Webhooks are authenticated with the shared secret configured on the
DocuSeal webhook (sent as a custom header).
"""

import base64
import hmac
import json
import logging
from typing import Any, Dict, List

import requests
from flask import current_app

from models import EnvelopeStatus
from services.errors import ConfigurationError
from .provider import (
    CreatedEnvelope,
    EnvelopeDetails,
    EnvelopeDocument,
    ESignProvider,
    ProviderError,
    ProviderEvent,
    RawWebhookRequest,
    Recipient,
    WebhookVerification,
    register_provider,
)

logger = logging.getLogger(__name__)

# Longer timeout for PDF upload
UPLOAD_TIMEOUT = 60

ROLE_NAMES = {
    'buyer': 'Buyer',
    'co_buyer': 'Co-Buyer',
    'seller': 'Seller',
    'dealer': 'Dealer',
}

ANCHOR_ROLES = {
    'SIGN_BUYER_1': 'Buyer',
    'SIGN_CO_BUYER_1': 'Co-Buyer',
    'SIGN_DEALER_1': 'Dealer',
}


def _error_details(e: requests.exceptions.RequestException):
    status_code = None
    error_body = None
    if getattr(e, 'response', None) is not None:
        status_code = e.response.status_code
        error_body = e.response.text
    return status_code, error_body


class DocuSealProvider(ESignProvider):
    name = 'docuseal'

    def __init__(self):
        config = current_app.config
        self.api_url = config.get('DOCUSEAL_API_URL', 'https://api.docuseal.com').rstrip('/')
        self.api_key = config.get('DOCUSEAL_API_KEY')
        self.webhook_secret = config.get('DOCUSEAL_WEBHOOK_SECRET')
        self.webhook_header = config.get('DOCUSEAL_WEBHOOK_HEADER', 'X-Docuseal-Secret')
        self.timeout = config.get('DOCUSEAL_TIMEOUT', 30)

    def _get_headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ConfigurationError("DOCUSEAL_API_KEY is required when ESIGN_PROVIDER=docuseal.")
        return {
            'X-Auth-Token': self.api_key,
            'Content-Type': 'application/json'
        }

    def _request(self, method: str, path: str, action: str, **kwargs) -> requests.Response:
        try:
            response = requests.request(
                method,
                f"{self.api_url}{path}",
                headers=self._get_headers(),
                timeout=kwargs.pop('timeout', self.timeout),
                **kwargs
            )
            response.raise_for_status()
            return response
        except requests.exceptions.RequestException as e:
            status_code, error_body = _error_details(e)
            logger.error(f"DocuSeal {action} failed: {e}")
            if error_body:
                logger.error(f"Response body: {error_body}")
            raise ProviderError(
                f"DocuSeal {action} failed.",
                provider_status=status_code,
                response_body=error_body
            )

    # =========================================================================
    # ENVELOPES
    # =========================================================================

    def signature_anchors(self) -> Dict[str, str]:
        return {
            anchor: f"{{{{{role} Signature;role={role};type=signature}}}}"
            for anchor, role in ANCHOR_ROLES.items()
        }

    def create_envelope(self, org_id, deal_id, documents: List[EnvelopeDocument],
                        recipients: List[Recipient], request_id: str) -> CreatedEnvelope:
        ordered = sorted(recipients, key=lambda r: r.order)
        payload = {
            'name': f"Deal {deal_id} documents",
            'send_email': True,
            'order': 'preserved',
            'external_id': request_id,
            'documents': [{
                'name': doc.name,
                'file': base64.b64encode(doc.buffer).decode('ascii'),
            } for doc in documents],
            'submitters': [{
                'role': ROLE_NAMES.get(r.role, r.role),
                'name': r.name,
                'email': r.email,
            } for r in ordered],
        }

        result = self._request('POST', '/submissions/pdf', 'submission create',
                               json=payload, timeout=UPLOAD_TIMEOUT).json()

        # DocuSeal answers with either the submission or its submitter list
        if isinstance(result, list):
            submission_id = result[0].get('submission_id') if result else None
        else:
            submission_id = result.get('id') or result.get('submission_id')
        if not submission_id:
            raise ProviderError("DocuSeal did not return a submission id.")

        logger.info(f"Created DocuSeal submission {submission_id} for deal {deal_id}")
        return CreatedEnvelope(provider_envelope_id=str(submission_id), status=EnvelopeStatus.SENT.value)

    def get_envelope(self, envelope_id, provider_envelope_id: str) -> EnvelopeDetails:
        submission = self._request('GET', f"/submissions/{provider_envelope_id}", 'submission fetch').json()
        status = self.map_submission_status(submission)

        signed_pdf = None
        if status == EnvelopeStatus.COMPLETED.value:
            signed_pdf = self._download_combined_pdf(provider_envelope_id, submission)

        return EnvelopeDetails(status=status, signed_pdf_buffer=signed_pdf)

    def void_envelope(self, envelope_id, provider_envelope_id: str, reason: str) -> None:
        # DocuSeal archives the submission; the reason stays on our side
        self._request('DELETE', f"/submissions/{provider_envelope_id}", 'submission archive')
        logger.info(f"Archived DocuSeal submission {provider_envelope_id}")

    @staticmethod
    def map_submission_status(submission: Dict[str, Any]) -> str:
        status = (submission.get('status') or '').lower()
        submitters = submission.get('submitters') or []

        if status == 'completed':
            return EnvelopeStatus.COMPLETED.value
        if status == 'declined' or any(s.get('status') == 'declined' for s in submitters):
            return EnvelopeStatus.DECLINED.value
        if status == 'expired':
            return EnvelopeStatus.VOIDED.value
        if any(s.get('status') == 'completed' for s in submitters):
            return EnvelopeStatus.PARTIALLY_SIGNED.value
        return EnvelopeStatus.SENT.value

    def _download_combined_pdf(self, provider_envelope_id: str, submission: Dict[str, Any]):
        url = submission.get('combined_document_url')
        if not url:
            merged = self._request(
                'GET', f"/submissions/{provider_envelope_id}/documents", 'document fetch',
                params={'merge': 'true'}
            ).json()
            documents = merged.get('documents', []) if isinstance(merged, dict) else merged
            url = documents[0].get('url') if documents else None

        if not url:
            logger.warning(f"DocuSeal submission {provider_envelope_id} has no signed document yet")
            return None

        try:
            response = requests.get(url, timeout=UPLOAD_TIMEOUT)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            status_code, error_body = _error_details(e)
            logger.error(f"Signed PDF download failed for submission {provider_envelope_id}: {e}")
            raise ProviderError("Signed PDF download failed.", provider_status=status_code,
                                response_body=error_body)
        return response.content

    # =========================================================================
    # WEBHOOKS
    # =========================================================================

    def verify_webhook(self, request: RawWebhookRequest) -> WebhookVerification:
        if not self.webhook_secret:
            logger.error("DOCUSEAL_WEBHOOK_SECRET is not configured; rejecting webhook")
            return WebhookVerification(ok=False, error='not_configured')

        supplied = request.header(self.webhook_header) or ''
        if not hmac.compare_digest(supplied.encode('utf-8'), self.webhook_secret.encode('utf-8')):
            return WebhookVerification(ok=False, error='invalid_secret')

        try:
            payload = json.loads(request.body or b'null')
        except ValueError:
            return WebhookVerification(ok=False, error='invalid_json')
        if not isinstance(payload, dict):
            return WebhookVerification(ok=False, error='invalid_body')

        event_type = payload.get('event_type')
        data = payload.get('data') or {}
        if event_type and event_type.startswith('submission.'):
            submission_id = data.get('id')
        else:
            submission_id = data.get('submission_id')

        if not event_type or not submission_id:
            return WebhookVerification(ok=False, error='missing_fields')

        timestamp = payload.get('timestamp') or ''
        return WebhookVerification(ok=True, event=ProviderEvent(
            provider_envelope_id=str(submission_id),
            event_type=event_type,
            provider_event_id=f"{event_type}:{submission_id}:{data.get('id')}:{timestamp}",
            payload=payload,
        ))


register_provider('docuseal', DocuSealProvider)
