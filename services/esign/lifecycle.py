"""
E-Signature Envelope Lifecycle

    send_for_signature()        -> create (idempotent on request_id)
    process_webhook()           -> dedupe, refresh from provider, transition
    finalize_envelope()         -> store the signed artifact, mark COMPLETED
    void_envelope()             -> cancel remotely and cascade VOIDED
    complete_stub_envelope()    -> operator completion for the stub provider
    refresh_envelope()          -> operator re-check and re-finalize, any provider

Each mutation commits with its audit rows in one transaction. Domain
events go out only after that commit.
"""

import hashlib
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import jsonschema
from sqlalchemy.exc import IntegrityError

from models import (
    transaction,
    AuditEvent,
    DealDocument,
    DealDocumentStatus,
    DocumentEnvelope,
    DocumentEvent,
    EnvelopeStatus,
)
from services.audit_service import record_audit
from services.documents.context import load_deal
from services.errors import AppError, ConfigurationError, ConflictError, InvalidStateError, NotFoundError
from services.event_service import ENVELOPE_STATUS_CHANGED, emit_domain_event
from services.object_storage import get_object_buffer, get_object_download_url, put_object
from .provider import (
    RECIPIENT_ROLES,
    EnvelopeDetails,
    EnvelopeDocument,
    ESignProvider,
    ProviderError,
    RawWebhookRequest,
    Recipient,
    get_provider,
)
from .status import apply_envelope_status, is_terminal

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = 'application/pdf'

VOID_REASON_MIN = 5
VOID_REASON_MAX = 500

SEND_SCHEMA = {
    'type': 'object',
    'required': ['document_ids', 'recipients'],
    'properties': {
        'document_ids': {
            'type': 'array',
            'minItems': 1,
            'items': {'type': 'integer'},
        },
        'recipients': {
            'type': 'array',
            'minItems': 1,
            'maxItems': 10,
            'items': {
                'type': 'object',
                'required': ['role', 'name', 'email'],
                'properties': {
                    'role': {'enum': list(RECIPIENT_ROLES)},
                    'name': {'type': 'string', 'minLength': 1, 'maxLength': 200},
                    'email': {'type': 'string', 'pattern': r'^[^@\s]+@[^@\s]+$'},
                    'order': {'type': 'integer', 'minimum': 1, 'maximum': 10},
                },
            },
        },
        'request_id': {'type': ['string', 'null'], 'maxLength': 100},
    },
}


def _emit_status_changed(envelope: DocumentEnvelope, previous: str) -> None:
    if envelope.status == previous:
        return
    emit_domain_event(envelope.org_id, ENVELOPE_STATUS_CHANGED, 'DocumentEnvelope', envelope.id, {
        'dealId': envelope.deal_id,
        'previousStatus': previous,
        'nextStatus': envelope.status,
    })


def _load_envelope(org_id, deal_id, envelope_id) -> DocumentEnvelope:
    envelope = DocumentEnvelope.query.filter_by(id=envelope_id, org_id=org_id, deal_id=deal_id).first()
    if not envelope:
        raise NotFoundError("Envelope not found.")
    return envelope


def _resolve_existing(existing: DocumentEnvelope, deal_id) -> DocumentEnvelope:
    if existing.deal_id != deal_id:
        raise ConflictError(f"request_id {existing.request_id} was already used for a different deal.")
    logger.info(f"Returning existing envelope {existing.id} for request {existing.request_id}")
    return existing


# =============================================================================
# SEND FOR SIGNATURE
# =============================================================================

def _check_signable(documents: List[DealDocument]) -> None:
    for doc in documents:
        if doc.status != DealDocumentStatus.GENERATED.value:
            raise InvalidStateError(
                f"{doc.doc_type} (document {doc.id}) is {doc.status}; only GENERATED documents can be sent."
            )
        if not doc.file_key:
            raise InvalidStateError(f"{doc.doc_type} (document {doc.id}) has no stored file.")
        meta = doc.metadata_json or {}
        if meta.get('output_content_type') != PDF_CONTENT_TYPE:
            raise InvalidStateError(
                f"{doc.doc_type} (document {doc.id}) was rendered as {meta.get('output_mode', 'non-PDF')} output; "
                f"regenerate it as PDF before sending for signature."
            )


def send_for_signature(org_id, actor_id, deal_id, document_ids: List[int],
                       recipients: List[Dict[str, Any]], request_id: Optional[str] = None,
                       provider: Optional[ESignProvider] = None) -> DocumentEnvelope:
    """
    Send generated documents for signature as one envelope.

    The same request_id within an organization always resolves to the same
    envelope: a retry for the same deal returns it unchanged, a reuse for a
    different deal is a conflict.

    Raises:
        jsonschema.ValidationError for a malformed payload
        NotFoundError, ConflictError, InvalidStateError, ProviderError
    """
    jsonschema.validate({
        'document_ids': document_ids,
        'recipients': recipients,
        'request_id': request_id,
    }, SEND_SCHEMA)

    deal = load_deal(org_id, deal_id)
    request_id = request_id or f"req-{uuid.uuid4()}"

    existing = DocumentEnvelope.query.filter_by(org_id=org_id, request_id=request_id).first()
    if existing:
        return _resolve_existing(existing, deal.id)

    wanted = list(dict.fromkeys(document_ids))
    documents = DealDocument.query.filter(
        DealDocument.id.in_(wanted),
        DealDocument.deal_id == deal.id,
        DealDocument.org_id == org_id,
    ).all()
    if len(documents) != len(wanted):
        raise NotFoundError("One or more documents were not found for this deal.")
    documents.sort(key=lambda d: wanted.index(d.id))
    _check_signable(documents)

    signers = [
        Recipient(role=r['role'], name=r['name'], email=r['email'], order=r.get('order', index + 1))
        for index, r in enumerate(recipients)
    ]
    envelope_documents = [
        EnvelopeDocument(
            document_id=doc.id,
            name=f"{doc.doc_type}.pdf",
            file_key=doc.file_key,
            sha256=doc.file_hash,
            buffer=get_object_buffer(doc.file_key),
        )
        for doc in documents
    ]

    provider = provider or get_provider()
    try:
        created = provider.create_envelope(org_id, deal.id, envelope_documents, signers, request_id)
    except ProviderError as e:
        logger.error(f"Envelope creation failed for deal {deal.id} (request {request_id}): {e.message}")
        raise

    try:
        with transaction() as session:
            envelope = DocumentEnvelope(
                org_id=org_id,
                deal_id=deal.id,
                provider=provider.name,
                provider_envelope_id=created.provider_envelope_id,
                request_id=request_id,
                status=EnvelopeStatus.DRAFT.value,
                recipients_json=[s.to_dict() for s in signers],
                sent_at=datetime.utcnow(),
                created_by_id=actor_id,
                metadata_json={'document_ids': [d.id for d in documents]},
            )
            session.add(envelope)
            session.flush()

            for doc in documents:
                doc.envelope = envelope
            record_audit(session, org_id, 'DocumentEnvelope', envelope.id, AuditEvent.CREATE,
                         after=envelope.to_dict(), actor_id=actor_id)
            apply_envelope_status(session, envelope, created.status, actor_id)
    except IntegrityError:
        # Lost a concurrent insert on the same request_id
        winner = DocumentEnvelope.query.filter_by(org_id=org_id, request_id=request_id).first()
        if winner is None:
            raise
        logger.warning(
            f"Request {request_id} raced another insert; provider envelope "
            f"{created.provider_envelope_id} is orphaned"
        )
        return _resolve_existing(winner, deal.id)

    logger.info(f"Envelope {envelope.id} sent via {provider.name} for deal {deal.id}: {envelope.status}")
    _emit_status_changed(envelope, EnvelopeStatus.DRAFT.value)

    if envelope.status == EnvelopeStatus.COMPLETED.value:
        _finalize_quietly(envelope, provider, actor_id=actor_id)

    return envelope


# =============================================================================
# FINALIZATION
# =============================================================================

def _fallback_buffer(envelope: DocumentEnvelope) -> Optional[bytes]:
    for doc in envelope.documents:
        if doc.file_key:
            return get_object_buffer(doc.file_key)
    return None


def finalize_envelope(envelope: DocumentEnvelope, provider: Optional[ESignProvider] = None,
                      signed_buffer: Optional[bytes] = None, actor_id=None) -> bool:
    """
    Store the signed combined artifact and mark the envelope and its
    documents COMPLETED in one transaction.

    Returns:
        True when the envelope is finalized (now or previously), False when
        no signed artifact could be obtained yet
    """
    if (envelope.metadata_json or {}).get('signed_file_key'):
        return True
    if envelope.status == EnvelopeStatus.VOIDED.value:
        return False

    if signed_buffer is None and envelope.provider_envelope_id:
        provider = provider or get_provider(envelope.provider)
        details = provider.get_envelope(envelope.id, envelope.provider_envelope_id)
        signed_buffer = details.signed_pdf_buffer
    if signed_buffer is None:
        # Providers without a combined artifact (stub) sign the stored file
        signed_buffer = _fallback_buffer(envelope)
    if signed_buffer is None:
        logger.warning(f"No signed artifact available for envelope {envelope.id}; will retry later")
        return False

    file_hash = hashlib.sha256(signed_buffer).hexdigest()
    file_key = put_object(
        f"{envelope.org_id}/deals/{envelope.deal_id}/envelopes/{envelope.id}",
        signed_buffer,
        PDF_CONTENT_TYPE,
        f"envelope-{envelope.id}-signed.pdf"
    )
    finalized_at = datetime.utcnow().isoformat()

    previous = envelope.status
    with transaction() as session:
        apply_envelope_status(
            session, envelope, EnvelopeStatus.COMPLETED.value, actor_id,
            metadata_updates={
                'signed_file_key': file_key,
                'signed_file_hash': file_hash,
                'finalized_at': finalized_at,
            },
            document_updates={
                'signed_file_key': file_key,
                'signed_file_hash': file_hash,
            },
        )

    logger.info(f"Finalized envelope {envelope.id} ({file_hash[:12]})")
    _emit_status_changed(envelope, previous)
    return True


def _finalize_quietly(envelope: DocumentEnvelope, provider: Optional[ESignProvider] = None,
                      signed_buffer: Optional[bytes] = None, actor_id=None) -> bool:
    try:
        return finalize_envelope(envelope, provider, signed_buffer, actor_id)
    except AppError as e:
        logger.error(f"Finalization of envelope {envelope.id} failed, will retry later: {e.message}")
        return False


# =============================================================================
# WEBHOOKS
# =============================================================================

def _event_key(event, raw_request: RawWebhookRequest) -> str:
    return (event.provider_event_id
            or event.idempotency_key
            or hashlib.sha256(raw_request.body or b'').hexdigest())


def _record_event(envelope: DocumentEnvelope, provider: ESignProvider, event, event_id: str,
                  details: Optional[EnvelopeDetails] = None) -> None:
    with transaction() as session:
        session.add(DocumentEvent(
            org_id=envelope.org_id,
            envelope_id=envelope.id,
            provider=provider.name,
            provider_event_id=event_id,
            event_type=event.event_type,
            payload_json=event.payload,
        ))
        session.flush()
        if details is not None:
            apply_envelope_status(session, envelope, details.status)


def needs_finalization(envelope: DocumentEnvelope) -> bool:
    return (envelope.status == EnvelopeStatus.COMPLETED.value
            and not (envelope.metadata_json or {}).get('signed_file_key'))


def process_webhook(provider_name: str, raw_request: RawWebhookRequest) -> Dict[str, Any]:
    """
    Ingest a provider callback.

    Each (provider, event id) is processed at most once. A delivery already
    on record returns before the provider is called; concurrent deliveries
    of the same event are settled by the unique constraint on the event
    row. The provider status is fetched before the transaction opens, so a
    failed refresh leaves no event row and a redelivery is processed
    normally.

    A COMPLETED envelope whose signed artifact was never stored is
    finalized again by any later event.

    Returns:
        {'result': processed | duplicate_event | envelope_not_found |
         ignored_terminal | finalize_retried, ...}
    """
    try:
        provider = get_provider(provider_name)
    except ConfigurationError:
        raise NotFoundError(f"Unknown e-sign provider: {provider_name}")

    verification = provider.verify_webhook(raw_request)
    if not verification.ok:
        logger.warning(f"Rejected {provider.name} webhook: {verification.error}")
        raise AppError("Webhook verification failed.", 401)

    event = verification.event
    envelope = DocumentEnvelope.query.filter_by(
        provider=provider.name,
        provider_envelope_id=event.provider_envelope_id
    ).first()
    if not envelope:
        logger.warning(f"{provider.name} webhook for unknown envelope {event.provider_envelope_id}")
        return {'result': 'envelope_not_found'}

    event_id = _event_key(event, raw_request)
    duplicate = {'result': 'duplicate_event', 'envelope_id': envelope.id}
    if DocumentEvent.query.filter_by(provider=provider.name, provider_event_id=event_id).first():
        logger.info(f"Duplicate {provider.name} event {event_id} for envelope {envelope.id}")
        return duplicate

    previous = envelope.status
    details = None
    if not is_terminal(previous):
        provider.accept_event(event)
        try:
            details = provider.get_envelope(envelope.id, envelope.provider_envelope_id)
        except ProviderError as e:
            logger.error(f"Status refresh failed for envelope {envelope.id}: {e.message}")
            raise

    try:
        _record_event(envelope, provider, event, event_id, details)
    except IntegrityError:
        logger.warning(f"Duplicate {provider.name} event {event_id} for envelope {envelope.id}")
        return duplicate

    if details is None:
        if needs_finalization(envelope):
            finalized = _finalize_quietly(envelope, provider)
            logger.info(f"Retried finalization of envelope {envelope.id} on {event.event_type}: {finalized}")
            return {'result': 'finalize_retried', 'envelope_id': envelope.id,
                    'status': envelope.status, 'finalized': finalized}
        logger.info(f"Ignored {event.event_type} for {previous} envelope {envelope.id}")
        return {'result': 'ignored_terminal', 'envelope_id': envelope.id, 'status': previous}

    logger.info(f"Processed {provider.name} {event.event_type} for envelope {envelope.id}: "
                f"{previous} -> {envelope.status}")
    _emit_status_changed(envelope, previous)

    if envelope.status == EnvelopeStatus.COMPLETED.value:
        _finalize_quietly(envelope, provider, details.signed_pdf_buffer)

    return {
        'result': 'processed',
        'envelope_id': envelope.id,
        'previous_status': previous,
        'next_status': envelope.status,
    }


# =============================================================================
# VOID AND OPERATOR ACTIONS
# =============================================================================

def void_envelope(org_id, actor_id, deal_id, envelope_id, reason: str) -> DocumentEnvelope:
    """
    Void an envelope that is not COMPLETED or VOIDED and cascade VOIDED to
    its documents.
    """
    reason = (reason or '').strip()
    if not VOID_REASON_MIN <= len(reason) <= VOID_REASON_MAX:
        raise AppError(f"A void reason of {VOID_REASON_MIN} to {VOID_REASON_MAX} characters is required.")

    envelope = _load_envelope(org_id, deal_id, envelope_id)
    if is_terminal(envelope.status):
        raise InvalidStateError(f"Cannot void an envelope that is {envelope.status}.")

    if envelope.provider_envelope_id:
        get_provider(envelope.provider).void_envelope(envelope.id, envelope.provider_envelope_id, reason)

    previous = envelope.status
    with transaction() as session:
        apply_envelope_status(
            session, envelope, EnvelopeStatus.VOIDED.value, actor_id,
            metadata_updates={
                'void_reason': reason,
                'voided_at': datetime.utcnow().isoformat(),
            },
        )

    logger.info(f"Voided envelope {envelope.id}: {reason}")
    _emit_status_changed(envelope, previous)
    return envelope


def complete_stub_envelope(org_id, actor_id, deal_id, envelope_id) -> DocumentEnvelope:
    """Mark a stub envelope signed and finalize it."""
    envelope = _load_envelope(org_id, deal_id, envelope_id)
    if envelope.provider != 'stub':
        raise AppError("Only stub envelopes can be completed manually.")
    if envelope.status == EnvelopeStatus.VOIDED.value:
        raise InvalidStateError("Cannot complete a VOIDED envelope.")

    provider = get_provider('stub')
    provider.simulate_status(envelope.provider_envelope_id, EnvelopeStatus.COMPLETED.value)

    if not finalize_envelope(envelope, provider, actor_id=actor_id):
        raise AppError("No document is available to finalize this envelope.")
    return envelope


def refresh_envelope(org_id, actor_id, deal_id, envelope_id) -> DocumentEnvelope:
    """
    Operator re-check for any provider: pull the current status when the
    envelope is still open, then finalize a COMPLETED envelope that has no
    stored signed artifact. Storage and provider errors propagate.
    """
    envelope = _load_envelope(org_id, deal_id, envelope_id)
    provider = get_provider(envelope.provider)
    previous = envelope.status

    details = None
    if not is_terminal(previous) and envelope.provider_envelope_id:
        details = provider.get_envelope(envelope.id, envelope.provider_envelope_id)
        with transaction() as session:
            apply_envelope_status(session, envelope, details.status, actor_id)
        logger.info(f"Refreshed envelope {envelope.id}: {previous} -> {envelope.status}")
        _emit_status_changed(envelope, previous)

    if needs_finalization(envelope):
        signed_buffer = details.signed_pdf_buffer if details else None
        if not finalize_envelope(envelope, provider, signed_buffer, actor_id=actor_id):
            raise AppError("The signed document is not available from the provider yet.", 409)
    return envelope


def get_signed_envelope_download(org_id, actor_id, deal_id, envelope_id) -> Dict[str, Any]:
    """
    Download of the finalized combined artifact.

    Returns:
        {'url': signed_url} when storage can sign URLs, otherwise
        {'buffer', 'content_type', 'file_name'}
    """
    envelope = _load_envelope(org_id, deal_id, envelope_id)
    file_key = (envelope.metadata_json or {}).get('signed_file_key')
    if not file_key:
        raise NotFoundError("Signed document is not available yet.")

    file_name = f"deal-{deal_id}-envelope-{envelope.id}-signed.pdf"
    url = get_object_download_url(file_key)
    result = {'url': url} if url else {
        'buffer': get_object_buffer(file_key),
        'content_type': PDF_CONTENT_TYPE,
        'file_name': file_name,
    }

    with transaction() as session:
        record_audit(session, org_id, 'DocumentEnvelope', envelope.id, AuditEvent.DOWNLOAD,
                     after={'file_key': file_key}, actor_id=actor_id)

    return result
