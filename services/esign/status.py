"""
Envelope Status Transitions

The single place where an envelope status change is applied. Envelope
creation, webhook processing, finalization and void all go through
apply_envelope_status(), so the envelope -> document status mapping has
exactly one definition.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from models import AuditEvent, DealDocumentStatus, DocumentEnvelope, EnvelopeStatus
from services.audit_service import record_audit

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({EnvelopeStatus.COMPLETED.value, EnvelopeStatus.VOIDED.value})

# Reachable from any non-terminal status regardless of rank
EXIT_STATUSES = frozenset({
    EnvelopeStatus.VOIDED.value,
    EnvelopeStatus.DECLINED.value,
    EnvelopeStatus.ERROR.value,
})

STATUS_RANK = {
    EnvelopeStatus.DRAFT.value: 0,
    EnvelopeStatus.SENT.value: 1,
    EnvelopeStatus.PARTIALLY_SIGNED.value: 2,
    EnvelopeStatus.COMPLETED.value: 3,
}

DOCUMENT_STATUS_FOR_ENVELOPE = {
    EnvelopeStatus.COMPLETED.value: DealDocumentStatus.COMPLETED.value,
    EnvelopeStatus.PARTIALLY_SIGNED.value: DealDocumentStatus.PARTIALLY_SIGNED.value,
    EnvelopeStatus.VOIDED.value: DealDocumentStatus.VOIDED.value,
    EnvelopeStatus.DECLINED.value: DealDocumentStatus.VOIDED.value,
    EnvelopeStatus.ERROR.value: DealDocumentStatus.FAILED.value,
}

FROZEN_DOCUMENT_STATUSES = frozenset({
    DealDocumentStatus.COMPLETED.value,
    DealDocumentStatus.VOIDED.value,
})


def document_status_for(envelope_status: str) -> str:
    return DOCUMENT_STATUS_FOR_ENVELOPE.get(envelope_status, DealDocumentStatus.SENT_FOR_SIGNATURE.value)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def resolve_transition(current: str, proposed: str) -> str:
    """
    The status an envelope ends up in when `proposed` is reported while it
    is in `current`. Terminal statuses never change and a lower-ranked
    status never overwrites a higher one.
    """
    if current == proposed or is_terminal(current):
        return current
    if proposed in EXIT_STATUSES:
        return proposed
    if current in EXIT_STATUSES:
        # DECLINED/ERROR only leave through a terminal status
        return proposed if proposed in TERMINAL_STATUSES else current
    if STATUS_RANK.get(proposed, -1) > STATUS_RANK.get(current, -1):
        return proposed
    return current


def apply_envelope_status(session, envelope: DocumentEnvelope, next_status: str, actor_id=None,
                          metadata_updates: Optional[Dict[str, Any]] = None,
                          document_updates: Optional[Dict[str, Any]] = None) -> str:
    """
    Move an envelope and its documents to a new status inside the caller's
    transaction and record the audit rows.

    Args:
        session: Session of the enclosing transaction
        envelope: Envelope row, documents attached
        next_status: Proposed envelope status
        actor_id: Acting user, None for provider-driven changes
        metadata_updates: Keys merged into the envelope metadata
        document_updates: Keys merged into each document's metadata

    Returns:
        The envelope status after the transition
    """
    previous = envelope.status
    resolved = resolve_transition(previous, next_status)
    before = envelope.to_dict()

    if resolved != previous:
        envelope.status = resolved
        if resolved == EnvelopeStatus.COMPLETED.value:
            envelope.completed_at = datetime.utcnow()
    if metadata_updates:
        envelope.metadata_json = {**(envelope.metadata_json or {}), **metadata_updates}

    document_status = document_status_for(resolved)
    for document in envelope.documents:
        doc_before = document.to_dict()
        changed = False
        if document.status not in FROZEN_DOCUMENT_STATUSES and document.status != document_status:
            document.status = document_status
            changed = True
        if document_updates:
            document.metadata_json = {**(document.metadata_json or {}), **document_updates}
            changed = True
        if changed:
            record_audit(session, document.org_id, 'DealDocument', document.id,
                         AuditEvent.STATUS_CHANGE, after=document.to_dict(),
                         before=doc_before, actor_id=actor_id)

    if resolved != previous or metadata_updates:
        action = AuditEvent.VOID if resolved == EnvelopeStatus.VOIDED.value and resolved != previous \
            else AuditEvent.STATUS_CHANGE
        record_audit(session, envelope.org_id, 'DocumentEnvelope', envelope.id, action,
                     after=envelope.to_dict(), before=before, actor_id=actor_id)

    if resolved != previous:
        logger.info(f"Envelope {envelope.id}: {previous} -> {resolved}")
    elif next_status != previous:
        logger.debug(f"Envelope {envelope.id}: ignored {next_status} while {previous}")

    session.flush()
    return resolved
