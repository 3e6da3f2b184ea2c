"""
Document Generator

Turns (deal, doc type) into a stored, audited DealDocument. Every request
ends in exactly one GenerationOutcome; outcomes other than GENERATED are
reported to the caller, not raised.

Gates run in this order:

    MISSING_TEMPLATE            no active template for the scope
    UNSUPPORTED_TEMPLATE        template cannot produce the configured output
    SKIPPED_EXISTING            current document exists, no regenerate
    REGENERATE_REASON_REQUIRED  regenerate without a reason
    SKIPPED_EXISTING            current document is out for signature
    MISSING_FIELDS              required paths empty in the render context
    GENERATED

Regeneration updates the current row in place; there is never a second
row per (deal, doc type) while the first is not VOIDED.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app

from models import (
    transaction,
    AuditEvent,
    Deal,
    DealDocument,
    DealDocumentStatus,
    DocumentTemplate,
    TemplateEngine,
)
from services.audit_service import record_audit
from services.compliance.rule_sets import evaluate_snapshot
from services.errors import NotFoundError
from services.esign.provider import get_provider
from services.event_service import DOCUMENT_GENERATED, emit_domain_event
from services.object_storage import get_object_buffer, get_object_download_url, put_object
from .context import (
    CANONICAL_TEMPLATE_VARIABLES,
    build_deal_snapshot,
    build_render_context,
    load_deal,
    resolve_jurisdiction,
)
from .field_resolver import FieldResolver
from .renderer import render_artifact, render_context
from .template_resolver import TemplateResolver

logger = logging.getLogger(__name__)

LOCKED_STATUSES = frozenset({
    DealDocumentStatus.SENT_FOR_SIGNATURE.value,
    DealDocumentStatus.PARTIALLY_SIGNED.value,
    DealDocumentStatus.COMPLETED.value,
})


class GenerationOutcome(str, Enum):
    GENERATED = 'GENERATED'
    SKIPPED_EXISTING = 'SKIPPED_EXISTING'
    REGENERATE_REASON_REQUIRED = 'REGENERATE_REASON_REQUIRED'
    MISSING_TEMPLATE = 'MISSING_TEMPLATE'
    MISSING_FIELDS = 'MISSING_FIELDS'
    UNSUPPORTED_TEMPLATE = 'UNSUPPORTED_TEMPLATE'


@dataclass
class GenerationResult:
    doc_type: str
    outcome: GenerationOutcome
    document_id: Optional[int] = None
    template_id: Optional[int] = None
    message: Optional[str] = None
    missing_fields: List[str] = field(default_factory=list)

    @property
    def generated(self) -> bool:
        return self.outcome == GenerationOutcome.GENERATED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'doc_type': self.doc_type,
            'outcome': self.outcome.value,
            'document_id': self.document_id,
            'template_id': self.template_id,
            'message': self.message,
            'missing_fields': list(self.missing_fields),
        }


def signature_anchors() -> Dict[str, str]:
    """Anchor markup of the configured e-sign provider."""
    return get_provider().signature_anchors()


def _unsupported_reason(template: DocumentTemplate) -> Optional[str]:
    if template.template_engine != TemplateEngine.HTML.value:
        return f"{template.template_engine} templates cannot be rendered; upload an HTML version."
    if not (template.source_html or '').strip():
        return "Template has no HTML source."
    return None


def generate_document(org_id, actor_id, deal: Deal, doc_type: str,
                      regenerate: bool = False, regenerate_reason: Optional[str] = None,
                      reason: Optional[str] = None, template: Optional[DocumentTemplate] = None,
                      context: Optional[Dict[str, Any]] = None,
                      as_of: Optional[datetime] = None) -> GenerationResult:
    """
    Generate or regenerate one document for a deal.

    Args:
        reason: Checklist reason recorded in the document metadata
        template: Pinned template; skips resolution
        context: Prebuilt render context, shared across a batch

    Raises:
        AppError when rendering or storage fails; gate outcomes are returned
    """
    jurisdiction = resolve_jurisdiction(deal)
    if template is None:
        template = TemplateResolver.resolve(org_id, doc_type, jurisdiction, deal.deal_type, as_of)
    if template is None:
        return GenerationResult(
            doc_type, GenerationOutcome.MISSING_TEMPLATE,
            message=f"No active template for {doc_type} ({jurisdiction}, {deal.deal_type})."
        )

    unsupported = _unsupported_reason(template)
    if unsupported:
        return GenerationResult(doc_type, GenerationOutcome.UNSUPPORTED_TEMPLATE,
                                template_id=template.id, message=unsupported)

    existing = DealDocument.current_for(deal.id, doc_type)
    regenerate_reason = (regenerate_reason or '').strip() or None
    if existing:
        if not regenerate:
            return GenerationResult(doc_type, GenerationOutcome.SKIPPED_EXISTING,
                                    document_id=existing.id, template_id=existing.template_id,
                                    message="Document already exists.")
        if not regenerate_reason:
            return GenerationResult(doc_type, GenerationOutcome.REGENERATE_REASON_REQUIRED,
                                    document_id=existing.id, template_id=existing.template_id,
                                    message="A reason is required to regenerate an existing document.")
        if existing.status in LOCKED_STATUSES:
            return GenerationResult(doc_type, GenerationOutcome.SKIPPED_EXISTING,
                                    document_id=existing.id, template_id=existing.template_id,
                                    message=f"Document is {existing.status}; void the envelope first.")

    if context is None:
        context = build_render_context(deal, signature_anchors())

    missing = FieldResolver.find_missing_paths(template.required_paths, context)
    if missing:
        return GenerationResult(doc_type, GenerationOutcome.MISSING_FIELDS, template_id=template.id,
                                message=f"Missing required fields: {', '.join(missing)}",
                                missing_fields=missing)

    markup = render_context(template.source_html, context)
    artifact = render_artifact(f"{template.name} - {deal.deal_number}", markup)
    file_hash = hashlib.sha256(artifact.buffer).hexdigest()
    file_key = put_object(
        f"{org_id}/deals/{deal.id}/documents",
        artifact.buffer,
        artifact.content_type,
        f"{doc_type}.{artifact.extension}"
    )

    now = datetime.utcnow()
    metadata = {
        'reason': reason,
        'template_version': template.version,
        'jurisdiction': jurisdiction,
        'output_content_type': artifact.content_type,
        'output_extension': artifact.extension,
        'output_mode': artifact.mode,
        'not_legal_advice': True,
    }

    with transaction() as session:
        if existing:
            before = existing.to_dict()
            document = existing
            document.template_id = template.id
            document.status = DealDocumentStatus.GENERATED.value
            document.file_key = file_key
            document.file_hash = file_hash
            document.envelope_id = None
            document.regenerate_reason = regenerate_reason
            document.metadata_json = metadata
            document.generated_at = now
            session.flush()
            record_audit(session, org_id, 'DealDocument', document.id, AuditEvent.UPDATE,
                         after=document.to_dict(), before=before, actor_id=actor_id)
        else:
            document = DealDocument(
                org_id=org_id,
                deal_id=deal.id,
                template_id=template.id,
                doc_type=doc_type,
                status=DealDocumentStatus.GENERATED.value,
                file_key=file_key,
                file_hash=file_hash,
                metadata_json=metadata,
                generated_at=now,
                created_by_id=actor_id,
            )
            session.add(document)
            session.flush()
            record_audit(session, org_id, 'DealDocument', document.id, AuditEvent.CREATE,
                         after=document.to_dict(), actor_id=actor_id)

    logger.info(f"Generated {doc_type} for deal {deal.id} (document {document.id}, {artifact.mode})")
    emit_domain_event(org_id, DOCUMENT_GENERATED, 'DealDocument', document.id, {
        'dealId': deal.id,
        'docType': doc_type,
        'status': document.status,
        'documentId': document.id,
    })

    return GenerationResult(doc_type, GenerationOutcome.GENERATED, document_id=document.id,
                            template_id=template.id)


def cap_notice(cap: int, remaining: int) -> str:
    return (f"Generation capped at {cap} documents per request; "
            f"{remaining} remaining. Re-run to continue.")


def generate_all_required_documents(org_id, actor_id, deal_id, regenerate: bool = False,
                                    regenerate_reason: Optional[str] = None,
                                    doc_types: Optional[Iterable[str]] = None,
                                    as_of: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Generate every required checklist document of a deal, in checklist
    order, sequentially and up to GENERATION_MAX_DOCS_PER_REQUEST.

    Args:
        doc_types: Restrict the run to these checklist entries
    """
    deal = load_deal(org_id, deal_id)
    evaluation = evaluate_snapshot(build_deal_snapshot(deal), as_of)

    items = [item for item in evaluation.required_checklist if item.required]
    if doc_types is not None:
        wanted = set(doc_types)
        items = [item for item in items if item.doc_type in wanted]

    cap = current_app.config.get('GENERATION_MAX_DOCS_PER_REQUEST', 10)
    to_run, deferred = items[:cap], items[cap:]
    context = build_render_context(deal, signature_anchors())

    results = [
        generate_document(org_id, actor_id, deal, item.doc_type,
                          regenerate=regenerate, regenerate_reason=regenerate_reason,
                          reason=item.reason, context=context, as_of=as_of)
        for item in to_run
    ]

    notices = list(evaluation.notices)
    if deferred:
        notices.append(cap_notice(cap, len(deferred)))

    generated = sum(1 for r in results if r.generated)
    logger.info(f"Deal {deal.id}: generated {generated}/{len(results)} documents, {len(deferred)} deferred")

    return {
        'results': [r.to_dict() for r in results],
        'evaluation': evaluation.to_dict(),
        'notices': notices,
        'remaining': [item.doc_type for item in deferred],
    }


# =============================================================================
# WORKSPACE AND DOWNLOADS
# =============================================================================

def get_deal_documents_workspace(org_id, deal_id, as_of: Optional[datetime] = None) -> Dict[str, Any]:
    """Checklist with template availability, plus documents and envelopes."""
    deal = load_deal(org_id, deal_id)
    jurisdiction = resolve_jurisdiction(deal)
    evaluation = evaluate_snapshot(build_deal_snapshot(deal), as_of)

    checklist = []
    for item in evaluation.required_checklist:
        template = TemplateResolver.resolve(org_id, item.doc_type, jurisdiction, deal.deal_type, as_of)
        current = DealDocument.current_for(deal.id, item.doc_type)
        checklist.append({
            'doc_type': item.doc_type,
            'reason': item.reason,
            'required': item.required,
            'template_available': template is not None,
            'template_id': template.id if template else None,
            'document_id': current.id if current else None,
            'document_status': current.status if current else None,
        })

    return {
        'deal_id': deal.id,
        'jurisdiction': jurisdiction,
        'deal_type': deal.deal_type,
        'evaluation': evaluation.to_dict(),
        'checklist': checklist,
        'documents': [d.to_dict() for d in deal.documents],
        'envelopes': [e.to_dict() for e in deal.envelopes],
        'template_variables': CANONICAL_TEMPLATE_VARIABLES,
    }


def get_document_download(org_id, actor_id, deal_id, document_id) -> Dict[str, Any]:
    """
    Download of a generated document.

    Returns:
        {'url': signed_url} when storage can sign URLs, otherwise
        {'buffer', 'content_type', 'file_name'}
    """
    document = DealDocument.query.filter_by(id=document_id, deal_id=deal_id, org_id=org_id).first()
    if not document:
        raise NotFoundError("Document not found.")
    if not document.file_key:
        raise NotFoundError("Document has no stored file.")

    meta = document.metadata_json or {}
    url = get_object_download_url(document.file_key)
    result = {'url': url} if url else {
        'buffer': get_object_buffer(document.file_key),
        'content_type': meta.get('output_content_type', 'application/octet-stream'),
        'file_name': f"deal-{deal_id}-{document.doc_type}.{meta.get('output_extension', 'bin')}",
    }

    with transaction() as session:
        record_audit(session, org_id, 'DealDocument', document.id, AuditEvent.DOWNLOAD,
                     after={'file_key': document.file_key}, actor_id=actor_id)

    return result
