"""
Document Packs

An organization-defined checklist (pack) of documents for a state and sale
type. Running a pack drives the document generator over its items in a
fixed order and records one checklist row per item on the deal.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import jsonschema
from flask import current_app

from models import (
    transaction,
    AuditEvent,
    ChecklistItemStatus,
    DealDocumentChecklistItem,
    DealType,
    DocumentPackItem,
    DocumentPackTemplate,
    DocumentTemplate,
    DocumentType,
)
from services.audit_service import record_audit
from services.compliance.scoping import is_active
from services.errors import AppError, NotFoundError
from .context import build_render_context, load_deal, resolve_jurisdiction
from .generator import (
    GenerationOutcome,
    GenerationResult,
    cap_notice,
    generate_document,
    signature_anchors,
)

logger = logging.getLogger(__name__)

BLOCKING_OUTCOMES = frozenset({
    GenerationOutcome.MISSING_TEMPLATE,
    GenerationOutcome.UNSUPPORTED_TEMPLATE,
})

PACK_SCHEMA = {
    'type': 'object',
    'required': ['name', 'state', 'sale_type', 'items'],
    'properties': {
        'name': {'type': 'string', 'minLength': 1, 'maxLength': 200},
        'state': {'type': 'string', 'pattern': '^[A-Za-z]{2}$'},
        'sale_type': {'enum': [t.value for t in DealType]},
        'items': {
            'type': 'array',
            'minItems': 1,
            'items': {
                'type': 'object',
                'required': ['document_type'],
                'properties': {
                    'document_type': {'enum': [t.value for t in DocumentType]},
                    'required': {'type': 'boolean'},
                    'blocking': {'type': 'boolean'},
                    'sort_order': {'type': 'integer', 'minimum': 0},
                    'document_template_id': {'type': ['integer', 'null']},
                },
            },
        },
    },
}


def resolve_checklist_status(outcome: GenerationOutcome, has_document: bool) -> str:
    """Checklist status for a generation outcome; a current document wins."""
    if has_document:
        return ChecklistItemStatus.GENERATED.value
    if outcome in BLOCKING_OUTCOMES:
        return ChecklistItemStatus.BLOCKED.value
    if outcome == GenerationOutcome.MISSING_FIELDS:
        return ChecklistItemStatus.MISSING_DATA.value
    return ChecklistItemStatus.PENDING.value


def _ordered_items(pack: DocumentPackTemplate) -> List[DocumentPackItem]:
    return sorted(pack.items, key=lambda i: (i.sort_order or 0, i.document_type, i.id))


def _pinned_template(item: DocumentPackItem, org_id, as_of) -> Optional[DocumentTemplate]:
    template = item.document_template
    if template is None or template.org_id not in (None, org_id):
        return None
    return template if is_active(template, as_of) else None


# =============================================================================
# PACK TEMPLATES
# =============================================================================

def list_pack_templates(org_id) -> List[Dict[str, Any]]:
    packs = DocumentPackTemplate.query.filter_by(org_id=org_id)\
        .order_by(DocumentPackTemplate.name.asc(), DocumentPackTemplate.id.asc()).all()
    return [p.to_dict() for p in packs]


def create_pack_template(org_id, actor_id, payload: Dict[str, Any]) -> DocumentPackTemplate:
    """
    Create a pack with its items.

    Raises:
        jsonschema.ValidationError for a malformed payload
        AppError for a repeated document type
        NotFoundError for a pinned template the organization cannot use
    """
    jsonschema.validate(payload, PACK_SCHEMA)

    doc_types = [item['document_type'] for item in payload['items']]
    if len(set(doc_types)) != len(doc_types):
        raise AppError("Each document type may appear only once in a pack.")

    for item in payload['items']:
        template_id = item.get('document_template_id')
        if template_id is None:
            continue
        template = DocumentTemplate.query.filter(
            DocumentTemplate.id == template_id,
            DocumentTemplate.deleted_at.is_(None),
            (DocumentTemplate.org_id == org_id) | (DocumentTemplate.org_id.is_(None)),
        ).first()
        if not template:
            raise NotFoundError(f"Template {template_id} not found.")

    with transaction() as session:
        pack = DocumentPackTemplate(
            org_id=org_id,
            name=payload['name'].strip(),
            state=payload['state'].upper(),
            sale_type=payload['sale_type'],
        )
        for index, item in enumerate(payload['items']):
            pack.items.append(DocumentPackItem(
                document_type=item['document_type'],
                required=item.get('required', True),
                blocking=item.get('blocking', True),
                sort_order=item.get('sort_order', index),
                document_template_id=item.get('document_template_id'),
            ))
        session.add(pack)
        session.flush()
        record_audit(session, org_id, 'DocumentPackTemplate', pack.id, AuditEvent.CREATE,
                     after=pack.to_dict(), actor_id=actor_id)

    logger.info(f"Created document pack {pack.id} ({pack.state}/{pack.sale_type}) for org {org_id}")
    return pack


# =============================================================================
# PACK GENERATION
# =============================================================================

def generate_document_pack(org_id, actor_id, deal_id, pack_template_id,
                           regenerate: bool = False, regenerate_reason: Optional[str] = None,
                           as_of: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Run a pack against a deal.

    Items run in (sort_order, document_type, id) order, capped at
    GENERATION_MAX_DOCS_PER_REQUEST. Items past the cap keep their previous
    checklist status.
    """
    deal = load_deal(org_id, deal_id)
    pack = DocumentPackTemplate.query.filter_by(id=pack_template_id, org_id=org_id).first()
    if not pack:
        raise NotFoundError("Document pack not found.")

    jurisdiction = resolve_jurisdiction(deal)
    if pack.state.upper() != jurisdiction:
        raise AppError(f"Pack is for {pack.state}; deal jurisdiction is {jurisdiction}.")
    if pack.sale_type != deal.deal_type:
        raise AppError(f"Pack is for {pack.sale_type} deals; this deal is {deal.deal_type}.")

    as_of = as_of or datetime.utcnow()
    items = _ordered_items(pack)
    cap = current_app.config.get('GENERATION_MAX_DOCS_PER_REQUEST', 10)
    to_run, deferred = items[:cap], items[cap:]
    context = build_render_context(deal, signature_anchors())

    results: Dict[int, GenerationResult] = {}
    for item in to_run:
        results[item.id] = generate_document(
            org_id, actor_id, deal, item.document_type,
            regenerate=regenerate, regenerate_reason=regenerate_reason,
            reason=f"Pack: {pack.name}", template=_pinned_template(item, org_id, as_of),
            context=context, as_of=as_of,
        )

    with transaction() as session:
        rows = []
        for item in items:
            row = DealDocumentChecklistItem.query.filter_by(
                deal_id=deal.id,
                pack_template_id=pack.id,
                document_type=item.document_type
            ).first()
            before = row.to_dict() if row else None
            if row is None:
                row = DealDocumentChecklistItem(
                    org_id=org_id,
                    deal_id=deal.id,
                    pack_template_id=pack.id,
                    document_type=item.document_type,
                    status=ChecklistItemStatus.PENDING.value,
                )
                session.add(row)
            row.required = item.required
            row.blocking = item.blocking

            result = results.get(item.id)
            if result is not None:
                row.status = resolve_checklist_status(result.outcome, result.document_id is not None)
                row.missing_fields_json = result.missing_fields
                row.notes = result.message
                if result.document_id is not None:
                    row.generated_document_id = result.document_id
            session.flush()

            record_audit(session, org_id, 'DealDocumentChecklistItem', row.id,
                         AuditEvent.UPDATE if before else AuditEvent.CREATE,
                         after=row.to_dict(), before=before, actor_id=actor_id)
            rows.append(row)

    notices = []
    if deferred:
        notices.append(cap_notice(cap, len(deferred)))

    logger.info(f"Ran pack {pack.id} on deal {deal.id}: {len(to_run)} items, {len(deferred)} deferred")
    return {
        'pack': pack.to_dict(),
        'results': [results[item.id].to_dict() for item in to_run],
        'checklist': [r.to_dict() for r in rows],
        'notices': notices,
    }


def get_deal_checklist(org_id, deal_id, pack_template_id=None) -> List[Dict[str, Any]]:
    deal = load_deal(org_id, deal_id)
    query = DealDocumentChecklistItem.query.filter_by(deal_id=deal.id, org_id=org_id)
    if pack_template_id is not None:
        query = query.filter_by(pack_template_id=pack_template_id)
    rows = query.order_by(DealDocumentChecklistItem.pack_template_id.asc(),
                          DealDocumentChecklistItem.id.asc()).all()
    return [r.to_dict() for r in rows]
