"""
Compliance Administration

Operator-facing writes for document templates and rule sets. Both are
append-only by version within their scope; every write records an audit
row in the same transaction.

At most one template per (org, jurisdiction, doc type, deal type) holds
default_for_org: setting it clears the flag on the siblings inside the
same transaction.
"""

import base64
import binascii
import hashlib
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

import jsonschema
from sqlalchemy.exc import IntegrityError

from models import (
    transaction,
    AuditEvent,
    ComplianceRuleSet,
    DealType,
    DocumentTemplate,
    DocumentType,
    TemplateEngine,
)
from services.audit_service import record_audit
from services.documents.context import build_deal_snapshot, build_render_context, load_deal
from services.documents.field_resolver import FieldResolver
from services.documents.generator import signature_anchors
from services.documents.renderer import as_html_document, render_context, sanitize_html
from services.errors import AppError, ConflictError, NotFoundError
from services.object_storage import put_object
from .evaluator import evaluate_compliance
from .rule_sets import applicable_rule_sets
from .rules import empty_rule_body, validate_rule_body
from .scoping import next_version

logger = logging.getLogger(__name__)

DOCX_CONTENT_TYPE = 'application/vnd.openxmlformats-officedocument.wordprocessingml.document'

_DATE = {'type': ['string', 'null']}

TEMPLATE_FIELDS = {
    'name': {'type': 'string', 'minLength': 1, 'maxLength': 200},
    'source_html': {'type': 'string'},
    'required_fields_json': {
        'type': 'object',
        'properties': {
            'requiredPaths': {'type': 'array', 'items': {'type': 'string', 'minLength': 1}},
        },
    },
    'effective_from': _DATE,
    'effective_to': _DATE,
    'default_for_org': {'type': 'boolean'},
    'is_default': {'type': 'boolean'},
}

TEMPLATE_CREATE_SCHEMA = {
    'type': 'object',
    'required': ['name', 'doc_type', 'jurisdiction', 'deal_type'],
    'properties': {
        **TEMPLATE_FIELDS,
        'doc_type': {'enum': [t.value for t in DocumentType]},
        'jurisdiction': {'type': 'string', 'pattern': '^[A-Za-z]{2}$'},
        'deal_type': {'enum': [t.value for t in DealType]},
        'template_engine': {'enum': [e.value for e in TemplateEngine]},
        'source_docx_base64': {'type': 'string'},
    },
}

TEMPLATE_PATCH_SCHEMA = {
    'type': 'object',
    'properties': TEMPLATE_FIELDS,
    'additionalProperties': False,
}

RULE_SET_CREATE_SCHEMA = {
    'type': 'object',
    'required': ['jurisdiction'],
    'properties': {
        'jurisdiction': {'type': 'string', 'pattern': '^[A-Za-z]{2}$'},
        'effective_from': _DATE,
        'effective_to': _DATE,
        'copy_from_id': {'type': ['integer', 'null']},
        'rules': {'type': 'object'},
    },
}

RULE_SET_PATCH_SCHEMA = {
    'type': 'object',
    'properties': {
        'effective_from': _DATE,
        'effective_to': _DATE,
        'rules': {'type': 'object'},
    },
    'additionalProperties': False,
}


def _parse_datetime(value, name: str) -> Optional[datetime]:
    if value is None or value == '':
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise AppError(f"{name} must be an ISO date.")
    # Stored naive, UTC
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.replace(tzinfo=None)


def _check_window(effective_from: datetime, effective_to: Optional[datetime]) -> None:
    if effective_to is not None and effective_to < effective_from:
        raise AppError("effective_to must not be before effective_from.")


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


# =============================================================================
# TEMPLATES
# =============================================================================

def _visible_templates(org_id):
    return DocumentTemplate.query.filter(
        (DocumentTemplate.org_id == org_id) | (DocumentTemplate.org_id.is_(None))
    )


def _own_template(org_id, template_id) -> DocumentTemplate:
    template = DocumentTemplate.query.filter_by(id=template_id, org_id=org_id)\
        .filter(DocumentTemplate.deleted_at.is_(None)).first()
    if not template:
        raise NotFoundError("Template not found.")
    return template


def _clear_default_siblings(session, template: DocumentTemplate, actor_id) -> None:
    siblings = DocumentTemplate.query.filter(
        DocumentTemplate.org_id == template.org_id,
        DocumentTemplate.jurisdiction == template.jurisdiction,
        DocumentTemplate.doc_type == template.doc_type,
        DocumentTemplate.deal_type == template.deal_type,
        DocumentTemplate.default_for_org.is_(True),
        DocumentTemplate.id != template.id,
    ).all()
    for sibling in siblings:
        before = sibling.to_dict()
        sibling.default_for_org = False
        record_audit(session, sibling.org_id, 'DocumentTemplate', sibling.id, AuditEvent.UPDATE,
                     after=sibling.to_dict(), before=before, actor_id=actor_id)


def list_templates(org_id, doc_type: str = None, jurisdiction: str = None,
                   deal_type: str = None, include_deleted: bool = False) -> List[Dict[str, Any]]:
    query = _visible_templates(org_id)
    if not include_deleted:
        query = query.filter(DocumentTemplate.deleted_at.is_(None))
    if doc_type:
        query = query.filter(DocumentTemplate.doc_type == doc_type)
    if jurisdiction:
        query = query.filter(DocumentTemplate.jurisdiction == jurisdiction.upper())
    if deal_type:
        query = query.filter(DocumentTemplate.deal_type == deal_type)
    templates = query.order_by(
        DocumentTemplate.jurisdiction.asc(),
        DocumentTemplate.doc_type.asc(),
        DocumentTemplate.deal_type.asc(),
        DocumentTemplate.version.desc(),
    ).all()
    return [t.to_dict() for t in templates]


def create_template(org_id, actor_id, payload: Dict[str, Any]) -> DocumentTemplate:
    """
    Create the next template version for an organization scope.

    HTML templates carry source_html; DOCX templates arrive as
    source_docx_base64 and are kept in object storage.
    """
    jsonschema.validate(payload, TEMPLATE_CREATE_SCHEMA)

    jurisdiction = payload['jurisdiction'].upper()
    engine = payload.get('template_engine', TemplateEngine.HTML.value)
    effective_from = _parse_datetime(payload.get('effective_from'), 'effective_from') or datetime.utcnow()
    effective_to = _parse_datetime(payload.get('effective_to'), 'effective_to')
    _check_window(effective_from, effective_to)

    source_html = None
    source_docx_key = None
    if engine == TemplateEngine.HTML.value:
        source_html = payload.get('source_html') or ''
        if not source_html.strip():
            raise AppError("source_html is required for HTML templates.")
        source_hash = _sha256(source_html.encode('utf-8'))
    else:
        try:
            docx = base64.b64decode(payload.get('source_docx_base64') or '', validate=True)
        except (binascii.Error, ValueError):
            raise AppError("source_docx_base64 is not valid base64.")
        if not docx:
            raise AppError("source_docx_base64 is required for DOCX templates.")
        source_hash = _sha256(docx)
        source_docx_key = put_object(f"{org_id}/templates", docx, DOCX_CONTENT_TYPE,
                                     f"{payload['doc_type']}.docx")

    scope = dict(org_id=org_id, jurisdiction=jurisdiction,
                 doc_type=payload['doc_type'], deal_type=payload['deal_type'])
    existing = DocumentTemplate.query.filter_by(**scope).with_entities(DocumentTemplate.version).all()

    try:
        with transaction() as session:
            template = DocumentTemplate(
                name=payload['name'].strip(),
                version=next_version(v for (v,) in existing),
                template_engine=engine,
                source_html=source_html,
                source_docx_key=source_docx_key,
                source_hash=source_hash,
                required_fields_json=payload.get('required_fields_json') or {'requiredPaths': []},
                effective_from=effective_from,
                effective_to=effective_to,
                default_for_org=payload.get('default_for_org', False),
                is_default=payload.get('is_default', False),
                created_by_id=actor_id,
                **scope
            )
            session.add(template)
            session.flush()
            if template.default_for_org:
                _clear_default_siblings(session, template, actor_id)
            record_audit(session, org_id, 'DocumentTemplate', template.id, AuditEvent.CREATE,
                         after=template.to_dict(), actor_id=actor_id)
    except IntegrityError:
        raise ConflictError("A template version was created concurrently; retry.")

    logger.info(f"Created template {template.id}: {template.doc_type} {jurisdiction}/"
                f"{template.deal_type} v{template.version} for org {org_id}")
    return template


def update_template(org_id, actor_id, template_id, payload: Dict[str, Any]) -> DocumentTemplate:
    jsonschema.validate(payload, TEMPLATE_PATCH_SCHEMA)
    template = _own_template(org_id, template_id)
    before = template.to_dict()

    effective_from = template.effective_from
    effective_to = template.effective_to
    if 'effective_from' in payload:
        effective_from = _parse_datetime(payload['effective_from'], 'effective_from') or effective_from
    if 'effective_to' in payload:
        effective_to = _parse_datetime(payload['effective_to'], 'effective_to')
    _check_window(effective_from, effective_to)

    with transaction() as session:
        if 'name' in payload:
            template.name = payload['name'].strip()
        if 'source_html' in payload:
            if template.template_engine != TemplateEngine.HTML.value:
                raise AppError("source_html applies only to HTML templates.")
            template.source_html = payload['source_html']
            template.source_hash = _sha256(payload['source_html'].encode('utf-8'))
        if 'required_fields_json' in payload:
            template.required_fields_json = payload['required_fields_json']
        if 'is_default' in payload:
            template.is_default = payload['is_default']
        if 'default_for_org' in payload:
            template.default_for_org = payload['default_for_org']
        template.effective_from = effective_from
        template.effective_to = effective_to

        if template.default_for_org:
            _clear_default_siblings(session, template, actor_id)
        record_audit(session, org_id, 'DocumentTemplate', template.id, AuditEvent.UPDATE,
                     after=template.to_dict(), before=before, actor_id=actor_id)

    return template


def delete_template(org_id, actor_id, template_id) -> DocumentTemplate:
    """Soft delete; resolution falls back to the next candidate."""
    template = _own_template(org_id, template_id)
    before = template.to_dict()

    with transaction() as session:
        template.deleted_at = datetime.utcnow()
        template.default_for_org = False
        template.is_default = False
        record_audit(session, org_id, 'DocumentTemplate', template.id, AuditEvent.DELETE,
                     after=template.to_dict(), before=before, actor_id=actor_id)

    logger.info(f"Soft-deleted template {template.id} for org {org_id}")
    return template


def preview_template(org_id, template_id, deal_id) -> Dict[str, Any]:
    """Render an HTML template against a deal without storing anything."""
    template = _visible_templates(org_id).filter(
        DocumentTemplate.id == template_id,
        DocumentTemplate.deleted_at.is_(None),
    ).first()
    if not template:
        raise NotFoundError("Template not found.")
    if template.template_engine != TemplateEngine.HTML.value:
        raise AppError("Only HTML templates can be previewed.")

    deal = load_deal(org_id, deal_id)
    context = build_render_context(deal, signature_anchors())
    markup = render_context(template.source_html or '', context)

    return {
        'template_id': template.id,
        'deal_id': deal.id,
        'html': as_html_document(sanitize_html(markup), template.name),
        'missing_fields': FieldResolver.find_missing_paths(template.required_paths, context),
    }


# =============================================================================
# RULE SETS
# =============================================================================

def _visible_rule_set(org_id, rule_set_id) -> ComplianceRuleSet:
    rule_set = ComplianceRuleSet.query.filter(
        ComplianceRuleSet.id == rule_set_id,
        (ComplianceRuleSet.org_id == org_id) | (ComplianceRuleSet.org_id.is_(None)),
    ).first()
    if not rule_set:
        raise NotFoundError("Rule set not found.")
    return rule_set


def list_rule_sets(org_id, jurisdiction: str = None) -> List[Dict[str, Any]]:
    query = ComplianceRuleSet.query.filter(
        (ComplianceRuleSet.org_id == org_id) | (ComplianceRuleSet.org_id.is_(None))
    )
    if jurisdiction:
        query = query.filter(ComplianceRuleSet.jurisdiction == jurisdiction.upper())
    rule_sets = query.order_by(
        ComplianceRuleSet.jurisdiction.asc(),
        ComplianceRuleSet.org_id.asc(),
        ComplianceRuleSet.version.desc(),
    ).all()
    return [r.to_dict() for r in rule_sets]


def create_rule_set_version(org_id, actor_id, payload: Dict[str, Any]) -> ComplianceRuleSet:
    """
    Create the next rule set version in the organization's scope.

    Rules come from the payload, else a copy of copy_from_id, else the
    scope's latest version, else an empty body.
    """
    jsonschema.validate(payload, RULE_SET_CREATE_SCHEMA)
    jurisdiction = payload['jurisdiction'].upper()

    in_scope = ComplianceRuleSet.query.filter_by(jurisdiction=jurisdiction, org_id=org_id)\
        .order_by(ComplianceRuleSet.version.desc()).all()

    if payload.get('rules') is not None:
        rules = payload['rules']
    elif payload.get('copy_from_id') is not None:
        rules = _visible_rule_set(org_id, payload['copy_from_id']).rules_json
    elif in_scope:
        rules = in_scope[0].rules_json
    else:
        rules = empty_rule_body()
    validate_rule_body(rules)

    effective_from = _parse_datetime(payload.get('effective_from'), 'effective_from') or datetime.utcnow()
    effective_to = _parse_datetime(payload.get('effective_to'), 'effective_to')
    _check_window(effective_from, effective_to)

    try:
        with transaction() as session:
            rule_set = ComplianceRuleSet(
                org_id=org_id,
                jurisdiction=jurisdiction,
                version=next_version(r.version for r in in_scope),
                effective_from=effective_from,
                effective_to=effective_to,
                rules_json=rules,
                created_by_id=actor_id,
            )
            session.add(rule_set)
            session.flush()
            record_audit(session, org_id, 'ComplianceRuleSet', rule_set.id, AuditEvent.CREATE,
                         after=rule_set.to_dict(), actor_id=actor_id)
    except IntegrityError:
        raise ConflictError("A rule set version was created concurrently; retry.")

    logger.info(f"Created rule set {jurisdiction} v{rule_set.version} for org {org_id}")
    return rule_set


def update_rule_set(org_id, actor_id, rule_set_id, payload: Dict[str, Any]) -> ComplianceRuleSet:
    jsonschema.validate(payload, RULE_SET_PATCH_SCHEMA)
    rule_set = ComplianceRuleSet.query.filter_by(id=rule_set_id, org_id=org_id).first()
    if not rule_set:
        raise NotFoundError("Rule set not found.")

    if 'rules' in payload:
        validate_rule_body(payload['rules'])

    effective_from = rule_set.effective_from
    effective_to = rule_set.effective_to
    if 'effective_from' in payload:
        effective_from = _parse_datetime(payload['effective_from'], 'effective_from') or effective_from
    if 'effective_to' in payload:
        effective_to = _parse_datetime(payload['effective_to'], 'effective_to')
    _check_window(effective_from, effective_to)

    before = rule_set.to_dict()
    with transaction() as session:
        if 'rules' in payload:
            rule_set.rules_json = payload['rules']
        rule_set.effective_from = effective_from
        rule_set.effective_to = effective_to
        record_audit(session, org_id, 'ComplianceRuleSet', rule_set.id, AuditEvent.UPDATE,
                     after=rule_set.to_dict(), before=before, actor_id=actor_id)

    return rule_set


def evaluate_deal(org_id, deal_id, rule_set_id=None, as_of=None) -> Dict[str, Any]:
    """
    Evaluate a deal with the active rule sets, or with an explicit rule set
    standing in for the organization's one.
    """
    if isinstance(as_of, str):
        as_of = _parse_datetime(as_of, 'as_of')
    elif isinstance(as_of, date) and not isinstance(as_of, datetime):
        as_of = datetime(as_of.year, as_of.month, as_of.day)

    deal = load_deal(org_id, deal_id)
    snapshot = build_deal_snapshot(deal)
    override = _visible_rule_set(org_id, rule_set_id) if rule_set_id is not None else None
    applied = applicable_rule_sets(org_id, snapshot.jurisdiction, as_of, override)

    return {
        'snapshot': snapshot.to_dict(),
        'rule_set_ids': [r.id for r in applied],
        'evaluation': evaluate_compliance(snapshot, [r.rules_json for r in applied]).to_dict(),
    }
