"""
Deal Document Generation

Template resolution, rendering and persistence of compliance documents
for a deal.

Usage:
    from services.documents import generate_all_required_documents

    outcome = generate_all_required_documents(org_id, user_id, deal_id)
    for result in outcome['results']:
        print(result['doc_type'], result['outcome'])
"""

# context first: the e-sign lifecycle imports it while this package loads
from .context import (
    CANONICAL_TEMPLATE_VARIABLES,
    build_deal_snapshot,
    build_render_context,
    load_deal,
    resolve_jurisdiction,
)
from .field_resolver import FieldResolver, MISSING
from .transforms import FILTERS, register_filter
from .renderer import RenderedArtifact, RenderError, render_artifact, render_context
from .template_resolver import TemplateResolver
from .generator import (
    GenerationOutcome,
    GenerationResult,
    generate_all_required_documents,
    generate_document,
    get_deal_documents_workspace,
    get_document_download,
)
from .packs import (
    create_pack_template,
    generate_document_pack,
    get_deal_checklist,
    list_pack_templates,
    resolve_checklist_status,
)

__all__ = [
    # Context
    'CANONICAL_TEMPLATE_VARIABLES',
    'build_deal_snapshot',
    'build_render_context',
    'load_deal',
    'resolve_jurisdiction',

    # Field resolution and rendering
    'FieldResolver',
    'MISSING',
    'FILTERS',
    'register_filter',
    'RenderedArtifact',
    'RenderError',
    'render_artifact',
    'render_context',
    'TemplateResolver',

    # Generation
    'GenerationOutcome',
    'GenerationResult',
    'generate_document',
    'generate_all_required_documents',
    'get_deal_documents_workspace',
    'get_document_download',

    # Packs
    'create_pack_template',
    'list_pack_templates',
    'generate_document_pack',
    'get_deal_checklist',
    'resolve_checklist_status',
]
