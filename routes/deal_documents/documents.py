# routes/deal_documents/documents.py
"""
Deal document workspace, generation and download routes.
"""

from flask import jsonify
from flask_login import login_required, current_user
from services.documents import (
    generate_all_required_documents,
    get_deal_documents_workspace,
    get_document_download,
)
from . import deal_documents_bp
from .helpers import as_bool, download_response, get_json_body


# =============================================================================
# WORKSPACE
# =============================================================================

@deal_documents_bp.route('/deals/<int:deal_id>/documents')
@login_required
def documents_workspace(deal_id):
    """Checklist, generated documents and envelopes for a deal."""
    workspace = get_deal_documents_workspace(current_user.org_id, deal_id)
    return jsonify({'success': True, **workspace})


# =============================================================================
# GENERATION
# =============================================================================

@deal_documents_bp.route('/deals/<int:deal_id>/documents/generate', methods=['POST'])
@login_required
def generate_documents(deal_id):
    """
    Generate every required document of the deal.

    Body (all optional):
        regenerate: bool
        regenerate_reason: str, required to replace an existing document
        doc_types: [str], restrict to these checklist entries
    """
    data = get_json_body()
    result = generate_all_required_documents(
        current_user.org_id,
        current_user.id,
        deal_id,
        regenerate=as_bool(data.get('regenerate', False)),
        regenerate_reason=data.get('regenerate_reason'),
        doc_types=data.get('doc_types'),
    )
    return jsonify({'success': True, **result})


# =============================================================================
# DOWNLOAD
# =============================================================================

@deal_documents_bp.route('/deals/<int:deal_id>/documents/<int:doc_id>/download')
@login_required
def download_document(deal_id, doc_id):
    result = get_document_download(current_user.org_id, current_user.id, deal_id, doc_id)
    return download_response(result)
