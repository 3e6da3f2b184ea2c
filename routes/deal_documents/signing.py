# routes/deal_documents/signing.py
"""
Document e-signature routes.
"""

from flask import jsonify
from flask_login import login_required, current_user
from services.esign import (
    complete_stub_envelope,
    get_signed_envelope_download,
    refresh_envelope,
    send_for_signature,
    void_envelope,
)
from . import deal_documents_bp
from .helpers import download_response, get_json_body


# =============================================================================
# SEND FOR SIGNATURE
# =============================================================================

@deal_documents_bp.route('/deals/<int:deal_id>/esign/send', methods=['POST'])
@login_required
def send_documents_for_signature(deal_id):
    """
    Send generated documents for signature.

    Body:
        document_ids: [int]
        recipients: [{role, name, email, order?}]
        request_id: idempotency key; retries with the same key return
                    the same envelope
    """
    data = get_json_body()
    envelope = send_for_signature(
        current_user.org_id,
        current_user.id,
        deal_id,
        data.get('document_ids'),
        data.get('recipients'),
        request_id=data.get('request_id'),
    )
    return jsonify({'success': True, 'envelope': envelope.to_dict()})


# =============================================================================
# VOID / STUB COMPLETION
# =============================================================================

@deal_documents_bp.route('/deals/<int:deal_id>/esign/<int:envelope_id>/void', methods=['POST'])
@login_required
def void_signature_envelope(deal_id, envelope_id):
    data = get_json_body()
    envelope = void_envelope(current_user.org_id, current_user.id, deal_id, envelope_id,
                             data.get('reason'))
    return jsonify({'success': True, 'envelope': envelope.to_dict()})


@deal_documents_bp.route('/deals/<int:deal_id>/esign/<int:envelope_id>/complete-stub', methods=['POST'])
@login_required
def complete_stub(deal_id, envelope_id):
    """Mark a stub envelope signed (development and demos)."""
    envelope = complete_stub_envelope(current_user.org_id, current_user.id, deal_id, envelope_id)
    return jsonify({'success': True, 'envelope': envelope.to_dict()})


@deal_documents_bp.route('/deals/<int:deal_id>/esign/<int:envelope_id>/refresh', methods=['POST'])
@login_required
def refresh_signature_envelope(deal_id, envelope_id):
    """Re-check status with the provider and retry a failed finalization."""
    envelope = refresh_envelope(current_user.org_id, current_user.id, deal_id, envelope_id)
    return jsonify({'success': True, 'envelope': envelope.to_dict()})


# =============================================================================
# SIGNED DOWNLOAD
# =============================================================================

@deal_documents_bp.route('/deals/<int:deal_id>/esign/<int:envelope_id>/download')
@login_required
def download_signed_envelope(deal_id, envelope_id):
    result = get_signed_envelope_download(current_user.org_id, current_user.id, deal_id, envelope_id)
    return download_response(result)
