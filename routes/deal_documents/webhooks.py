# routes/deal_documents/webhooks.py
"""
E-sign provider webhook endpoint.

Configure in the provider: https://yourdomain.com/api/esign/webhooks/<provider>
Authentication is the provider's own (shared secret / signature), not login.
"""

from flask import request, jsonify
from services.esign import RawWebhookRequest, process_webhook
from . import deal_documents_bp


@deal_documents_bp.route('/esign/webhooks/<provider>', methods=['POST'])
def esign_webhook(provider):
    raw = RawWebhookRequest(headers=dict(request.headers), body=request.get_data())
    result = process_webhook(provider, raw)
    return jsonify({'success': True, 'status': 'accepted', **result})
