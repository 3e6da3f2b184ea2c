# routes/document_packs.py
"""
Document pack API: pack templates, pack runs and the deal checklist.
"""

from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from services.documents import (
    create_pack_template,
    generate_document_pack,
    get_deal_checklist,
    list_pack_templates,
)
from routes.decorators import admin_required
from routes.deal_documents.helpers import as_bool, get_json_body

document_packs_bp = Blueprint('document_packs', __name__, url_prefix='/api')


@document_packs_bp.route('/document-packs', methods=['GET'])
@login_required
def list_packs():
    return jsonify({'success': True, 'packs': list_pack_templates(current_user.org_id)})


@document_packs_bp.route('/document-packs', methods=['POST'])
@login_required
@admin_required
def create_pack():
    pack = create_pack_template(current_user.org_id, current_user.id, get_json_body())
    return jsonify({'success': True, 'pack': pack.to_dict()}), 201


@document_packs_bp.route('/deals/<int:deal_id>/document-packs/<int:pack_id>/generate', methods=['POST'])
@login_required
def generate_pack(deal_id, pack_id):
    """Body (optional): {regenerate, regenerate_reason}"""
    data = get_json_body()
    result = generate_document_pack(
        current_user.org_id,
        current_user.id,
        deal_id,
        pack_id,
        regenerate=as_bool(data.get('regenerate', False)),
        regenerate_reason=data.get('regenerate_reason'),
    )
    return jsonify({'success': True, **result})


@document_packs_bp.route('/deals/<int:deal_id>/checklist')
@login_required
def deal_checklist(deal_id):
    pack_id = request.args.get('pack_id', type=int)
    items = get_deal_checklist(current_user.org_id, deal_id, pack_template_id=pack_id)
    return jsonify({'success': True, 'items': items})
