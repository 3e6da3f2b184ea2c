# routes/compliance.py
"""
Compliance administration API: document templates and rule sets.
Reads need login; writes need the admin or compliance role.
"""

from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from services.compliance import admin_service
from routes.decorators import admin_required
from routes.deal_documents.helpers import as_bool, get_json_body

compliance_bp = Blueprint('compliance', __name__, url_prefix='/api/compliance')


# =============================================================================
# TEMPLATES
# =============================================================================

@compliance_bp.route('/templates', methods=['GET'])
@login_required
def list_templates():
    templates = admin_service.list_templates(
        current_user.org_id,
        doc_type=request.args.get('doc_type'),
        jurisdiction=request.args.get('jurisdiction'),
        deal_type=request.args.get('deal_type'),
        include_deleted=as_bool(request.args.get('include_deleted', False)),
    )
    return jsonify({'success': True, 'templates': templates})


@compliance_bp.route('/templates', methods=['POST'])
@login_required
@admin_required
def create_template():
    template = admin_service.create_template(current_user.org_id, current_user.id, get_json_body())
    return jsonify({'success': True, 'template': template.to_dict(include_source=True)}), 201


@compliance_bp.route('/templates/<int:template_id>', methods=['PATCH'])
@login_required
@admin_required
def update_template(template_id):
    template = admin_service.update_template(current_user.org_id, current_user.id, template_id,
                                             get_json_body())
    return jsonify({'success': True, 'template': template.to_dict(include_source=True)})


@compliance_bp.route('/templates/<int:template_id>', methods=['DELETE'])
@login_required
@admin_required
def delete_template(template_id):
    template = admin_service.delete_template(current_user.org_id, current_user.id, template_id)
    return jsonify({'success': True, 'template': template.to_dict()})


@compliance_bp.route('/templates/<int:template_id>/preview', methods=['POST'])
@login_required
def preview_template(template_id):
    """Body: {deal_id}"""
    data = get_json_body()
    if not data.get('deal_id'):
        return jsonify({'success': False, 'error': 'deal_id is required'}), 400
    preview = admin_service.preview_template(current_user.org_id, template_id, data['deal_id'])
    return jsonify({'success': True, **preview})


# =============================================================================
# RULE SETS
# =============================================================================

@compliance_bp.route('/rulesets', methods=['GET'])
@login_required
def list_rule_sets():
    rule_sets = admin_service.list_rule_sets(current_user.org_id,
                                             jurisdiction=request.args.get('jurisdiction'))
    return jsonify({'success': True, 'rule_sets': rule_sets})


@compliance_bp.route('/rulesets', methods=['POST'])
@login_required
@admin_required
def create_rule_set():
    rule_set = admin_service.create_rule_set_version(current_user.org_id, current_user.id,
                                                     get_json_body())
    return jsonify({'success': True, 'rule_set': rule_set.to_dict()}), 201


@compliance_bp.route('/rulesets/<int:rule_set_id>', methods=['PATCH'])
@login_required
@admin_required
def update_rule_set(rule_set_id):
    rule_set = admin_service.update_rule_set(current_user.org_id, current_user.id, rule_set_id,
                                             get_json_body())
    return jsonify({'success': True, 'rule_set': rule_set.to_dict()})


@compliance_bp.route('/rulesets/evaluate', methods=['POST'])
@login_required
def evaluate_rule_sets():
    """Body: {deal_id, rule_set_id?, as_of?}"""
    data = get_json_body()
    if not data.get('deal_id'):
        return jsonify({'success': False, 'error': 'deal_id is required'}), 400
    result = admin_service.evaluate_deal(
        current_user.org_id,
        data['deal_id'],
        rule_set_id=data.get('rule_set_id'),
        as_of=data.get('as_of'),
    )
    return jsonify({'success': True, **result})
