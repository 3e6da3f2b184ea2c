from .deal_documents import deal_documents_bp
from .compliance import compliance_bp
from .document_packs import document_packs_bp

def register_blueprints(app):
    app.register_blueprint(deal_documents_bp)
    app.register_blueprint(compliance_bp)
    app.register_blueprint(document_packs_bp)
