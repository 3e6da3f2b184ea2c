# routes/deal_documents/__init__.py
"""
Deal Document Routes Package
JSON API for the document workspace of a deal.

- documents.py: Workspace, generation and downloads
- signing.py: E-signature send, void, stub completion, signed download
- webhooks.py: Provider webhook ingestion (no login)
"""

from flask import Blueprint

# Create the blueprint - all sub-modules will register routes on this
deal_documents_bp = Blueprint('deal_documents', __name__, url_prefix='/api')

# Import all route modules AFTER blueprint creation
from . import documents
from . import signing
from . import webhooks
