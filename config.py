import os
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()

_IS_PRODUCTION = os.getenv('FLASK_ENV', 'development') == 'production'


class Config:
    # Environment
    FLASK_ENV = os.getenv('FLASK_ENV', 'development')

    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///dealdesk.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    PERMANENT_SESSION_LIFETIME = timedelta(minutes=30)

    # Document generation
    GENERATION_MAX_DOCS_PER_REQUEST = int(os.getenv('GENERATION_MAX_DOCS_PER_REQUEST', 10))
    COMPLIANCE_SEED_DIR = os.getenv('COMPLIANCE_SEED_DIR', 'compliance/rulesets')

    # Artifact rendering: none, external (PDFShift) or playwright
    PDF_MODE = os.getenv('PDF_MODE', 'external' if _IS_PRODUCTION else 'playwright').lower()
    PDF_EXTERNAL_URL = os.getenv('PDF_EXTERNAL_URL', 'https://api.pdfshift.io/v3/convert/pdf')
    PDF_EXTERNAL_API_KEY = os.getenv('PDF_EXTERNAL_API_KEY')
    PDF_EXTERNAL_TIMEOUT = int(os.getenv('PDF_EXTERNAL_TIMEOUT', 30))

    # Object storage: local or supabase
    STORAGE_MODE = os.getenv('STORAGE_MODE', 'supabase' if _IS_PRODUCTION else 'local').lower()
    STORAGE_LOCAL_ROOT = os.getenv('STORAGE_LOCAL_ROOT', '.generated-files')
    SUPABASE_URL = os.getenv('SUPABASE_URL')
    SUPABASE_SERVICE_KEY = os.getenv('SUPABASE_SERVICE_KEY', os.getenv('SUPABASE_KEY'))
    SUPABASE_BUCKET = os.getenv('SUPABASE_BUCKET', 'deal-documents')
    SIGNED_URL_EXPIRES_IN = int(os.getenv('SIGNED_URL_EXPIRES_IN', 300))

    # E-signature
    ESIGN_PROVIDER = os.getenv('ESIGN_PROVIDER', 'stub').lower()
    ESIGN_STUB_AUTO_COMPLETE = os.getenv('ESIGN_STUB_AUTO_COMPLETE', 'true').lower() != 'false'
    DOCUSEAL_API_URL = os.getenv('DOCUSEAL_API_URL', 'https://api.docuseal.com')
    DOCUSEAL_API_KEY = os.getenv('DOCUSEAL_API_KEY')
    DOCUSEAL_WEBHOOK_SECRET = os.getenv('DOCUSEAL_WEBHOOK_SECRET')
    DOCUSEAL_WEBHOOK_HEADER = os.getenv('DOCUSEAL_WEBHOOK_HEADER', 'X-Docuseal-Secret')
    DOCUSEAL_TIMEOUT = int(os.getenv('DOCUSEAL_TIMEOUT', 30))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    PDF_MODE = 'none'
    STORAGE_MODE = 'local'
    ESIGN_PROVIDER = 'stub'
    ESIGN_STUB_AUTO_COMPLETE = False
    GENERATION_MAX_DOCS_PER_REQUEST = 10
    LOGIN_DISABLED = False
