"""
E-Signature Package

Provider-agnostic envelope lifecycle over pluggable signing providers.

Usage:
    from services.esign import send_for_signature, process_webhook

    envelope = send_for_signature(org_id, user_id, deal_id, [doc.id], recipients,
                                  request_id='req-123')
"""

from .provider import (
    RECIPIENT_ROLES,
    CreatedEnvelope,
    EnvelopeDetails,
    EnvelopeDocument,
    ESignProvider,
    ProviderError,
    ProviderEvent,
    RawWebhookRequest,
    Recipient,
    WebhookVerification,
    available_providers,
    get_provider,
    register_provider,
)
# Importing the provider modules registers them
from .stub_provider import StubESignProvider, reset_stub_store
from .docuseal_provider import DocuSealProvider
from .status import (
    DOCUMENT_STATUS_FOR_ENVELOPE,
    apply_envelope_status,
    document_status_for,
    resolve_transition,
)
from .lifecycle import (
    complete_stub_envelope,
    finalize_envelope,
    get_signed_envelope_download,
    process_webhook,
    refresh_envelope,
    send_for_signature,
    void_envelope,
)

__all__ = [
    # Provider interface
    'RECIPIENT_ROLES',
    'CreatedEnvelope',
    'EnvelopeDetails',
    'EnvelopeDocument',
    'ESignProvider',
    'ProviderError',
    'ProviderEvent',
    'RawWebhookRequest',
    'Recipient',
    'WebhookVerification',
    'available_providers',
    'get_provider',
    'register_provider',
    # Providers
    'StubESignProvider',
    'DocuSealProvider',
    'reset_stub_store',
    # Status transitions
    'DOCUMENT_STATUS_FOR_ENVELOPE',
    'apply_envelope_status',
    'document_status_for',
    'resolve_transition',
    # Lifecycle
    'send_for_signature',
    'process_webhook',
    'finalize_envelope',
    'void_envelope',
    'complete_stub_envelope',
    'refresh_envelope',
    'get_signed_envelope_download',
]
