"""
E-Sign Provider Interface

Every signing backend implements ESignProvider. The envelope lifecycle
talks only to this interface, so it never branches on which provider is
configured.

Providers register themselves by name; get_provider() builds the one
named by ESIGN_PROVIDER (or an explicit name, for webhooks addressed to
a specific provider).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from flask import current_app

from services.errors import AppError, ConfigurationError

logger = logging.getLogger(__name__)

RECIPIENT_ROLES = ('buyer', 'co_buyer', 'seller', 'dealer')


class ProviderError(AppError):
    """
    Raised when a provider API call fails.

    status_code is the HTTP status this service answers with;
    provider_status and response_body describe the upstream failure.
    """
    status_code = 502

    def __init__(self, message: str, provider_status: int = None, response_body: str = None):
        self.provider_status = provider_status
        self.response_body = response_body
        super().__init__(message)


# =============================================================================
# DATA TYPES
# =============================================================================

@dataclass(frozen=True)
class Recipient:
    role: str
    name: str
    email: str
    order: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {'role': self.role, 'name': self.name, 'email': self.email, 'order': self.order}


@dataclass(frozen=True)
class EnvelopeDocument:
    document_id: int
    name: str
    file_key: str
    sha256: str
    buffer: bytes


@dataclass(frozen=True)
class CreatedEnvelope:
    provider_envelope_id: str
    status: str


@dataclass(frozen=True)
class EnvelopeDetails:
    status: str
    signed_pdf_buffer: Optional[bytes] = None


@dataclass(frozen=True)
class RawWebhookRequest:
    headers: Mapping[str, str]
    body: bytes

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


@dataclass(frozen=True)
class ProviderEvent:
    provider_envelope_id: str
    event_type: str
    provider_event_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    status: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WebhookVerification:
    ok: bool
    event: Optional[ProviderEvent] = None
    error: Optional[str] = None


# =============================================================================
# INTERFACE
# =============================================================================

class ESignProvider(ABC):
    name: str = ''

    @abstractmethod
    def create_envelope(self, org_id, deal_id, documents: List[EnvelopeDocument],
                        recipients: List[Recipient], request_id: str) -> CreatedEnvelope:
        """Create and send a signature request for the given documents."""

    @abstractmethod
    def get_envelope(self, envelope_id, provider_envelope_id: str) -> EnvelopeDetails:
        """Current status, plus the signed combined PDF once completed."""

    @abstractmethod
    def void_envelope(self, envelope_id, provider_envelope_id: str, reason: str) -> None:
        """Cancel the request remotely."""

    @abstractmethod
    def verify_webhook(self, request: RawWebhookRequest) -> WebhookVerification:
        """Authenticate an inbound callback and extract its event. No side effects."""

    def accept_event(self, event: ProviderEvent) -> None:
        """
        Called once per new event, after deduplication and before the status
        refresh. Remote providers keep their own state and ignore it.
        """

    def signature_anchors(self) -> Dict[str, str]:
        """
        Markup substituted for SIGN_* tokens in templates.

        An empty dict keeps the default visual anchors.
        """
        return {}


# =============================================================================
# REGISTRY
# =============================================================================

ProviderFactory = Callable[[], ESignProvider]

_PROVIDERS: Dict[str, ProviderFactory] = {}


def register_provider(name: str, factory: ProviderFactory) -> None:
    _PROVIDERS[name] = factory
    logger.debug(f"Registered e-sign provider: {name}")


def available_providers() -> List[str]:
    return sorted(_PROVIDERS)


def get_provider(name: str = None) -> ESignProvider:
    name = (name or current_app.config.get('ESIGN_PROVIDER', 'stub')).lower()
    factory = _PROVIDERS.get(name)
    if factory is None:
        raise ConfigurationError(f"Unsupported e-sign provider: {name}")
    return factory()
