"""
Domain Event Emission

Events are emitted only after the mutation they describe has committed.
The registered sink hands them to the webhook fan-out subsystem; the default
sink writes an outbox row the delivery worker polls.

Emission is best effort: a sink failure is logged and never propagates to
the request that already committed its state change.
"""

import logging
from typing import Any, Callable, Dict, Optional

from models import db, DomainEvent

logger = logging.getLogger(__name__)

DOCUMENT_GENERATED = 'document.generated'
ENVELOPE_STATUS_CHANGED = 'envelope.statusChanged'

EventSink = Callable[[Dict[str, Any]], None]


def _outbox_sink(event: Dict[str, Any]) -> None:
    row = DomainEvent(
        org_id=event['orgId'],
        event_type=event['eventType'],
        entity_type=event['entityType'],
        entity_id=str(event['entityId']),
        payload_json=event['payload'],
    )
    db.session.add(row)
    db.session.commit()


_sink: EventSink = _outbox_sink


def set_event_sink(sink: Optional[EventSink]) -> None:
    """Replace the sink; None restores the outbox sink."""
    global _sink
    _sink = sink or _outbox_sink


def emit_domain_event(org_id, event_type: str, entity_type: str, entity_id,
                      payload: Dict[str, Any]) -> bool:
    """
    Hand a domain event to the sink.

    Returns:
        True if the sink accepted the event, False if it failed
    """
    event = {
        'orgId': org_id,
        'eventType': event_type,
        'entityType': entity_type,
        'entityId': entity_id,
        'payload': payload,
    }
    try:
        _sink(event)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Failed to emit {event_type} for {entity_type}:{entity_id}: {e}")
        return False

    logger.debug(f"Emitted {event_type} for {entity_type}:{entity_id}")
    return True
