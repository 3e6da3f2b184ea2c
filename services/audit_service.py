"""
Audit Service - Centralized audit trail for compliance documents and envelopes.

record_audit() is called inside the same transaction as the mutation it
describes, so an audit row exists exactly when the change it records does.
"""

from flask import request
from flask_login import current_user

from models import AuditEvent


def get_request_context():
    """
    Extract IP address and user agent from the current request.
    Returns (ip_address, user_agent) tuple.
    """
    ip_address = None
    user_agent = None

    try:
        if request:
            # Get IP, handling proxies
            ip_address = request.headers.get('X-Forwarded-For', request.remote_addr)
            if ip_address and ',' in ip_address:
                ip_address = ip_address.split(',')[0].strip()

            user_agent = request.headers.get('User-Agent', '')[:500]
    except RuntimeError:
        # Outside of request context
        pass

    return ip_address, user_agent


def get_current_actor_id():
    """Get the current user's ID if authenticated."""
    try:
        if current_user and current_user.is_authenticated:
            return current_user.id
    except RuntimeError:
        pass
    return None


def record_audit(session, org_id, entity_type, entity_id, action,
                 after=None, before=None, actor_id=None):
    """
    Add an audit row to the session without committing.

    Args:
        session: The SQLAlchemy session of the enclosing transaction
        org_id: Owning organization
        entity_type: e.g. 'DealDocument', 'DocumentEnvelope'
        entity_id: Primary key of the entity (stored as text)
        action: One of the AuditEvent action constants
        after: Dict snapshot after the change
        before: Dict snapshot before the change, if any
        actor_id: Override for the actor (defaults to current user)

    Returns:
        The pending AuditEvent instance
    """
    ip_address, user_agent = get_request_context()

    if actor_id is None:
        actor_id = get_current_actor_id()

    event = AuditEvent(
        org_id=org_id,
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        before_json=before,
        after_json=after,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    session.add(event)
    return event


# =============================================================================
# QUERIES
# =============================================================================

def get_entity_history(org_id, entity_type, entity_id, limit=100, offset=0):
    """Audit rows for one entity, oldest first."""
    return AuditEvent.query.filter_by(
        org_id=org_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
    ).order_by(AuditEvent.created_at.asc(), AuditEvent.id.asc())\
        .offset(offset).limit(limit).all()


def format_event_for_display(event):
    """Shape an AuditEvent for JSON responses."""
    actor_name = None
    if event.actor:
        actor_name = f"{event.actor.first_name} {event.actor.last_name}"

    return {
        'id': event.id,
        'entity_type': event.entity_type,
        'entity_id': event.entity_id,
        'action': event.action,
        'actor': actor_name or 'System',
        'before': event.before_json,
        'after': event.after_json,
        'created_at': event.created_at.isoformat() if event.created_at else None,
    }
