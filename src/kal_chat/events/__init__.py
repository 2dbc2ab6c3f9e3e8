"""Event names and bus used to notify the UI collaborator."""

from .bus import Event, EventBus

ATTACHMENT_ADDED = "attachment.added"
ATTACHMENT_FAILED = "attachment.failed"
SESSION_CREATED = "session.created"
SESSION_DELETED = "session.deleted"
SESSION_SELECTED = "session.selected"
TURN_STARTED = "turn.started"
TURN_COMPLETED = "turn.completed"
TURN_FAILED = "turn.failed"
TURN_CANCELLED = "turn.cancelled"

__all__ = [
    "ATTACHMENT_ADDED",
    "ATTACHMENT_FAILED",
    "Event",
    "EventBus",
    "SESSION_CREATED",
    "SESSION_DELETED",
    "SESSION_SELECTED",
    "TURN_CANCELLED",
    "TURN_COMPLETED",
    "TURN_FAILED",
    "TURN_STARTED",
]
