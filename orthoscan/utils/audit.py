"""
Structured Audit Logging Utility.

Every state change is emitted as a structured JSON log line and, when a
document is supplied, recorded in that document's audit trail so the
entry commits (or is discarded) together with the change it describes.
"""

from __future__ import annotations

import json
from typing import Optional, Union

from pydantic import BaseModel, Field

from orthoscan.logger import StructuredLogger
from orthoscan.models.audit import AuditEntry
from orthoscan.models.document import AppDocument
from orthoscan.models.enums import AuditEntity
from orthoscan.models.user import User
from orthoscan.utils.general import new_id, now_utc

__all__ = ["AuditEvent", "DEFAULT_MAX_ENTRIES", "append_audit_entry", "log_audit_event"]

DEFAULT_MAX_ENTRIES: int = 2000

# Flat scalars only; nested structures belong in a model of their own.
DetailValue = Union[str, int, float, bool, None]


class AuditEvent(BaseModel):
    """Schema-validated representation of one audit log line."""

    timestamp: str
    action: str
    entity_type: str
    entity_id: str
    user_id: str
    message: Optional[str] = None
    details: dict[str, DetailValue] = Field(default_factory=dict)


def append_audit_entry(
    document: AppDocument,
    entry: AuditEntry,
    max_entries: int = DEFAULT_MAX_ENTRIES,
) -> None:
    """Insert *entry* at the head of the document trail, keeping at most *max_entries*."""
    document.audit_logs = [entry, *document.audit_logs][:max_entries]


def log_audit_event(
    logger: StructuredLogger,
    action: str,
    entity_type: AuditEntity,
    entity_id: str,
    user: Optional[User],
    message: Optional[str] = None,
    details: Optional[dict[str, DetailValue]] = None,
    document: Optional[AppDocument] = None,
    max_entries: int = DEFAULT_MAX_ENTRIES,
) -> AuditEntry:
    """Log a structured JSON audit event and record it in *document*.

    Args:
        logger: The logger instance to write to.
        action: Dotted action tag (e.g. ``"case.create_from_scan"``,
            ``"lab.move"``).
        entity_type: Kind of entity affected.
        entity_id: Identifier of the affected entity.
        user: The acting user, or ``None`` for system sweeps.
        message: Human-readable description shown in the UI trail.
        details: Optional additional context for the log line only.
        document: When given, the entry is prepended to
            ``document.audit_logs``.  The caller commits the document.
        max_entries: Trail length cap applied on every append.

    Returns:
        The ``AuditEntry`` that was built.
    """
    timestamp = now_utc()
    entry = AuditEntry(
        id=new_id("audit"),
        at=timestamp,
        entity=entity_type,
        entity_id=entity_id,
        action=action,
        user_id=user.id if user else None,
        user_name=user.name if user else None,
        user_email=user.email if user else None,
        message=message,
    )
    event = AuditEvent(
        timestamp=timestamp.isoformat(),
        action=action,
        entity_type=str(entity_type),
        entity_id=entity_id,
        user_id=user.id if user else "system",
        message=message,
        details=details or {},
    )
    logger.info("AUDIT: %s", json.dumps(event.model_dump(), default=str))

    # The trail is best-effort: a failed append is logged and never
    # propagated to the business operation.
    if document is not None:
        try:
            append_audit_entry(document, entry, max_entries)
        except Exception as exc:
            logger.warning("Failed to append audit entry %s: %s", entry.id, exc)

    return entry
