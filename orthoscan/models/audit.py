"""
Audit Entry Model.

The persisted, user-facing audit trail kept inside the application
document.  The JSON log line emitted alongside each entry is modelled by
``orthoscan.utils.audit.AuditEvent``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from orthoscan.models.base import DocumentModel
from orthoscan.models.enums import AuditEntity


class AuditEntry(DocumentModel):
    """Append-only.  The document keeps entries newest first."""

    id: str
    at: datetime
    entity: AuditEntity
    entity_id: str
    action: str
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    message: Optional[str] = None
