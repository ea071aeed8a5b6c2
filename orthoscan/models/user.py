"""
User Model.

The acting user handed to every service call.  Authentication itself is
handled outside this package; only the role matters to the workflow core.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from orthoscan.models.base import DocumentModel
from orthoscan.models.enums import UserRole


class User(DocumentModel):
    """Represents a user account.

    Users are never hard-deleted; ``is_active`` is cleared instead so the
    audit trail keeps resolving names.
    """

    id: str
    email: str
    name: str
    role: UserRole
    is_active: bool = True
    linked_dentist_id: Optional[str] = None
    linked_clinic_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
