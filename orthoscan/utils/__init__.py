"""Shared utility functions for the OrthoScan lab core.

Convenience re-exports so consumers can import directly from
``orthoscan.utils`` (e.g. ``from orthoscan.utils import log_audit_event``).
"""

from orthoscan.utils.audit import AuditEvent, log_audit_event
from orthoscan.utils.general import add_days, new_id, now_utc, today
from orthoscan.utils.string_helpers import sanitize_file_name, slugify_owner

__all__ = [
    "AuditEvent",
    "add_days",
    "log_audit_event",
    "new_id",
    "now_utc",
    "sanitize_file_name",
    "slugify_owner",
    "today",
]
