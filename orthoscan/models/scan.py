"""
Scan Models.

Pydantic models for intra-oral scan intake records and their attachments.
The same ``Attachment`` shape is deep-copied into ``Case.scan_files`` when
a scan becomes a case.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import Field

from orthoscan.models.base import DocumentModel
from orthoscan.models.enums import (
    ArchCoverage,
    AttachmentArch,
    AttachmentKind,
    AttachmentStatus,
    ProductType,
    RxType,
    ScanStatus,
)


class Attachment(DocumentModel):
    """One file attached to a scan (or the frozen copy held by a case).

    ``is_local`` is ``True`` while the bytes have not reached remote
    storage; ``url`` is then empty and ``file_path`` points at the local
    transient handle.
    """

    id: str
    name: str
    kind: AttachmentKind
    slot_id: Optional[str] = None
    rx_type: Optional[RxType] = None
    arch: Optional[AttachmentArch] = None
    is_local: bool = False
    url: Optional[str] = None
    file_path: Optional[str] = None
    mime: Optional[str] = None
    size: Optional[int] = Field(default=None, ge=0)
    status: AttachmentStatus = AttachmentStatus.OK
    attached_at: Optional[datetime] = None
    note: Optional[str] = None
    flagged_at: Optional[datetime] = None
    flagged_reason: Optional[str] = None
    created_at: datetime


class Scan(DocumentModel):
    """A clinical intake record.

    Linked to at most one case through ``linked_case_id``; once linked the
    status is ``convertido``.
    """

    id: str
    patient_name: str
    patient_id: Optional[str] = None
    dentist_id: Optional[str] = None
    requested_by_dentist_id: Optional[str] = None
    clinic_id: Optional[str] = None
    scan_date: date
    arch: ArchCoverage
    complaint: Optional[str] = None
    dentist_guidance: Optional[str] = None
    notes: Optional[str] = None
    purpose_product_type: Optional[ProductType] = None
    attachments: list[Attachment] = Field(default_factory=list)
    status: ScanStatus = ScanStatus.PENDENTE
    service_order_code: Optional[str] = None
    linked_case_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    def find_attachment(self, attachment_id: str) -> Optional[Attachment]:
        return next((att for att in self.attachments if att.id == attachment_id), None)
