"""
Service Layer Data Transfer Objects.

Pydantic models for validated input/output at service boundaries.
Callers build these from UI or import payloads; services never accept
raw dicts.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from orthoscan.models.enums import (
    AlertSeverity,
    AlertType,
    ArchCoverage,
    AttachmentArch,
    AttachmentKind,
    AttachmentStatus,
    LabPriority,
    LabRequestKind,
    LabStatus,
    ProductType,
    RxType,
    ScanStatus,
)
from orthoscan.models.lab import LabItem

T = TypeVar("T")

__all__ = [
    "AdvanceOrderInput",
    "AttachmentInput",
    "BudgetInput",
    "CaseFromScanInput",
    "CaseSupplySummary",
    "DeliveryLotInput",
    "InstallationInput",
    "LabItemInput",
    "LabItemUpdateInput",
    "LabOrderResult",
    "PatchInput",
    "ReplacementBankSummary",
    "ReplenishmentAlert",
    "ReworkResult",
    "ScanCreateInput",
    "ScanUpdateInput",
    "ServiceResult",
]


# ---------------------------------------------------------------------------
# Scan intake inputs
# ---------------------------------------------------------------------------

class AttachmentInput(BaseModel):
    """A file being attached to a scan.

    When ``content`` carries the raw bytes the intake service tries to
    upload them first; a failed upload keeps the attachment local.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    name: str = Field(min_length=1)
    kind: AttachmentKind
    slot_id: Optional[str] = None
    rx_type: Optional[RxType] = None
    arch: Optional[AttachmentArch] = None
    mime: Optional[str] = None
    size: Optional[int] = Field(default=None, ge=0)
    url: Optional[str] = None
    file_path: Optional[str] = None
    is_local: bool = True
    status: AttachmentStatus = AttachmentStatus.OK
    attached_at: Optional[datetime] = None
    note: Optional[str] = None
    content: Optional[bytes] = Field(default=None, exclude=True, repr=False)


class ScanCreateInput(BaseModel):
    """Validated input for ``ScanIntakeService.create_scan``."""

    model_config = ConfigDict(populate_by_name=True)

    patient_name: str = Field(min_length=1)
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
    attachments: list[AttachmentInput] = Field(default_factory=list)
    status: ScanStatus = ScanStatus.PENDENTE
    service_order_code: Optional[str] = Field(default=None, pattern=r"^[AC]-\d{4}$")


class PatchInput(BaseModel):
    """Base for partial updates.

    ``REQUIRED`` names fields the stored record cannot hold as ``None``; an
    explicit ``None`` there is dropped instead of clearing the value.
    """

    REQUIRED: ClassVar[frozenset[str]] = frozenset()

    def changes(self) -> dict[str, object]:
        """Fields explicitly set by the caller."""
        return {
            field: value
            for field, value in self.model_dump(exclude_unset=True).items()
            if value is not None or field not in self.REQUIRED
        }


class ScanUpdateInput(PatchInput):
    """Partial scan update.  Only fields explicitly set are applied."""

    REQUIRED: ClassVar[frozenset[str]] = frozenset({"patient_name", "scan_date", "arch"})

    patient_name: Optional[str] = Field(default=None, min_length=1)
    patient_id: Optional[str] = None
    dentist_id: Optional[str] = None
    clinic_id: Optional[str] = None
    scan_date: Optional[date] = None
    arch: Optional[ArchCoverage] = None
    complaint: Optional[str] = None
    dentist_guidance: Optional[str] = None
    notes: Optional[str] = None
    purpose_product_type: Optional[ProductType] = None


class CaseFromScanInput(BaseModel):
    """Planning numbers supplied when an approved scan becomes a case."""

    total_trays_upper: int = Field(default=0, ge=0)
    total_trays_lower: int = Field(default=0, ge=0)
    change_every_days: int = Field(ge=1)
    attachment_bonding_tray: bool = False
    planning_note: Optional[str] = None


# ---------------------------------------------------------------------------
# Case lifecycle inputs
# ---------------------------------------------------------------------------

class BudgetInput(BaseModel):
    value: Decimal = Field(ge=0)
    notes: Optional[str] = None


class DeliveryLotInput(BaseModel):
    """Trays handed to the dentist.

    Range and date checks are made by the service so each violation gets
    its own message.
    """

    arch: ArchCoverage
    from_tray: int
    to_tray: int
    delivered_to_doctor_at: Optional[date] = None
    note: Optional[str] = None


class InstallationInput(BaseModel):
    """Trays handed to the patient since the previous registration."""

    installed_at: Optional[date] = None
    note: Optional[str] = None
    delivered_upper: int = 0
    delivered_lower: int = 0


# ---------------------------------------------------------------------------
# Lab pipeline inputs
# ---------------------------------------------------------------------------

class LabItemInput(BaseModel):
    """Validated input for ``LabPipelineService.add_lab_item``.

    ``status`` is a request only: the service forces ``em_producao`` when
    any planned quantity is positive and ``aguardando_iniciar`` otherwise.
    """

    case_id: Optional[str] = None
    arch: ArchCoverage = ArchCoverage.AMBOS
    tray_number: int = Field(ge=1)
    patient_name: str = Field(min_length=1)
    planned_upper_qty: int = Field(default=0, ge=0)
    planned_lower_qty: int = Field(default=0, ge=0)
    planned_date: date
    due_date: date
    expected_replacement_date: Optional[date] = None
    status: LabStatus = LabStatus.AGUARDANDO_INICIAR
    priority: LabPriority = LabPriority.MEDIO
    request_kind: LabRequestKind = LabRequestKind.PRODUCAO
    request_code: Optional[str] = None
    notes: Optional[str] = None


class LabItemUpdateInput(PatchInput):
    """Partial lab item update.  Only fields explicitly set are applied."""

    REQUIRED: ClassVar[frozenset[str]] = frozenset({
        "arch", "tray_number", "patient_name", "planned_upper_qty", "planned_lower_qty",
        "planned_date", "due_date", "status", "priority",
    })

    arch: Optional[ArchCoverage] = None
    tray_number: Optional[int] = Field(default=None, ge=1)
    patient_name: Optional[str] = Field(default=None, min_length=1)
    planned_upper_qty: Optional[int] = Field(default=None, ge=0)
    planned_lower_qty: Optional[int] = Field(default=None, ge=0)
    planned_date: Optional[date] = None
    due_date: Optional[date] = None
    status: Optional[LabStatus] = None
    priority: Optional[LabPriority] = None
    notes: Optional[str] = None


class AdvanceOrderInput(BaseModel):
    planned_upper_qty: int = Field(ge=0)
    planned_lower_qty: int = Field(ge=0)
    due_date: Optional[date] = None


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------

class LabOrderResult(BaseModel):
    """Output of ``generate_lab_order``; ``already_exists`` marks a reused order."""

    item: LabItem
    already_exists: bool = False


class ReworkResult(BaseModel):
    item: LabItem
    defective: int
    restored: int


class ReplacementBankSummary(BaseModel):
    """Per-case replacement bank counts.

    ``total_contracted`` excludes defective entries, since every defective
    plate is matched by a restored ``disponivel`` entry.
    """

    case_id: str
    total_contracted: int
    in_production_or_delivered: int
    remaining_balance: int
    rework: int
    defective: int


class CaseSupplySummary(BaseModel):
    total: int
    delivered: int
    remaining: int
    next_tray: Optional[int] = None
    next_due_date: Optional[date] = None


class ReplenishmentAlert(BaseModel):
    id: str
    case_id: str
    type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    due_date: date
    days_left: int


# ---------------------------------------------------------------------------
# Generic service models
# ---------------------------------------------------------------------------

class ServiceResult(BaseModel, Generic[T]):
    """
    Standard service return envelope.

    All service methods return this, providing a consistent contract
    for the calling layer.  ``status_code`` follows HTTP conventions:
    400 validation, 403 permission, 404 not found, 409 state conflict,
    500 unexpected failure.
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    status_code: int = 200
