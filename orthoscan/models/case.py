"""
Case Models.

Pydantic models for the aligner treatment case aggregate: trays, budget,
contract, dentist delivery lots and the patient installation record.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from orthoscan.models.base import DocumentModel
from orthoscan.models.enums import (
    ArchCoverage,
    BankArch,
    CasePhase,
    ContractStatus,
    ProductType,
    TrayState,
    TreatmentOrigin,
)
from orthoscan.models.scan import Attachment


class Tray(DocumentModel):
    """One aligner in the case sequence.  ``tray_number`` is 1-based."""

    tray_number: int = Field(ge=1)
    state: TrayState = TrayState.PENDENTE
    due_date: Optional[date] = None
    delivered_at: Optional[date] = None
    notes: Optional[str] = None


class Budget(DocumentModel):
    value: Optional[Decimal] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class Contract(DocumentModel):
    """Commercial gate.  No lab order is accepted until ``aprovado``."""

    status: ContractStatus = ContractStatus.PENDENTE
    approved_at: Optional[datetime] = None
    notes: Optional[str] = None


class DeliveryLot(DocumentModel):
    """A contiguous range of trays handed to the dentist."""

    id: str
    arch: ArchCoverage
    from_tray: int = Field(ge=1)
    to_tray: int = Field(ge=1)
    quantity: int = Field(ge=1)
    delivered_to_doctor_at: date
    note: Optional[str] = None
    created_at: datetime


class PatientDeliveryLot(DocumentModel):
    """A range of trays handed from the dentist to the patient."""

    id: str
    arch: BankArch
    from_tray: int = Field(ge=1)
    to_tray: int = Field(ge=1)
    quantity: int = Field(ge=1)
    delivered_at: date
    note: Optional[str] = None
    created_at: datetime


class Installation(DocumentModel):
    """Cumulative patient delivery record.

    ``delivered_upper`` and ``delivered_lower`` are running totals; each
    registration appends the newly delivered ranges to
    ``patient_delivery_lots``.
    """

    installed_at: date
    note: Optional[str] = None
    delivered_upper: int = Field(default=0, ge=0)
    delivered_lower: int = Field(default=0, ge=0)
    patient_delivery_lots: list[PatientDeliveryLot] = Field(default_factory=list)


class Case(DocumentModel):
    """The aligner treatment record.

    ``id`` equals ``treatment_code``; both are fixed at creation.  Cases
    are never hard-deleted.
    """

    id: str
    treatment_code: str
    treatment_origin: TreatmentOrigin
    patient_name: str
    patient_id: Optional[str] = None
    dentist_id: Optional[str] = None
    requested_by_dentist_id: Optional[str] = None
    clinic_id: Optional[str] = None
    product_type: ProductType = ProductType.ALINHADOR_12M
    scan_date: date
    arch: ArchCoverage = ArchCoverage.AMBOS
    total_trays: int = Field(ge=0)
    total_trays_upper: int = Field(default=0, ge=0)
    total_trays_lower: int = Field(default=0, ge=0)
    change_every_days: int = Field(default=0, ge=0)
    attachment_bonding_tray: bool = False
    phase: CasePhase = CasePhase.PLANEJAMENTO
    budget: Optional[Budget] = None
    contract: Contract = Field(default_factory=Contract)
    trays: list[Tray] = Field(default_factory=list)
    delivery_lots: list[DeliveryLot] = Field(default_factory=list)
    installation: Optional[Installation] = None
    scan_files: list[Attachment] = Field(default_factory=list)
    source_scan_id: Optional[str] = None
    complaint: Optional[str] = None
    dentist_guidance: Optional[str] = None
    planning_note: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    @property
    def contract_approved(self) -> bool:
        return self.contract.status == ContractStatus.APROVADO

    def find_tray(self, tray_number: int) -> Optional[Tray]:
        return next((tray for tray in self.trays if tray.tray_number == tray_number), None)

    def total_for_arch(self, arch: BankArch) -> int:
        """Contracted trays for one arch.

        Cases created without a split keep only ``total_trays``; that
        total then applies to every arch the case covers.
        """
        if arch == BankArch.SUPERIOR:
            if self.arch == ArchCoverage.INFERIOR:
                return 0
            return self.total_trays_upper or (self.total_trays if not self.total_trays_lower else 0)
        if self.arch == ArchCoverage.SUPERIOR:
            return 0
        return self.total_trays_lower or (self.total_trays if not self.total_trays_upper else 0)

    def all_trays_delivered(self) -> bool:
        return bool(self.trays) and all(tray.state == TrayState.ENTREGUE for tray in self.trays)
