from __future__ import annotations

"""
Data Models Package.

Re-exports the document models for short imports:
    from orthoscan.models import AppDocument, Case, LabItem, Scan
    from orthoscan.models import CasePhase, TrayState, LabStatus
"""

from orthoscan.models.audit import AuditEntry
from orthoscan.models.case import (
    Budget,
    Case,
    Contract,
    DeliveryLot,
    Installation,
    PatientDeliveryLot,
    Tray,
)
from orthoscan.models.directory import Clinic, Dentist, Patient, PatientDocument
from orthoscan.models.document import AppDocument
from orthoscan.models.enums import (
    ArchCoverage,
    BankArch,
    BankEntryStatus,
    CasePhase,
    ContractStatus,
    LabRequestKind,
    LabStatus,
    ScanStatus,
    TrayState,
    UserRole,
)
from orthoscan.models.lab import LabItem
from orthoscan.models.replacement_bank import ReplacementBankEntry
from orthoscan.models.scan import Attachment, Scan
from orthoscan.models.user import User

__all__ = [
    "AppDocument",
    "ArchCoverage",
    "Attachment",
    "AuditEntry",
    "BankArch",
    "BankEntryStatus",
    "Budget",
    "Case",
    "CasePhase",
    "Clinic",
    "Contract",
    "ContractStatus",
    "DeliveryLot",
    "Dentist",
    "Installation",
    "LabItem",
    "LabRequestKind",
    "LabStatus",
    "Patient",
    "PatientDeliveryLot",
    "PatientDocument",
    "ReplacementBankEntry",
    "Scan",
    "ScanStatus",
    "Tray",
    "TrayState",
    "User",
    "UserRole",
]
