"""
Application Document.

The single aggregate persisted by the state store.  Every service reads a
private copy inside a store transaction, mutates it, and commits it back
as one unit.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field

from orthoscan.models.audit import AuditEntry
from orthoscan.models.base import DocumentModel
from orthoscan.models.case import Case
from orthoscan.models.directory import Clinic, Dentist, Patient, PatientDocument
from orthoscan.models.lab import LabItem
from orthoscan.models.replacement_bank import ReplacementBankEntry
from orthoscan.models.scan import Scan
from orthoscan.models.user import User


class AppDocument(DocumentModel):
    """Whole application state.

    ``code_sequences`` maps a treatment-code prefix (``"A"``/``"C"``) to
    the highest number ever issued for it, so numbers survive the removal
    of the record that held them.  It is always re-derivable from the
    cases and scans except for removed records.
    """

    clinics: list[Clinic] = Field(default_factory=list)
    dentists: list[Dentist] = Field(default_factory=list)
    patients: list[Patient] = Field(default_factory=list)
    scans: list[Scan] = Field(default_factory=list)
    cases: list[Case] = Field(default_factory=list)
    lab_items: list[LabItem] = Field(default_factory=list)
    users: list[User] = Field(default_factory=list)
    patient_documents: list[PatientDocument] = Field(default_factory=list)
    replacement_bank: list[ReplacementBankEntry] = Field(default_factory=list)
    audit_logs: list[AuditEntry] = Field(default_factory=list)
    code_sequences: dict[str, int] = Field(default_factory=dict)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_clinic(self, clinic_id: Optional[str]) -> Optional[Clinic]:
        if not clinic_id:
            return None
        return next((item for item in self.clinics if item.id == clinic_id), None)

    def find_scan(self, scan_id: str) -> Optional[Scan]:
        return next((item for item in self.scans if item.id == scan_id), None)

    def find_case(self, case_id: Optional[str]) -> Optional[Case]:
        if not case_id:
            return None
        return next((item for item in self.cases if item.id == case_id), None)

    def find_lab_item(self, item_id: str) -> Optional[LabItem]:
        return next((item for item in self.lab_items if item.id == item_id), None)

    def lab_items_for_case(self, case_id: str) -> list[LabItem]:
        return [item for item in self.lab_items if item.case_id == case_id]

    def bank_entries_for_case(self, case_id: str) -> list[ReplacementBankEntry]:
        return [entry for entry in self.replacement_bank if entry.case_id == case_id]
