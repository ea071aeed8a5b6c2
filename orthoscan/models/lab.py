"""
Lab Item Model.

One laboratory work order on the production board.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import Field

from orthoscan.models.base import DocumentModel
from orthoscan.models.enums import ArchCoverage, LabPriority, LabRequestKind, LabStatus


class LabItem(DocumentModel):
    """A laboratory work order covering one or more trays of a case.

    The covered range starts at ``tray_number`` and spans the planned
    quantity for the item's arch.  ``source_lab_item_id`` records the
    programmed replenishment an advance order replaced;
    ``rework_of_lab_item_id`` records the order a reconfection repairs.
    """

    id: str
    case_id: Optional[str] = None
    request_code: Optional[str] = None
    request_kind: LabRequestKind = LabRequestKind.PRODUCAO
    arch: ArchCoverage
    tray_number: int = Field(ge=1)
    patient_name: str
    planned_upper_qty: int = Field(default=0, ge=0)
    planned_lower_qty: int = Field(default=0, ge=0)
    planning_defined_at: Optional[datetime] = None
    planned_date: date
    due_date: date
    expected_replacement_date: Optional[date] = None
    status: LabStatus = LabStatus.AGUARDANDO_INICIAR
    priority: LabPriority = LabPriority.MEDIO
    notes: Optional[str] = None
    source_lab_item_id: Optional[str] = None
    rework_of_lab_item_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @property
    def has_production_plan(self) -> bool:
        return self.planned_upper_qty + self.planned_lower_qty > 0

    @property
    def covered_quantity(self) -> int:
        """Number of consecutive trays this order produces (at least one)."""
        if self.arch == ArchCoverage.SUPERIOR:
            qty = self.planned_upper_qty
        elif self.arch == ArchCoverage.INFERIOR:
            qty = self.planned_lower_qty
        else:
            qty = max(self.planned_upper_qty, self.planned_lower_qty)
        return max(1, qty)
