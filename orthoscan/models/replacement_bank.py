"""
Replacement Bank Entry Model.

One row per contracted plate per arch.  The summary shown to operators is
always recomputed from these rows.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import Field

from orthoscan.models.base import DocumentModel
from orthoscan.models.enums import BankArch, BankEntryStatus


class ReplacementBankEntry(DocumentModel):
    """One plate owed to the patient for one arch.

    ``arcada`` and ``placaNumero`` are the persisted key names.
    """

    id: str
    case_id: str
    arch: BankArch = Field(alias="arcada")
    plate_number: int = Field(alias="placaNumero", ge=1)
    status: BankEntryStatus = BankEntryStatus.DISPONIVEL
    source_lab_item_id: Optional[str] = None
    delivered_at: Optional[date] = None
    created_at: datetime
    updated_at: datetime
