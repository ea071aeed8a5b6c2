"""
Replacement Bank Ledger.

Per-case ledger of plates owed to the patient: one entry per contracted
(arch, plate number).  Entries move ``disponivel`` -> ``em_producao`` when
a lab order starts, ``entregue`` when a delivery lot covers them, and
``defeituosa`` on rework, which restores a fresh ``disponivel`` entry for
the same plate.

The module-level functions operate on a document already held inside a
store transaction, so the lab pipeline and case lifecycle can reconcile
the ledger in the same commit as the change that caused it.
``ReplacementBankService`` exposes the public, transaction-owning API.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from orthoscan.auth import CurrentUser
from orthoscan.config import AppConfig
from orthoscan.logger import StructuredLogger
from orthoscan.models.case import Case
from orthoscan.models.document import AppDocument
from orthoscan.models.enums import ArchCoverage, BankArch, BankEntryStatus, Permission
from orthoscan.models.lab import LabItem
from orthoscan.models.replacement_bank import ReplacementBankEntry
from orthoscan.models.service_models import ReplacementBankSummary, ServiceResult
from orthoscan.services.base_service import BaseService
from orthoscan.store import DocumentStore
from orthoscan.utils.general import new_id, now_utc


class InsufficientBalanceError(Exception):
    """Raised when a lab order needs more plates than the bank holds."""


def arches_for(coverage: ArchCoverage) -> list[BankArch]:
    if coverage == ArchCoverage.SUPERIOR:
        return [BankArch.SUPERIOR]
    if coverage == ArchCoverage.INFERIOR:
        return [BankArch.INFERIOR]
    return [BankArch.SUPERIOR, BankArch.INFERIOR]


def _new_entry(
    case_id: str,
    arch: BankArch,
    plate_number: int,
    timestamp: datetime,
) -> ReplacementBankEntry:
    return ReplacementBankEntry(
        id=new_id("bank"),
        case_id=case_id,
        arch=arch,
        plate_number=plate_number,
        status=BankEntryStatus.DISPONIVEL,
        created_at=timestamp,
        updated_at=timestamp,
    )


# ---------------------------------------------------------------------------
# Document-level operations
# ---------------------------------------------------------------------------

def ensure_entries(document: AppDocument, case: Case, timestamp: datetime) -> int:
    """Create the missing (arch, plate) entries for the case totals.

    Returns the number of entries created; a second call returns ``0``.
    """
    existing = {
        (entry.arch, entry.plate_number)
        for entry in document.bank_entries_for_case(case.id)
    }
    created = 0
    for arch in BankArch:
        for plate_number in range(1, case.total_for_arch(arch) + 1):
            if (arch, plate_number) in existing:
                continue
            document.replacement_bank.append(
                _new_entry(case.id, arch, plate_number, timestamp)
            )
            created += 1
    return created


def debit_for_lab_start(
    document: AppDocument,
    case: Case,
    item: LabItem,
    timestamp: datetime,
) -> int:
    """Consume ``disponivel`` plates for a lab order entering production.

    Applies to aligner products only and at most once per lab order.  Each
    arch the order covers consumes its planned quantity, or one plate when
    no quantity was planned for it.  Arches outside the case plan are
    skipped.  The lowest-numbered available plates are taken first.

    Returns the number of entries debited.

    Raises:
        InsufficientBalanceError: If any arch lacks enough available
            plates.  Nothing is debited in that case.
    """
    if not case.product_type.is_aligner:
        return 0
    if any(entry.source_lab_item_id == item.id for entry in document.bank_entries_for_case(case.id)):
        return 0
    ensure_entries(document, case, timestamp)
    entries = document.bank_entries_for_case(case.id)

    planned = {
        BankArch.SUPERIOR: item.planned_upper_qty,
        BankArch.INFERIOR: item.planned_lower_qty,
    }
    selections: list[ReplacementBankEntry] = []
    for arch in arches_for(item.arch):
        if case.total_for_arch(arch) <= 0:
            continue
        quantity = planned[arch] if planned[arch] > 0 else 1
        available: dict[int, ReplacementBankEntry] = {}
        for entry in sorted(entries, key=lambda entry: entry.plate_number):
            if entry.arch == arch and entry.status == BankEntryStatus.DISPONIVEL:
                available.setdefault(entry.plate_number, entry)
        if len(available) < quantity:
            raise InsufficientBalanceError(
                f"Insufficient replacement bank balance for arch '{arch}': "
                f"{quantity} requested, {len(available)} available."
            )
        selections.extend(list(available.values())[:quantity])

    for entry in selections:
        entry.status = BankEntryStatus.EM_PRODUCAO
        entry.source_lab_item_id = item.id
        entry.updated_at = timestamp
    return len(selections)


def release_for_lab_item(document: AppDocument, item_id: str, timestamp: datetime) -> int:
    """Return plates still in production for a removed lab order to the balance."""
    released = 0
    for entry in document.replacement_bank:
        if entry.source_lab_item_id == item_id and entry.status == BankEntryStatus.EM_PRODUCAO:
            entry.status = BankEntryStatus.DISPONIVEL
            entry.source_lab_item_id = None
            entry.updated_at = timestamp
            released += 1
    return released


def mark_delivered_by_lot(
    document: AppDocument,
    case: Case,
    coverage: ArchCoverage,
    from_tray: int,
    to_tray: int,
    delivered_at: date,
    timestamp: datetime,
) -> int:
    """Mark entries covered by a delivery lot as ``entregue``.

    Defective entries are left as they are.
    """
    ensure_entries(document, case, timestamp)
    arches = set(arches_for(coverage))
    marked = 0
    for entry in document.bank_entries_for_case(case.id):
        if entry.arch not in arches or not from_tray <= entry.plate_number <= to_tray:
            continue
        if entry.status in (BankEntryStatus.DEFEITUOSA, BankEntryStatus.ENTREGUE):
            continue
        entry.status = BankEntryStatus.ENTREGUE
        entry.delivered_at = delivered_at
        entry.updated_at = timestamp
        marked += 1
    return marked


def register_rework(
    document: AppDocument,
    case: Case,
    tray_number: int,
    coverage: ArchCoverage,
    timestamp: datetime,
    source_lab_item_id: Optional[str] = None,
) -> tuple[int, int]:
    """Flag the plate as defective and restore a fresh available entry.

    One entry is restored per flagged entry; when nothing matched, one is
    restored per covered arch so the patient is still owed the plate.

    Returns ``(defective, restored)`` counts.
    """
    ensure_entries(document, case, timestamp)
    flagged = [
        entry for entry in document.bank_entries_for_case(case.id)
        if entry.plate_number == tray_number
        and entry.arch in arches_for(coverage)
        and entry.status != BankEntryStatus.DEFEITUOSA
    ]
    for entry in flagged:
        entry.status = BankEntryStatus.DEFEITUOSA
        entry.source_lab_item_id = source_lab_item_id or entry.source_lab_item_id
        entry.updated_at = timestamp

    restore_arches = [entry.arch for entry in flagged] or arches_for(coverage)
    for arch in restore_arches:
        restored_entry = _new_entry(case.id, arch, tray_number, timestamp)
        restored_entry.source_lab_item_id = source_lab_item_id
        document.replacement_bank.append(restored_entry)
    return len(flagged), len(restore_arches)


def summarize(document: AppDocument, case: Case) -> ReplacementBankSummary:
    entries = document.bank_entries_for_case(case.id)

    def count(*statuses: BankEntryStatus) -> int:
        return sum(1 for entry in entries if entry.status in statuses)

    return ReplacementBankSummary(
        case_id=case.id,
        total_contracted=len(entries) - count(BankEntryStatus.DEFEITUOSA),
        in_production_or_delivered=count(BankEntryStatus.EM_PRODUCAO, BankEntryStatus.ENTREGUE),
        remaining_balance=count(BankEntryStatus.DISPONIVEL),
        rework=count(BankEntryStatus.REWORK),
        defective=count(BankEntryStatus.DEFEITUOSA),
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class ReplacementBankService(BaseService):
    """Public entry points for the replacement bank ledger."""

    def __init__(
        self,
        store: DocumentStore,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(store, config, logger)

    def ensure_replacement_bank_for_case(
        self,
        case_id: str,
        current_user: Optional[CurrentUser] = None,
    ) -> ServiceResult[int]:
        """Create the missing entries for a case; ``data`` is the created count."""
        denied = self._forbidden(current_user, Permission.CASES_WRITE)
        if denied:
            return denied
        try:
            with self._store.transaction() as tx:
                case = tx.document.find_case(case_id)
                if case is None:
                    return ServiceResult(success=False, error="Case not found.", status_code=404)
                created = ensure_entries(tx.document, case, now_utc())
                if created:
                    tx.commit()
                    self._logger.info(
                        "Replacement bank entries created for case %s: %d", case_id, created,
                    )
            return ServiceResult(success=True, data=created)
        except Exception as exc:
            return self._unexpected(f"ensure_replacement_bank_for_case({case_id})", exc)

    def get_replacement_bank_summary(
        self,
        case_id: str,
        current_user: Optional[CurrentUser] = None,
    ) -> ServiceResult[ReplacementBankSummary]:
        """Recompute the case balance.

        Missing entries are created first, so a case that has not started
        production reports its whole contracted total as remaining.
        """
        denied = self._forbidden(current_user, Permission.CASES_READ)
        if denied:
            return denied
        try:
            with self._store.transaction() as tx:
                case = tx.document.find_case(case_id)
                if case is None:
                    return ServiceResult(success=False, error="Case not found.", status_code=404)
                if ensure_entries(tx.document, case, now_utc()):
                    tx.commit()
                summary = summarize(tx.document, case)
            return ServiceResult(success=True, data=summary)
        except Exception as exc:
            return self._unexpected(f"get_replacement_bank_summary({case_id})", exc)
