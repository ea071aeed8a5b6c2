"""
Case Lifecycle Service.

Owns the case phase machine, the per-tray state machine, deliveries to the
dentist (delivery lots), deliveries to the patient (installation) and
rework requests.

Phase order::

    planejamento -> orcamento -> contrato_pendente -> contrato_aprovado
                 -> em_producao -> finalizado

Operator actions move the commercial phases; production activity and
deliveries move the rest automatically.  Phases never move backwards.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from orthoscan.auth import CurrentUser
from orthoscan.config import AppConfig
from orthoscan.logger import StructuredLogger
from orthoscan.models.case import (
    Budget,
    Case,
    DeliveryLot,
    Installation,
    PatientDeliveryLot,
)
from orthoscan.models.enums import (
    ArchCoverage,
    AttachmentStatus,
    AuditEntity,
    BankArch,
    CasePhase,
    ContractStatus,
    LabPriority,
    LabRequestKind,
    LabStatus,
    Permission,
    TrayState,
)
from orthoscan.models.lab import LabItem
from orthoscan.models.document import AppDocument
from orthoscan.models.service_models import (
    BudgetInput,
    DeliveryLotInput,
    InstallationInput,
    ReworkResult,
    ServiceResult,
)
from orthoscan.services import replacement_bank
from orthoscan.services.base_service import BaseService
from orthoscan.services.codes import next_request_code
from orthoscan.services.transition_rules import can_advance_phase, tray_transition_error
from orthoscan.store import DocumentStore
from orthoscan.utils.general import add_days, new_id, now_utc
from orthoscan.utils.general import today as utc_today


def has_production_order(document: AppDocument, case_id: str) -> bool:
    return any(
        item.request_kind == LabRequestKind.PRODUCAO
        for item in document.lab_items_for_case(case_id)
    )


def advance_phase(case: Case, target: CasePhase, timestamp: datetime) -> bool:
    if not can_advance_phase(case.phase, target):
        return False
    case.phase = target
    case.updated_at = timestamp
    return True


def refresh_phase_from_trays(case: Case, timestamp: datetime) -> None:
    """Finish a case whose trays were all delivered; otherwise mark any
    production or delivery activity as ``em_producao``."""
    if case.all_trays_delivered():
        advance_phase(case, CasePhase.FINALIZADO, timestamp)
    elif any(tray.state != TrayState.PENDENTE for tray in case.trays):
        advance_phase(case, CasePhase.EM_PRODUCAO, timestamp)


def delivered_to_dentist(case: Case) -> dict[BankArch, int]:
    """Trays handed to the dentist per arch; an ``ambos`` lot counts for both."""
    totals = {BankArch.SUPERIOR: 0, BankArch.INFERIOR: 0}
    for lot in case.delivery_lots:
        for arch in replacement_bank.arches_for(lot.arch):
            totals[arch] += lot.quantity
    return totals


class CaseLifecycleService(BaseService):
    """Case phase, tray, delivery and rework operations."""

    def __init__(
        self,
        store: DocumentStore,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(store, config, logger)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_cases(
        self,
        current_user: Optional[CurrentUser] = None,
    ) -> ServiceResult[list[Case]]:
        denied = self._forbidden(current_user, Permission.CASES_READ)
        if denied:
            return denied
        return ServiceResult(success=True, data=self._store.load().cases)

    def get_case(
        self,
        case_id: str,
        current_user: Optional[CurrentUser] = None,
    ) -> ServiceResult[Case]:
        denied = self._forbidden(current_user, Permission.CASES_READ)
        if denied:
            return denied
        case = self._store.load().find_case(case_id)
        if case is None:
            return ServiceResult(success=False, error="Case not found.", status_code=404)
        return ServiceResult(success=True, data=case)

    # ------------------------------------------------------------------
    # Commercial phases
    # ------------------------------------------------------------------

    def start_budget(
        self,
        case_id: str,
        current_user: Optional[CurrentUser],
    ) -> ServiceResult[Case]:
        """``planejamento`` -> ``orcamento``."""
        denied = self._forbidden(current_user, Permission.CASES_WRITE)
        if denied:
            return denied
        try:
            with self._store.transaction() as tx:
                case = tx.document.find_case(case_id)
                if case is None:
                    return ServiceResult(success=False, error="Case not found.", status_code=404)
                if case.phase != CasePhase.PLANEJAMENTO:
                    return ServiceResult(
                        success=False,
                        error=f"Budget can only start from 'planejamento' (current: '{case.phase}').",
                        status_code=409,
                    )
                advance_phase(case, CasePhase.ORCAMENTO, now_utc())
                self._audit(
                    tx.document, "case.budget_start", AuditEntity.CASE, case.id, current_user,
                    f"Budget started for case {case.treatment_code}.",
                )
                tx.commit()
            return ServiceResult(success=True, data=case)
        except Exception as exc:
            return self._unexpected(f"start_budget({case_id})", exc)

    def close_budget(
        self,
        case_id: str,
        payload: BudgetInput,
        current_user: Optional[CurrentUser],
    ) -> ServiceResult[Case]:
        """Record the budget value; ``orcamento`` -> ``contrato_pendente``."""
        denied = self._forbidden(current_user, Permission.CASES_WRITE)
        if denied:
            return denied
        try:
            with self._store.transaction() as tx:
                case = tx.document.find_case(case_id)
                if case is None:
                    return ServiceResult(success=False, error="Case not found.", status_code=404)
                if case.phase != CasePhase.ORCAMENTO:
                    return ServiceResult(
                        success=False,
                        error=f"Budget can only be closed from 'orcamento' (current: '{case.phase}').",
                        status_code=409,
                    )
                timestamp = now_utc()
                case.budget = Budget(value=payload.value, notes=payload.notes, created_at=timestamp)
                case.contract.status = ContractStatus.PENDENTE
                advance_phase(case, CasePhase.CONTRATO_PENDENTE, timestamp)
                self._audit(
                    tx.document, "case.budget_close", AuditEntity.CASE, case.id, current_user,
                    f"Budget closed for case {case.treatment_code}: {payload.value}.",
                )
                tx.commit()
            return ServiceResult(success=True, data=case)
        except Exception as exc:
            return self._unexpected(f"close_budget({case_id})", exc)

    def approve_contract(
        self,
        case_id: str,
        current_user: Optional[CurrentUser],
        notes: Optional[str] = None,
    ) -> ServiceResult[Case]:
        """Approve the contract, unlocking lab orders for the case."""
        denied = self._forbidden(current_user, Permission.CASES_WRITE)
        if denied:
            return denied
        try:
            with self._store.transaction() as tx:
                case = tx.document.find_case(case_id)
                if case is None:
                    return ServiceResult(success=False, error="Case not found.", status_code=404)
                if case.contract_approved:
                    return ServiceResult(
                        success=False, error="Contract is already approved.", status_code=409,
                    )
                timestamp = now_utc()
                case.contract.status = ContractStatus.APROVADO
                case.contract.approved_at = timestamp
                if notes:
                    case.contract.notes = notes.strip()
                advance_phase(case, CasePhase.CONTRATO_APROVADO, timestamp)
                case.updated_at = timestamp
                self._audit(
                    tx.document, "case.contract_approve", AuditEntity.CASE, case.id, current_user,
                    f"Contract approved for case {case.treatment_code}.",
                )
                tx.commit()
            return ServiceResult(success=True, data=case)
        except Exception as exc:
            return self._unexpected(f"approve_contract({case_id})", exc)

    # ------------------------------------------------------------------
    # Public: set_tray_state
    # ------------------------------------------------------------------

    def set_tray_state(
        self,
        case_id: str,
        tray_number: int,
        state: TrayState,
        current_user: Optional[CurrentUser],
        on_date: Optional[date] = None,
    ) -> ServiceResult[Case]:
        """Move one tray to the adjacent next state.

        Setting the current state again succeeds without change; an
        earlier state fails and leaves the tray as it was.
        """
        denied = self._forbidden(current_user, Permission.CASES_WRITE)
        if denied:
            return denied
        try:
            with self._store.transaction() as tx:
                case = tx.document.find_case(case_id)
                if case is None:
                    return ServiceResult(success=False, error="Case not found.", status_code=404)
                tray = case.find_tray(tray_number)
                if tray is None:
                    return ServiceResult(success=False, error="Tray not found.", status_code=404)
                error = tray_transition_error(tray.state, state)
                if error:
                    return ServiceResult(success=False, error=error, status_code=409)
                if tray.state == state:
                    return ServiceResult(success=True, data=case)

                timestamp = now_utc()
                tray.state = state
                if state == TrayState.ENTREGUE:
                    tray.delivered_at = on_date or utc_today()
                case.updated_at = timestamp
                refresh_phase_from_trays(case, timestamp)
                self._audit(
                    tx.document, "case.tray_state", AuditEntity.CASE, case.id, current_user,
                    f"Tray #{tray_number} changed to {state}.",
                )
                tx.commit()
            return ServiceResult(success=True, data=case)
        except Exception as exc:
            return self._unexpected(f"set_tray_state({case_id}, {tray_number})", exc)

    # ------------------------------------------------------------------
    # Public: register_case_delivery_lot
    # ------------------------------------------------------------------

    def register_case_delivery_lot(
        self,
        case_id: str,
        payload: DeliveryLotInput,
        current_user: Optional[CurrentUser],
    ) -> ServiceResult[Case]:
        """Hand a range of ready trays to the dentist.

        Preconditions, each with its own message: approved contract, a
        production order for the case, a valid range within the case
        total, a delivery date, no identical lot already recorded, and
        every tray in range ``pronta`` or ``entregue``.
        """
        denied = self._forbidden(current_user, Permission.CASES_WRITE)
        if denied:
            return denied
        try:
            with self._store.transaction() as tx:
                document = tx.document
                case = document.find_case(case_id)
                if case is None:
                    return ServiceResult(success=False, error="Case not found.", status_code=404)
                if not case.contract_approved:
                    return ServiceResult(
                        success=False,
                        error="Contract not approved. Deliveries cannot be registered.",
                        status_code=409,
                    )
                if not has_production_order(document, case_id):
                    return ServiceResult(
                        success=False,
                        error="No lab production order has been generated for this case yet.",
                        status_code=409,
                    )
                if payload.from_tray < 1:
                    return ServiceResult(
                        success=False, error="First tray must be 1 or greater.", status_code=400,
                    )
                if payload.to_tray < payload.from_tray:
                    return ServiceResult(success=False, error="Invalid tray range.", status_code=400)
                if payload.to_tray > case.total_trays:
                    return ServiceResult(
                        success=False,
                        error=f"Range exceeds the case total ({case.total_trays}).",
                        status_code=400,
                    )
                if payload.delivered_to_doctor_at is None:
                    return ServiceResult(
                        success=False, error="Delivery date is required.", status_code=400,
                    )
                duplicate = any(
                    lot.arch == payload.arch
                    and lot.from_tray == payload.from_tray
                    and lot.to_tray == payload.to_tray
                    and lot.delivered_to_doctor_at == payload.delivered_to_doctor_at
                    for lot in case.delivery_lots
                )
                if duplicate:
                    return ServiceResult(
                        success=False,
                        error="Duplicate lot for the same arch, range and date.",
                        status_code=409,
                    )
                in_range = [
                    tray for tray in case.trays
                    if payload.from_tray <= tray.tray_number <= payload.to_tray
                ]
                if not in_range:
                    return ServiceResult(
                        success=False, error="No trays found in this range.", status_code=404,
                    )
                not_ready = next(
                    (
                        tray for tray in in_range
                        if tray.state not in (TrayState.PRONTA, TrayState.ENTREGUE)
                    ),
                    None,
                )
                if not_ready is not None:
                    return ServiceResult(
                        success=False,
                        error=f"Tray #{not_ready.tray_number} is not ready for delivery.",
                        status_code=409,
                    )

                timestamp = now_utc()
                for tray in in_range:
                    tray.state = TrayState.ENTREGUE
                    tray.delivered_at = payload.delivered_to_doctor_at
                lot = DeliveryLot(
                    id=new_id("lot"),
                    arch=payload.arch,
                    from_tray=payload.from_tray,
                    to_tray=payload.to_tray,
                    quantity=payload.to_tray - payload.from_tray + 1,
                    delivered_to_doctor_at=payload.delivered_to_doctor_at,
                    note=(payload.note or "").strip() or None,
                    created_at=timestamp,
                )
                case.delivery_lots.append(lot)
                case.updated_at = timestamp
                replacement_bank.mark_delivered_by_lot(
                    document, case, payload.arch, payload.from_tray, payload.to_tray,
                    payload.delivered_to_doctor_at, timestamp,
                )
                refresh_phase_from_trays(case, timestamp)
                self._audit(
                    document, "case.delivery_lot", AuditEntity.CASE, case.id, current_user,
                    f"Trays #{lot.from_tray}-#{lot.to_tray} ({lot.arch}) delivered to the dentist.",
                )
                tx.commit()
            return ServiceResult(success=True, data=case)
        except Exception as exc:
            return self._unexpected(f"register_case_delivery_lot({case_id})", exc)

    # ------------------------------------------------------------------
    # Public: register_case_installation
    # ------------------------------------------------------------------

    def register_case_installation(
        self,
        case_id: str,
        payload: InstallationInput,
        current_user: Optional[CurrentUser],
    ) -> ServiceResult[Case]:
        """Record trays handed to the patient.

        Quantities are added to the running totals.  Each total is capped
        by the case plan for that arch and by what the dentist received.
        Newly delivered trays are recorded as one patient lot per arch.
        """
        denied = self._forbidden(current_user, Permission.CASES_WRITE)
        if denied:
            return denied
        try:
            with self._store.transaction() as tx:
                document = tx.document
                case = document.find_case(case_id)
                if case is None:
                    return ServiceResult(success=False, error="Case not found.", status_code=404)
                if not has_production_order(document, case_id):
                    return ServiceResult(
                        success=False,
                        error="No lab production order has been generated for this case yet.",
                        status_code=409,
                    )
                if not case.delivery_lots:
                    return ServiceResult(
                        success=False,
                        error="Register a delivery to the dentist before delivering to the patient.",
                        status_code=409,
                    )
                current = case.installation
                if current is None and payload.installed_at is None:
                    return ServiceResult(
                        success=False, error="Installation date is required.", status_code=400,
                    )

                received = delivered_to_dentist(case)
                added = {
                    BankArch.SUPERIOR: payload.delivered_upper,
                    BankArch.INFERIOR: payload.delivered_lower,
                }
                previous = {
                    BankArch.SUPERIOR: current.delivered_upper if current else 0,
                    BankArch.INFERIOR: current.delivered_lower if current else 0,
                }
                totals: dict[BankArch, int] = {}
                for arch in BankArch:
                    arch_total = case.total_for_arch(arch)
                    if added[arch] < 0:
                        return ServiceResult(
                            success=False,
                            error=f"Invalid {arch} quantity. Enter a value between 0 and {arch_total}.",
                            status_code=400,
                        )
                    totals[arch] = previous[arch] + added[arch]
                    if totals[arch] > arch_total:
                        return ServiceResult(
                            success=False,
                            error=f"Invalid {arch} quantity. Enter a value between 0 and {arch_total}.",
                            status_code=400,
                        )
                    if totals[arch] > received[arch]:
                        return ServiceResult(
                            success=False,
                            error=(
                                f"Patient {arch} delivery exceeds what was delivered "
                                f"to the dentist ({received[arch]})."
                            ),
                            status_code=409,
                        )
                if any(added.values()) and payload.installed_at is None:
                    return ServiceResult(
                        success=False, error="Patient delivery date is required.", status_code=400,
                    )

                timestamp = now_utc()
                note = (payload.note or "").strip() or None
                patient_lots = list(current.patient_delivery_lots) if current else []
                for arch in BankArch:
                    if added[arch] <= 0:
                        continue
                    patient_lots.append(
                        PatientDeliveryLot(
                            id=new_id("patient_lot"),
                            arch=arch,
                            from_tray=previous[arch] + 1,
                            to_tray=totals[arch],
                            quantity=added[arch],
                            delivered_at=payload.installed_at,
                            note=note,
                            created_at=timestamp,
                        )
                    )
                case.installation = Installation(
                    installed_at=current.installed_at if current else payload.installed_at,
                    note=note or (current.note if current else None),
                    delivered_upper=totals[BankArch.SUPERIOR],
                    delivered_lower=totals[BankArch.INFERIOR],
                    patient_delivery_lots=patient_lots,
                )
                case.updated_at = timestamp
                finished = all(totals[arch] >= case.total_for_arch(arch) for arch in BankArch)
                advance_phase(
                    case, CasePhase.FINALIZADO if finished else CasePhase.EM_PRODUCAO, timestamp,
                )
                self._audit(
                    document, "case.installation", AuditEntity.CASE, case.id, current_user,
                    (
                        f"Patient delivery registered: upper {totals[BankArch.SUPERIOR]}, "
                        f"lower {totals[BankArch.INFERIOR]}."
                    ),
                )
                tx.commit()
            return ServiceResult(success=True, data=case)
        except Exception as exc:
            return self._unexpected(f"register_case_installation({case_id})", exc)

    # ------------------------------------------------------------------
    # Public: handle_rework
    # ------------------------------------------------------------------

    def handle_rework(
        self,
        case_id: str,
        tray_number: int,
        current_user: Optional[CurrentUser],
        arch: Optional[ArchCoverage] = None,
        source_lab_item_id: Optional[str] = None,
        on_date: Optional[date] = None,
    ) -> ServiceResult[ReworkResult]:
        """Request the reconfection of a defective tray.

        Creates a waiting ``reconfeccao`` lab order, flags the plate as
        defective in the replacement bank and restores a fresh available
        entry.  Delivery and installation records are left untouched.
        """
        denied = self._forbidden(current_user, Permission.CASES_WRITE)
        if denied:
            return denied
        try:
            with self._store.transaction() as tx:
                document = tx.document
                case = document.find_case(case_id)
                if case is None:
                    return ServiceResult(success=False, error="Case not found.", status_code=404)
                if case.find_tray(tray_number) is None:
                    return ServiceResult(success=False, error="Tray not found.", status_code=404)
                if source_lab_item_id is not None:
                    source = document.find_lab_item(source_lab_item_id)
                    if source is None or source.case_id != case_id:
                        return ServiceResult(
                            success=False, error="Source lab item not found for this case.", status_code=404,
                        )

                current_day = on_date or utc_today()
                timestamp = now_utc()
                coverage = arch or case.arch
                item = LabItem(
                    id=new_id("lab"),
                    case_id=case_id,
                    request_code=next_request_code(document, case.treatment_code),
                    request_kind=LabRequestKind.RECONFECCAO,
                    arch=coverage,
                    tray_number=tray_number,
                    patient_name=case.patient_name,
                    planned_date=current_day,
                    due_date=add_days(current_day, self._config.LAB_ORDER_DUE_DAYS),
                    status=LabStatus.AGUARDANDO_INICIAR,
                    priority=LabPriority.URGENTE,
                    notes=f"Reconfection of tray #{tray_number} after a reported defect.",
                    rework_of_lab_item_id=source_lab_item_id,
                    created_at=timestamp,
                    updated_at=timestamp,
                )
                document.lab_items.insert(0, item)
                defective, restored = replacement_bank.register_rework(
                    document, case, tray_number, coverage, timestamp, source_lab_item_id,
                )
                self._audit(
                    document, "case.rework", AuditEntity.CASE, case.id, current_user,
                    f"Rework requested for tray #{tray_number} ({coverage}).",
                )
                self._audit(
                    document, "lab.create", AuditEntity.LAB, item.id, current_user,
                    f"Reconfection order {item.request_code} created for {item.patient_name}.",
                )
                tx.commit()
            return ServiceResult(
                success=True,
                data=ReworkResult(item=item, defective=defective, restored=restored),
                status_code=201,
            )
        except Exception as exc:
            return self._unexpected(f"handle_rework({case_id}, {tray_number})", exc)

    # ------------------------------------------------------------------
    # Frozen scan files
    # ------------------------------------------------------------------

    def mark_case_scan_file_error(
        self,
        case_id: str,
        scan_file_id: str,
        reason: str,
        current_user: Optional[CurrentUser],
    ) -> ServiceResult[Case]:
        """Flag a file of the case snapshot as erroneous; the file is kept."""
        denied = self._forbidden(current_user, Permission.CASES_WRITE)
        if denied:
            return denied
        trimmed = reason.strip()
        if not trimmed:
            return ServiceResult(success=False, error="An error reason is required.", status_code=400)
        return self._set_scan_file_status(
            case_id, scan_file_id, AttachmentStatus.ERRO, trimmed, current_user,
        )

    def clear_case_scan_file_error(
        self,
        case_id: str,
        scan_file_id: str,
        current_user: Optional[CurrentUser],
    ) -> ServiceResult[Case]:
        denied = self._forbidden(current_user, Permission.CASES_WRITE)
        if denied:
            return denied
        return self._set_scan_file_status(
            case_id, scan_file_id, AttachmentStatus.OK, None, current_user,
        )

    def _set_scan_file_status(
        self,
        case_id: str,
        scan_file_id: str,
        status: AttachmentStatus,
        reason: Optional[str],
        current_user: Optional[CurrentUser],
    ) -> ServiceResult[Case]:
        try:
            with self._store.transaction() as tx:
                case = tx.document.find_case(case_id)
                if case is None:
                    return ServiceResult(success=False, error="Case not found.", status_code=404)
                scan_file = next((item for item in case.scan_files if item.id == scan_file_id), None)
                if scan_file is None:
                    return ServiceResult(success=False, error="Scan file not found.", status_code=404)
                timestamp = now_utc()
                scan_file.status = status
                if status == AttachmentStatus.ERRO:
                    scan_file.flagged_at = timestamp
                    scan_file.flagged_reason = reason
                case.updated_at = timestamp
                self._audit(
                    tx.document, "case.scan_file_status", AuditEntity.CASE, case.id, current_user,
                    f"Scan file {scan_file.name} marked as {status}.",
                )
                tx.commit()
            return ServiceResult(success=True, data=case)
        except Exception as exc:
            return self._unexpected(f"set_case_scan_file_status({case_id}, {scan_file_id})", exc)
