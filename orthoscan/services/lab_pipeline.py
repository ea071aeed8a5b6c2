"""
Lab Order Pipeline Service.

Owns laboratory work orders (LabItems) and their board status
``aguardando_iniciar -> em_producao -> controle_qualidade -> prontas``.

Lab progress feeds back into the case: covered trays advance (never
regress), the case enters ``em_producao`` with its first active order,
and the replacement bank is debited when an order starts production.

Operations:
    - list_lab_items (raises programmed replenishments first)
    - add_lab_item / update_lab_item / move_lab_item / delete_lab_item
    - generate_lab_order
    - create_advance_lab_order
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from orthoscan.auth import CurrentUser
from orthoscan.config import AppConfig
from orthoscan.logger import StructuredLogger
from orthoscan.models.case import Case
from orthoscan.models.document import AppDocument
from orthoscan.models.enums import (
    AuditEntity,
    BankArch,
    CasePhase,
    LabPriority,
    LabRequestKind,
    LabStatus,
    Permission,
    TrayState,
)
from orthoscan.models.lab import LabItem
from orthoscan.models.service_models import (
    AdvanceOrderInput,
    LabItemInput,
    LabItemUpdateInput,
    LabOrderResult,
    ServiceResult,
)
from orthoscan.services import replacement_bank
from orthoscan.services.base_service import BaseService
from orthoscan.services.codes import REQUEST_CODE_RE, next_request_code
from orthoscan.services.replacement_bank import InsufficientBalanceError
from orthoscan.services.transition_rules import (
    can_advance_phase,
    can_move_to_status,
    can_sync_tray,
    tray_target_for_lab_status,
)
from orthoscan.store import DocumentStore
from orthoscan.utils.general import add_days, new_id, now_utc
from orthoscan.utils.general import today as utc_today


# ---------------------------------------------------------------------------
# Document-level helpers
# ---------------------------------------------------------------------------

def plan_error_for_case(case: Case, planned_upper: int, planned_lower: int) -> Optional[str]:
    """Planned quantities may not exceed the case totals for each arch."""
    max_upper = case.total_for_arch(BankArch.SUPERIOR)
    max_lower = case.total_for_arch(BankArch.INFERIOR)
    if planned_upper > max_upper:
        return f"Planned upper quantity exceeds the case plan ({max_upper})."
    if planned_lower > max_lower:
        return f"Planned lower quantity exceeds the case plan ({max_lower})."
    return None


def covered_tray_numbers(case: Case, item: LabItem) -> range:
    """Trays a lab order produces, clipped to the case sequence.

    A reconfection always covers the single tray it repairs.
    """
    last_tray = max((tray.tray_number for tray in case.trays), default=0)
    if item.request_kind == LabRequestKind.RECONFECCAO:
        quantity = 1
    else:
        quantity = item.covered_quantity
    end = min(item.tray_number + quantity - 1, last_tray)
    return range(item.tray_number, end + 1)


def sync_trays_for_item(case: Case, item: LabItem) -> int:
    """Advance the trays covered by *item* to the state its status implies.

    Returns the number of trays changed.
    """
    target = tray_target_for_lab_status(item.status)
    if target is None:
        return 0
    changed = 0
    for tray_number in covered_tray_numbers(case, item):
        tray = case.find_tray(tray_number)
        if tray is not None and can_sync_tray(tray.state, target):
            tray.state = target
            changed += 1
    return changed


def is_tray_delivered(case: Case, tray_number: int) -> bool:
    tray = case.find_tray(tray_number)
    return tray is not None and tray.state == TrayState.ENTREGUE


def first_undelivered_tray(case: Case) -> Optional[int]:
    numbers = sorted(tray.tray_number for tray in case.trays if tray.state != TrayState.ENTREGUE)
    return numbers[0] if numbers else None


def mark_case_in_production(case: Case, timestamp: datetime) -> None:
    if case.phase != CasePhase.FINALIZADO and can_advance_phase(case.phase, CasePhase.EM_PRODUCAO):
        case.phase = CasePhase.EM_PRODUCAO
        case.updated_at = timestamp


def ensure_programmed_replenishments(
    document: AppDocument,
    on_date: date,
    lead_days: int,
) -> list[LabItem]:
    """Raise one ``reposicao_programada`` order per tray change that is due.

    Considered only for approved cases that already delivered a tray and
    still have pending ones.  A pending tray qualifies once
    ``due_date - lead_days`` has arrived; an order already raised for the
    same case, tray and expected date is never duplicated.
    """
    created: list[LabItem] = []
    for case in document.cases:
        if not case.contract_approved:
            continue
        states = {tray.state for tray in case.trays}
        if TrayState.ENTREGUE not in states or TrayState.PENDENTE not in states:
            continue
        for tray in case.trays:
            if tray.state != TrayState.PENDENTE or tray.due_date is None:
                continue
            start_date = add_days(tray.due_date, -lead_days)
            if start_date > on_date:
                continue
            exists = any(
                item.case_id == case.id
                and item.request_kind == LabRequestKind.REPOSICAO_PROGRAMADA
                and item.tray_number == tray.tray_number
                and item.expected_replacement_date == tray.due_date
                for item in document.lab_items
            )
            if exists:
                continue
            timestamp = now_utc()
            item = LabItem(
                id=new_id("lab"),
                case_id=case.id,
                request_code=next_request_code(document, case.treatment_code),
                request_kind=LabRequestKind.REPOSICAO_PROGRAMADA,
                arch=case.arch,
                tray_number=tray.tray_number,
                patient_name=case.patient_name,
                planned_date=start_date,
                due_date=tray.due_date,
                expected_replacement_date=tray.due_date,
                status=LabStatus.AGUARDANDO_INICIAR,
                priority=LabPriority.MEDIO,
                notes=f"Programmed replenishment for tray {tray.tray_number}.",
                created_at=timestamp,
                updated_at=timestamp,
            )
            document.lab_items.insert(0, item)
            created.append(item)
    return created


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class LabPipelineService(BaseService):
    """Lab board operations.  Every mutation is one store transaction."""

    def __init__(
        self,
        store: DocumentStore,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(store, config, logger)

    # ------------------------------------------------------------------
    # Private helper: start production side effects
    # ------------------------------------------------------------------

    def _apply_progress(
        self,
        document: AppDocument,
        case: Optional[Case],
        item: LabItem,
        entering_production: bool,
        timestamp: datetime,
    ) -> Optional[ServiceResult]:
        """Sync trays, advance the case and debit the bank for *item*.

        Returns a failure result when the bank cannot cover the order.
        """
        if case is None:
            return None
        if entering_production:
            try:
                replacement_bank.debit_for_lab_start(document, case, item, timestamp)
            except InsufficientBalanceError as exc:
                return ServiceResult(success=False, error=str(exc), status_code=409)
        if item.status != LabStatus.AGUARDANDO_INICIAR:
            mark_case_in_production(case, timestamp)
        if sync_trays_for_item(case, item):
            case.updated_at = timestamp
        return None

    def _linked_case(
        self,
        document: AppDocument,
        case_id: Optional[str],
    ) -> tuple[Optional[Case], Optional[ServiceResult]]:
        if not case_id:
            return None, None
        case = document.find_case(case_id)
        if case is None:
            return None, ServiceResult(
                success=False, error="Linked case not found.", status_code=404,
            )
        if not case.contract_approved:
            return None, ServiceResult(
                success=False,
                error="Contract not approved. Lab orders cannot be created for this case.",
                status_code=409,
            )
        return case, None

    # ------------------------------------------------------------------
    # Public: list_lab_items
    # ------------------------------------------------------------------

    def list_lab_items(
        self,
        current_user: Optional[CurrentUser] = None,
        case_id: Optional[str] = None,
        on_date: Optional[date] = None,
    ) -> ServiceResult[list[LabItem]]:
        """Return lab items ordered by due date.

        Programmed replenishments that have come due are raised (and
        committed) before the list is built.
        """
        denied = self._forbidden(current_user, Permission.LAB_READ)
        if denied:
            return denied
        try:
            with self._store.transaction() as tx:
                created = ensure_programmed_replenishments(
                    tx.document,
                    on_date or utc_today(),
                    self._config.REPLENISHMENT_LEAD_DAYS,
                )
                for item in created:
                    self._audit(
                        tx.document, "lab.replenishment_created", AuditEntity.LAB, item.id,
                        current_user,
                        f"Programmed replenishment {item.request_code} raised for {item.patient_name}.",
                    )
                if created:
                    tx.commit()
                items = [
                    item for item in tx.document.lab_items
                    if case_id is None or item.case_id == case_id
                ]
            return ServiceResult(success=True, data=sorted(items, key=lambda item: item.due_date))
        except Exception as exc:
            return self._unexpected("list_lab_items", exc)

    # ------------------------------------------------------------------
    # Public: add_lab_item
    # ------------------------------------------------------------------

    def add_lab_item(
        self,
        payload: LabItemInput,
        current_user: Optional[CurrentUser],
    ) -> ServiceResult[LabItem]:
        """Create a lab order.

        Status is ``em_producao`` when any planned quantity is positive and
        ``aguardando_iniciar`` otherwise, whatever the payload requests.
        """
        denied = self._forbidden(current_user, Permission.LAB_WRITE)
        if denied:
            return denied
        try:
            with self._store.transaction() as tx:
                document = tx.document
                case, failure = self._linked_case(document, payload.case_id)
                if failure:
                    return failure
                if case is not None:
                    plan_error = plan_error_for_case(
                        case, payload.planned_upper_qty, payload.planned_lower_qty,
                    )
                    if plan_error:
                        return ServiceResult(success=False, error=plan_error, status_code=400)

                timestamp = now_utc()
                has_plan = payload.planned_upper_qty + payload.planned_lower_qty > 0
                request_code = payload.request_code
                if not request_code and case is not None:
                    request_code = next_request_code(document, case.treatment_code)

                item = LabItem(
                    id=new_id("lab"),
                    case_id=payload.case_id,
                    request_code=request_code,
                    request_kind=payload.request_kind,
                    arch=payload.arch,
                    tray_number=payload.tray_number,
                    patient_name=payload.patient_name,
                    planned_upper_qty=payload.planned_upper_qty,
                    planned_lower_qty=payload.planned_lower_qty,
                    planning_defined_at=timestamp if has_plan else None,
                    planned_date=payload.planned_date,
                    due_date=payload.due_date,
                    expected_replacement_date=payload.expected_replacement_date or payload.due_date,
                    status=LabStatus.EM_PRODUCAO if has_plan else LabStatus.AGUARDANDO_INICIAR,
                    priority=payload.priority,
                    notes=payload.notes,
                    created_at=timestamp,
                    updated_at=timestamp,
                )
                document.lab_items.insert(0, item)
                failure = self._apply_progress(
                    document, case, item, item.status == LabStatus.EM_PRODUCAO, timestamp,
                )
                if failure:
                    return failure

                self._audit(
                    document, "lab.create", AuditEntity.LAB, item.id, current_user,
                    f"Lab order {item.request_code or item.id} created for {item.patient_name}.",
                )
                tx.commit()
            return ServiceResult(success=True, data=item, status_code=201)
        except Exception as exc:
            return self._unexpected("add_lab_item", exc)

    # ------------------------------------------------------------------
    # Public: update_lab_item
    # ------------------------------------------------------------------

    def update_lab_item(
        self,
        item_id: str,
        patch: LabItemUpdateInput,
        current_user: Optional[CurrentUser],
    ) -> ServiceResult[LabItem]:
        """Apply a partial update.

        A waiting order is promoted to ``em_producao`` as soon as it has a
        plan; an order without a plan cannot stay in ``em_producao``.
        """
        denied = self._forbidden(current_user, Permission.LAB_WRITE)
        if denied:
            return denied
        try:
            with self._store.transaction() as tx:
                document = tx.document
                item = document.find_lab_item(item_id)
                if item is None:
                    return ServiceResult(success=False, error="Lab item not found.", status_code=404)

                changes = patch.changes()
                planned_upper = changes.get("planned_upper_qty", item.planned_upper_qty)
                planned_lower = changes.get("planned_lower_qty", item.planned_lower_qty)
                has_plan = planned_upper + planned_lower > 0

                case, failure = self._linked_case(document, item.case_id)
                if failure:
                    return failure
                if case is not None:
                    plan_error = plan_error_for_case(case, planned_upper, planned_lower)
                    if plan_error:
                        return ServiceResult(success=False, error=plan_error, status_code=400)

                requested = changes.get("status", item.status)
                if item.status == LabStatus.AGUARDANDO_INICIAR:
                    target = LabStatus.EM_PRODUCAO if has_plan else LabStatus.AGUARDANDO_INICIAR
                elif not has_plan and requested == LabStatus.EM_PRODUCAO:
                    target = LabStatus.AGUARDANDO_INICIAR
                else:
                    target = requested

                tray_number = changes.get("tray_number", item.tray_number)
                if case is not None and target != item.status and is_tray_delivered(case, tray_number):
                    return ServiceResult(
                        success=False,
                        error="Status of a tray already delivered to the dentist cannot change.",
                        status_code=409,
                    )
                if not can_move_to_status(item.status, target):
                    return ServiceResult(
                        success=False,
                        error=f"Invalid status transition from '{item.status}' to '{target}'.",
                        status_code=409,
                    )

                timestamp = now_utc()
                entering_production = (
                    target == LabStatus.EM_PRODUCAO and item.status != LabStatus.EM_PRODUCAO
                )
                for field, value in changes.items():
                    setattr(item, field, value)
                item.status = target
                item.planning_defined_at = (item.planning_defined_at or timestamp) if has_plan else None
                item.updated_at = timestamp

                failure = self._apply_progress(document, case, item, entering_production, timestamp)
                if failure:
                    return failure

                self._audit(
                    document, "lab.update", AuditEntity.LAB, item.id, current_user,
                    f"Lab order {item.request_code or item.id} updated to status {item.status}.",
                )
                tx.commit()
            return ServiceResult(success=True, data=item)
        except Exception as exc:
            return self._unexpected(f"update_lab_item({item_id})", exc)

    # ------------------------------------------------------------------
    # Public: move_lab_item
    # ------------------------------------------------------------------

    def move_lab_item(
        self,
        item_id: str,
        target: LabStatus,
        current_user: Optional[CurrentUser],
    ) -> ServiceResult[LabItem]:
        """Move an order to an adjacent board column.

        Moving into ``controle_qualidade`` has no side effect on rework;
        reconfections are only created through an explicit rework request.
        """
        denied = self._forbidden(current_user, Permission.LAB_WRITE)
        if denied:
            return denied
        try:
            with self._store.transaction() as tx:
                document = tx.document
                item = document.find_lab_item(item_id)
                if item is None:
                    return ServiceResult(success=False, error="Lab item not found.", status_code=404)
                case = document.find_case(item.case_id)

                if case is not None and target != item.status and is_tray_delivered(case, item.tray_number):
                    return ServiceResult(
                        success=False,
                        error="Status of a tray already delivered to the dentist cannot change.",
                        status_code=409,
                    )
                if not can_move_to_status(item.status, target):
                    return ServiceResult(
                        success=False,
                        error=f"Invalid status transition from '{item.status}' to '{target}'.",
                        status_code=409,
                    )
                if (
                    item.status == LabStatus.AGUARDANDO_INICIAR
                    and target == LabStatus.EM_PRODUCAO
                    and not item.has_production_plan
                ):
                    return ServiceResult(
                        success=False,
                        error="Define quantities per arch before starting production.",
                        status_code=400,
                    )

                timestamp = now_utc()
                entering_production = (
                    target == LabStatus.EM_PRODUCAO and item.status != LabStatus.EM_PRODUCAO
                )
                item.status = target
                item.updated_at = timestamp
                failure = self._apply_progress(document, case, item, entering_production, timestamp)
                if failure:
                    return failure

                self._audit(
                    document, "lab.move", AuditEntity.LAB, item.id, current_user,
                    f"Lab order {item.request_code or item.id} moved to {item.status}.",
                )
                tx.commit()
            return ServiceResult(success=True, data=item)
        except Exception as exc:
            return self._unexpected(f"move_lab_item({item_id})", exc)

    # ------------------------------------------------------------------
    # Public: delete_lab_item
    # ------------------------------------------------------------------

    def delete_lab_item(
        self,
        item_id: str,
        current_user: Optional[CurrentUser],
    ) -> ServiceResult[LabItem]:
        """Remove an order; plates it still held in production return to the balance."""
        denied = self._forbidden(current_user, Permission.LAB_WRITE)
        if denied:
            return denied
        try:
            with self._store.transaction() as tx:
                document = tx.document
                item = document.find_lab_item(item_id)
                if item is None:
                    return ServiceResult(success=False, error="Lab item not found.", status_code=404)
                document.lab_items = [other for other in document.lab_items if other.id != item_id]
                replacement_bank.release_for_lab_item(document, item_id, now_utc())
                self._audit(
                    document, "lab.delete", AuditEntity.LAB, item.id, current_user,
                    f"Lab order {item.request_code or item.id} removed.",
                )
                tx.commit()
            return ServiceResult(success=True, data=item)
        except Exception as exc:
            return self._unexpected(f"delete_lab_item({item_id})", exc)

    # ------------------------------------------------------------------
    # Public: generate_lab_order
    # ------------------------------------------------------------------

    def generate_lab_order(
        self,
        case_id: str,
        current_user: Optional[CurrentUser],
        on_date: Optional[date] = None,
    ) -> ServiceResult[LabOrderResult]:
        """Create the first production order for an approved case.

        Idempotent: when the case already has a ``producao`` order, that
        order is returned with ``already_exists=True``.
        """
        denied = self._forbidden(current_user, Permission.LAB_WRITE)
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
                        error="Contract not approved. Lab orders cannot be created for this case.",
                        status_code=409,
                    )
                existing = next(
                    (
                        item for item in document.lab_items_for_case(case_id)
                        if item.request_kind == LabRequestKind.PRODUCAO
                    ),
                    None,
                )
                if existing is not None:
                    return ServiceResult(
                        success=True, data=LabOrderResult(item=existing, already_exists=True),
                    )

                current_day = on_date or utc_today()
                due_date = add_days(current_day, self._config.LAB_ORDER_DUE_DAYS)
                timestamp = now_utc()
                item = LabItem(
                    id=new_id("lab"),
                    case_id=case_id,
                    request_code=next_request_code(document, case.treatment_code),
                    request_kind=LabRequestKind.PRODUCAO,
                    arch=case.arch,
                    tray_number=1,
                    patient_name=case.patient_name,
                    planned_date=current_day,
                    due_date=due_date,
                    expected_replacement_date=due_date,
                    status=LabStatus.AGUARDANDO_INICIAR,
                    priority=LabPriority.MEDIO,
                    notes="Order generated from the case workflow. Define quantities per arch before production.",
                    created_at=timestamp,
                    updated_at=timestamp,
                )
                document.lab_items.insert(0, item)
                self._audit(
                    document, "lab.create", AuditEntity.LAB, item.id, current_user,
                    f"Lab order {item.request_code} created for {item.patient_name}.",
                )
                tx.commit()
            return ServiceResult(
                success=True, data=LabOrderResult(item=item, already_exists=False), status_code=201,
            )
        except Exception as exc:
            return self._unexpected(f"generate_lab_order({case_id})", exc)

    # ------------------------------------------------------------------
    # Public: create_advance_lab_order
    # ------------------------------------------------------------------

    def create_advance_lab_order(
        self,
        source_lab_item_id: str,
        payload: AdvanceOrderInput,
        current_user: Optional[CurrentUser],
        on_date: Optional[date] = None,
    ) -> ServiceResult[LabItem]:
        """Produce the next trays ahead of schedule.

        A programmed replenishment used as the source is consumed (removed)
        and its request code is carried over; any other source stays and
        the new order gets the next revision.  The new order starts at the
        lowest tray not yet delivered, waits for a manual start, and keeps
        the source id as provenance.
        """
        denied = self._forbidden(current_user, Permission.LAB_WRITE)
        if denied:
            return denied
        try:
            with self._store.transaction() as tx:
                document = tx.document
                source = document.find_lab_item(source_lab_item_id)
                if source is None:
                    return ServiceResult(success=False, error="Source lab item not found.", status_code=404)
                if not source.case_id:
                    return ServiceResult(
                        success=False, error="Source lab item is not linked to a case.", status_code=400,
                    )
                case = document.find_case(source.case_id)
                if case is None:
                    return ServiceResult(success=False, error="Linked case not found.", status_code=404)
                if not case.contract_approved:
                    return ServiceResult(
                        success=False,
                        error="Contract not approved. Advance orders cannot be created for this case.",
                        status_code=409,
                    )
                if payload.planned_upper_qty + payload.planned_lower_qty <= 0:
                    return ServiceResult(
                        success=False,
                        error="Advance orders need a quantity greater than zero.",
                        status_code=400,
                    )
                plan_error = plan_error_for_case(case, payload.planned_upper_qty, payload.planned_lower_qty)
                if plan_error:
                    return ServiceResult(success=False, error=plan_error, status_code=400)
                tray_number = first_undelivered_tray(case)
                if tray_number is None:
                    return ServiceResult(
                        success=False,
                        error="No pending trays left for an advance order.",
                        status_code=409,
                    )

                is_replenishment = source.request_kind == LabRequestKind.REPOSICAO_PROGRAMADA
                match = REQUEST_CODE_RE.match(source.request_code or "")
                if is_replenishment and match and match.group(1) == case.treatment_code:
                    request_code = source.request_code
                else:
                    request_code = next_request_code(document, case.treatment_code)
                if is_replenishment:
                    document.lab_items = [
                        item for item in document.lab_items if item.id != source.id
                    ]

                timestamp = now_utc()
                item = LabItem(
                    id=new_id("lab"),
                    case_id=case.id,
                    request_code=request_code,
                    request_kind=LabRequestKind.PRODUCAO,
                    arch=source.arch,
                    tray_number=tray_number,
                    patient_name=source.patient_name,
                    planned_upper_qty=payload.planned_upper_qty,
                    planned_lower_qty=payload.planned_lower_qty,
                    planning_defined_at=timestamp,
                    planned_date=on_date or utc_today(),
                    due_date=payload.due_date or source.expected_replacement_date or source.due_date,
                    expected_replacement_date=source.expected_replacement_date or source.due_date,
                    status=LabStatus.AGUARDANDO_INICIAR,
                    priority=LabPriority.URGENTE,
                    notes=f"Advance order created from {source.request_code or source.id}.",
                    source_lab_item_id=source.id,
                    created_at=timestamp,
                    updated_at=timestamp,
                )
                document.lab_items.insert(0, item)

                source_label = source.request_code or source.id
                self._audit(
                    document, "lab.advance_source_consumed", AuditEntity.LAB, source.id, current_user,
                    (
                        f"Replenishment base {source_label} consumed for an advance order."
                        if is_replenishment
                        else f"Lab order {source_label} used as the base of an advance order."
                    ),
                )
                self._audit(
                    document, "lab.advance_created", AuditEntity.LAB, item.id, current_user,
                    f"Advance order {item.request_code} created for {item.patient_name}.",
                )
                tx.commit()
            return ServiceResult(success=True, data=item, status_code=201)
        except Exception as exc:
            return self._unexpected(f"create_advance_lab_order({source_lab_item_id})", exc)
