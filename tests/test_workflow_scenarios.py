"""End-to-end runs across scan intake, case lifecycle, lab board and bank."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from orthoscan.models.enums import (
    ArchCoverage,
    CasePhase,
    LabRequestKind,
    LabStatus,
    ScanStatus,
    TrayState,
)
from orthoscan.models.service_models import (
    AdvanceOrderInput,
    BudgetInput,
    CaseFromScanInput,
    DeliveryLotInput,
    InstallationInput,
    LabItemUpdateInput,
)
from tests.factories import QA_SCAN_ID, SCAN_DATE

TRAY_1_DELIVERY = SCAN_DATE + timedelta(days=7)
TRAY_2_DUE = SCAN_DATE + timedelta(days=14)


def programmed(items):
    return [item for item in items if item.request_kind == LabRequestKind.REPOSICAO_PROGRAMADA]


def test_scan_to_installation(scans, cases, lab, bank, replenishment, store, admin, lab_tech):
    # Scan becomes a case with its own code and pending trays.
    case = scans.create_case_from_scan(
        QA_SCAN_ID, CaseFromScanInput(total_trays_upper=20, total_trays_lower=20, change_every_days=7), admin,
    ).data
    assert case.id == "A-0002"
    assert len(case.trays) == 20
    assert case.find_tray(2).due_date == TRAY_2_DUE
    scan = scans.get_scan(QA_SCAN_ID, lab_tech).data
    assert scan.status == ScanStatus.CONVERTIDO
    assert scan.linked_case_id == case.id

    # Commercial steps.
    cases.start_budget(case.id, admin)
    cases.close_budget(case.id, BudgetInput(value=Decimal("6200.00")), admin)
    assert cases.approve_contract(case.id, admin).data.phase == CasePhase.CONTRATO_APROVADO

    # First production order, planned then run through the board.
    order = lab.generate_lab_order(case.id, admin, on_date=SCAN_DATE).data.item
    assert order.request_code == "A-0002/1"
    assert lab.move_lab_item(order.id, LabStatus.EM_PRODUCAO, lab_tech).status_code == 403
    started = lab.update_lab_item(
        order.id, LabItemUpdateInput(planned_upper_qty=1, planned_lower_qty=1), admin,
    ).data
    assert started.status == LabStatus.EM_PRODUCAO
    lab.move_lab_item(order.id, LabStatus.CONTROLE_QUALIDADE, admin)
    lab.move_lab_item(order.id, LabStatus.PRONTAS, admin)
    assert cases.get_case(case.id, admin).data.find_tray(1).state == TrayState.PRONTA

    # Tray 1 reaches the dentist and can no longer regress.
    delivered = cases.register_case_delivery_lot(
        case.id,
        DeliveryLotInput(arch=ArchCoverage.AMBOS, from_tray=1, to_tray=1, delivered_to_doctor_at=TRAY_1_DELIVERY),
        admin,
    ).data
    assert delivered.find_tray(1).state == TrayState.ENTREGUE
    assert delivered.phase == CasePhase.EM_PRODUCAO
    assert cases.set_tray_state(case.id, 1, TrayState.PRONTA, admin).status_code == 409
    assert lab.move_lab_item(order.id, LabStatus.CONTROLE_QUALIDADE, admin).status_code == 409

    # Tray 2 falls due: exactly one programmed replenishment.
    raised = programmed(lab.list_lab_items(lab_tech, case_id=case.id, on_date=TRAY_2_DUE).data)
    assert programmed(lab.list_lab_items(lab_tech, case_id=case.id, on_date=TRAY_2_DUE).data) == raised
    assert len(raised) == 1
    replenishment_order = raised[0]
    assert replenishment_order.tray_number == 2
    assert replenishment_order.request_code == "A-0002/2"

    # The replenishment is pulled forward as an advance order.
    advance = lab.create_advance_lab_order(
        replenishment_order.id, AdvanceOrderInput(planned_upper_qty=1, planned_lower_qty=1), admin,
        on_date=TRAY_2_DUE,
    ).data
    assert advance.request_code == "A-0002/2"
    assert advance.tray_number == 2
    assert advance.request_kind == LabRequestKind.PRODUCAO
    assert store.load().find_lab_item(replenishment_order.id) is None

    # A defect on tray 2 raises a reconfection and restores the plates.
    rework = cases.handle_rework(case.id, 2, admin, source_lab_item_id=advance.id).data
    assert rework.item.request_kind == LabRequestKind.RECONFECCAO
    assert rework.item.request_code == "A-0002/3"
    assert rework.item.rework_of_lab_item_id == advance.id
    assert (rework.defective, rework.restored) == (2, 2)
    summary = bank.get_replacement_bank_summary(case.id, admin).data
    assert summary.total_contracted == 40
    assert summary.in_production_or_delivered == 2
    assert summary.defective == 2
    assert summary.remaining_balance == 38

    # The patient starts treatment with tray 1.
    installed_at = TRAY_1_DELIVERY + timedelta(days=1)
    installed = cases.register_case_installation(
        case.id, InstallationInput(installed_at=installed_at, delivered_upper=1, delivered_lower=1), admin,
    ).data
    assert (installed.installation.delivered_upper, installed.installation.delivered_lower) == (1, 1)
    supply = replenishment.get_case_supply_summary(case.id, lab_tech).data
    assert supply.delivered == 1
    assert supply.remaining == 19
    assert supply.next_tray == 2
    assert supply.next_due_date == installed_at + timedelta(days=7)

    alerts = replenishment.list_replenishment_alerts(lab_tech, on_date=installed_at).data
    assert [(alert.case_id, alert.days_left) for alert in alerts] == [(case.id, 7)]

    actions = [entry.action for entry in store.load().audit_logs]
    assert "case.create_from_scan" in actions
    assert "lab.replenishment_created" in actions


def test_external_scan_gets_external_code(scans, cases, store, admin):
    with store.transaction() as tx:
        tx.document.find_scan(QA_SCAN_ID).clinic_id = "clinic_sorriso"
        tx.commit()

    case = scans.create_case_from_scan(
        QA_SCAN_ID, CaseFromScanInput(total_trays_upper=8, change_every_days=10), admin,
    ).data

    assert case.id == "C-0002"
    assert (case.total_trays_upper, case.total_trays_lower) == (8, 0)
    assert len(case.trays) == 8
    assert cases.get_case("C-0002", admin).data.phase == CasePhase.PLANEJAMENTO
