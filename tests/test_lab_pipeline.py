from __future__ import annotations

from datetime import date, timedelta

from orthoscan.models.enums import (
    ArchCoverage,
    CasePhase,
    LabPriority,
    LabRequestKind,
    LabStatus,
    TrayState,
)
from orthoscan.models.service_models import (
    AdvanceOrderInput,
    DeliveryLotInput,
    LabItemInput,
    LabItemUpdateInput,
)
from tests.factories import (
    APPROVED_CASE_ID,
    PENDING_CASE_ID,
    SCAN_DATE,
    produce_trays,
)

TODAY = date(2026, 1, 12)
TRAY_2_DUE = SCAN_DATE + timedelta(days=14)


def order(case_id=APPROVED_CASE_ID, upper=0, lower=0, **overrides) -> LabItemInput:
    data = {
        "case_id": case_id,
        "arch": ArchCoverage.AMBOS,
        "tray_number": 1,
        "patient_name": "Patient A-0001",
        "planned_upper_qty": upper,
        "planned_lower_qty": lower,
        "planned_date": TODAY,
        "due_date": TODAY + timedelta(days=7),
    }
    data.update(overrides)
    return LabItemInput(**data)


def deliver_first_tray(store) -> None:
    with store.transaction() as tx:
        tx.document.find_case(APPROVED_CASE_ID).find_tray(1).state = TrayState.ENTREGUE
        tx.commit()


# ---------------------------------------------------------------------------
# add_lab_item
# ---------------------------------------------------------------------------

def test_zero_quantity_stays_waiting(lab, store, admin):
    result = lab.add_lab_item(order(status=LabStatus.EM_PRODUCAO), admin)

    assert result.status_code == 201
    item = result.data
    assert item.status == LabStatus.AGUARDANDO_INICIAR
    assert item.planning_defined_at is None
    assert item.request_code == "A-0001/1"
    case = store.load().find_case(APPROVED_CASE_ID)
    assert case.phase == CasePhase.CONTRATO_APROVADO
    assert store.load().bank_entries_for_case(APPROVED_CASE_ID) == []


def test_positive_quantity_starts_production(lab, bank, store, admin):
    item = lab.add_lab_item(order(upper=3, lower=3), admin).data

    assert item.status == LabStatus.EM_PRODUCAO
    assert item.planning_defined_at is not None
    case = store.load().find_case(APPROVED_CASE_ID)
    assert [case.find_tray(n).state for n in (1, 2, 3, 4)] == [
        TrayState.EM_PRODUCAO, TrayState.EM_PRODUCAO, TrayState.EM_PRODUCAO, TrayState.PENDENTE,
    ]
    assert case.phase == CasePhase.EM_PRODUCAO
    summary = bank.get_replacement_bank_summary(APPROVED_CASE_ID, admin).data
    assert summary.in_production_or_delivered == 6
    assert summary.remaining_balance == 34


def test_unlinked_order_has_no_request_code(lab, admin):
    item = lab.add_lab_item(order(case_id=None, upper=1), admin).data

    assert item.status == LabStatus.EM_PRODUCAO
    assert item.request_code is None


def test_add_validations(lab, admin):
    assert lab.add_lab_item(order(case_id=PENDING_CASE_ID, upper=1), admin).status_code == 409
    assert lab.add_lab_item(order(case_id="A-0404"), admin).status_code == 404
    over_plan = lab.add_lab_item(order(upper=21), admin)
    assert over_plan.status_code == 400
    assert "exceeds the case plan" in over_plan.error


def test_insufficient_bank_balance_rejects_order(lab, store, admin):
    lab.add_lab_item(order(upper=20, lower=20), admin)

    result = lab.add_lab_item(order(upper=1, lower=1), admin)

    assert result.status_code == 409
    assert "Insufficient" in result.error
    assert len(store.load().lab_items_for_case(APPROVED_CASE_ID)) == 1


def test_lab_tech_reads_but_cannot_write(lab, lab_tech):
    assert lab.add_lab_item(order(upper=1), lab_tech).status_code == 403
    assert lab.move_lab_item("qa_lab_2", LabStatus.CONTROLE_QUALIDADE, lab_tech).status_code == 403
    assert lab.list_lab_items(lab_tech, on_date=TODAY).success


def test_list_is_sorted_and_filterable(lab, admin):
    lab.add_lab_item(order(due_date=TODAY + timedelta(days=30)), admin)
    lab.add_lab_item(order(due_date=TODAY + timedelta(days=1)), admin)

    items = lab.list_lab_items(admin, on_date=TODAY).data
    assert [item.due_date for item in items] == sorted(item.due_date for item in items)

    for_case = lab.list_lab_items(admin, case_id=APPROVED_CASE_ID, on_date=TODAY).data
    assert len(for_case) == 2


# ---------------------------------------------------------------------------
# move_lab_item
# ---------------------------------------------------------------------------

def test_moves_must_be_adjacent(lab, admin):
    result = lab.move_lab_item("qa_lab_1", LabStatus.PRONTAS, admin)

    assert result.status_code == 409


def test_start_requires_quantities(lab, admin):
    result = lab.move_lab_item("qa_lab_1", LabStatus.EM_PRODUCAO, admin)

    assert result.status_code == 400
    assert "quantities" in result.error


def test_quality_control_never_creates_rework(lab, store, admin):
    item = lab.add_lab_item(order(upper=2, lower=2), admin).data
    before = len(store.load().lab_items)

    result = lab.move_lab_item(item.id, LabStatus.CONTROLE_QUALIDADE, admin)

    assert result.data.status == LabStatus.CONTROLE_QUALIDADE
    document = store.load()
    assert len(document.lab_items) == before
    assert not any(i.request_kind == LabRequestKind.RECONFECCAO for i in document.lab_items)


def test_ready_marks_trays_and_moving_back_keeps_them(lab, store, admin):
    item = produce_trays(lab, admin, APPROVED_CASE_ID, upper=2, lower=2)
    case = store.load().find_case(APPROVED_CASE_ID)
    assert [case.find_tray(n).state for n in (1, 2)] == [TrayState.PRONTA, TrayState.PRONTA]

    back = lab.move_lab_item(item.id, LabStatus.CONTROLE_QUALIDADE, admin)

    assert back.success
    case = store.load().find_case(APPROVED_CASE_ID)
    assert [case.find_tray(n).state for n in (1, 2)] == [TrayState.PRONTA, TrayState.PRONTA]


def test_delivered_tray_locks_order_status(lab, cases, admin):
    item = produce_trays(lab, admin, APPROVED_CASE_ID, upper=2, lower=2)
    cases.register_case_delivery_lot(
        APPROVED_CASE_ID,
        DeliveryLotInput(arch=ArchCoverage.AMBOS, from_tray=1, to_tray=2, delivered_to_doctor_at=TODAY),
        admin,
    )

    result = lab.move_lab_item(item.id, LabStatus.CONTROLE_QUALIDADE, admin)

    assert result.status_code == 409
    assert "already delivered" in result.error


def test_move_unknown_item(lab, admin):
    assert lab.move_lab_item("missing", LabStatus.EM_PRODUCAO, admin).status_code == 404


# ---------------------------------------------------------------------------
# update / delete
# ---------------------------------------------------------------------------

def test_update_with_plan_promotes_waiting_order(lab, bank, store, admin):
    generated = lab.generate_lab_order(APPROVED_CASE_ID, admin, on_date=TODAY).data.item

    result = lab.update_lab_item(
        generated.id, LabItemUpdateInput(planned_upper_qty=2, planned_lower_qty=2), admin,
    )

    assert result.data.status == LabStatus.EM_PRODUCAO
    case = store.load().find_case(APPROVED_CASE_ID)
    assert case.find_tray(2).state == TrayState.EM_PRODUCAO
    assert case.phase == CasePhase.EM_PRODUCAO
    assert bank.get_replacement_bank_summary(APPROVED_CASE_ID, admin).data.remaining_balance == 36


def test_update_cannot_exceed_plan(lab, admin):
    generated = lab.generate_lab_order(APPROVED_CASE_ID, admin, on_date=TODAY).data.item

    result = lab.update_lab_item(generated.id, LabItemUpdateInput(planned_lower_qty=25), admin)

    assert result.status_code == 400


def test_clearing_plan_sends_order_back_to_waiting(lab, admin):
    item = lab.add_lab_item(order(upper=1, lower=1), admin).data

    result = lab.update_lab_item(
        item.id, LabItemUpdateInput(planned_upper_qty=0, planned_lower_qty=0), admin,
    )

    assert result.data.status == LabStatus.AGUARDANDO_INICIAR
    assert result.data.planning_defined_at is None


def test_update_ignores_explicit_none_on_required_fields(lab, store, admin):
    item = lab.add_lab_item(order(upper=1, lower=1), admin).data

    result = lab.update_lab_item(
        item.id,
        LabItemUpdateInput(planned_upper_qty=None, status=None, notes="Conferir"),
        admin,
    )

    assert result.success
    stored = store.load().find_lab_item(item.id)
    assert stored.planned_upper_qty == 1
    assert stored.status == item.status
    assert stored.notes == "Conferir"


def test_update_clears_notes_with_none(lab, admin):
    item = lab.add_lab_item(order(upper=1, lower=1), admin).data
    lab.update_lab_item(item.id, LabItemUpdateInput(notes="Conferir"), admin)

    result = lab.update_lab_item(item.id, LabItemUpdateInput(notes=None), admin)

    assert result.data.notes is None


def test_delete_releases_plates(lab, bank, store, admin):
    item = lab.add_lab_item(order(upper=2, lower=2), admin).data

    result = lab.delete_lab_item(item.id, admin)

    assert result.success
    assert store.load().find_lab_item(item.id) is None
    assert bank.get_replacement_bank_summary(APPROVED_CASE_ID, admin).data.remaining_balance == 40
    assert lab.delete_lab_item(item.id, admin).status_code == 404


# ---------------------------------------------------------------------------
# generate_lab_order
# ---------------------------------------------------------------------------

def test_generate_lab_order_is_idempotent(lab, admin):
    first = lab.generate_lab_order(APPROVED_CASE_ID, admin, on_date=TODAY)

    assert first.status_code == 201
    assert not first.data.already_exists
    item = first.data.item
    assert item.request_kind == LabRequestKind.PRODUCAO
    assert item.status == LabStatus.AGUARDANDO_INICIAR
    assert item.request_code == "A-0001/1"
    assert item.due_date == TODAY + timedelta(days=7)

    second = lab.generate_lab_order(APPROVED_CASE_ID, admin, on_date=TODAY)
    assert second.data.already_exists
    assert second.data.item.id == item.id


def test_generate_lab_order_requires_approved_contract(lab, admin):
    assert lab.generate_lab_order(PENDING_CASE_ID, admin).status_code == 409
    assert lab.generate_lab_order("A-0404", admin).status_code == 404


# ---------------------------------------------------------------------------
# Programmed replenishment
# ---------------------------------------------------------------------------

def test_replenishment_raised_once_when_due(lab, store, admin):
    deliver_first_tray(store)

    items = lab.list_lab_items(admin, on_date=TRAY_2_DUE).data
    again = lab.list_lab_items(admin, on_date=TRAY_2_DUE).data

    programmed = [i for i in items if i.request_kind == LabRequestKind.REPOSICAO_PROGRAMADA]
    assert len(programmed) == 1
    assert programmed[0].tray_number == 2
    assert programmed[0].expected_replacement_date == TRAY_2_DUE
    assert programmed[0].request_code == "A-0001/1"
    assert programmed[0].status == LabStatus.AGUARDANDO_INICIAR
    assert len([i for i in again if i.request_kind == LabRequestKind.REPOSICAO_PROGRAMADA]) == 1
    assert store.load().audit_logs[0].action == "lab.replenishment_created"


def test_no_replenishment_before_due_date(lab, store, admin):
    deliver_first_tray(store)

    items = lab.list_lab_items(admin, on_date=TRAY_2_DUE - timedelta(days=1)).data

    assert not any(i.request_kind == LabRequestKind.REPOSICAO_PROGRAMADA for i in items)


def test_no_replenishment_before_first_delivery(lab, admin):
    items = lab.list_lab_items(admin, on_date=TRAY_2_DUE + timedelta(days=60)).data

    assert not any(i.request_kind == LabRequestKind.REPOSICAO_PROGRAMADA for i in items)


def test_lead_days_raise_replenishment_early(lab, store, config, admin):
    config.REPLENISHMENT_LEAD_DAYS = 3
    deliver_first_tray(store)

    items = lab.list_lab_items(admin, on_date=TRAY_2_DUE - timedelta(days=3)).data

    programmed = [i for i in items if i.request_kind == LabRequestKind.REPOSICAO_PROGRAMADA]
    assert [i.tray_number for i in programmed] == [2]
    assert programmed[0].planned_date == TRAY_2_DUE - timedelta(days=3)


# ---------------------------------------------------------------------------
# Advance orders
# ---------------------------------------------------------------------------

def test_advance_order_consumes_replenishment(lab, store, admin):
    deliver_first_tray(store)
    source = next(
        i for i in lab.list_lab_items(admin, on_date=TRAY_2_DUE).data
        if i.request_kind == LabRequestKind.REPOSICAO_PROGRAMADA
    )

    result = lab.create_advance_lab_order(
        source.id, AdvanceOrderInput(planned_upper_qty=2, planned_lower_qty=2), admin, on_date=TRAY_2_DUE,
    )

    assert result.status_code == 201
    item = result.data
    assert item.request_code == source.request_code
    assert item.request_kind == LabRequestKind.PRODUCAO
    assert item.tray_number == 2
    assert item.status == LabStatus.AGUARDANDO_INICIAR
    assert item.priority == LabPriority.URGENTE
    assert item.source_lab_item_id == source.id
    document = store.load()
    assert document.find_lab_item(source.id) is None
    assert [entry.action for entry in document.audit_logs[:2]] == [
        "lab.advance_created", "lab.advance_source_consumed",
    ]


def test_advance_order_from_production_order_keeps_source(lab, store, admin):
    source = lab.generate_lab_order(APPROVED_CASE_ID, admin, on_date=TODAY).data.item

    item = lab.create_advance_lab_order(
        source.id, AdvanceOrderInput(planned_upper_qty=1, planned_lower_qty=1), admin,
    ).data

    assert item.request_code == "A-0001/2"
    assert item.tray_number == 1
    assert store.load().find_lab_item(source.id) is not None


def test_advance_order_validations(lab, admin):
    source = lab.generate_lab_order(APPROVED_CASE_ID, admin, on_date=TODAY).data.item

    zero = lab.create_advance_lab_order(source.id, AdvanceOrderInput(planned_upper_qty=0, planned_lower_qty=0), admin)
    assert zero.status_code == 400
    unlinked = lab.create_advance_lab_order("qa_lab_1", AdvanceOrderInput(planned_upper_qty=1, planned_lower_qty=0), admin)
    assert unlinked.status_code == 400
    missing = lab.create_advance_lab_order("missing", AdvanceOrderInput(planned_upper_qty=1, planned_lower_qty=0), admin)
    assert missing.status_code == 404
