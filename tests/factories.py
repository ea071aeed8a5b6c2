"""Builders for seeded test documents."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

from orthoscan.models import (
    AppDocument,
    Attachment,
    Case,
    Clinic,
    Contract,
    LabItem,
    Scan,
    Tray,
    User,
)
from orthoscan.models.enums import (
    ArchCoverage,
    AttachmentArch,
    AttachmentKind,
    CasePhase,
    ContractStatus,
    LabRequestKind,
    LabStatus,
    ProductType,
    RxType,
    ScanStatus,
    TreatmentOrigin,
    UserRole,
)
from orthoscan.models.service_models import LabItemInput
from orthoscan.utils.general import add_days

SCAN_DATE = date(2026, 1, 5)
CREATED_AT = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)

INTERNAL_CLINIC_ID = "clinic_arrimo"
EXTERNAL_CLINIC_ID = "clinic_sorriso"

APPROVED_CASE_ID = "A-0001"
PENDING_CASE_ID = "C-0001"
QA_SCAN_ID = "qa_scan_1"


def make_user(role: UserRole, user_id: Optional[str] = None) -> User:
    user_id = user_id or f"user_{role}"
    return User(id=user_id, email=f"{user_id}@orthoscan.test", name=user_id.title(), role=role)


def make_attachment(
    att_id: str,
    kind: AttachmentKind,
    arch: Optional[AttachmentArch] = None,
    rx_type: Optional[RxType] = None,
) -> Attachment:
    return Attachment(
        id=att_id,
        name=f"{att_id}.bin",
        kind=kind,
        arch=arch,
        rx_type=rx_type,
        url=f"https://files.orthoscan.test/{att_id}",
        file_path=f"scans/{INTERNAL_CLINIC_ID}/pat_1/{att_id}.bin",
        attached_at=CREATED_AT,
        created_at=CREATED_AT,
    )


def complete_attachments(prefix: str = "qa_scan_att") -> list[Attachment]:
    """Nine files covering every required slot of an ``ambos`` scan."""
    specs = [
        (AttachmentKind.SCAN3D, AttachmentArch.SUPERIOR, None),
        (AttachmentKind.SCAN3D, AttachmentArch.INFERIOR, None),
        (AttachmentKind.SCAN3D, AttachmentArch.MORDIDA, None),
        (AttachmentKind.FOTO_INTRA, None, None),
        (AttachmentKind.FOTO_INTRA, None, None),
        (AttachmentKind.FOTO_EXTRA, None, None),
        (AttachmentKind.FOTO_EXTRA, None, None),
        (AttachmentKind.RAIOX, None, RxType.PANORAMICA),
        (AttachmentKind.OUTRO, None, None),
    ]
    return [
        make_attachment(f"{prefix}_{index}", kind, arch, rx_type)
        for index, (kind, arch, rx_type) in enumerate(specs, start=1)
    ]


def make_scan(
    scan_id: str = QA_SCAN_ID,
    status: ScanStatus = ScanStatus.APROVADO,
    arch: ArchCoverage = ArchCoverage.AMBOS,
    clinic_id: str = INTERNAL_CLINIC_ID,
    attachments: Optional[list[Attachment]] = None,
    service_order_code: Optional[str] = None,
    purpose_product_type: Optional[ProductType] = None,
) -> Scan:
    return Scan(
        id=scan_id,
        patient_name="Ana Souza",
        patient_id="pat_1",
        dentist_id="dentist_1",
        clinic_id=clinic_id,
        scan_date=SCAN_DATE,
        arch=arch,
        complaint="Queixa A",
        dentist_guidance="Orientacao A",
        purpose_product_type=purpose_product_type,
        attachments=attachments if attachments is not None else complete_attachments(),
        status=status,
        service_order_code=service_order_code,
        created_at=CREATED_AT,
        updated_at=CREATED_AT,
    )


def make_case(
    case_id: str = APPROVED_CASE_ID,
    total_trays: int = 20,
    change_every_days: int = 7,
    contract_approved: bool = True,
    arch: ArchCoverage = ArchCoverage.AMBOS,
    clinic_id: str = INTERNAL_CLINIC_ID,
) -> Case:
    upper = total_trays if arch != ArchCoverage.INFERIOR else 0
    lower = total_trays if arch != ArchCoverage.SUPERIOR else 0
    return Case(
        id=case_id,
        treatment_code=case_id,
        treatment_origin=TreatmentOrigin.INTERNO if case_id.startswith("A") else TreatmentOrigin.EXTERNO,
        patient_name=f"Patient {case_id}",
        patient_id=f"pat_{case_id}",
        clinic_id=clinic_id,
        product_type=ProductType.ALINHADOR_12M,
        scan_date=SCAN_DATE,
        arch=arch,
        total_trays=total_trays,
        total_trays_upper=upper,
        total_trays_lower=lower,
        change_every_days=change_every_days,
        phase=CasePhase.CONTRATO_APROVADO if contract_approved else CasePhase.CONTRATO_PENDENTE,
        contract=Contract(
            status=ContractStatus.APROVADO if contract_approved else ContractStatus.PENDENTE,
            approved_at=CREATED_AT if contract_approved else None,
        ),
        trays=[
            Tray(tray_number=number, due_date=add_days(SCAN_DATE, change_every_days * number))
            for number in range(1, total_trays + 1)
        ],
        created_at=CREATED_AT,
        updated_at=CREATED_AT,
    )


def make_lab_item(
    item_id: str,
    case_id: Optional[str] = None,
    status: LabStatus = LabStatus.AGUARDANDO_INICIAR,
    planned_upper_qty: int = 0,
    planned_lower_qty: int = 0,
    tray_number: int = 1,
    request_kind: LabRequestKind = LabRequestKind.PRODUCAO,
    request_code: Optional[str] = None,
) -> LabItem:
    return LabItem(
        id=item_id,
        case_id=case_id,
        request_code=request_code,
        request_kind=request_kind,
        arch=ArchCoverage.AMBOS,
        tray_number=tray_number,
        patient_name="Walk-in order",
        planned_upper_qty=planned_upper_qty,
        planned_lower_qty=planned_lower_qty,
        planned_date=SCAN_DATE,
        due_date=add_days(SCAN_DATE, 7),
        status=status,
        created_at=CREATED_AT,
        updated_at=CREATED_AT,
    )


def seed_document() -> AppDocument:
    """Two clinics, one approved scan, an approved and a pending case, two free lab orders."""
    return AppDocument(
        clinics=[
            Clinic(id=INTERNAL_CLINIC_ID, trade_name="ARRIMO"),
            Clinic(id=EXTERNAL_CLINIC_ID, trade_name="Clinica Sorriso"),
        ],
        users=[
            make_user(UserRole.MASTER_ADMIN, "qa_admin"),
            make_user(UserRole.LAB_TECH, "qa_lab_tech"),
        ],
        scans=[make_scan()],
        cases=[
            make_case(APPROVED_CASE_ID),
            make_case(PENDING_CASE_ID, total_trays=10, contract_approved=False, clinic_id=EXTERNAL_CLINIC_ID),
        ],
        lab_items=[
            make_lab_item("qa_lab_1"),
            make_lab_item(
                "qa_lab_2",
                status=LabStatus.EM_PRODUCAO,
                planned_upper_qty=1,
                planned_lower_qty=1,
            ),
        ],
    )


def produce_trays(lab, user, case_id: str, upper: int, lower: int, tray_number: int = 1) -> LabItem:
    """Run a planned production order through the board until its trays are ``pronta``."""
    item = lab.add_lab_item(
        LabItemInput(
            case_id=case_id,
            arch=ArchCoverage.AMBOS,
            tray_number=tray_number,
            patient_name=f"Patient {case_id}",
            planned_upper_qty=upper,
            planned_lower_qty=lower,
            planned_date=SCAN_DATE,
            due_date=add_days(SCAN_DATE, 7),
        ),
        user,
    ).data
    lab.move_lab_item(item.id, LabStatus.CONTROLE_QUALIDADE, user)
    return lab.move_lab_item(item.id, LabStatus.PRONTAS, user).data
