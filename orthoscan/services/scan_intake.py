"""
Scan Intake Service.

Stores intra-oral scans with their attachments and converts an approved,
complete scan into a treatment Case.

Attachment bytes are uploaded before the store transaction starts; a
failed or unconfigured upload keeps the attachment as a local pending
file instead of failing the intake.

Operations:
    - list_scans / get_scan
    - create_scan / update_scan / approve_scan / reject_scan / delete_scan
    - add_scan_attachment
    - mark_scan_attachment_error / clear_scan_attachment_error
    - create_case_from_scan
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from orthoscan.auth import CurrentUser
from orthoscan.config import AppConfig
from orthoscan.logger import StructuredLogger
from orthoscan.models.case import Case, Contract, Tray
from orthoscan.models.enums import (
    ArchCoverage,
    AttachmentArch,
    AttachmentKind,
    AttachmentStatus,
    AuditEntity,
    CasePhase,
    ContractStatus,
    Permission,
    ProductType,
    ScanStatus,
)
from orthoscan.models.scan import Attachment, Scan
from orthoscan.models.service_models import (
    AttachmentInput,
    CaseFromScanInput,
    ScanCreateInput,
    ScanUpdateInput,
    ServiceResult,
)
from orthoscan.services.base_service import BaseService
from orthoscan.services.codes import (
    allocate_treatment_code,
    is_code_in_use,
    origin_for_clinic,
    prefix_for_origin,
    register_treatment_code,
)
from orthoscan.services.storage_service import AttachmentStorageService
from orthoscan.store import DocumentStore
from orthoscan.utils.general import add_days, new_id, now_utc

UPLOAD_SCOPE = "scans"


def missing_required_files(scan: Scan) -> list[str]:
    """Checklist labels still missing before the scan can become a case.

    Upper and lower 3-D scans are required according to the scan arch;
    one intra-oral and one extra-oral photo are always required.
    """
    def has(kind: AttachmentKind, arch: Optional[AttachmentArch] = None) -> bool:
        return any(
            att.kind == kind and (arch is None or att.arch == arch)
            for att in scan.attachments
        )

    missing: list[str] = []
    if scan.arch in (ArchCoverage.SUPERIOR, ArchCoverage.AMBOS) and not has(
        AttachmentKind.SCAN3D, AttachmentArch.SUPERIOR
    ):
        missing.append("upper 3D scan")
    if scan.arch in (ArchCoverage.INFERIOR, ArchCoverage.AMBOS) and not has(
        AttachmentKind.SCAN3D, AttachmentArch.INFERIOR
    ):
        missing.append("lower 3D scan")
    if not has(AttachmentKind.FOTO_INTRA):
        missing.append("intra-oral photo")
    if not has(AttachmentKind.FOTO_EXTRA):
        missing.append("extra-oral photo")
    return missing


def build_trays(total: int, scan_date, change_every_days: int) -> list[Tray]:
    """Pending trays, tray *n* due ``n * change_every_days`` after the scan."""
    return [
        Tray(tray_number=number, due_date=add_days(scan_date, change_every_days * number))
        for number in range(1, total + 1)
    ]


class ScanIntakeService(BaseService):
    """Scan records, their attachments and scan-to-case conversion."""

    def __init__(
        self,
        store: DocumentStore,
        config: AppConfig,
        storage: AttachmentStorageService,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(store, config, logger)
        self._storage = storage

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _code_in_use(code: str) -> ServiceResult[Scan]:
        return ServiceResult(
            success=False,
            error=f"Service order code {code} is already in use.",
            status_code=409,
        )

    def _build_attachment(
        self,
        att: AttachmentInput,
        clinic_id: Optional[str],
        owner_id: str,
        timestamp: datetime,
    ) -> Attachment:
        attachment = Attachment(
            id=att.id or new_id("scan_file"),
            name=att.name,
            kind=att.kind,
            slot_id=att.slot_id,
            rx_type=att.rx_type,
            arch=att.arch,
            is_local=att.is_local,
            url=att.url,
            file_path=att.file_path,
            mime=att.mime,
            size=att.size,
            status=att.status,
            attached_at=att.attached_at or timestamp,
            note=att.note,
            created_at=timestamp,
        )
        if att.content is None:
            return attachment

        stored = self._storage.upload(
            scope=UPLOAD_SCOPE,
            clinic_id=clinic_id,
            owner_id=owner_id,
            file_name=att.name,
            content=att.content,
            mime=att.mime,
        )
        if stored is None:
            attachment.is_local = True
            return attachment
        attachment.is_local = False
        attachment.url = stored.url
        attachment.file_path = stored.path
        attachment.size = att.size if att.size is not None else len(att.content)
        return attachment

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_scans(
        self,
        current_user: Optional[CurrentUser] = None,
    ) -> ServiceResult[list[Scan]]:
        """Scans, most recent scan date first."""
        denied = self._forbidden(current_user, Permission.SCANS_READ)
        if denied:
            return denied
        scans = sorted(self._store.load().scans, key=lambda scan: scan.scan_date, reverse=True)
        return ServiceResult(success=True, data=scans)

    def get_scan(
        self,
        scan_id: str,
        current_user: Optional[CurrentUser] = None,
    ) -> ServiceResult[Scan]:
        denied = self._forbidden(current_user, Permission.SCANS_READ)
        if denied:
            return denied
        scan = self._store.load().find_scan(scan_id)
        if scan is None:
            return ServiceResult(success=False, error="Scan not found.", status_code=404)
        return ServiceResult(success=True, data=scan)

    # ------------------------------------------------------------------
    # Public: create_scan
    # ------------------------------------------------------------------

    def create_scan(
        self,
        payload: ScanCreateInput,
        current_user: Optional[CurrentUser],
    ) -> ServiceResult[Scan]:
        """Store a new scan.

        A ``serviceOrderCode`` is allocated from the treatment-code
        sequence when the payload has none.
        """
        denied = self._forbidden(current_user, Permission.SCANS_WRITE)
        if denied:
            return denied
        try:
            if payload.service_order_code and is_code_in_use(self._store.load(), payload.service_order_code):
                return self._code_in_use(payload.service_order_code)
            timestamp = now_utc()
            owner_id = self._storage.owner_segment(payload.patient_id, payload.patient_name)
            attachments = [
                self._build_attachment(att, payload.clinic_id, owner_id, timestamp)
                for att in payload.attachments
            ]

            with self._store.transaction() as tx:
                document = tx.document
                if payload.service_order_code:
                    service_order_code = payload.service_order_code
                    if is_code_in_use(document, service_order_code):
                        return self._code_in_use(service_order_code)
                    register_treatment_code(document, service_order_code)
                else:
                    origin = origin_for_clinic(document, payload.clinic_id, self._config)
                    service_order_code = allocate_treatment_code(document, prefix_for_origin(origin))

                scan = Scan(
                    id=new_id("scan"),
                    patient_name=payload.patient_name,
                    patient_id=payload.patient_id,
                    dentist_id=payload.dentist_id,
                    requested_by_dentist_id=payload.requested_by_dentist_id,
                    clinic_id=payload.clinic_id,
                    scan_date=payload.scan_date,
                    arch=payload.arch,
                    complaint=payload.complaint,
                    dentist_guidance=payload.dentist_guidance,
                    notes=payload.notes,
                    purpose_product_type=payload.purpose_product_type,
                    attachments=attachments,
                    status=payload.status,
                    service_order_code=service_order_code,
                    created_at=timestamp,
                    updated_at=timestamp,
                )
                document.scans.insert(0, scan)
                self._audit(
                    document, "scan.create", AuditEntity.SCAN, scan.id, current_user,
                    f"Scan created for {scan.patient_name}.",
                )
                tx.commit()
            return ServiceResult(success=True, data=scan, status_code=201)
        except Exception as exc:
            return self._unexpected("create_scan", exc)

    # ------------------------------------------------------------------
    # Public: update / approve / reject
    # ------------------------------------------------------------------

    def update_scan(
        self,
        scan_id: str,
        patch: ScanUpdateInput,
        current_user: Optional[CurrentUser],
    ) -> ServiceResult[Scan]:
        denied = self._forbidden(current_user, Permission.SCANS_WRITE)
        if denied:
            return denied
        try:
            with self._store.transaction() as tx:
                scan = tx.document.find_scan(scan_id)
                if scan is None:
                    return ServiceResult(success=False, error="Scan not found.", status_code=404)
                for field, value in patch.changes().items():
                    setattr(scan, field, value)
                scan.updated_at = now_utc()
                self._audit(
                    tx.document, "scan.update", AuditEntity.SCAN, scan.id, current_user,
                    "Scan updated.",
                )
                tx.commit()
            return ServiceResult(success=True, data=scan)
        except Exception as exc:
            return self._unexpected(f"update_scan({scan_id})", exc)

    def approve_scan(
        self,
        scan_id: str,
        current_user: Optional[CurrentUser],
    ) -> ServiceResult[Scan]:
        return self._set_status(scan_id, ScanStatus.APROVADO, "scan.approve", current_user)

    def reject_scan(
        self,
        scan_id: str,
        current_user: Optional[CurrentUser],
    ) -> ServiceResult[Scan]:
        return self._set_status(scan_id, ScanStatus.REPROVADO, "scan.reject", current_user)

    def _set_status(
        self,
        scan_id: str,
        status: ScanStatus,
        action: str,
        current_user: Optional[CurrentUser],
    ) -> ServiceResult[Scan]:
        denied = self._forbidden(current_user, Permission.SCANS_APPROVE)
        if denied:
            return denied
        try:
            with self._store.transaction() as tx:
                scan = tx.document.find_scan(scan_id)
                if scan is None:
                    return ServiceResult(success=False, error="Scan not found.", status_code=404)
                if scan.status == ScanStatus.CONVERTIDO:
                    return ServiceResult(
                        success=False,
                        error="Scan was already converted into a case.",
                        status_code=409,
                    )
                scan.status = status
                scan.updated_at = now_utc()
                self._audit(
                    tx.document, action, AuditEntity.SCAN, scan.id, current_user,
                    f"Scan marked as {status}.",
                )
                tx.commit()
            return ServiceResult(success=True, data=scan)
        except Exception as exc:
            return self._unexpected(f"{action}({scan_id})", exc)

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    def add_scan_attachment(
        self,
        scan_id: str,
        attachment: AttachmentInput,
        current_user: Optional[CurrentUser],
    ) -> ServiceResult[Scan]:
        """Append one attachment; existing attachments are never replaced."""
        denied = self._forbidden(current_user, Permission.SCANS_WRITE)
        if denied:
            return denied
        try:
            existing = self._store.load().find_scan(scan_id)
            if existing is None:
                return ServiceResult(success=False, error="Scan not found.", status_code=404)
            timestamp = now_utc()
            new_attachment = self._build_attachment(
                attachment,
                existing.clinic_id,
                self._storage.owner_segment(existing.patient_id, existing.patient_name),
                timestamp,
            )

            with self._store.transaction() as tx:
                scan = tx.document.find_scan(scan_id)
                if scan is None:
                    return ServiceResult(success=False, error="Scan not found.", status_code=404)
                scan.attachments.append(new_attachment)
                scan.updated_at = timestamp
                self._audit(
                    tx.document, "scan.update", AuditEntity.SCAN, scan.id, current_user,
                    f"Attachment {new_attachment.name} added.",
                )
                tx.commit()
            return ServiceResult(success=True, data=scan)
        except Exception as exc:
            return self._unexpected(f"add_scan_attachment({scan_id})", exc)

    def mark_scan_attachment_error(
        self,
        scan_id: str,
        attachment_id: str,
        reason: str,
        current_user: Optional[CurrentUser],
    ) -> Optional[Scan]:
        """Flag an attachment as erroneous.  The file itself is kept.

        Returns ``None`` when the scan does not exist or the trimmed reason
        is blank.
        """
        trimmed = reason.strip()
        if not trimmed:
            return None
        return self._set_attachment_status(
            scan_id, attachment_id, AttachmentStatus.ERRO, trimmed, current_user,
        )

    def clear_scan_attachment_error(
        self,
        scan_id: str,
        attachment_id: str,
        current_user: Optional[CurrentUser],
    ) -> Optional[Scan]:
        return self._set_attachment_status(
            scan_id, attachment_id, AttachmentStatus.OK, None, current_user,
        )

    def _set_attachment_status(
        self,
        scan_id: str,
        attachment_id: str,
        status: AttachmentStatus,
        reason: Optional[str],
        current_user: Optional[CurrentUser],
    ) -> Optional[Scan]:
        if self._forbidden(current_user, Permission.SCANS_WRITE):
            self._logger.warning(
                "User %s may not change attachment status on scan %s.",
                current_user.id if current_user else "system",
                scan_id,
            )
            return None
        try:
            with self._store.transaction() as tx:
                scan = tx.document.find_scan(scan_id)
                if scan is None:
                    return None
                attachment = scan.find_attachment(attachment_id)
                if attachment is None:
                    self._logger.warning(
                        "Attachment %s not found on scan %s.", attachment_id, scan_id,
                    )
                    return None
                timestamp = now_utc()
                attachment.status = status
                if status == AttachmentStatus.ERRO:
                    attachment.flagged_at = timestamp
                    attachment.flagged_reason = reason
                scan.updated_at = timestamp
                self._audit(
                    tx.document, "scan.update", AuditEntity.SCAN, scan.id, current_user,
                    f"Attachment {attachment_id} marked as {status}.",
                )
                tx.commit()
            return scan
        except Exception as exc:
            self._unexpected(f"set_attachment_status({scan_id}, {attachment_id})", exc)
            return None

    # ------------------------------------------------------------------
    # Public: delete_scan
    # ------------------------------------------------------------------

    def delete_scan(
        self,
        scan_id: str,
        current_user: Optional[CurrentUser],
    ) -> ServiceResult[Scan]:
        """Remove a scan; cases created from it keep existing but lose the link."""
        denied = self._forbidden(current_user, Permission.SCANS_DELETE)
        if denied:
            return denied
        try:
            with self._store.transaction() as tx:
                document = tx.document
                scan = document.find_scan(scan_id)
                if scan is None:
                    return ServiceResult(success=False, error="Scan not found.", status_code=404)
                timestamp = now_utc()
                document.scans = [item for item in document.scans if item.id != scan_id]
                for case in document.cases:
                    if case.source_scan_id == scan_id:
                        case.source_scan_id = None
                        case.updated_at = timestamp
                self._audit(
                    document, "scan.delete", AuditEntity.SCAN, scan_id, current_user,
                    "Scan removed.",
                )
                if scan.patient_id:
                    self._audit(
                        document, "patient.history.scan_delete", AuditEntity.PATIENT,
                        scan.patient_id, current_user,
                        f"Scan removed: {scan.service_order_code or scan.id}.",
                    )
                tx.commit()
            return ServiceResult(success=True, data=scan)
        except Exception as exc:
            return self._unexpected(f"delete_scan({scan_id})", exc)

    # ------------------------------------------------------------------
    # Public: create_case_from_scan
    # ------------------------------------------------------------------

    def create_case_from_scan(
        self,
        scan_id: str,
        payload: CaseFromScanInput,
        current_user: Optional[CurrentUser],
    ) -> ServiceResult[Case]:
        """Convert an approved scan into a Case at ``planejamento``.

        Preconditions, in order: the scan exists, is ``aprovado``, is not
        linked yet, carries the required files, and (for aligner
        products) has a positive tray total for its arch.  The case id
        is its treatment code: the scan's service order code when set,
        otherwise the next code for the clinic's prefix.
        """
        denied = self._forbidden(current_user, Permission.CASES_WRITE)
        if denied:
            return denied
        try:
            with self._store.transaction() as tx:
                document = tx.document
                scan = document.find_scan(scan_id)
                if scan is None:
                    return ServiceResult(success=False, error="Scan not found.", status_code=404)
                if scan.status != ScanStatus.APROVADO:
                    return ServiceResult(
                        success=False,
                        error="Only approved scans can create a case.",
                        status_code=409,
                    )
                if scan.linked_case_id:
                    return ServiceResult(
                        success=False,
                        error="This scan was already converted into a case.",
                        status_code=409,
                    )
                missing = missing_required_files(scan)
                if missing:
                    return ServiceResult(
                        success=False,
                        error=f"Incomplete exam. Missing: {', '.join(missing)}.",
                        status_code=400,
                    )

                product_type = scan.purpose_product_type or ProductType.ALINHADOR_12M
                is_aligner = product_type.is_aligner
                upper = payload.total_trays_upper if scan.arch != ArchCoverage.INFERIOR else 0
                lower = payload.total_trays_lower if scan.arch != ArchCoverage.SUPERIOR else 0
                if not is_aligner:
                    upper = lower = 0
                total = max(upper, lower)
                if is_aligner and total <= 0:
                    return ServiceResult(
                        success=False,
                        error="Enter the upper and/or lower tray total.",
                        status_code=400,
                    )

                origin = origin_for_clinic(document, scan.clinic_id, self._config)
                if scan.service_order_code:
                    treatment_code = scan.service_order_code
                    register_treatment_code(document, treatment_code)
                else:
                    treatment_code = allocate_treatment_code(document, prefix_for_origin(origin))
                if document.find_case(treatment_code) is not None:
                    return ServiceResult(
                        success=False,
                        error=f"A case with code {treatment_code} already exists.",
                        status_code=409,
                    )

                timestamp = now_utc()
                change_every_days = payload.change_every_days if is_aligner else 0
                case = Case(
                    id=treatment_code,
                    treatment_code=treatment_code,
                    treatment_origin=origin,
                    patient_name=scan.patient_name,
                    patient_id=scan.patient_id,
                    dentist_id=scan.dentist_id,
                    requested_by_dentist_id=scan.requested_by_dentist_id,
                    clinic_id=scan.clinic_id,
                    product_type=product_type,
                    scan_date=scan.scan_date,
                    arch=scan.arch,
                    total_trays=total,
                    total_trays_upper=upper,
                    total_trays_lower=lower,
                    change_every_days=change_every_days,
                    attachment_bonding_tray=payload.attachment_bonding_tray if is_aligner else False,
                    phase=CasePhase.PLANEJAMENTO,
                    contract=Contract(status=ContractStatus.PENDENTE),
                    trays=build_trays(total, scan.scan_date, change_every_days) if is_aligner else [],
                    scan_files=[att.model_copy(deep=True) for att in scan.attachments],
                    source_scan_id=scan.id,
                    complaint=scan.complaint,
                    dentist_guidance=scan.dentist_guidance,
                    planning_note=payload.planning_note,
                    created_at=timestamp,
                    updated_at=timestamp,
                )
                document.cases.insert(0, case)
                scan.status = ScanStatus.CONVERTIDO
                scan.linked_case_id = case.id
                scan.service_order_code = treatment_code
                scan.updated_at = timestamp
                self._audit(
                    document, "case.create_from_scan", AuditEntity.CASE, case.id, current_user,
                    f"Case {treatment_code} created from scan {scan.id}.",
                )
                tx.commit()
            return ServiceResult(success=True, data=case, status_code=201)
        except Exception as exc:
            return self._unexpected(f"create_case_from_scan({scan_id})", exc)
