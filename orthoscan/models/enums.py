"""
Shared Enumerations for OrthoScan Models.

All string enumerations for type-safe field constraints.  Values are the
exact Portuguese spellings stored in the application document, and
StrEnum values compare equal to their string equivalents, so persisted
data like ``"aguardando_iniciar"`` round-trips without translation.
"""

from __future__ import annotations
from enum import StrEnum


class UserRole(StrEnum):
    """Valid user roles in the system."""

    MASTER_ADMIN = "master_admin"
    DENTIST_ADMIN = "dentist_admin"
    DENTIST_CLIENT = "dentist_client"
    CLINIC_CLIENT = "clinic_client"
    LAB_TECH = "lab_tech"
    RECEPTIONIST = "receptionist"


class ArchCoverage(StrEnum):
    """Which dental arches a scan, case or lab order covers."""

    SUPERIOR = "superior"
    INFERIOR = "inferior"
    AMBOS = "ambos"


class BankArch(StrEnum):
    """Single arch used by replacement bank entries and delivery lots."""

    SUPERIOR = "superior"
    INFERIOR = "inferior"


class ScanStatus(StrEnum):
    """Scan intake lifecycle.

    ``CONVERTIDO`` is terminal: the scan produced a Case and is linked to it.
    """

    PENDENTE = "pendente"
    APROVADO = "aprovado"
    REPROVADO = "reprovado"
    CONVERTIDO = "convertido"


class AttachmentKind(StrEnum):
    """File-kind tag for scan and case attachments."""

    SCAN3D = "scan3d"
    FOTO_INTRA = "foto_intra"
    FOTO_EXTRA = "foto_extra"
    RAIOX = "raiox"
    DICOM = "dicom"
    PROJETO = "projeto"
    OUTRO = "outro"


class AttachmentArch(StrEnum):
    """Arch sub-classification for 3-D scan files."""

    SUPERIOR = "superior"
    INFERIOR = "inferior"
    MORDIDA = "mordida"


class RxType(StrEnum):
    """X-ray sub-classification."""

    PANORAMICA = "panoramica"
    TELERADIOGRAFIA = "teleradiografia"
    TOMOGRAFIA = "tomografia"


class AttachmentStatus(StrEnum):
    """``ERRO`` flags an attachment without deleting it."""

    OK = "ok"
    ERRO = "erro"


class ProductType(StrEnum):
    """Products a case can be opened for.

    Only the ``alinhador_*`` products carry a tray sequence.
    """

    ESCANEAMENTO = "escaneamento"
    ALINHADOR_3M = "alinhador_3m"
    ALINHADOR_6M = "alinhador_6m"
    ALINHADOR_12M = "alinhador_12m"
    CONTENCAO = "contencao"
    GUIA_CIRURGICO = "guia_cirurgico"
    PLACA_BRUXISMO = "placa_bruxismo"
    PLACA_CLAREAMENTO = "placa_clareamento"
    PROTETOR_BUCAL = "protetor_bucal"
    BIOMODELO = "biomodelo"

    @property
    def is_aligner(self) -> bool:
        return self.value.startswith("alinhador_")


class TreatmentOrigin(StrEnum):
    """Lab-owned clinics produce ``interno`` cases (treatment code prefix ``A``)."""

    INTERNO = "interno"
    EXTERNO = "externo"


class CasePhase(StrEnum):
    """Case phase state machine, in forward order."""

    PLANEJAMENTO = "planejamento"
    ORCAMENTO = "orcamento"
    CONTRATO_PENDENTE = "contrato_pendente"
    CONTRATO_APROVADO = "contrato_aprovado"
    EM_PRODUCAO = "em_producao"
    FINALIZADO = "finalizado"


class ContractStatus(StrEnum):
    """Commercial contract gate for production."""

    PENDENTE = "pendente"
    APROVADO = "aprovado"


class TrayState(StrEnum):
    """Per-tray state machine, in forward order.  Never regresses."""

    PENDENTE = "pendente"
    EM_PRODUCAO = "em_producao"
    PRONTA = "pronta"
    ENTREGUE = "entregue"


class LabStatus(StrEnum):
    """Lab board columns, in forward order."""

    AGUARDANDO_INICIAR = "aguardando_iniciar"
    EM_PRODUCAO = "em_producao"
    CONTROLE_QUALIDADE = "controle_qualidade"
    PRONTAS = "prontas"


class LabPriority(StrEnum):
    BAIXO = "Baixo"
    MEDIO = "Medio"
    URGENTE = "Urgente"


class LabRequestKind(StrEnum):
    """Why a lab item exists.

    ``REPOSICAO_PROGRAMADA`` items are derived by the replenishment sweep;
    ``RECONFECCAO`` items are only created by an explicit rework request.
    """

    PRODUCAO = "producao"
    RECONFECCAO = "reconfeccao"
    REPOSICAO_PROGRAMADA = "reposicao_programada"


class BankEntryStatus(StrEnum):
    """Replacement bank plate states.

    ``DEFEITUOSA`` entries are never reused; rework adds a fresh
    ``DISPONIVEL`` entry for the same plate instead.  ``REWORK`` is only
    read from older documents and is never written.
    """

    DISPONIVEL = "disponivel"
    EM_PRODUCAO = "em_producao"
    ENTREGUE = "entregue"
    REWORK = "rework"
    DEFEITUOSA = "defeituosa"


class AuditEntity(StrEnum):
    CASE = "case"
    LAB = "lab"
    SCAN = "scan"
    PATIENT = "patient"


class AlertType(StrEnum):
    """Replenishment alert windows."""

    WARNING_15D = "warning_15d"
    WARNING_10D = "warning_10d"
    OVERDUE = "overdue"


class AlertSeverity(StrEnum):
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Permission(StrEnum):
    """Fine-grained permissions granted to roles by ``orthoscan.auth``."""

    DASHBOARD_READ = "dashboard.read"
    USERS_READ = "users.read"
    USERS_WRITE = "users.write"
    USERS_DELETE = "users.delete"
    DENTISTS_READ = "dentists.read"
    DENTISTS_WRITE = "dentists.write"
    DENTISTS_DELETE = "dentists.delete"
    CLINICS_READ = "clinics.read"
    CLINICS_WRITE = "clinics.write"
    CLINICS_DELETE = "clinics.delete"
    PATIENTS_READ = "patients.read"
    PATIENTS_WRITE = "patients.write"
    PATIENTS_DELETE = "patients.delete"
    SCANS_READ = "scans.read"
    SCANS_WRITE = "scans.write"
    SCANS_APPROVE = "scans.approve"
    SCANS_DELETE = "scans.delete"
    CASES_READ = "cases.read"
    CASES_WRITE = "cases.write"
    CASES_DELETE = "cases.delete"
    LAB_READ = "lab.read"
    LAB_WRITE = "lab.write"
    DOCS_READ = "docs.read"
    DOCS_WRITE = "docs.write"
    SETTINGS_READ = "settings.read"
    SETTINGS_WRITE = "settings.write"
