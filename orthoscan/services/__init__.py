"""
Business Logic Services Package.

Scan intake, case lifecycle, lab pipeline, replacement bank and
replenishment services.  All of them share one ``DocumentStore`` and
return ``ServiceResult`` envelopes.

The ``create_services()`` factory wires every service together, returning
a typed dict that the calling layer (sweep job, API, UI) can consume
without knowing the internal dependency graph.
"""

from __future__ import annotations

from typing import Optional, TypedDict

from supabase import Client as SupabaseClient

from orthoscan.config import AppConfig
from orthoscan.logger import StructuredLogger, get_logger
from orthoscan.services.case_lifecycle import CaseLifecycleService
from orthoscan.services.lab_pipeline import LabPipelineService
from orthoscan.services.replacement_bank import ReplacementBankService
from orthoscan.services.replenishment import ReplenishmentService
from orthoscan.services.scan_intake import ScanIntakeService
from orthoscan.services.storage_service import AttachmentStorageService
from orthoscan.store import DocumentStore


class ServiceContainer(TypedDict, total=False):
    """Typed container for all application services."""

    # --- Infrastructure ---
    storage_service: AttachmentStorageService

    # --- Workflow ---
    scan_intake_service: ScanIntakeService
    case_lifecycle_service: CaseLifecycleService
    lab_pipeline_service: LabPipelineService
    replacement_bank_service: ReplacementBankService
    replenishment_service: ReplenishmentService


def create_services(
    store: DocumentStore,
    config: AppConfig,
    logger: Optional[StructuredLogger] = None,
    storage_client: Optional[SupabaseClient] = None,
) -> ServiceContainer:
    """
    Wire all services together.

    This is the single composition root for the service layer.  The
    entry point calls this once at startup.

    Args:
        store: Initialised document store shared by every service.
        config: Application configuration.
        logger: Parent logger; each service logs through a child of it.
        storage_client: Optional pre-built Supabase client (tests inject
            a fake).  Without one the client is created on first upload
            when storage is configured.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    logger = logger or get_logger("services")

    # ------------------------------------------------------------------
    # 1. Infrastructure
    # ------------------------------------------------------------------
    storage_service = AttachmentStorageService(
        config=config,
        logger=logger.child("storage"),
        client=storage_client,
    )

    # ------------------------------------------------------------------
    # 2. Workflow services
    # ------------------------------------------------------------------
    scan_intake_service = ScanIntakeService(
        store=store,
        config=config,
        storage=storage_service,
        logger=logger.child("scans"),
    )
    case_lifecycle_service = CaseLifecycleService(
        store=store,
        config=config,
        logger=logger.child("cases"),
    )
    lab_pipeline_service = LabPipelineService(
        store=store,
        config=config,
        logger=logger.child("lab"),
    )
    replacement_bank_service = ReplacementBankService(
        store=store,
        config=config,
        logger=logger.child("replacement_bank"),
    )
    replenishment_service = ReplenishmentService(
        store=store,
        config=config,
        logger=logger.child("replenishment"),
    )

    return ServiceContainer(
        storage_service=storage_service,
        scan_intake_service=scan_intake_service,
        case_lifecycle_service=case_lifecycle_service,
        lab_pipeline_service=lab_pipeline_service,
        replacement_bank_service=replacement_bank_service,
        replenishment_service=replenishment_service,
    )
