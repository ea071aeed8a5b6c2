from __future__ import annotations

import io
from typing import Optional

import pytest

from orthoscan.config import AppConfig
from orthoscan.logger import StructuredLogger
from orthoscan.models import AppDocument, User
from orthoscan.models.enums import UserRole
from orthoscan.services import ServiceContainer, create_services
from orthoscan.store import InMemoryDocumentStore
from tests.factories import make_user, seed_document
from tests.fakes import FakeSupabaseClient


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        _env_file=None,
        SUPABASE_URL="",
        INTERNAL_CLINIC_IDS=["clinic_arrimo"],
        REPLENISHMENT_LEAD_DAYS=0,
        LAB_ORDER_DUE_DAYS=7,
        AUDIT_LOG_MAX_ENTRIES=2000,
    )


@pytest.fixture(scope="session")
def logger(tmp_path_factory: pytest.TempPathFactory) -> StructuredLogger:
    log_file = tmp_path_factory.mktemp("logs") / "orthoscan-tests.log"
    return StructuredLogger(name="orthoscan.tests", stream=io.StringIO(), log_file=str(log_file))


@pytest.fixture
def document() -> AppDocument:
    return seed_document()


@pytest.fixture
def store(logger: StructuredLogger, document: AppDocument) -> InMemoryDocumentStore:
    return InMemoryDocumentStore(logger=logger, document=document)


@pytest.fixture
def storage_client() -> Optional[FakeSupabaseClient]:
    """Override in a test module to exercise uploads."""
    return None


@pytest.fixture
def services(
    store: InMemoryDocumentStore,
    config: AppConfig,
    logger: StructuredLogger,
    storage_client: Optional[FakeSupabaseClient],
) -> ServiceContainer:
    return create_services(store=store, config=config, logger=logger, storage_client=storage_client)


@pytest.fixture
def scans(services: ServiceContainer):
    return services["scan_intake_service"]


@pytest.fixture
def cases(services: ServiceContainer):
    return services["case_lifecycle_service"]


@pytest.fixture
def lab(services: ServiceContainer):
    return services["lab_pipeline_service"]


@pytest.fixture
def bank(services: ServiceContainer):
    return services["replacement_bank_service"]


@pytest.fixture
def replenishment(services: ServiceContainer):
    return services["replenishment_service"]


@pytest.fixture
def admin() -> User:
    return make_user(UserRole.MASTER_ADMIN, "qa_admin")


@pytest.fixture
def lab_tech() -> User:
    return make_user(UserRole.LAB_TECH, "qa_lab_tech")
