"""
Base Service Class.

Minimal base class standardizing the logger, store and config wiring for
all services.  Services extend this and add their own collaborators via
__init__.
"""

from __future__ import annotations

from typing import Optional

from orthoscan.auth import CurrentUser, has_permission
from orthoscan.config import AppConfig
from orthoscan.logger import StructuredLogger
from orthoscan.models.enums import AuditEntity, Permission
from orthoscan.models.document import AppDocument
from orthoscan.models.service_models import ServiceResult
from orthoscan.store import DocumentStore
from orthoscan.utils.audit import log_audit_event


class BaseService:
    """Base class for all service classes. Provides a logger, store and config."""

    def __init__(
        self,
        store: DocumentStore,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        self._store: DocumentStore = store
        self._config: AppConfig = config
        self._logger: StructuredLogger = logger

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _forbidden(user: Optional[CurrentUser], permission: Permission) -> Optional[ServiceResult]:
        """Return a 403 result when *user* lacks *permission*, else ``None``.

        ``None`` as the user means a system sweep and is always allowed.
        """
        if user is None or has_permission(user, permission):
            return None
        return ServiceResult(
            success=False,
            error=f"Permission '{permission}' is required for this operation.",
            status_code=403,
        )

    def _audit(
        self,
        document: AppDocument,
        action: str,
        entity_type: AuditEntity,
        entity_id: str,
        user: Optional[CurrentUser],
        message: str,
    ) -> None:
        log_audit_event(
            logger=self._logger,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user=user,
            message=message,
            document=document,
            max_entries=self._config.AUDIT_LOG_MAX_ENTRIES,
        )

    def _unexpected(self, operation: str, exc: Exception) -> ServiceResult:
        self._logger.error("Error during %s: %s", operation, str(exc), exc_info=True)
        return ServiceResult(
            success=False,
            error=f"Unexpected error: {str(exc)}",
            status_code=500,
        )
