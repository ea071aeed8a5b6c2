"""
Replenishment Alerts & Supply Summary.

Pure functions derive, for one case, which trays the patient already has,
which tray is needed next and when, and whether an alert is due:

    15 >= days left > 10   -> warning_15d (medium)
    10 >= days left >= 0   -> warning_10d (high)
    days left < 0          -> overdue     (urgent)

``ReplenishmentService`` applies them across the document for the daily
sweep and the case detail view.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from orthoscan.auth import CurrentUser
from orthoscan.config import AppConfig
from orthoscan.logger import StructuredLogger
from orthoscan.models.case import Case
from orthoscan.models.enums import AlertSeverity, AlertType, Permission
from orthoscan.models.service_models import (
    CaseSupplySummary,
    ReplenishmentAlert,
    ServiceResult,
)
from orthoscan.services.base_service import BaseService
from orthoscan.store import DocumentStore
from orthoscan.utils.general import add_days
from orthoscan.utils.general import today as utc_today


def delivered_range(case: Case) -> tuple[int, int]:
    """Return ``(max_delivered, delivered_count)``.

    Patient installation figures win when recorded; otherwise the dentist
    delivery lots are used.
    """
    if case.installation is not None:
        upper = max(0, case.installation.delivered_upper)
        lower = max(0, case.installation.delivered_lower)
        return max(upper, lower), min(upper, lower)
    max_delivered = max((lot.to_tray for lot in case.delivery_lots), default=0)
    delivered_count = sum(lot.quantity for lot in case.delivery_lots)
    return max_delivered, delivered_count


def next_needed_tray(case: Case) -> Optional[int]:
    max_delivered, _ = delivered_range(case)
    if max_delivered >= case.total_trays:
        return None
    return max_delivered + 1


def next_delivery_due_date(case: Case) -> Optional[date]:
    """Date the patient runs out of delivered trays, counted from installation."""
    if case.installation is None:
        return None
    max_delivered, _ = delivered_range(case)
    return add_days(case.installation.installed_at, max_delivered * case.change_every_days)


def replenishment_alerts(case: Case, on_date: date) -> list[ReplenishmentAlert]:
    due_date = next_delivery_due_date(case)
    if due_date is None:
        return []
    days_left = (due_date - on_date).days

    if 10 < days_left <= 15:
        return [ReplenishmentAlert(
            id=f"{case.id}_15d_{due_date.isoformat()}",
            case_id=case.id,
            type=AlertType.WARNING_15D,
            severity=AlertSeverity.MEDIUM,
            title="Replenishment in 15 days",
            message=f"Case {case.patient_name} needs a new lot in about {days_left} day(s).",
            due_date=due_date,
            days_left=days_left,
        )]
    if 0 <= days_left <= 10:
        return [ReplenishmentAlert(
            id=f"{case.id}_10d_{due_date.isoformat()}",
            case_id=case.id,
            type=AlertType.WARNING_10D,
            severity=AlertSeverity.HIGH,
            title="Replenishment in 10 days",
            message=f"Case {case.patient_name} needs replenishment in {days_left} day(s).",
            due_date=due_date,
            days_left=days_left,
        )]
    if days_left < 0:
        return [ReplenishmentAlert(
            id=f"{case.id}_late_{due_date.isoformat()}",
            case_id=case.id,
            type=AlertType.OVERDUE,
            severity=AlertSeverity.URGENT,
            title="Replenishment overdue",
            message=f"Case {case.patient_name} is {abs(days_left)} day(s) late for replenishment.",
            due_date=due_date,
            days_left=days_left,
        )]
    return []


def case_supply_summary(case: Case) -> CaseSupplySummary:
    _, delivered_count = delivered_range(case)
    delivered = min(delivered_count, case.total_trays)
    return CaseSupplySummary(
        total=case.total_trays,
        delivered=delivered,
        remaining=max(0, case.total_trays - delivered),
        next_tray=next_needed_tray(case),
        next_due_date=next_delivery_due_date(case),
    )


class ReplenishmentService(BaseService):
    """Read-only views over case supply."""

    def __init__(
        self,
        store: DocumentStore,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(store, config, logger)

    def list_replenishment_alerts(
        self,
        current_user: Optional[CurrentUser] = None,
        on_date: Optional[date] = None,
    ) -> ServiceResult[list[ReplenishmentAlert]]:
        """Alerts for every active case, most urgent first."""
        denied = self._forbidden(current_user, Permission.CASES_READ)
        if denied:
            return denied
        try:
            current_day = on_date or utc_today()
            alerts = [
                alert
                for case in self._store.load().cases
                for alert in replenishment_alerts(case, current_day)
            ]
            alerts.sort(key=lambda alert: alert.days_left)
            return ServiceResult(success=True, data=alerts)
        except Exception as exc:
            return self._unexpected("list_replenishment_alerts", exc)

    def get_case_supply_summary(
        self,
        case_id: str,
        current_user: Optional[CurrentUser] = None,
    ) -> ServiceResult[CaseSupplySummary]:
        denied = self._forbidden(current_user, Permission.CASES_READ)
        if denied:
            return denied
        case = self._store.load().find_case(case_id)
        if case is None:
            return ServiceResult(success=False, error="Case not found.", status_code=404)
        return ServiceResult(success=True, data=case_supply_summary(case))
