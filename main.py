"""
OrthoScan Lab Daily Sweep Entry Point.

Bootstraps the dependency graph via constructor injection, opens the
local document store and runs the daily sweep: due programmed
replenishments are raised on the lab board and the replenishment alerts
are logged.  Every subsystem is wired here, with no module-level globals.

Usage::

    python main.py
"""

from __future__ import annotations

import atexit
import sys
import traceback
from pathlib import Path

from orthoscan.config import get_config
from orthoscan.logger import StructuredLogger, get_logger
from orthoscan.models.enums import LabRequestKind
from orthoscan.services import create_services
from orthoscan.store import SqliteDocumentStore
from orthoscan.utils.general import today as utc_today


def main() -> None:
    """Sweep entry point: wire dependencies and run one pass."""
    logger: StructuredLogger = get_logger("main")
    logger.info("Starting OrthoScan daily sweep...")

    # ------------------------------------------------------------------
    # 1. Configuration (from .env / environment variables)
    # ------------------------------------------------------------------
    config = get_config()

    # ------------------------------------------------------------------
    # 2. Document store
    # ------------------------------------------------------------------
    store = SqliteDocumentStore(
        sqlite_path=Path(config.DOCUMENT_STORE_PATH),
        logger=StructuredLogger(name="store"),
    )
    # close() is safe to call multiple times.
    atexit.register(store.close)

    # ------------------------------------------------------------------
    # 3. Service container
    # ------------------------------------------------------------------
    services = create_services(store=store, config=config)

    # ------------------------------------------------------------------
    # 4. Sweep (runs as the system, no acting user)
    # ------------------------------------------------------------------
    sweep_date = utc_today()
    sweep_log = logger.child("sweep", sweep_date=sweep_date.isoformat())
    try:
        lab_result = services["lab_pipeline_service"].list_lab_items(current_user=None, on_date=sweep_date)
        if not lab_result.success:
            raise RuntimeError(f"Lab board refresh failed: {lab_result.error}")
        replenishments = [
            item for item in lab_result.data or []
            if item.request_kind == LabRequestKind.REPOSICAO_PROGRAMADA
        ]

        alert_result = services["replenishment_service"].list_replenishment_alerts(
            current_user=None, on_date=sweep_date,
        )
        if not alert_result.success:
            raise RuntimeError(f"Replenishment alerts failed: {alert_result.error}")
        for alert in alert_result.data or []:
            sweep_log.warning(
                "%s: %s",
                alert.title,
                alert.message,
                extra={"case_id": alert.case_id, "days_left": alert.days_left},
            )

        sweep_log.info(
            "Sweep finished: %d lab items, %d programmed replenishments, %d alerts.",
            len(lab_result.data or []),
            len(replenishments),
            len(alert_result.data or []),
        )
    finally:
        store.close()
        logger.info("OrthoScan daily sweep shut down.")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        detail = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        sys.stderr.write(f"FATAL: {type(exc).__name__}: {exc}\n{detail}")
        sys.exit(1)
