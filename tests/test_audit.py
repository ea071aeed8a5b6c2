from __future__ import annotations

import json
import logging

from orthoscan.models import AppDocument
from orthoscan.models.enums import AuditEntity, UserRole
from orthoscan.utils.audit import log_audit_event
from tests.factories import make_user


def audit_payloads(caplog) -> list[dict]:
    return [
        json.loads(record.getMessage().removeprefix("AUDIT: "))
        for record in caplog.records
        if record.getMessage().startswith("AUDIT: ")
    ]


def test_entries_are_kept_newest_first(logger):
    document = AppDocument()
    user = make_user(UserRole.MASTER_ADMIN, "qa_admin")

    log_audit_event(logger, "case.create", AuditEntity.CASE, "A-0001", user, document=document)
    log_audit_event(logger, "case.update", AuditEntity.CASE, "A-0001", user, document=document)

    assert [entry.action for entry in document.audit_logs] == ["case.update", "case.create"]
    assert document.audit_logs[0].user_email == "qa_admin@orthoscan.test"


def test_trail_is_capped(logger):
    document = AppDocument()

    for n in range(5):
        log_audit_event(logger, f"lab.move.{n}", AuditEntity.LAB, "lab_1", None, document=document, max_entries=3)

    assert [entry.action for entry in document.audit_logs] == ["lab.move.4", "lab.move.3", "lab.move.2"]


def test_system_sweep_is_logged_as_system(logger, caplog):
    caplog.set_level(logging.INFO)

    entry = log_audit_event(
        logger,
        "lab.programmed_replenishment",
        AuditEntity.LAB,
        "lab_9",
        None,
        message="Tray 2 raised.",
        details={"tray_number": 2},
    )

    payload = audit_payloads(caplog)[-1]
    assert payload["user_id"] == "system"
    assert payload["entity_type"] == "lab"
    assert payload["details"] == {"tray_number": 2}
    assert entry.user_id is None
    assert entry.message == "Tray 2 raised."


def test_without_document_only_the_log_line_is_written(logger, caplog):
    caplog.set_level(logging.INFO)

    log_audit_event(logger, "scan.update", AuditEntity.SCAN, "qa_scan_1", None)

    assert audit_payloads(caplog)[-1]["action"] == "scan.update"
