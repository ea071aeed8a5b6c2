"""
Treatment and Request Codes.

Treatment codes look like ``A-0001`` (lab-owned clinics) or ``C-0001``
(external clinics).  Lab request codes append a revision, ``A-0001/2``.

Numbers are allocated as the highest suffix ever seen for the prefix plus
one.  The document keeps a per-prefix high-water mark in
``code_sequences`` so a number is never issued twice, even after the
record holding it was removed.
"""

from __future__ import annotations

import re
from typing import Iterator, Optional

from orthoscan.config import AppConfig
from orthoscan.models.directory import Clinic
from orthoscan.models.document import AppDocument
from orthoscan.models.enums import TreatmentOrigin

TREATMENT_CODE_RE = re.compile(r"^([AC])-(\d{4})$")
REQUEST_CODE_RE = re.compile(r"^(.+)/(\d+)$")

PREFIX_INTERNAL = "A"
PREFIX_EXTERNAL = "C"


def is_internal_clinic(clinic: Optional[Clinic], config: AppConfig) -> bool:
    """A clinic is lab-owned when its id or trade name is configured as internal."""
    if clinic is None:
        return False
    if clinic.id in config.INTERNAL_CLINIC_IDS:
        return True
    return (clinic.trade_name or "").strip().upper() == config.INTERNAL_CLINIC_TRADE_NAME.upper()


def origin_for_clinic(
    document: AppDocument,
    clinic_id: Optional[str],
    config: AppConfig,
) -> TreatmentOrigin:
    clinic = document.find_clinic(clinic_id)
    if is_internal_clinic(clinic, config):
        return TreatmentOrigin.INTERNO
    return TreatmentOrigin.EXTERNO


def prefix_for_origin(origin: TreatmentOrigin) -> str:
    return PREFIX_INTERNAL if origin == TreatmentOrigin.INTERNO else PREFIX_EXTERNAL


def _issued_codes(document: AppDocument) -> Iterator[str]:
    for case in document.cases:
        yield case.treatment_code
    for scan in document.scans:
        if scan.service_order_code:
            yield scan.service_order_code


def is_code_in_use(document: AppDocument, code: str) -> bool:
    """Whether a case or scan already holds *code*."""
    return any(issued == code for issued in _issued_codes(document))


def next_treatment_code(document: AppDocument, prefix: str) -> str:
    """Return the next free code for *prefix* without recording it."""
    highest = document.code_sequences.get(prefix, 0)
    for code in _issued_codes(document):
        match = TREATMENT_CODE_RE.match(code)
        if match and match.group(1) == prefix:
            highest = max(highest, int(match.group(2)))
    return f"{prefix}-{highest + 1:04d}"


def register_treatment_code(document: AppDocument, code: str) -> None:
    """Raise the high-water mark for the code's prefix if needed."""
    match = TREATMENT_CODE_RE.match(code)
    if not match:
        return
    prefix, number = match.group(1), int(match.group(2))
    if number > document.code_sequences.get(prefix, 0):
        document.code_sequences[prefix] = number


def allocate_treatment_code(document: AppDocument, prefix: str) -> str:
    code = next_treatment_code(document, prefix)
    register_treatment_code(document, code)
    return code


def next_request_revision(document: AppDocument, base_code: str) -> int:
    """Highest ``/N`` already used with *base_code*, plus one."""
    highest = 0
    for item in document.lab_items:
        match = REQUEST_CODE_RE.match(item.request_code or "")
        if match and match.group(1) == base_code:
            highest = max(highest, int(match.group(2)))
    return highest + 1


def next_request_code(document: AppDocument, base_code: str) -> str:
    return f"{base_code}/{next_request_revision(document, base_code)}"
