"""
Directory Models.

Clinics, dentists, patients and patient documents.  The workflow core only
reads these records (to resolve internal clinics and patient names); their
CRUD screens live outside this package.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from orthoscan.models.base import DocumentModel


class Clinic(DocumentModel):
    """A dental clinic.

    A clinic whose id or trade name marks it as lab-owned produces
    internal (``A``-prefixed) treatment codes.
    """

    id: str
    trade_name: str
    legal_name: Optional[str] = None
    cnpj: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


class Dentist(DocumentModel):
    id: str
    name: str
    clinic_id: Optional[str] = None
    cro: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


class Patient(DocumentModel):
    id: str
    name: str
    clinic_id: Optional[str] = None
    primary_dentist_id: Optional[str] = None
    birth_date: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


class PatientDocument(DocumentModel):
    """A file attached to a patient record outside any scan or case."""

    id: str
    patient_id: str
    title: str
    category: Optional[str] = None
    file_name: Optional[str] = None
    url: Optional[str] = None
    is_local: bool = False
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
