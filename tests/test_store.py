from __future__ import annotations

import json
import sqlite3

import pytest

from orthoscan.models import AppDocument, CasePhase
from orthoscan.models.enums import BankArch
from orthoscan.models.replacement_bank import ReplacementBankEntry
from orthoscan.store import InMemoryDocumentStore, SqliteDocumentStore
from tests.factories import APPROVED_CASE_ID, CREATED_AT, make_case, seed_document


def test_transaction_commit_persists(store):
    with store.transaction() as tx:
        tx.document.find_case(APPROVED_CASE_ID).phase = CasePhase.EM_PRODUCAO
        tx.commit()

    assert store.load().find_case(APPROVED_CASE_ID).phase == CasePhase.EM_PRODUCAO


def test_transaction_without_commit_discards(store):
    with store.transaction() as tx:
        tx.document.cases.clear()

    assert len(store.load().cases) == 2


def test_transaction_exception_discards_and_reraises(store):
    with pytest.raises(ValueError):
        with store.transaction() as tx:
            tx.document.cases.clear()
            tx.commit()
            raise ValueError("boom")

    assert len(store.load().cases) == 2


def test_load_returns_private_copy(store):
    snapshot = store.load()
    snapshot.scans.clear()

    assert len(store.load().scans) == 1


def test_nested_transaction_joins_outer_and_keeps_both_writes(store):
    with store.transaction() as outer:
        with store.transaction() as inner:
            assert inner is outer
            inner.document.cases.clear()
            inner.commit()
        outer.document.code_sequences["A"] = 99
        outer.commit()

    document = store.load()
    assert document.cases == []
    assert document.code_sequences["A"] == 99


def test_nested_transaction_exception_discards_outer(store):
    with pytest.raises(ValueError):
        with store.transaction() as outer:
            outer.document.code_sequences["A"] = 99
            outer.commit()
            with store.transaction() as inner:
                inner.document.cases.clear()
                raise ValueError("boom")

    document = store.load()
    assert len(document.cases) == 2
    assert document.code_sequences.get("A") != 99


def test_transaction_after_nested_block_reads_fresh_copy(store):
    with store.transaction() as outer:
        with store.transaction():
            pass
        outer.document.cases.clear()
        outer.commit()

    with store.transaction() as tx:
        assert tx.document.cases == []


def test_caller_holding_the_lock_can_still_transact(store):
    with store.write_lock:
        with store.transaction() as tx:
            tx.document.cases.clear()
            tx.commit()

    assert store.load().cases == []


def test_in_memory_store_starts_empty(logger):
    assert InMemoryDocumentStore(logger=logger).load() == AppDocument()


def test_sqlite_store_round_trip_with_persisted_keys(tmp_path, logger):
    db_path = tmp_path / "orthoscan.db"
    store = SqliteDocumentStore(sqlite_path=db_path, logger=logger)
    document = seed_document()
    document.replacement_bank.append(
        ReplacementBankEntry(
            id="bank_1",
            case_id=APPROVED_CASE_ID,
            arch=BankArch.SUPERIOR,
            plate_number=1,
            created_at=CREATED_AT,
            updated_at=CREATED_AT,
        )
    )
    store.save(document)
    store.close()

    raw = sqlite3.connect(str(db_path)).execute(
        "SELECT payload FROM app_document WHERE id = 1"
    ).fetchone()[0]
    payload = json.loads(raw)
    assert payload["cases"][0]["treatmentCode"] == APPROVED_CASE_ID
    assert payload["replacementBank"][0]["arcada"] == "superior"
    assert payload["replacementBank"][0]["placaNumero"] == 1

    reopened = SqliteDocumentStore(sqlite_path=db_path, logger=logger)
    loaded = reopened.load()
    reopened.close()
    assert loaded.find_case(APPROVED_CASE_ID) == document.find_case(APPROVED_CASE_ID)
    assert loaded.replacement_bank[0].plate_number == 1


def test_sqlite_store_without_row_loads_empty_document(tmp_path, logger):
    store = SqliteDocumentStore(sqlite_path=tmp_path / "empty.db", logger=logger)
    try:
        assert store.load().cases == []
    finally:
        store.close()


def test_sqlite_transaction_commits(tmp_path, logger):
    store = SqliteDocumentStore(sqlite_path=tmp_path / "tx.db", logger=logger)
    with store.transaction() as tx:
        tx.document.cases.append(make_case())
        tx.commit()

    assert store.load().find_case(APPROVED_CASE_ID) is not None
    store.close()
    store.close()
