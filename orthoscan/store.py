"""
State Store.

Holds the whole application document and exposes atomic load / replace
operations plus a read-modify-write transaction guarded by a single
document-wide lock.

Two implementations share the transaction logic:

- **InMemoryDocumentStore**: keeps the document in process memory.  Used
  by tests and by embedders that persist the document themselves.
- **SqliteDocumentStore**: keeps the document as one JSON row in a local
  SQLite file (WAL mode), keyed with the same camelCase names the rest of
  the platform reads.

Usage (dependency injection at app startup)::

    from orthoscan.store import SqliteDocumentStore
    from orthoscan.logger import StructuredLogger

    store = SqliteDocumentStore(
        sqlite_path=Path("orthoscan_local.db"),
        logger=StructuredLogger(name="store"),
    )

    with store.transaction() as tx:
        tx.document.cases.append(case)
        tx.commit()
"""

from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from orthoscan.logger import StructuredLogger
from orthoscan.models.document import AppDocument
from orthoscan.utils.general import now_utc


class DocumentTransaction:
    """Private working copy handed out by :meth:`DocumentStore.transaction`.

    Nothing is written back unless :meth:`commit` is called before the
    ``with`` block exits normally.
    """

    def __init__(self, document: AppDocument) -> None:
        self.document: AppDocument = document
        self._committed: bool = False

    @property
    def committed(self) -> bool:
        return self._committed

    def commit(self) -> None:
        self._committed = True


class DocumentStore(ABC):
    """Base class for document persistence.

    Subclasses implement :meth:`_read` and :meth:`_write`; locking and the
    copy-on-load contract live here.
    """

    def __init__(self, logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger
        self._write_lock: threading.RLock = threading.RLock()
        self._active: Optional[DocumentTransaction] = None

    @property
    def write_lock(self) -> threading.RLock:
        """Return the document-wide lock.

        Held for the whole of every :meth:`transaction`.  Re-entrant, so a
        caller already holding it may still open a transaction.
        """
        return self._write_lock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load(self) -> AppDocument:
        """Return a private copy of the current document."""
        with self._write_lock:
            return self._read()

    def save(self, document: AppDocument) -> None:
        """Replace the stored document with *document*."""
        with self._write_lock:
            self._write(document)

    @contextmanager
    def transaction(self) -> Generator[DocumentTransaction, None, None]:
        """Read-modify-write block.

        The lock is held until the block exits.  The working copy is saved
        only when ``tx.commit()`` was called and no exception escaped; on
        exception the copy is discarded and the error re-raised.

        A transaction opened inside another one on the same thread joins
        it: the outer working copy is yielded, and only the outermost block
        writes.  A commit from either level marks the shared copy for saving.

        Example::

            with store.transaction() as tx:
                case = tx.document.find_case(case_id)
                case.phase = CasePhase.ORCAMENTO
                tx.commit()
        """
        with self._write_lock:
            if self._active is not None:
                # Nested: the outermost block owns the write.
                yield self._active
                return

            tx = DocumentTransaction(self._read())
            self._active = tx
            try:
                yield tx
            except Exception:
                self._logger.debug(
                    "Document transaction discarded due to exception.",
                    exc_info=True,
                )
                raise
            finally:
                self._active = None
            if tx.committed:
                self._write(tx.document)
                self._logger.debug("Document transaction committed.")

    # ------------------------------------------------------------------
    # Storage hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _read(self) -> AppDocument:
        """Return a copy that callers may mutate freely."""

    @abstractmethod
    def _write(self, document: AppDocument) -> None:
        ...


class InMemoryDocumentStore(DocumentStore):
    """Document held in memory.  Each load returns a deep copy."""

    def __init__(
        self,
        logger: StructuredLogger,
        document: Optional[AppDocument] = None,
    ) -> None:
        super().__init__(logger)
        self._document: AppDocument = (
            document.model_copy(deep=True) if document is not None else AppDocument()
        )

    def _read(self) -> AppDocument:
        return self._document.model_copy(deep=True)

    def _write(self, document: AppDocument) -> None:
        self._document = document.model_copy(deep=True)


class SqliteDocumentStore(DocumentStore):
    """Document persisted as a single JSON row in a local SQLite file.

    Parameters
    ----------
    sqlite_path:
        Filesystem path for the SQLite database file.  Parent
        directories must already exist.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    _CREATE_TABLE = (
        "CREATE TABLE IF NOT EXISTS app_document ("
        " id INTEGER PRIMARY KEY CHECK (id = 1),"
        " payload TEXT NOT NULL,"
        " updated_at TEXT NOT NULL"
        ")"
    )

    def __init__(self, sqlite_path: Path, logger: StructuredLogger) -> None:
        super().__init__(logger)
        self._sqlite_conn: sqlite3.Connection = self._connect_sqlite(sqlite_path)
        with self._write_lock:
            self._sqlite_conn.execute(self._CREATE_TABLE)
            self._sqlite_conn.commit()

    def _read(self) -> AppDocument:
        row = self._sqlite_conn.execute(
            "SELECT payload FROM app_document WHERE id = 1",
        ).fetchone()
        if row is None:
            return AppDocument()
        return AppDocument.model_validate_json(row["payload"])

    def _write(self, document: AppDocument) -> None:
        payload = document.model_dump_json(by_alias=True)
        try:
            self._sqlite_conn.execute(
                "INSERT INTO app_document (id, payload, updated_at) VALUES (1, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET payload = excluded.payload, "
                "updated_at = excluded.updated_at",
                (payload, now_utc().isoformat()),
            )
            self._sqlite_conn.commit()
        except sqlite3.Error:
            self._sqlite_conn.rollback()
            self._logger.error("Document write rolled back.", exc_info=True)
            raise

    def close(self) -> None:
        """Close the SQLite connection.

        Safe to call multiple times; subsequent calls are no-ops.
        """
        with self._write_lock:
            try:
                self._sqlite_conn.close()
                self._logger.info("SQLite connection closed.")
            except sqlite3.ProgrammingError:
                self._logger.debug("SQLite connection already closed.")

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _connect_sqlite(self, path: Path) -> sqlite3.Connection:
        """Open (or create) the document database.

        Raises
        ------
        PermissionError
            If the OS denies access to the database file or its directory.
        """
        try:
            conn = sqlite3.connect(str(path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            self._logger.info("SQLite document store opened at %s", path)
            return conn
        except PermissionError as exc:
            msg = (
                f"Cannot open the document store at '{path}'. "
                "The file or its directory may be read-only or locked by "
                "another process."
            )
            self._logger.error(msg)
            raise PermissionError(msg) from exc
