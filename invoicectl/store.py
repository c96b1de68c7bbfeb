import json
import logging
import sqlite3
import threading
import uuid
from typing import Callable, Iterable, List, Optional

from .db import DB_FILE, connect_db, init_db, is_full_error
from .errors import StorageCapacityError
from .models import Record, INVOICE, RECORD_STATUSES
from .repository import get_config, config_number
from .utils import utcnow, to_iso, retention_cutoff

logger = logging.getLogger(__name__)

UPSERT = """
INSERT INTO records (id, kind, file_name, status, created_at, updated_at, data, preview, media_type)
VALUES (:id, :kind, :file_name, :status, :created_at, :updated_at, :data, :preview, :media_type)
ON CONFLICT(id) DO UPDATE SET
    kind=excluded.kind,
    data=excluded.data,
    updated_at=excluded.updated_at,
    preview=excluded.preview,
    media_type=excluded.media_type
"""

AMOUNT_TOLERANCE = 0.01


def _norm(s) -> str:
    return (s or "").strip().lower()


class RecordStore:
    """
    SQLite-backed history of extracted records.

    Writes are single-row transactions behind one lock, so a concurrent
    reader sees either the old or the new version of a record, never a mix.
    """

    def __init__(self, path=None, retention_days: int = 30, capacity_kb: int = 0,
                 clock: Callable = utcnow):
        self.path = path or DB_FILE
        self.retention_days = retention_days
        self._clock = clock
        self._lock = threading.RLock()
        init_db(self.path)
        self.conn = connect_db(self.path, capacity_kb=capacity_kb)

    @classmethod
    def from_config(cls, path=None, **kwargs) -> "RecordStore":
        init_db(path)
        conn = connect_db(path)
        try:
            cfg = get_config(conn)
        finally:
            conn.close()
        kwargs.setdefault("retention_days", config_number(cfg, "retention_days", int))
        kwargs.setdefault("capacity_kb", config_number(cfg, "capacity_kb", int))
        return cls(path, **kwargs)

    def close(self):
        with self._lock:
            self.conn.close()

    # ---------- Writes ----------
    def save(self, record: Record, file_name: str, preview: Optional[bytes] = None,
             media_type: Optional[str] = None) -> Optional[str]:
        """
        Upsert `record` by id. An existing entry keeps its status, created_at
        and file name; its preview is replaced only when a new one is given.

        Never raises for storage problems: a full database is retried once
        without the preview, and anything beyond that is logged and dropped.
        Returns the id written, or None if the write was abandoned.
        """
        rid = record.id or str(uuid.uuid4())
        now = to_iso(self._clock())

        with self._lock:
            try:
                existing = self.conn.execute("SELECT * FROM records WHERE id=?", (rid,)).fetchone()
            except sqlite3.Error as e:
                logger.error("Could not read record %s before saving: %s", rid, e)
                return None

            row = {
                "id": rid,
                "kind": record.kind,
                "file_name": existing["file_name"] if existing else file_name,
                "status": existing["status"] if existing else record.status,
                "created_at": existing["created_at"] if existing else now,
                "updated_at": now,
                "data": record.data_json(),
                "preview": existing["preview"] if existing else None,
                "media_type": existing["media_type"] if existing else None,
            }
            if preview is not None:
                row["preview"] = preview
                row["media_type"] = media_type or record.media_type

            try:
                self._write(row)
                return rid
            except StorageCapacityError as e:
                if row["preview"] is None:
                    logger.error("Storage full, record %s not saved: %s", rid, e)
                    return None
                logger.warning("Storage full, saving record %s without preview: %s", rid, e)
            except sqlite3.Error as e:
                logger.error("Failed to save record %s: %s", rid, e)
                return None

            row.update(preview=None, media_type=None)
            try:
                self._write(row)
            except (StorageCapacityError, sqlite3.Error) as e:
                logger.error("Critical storage failure, record %s not saved even without preview: %s", rid, e)
                return None
            logger.info("Saved record %s without preview", rid)
            return rid

    def _write(self, row: dict):
        try:
            with self.conn:
                self.conn.execute(UPSERT, row)
        except sqlite3.OperationalError as e:
            if is_full_error(e):
                raise StorageCapacityError(str(e)) from e
            raise

    def update_status(self, record_id: str, status: str) -> bool:
        return self.bulk_update_status([record_id], status) == 1

    def bulk_update_status(self, ids: Iterable[str], status: str) -> int:
        if status not in RECORD_STATUSES:
            raise ValueError(f"Status must be one of {', '.join(RECORD_STATUSES)}")
        updated = 0
        with self._lock:
            try:
                with self.conn:
                    for rid in ids:
                        cur = self.conn.execute(
                            "UPDATE records SET status=? WHERE id=?", (status, rid)
                        )
                        if cur.rowcount == 0:
                            logger.warning("Status update skipped: no record %s", rid)
                        updated += cur.rowcount
            except sqlite3.Error as e:
                logger.error("Failed to update status to %s: %s", status, e)
                return 0
        return updated

    # ---------- Reads ----------
    def purge(self) -> int:
        """Delete every record past the retention window. Returns the count."""
        cutoff = to_iso(retention_cutoff(self._clock(), self.retention_days))
        with self._lock:
            with self.conn:
                cur = self.conn.execute("DELETE FROM records WHERE created_at <= ?", (cutoff,))
        if cur.rowcount:
            logger.info("Evicted %d record(s) older than %d days", cur.rowcount, self.retention_days)
        return cur.rowcount

    def list(self, status: Optional[str] = None) -> List[Record]:
        """Records inside the retention window, most recently written first."""
        with self._lock:
            self.purge()
            if status:
                rows = self.conn.execute(
                    "SELECT * FROM records WHERE status=? ORDER BY updated_at DESC", (status,)
                ).fetchall()
            else:
                rows = self.conn.execute("SELECT * FROM records ORDER BY updated_at DESC").fetchall()
        return [Record.from_row(r) for r in rows]

    def get(self, record_id: str) -> Optional[Record]:
        with self._lock:
            row = self.conn.execute("SELECT * FROM records WHERE id=?", (record_id,)).fetchone()
        return Record.from_row(row) if row else None

    def is_duplicate(self, candidate: Record) -> bool:
        """Advisory only: storage errors are logged and reported as no match."""
        try:
            with self._lock:
                self.purge()
                rows = self.conn.execute(
                    "SELECT id, data FROM records WHERE kind=?", (candidate.kind,)
                ).fetchall()
        except sqlite3.Error as e:
            logger.warning("Duplicate check skipped: %s", e)
            return False
        for row in rows:
            if row["id"] == candidate.id:
                continue
            other = Record(kind=candidate.kind, id=row["id"], **json.loads(row["data"]))
            if candidate.kind == INVOICE:
                if (_norm(other.counterparty) == _norm(candidate.counterparty)
                        and _norm(other.invoice_number) == _norm(candidate.invoice_number)):
                    return True
            elif (_norm(other.counterparty) == _norm(candidate.counterparty)
                    and other.date == candidate.date
                    and abs(other.total - candidate.total) < AMOUNT_TOLERANCE):
                return True
        return False

    def clear(self) -> int:
        with self._lock:
            with self.conn:
                cur = self.conn.execute("DELETE FROM records")
        return cur.rowcount
