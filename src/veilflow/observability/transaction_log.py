"""Durable append-only transaction log."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any

import orjson

from veilflow.schemas.enums import TransactionStatus
from veilflow.schemas.flow_models import TransactionRecord
from veilflow.security.redaction import redact_mapping

LOGGER = logging.getLogger(__name__)


class TransactionRecorder:
    """SQLite-backed transaction records with enrichment merges."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transaction_records (
                    id TEXT PRIMARY KEY,
                    run_id TEXT,
                    created_at TEXT NOT NULL,
                    payload_json TEXT NOT NULL
                )
                """
            )

    def append(
        self,
        *,
        flow: str,
        signature: str | None,
        relayer: bool,
        status: TransactionStatus,
        details: dict[str, Any],
        run_id: str | None = None,
    ) -> str:
        """Persist a new record and return its id."""
        record = TransactionRecord(
            run_id=run_id,
            flow=flow,
            signature=signature,
            relayer=relayer,
            status=status,
            details=redact_mapping(details),
        )
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO transaction_records (id, run_id, created_at, payload_json)
                VALUES (?, ?, ?, ?)
                """,
                (record.id, record.run_id, record.created_at, _dump(record)),
            )
        LOGGER.info("Recorded %s (%s) signature=%s", flow, status.value, signature)
        return record.id

    def enrich(self, record_id: str, extra_details: dict[str, Any]) -> TransactionRecord | None:
        """Merge ``extra_details`` into a record's detail map."""
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT payload_json FROM transaction_records WHERE id = ?",
                (record_id,),
            ).fetchone()
            if row is None:
                LOGGER.warning("Cannot enrich unknown transaction record %s", record_id)
                return None
            record = TransactionRecord.model_validate_json(row[0])
            record.details = {**record.details, **redact_mapping(extra_details)}
            conn.execute(
                "UPDATE transaction_records SET payload_json = ? WHERE id = ?",
                (_dump(record), record_id),
            )
        return record

    def get(self, record_id: str) -> TransactionRecord | None:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT payload_json FROM transaction_records WHERE id = ?",
                (record_id,),
            ).fetchone()
        if row is None:
            return None
        return TransactionRecord.model_validate_json(row[0])

    def list_records(self, run_id: str | None = None) -> list[TransactionRecord]:
        """Return records in insertion order, optionally for one run."""
        query = "SELECT payload_json FROM transaction_records"
        params: tuple[str, ...] = ()
        if run_id is not None:
            query += " WHERE run_id = ?"
            params = (run_id,)
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(query + " ORDER BY rowid ASC", params).fetchall()
        return [TransactionRecord.model_validate_json(row[0]) for row in rows]


def _dump(record: TransactionRecord) -> str:
    return orjson.dumps(record.model_dump(mode="json")).decode("utf-8")
