"""Run manifests: what a run was asked to do and how it ended."""

from __future__ import annotations

import platform
import sqlite3
from datetime import UTC, datetime
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

import orjson
from pydantic import Field

from veilflow.config.models import AppConfig
from veilflow.constants import PACKAGE_VERSION
from veilflow.schemas.base import StrictSchemaModel
from veilflow.schemas.enums import RunState
from veilflow.schemas.flow_models import AmountAllocation
from veilflow.security.redaction import redact_mapping


class ToolVersions(StrictSchemaModel):
    veilflow: str
    python: str
    pydantic: str
    pynacl: str


class RunManifest(StrictSchemaModel):
    """Persisted summary of one sequencer run."""

    schema_version: str
    run_id: str
    created_at: str
    cluster: str
    backend: str
    mint: str
    decimals: int | None
    requested_amount: str
    fund_amount: str
    wrap_amount: str
    selection: dict[str, bool] = Field(default_factory=dict)
    allocation: AmountAllocation | None = None
    run_state: RunState
    step_statuses: dict[str, str] = Field(default_factory=dict)
    failed_step: str | None = None
    failure: str | None = None
    final_root: str | None = None
    next_nullifier: int | None = None
    record_ids: list[str] = Field(default_factory=list)
    tool_versions: ToolVersions


def build_run_manifest(
    *,
    config: AppConfig,
    run_id: str,
    requested_amount: str,
    fund_amount: str,
    wrap_amount: str,
    selection: dict[str, bool],
    run_state: RunState,
    step_statuses: dict[str, str],
    allocation: AmountAllocation | None = None,
    failed_step: str | None = None,
    failure: str | None = None,
    final_root: str | None = None,
    next_nullifier: int | None = None,
    record_ids: list[str] | None = None,
) -> RunManifest:
    return RunManifest(
        schema_version=config.schema_version,
        run_id=run_id,
        created_at=datetime.now(UTC).isoformat(),
        cluster=config.cluster.value,
        backend=config.backend,
        mint=config.mint.address,
        decimals=config.mint.decimals,
        requested_amount=requested_amount,
        fund_amount=fund_amount,
        wrap_amount=wrap_amount,
        selection=dict(selection),
        allocation=allocation,
        run_state=run_state,
        step_statuses=dict(step_statuses),
        failed_step=failed_step,
        failure=redact_mapping(failure) if failure is not None else None,
        final_root=final_root,
        next_nullifier=next_nullifier,
        record_ids=list(record_ids or []),
        tool_versions=ToolVersions(
            veilflow=PACKAGE_VERSION,
            python=platform.python_version(),
            pydantic=_package_version("pydantic"),
            pynacl=_package_version("pynacl"),
        ),
    )


def _package_version(package_name: str) -> str:
    try:
        return version(package_name)
    except PackageNotFoundError:
        return "unknown"


class RunManifestStore:
    """SQLite persistence for run manifests."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS run_manifests (
                    run_id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    payload_json TEXT NOT NULL
                )
                """
            )

    def upsert(self, manifest: RunManifest) -> None:
        payload_json = orjson.dumps(manifest.model_dump(mode="json")).decode("utf-8")
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO run_manifests (run_id, created_at, payload_json)
                VALUES (?, ?, ?)
                ON CONFLICT(run_id) DO UPDATE SET
                    created_at=excluded.created_at,
                    payload_json=excluded.payload_json
                """,
                (manifest.run_id, manifest.created_at, payload_json),
            )

    def get(self, run_id: str) -> RunManifest | None:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT payload_json FROM run_manifests WHERE run_id = ?",
                (run_id,),
            ).fetchone()
        if row is None:
            return None
        return RunManifest.model_validate_json(row[0])

    def latest(self) -> RunManifest | None:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT payload_json FROM run_manifests ORDER BY created_at DESC LIMIT 1"
            ).fetchone()
        if row is None:
            return None
        return RunManifest.model_validate_json(row[0])
