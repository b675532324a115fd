"""Write run reports as canonical JSON with a digest index.

Layout::

    <state_dir>/runs/<run_id>/RUN_REPORT.json
    <state_dir>/runs/<run_id>/ARTIFACT_INDEX.json
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import TYPE_CHECKING, Any

from archrig.schemas.validator import validate_data

if TYPE_CHECKING:
    from pathlib import Path

    from archrig.graph.types import RunReport

logger = logging.getLogger(__name__)

RUN_REPORT_NAME = "RUN_REPORT.json"
ARTIFACT_INDEX_NAME = "ARTIFACT_INDEX.json"
ARTIFACT_INDEX_SCHEMA_VERSION = "archrig.runs.v1"


def canonical_dumps(obj: Any) -> str:
    """Stable JSON: sorted keys, compact separators, UTF-8 kept as-is."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def write_run_report(report: RunReport, state_dir: Path) -> Path:
    """Persist ``report`` under ``state_dir`` and return the run directory.

    The payload is validated against ``run_report.schema.json`` before it is
    written, so a malformed report never lands on disk.

    Raises:
        ValueError: If the report does not match its schema
    """
    payload = report.to_dict()
    validate_data(payload, "run_report")

    run_dir = state_dir / "runs" / report.run_id
    run_dir.mkdir(parents=True, exist_ok=True)

    report_path = run_dir / RUN_REPORT_NAME
    report_path.write_text(canonical_dumps(payload), encoding="utf-8")

    index = {
        "schema_version": ARTIFACT_INDEX_SCHEMA_VERSION,
        "run_id": report.run_id,
        "artifacts": [
            {"name": RUN_REPORT_NAME, "path": RUN_REPORT_NAME, "sha256": _sha256(report_path)},
        ],
    }
    (run_dir / ARTIFACT_INDEX_NAME).write_text(canonical_dumps(index), encoding="utf-8")
    logger.debug("run report written to %s", report_path)
    return run_dir
