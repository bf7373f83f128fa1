from __future__ import annotations

import logging
from pathlib import Path

from catalogforge.core.files import ensure_directory, write_json_atomic
from catalogforge.domain.models.run import DocumentResult

logger = logging.getLogger(__name__)

CATALOG_FILENAME = "catalog.json"
QC_REPORT_FILENAME = "qc_report.json"
PROVENANCE_FILENAME = "provenance.json"
AUDIT_FILENAME = "audit.json"


class ArtifactStore:
    """Writes the outputs of one document run into a per-document directory."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = base_dir

    def document_dir(self, doc_id: str | None) -> Path:
        return self.base_dir / (doc_id or "document")

    def write_result(self, result: DocumentResult, out_dir: Path | None = None) -> dict[str, Path]:
        target = out_dir or self.document_dir(result.doc_id)
        ensure_directory(target)

        written: dict[str, Path] = {}
        catalog_path = target / CATALOG_FILENAME
        write_json_atomic(
            catalog_path,
            {
                "doc_id": result.doc_id,
                "status": result.status,
                "groups": [group.to_dict(include_provenance=False) for group in result.groups],
                "notes": result.notes,
                "warnings": result.warnings,
                "validation_errors": result.validation_errors,
            },
        )
        written["catalog"] = catalog_path

        qc_report = result.diagnostics.get("qc")
        if qc_report is not None:
            qc_path = target / QC_REPORT_FILENAME
            write_json_atomic(qc_path, qc_report)
            written["qc_report"] = qc_path

        provenance = result.diagnostics.get("provenance")
        if provenance is not None:
            provenance_path = target / PROVENANCE_FILENAME
            write_json_atomic(provenance_path, provenance)
            written["provenance"] = provenance_path

        if result.audit:
            audit_path = target / AUDIT_FILENAME
            write_json_atomic(audit_path, [record.to_dict() for record in result.audit])
            written["audit"] = audit_path

        logger.info("Wrote %s artifact(s) for %s to %s", len(written), result.doc_id, target)
        return written
