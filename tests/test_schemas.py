from __future__ import annotations

from jsonschema import Draft7Validator

from storysync.models import CsvRecord
from storysync.orchestrator import SyncSummary
from storysync.schemas import ANALYSIS_SCHEMA_VERSION, SUMMARY_SCHEMA_VERSION, get_schemas


def test_schemas_are_valid_draft7():
    schemas = get_schemas()
    assert set(schemas) == {"analysis", "summary"}
    for schema in schemas.values():
        Draft7Validator.check_schema(schema)
    assert schemas["analysis"]["$comment"].endswith(f"v{ANALYSIS_SCHEMA_VERSION}")


def test_summary_document_validates():
    summary = SyncSummary(dry_run=False, updated=2, total=2, orphans=[CsvRecord(title_summary="x")])
    errors = list(Draft7Validator(get_schemas()["summary"]).iter_errors(summary.as_dict()))
    assert errors == []
    assert summary.as_dict()["schemaVersion"] == SUMMARY_SCHEMA_VERSION


def test_summary_schema_rejects_wrong_version():
    doc = SyncSummary(dry_run=True).as_dict()
    doc["schemaVersion"] = "999"
    assert list(Draft7Validator(get_schemas()["summary"]).iter_errors(doc))


def test_orphan_kind_is_constrained():
    doc = {
        "duplicateIssues": {},
        "duplicateCsvRows": {},
        "multiReferencedIssues": {},
        "rowsWithoutIssues": [{"titleSummary": "x", "gitHubIssueLink": "", "kind": "lost"}],
    }
    assert list(Draft7Validator(get_schemas()["analysis"]).iter_errors(doc))
