# Copyright (c) Syntropy Systems
"""Record stream validator.

Re-parses JSONL record files and reports every structural problem it finds.
Findings are data, never exceptions; a run passes only when no file has any.
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional, cast

from renderbench.schema import (
    ABORT_FIELDS,
    API_ENV_FIELDS,
    CANVAS_TRIAL_FIELDS,
    COMMON_FIELDS,
    LEGACY_PARTIAL_PAIR,
    LEGACY_PARTIAL_SINGLE,
    PARTIAL_TRIAL_FIELDS,
    SUPPORTED_SCHEMA_VERSIONS,
    TRIAL_FIELDS,
    V1_2,
    XR_TRIAL_FIELDS,
    FieldSpec,
    is_required,
    version_key,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path

MAX_PRINTED_ERRORS = 200


class IssueKind(str, Enum):
    MALFORMED_RECORD = "MalformedRecord"
    UNSUPPORTED_SCHEMA = "UnsupportedSchema"
    MISSING_FIELD = "MissingField"
    FIELD_TYPE_MISMATCH = "FieldTypeMismatch"
    INVALID_VALUE = "InvalidValue"


@dataclass
class ValidationIssue:
    """One problem found in one record."""

    kind: IssueKind
    path: str
    message: str
    source: str = ""
    line: Optional[int] = None

    def __str__(self) -> str:
        loc = self.source if self.line is None else f"{self.source}:{self.line}"
        prefix = f"{loc}: " if loc else ""
        where = f"`{self.path}` " if self.path else ""
        return f"{prefix}{self.kind.value}: {where}{self.message}"


@dataclass
class FileResult:
    """Validation outcome for one file."""

    path: str
    records: int = 0
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues


@dataclass
class ValidationReport:
    """Aggregated outcome across every input file."""

    files: list[FileResult] = field(default_factory=list)

    @property
    def total_records(self) -> int:
        return sum(f.records for f in self.files)

    @property
    def issues(self) -> list[ValidationIssue]:
        return [issue for f in self.files for issue in f.issues]

    @property
    def ok(self) -> bool:
        return all(f.ok for f in self.files)


def type_name(value: object) -> str:
    """JSON type name of a decoded value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number" if math.isfinite(value) else "non-finite number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


class _RecordChecker:
    """Walks one decoded record against the field tables."""

    def __init__(self, version: str) -> None:
        self.version = version
        self.issues: list[ValidationIssue] = []

    def add(self, kind: IssueKind, path: str, message: str) -> None:
        self.issues.append(ValidationIssue(kind=kind, path=path, message=message))

    def check_fields(
        self,
        obj: dict[str, object],
        specs: Iterable[FieldSpec],
        path: str = "",
    ) -> None:
        for spec in specs:
            self.check_field(obj, spec, path)

    def check_field(self, obj: dict[str, object], spec: FieldSpec, path: str) -> None:
        where = _join(path, spec.name)
        if spec.name not in obj:
            if is_required(spec, self.version):
                self.add(IssueKind.MISSING_FIELD, where, "missing required field")
            return

        value = obj[spec.name]
        actual = type_name(value)
        if actual not in spec.types:
            self.add(
                IssueKind.FIELD_TYPE_MISMATCH,
                where,
                f"expected {' or '.join(spec.types)}, got {actual}",
            )
            return

        if spec.choices is not None and value not in spec.choices:
            self.add(
                IssueKind.INVALID_VALUE,
                where,
                f"expected one of [{', '.join(sorted(spec.choices))}], got {json.dumps(value)}",
            )
        if spec.children and isinstance(value, dict):
            self.check_fields(cast("dict[str, object]", value), spec.children, where)
        if spec.items is not None and isinstance(value, list):
            self.check_items(cast("list[object]", value), spec, where)

    def check_items(self, values: list[object], spec: FieldSpec, path: str) -> None:
        allowed = spec.items or ()
        for i, item in enumerate(values):
            where = f"{path}[{i}]"
            actual = type_name(item)
            if actual not in allowed:
                self.add(
                    IssueKind.FIELD_TYPE_MISMATCH,
                    where,
                    f"expected {' or '.join(allowed)}, got {actual}",
                )
                continue
            if spec.item_children and isinstance(item, dict):
                self.check_fields(cast("dict[str, object]", item), spec.item_children, where)

    def check_started_at(self, record: dict[str, object]) -> None:
        value = record.get("startedAt")
        if not isinstance(value, str):
            return
        try:
            _ = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            self.add(IssueKind.INVALID_VALUE, "startedAt", "is not a parseable ISO-8601 date")

    def check_env(self, record: dict[str, object]) -> None:
        env = record.get("env")
        if not isinstance(env, dict):
            return
        env = cast("dict[str, object]", env)
        api = env.get("api")
        if isinstance(api, str) and api in API_ENV_FIELDS:
            self.check_fields(env, API_ENV_FIELDS[api], "env")

    def check_partial_trial(self, record: dict[str, object]) -> None:
        partial = record.get("partial_trial")
        if "partial_trial" not in record:
            self.add(IssueKind.MISSING_FIELD, "partial_trial", "missing required field")
            return
        if not isinstance(partial, dict):
            self.add(
                IssueKind.FIELD_TYPE_MISMATCH,
                "partial_trial",
                f"expected object, got {type_name(partial)}",
            )
            return
        partial = cast("dict[str, object]", partial)
        if version_key(self.version) >= version_key(V1_2):
            self.check_fields(partial, PARTIAL_TRIAL_FIELDS, "partial_trial")
            return

        self.check_fields(partial, PARTIAL_TRIAL_FIELDS[:1], "partial_trial")
        if LEGACY_PARTIAL_SINGLE.name in partial:
            self.check_field(partial, LEGACY_PARTIAL_SINGLE, "partial_trial")
        elif PARTIAL_TRIAL_FIELDS[1].name in partial:
            self.check_fields(partial, PARTIAL_TRIAL_FIELDS[1:], "partial_trial")
        else:
            self.check_fields(partial, LEGACY_PARTIAL_PAIR, "partial_trial")

    def check_abort(self, record: dict[str, object]) -> None:
        if record.get("mode") != "xr":
            self.add(
                IssueKind.INVALID_VALUE,
                "mode",
                f'abort record must have mode="xr", got {json.dumps(record.get("mode"))}',
            )
        self.check_fields(record, ABORT_FIELDS)
        self.check_partial_trial(record)

    def check_trial(self, record: dict[str, object]) -> None:
        self.check_fields(record, TRIAL_FIELDS)
        mode = record.get("mode")
        if mode == "canvas":
            self.check_fields(record, CANVAS_TRIAL_FIELDS)
        elif mode == "xr":
            self.check_fields(record, XR_TRIAL_FIELDS)


def validate_record(record: object) -> list[ValidationIssue]:
    """Check one decoded record; returns every issue found (empty when valid)."""
    if not isinstance(record, dict):
        return [
            ValidationIssue(
                kind=IssueKind.MALFORMED_RECORD,
                path="",
                message=f"expected JSON object, got {type_name(record)}",
            )
        ]
    record = cast("dict[str, object]", record)

    if "schema_version" not in record:
        return [ValidationIssue(IssueKind.MISSING_FIELD, "schema_version", "missing required field")]
    version = record["schema_version"]
    if not isinstance(version, str):
        return [
            ValidationIssue(
                IssueKind.FIELD_TYPE_MISMATCH,
                "schema_version",
                f"expected string, got {type_name(version)}",
            )
        ]
    if version not in SUPPORTED_SCHEMA_VERSIONS:
        return [
            ValidationIssue(
                IssueKind.UNSUPPORTED_SCHEMA,
                "schema_version",
                f"unsupported schema_version {json.dumps(version)} "
                f"(supported: {', '.join(SUPPORTED_SCHEMA_VERSIONS)})",
            )
        ]

    checker = _RecordChecker(version)
    checker.check_fields(record, COMMON_FIELDS)
    checker.check_started_at(record)
    checker.check_env(record)
    if record.get("aborted") is True:
        checker.check_abort(record)
    else:
        checker.check_trial(record)
    return checker.issues


def validate_lines(lines: Iterable[str], source: str = "") -> FileResult:
    """Validate newline-delimited JSON; blank lines are skipped."""
    result = FileResult(path=source)
    for line_no, raw in enumerate(lines, start=1):
        if not raw.strip():
            continue
        result.records += 1
        try:
            record = json.loads(raw)
        except json.JSONDecodeError as e:
            result.issues.append(
                ValidationIssue(
                    IssueKind.MALFORMED_RECORD,
                    "",
                    f"invalid JSON ({e.msg} at column {e.colno})",
                    source=source,
                    line=line_no,
                )
            )
            continue
        for issue in validate_record(record):
            issue.source = source
            issue.line = line_no
            result.issues.append(issue)
    return result


def validate_file(path: Path) -> FileResult:
    """Validate one JSONL file; an unreadable file counts as one issue."""
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return FileResult(
            path=str(path),
            issues=[
                ValidationIssue(
                    IssueKind.MALFORMED_RECORD,
                    "",
                    f"failed to read file ({e})",
                    source=str(path),
                )
            ],
        )
    return validate_lines(text.splitlines(), source=str(path))


def validate_paths(paths: Sequence[Path]) -> ValidationReport:
    """Validate every file, accumulating all issues."""
    return ValidationReport(files=[validate_file(path) for path in paths])
