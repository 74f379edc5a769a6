"""
Snapshot Validator
==================

Structured, non-throwing validation of snapshot envelopes and Acts.

Usage:
    from teaching_snapshots.validator import validate
    report = validate(envelope)
    if not report.success:
        logger.warning(report.summary())
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Type

from pydantic import BaseModel, ValidationError

from .schemas import (
    Act1Snapshot,
    Act2Snapshot,
    Act3Snapshot,
    Act4Snapshot,
    SnapshotEnvelope,
)

logger = logging.getLogger(__name__)

ROOT_PATH = "<root>"


@dataclass
class ValidationIssue:
    """One schema violation"""
    path: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "message": self.message}


@dataclass
class ValidationReport:
    """Result of validating an envelope or an Act"""
    success: bool
    errors: List[ValidationIssue] = field(default_factory=list)

    def summary(self) -> str:
        return format_validation_errors(self)

    def merge(self, other: "ValidationReport") -> "ValidationReport":
        return ValidationReport(
            success=self.success and other.success,
            errors=self.errors + other.errors,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "errors": [issue.to_dict() for issue in self.errors],
        }


def _dotted(loc) -> str:
    path = ".".join(str(part) for part in loc)
    return path or ROOT_PATH


def _validate_model(model: Type[BaseModel], data: Any, prefix: str = "") -> ValidationReport:
    try:
        model.model_validate(data)
    except ValidationError as e:
        issues = []
        for err in e.errors():
            path = _dotted(err.get("loc", ()))
            if prefix:
                path = prefix if path == ROOT_PATH else f"{prefix}.{path}"
            issues.append(ValidationIssue(path=path, message=err.get("msg", "invalid value")))
        return ValidationReport(success=False, errors=issues)
    return ValidationReport(success=True)


def validate(envelope: Any) -> ValidationReport:
    """
    Validate a complete snapshot envelope.

    Never raises and never mutates the input. Each violation carries the
    dotted path of the offending field, e.g. ``act1.metadata.confidence``.
    """
    return _validate_model(SnapshotEnvelope, envelope)


def validate_act1(data: Any) -> ValidationReport:
    return _validate_model(Act1Snapshot, data, prefix="act1")


def validate_act2(data: Any) -> ValidationReport:
    return _validate_model(Act2Snapshot, data, prefix="act2")


def validate_act3(data: Any) -> ValidationReport:
    return _validate_model(Act3Snapshot, data, prefix="act3")


def validate_act4(data: Any) -> ValidationReport:
    return _validate_model(Act4Snapshot, data, prefix="act4")


def check_snapshot_size(envelope: Any, max_bytes: int) -> ValidationReport:
    """Check the serialized UTF-8 size of an envelope against a limit"""
    try:
        size = len(json.dumps(envelope, ensure_ascii=False, default=str).encode("utf-8"))
    except (TypeError, ValueError) as e:
        return ValidationReport(
            success=False,
            errors=[ValidationIssue(ROOT_PATH, f"envelope is not serializable: {e}")],
        )

    if size > max_bytes:
        return ValidationReport(
            success=False,
            errors=[ValidationIssue(ROOT_PATH, f"snapshot size {size} bytes exceeds limit of {max_bytes} bytes")],
        )
    return ValidationReport(success=True)


def format_validation_errors(report: ValidationReport) -> str:
    """Human-readable one-line summary: 'path: message; path: message'"""
    if report.success:
        return "ok"
    return "; ".join(f"{issue.path}: {issue.message}" for issue in report.errors)
