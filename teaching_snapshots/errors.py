"""
Snapshot error types.

Kept in a separate module so the builder, the restorer and API layers can
import the same exception classes without importing the converters.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class SnapshotErrorCode(str, Enum):
    """Error codes exposed to API callers"""
    SNAPSHOT_VALIDATION_FAILED = "SNAPSHOT_VALIDATION_FAILED"
    SCHEMA_VERSION_MISMATCH = "SCHEMA_VERSION_MISMATCH"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


ERROR_HTTP_STATUS: Dict[SnapshotErrorCode, int] = {
    SnapshotErrorCode.SNAPSHOT_VALIDATION_FAILED: 400,
    SnapshotErrorCode.SCHEMA_VERSION_MISMATCH: 400,
    SnapshotErrorCode.PAYLOAD_TOO_LARGE: 413,
    SnapshotErrorCode.UNKNOWN_ERROR: 500,
}


class SnapshotError(Exception):
    """Base exception for snapshot conversion errors"""

    code: SnapshotErrorCode = SnapshotErrorCode.UNKNOWN_ERROR

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        self.timestamp = datetime.now(timezone.utc).isoformat()

    @property
    def http_status(self) -> int:
        return ERROR_HTTP_STATUS.get(self.code, 500)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API error response format"""
        return {
            "success": False,
            "error": self.code.value,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp,
        }


class VersionError(SnapshotError):
    """Persisted schema version is newer than this reader supports."""

    code = SnapshotErrorCode.SCHEMA_VERSION_MISMATCH

    def __init__(self, found: int, supported: int):
        super().__init__(
            f"Unsupported snapshot schema version: {found} (highest supported: {supported})",
            details={"found": found, "supported": supported},
        )
        self.found = found
        self.supported = supported


class SnapshotValidationError(SnapshotError):
    """Envelope failed schema validation in strict mode."""

    code = SnapshotErrorCode.SNAPSHOT_VALIDATION_FAILED
    headline = "Snapshot does not match schema"

    def __init__(self, report: Any):
        summary = report.summary() if hasattr(report, "summary") else str(report)
        issues = [issue.to_dict() for issue in getattr(report, "errors", [])]
        super().__init__(f"{self.headline}: {summary}", details=issues)
        self.report = report


class SnapshotTooLargeError(SnapshotValidationError):
    """Envelope matches the schema but exceeds the configured size limit."""

    code = SnapshotErrorCode.PAYLOAD_TOO_LARGE
    headline = "Snapshot exceeds the size limit"
