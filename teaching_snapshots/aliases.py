"""
Historical field names for persisted sessions.

Persisted rows were never migrated when the representation changed, so one
logical field can live under several names: the snake_case column, the
camelCase column written by older clients, or a nested path inside an
envelope. Each logical field lists its variants in priority order; the first
non-empty one wins. Adding a new variant only touches this table.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any, Dict, List, Tuple

from .normalizers import is_empty

logger = logging.getLogger(__name__)

Path = Tuple[str, ...]

FIELD_ALIASES: Dict[str, List[Path]] = {
    # Envelope metadata
    "session_id": [("id",), ("session_id",), ("sessionId",)],
    "schema_version": [("schema_version",), ("schemaVersion",)],
    "data_version": [("data_version",), ("dataVersion",), ("version",)],
    "session_state": [("session_state",), ("sessionState",)],
    "case_title": [("case_title",), ("caseTitle",)],
    "case_number": [("case_number",), ("caseNumber",)],
    "court_name": [("court_name",), ("courtName",)],
    "created_at": [("created_at",), ("createdAt",)],
    "updated_at": [("updated_at",), ("updatedAt",)],
    "last_saved_at": [("last_saved_at",), ("lastSavedAt",)],
    "save_type": [("save_type",), ("saveType",)],

    # Act 1
    "act1_basic_info": [("act1_basic_info",), ("act1BasicInfo",), ("act1", "basicInfo")],
    "act1_facts": [("act1_facts",), ("act1Facts",), ("act1", "facts")],
    "act1_evidence": [("act1_evidence",), ("act1Evidence",), ("act1", "evidence")],
    "act1_reasoning": [("act1_reasoning",), ("act1Reasoning",), ("act1", "reasoning")],
    "act1_metadata": [("act1_metadata",), ("act1Metadata",), ("act1", "metadata")],
    "act1_confidence": [
        ("act1_confidence",), ("act1Confidence",), ("act1", "metadata", "confidence"),
    ],
    # v0 rows kept the whole upload state in one blob
    "act1_upload": [("act1_upload",), ("act1Upload",)],

    # Act 2
    "act2_narrative": [("act2_narrative",), ("act2Narrative",), ("act2", "narrative")],
    "act2_timeline_analysis": [
        ("act2_timeline_analysis",), ("act2TimelineAnalysis",), ("act2", "timelineAnalysis"),
    ],
    "act2_evidence_questions": [
        ("act2_evidence_questions",), ("act2EvidenceQuestions",), ("act2", "evidenceQuestions"),
    ],
    "act2_claim_analysis": [
        ("act2_claim_analysis",), ("act2ClaimAnalysis",), ("act2", "claimAnalysis"),
    ],
    # v0 rows kept the whole analysis state in one blob
    "act2_analysis": [("act2_analysis",), ("act2Analysis",)],

    # Act 3
    "act3_socratic": [("act3_socratic",), ("act3Socratic",), ("act3",)],

    # Act 4
    "act4_full_report": [("act4_full_report",), ("act4FullReport",), ("act4", "fullReport")],
    "act4_learning_report": [
        ("act4_learning_report",), ("act4LearningReport",), ("act4", "learningReport"),
    ],
    "act4_ppt_url": [("act4_ppt_url",), ("act4PptUrl",), ("act4", "pptUrl")],
    "act4_ppt_metadata": [("act4_ppt_metadata",), ("act4PptMetadata",), ("act4", "pptMetadata")],
}

# Fields stored as JSON documents; text columns may hold them serialized
JSON_FIELDS = {
    "act1_basic_info", "act1_facts", "act1_evidence", "act1_reasoning", "act1_metadata",
    "act1_upload", "act2_narrative", "act2_timeline_analysis", "act2_evidence_questions",
    "act2_claim_analysis", "act2_analysis", "act3_socratic", "act4_full_report",
    "act4_learning_report", "act4_ppt_metadata",
}


def _get(container: Any, key: str) -> Any:
    if isinstance(container, Mapping):
        return container.get(key)
    return getattr(container, key, None)


def _lookup(record: Any, path: Path) -> Any:
    value = record
    for key in path:
        if value is None:
            return None
        value = _get(value, key)
    return value


def _decode_json(field: str, value: Any) -> Any:
    if not isinstance(value, str):
        return value
    text = value.strip()
    if not text.startswith(("{", "[")):
        return None
    try:
        return json.loads(text)
    except ValueError:
        logger.debug(f"Field {field} holds undecodable JSON text, skipping variant")
        return None


def resolve(record: Any, field: str, default: Any = None) -> Any:
    """
    Read a logical field from a persisted record.

    Tries every historical variant of the field in priority order and returns
    the first non-empty value. JSON document fields stored as text are decoded.
    """
    for path in FIELD_ALIASES[field]:
        value = _lookup(record, path)
        if field in JSON_FIELDS:
            value = _decode_json(field, value)
        if not is_empty(value):
            return value
    return default


def has_any(record: Any, *fields: str) -> bool:
    """True when at least one of the logical fields is present"""
    return any(resolve(record, field) is not None for field in fields)
