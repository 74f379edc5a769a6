"""
Snapshot Restorer - Persisted session to application state
==========================================================

Rebuilds the application state the UI expects from a persisted session
row or envelope, whatever schema version wrote it.

Only a record written by a newer schema version is rejected (VersionError).
Every other problem degrades to an empty default for the affected Act, so
a partially readable session still shows the Acts that survived.
"""

import copy
import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from .aliases import has_any, resolve
from .config import ConversionOptions, Settings, get_settings
from .errors import VersionError
from .normalizers import (
    dedupe_nodes,
    first_non_empty,
    normalize_basic_info,
    normalize_chapters,
    normalize_confidence,
    normalize_level,
    normalize_session_state,
)
from .schemas import (
    SCHEMA_VERSION,
    SESSION_STATE_TO_ACT,
    SessionState,
    SnapshotProvenance,
)
from .sync import DependentSinks, schedule_sync

logger = logging.getLogger(__name__)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value if isinstance(value, str) else str(value)


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def check_version(db_session: Any) -> int:
    """
    Gate on the persisted schema version.

    Raises VersionError for versions newer than this reader; older versions
    are read with a warning. Missing or unreadable versions count as 0.
    """
    raw = resolve(db_session, "schema_version", default=0)
    version = _as_int(raw)
    if version is None:
        logger.warning(f"Unreadable schema version {raw!r}, treating as 0")
        version = 0

    if version > SCHEMA_VERSION:
        logger.error(f"Snapshot schema v{version} is newer than supported v{SCHEMA_VERSION}")
        raise VersionError(version, SCHEMA_VERSION)

    if version < SCHEMA_VERSION:
        logger.warning(f"Restoring snapshot from older schema v{version} (current v{SCHEMA_VERSION})")
    return version


# =============================================================================
# Act restorers
# =============================================================================

def _empty_upload_data() -> Dict[str, Any]:
    return {"extracted_elements": None, "confidence": 0.0}


def _empty_analysis_data() -> Dict[str, Any]:
    return {"result": None, "is_analyzing": False}


def _empty_socratic_data() -> Dict[str, Any]:
    return {"is_active": False, "level": 1, "teaching_mode_enabled": False, "completed_nodes": set()}


def _empty_summary_data() -> Dict[str, Any]:
    return {"report": None, "case_learning_report": None, "is_generating": False}


def restore_act1(db_session: Any, settings: Optional[Settings] = None) -> Dict[str, Any]:
    """upload_data from Act 1 fields, or from the v0 act1_upload blob"""
    settings = settings or get_settings()
    fields = ("act1_basic_info", "act1_facts", "act1_evidence", "act1_reasoning", "act1_metadata")

    if has_any(db_session, *fields):
        confidence = resolve(db_session, "act1_confidence")
        return {
            "extracted_elements": {
                "data": {
                    "basicInfo": normalize_basic_info(
                        resolve(db_session, "act1_basic_info"), settings.max_party_depth
                    ),
                    "facts": copy.deepcopy(resolve(db_session, "act1_facts")),
                    "evidence": copy.deepcopy(resolve(db_session, "act1_evidence")),
                    "reasoning": copy.deepcopy(resolve(db_session, "act1_reasoning")),
                    "metadata": copy.deepcopy(resolve(db_session, "act1_metadata")),
                },
            },
            "confidence": normalize_confidence(confidence) if confidence is not None else 0.0,
        }

    legacy = resolve(db_session, "act1_upload")
    if isinstance(legacy, dict):
        extracted = copy.deepcopy(
            first_non_empty(legacy.get("extractedElements"), legacy.get("extracted_elements"))
        )
        if isinstance(extracted, dict):
            data = extracted.get("data") if isinstance(extracted.get("data"), dict) else extracted
            if "basicInfo" in data:
                data["basicInfo"] = normalize_basic_info(data["basicInfo"], settings.max_party_depth)
        return {
            "extracted_elements": extracted,
            "confidence": normalize_confidence(legacy.get("confidence", 0)),
        }

    return _empty_upload_data()


def _restore_narrative(narrative: Any) -> Any:
    if not isinstance(narrative, dict):
        return copy.deepcopy(narrative)
    result = copy.deepcopy(narrative)
    result["chapters"] = normalize_chapters(narrative.get("chapters"))
    return result


def restore_act2(db_session: Any) -> Dict[str, Any]:
    """analysis_data from Act 2 fields, or from the v0 act2_analysis blob"""
    fields = ("act2_narrative", "act2_timeline_analysis", "act2_evidence_questions", "act2_claim_analysis")

    if has_any(db_session, *fields):
        return {
            "result": {
                "narrative": _restore_narrative(resolve(db_session, "act2_narrative")),
                "timelineAnalysis": copy.deepcopy(resolve(db_session, "act2_timeline_analysis")),
                "evidenceQuestions": copy.deepcopy(resolve(db_session, "act2_evidence_questions")),
                "claimAnalysis": copy.deepcopy(resolve(db_session, "act2_claim_analysis")),
            },
            "is_analyzing": False,
        }

    legacy = resolve(db_session, "act2_analysis")
    if isinstance(legacy, dict):
        return {"result": copy.deepcopy(legacy.get("result")), "is_analyzing": False}

    return _empty_analysis_data()


def restore_story_chapters(db_session: Any) -> List[Dict[str, Any]]:
    narrative = resolve(db_session, "act2_narrative")
    if narrative is None:
        legacy = resolve(db_session, "act2_analysis")
        result = legacy.get("result") if isinstance(legacy, dict) else None
        narrative = result.get("narrative") if isinstance(result, dict) else None
    if isinstance(narrative, list):
        return normalize_chapters(narrative)
    if isinstance(narrative, dict):
        return normalize_chapters(narrative.get("chapters"))
    return []


def restore_act3(db_session: Any) -> Dict[str, Any]:
    """socratic_data with completed nodes rehydrated as a set"""
    act3 = resolve(db_session, "act3_socratic")
    if not isinstance(act3, dict):
        return _empty_socratic_data()

    nodes = first_non_empty(act3.get("completedNodes"), act3.get("completed_nodes"))
    return {
        "is_active": False,
        "level": normalize_level(act3.get("level")),
        "teaching_mode_enabled": False,
        "completed_nodes": set(dedupe_nodes(nodes)),
    }


def restore_act4(db_session: Any) -> Dict[str, Any]:
    """summary_data; prefers the lossless report over the derived summary"""
    report = first_non_empty(
        resolve(db_session, "act4_full_report"),
        resolve(db_session, "act4_learning_report"),
    )
    if report is None:
        return _empty_summary_data()

    return {"report": None, "case_learning_report": copy.deepcopy(report), "is_generating": False}


def build_provenance(db_session: Any, schema_version: int) -> SnapshotProvenance:
    return SnapshotProvenance(
        session_id=_text(resolve(db_session, "session_id")),
        case_title=_text(resolve(db_session, "case_title")),
        case_number=_text(resolve(db_session, "case_number")),
        court_name=_text(resolve(db_session, "court_name")),
        ppt_url=_text(resolve(db_session, "act4_ppt_url")),
        created_at=_text(resolve(db_session, "created_at")),
        is_read_only=True,
        source="database",
        schema_version=schema_version,
        data_version=_text(resolve(db_session, "data_version")) or "unknown",
    )


def _restore_isolated(name: str, restorer: Callable[..., Any], fallback: Callable[[], Any], *args: Any) -> Any:
    try:
        return restorer(*args)
    except Exception as e:
        logger.error(f"Restoring {name} failed, using empty default: {e}", exc_info=True)
        return fallback()


# =============================================================================
# Entry point
# =============================================================================

def to_store(
    db_session: Any,
    options: Optional[ConversionOptions] = None,
    sinks: Optional[DependentSinks] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    """
    Restore application state from a persisted session.

    Args:
        db_session: Persisted row (mapping or attribute object) or envelope
        options: Conversion options; sync_stores controls cross-store sync
        sinks: Setters of the dependent state containers
        settings: Engine settings (defaults to the cached settings)

    Returns:
        Application state dict; dependent stores are synced in the background

    Raises:
        VersionError: the record was written by a newer schema version
    """
    settings = settings or get_settings()
    options = options or ConversionOptions.from_settings(settings)
    db_session = db_session if db_session is not None else {}

    schema_version = check_version(db_session)
    session_state = normalize_session_state(resolve(db_session, "session_state")) or SessionState.ACT1

    state: Dict[str, Any] = {
        "session_id": _text(resolve(db_session, "session_id")),
        "session_state": session_state.value,
        "current_act": SESSION_STATE_TO_ACT[session_state],
        "last_saved_at": _text(resolve(db_session, "last_saved_at")),
        "upload_data": _restore_isolated("act1", restore_act1, _empty_upload_data, db_session, settings),
        "analysis_data": _restore_isolated("act2", restore_act2, _empty_analysis_data, db_session),
        "story_chapters": _restore_isolated("story chapters", restore_story_chapters, list, db_session),
        "socratic_data": _restore_isolated("act3", restore_act3, _empty_socratic_data, db_session),
        "summary_data": _restore_isolated("act4", restore_act4, _empty_summary_data, db_session),
        "snapshot": build_provenance(db_session, schema_version),
        # UI flags reset on restore
        "story_mode": True,
        "loading": False,
        "error": None,
    }

    if options.sync_stores and sinks is not None:
        schedule_sync(db_session, state, sinks)
    elif options.sync_stores:
        logger.debug("No dependent sinks given, skipping store sync")

    logger.info(
        f"Snapshot restored: session={state['session_id']}, state={session_state.value}, "
        f"schema=v{schema_version}"
    )
    return state
