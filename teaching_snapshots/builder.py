"""
Snapshot Builder - Application state to persisted envelope
==========================================================

Assembles a versioned snapshot envelope from the UI-owned application state.

Pipeline:
1. Case metadata from the first alias readable as text
2. Act 1-4 built independently; a failing Act is omitted, never fatal
3. Envelope assembly, carry-over of Acts from the previous envelope
4. Session state (explicit -> current UI stage -> most advanced Act)
5. Validation (strict raises, lenient logs and returns)

The input state is never mutated; every section is deep-copied before it
is normalized.
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .config import ConversionOptions, Settings, get_settings
from .errors import SnapshotTooLargeError, SnapshotValidationError, VersionError
from .normalizers import (
    dedupe_nodes,
    first_non_empty,
    normalize_basic_info,
    normalize_chapters,
    normalize_confidence,
    normalize_evidence,
    normalize_extraction_method,
    normalize_facts,
    normalize_level,
    normalize_number,
    normalize_session_state,
    normalize_summarized,
    normalize_text,
    normalize_text_list,
    normalize_timeline_analysis,
    normalize_timestamp,
)
from .schemas import (
    ACT_TO_SESSION_STATE,
    DEFAULT_CASE_TITLE,
    SCHEMA_VERSION,
    SNAPSHOT_VERSION,
    SaveType,
    SessionState,
)
from .validator import check_snapshot_size, validate

logger = logging.getLogger(__name__)

ACT_KEYS = ("act1", "act2", "act3", "act4")
DEFAULT_SKILL_EVIDENCE = "完成苏格拉底对话"  # completed the Socratic dialogue
DERIVED_REPORT_KEYS = ("summary", "keyLearnings", "skillsAssessed")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _str_list(value: Any) -> list:
    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, str)]


def _first_text(*values: Any) -> Optional[str]:
    return first_non_empty(*(normalize_text(value) for value in values))


def _extracted_payload(state: Dict[str, Any]) -> Dict[str, Any]:
    """AI extraction payload, unwrapped from its optional data envelope"""
    extracted = _as_dict(_as_dict(state.get("upload_data")).get("extracted_elements"))
    data = extracted.get("data")
    return data if isinstance(data, dict) else extracted


# =============================================================================
# Case metadata and session state
# =============================================================================

def extract_case_info(state: Dict[str, Any]) -> Dict[str, Any]:
    """
    Case title, number and court from the extraction payload.

    Each value walks an ordered chain of field-name aliases (structured
    basicInfo first, then the flat payload, then Chinese labels) and the
    first value readable as text wins: numbers are stringified and
    {"name": ...} objects unwrapped.
    """
    data = _extracted_payload(state)
    basic_info = _as_dict(first_non_empty(data.get("basicInfo"), data.get("basic_info")))

    case_number = _first_text(
        basic_info.get("caseNumber"),
        data.get("caseNumber"),
        basic_info.get("case_number"),
        data.get("case_number"),
        basic_info.get("案号"),
        data.get("案号"),
    )
    court = _first_text(
        basic_info.get("court"),
        data.get("court"),
        basic_info.get("courtName"),
        data.get("courtName"),
        basic_info.get("法院"),
        data.get("法院"),
    )
    title = first_non_empty(
        _first_text(data.get("title"), data.get("caseTitle")),
        case_number,
        _first_text(data.get("案件名称")),
        default=DEFAULT_CASE_TITLE,
    )
    return {"title": title, "number": case_number, "court": court}


def detect_session_state(state: Dict[str, Any]) -> SessionState:
    """Infer the session state from the most advanced populated Act"""
    if _as_dict(state.get("summary_data")).get("case_learning_report"):
        return SessionState.COMPLETED
    if dedupe_nodes(_as_dict(state.get("socratic_data")).get("completed_nodes")):
        return SessionState.ACT3
    if _as_dict(state.get("analysis_data")).get("result"):
        return SessionState.ACT2
    return SessionState.ACT1


def envelope_session_state(envelope: Dict[str, Any]) -> SessionState:
    """Session state implied by the most advanced Act present in an envelope"""
    if envelope.get("act4") is not None:
        return SessionState.COMPLETED
    if envelope.get("act3") is not None:
        return SessionState.ACT3
    if envelope.get("act2") is not None:
        return SessionState.ACT2
    return SessionState.ACT1


def resolve_session_state(
    state: Dict[str, Any],
    envelope: Optional[Dict[str, Any]] = None,
) -> SessionState:
    """
    Explicit state, then the mapped UI stage, then inference.

    Inference reads the assembled envelope when one is given, so Acts
    carried over from the previous snapshot count too.
    """
    explicit = normalize_session_state(state.get("session_state"))
    if explicit is not None:
        return explicit

    current_act = state.get("current_act")
    if isinstance(current_act, str) and current_act in ACT_TO_SESSION_STATE:
        return ACT_TO_SESSION_STATE[current_act]

    if envelope is not None:
        return envelope_session_state(envelope)
    return detect_session_state(state)


# =============================================================================
# Act builders
# =============================================================================

def build_act1(state: Dict[str, Any], settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Act 1 snapshot from the extracted judgment elements"""
    settings = settings or get_settings()
    upload = _as_dict(state.get("upload_data"))
    data = _extracted_payload(state)
    three_elements = _as_dict(data.get("threeElements"))

    basic_info = normalize_basic_info(
        first_non_empty(data.get("basicInfo"), data.get("basic_info")), settings.max_party_depth
    )

    raw_metadata = _as_dict(data.get("metadata"))
    confidence = upload.get("confidence")
    if confidence is None:
        confidence = raw_metadata.get("confidence", 0)

    metadata = copy.deepcopy(raw_metadata)
    metadata.update({
        "extractedAt": normalize_timestamp(raw_metadata.get("extractedAt")) or _now(),
        "confidence": normalize_confidence(confidence),
        "processingTime": normalize_number(raw_metadata.get("processingTime")),
        "aiModel": normalize_text(raw_metadata.get("aiModel")) or "unknown",
        "extractionMethod": normalize_extraction_method(raw_metadata.get("extractionMethod")).value,
    })

    act1 = {
        "basicInfo": basic_info,
        "facts": normalize_facts(first_non_empty(three_elements.get("facts"), data.get("facts"))),
        "evidence": normalize_evidence(first_non_empty(three_elements.get("evidence"), data.get("evidence"))),
        "reasoning": normalize_summarized(
            first_non_empty(three_elements.get("reasoning"), data.get("reasoning"))
        ),
        "metadata": metadata,
        "uploadedAt": normalize_timestamp(data.get("uploadedAt")) or _now(),
    }
    original_file_name = _first_text(data.get("originalFileName"), raw_metadata.get("originalFileName"))
    if original_file_name is not None:
        act1["originalFileName"] = original_file_name
    return act1


def build_act2(state: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Act 2 snapshot, or None when no analysis exists"""
    result = _as_dict(_as_dict(state.get("analysis_data")).get("result"))

    narrative = None
    raw_narrative = result.get("narrative")
    if isinstance(raw_narrative, dict):
        narrative = copy.deepcopy(raw_narrative)
        narrative["chapters"] = normalize_chapters(raw_narrative.get("chapters"))
        if "generatedAt" in narrative:
            narrative["generatedAt"] = normalize_timestamp(narrative["generatedAt"])
    elif isinstance(raw_narrative, list):
        narrative = {"chapters": normalize_chapters(raw_narrative)}
    elif state.get("story_chapters"):
        narrative = {"chapters": normalize_chapters(state.get("story_chapters"))}

    evidence_questions = result.get("evidenceQuestions")
    claim_analysis = result.get("claimAnalysis")

    act2 = {
        "narrative": narrative,
        "timelineAnalysis": normalize_timeline_analysis(result.get("timelineAnalysis")),
        "evidenceQuestions": (
            [copy.deepcopy(q) for q in evidence_questions if isinstance(q, dict)]
            if isinstance(evidence_questions, list) else None
        ),
        "claimAnalysis": copy.deepcopy(claim_analysis) if isinstance(claim_analysis, dict) else None,
    }
    if all(value is None for value in act2.values()):
        return None

    act2 = {key: value for key, value in act2.items() if value is not None}
    act2["completedAt"] = _now()
    return act2


def build_act3(state: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Act 3 snapshot, or None before any dialogue node is completed"""
    socratic = _as_dict(state.get("socratic_data"))
    nodes = dedupe_nodes(socratic.get("completed_nodes"))
    if not nodes:
        return None

    return {
        "level": normalize_level(socratic.get("level")),
        "completedNodes": nodes,
        "totalRounds": len(nodes),
        "completedAt": _now(),
    }


def derive_learning_report(report: Dict[str, Any]) -> Dict[str, Any]:
    """Lightweight learning report summary read by older clients"""
    if not isinstance(report, dict):
        raise TypeError(f"learning report must be a mapping, got {type(report).__name__}")

    overview = _as_dict(report.get("caseOverview"))
    points = _as_dict(report.get("learningPoints"))
    highlights = _as_dict(report.get("socraticHighlights"))
    takeaways = _as_dict(report.get("practicalTakeaways"))

    insights = _str_list(highlights.get("studentInsights"))
    skills = []
    for index, question in enumerate(_str_list(highlights.get("keyQuestions"))):
        evidence = insights[index] if index < len(insights) else DEFAULT_SKILL_EVIDENCE
        skills.append({"skill": question, "level": "intermediate", "evidence": [evidence]})

    return {
        "summary": _first_text(overview.get("oneLineSummary"), overview.get("title")) or "",
        "keyLearnings": (
            _str_list(points.get("factualInsights"))
            + _str_list(points.get("legalPrinciples"))
            + _str_list(points.get("evidenceHandling"))
        ),
        "skillsAssessed": skills,
        "recommendations": _str_list(takeaways.get("cautionPoints")),
        "nextSteps": _str_list(takeaways.get("checkList")),
        "generatedAt": _now(),
    }


def is_derived_report(report: Any) -> bool:
    """
    True for a report already in learningReport form.

    v1 rows only persisted the derived summary, so restoring one puts that
    summary where the full report normally lives.
    """
    if not isinstance(report, dict) or "caseOverview" in report:
        return False
    return any(key in report for key in DERIVED_REPORT_KEYS)


def carry_learning_report(report: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of an already-derived report with its fields in schema types"""
    result = copy.deepcopy(report)
    result["summary"] = normalize_text(report.get("summary")) or ""
    for key in ("keyLearnings", "recommendations", "nextSteps"):
        if result.get(key) is not None:
            result[key] = normalize_text_list(result[key])

    if result.get("skillsAssessed") is not None:
        skills = result["skillsAssessed"] if isinstance(result["skillsAssessed"], list) else []
        result["skillsAssessed"] = [
            skill for skill in skills
            if isinstance(skill, dict) and isinstance(skill.get("skill"), str)
        ]
    if "generatedAt" in result:
        result["generatedAt"] = normalize_timestamp(result["generatedAt"])
    return result


def build_act4(state: Dict[str, Any], ppt_url: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Act 4 snapshot, or None before a learning report exists.

    Carries both the derived summary (learningReport) and a lossless copy
    of the report (fullReport). A report that is already a derived summary
    is carried through as learningReport and has no fullReport.
    """
    report = _as_dict(state.get("summary_data")).get("case_learning_report")
    if report is None:
        return None

    if is_derived_report(report):
        logger.debug("Learning report is already derived, carrying it over unchanged")
        act4 = {"learningReport": carry_learning_report(report), "completedAt": _now()}
    else:
        act4 = {
            "learningReport": derive_learning_report(report),
            "fullReport": copy.deepcopy(report),
            "completedAt": _now(),
        }
    if ppt_url:
        act4["pptUrl"] = ppt_url
        act4["pptMetadata"] = {"generatedAt": _now()}
    return act4


def _build_isolated(name: str, builder: Callable[..., Any], *args: Any) -> Optional[Dict[str, Any]]:
    """Run one Act builder; a failure omits that Act only"""
    try:
        return builder(*args)
    except Exception as e:
        logger.error(f"Building {name} snapshot failed, omitting it: {e}", exc_info=True)
        return None


# =============================================================================
# Envelope
# =============================================================================

def _resolve_save_type(value: Any) -> SaveType:
    try:
        return SaveType(value)
    except ValueError:
        logger.debug(f"Unknown save type {value!r}, using manual")
        return SaveType.MANUAL


def _carry_over(envelope: Dict[str, Any], previous: Dict[str, Any]) -> None:
    """Keep Acts and createdAt from the last persisted envelope"""
    previous_version = previous.get("schemaVersion")
    if isinstance(previous_version, int) and previous_version > SCHEMA_VERSION:
        raise VersionError(previous_version, SCHEMA_VERSION)

    for key in ACT_KEYS:
        if envelope.get(key) is None and previous.get(key) is not None:
            logger.debug(f"Carrying over {key} from the previous snapshot")
            envelope[key] = copy.deepcopy(previous[key])

    if previous.get("createdAt"):
        envelope["createdAt"] = previous["createdAt"]


def to_database(
    state: Dict[str, Any],
    ppt_url: Optional[str] = None,
    options: Optional[ConversionOptions] = None,
    previous: Optional[Dict[str, Any]] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    """
    Build a snapshot envelope from the application state.

    Args:
        state: UI-owned application state (read only)
        ppt_url: Download URL of the generated slide deck, if any
        options: Conversion options; defaults follow the configured policy
        previous: Last persisted envelope for this session; Acts missing
            from the new build are carried over from it
        settings: Engine settings (defaults to the cached settings)

    Returns:
        Envelope dict in camelCase wire form

    Raises:
        SnapshotTooLargeError: only the size limit failed and options.strict is set
        SnapshotValidationError: validation failed and options.strict is set
        VersionError: previous was written by a newer schema version
    """
    settings = settings or get_settings()
    options = options or ConversionOptions.from_settings(settings)
    state = state if isinstance(state, dict) else {}

    case_info = extract_case_info(state)
    now = _now()

    envelope: Dict[str, Any] = {
        "version": SNAPSHOT_VERSION,
        "schemaVersion": SCHEMA_VERSION,
        "sessionState": None,
        "caseTitle": case_info["title"],
        "caseNumber": case_info["number"],
        "courtName": case_info["court"],
        "act1": _build_isolated("act1", build_act1, state, settings),
        "act2": _build_isolated("act2", build_act2, state),
        "act3": _build_isolated("act3", build_act3, state),
        "act4": _build_isolated("act4", build_act4, state, ppt_url),
        "createdAt": now,
        "updatedAt": now,
        "lastSavedAt": now,
        "saveType": _resolve_save_type(options.save_type).value,
    }

    if isinstance(previous, dict):
        _carry_over(envelope, previous)
    envelope["sessionState"] = resolve_session_state(state, envelope).value

    if options.skip_validation:
        logger.warning(f"Snapshot validation skipped by caller (case={envelope['caseTitle']!r})")
        return envelope

    schema_report = validate(envelope)
    size_report = check_snapshot_size(envelope, settings.effective_max_snapshot_size)
    report = schema_report.merge(size_report)
    if report.success:
        logger.info(
            f"Snapshot built: state={envelope['sessionState']}, "
            f"acts={[key for key in ACT_KEYS if envelope.get(key) is not None]}"
        )
        return envelope

    if options.strict:
        logger.error(f"Snapshot validation failed: {report.summary()}")
        if schema_report.success:
            raise SnapshotTooLargeError(size_report)
        raise SnapshotValidationError(report)

    logger.warning(f"Snapshot validation failed, saving anyway: {report.summary()}")
    return envelope
