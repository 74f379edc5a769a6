"""
Field Normalizers - Untrusted AI output to canonical values
===========================================================

Every function here is pure and total: it accepts anything the extraction
service might produce, never raises, and falls back to a documented default
when the input cannot be mapped. Fallbacks are logged at DEBUG level.

Usage:
    from teaching_snapshots.normalizers import normalize_party_list
    normalize_party_list([{"name": ["A", "B"]}])  # ["A", "B"]
"""

import copy
import logging
import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import TypeAdapter, ValidationError

from .schemas import (
    UNKNOWN_PARTY,
    EvidenceType,
    ExtractionMethod,
    ImpactLevel,
    SessionState,
    SubmittedBy,
)

logger = logging.getLogger(__name__)

MAX_PARTY_DEPTH = 8


# =============================================================================
# Lookup tables
# =============================================================================

# Exact labels (stripped, lowercased) -> evidence type
EVIDENCE_TYPE_LABELS: Dict[str, EvidenceType] = {
    # Civil procedure categories
    "书证": EvidenceType.DOCUMENTARY,
    "视听资料": EvidenceType.DOCUMENTARY,
    "电子数据": EvidenceType.DOCUMENTARY,
    "物证": EvidenceType.PHYSICAL,
    "勘验笔录": EvidenceType.PHYSICAL,
    "现场笔录": EvidenceType.PHYSICAL,
    "证人证言": EvidenceType.TESTIMONIAL,
    "当事人陈述": EvidenceType.TESTIMONIAL,
    "鉴定意见": EvidenceType.EXPERT,
    "鉴定结论": EvidenceType.EXPERT,
    # English
    "documentary": EvidenceType.DOCUMENTARY,
    "document": EvidenceType.DOCUMENTARY,
    "electronic": EvidenceType.DOCUMENTARY,
    "audiovisual": EvidenceType.DOCUMENTARY,
    "testimonial": EvidenceType.TESTIMONIAL,
    "testimony": EvidenceType.TESTIMONIAL,
    "witness": EvidenceType.TESTIMONIAL,
    "physical": EvidenceType.PHYSICAL,
    "material": EvidenceType.PHYSICAL,
    "expert": EvidenceType.EXPERT,
    "expert opinion": EvidenceType.EXPERT,
}

# Keyword fallbacks, checked in order after the exact table misses
EVIDENCE_TYPE_KEYWORDS: List[Tuple[str, EvidenceType]] = [
    ("鉴定", EvidenceType.EXPERT),
    ("expert", EvidenceType.EXPERT),
    ("证言", EvidenceType.TESTIMONIAL),
    ("陈述", EvidenceType.TESTIMONIAL),
    ("testimon", EvidenceType.TESTIMONIAL),
    ("witness", EvidenceType.TESTIMONIAL),
    ("物证", EvidenceType.PHYSICAL),
    ("勘验", EvidenceType.PHYSICAL),
    ("physical", EvidenceType.PHYSICAL),
]

# Substrings -> extraction method, first match wins
EXTRACTION_METHOD_KEYWORDS: List[Tuple[str, ExtractionMethod]] = [
    ("pure-ai", ExtractionMethod.AI),
    ("rule", ExtractionMethod.RULE),
    ("hybrid", ExtractionMethod.HYBRID),
    ("manual", ExtractionMethod.MANUAL),
]

IMPACT_MAJOR_KEYWORDS = ("high", "critical", "major", "重大", "关键")
IMPACT_MODERATE_KEYWORDS = ("medium", "moderate", "中等", "一般")

IMPACT_MAJOR_THRESHOLD = 0.66
IMPACT_MINOR_THRESHOLD = 0.33

# Exact labels (stripped, lowercased) -> submitting party
SUBMITTED_BY_LABELS: Dict[str, SubmittedBy] = {
    "plaintiff": SubmittedBy.PLAINTIFF,
    "defendant": SubmittedBy.DEFENDANT,
    "third-party": SubmittedBy.THIRD_PARTY,
    "court": SubmittedBy.COURT,
    "third_party": SubmittedBy.THIRD_PARTY,
    "thirdparty": SubmittedBy.THIRD_PARTY,
    "third party": SubmittedBy.THIRD_PARTY,
    "原告": SubmittedBy.PLAINTIFF,
    "上诉人": SubmittedBy.PLAINTIFF,
    "被告": SubmittedBy.DEFENDANT,
    "被上诉人": SubmittedBy.DEFENDANT,
    "第三人": SubmittedBy.THIRD_PARTY,
    "法院": SubmittedBy.COURT,
    "人民法院": SubmittedBy.COURT,
}


# =============================================================================
# Helpers
# =============================================================================

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _label(value: Any) -> str:
    if isinstance(value, str):
        return value.strip().lower()
    return ""


def is_empty(value: Any) -> bool:
    """None, blank strings and empty containers count as empty"""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def first_non_empty(*values: Any, default: Any = None) -> Any:
    """Return the first value that is not empty, else default"""
    for value in values:
        if not is_empty(value):
            return value
    return default


# =============================================================================
# Scalar normalizers
# =============================================================================

# Keys tried, in order, when a text field arrives as an object
TEXT_OBJECT_KEYS = ("name", "text", "value", "title")
TEXT_LIST_SEPARATOR = "、"

_DATETIME = TypeAdapter(datetime)


def _text(value: Any, depth: int, max_depth: int) -> Optional[str]:
    if depth > max_depth:
        return None
    if isinstance(value, str):
        return value if value.strip() else None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, dict):
        for key in TEXT_OBJECT_KEYS:
            text = _text(value.get(key), depth + 1, max_depth)
            if text is not None:
                return text
        return None
    if isinstance(value, (list, tuple)):
        parts = [_text(item, depth + 1, max_depth) for item in value]
        parts = [part for part in parts if part is not None]
        return TEXT_LIST_SEPARATOR.join(parts) if parts else None
    return None


def normalize_text(value: Any, max_depth: int = MAX_PARTY_DEPTH) -> Optional[str]:
    """
    Coerce an untrusted scalar to a non-blank string, or None.

    Numbers are stringified (20230123.0 -> "20230123"), objects are unwrapped
    through their name/text/value/title key, and lists are joined with "、".
    Strings are returned unchanged.
    """
    text = _text(value, 0, max_depth)
    if text is None and not is_empty(value):
        logger.debug(f"Cannot read text from {value!r}, dropping it")
    return text


def normalize_number(value: Any, default: float = 0.0) -> float:
    """Finite float from a number or numeric string, else default"""
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            logger.debug(f"Number {value!r} is not numeric, using {default}")
            return default
    if not _is_number(value):
        return default
    try:
        value = float(value)
    except OverflowError:
        return default
    return value if math.isfinite(value) else default


def normalize_timestamp(value: Any) -> Optional[str]:
    """
    ISO-8601 text for anything pydantic reads as a datetime, else None.

    Parseable strings are kept verbatim; datetimes and epoch numbers are
    rendered with isoformat().
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    try:
        parsed = _DATETIME.validate_python(value)
    except ValidationError:
        logger.debug(f"Unreadable timestamp {value!r}")
        return None
    return value if isinstance(value, str) else parsed.isoformat()


# =============================================================================
# Normalizers
# =============================================================================

def normalize_confidence(value: Any) -> float:
    """
    Normalize a confidence score to [0, 1].

    Values in (1, 100] are treated as percentages. Anything that is not a
    finite number (numeric strings are parsed) falls back to 0.0.
    """
    if isinstance(value, str):
        try:
            value = float(value.strip().rstrip("%"))
        except ValueError:
            logger.debug(f"Confidence {value!r} is not numeric, using 0.0")
            return 0.0

    if not _is_number(value):
        logger.debug(f"Confidence {value!r} is not numeric, using 0.0")
        return 0.0

    try:
        value = float(value)
    except OverflowError:
        return 1.0 if value > 0 else 0.0
    if math.isnan(value):
        logger.debug("Confidence is NaN, using 0.0")
        return 0.0
    if 1 < value <= 100:
        value = value / 100
    return max(0.0, min(1.0, value))


def _flatten_parties(value: Any, depth: int, max_depth: int, out: List[str]) -> None:
    if depth > max_depth:
        logger.debug(f"Party list nested deeper than {max_depth}, using placeholder")
        out.append(UNKNOWN_PARTY)
        return

    if isinstance(value, str):
        out.append(value)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _flatten_parties(item, depth + 1, max_depth, out)
    elif isinstance(value, dict):
        name = value.get("name")
        if isinstance(name, (str, list, tuple)):
            _flatten_parties(name, depth + 1, max_depth, out)
        else:
            logger.debug(f"Party entry without usable name: {value!r}")
            out.append(UNKNOWN_PARTY)
    else:
        logger.debug(f"Unrecoverable party entry: {value!r}")
        out.append(UNKNOWN_PARTY)


def normalize_party_list(value: Any, max_depth: int = MAX_PARTY_DEPTH) -> List[str]:
    """
    Flatten an extracted party field into a list of names.

    Accepts a bare string, a {"name": ...} mapping, or lists nested to any
    depth (up to max_depth) of either. A mapping whose name is itself a list
    is flattened too. Unrecoverable entries become "unknown"; None gives [].
    An already-flat list of strings is returned unchanged.
    """
    if value is None:
        return []

    result: List[str] = []
    _flatten_parties(value, 0, max_depth, result)
    return result


def normalize_parties(parties: Any, max_depth: int = MAX_PARTY_DEPTH) -> Dict[str, List[str]]:
    """Normalize a parties mapping into plaintiff/defendant/thirdParty lists"""
    if not isinstance(parties, dict):
        return {"plaintiff": [], "defendant": [], "thirdParty": []}

    third_party = parties.get("thirdParty")
    if third_party is None:
        third_party = parties.get("third_party")

    return {
        "plaintiff": normalize_party_list(parties.get("plaintiff"), max_depth),
        "defendant": normalize_party_list(parties.get("defendant"), max_depth),
        "thirdParty": normalize_party_list(third_party, max_depth),
    }


def normalize_evidence_type(label: Any) -> EvidenceType:
    """Map a free-text evidence label to an evidence type. Default: documentary"""
    key = _label(label)
    if key in EVIDENCE_TYPE_LABELS:
        return EVIDENCE_TYPE_LABELS[key]

    for keyword, evidence_type in EVIDENCE_TYPE_KEYWORDS:
        if keyword in key:
            return evidence_type

    logger.debug(f"Unmapped evidence type {label!r}, using documentary")
    return EvidenceType.DOCUMENTARY


def normalize_extraction_method(label: Any) -> ExtractionMethod:
    """Map an extraction method label by substring. Default: ai"""
    key = _label(label)
    if key == "ai":
        return ExtractionMethod.AI

    for keyword, method in EXTRACTION_METHOD_KEYWORDS:
        if keyword in key:
            return method

    if key:
        logger.debug(f"Unmapped extraction method {label!r}, using ai")
    return ExtractionMethod.AI


def normalize_impact_level(value: Any) -> ImpactLevel:
    """
    Map an upstream impact signal to major/moderate/minor.

    Numbers (percentages folded into [0, 1]) use thresholds:
    >= 0.66 major, <= 0.33 minor, otherwise moderate.
    Strings match by substring. Anything else is minor.
    """
    if _is_number(value):
        score = normalize_confidence(value)
        if score >= IMPACT_MAJOR_THRESHOLD:
            return ImpactLevel.MAJOR
        if score <= IMPACT_MINOR_THRESHOLD:
            return ImpactLevel.MINOR
        return ImpactLevel.MODERATE

    key = _label(value)
    if any(keyword in key for keyword in IMPACT_MAJOR_KEYWORDS):
        return ImpactLevel.MAJOR
    if any(keyword in key for keyword in IMPACT_MODERATE_KEYWORDS):
        return ImpactLevel.MODERATE

    if key and key != ImpactLevel.MINOR.value:
        logger.debug(f"Unmapped impact {value!r}, using minor")
    return ImpactLevel.MINOR


def normalize_submitted_by(label: Any) -> Optional[SubmittedBy]:
    """Map a submitting-party label by exact match. Unmapped: None"""
    key = _label(label)
    result = SUBMITTED_BY_LABELS.get(key)
    if result is None and key:
        logger.debug(f"Unmapped submittedBy {label!r}, dropping field")
    return result


def normalize_session_state(value: Any) -> Optional[SessionState]:
    """Return the session state for a valid label, else None"""
    if isinstance(value, SessionState):
        return value
    try:
        return SessionState(_label(value))
    except ValueError:
        return None


def normalize_level(value: Any) -> int:
    """Socratic level 1-3. Default: 1"""
    if _is_number(value) and value in (1, 2, 3):
        return int(value)
    if value is not None:
        logger.debug(f"Invalid Socratic level {value!r}, using 1")
    return 1


def dedupe_nodes(nodes: Any) -> List[str]:
    """
    Completed dialogue nodes as a duplicate-free list.

    Lists and tuples keep their first-seen order; sets are sorted so the
    output is deterministic. Non-string entries are dropped.
    """
    if nodes is None:
        return []
    if isinstance(nodes, (set, frozenset)):
        items: Iterable[Any] = sorted(n for n in nodes if isinstance(n, str))
    elif isinstance(nodes, (list, tuple)):
        items = nodes
    else:
        logger.debug(f"completedNodes is not a collection: {type(nodes).__name__}")
        return []

    seen = set()
    result = []
    for node in items:
        if isinstance(node, str) and node not in seen:
            seen.add(node)
            result.append(node)
    return result


# =============================================================================
# Composite normalizers (Act payload sections)
# =============================================================================

DEFAULT_EVIDENCE_DESCRIPTION = "证据描述"  # evidence description

# basicInfo keys typed as text in the Act 1 schema, wire and attribute names
BASIC_INFO_TEXT_FIELDS = (
    "caseNumber", "case_number", "court", "judgeDate", "judge_date", "caseType", "case_type",
)


def normalize_basic_info(basic_info: Any, max_depth: int = MAX_PARTY_DEPTH) -> Dict[str, Any]:
    """Copy of basicInfo with text fields as strings and flat party lists"""
    result = copy.deepcopy(basic_info) if isinstance(basic_info, dict) else {}
    for key in BASIC_INFO_TEXT_FIELDS:
        if key in result:
            result[key] = normalize_text(result[key], max_depth)
    result["parties"] = normalize_parties(result.get("parties"), max_depth)
    result.pop("third_party", None)
    return result


def normalize_summarized(section: Any) -> Dict[str, Any]:
    """
    Copy of a {summary, ...} section with summary always a string.

    A bare scalar becomes the summary; anything else becomes an empty section.
    """
    if not isinstance(section, dict):
        return {"summary": normalize_text(section) or ""}
    result = copy.deepcopy(section)
    result["summary"] = normalize_text(section.get("summary")) or ""
    return result


def normalize_timeline_event(event: Any) -> Optional[Dict[str, Any]]:
    """
    Canonical fact timeline entry, or None when it names no event.

    event falls back to title, then description, then content; date falls
    back to time and timestamp and is always a string.
    """
    if isinstance(event, str):
        return {"date": "", "event": event} if event.strip() else None
    if not isinstance(event, dict):
        return None

    text = first_non_empty(
        *(normalize_text(event.get(key)) for key in ("event", "title", "description", "content"))
    )
    if text is None:
        logger.debug(f"Dropping timeline entry without event: {event!r}")
        return None

    result = copy.deepcopy(event)
    result["event"] = text
    result["date"] = first_non_empty(
        *(normalize_text(event.get(key)) for key in ("date", "time", "timestamp")), default=""
    )
    if "description" in result:
        description = normalize_text(result["description"])
        if description is None:
            result.pop("description")
        else:
            result["description"] = description
    return result


def normalize_text_list(values: Any) -> List[str]:
    """List of non-blank strings; a bare scalar becomes a one-item list"""
    if not isinstance(values, (list, tuple)):
        values = [values]
    texts = (normalize_text(value) for value in values)
    return [text for text in texts if text is not None]


def normalize_facts(facts: Any) -> Dict[str, Any]:
    """Facts section with a canonical timeline and keyFacts list"""
    result = normalize_summarized(facts)

    if result.get("timeline") is not None:
        timeline = result["timeline"]
        if isinstance(timeline, (list, tuple)):
            events = (normalize_timeline_event(event) for event in timeline)
            result["timeline"] = [event for event in events if event is not None]
        else:
            logger.debug("facts.timeline is not a list, dropping it")
            result.pop("timeline")

    if result.get("keyFacts") is not None:
        result["keyFacts"] = normalize_text_list(result["keyFacts"])
    return result


def normalize_evidence_item(item: Any) -> Optional[Dict[str, Any]]:
    """
    Canonical evidence item, or None when nothing usable is left.

    type is mapped through normalize_evidence_type, description falls back
    to the source and then to a placeholder and is always a non-blank
    string, submittedBy is dropped when the label cannot be mapped.
    """
    if isinstance(item, str):
        if not item.strip():
            return None
        return {"type": EvidenceType.DOCUMENTARY.value, "description": item}
    if not isinstance(item, dict):
        logger.debug(f"Dropping evidence item of type {type(item).__name__}")
        return None

    result = copy.deepcopy(item)
    result["type"] = normalize_evidence_type(item.get("type")).value
    result["description"] = first_non_empty(
        normalize_text(item.get("description")),
        normalize_text(item.get("source")),
        default=DEFAULT_EVIDENCE_DESCRIPTION,
    )

    submitted_by = normalize_submitted_by(
        first_non_empty(item.get("submittedBy"), item.get("party"), item.get("submitter"))
    )
    if submitted_by is None:
        result.pop("submittedBy", None)
    else:
        result["submittedBy"] = submitted_by.value
    return result


def normalize_evidence(evidence: Any) -> Dict[str, Any]:
    """Copy of an evidence section with every item normalized"""
    result = normalize_summarized(evidence)
    items = result.get("items")
    if items is None:
        return result
    if not isinstance(items, (list, tuple)):
        logger.debug("evidence.items is not a list, dropping it")
        result.pop("items")
        return result

    result["items"] = [
        normalized for normalized in (normalize_evidence_item(item) for item in items)
        if normalized is not None
    ]
    return result


def _chapter_order(order: Any) -> Optional[int]:
    if isinstance(order, int) and not isinstance(order, bool):
        return order
    if isinstance(order, float) and order.is_integer():
        return int(order)
    if isinstance(order, str) and order.strip().isdigit():
        return int(order.strip())
    return None


def normalize_chapters(chapters: Any) -> List[Dict[str, Any]]:
    """
    Narrative chapters with order always set.

    Chapters without a usable order get their 1-based position in the
    original sequence. Plain strings become chapter content.
    """
    if not isinstance(chapters, (list, tuple)):
        return []

    result = []
    for index, chapter in enumerate(chapters):
        if isinstance(chapter, str):
            chapter = {"content": chapter}
        elif not isinstance(chapter, dict):
            logger.debug(f"Dropping narrative chapter of type {type(chapter).__name__}")
            continue
        else:
            chapter = copy.deepcopy(chapter)

        for key in ("id", "title", "content"):
            if chapter.get(key) is not None:
                chapter[key] = normalize_text(chapter[key])

        order = _chapter_order(chapter.get("order"))
        chapter["order"] = order if order is not None else index + 1
        result.append(chapter)
    return result


def normalize_turning_point(point: Any, index: int) -> Optional[Dict[str, Any]]:
    """Canonical turning point; impact comes from impact/significance/importance"""
    if not isinstance(point, dict):
        return None

    result = {
        "id": first_non_empty(normalize_text(point.get("id")), default=f"tp-{index + 1}"),
        "date": first_non_empty(
            normalize_text(point.get("date")), normalize_text(point.get("timestamp")), default=""
        ),
        "event": first_non_empty(
            *(normalize_text(point.get(key)) for key in ("event", "description", "title")), default=""
        ),
        "impact": normalize_impact_level(
            first_non_empty(point.get("impact"), point.get("significance"), point.get("importance"))
        ).value,
    }

    description = first_non_empty(
        *(normalize_text(point.get(key)) for key in ("description", "event", "detail"))
    )
    if description is not None:
        result["description"] = description
    perspective = normalize_text(point.get("perspective"))
    if perspective is not None:
        result["perspective"] = perspective
    return result


def normalize_turning_points(points: Any) -> List[Dict[str, Any]]:
    if not isinstance(points, (list, tuple)):
        return []
    result = []
    for index, point in enumerate(points):
        normalized = normalize_turning_point(point, index)
        if normalized is not None:
            result.append(normalized)
    return result


def normalize_timeline_analysis(analysis: Any) -> Optional[Dict[str, Any]]:
    """
    Copy of a timeline analysis with turning points normalized.

    All other keys (summary, legal risks, confidence, ...) are kept verbatim.
    The legacy keyTurningPoints list is normalized the same way when present.
    """
    if not isinstance(analysis, dict):
        return None

    result = copy.deepcopy(analysis)
    result["turningPoints"] = normalize_turning_points(analysis.get("turningPoints"))
    if analysis.get("keyTurningPoints") is not None:
        result["keyTurningPoints"] = normalize_turning_points(analysis.get("keyTurningPoints"))
    return result
