"""
Pydantic Schemas for Teaching-Session Snapshots
===============================================

Canonical structure of the persisted snapshot envelope and of each Act.
The wire form is camelCase JSON; models expose snake_case attributes and
validate by alias.

Acts:
- Act 1: case intake (extracted judgment elements)
- Act 2: deep analysis (narrative, timeline, evidence questions, claims)
- Act 3: Socratic dialogue progress
- Act 4: summary (learning report, optional slide deck)

Schema history:
- v0: rows without schema_version; Act data in act1_upload/act2_analysis blobs
- v1: per-field columns, Act4 stores only the derived learning report
- v2: parties.thirdParty, Act4 fullReport (lossless report payload)
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


SNAPSHOT_VERSION = "2.0.0"
SCHEMA_VERSION = 2

DEFAULT_CASE_TITLE = "未命名案例"  # untitled case
UNKNOWN_PARTY = "unknown"


# =============================================================================
# ENUMS
# =============================================================================

class SessionState(str, Enum):
    """Which Act the session is in"""
    ACT1 = "act1"
    ACT2 = "act2"
    ACT3 = "act3"
    ACT4 = "act4"
    COMPLETED = "completed"


class SaveType(str, Enum):
    """How the snapshot was saved"""
    MANUAL = "manual"
    AUTO = "auto"


class EvidenceType(str, Enum):
    """Canonical evidence categories"""
    DOCUMENTARY = "documentary"  # 书证
    TESTIMONIAL = "testimonial"  # 证人证言
    PHYSICAL = "physical"        # 物证
    EXPERT = "expert"            # 鉴定意见


class SubmittedBy(str, Enum):
    """Party that submitted a piece of evidence"""
    PLAINTIFF = "plaintiff"      # 原告
    DEFENDANT = "defendant"      # 被告
    THIRD_PARTY = "third-party"  # 第三人
    COURT = "court"              # 法院


class ExtractionMethod(str, Enum):
    """How Act 1 elements were extracted"""
    AI = "ai"
    RULE = "rule"
    HYBRID = "hybrid"
    MANUAL = "manual"


class ImpactLevel(str, Enum):
    """Impact of a timeline turning point"""
    MAJOR = "major"
    MODERATE = "moderate"
    MINOR = "minor"


# UI stage name -> session state
ACT_TO_SESSION_STATE: Dict[str, SessionState] = {
    "upload": SessionState.ACT1,
    "analysis": SessionState.ACT2,
    "socratic": SessionState.ACT3,
    "summary": SessionState.ACT4,
}

SESSION_STATE_TO_ACT: Dict[SessionState, str] = {
    SessionState.ACT1: "upload",
    SessionState.ACT2: "analysis",
    SessionState.ACT3: "socratic",
    SessionState.ACT4: "summary",
    SessionState.COMPLETED: "summary",
}


class SnapshotModel(BaseModel):
    """Base for snapshot models: camelCase wire names, unknown keys preserved"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


# =============================================================================
# ACT 1 - Case intake
# =============================================================================

class Parties(SnapshotModel):
    plaintiff: List[str] = Field(default_factory=list)
    defendant: List[str] = Field(default_factory=list)
    third_party: List[str] = Field(default_factory=list)


class BasicInfoSnapshot(SnapshotModel):
    case_number: Optional[str] = None
    court: Optional[str] = None
    judge_date: Optional[str] = None
    case_type: Optional[str] = None
    parties: Parties = Field(default_factory=Parties)


class TimelineEventSnapshot(SnapshotModel):
    date: str
    event: str
    description: Optional[str] = None


class FactsSnapshot(SnapshotModel):
    summary: str
    timeline: Optional[List[TimelineEventSnapshot]] = None
    key_facts: Optional[List[str]] = None


class EvidenceItem(SnapshotModel):
    type: EvidenceType
    description: str = Field(..., min_length=1)
    submitted_by: Optional[SubmittedBy] = None


class EvidenceSnapshot(SnapshotModel):
    summary: str
    items: Optional[List[EvidenceItem]] = None


class ReasoningSnapshot(SnapshotModel):
    summary: str


class MetadataSnapshot(SnapshotModel):
    extracted_at: datetime
    confidence: float = Field(..., ge=0, le=1)
    processing_time: float
    ai_model: str
    extraction_method: ExtractionMethod


class Act1Snapshot(SnapshotModel):
    basic_info: BasicInfoSnapshot
    facts: FactsSnapshot
    evidence: EvidenceSnapshot
    reasoning: ReasoningSnapshot
    metadata: MetadataSnapshot
    original_file_name: Optional[str] = None
    uploaded_at: Optional[datetime] = None


# =============================================================================
# ACT 2 - Deep analysis
# =============================================================================

class StoryChapter(SnapshotModel):
    id: Optional[str] = None
    title: Optional[str] = None
    content: Optional[str] = None
    order: int


class NarrativeSnapshot(SnapshotModel):
    chapters: List[StoryChapter] = Field(default_factory=list)
    generated_at: Optional[datetime] = None


class TurningPoint(SnapshotModel):
    id: str
    date: str
    event: str
    description: Optional[str] = None
    impact: ImpactLevel
    perspective: Optional[str] = None


class TimelineAnalysisSnapshot(SnapshotModel):
    turning_points: List[TurningPoint] = Field(default_factory=list)


class Act2Snapshot(SnapshotModel):
    narrative: Optional[NarrativeSnapshot] = None
    timeline_analysis: Optional[TimelineAnalysisSnapshot] = None
    evidence_questions: Optional[List[Dict[str, Any]]] = None
    claim_analysis: Optional[Dict[str, Any]] = None
    completed_at: Optional[datetime] = None


# =============================================================================
# ACT 3 - Socratic dialogue
# =============================================================================

class Act3Snapshot(SnapshotModel):
    level: int = Field(..., ge=1, le=3)
    completed_nodes: List[str]
    total_rounds: int
    completed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_rounds(self):
        """completedNodes is a set; totalRounds counts it"""
        if len(set(self.completed_nodes)) != len(self.completed_nodes):
            raise ValueError("completedNodes contains duplicates")
        if self.total_rounds != len(self.completed_nodes):
            raise ValueError(
                f"totalRounds ({self.total_rounds}) must equal the number of completed nodes "
                f"({len(self.completed_nodes)})"
            )
        return self


# =============================================================================
# ACT 4 - Summary
# =============================================================================

class SkillAssessment(SnapshotModel):
    skill: str
    level: str = "intermediate"
    evidence: List[str] = Field(default_factory=list)


class LearningReportSnapshot(SnapshotModel):
    """Lightweight report summary read by older clients"""
    summary: str
    key_learnings: List[str] = Field(default_factory=list)
    skills_assessed: List[SkillAssessment] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    next_steps: List[str] = Field(default_factory=list)
    generated_at: Optional[datetime] = None


class PPTMetadataSnapshot(SnapshotModel):
    generated_at: datetime
    slide_count: Optional[int] = None
    file_size: Optional[int] = None
    format: Optional[str] = None


class Act4Snapshot(SnapshotModel):
    learning_report: LearningReportSnapshot
    full_report: Optional[Dict[str, Any]] = None
    ppt_url: Optional[str] = Field(None, min_length=1)
    ppt_metadata: Optional[PPTMetadataSnapshot] = None
    completed_at: Optional[datetime] = None


# =============================================================================
# ENVELOPE
# =============================================================================

class SnapshotEnvelope(SnapshotModel):
    """Top-level versioned container persisted for a teaching session"""
    version: str = Field(..., min_length=1)
    schema_version: int = Field(..., ge=0)

    session_state: SessionState

    case_title: str = Field(..., min_length=1)
    case_number: Optional[str] = None
    court_name: Optional[str] = None

    act1: Act1Snapshot
    act2: Optional[Act2Snapshot] = None
    act3: Optional[Act3Snapshot] = None
    act4: Optional[Act4Snapshot] = None

    created_at: datetime
    updated_at: datetime
    last_saved_at: datetime
    save_type: SaveType


# =============================================================================
# APPLICATION STATE PROVENANCE
# =============================================================================

class SnapshotProvenance(BaseModel):
    """Read-only origin block attached to a restored application state"""
    model_config = ConfigDict(frozen=True)

    session_id: Optional[str] = None
    case_title: Optional[str] = None
    case_number: Optional[str] = None
    court_name: Optional[str] = None
    ppt_url: Optional[str] = None
    created_at: Optional[str] = None
    is_read_only: bool = True
    source: str = "database"
    schema_version: int = 0
    data_version: str = "unknown"
