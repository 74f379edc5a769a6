"""
Tests for Snapshot Restorer

Tests:
- schema version gate (newer rejected, older read with defaults)
- historical field names: snake_case, camelCase, envelope paths
- JSON documents stored as text
- v0 blob rows
- set rehydration and party flattening
- per-Act failure isolation
- read-only provenance
"""

import json
import logging
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from teaching_snapshots.builder import to_database
from teaching_snapshots.config import ConversionOptions, Settings
from teaching_snapshots.errors import VersionError
from teaching_snapshots.restorer import check_version, restore_act3, restore_act4, to_store
from teaching_snapshots.schemas import SCHEMA_VERSION, SNAPSHOT_VERSION


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings():
    return Settings(strict_validation=True, sync_stores=False)


@pytest.fixture
def no_sync():
    return ConversionOptions(sync_stores=False)


@pytest.fixture
def v2_row():
    """Row as written by the current persistence layer (snake_case columns)"""
    return {
        "id": "session-42",
        "schema_version": 2,
        "data_version": "2.0.0",
        "session_state": "act3",
        "case_title": "张三诉李四民间借贷纠纷",
        "case_number": "(2023)京01民终123号",
        "court_name": "北京市第一中级人民法院",
        "act1_basic_info": {
            "caseNumber": "(2023)京01民终123号",
            "parties": {"plaintiff": [{"name": "张三"}], "defendant": ["李四"]},
        },
        "act1_facts": {"summary": "借款纠纷"},
        "act1_evidence": {"summary": "借条", "items": []},
        "act1_reasoning": {"summary": "借贷关系成立"},
        "act1_metadata": {"confidence": 0.8, "aiModel": "deepseek-chat"},
        "act1_confidence": 80,
        "act2_narrative": {"chapters": [{"title": "起因"}, {"title": "诉讼", "order": 5}]},
        "act2_timeline_analysis": {"turningPoints": []},
        "act2_claim_analysis": {"claims": []},
        "act3_socratic": {"level": 2, "completedNodes": ["n1", "n2"], "totalRounds": 2},
        "created_at": datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc),
        "last_saved_at": "2024-03-02T08:00:00+00:00",
    }


# =============================================================================
# Version gate
# =============================================================================

class TestVersionGate:
    """Tests for check_version"""

    def test_newer_version_rejected(self, no_sync, settings):
        with pytest.raises(VersionError) as exc_info:
            to_store({"schema_version": SCHEMA_VERSION + 1}, options=no_sync, settings=settings)

        assert exc_info.value.found == SCHEMA_VERSION + 1
        assert exc_info.value.supported == SCHEMA_VERSION
        assert exc_info.value.to_dict()["error"] == "SCHEMA_VERSION_MISMATCH"

    def test_camel_case_version_is_read(self):
        with pytest.raises(VersionError):
            check_version({"schemaVersion": 99})

    def test_older_version_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="teaching_snapshots.restorer"):
            assert check_version({"schema_version": 1}) == 1
        assert "older schema" in caplog.text

    def test_missing_version_is_zero(self):
        assert check_version({}) == 0
        assert check_version({"schema_version": "2"}) == 2

    def test_unreadable_version_is_zero(self, caplog):
        with caplog.at_level(logging.WARNING, logger="teaching_snapshots.restorer"):
            assert check_version({"schema_version": "v-two"}) == 0
        assert "Unreadable" in caplog.text

    def test_old_row_without_act_data_gets_defaults(self, no_sync, settings):
        state = to_store({"id": "s1", "schema_version": 1}, options=no_sync, settings=settings)

        assert state["session_id"] == "s1"
        assert state["session_state"] == "act1"
        assert state["current_act"] == "upload"
        assert state["upload_data"] == {"extracted_elements": None, "confidence": 0.0}
        assert state["analysis_data"] == {"result": None, "is_analyzing": False}
        assert state["story_chapters"] == []
        assert state["socratic_data"]["completed_nodes"] == set()
        assert state["socratic_data"]["level"] == 1
        assert state["summary_data"]["case_learning_report"] is None


# =============================================================================
# Field resolution
# =============================================================================

class TestToStore:
    """Tests for to_store"""

    def test_snake_case_row(self, v2_row, no_sync, settings):
        state = to_store(v2_row, options=no_sync, settings=settings)

        assert state["session_id"] == "session-42"
        assert state["session_state"] == "act3"
        assert state["current_act"] == "socratic"
        assert state["last_saved_at"] == "2024-03-02T08:00:00+00:00"

        data = state["upload_data"]["extracted_elements"]["data"]
        assert data["basicInfo"]["parties"] == {"plaintiff": ["张三"], "defendant": ["李四"], "thirdParty": []}
        assert data["facts"] == {"summary": "借款纠纷"}
        assert state["upload_data"]["confidence"] == pytest.approx(0.8)

        result = state["analysis_data"]["result"]
        assert [c["order"] for c in result["narrative"]["chapters"]] == [1, 5]
        assert result["claimAnalysis"] == {"claims": []}
        assert result["evidenceQuestions"] is None
        assert [c["title"] for c in state["story_chapters"]] == ["起因", "诉讼"]

        assert state["socratic_data"]["completed_nodes"] == {"n1", "n2"}
        assert state["socratic_data"]["level"] == 2

    def test_ui_flags_reset(self, v2_row, no_sync, settings):
        state = to_store(v2_row, options=no_sync, settings=settings)
        assert state["story_mode"] is True
        assert state["loading"] is False
        assert state["error"] is None
        assert state["socratic_data"]["is_active"] is False
        assert state["analysis_data"]["is_analyzing"] is False

    def test_camel_case_columns(self, no_sync, settings):
        row = {
            "sessionId": "s2",
            "schemaVersion": 1,
            "sessionState": "completed",
            "act1BasicInfo": {"parties": {"defendant": "某公司"}},
            "act4LearningReport": {"summary": "要点"},
        }
        state = to_store(row, options=no_sync, settings=settings)

        assert state["session_id"] == "s2"
        assert state["current_act"] == "summary"
        assert state["upload_data"]["extracted_elements"]["data"]["basicInfo"]["parties"]["defendant"] == ["某公司"]
        assert state["summary_data"]["case_learning_report"] == {"summary": "要点"}

    def test_snake_case_wins_over_camel_case(self, no_sync, settings):
        row = {"case_title": "snake", "caseTitle": "camel", "session_id": "", "sessionId": "s3"}
        state = to_store(row, options=no_sync, settings=settings)
        assert state["snapshot"].case_title == "snake"
        assert state["session_id"] == "s3"

    def test_attribute_row(self, no_sync, settings):
        row = SimpleNamespace(
            id="orm-1",
            schema_version=2,
            session_state="act2",
            act2_narrative=[{"title": "开端"}],
        )
        state = to_store(row, options=no_sync, settings=settings)
        assert state["session_id"] == "orm-1"
        assert state["current_act"] == "analysis"
        assert state["story_chapters"] == [{"title": "开端", "order": 1}]

    def test_json_text_columns(self, no_sync, settings):
        row = {
            "schema_version": 2,
            "act1_basic_info": json.dumps({"parties": {"plaintiff": [{"name": ["甲", "乙"]}]}}),
            "act1_facts": json.dumps({"summary": "事实"}),
            "act3_socratic": json.dumps({"level": 3, "completedNodes": ["a", "b", "a"]}),
            "act4_full_report": "not json",
            "act4_learning_report": json.dumps({"summary": "总结"}),
        }
        state = to_store(row, options=no_sync, settings=settings)

        data = state["upload_data"]["extracted_elements"]["data"]
        assert data["basicInfo"]["parties"]["plaintiff"] == ["甲", "乙"]
        assert data["facts"] == {"summary": "事实"}
        assert state["socratic_data"]["completed_nodes"] == {"a", "b"}
        assert state["socratic_data"]["level"] == 3
        assert state["summary_data"]["case_learning_report"] == {"summary": "总结"}

    def test_invalid_session_state_defaults_to_act1(self, no_sync, settings):
        state = to_store({"session_state": "act9"}, options=no_sync, settings=settings)
        assert state["session_state"] == "act1"

    def test_none_record(self, no_sync, settings):
        state = to_store(None, options=no_sync, settings=settings)
        assert state["snapshot"].schema_version == 0
        assert state["upload_data"]["extracted_elements"] is None


class TestLegacyRows:
    """v0 rows stored each Act as a single blob"""

    @pytest.fixture
    def v0_row(self):
        return {
            "id": "legacy-1",
            "act1_upload": {
                "extractedElements": {
                    "data": {"basicInfo": {"parties": {"plaintiff": "甲", "defendant": [{"name": "乙"}]}}},
                },
                "confidence": 75,
            },
            "act2_analysis": {
                "result": {"narrative": {"chapters": [{"title": "经过"}]}, "claimAnalysis": {"claims": []}},
            },
        }

    def test_v0_blobs(self, v0_row, no_sync, settings):
        state = to_store(v0_row, options=no_sync, settings=settings)

        data = state["upload_data"]["extracted_elements"]["data"]
        assert data["basicInfo"]["parties"] == {"plaintiff": ["甲"], "defendant": ["乙"], "thirdParty": []}
        assert state["upload_data"]["confidence"] == pytest.approx(0.75)
        assert state["analysis_data"]["result"]["claimAnalysis"] == {"claims": []}
        assert state["story_chapters"] == [{"title": "经过", "order": 1}]
        assert state["snapshot"].schema_version == 0

    def test_v0_blob_as_text(self, v0_row, no_sync, settings):
        v0_row["act1_upload"] = json.dumps(v0_row["act1_upload"])
        state = to_store(v0_row, options=no_sync, settings=settings)
        assert state["upload_data"]["confidence"] == pytest.approx(0.75)

    def test_per_field_columns_win_over_blob(self, v0_row, no_sync, settings):
        v0_row["act1_facts"] = {"summary": "新"}
        state = to_store(v0_row, options=no_sync, settings=settings)
        assert state["upload_data"]["extracted_elements"]["data"]["facts"] == {"summary": "新"}


class TestActRestorers:
    """Tests for individual Act restorers"""

    def test_act3_set_rehydration(self):
        socratic = restore_act3({"act3_socratic": {"level": 7, "completed_nodes": ["x", "y"]}})
        assert socratic["completed_nodes"] == {"x", "y"}
        assert socratic["level"] == 1

    def test_act3_missing(self):
        assert restore_act3({})["completed_nodes"] == set()

    def test_act4_prefers_full_report(self):
        summary = restore_act4({
            "act4_full_report": {"caseOverview": {"title": "完整"}},
            "act4_learning_report": {"summary": "摘要"},
        })
        assert summary["case_learning_report"] == {"caseOverview": {"title": "完整"}}
        assert summary["report"] is None

    def test_failing_act_uses_default(self, no_sync, settings, caplog):
        class BrokenRow:
            id = "broken"
            schema_version = 2
            act3_socratic = {"level": 2, "completedNodes": ["n1"]}

            @property
            def act1_basic_info(self):
                raise RuntimeError("column could not be loaded")

        with caplog.at_level(logging.ERROR, logger="teaching_snapshots.restorer"):
            state = to_store(BrokenRow(), options=no_sync, settings=settings)

        assert state["upload_data"] == {"extracted_elements": None, "confidence": 0.0}
        assert state["socratic_data"]["completed_nodes"] == {"n1"}
        assert "act1" in caplog.text


class TestProvenance:
    """Tests for the read-only snapshot block"""

    def test_provenance_fields(self, v2_row, no_sync, settings):
        v2_row["act4_ppt_url"] = "https://cdn.example.com/deck.pptx"
        snapshot = to_store(v2_row, options=no_sync, settings=settings)["snapshot"]

        assert snapshot.session_id == "session-42"
        assert snapshot.case_title == "张三诉李四民间借贷纠纷"
        assert snapshot.court_name == "北京市第一中级人民法院"
        assert snapshot.ppt_url == "https://cdn.example.com/deck.pptx"
        assert snapshot.created_at == "2024-03-01T10:00:00+00:00"
        assert snapshot.is_read_only is True
        assert snapshot.source == "database"
        assert snapshot.schema_version == 2
        assert snapshot.data_version == "2.0.0"

    def test_provenance_is_frozen(self, v2_row, no_sync, settings):
        snapshot = to_store(v2_row, options=no_sync, settings=settings)["snapshot"]
        with pytest.raises(ValidationError):
            snapshot.case_title = "changed"


class TestRoundTrip:
    """Envelopes from the builder restore directly"""

    def test_envelope_round_trip(self, no_sync):
        settings = Settings(strict_validation=True)
        state = {
            "upload_data": {
                "extracted_elements": {"data": {
                    "title": "借贷纠纷",
                    "basicInfo": {"parties": {"plaintiff": [[{"name": "张三"}]], "defendant": "李四"}},
                    "threeElements": {"facts": {"summary": "借款"}},
                }},
                "confidence": 0.9,
            },
            "analysis_data": {"result": {"narrative": [{"title": "起因"}]}},
            "socratic_data": {"level": 3, "completed_nodes": {"b", "a"}},
            "summary_data": {"case_learning_report": {"caseOverview": {"title": "借贷纠纷"}}},
        }
        envelope = to_database(state, settings=settings)
        restored = to_store(envelope, options=no_sync, settings=settings)

        data = restored["upload_data"]["extracted_elements"]["data"]
        assert data["basicInfo"]["parties"]["plaintiff"] == ["张三"]
        assert data["basicInfo"]["parties"]["defendant"] == ["李四"]
        assert restored["upload_data"]["confidence"] == pytest.approx(0.9)
        assert restored["story_chapters"] == [{"title": "起因", "order": 1}]
        assert restored["socratic_data"]["completed_nodes"] == {"a", "b"}
        assert restored["socratic_data"]["level"] == 3
        assert restored["summary_data"]["case_learning_report"] == {"caseOverview": {"title": "借贷纠纷"}}
        assert restored["session_state"] == "completed"
        assert restored["snapshot"].case_title == "借贷纠纷"
        assert restored["snapshot"].data_version == SNAPSHOT_VERSION

    def test_v1_learning_report_survives_resave(self, no_sync, settings):
        """A v1 row only holds the derived report; saving it again keeps it"""
        row = {
            "id": "v1-row",
            "schema_version": 1,
            "session_state": "completed",
            "case_title": "借贷纠纷",
            "act1_basic_info": {"caseNumber": "(2023)京01民终123号"},
            "act1_facts": {"summary": "借款"},
            "act4_learning_report": {
                "summary": "借贷关系成立",
                "keyLearnings": ["要点一", "要点二"],
                "skillsAssessed": [{"skill": "举证", "level": "intermediate", "evidence": ["借条"]}],
                "recommendations": [],
                "nextSteps": ["核对借条原件"],
            },
        }
        state = to_store(row, options=no_sync, settings=settings)
        envelope = to_database(state, settings=settings)

        report = envelope["act4"]["learningReport"]
        assert report["summary"] == "借贷关系成立"
        assert report["keyLearnings"] == ["要点一", "要点二"]
        assert report["nextSteps"] == ["核对借条原件"]
        assert "fullReport" not in envelope["act4"]
        assert envelope["sessionState"] == "completed"
