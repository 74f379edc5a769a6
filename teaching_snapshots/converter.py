"""
Snapshot Converter
==================

Single entry point used by the API and persistence layers:

    from teaching_snapshots.converter import SnapshotConverter

    envelope = SnapshotConverter.to_database(state, ppt_url, options)
    storage.save(envelope)

    state = SnapshotConverter.to_store(storage.load(session_id), sinks=sinks)
"""

from typing import Any, Dict, Optional

from .builder import to_database
from .config import ConversionOptions
from .restorer import to_store
from .schemas import SCHEMA_VERSION, SNAPSHOT_VERSION
from .sync import DependentSinks
from .validator import ValidationReport, validate


class SnapshotConverter:
    """State <-> snapshot conversion; holds no state between calls"""

    CURRENT_VERSION = SNAPSHOT_VERSION
    CURRENT_SCHEMA_VERSION = SCHEMA_VERSION

    @staticmethod
    def to_database(
        state: Dict[str, Any],
        ppt_url: Optional[str] = None,
        options: Optional[ConversionOptions] = None,
        previous: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return to_database(state, ppt_url=ppt_url, options=options, previous=previous)

    @staticmethod
    def to_store(
        db_session: Any,
        options: Optional[ConversionOptions] = None,
        sinks: Optional[DependentSinks] = None,
    ) -> Dict[str, Any]:
        return to_store(db_session, options=options, sinks=sinks)

    @staticmethod
    def validate(envelope: Any) -> ValidationReport:
        return validate(envelope)
