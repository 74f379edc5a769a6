"""
Teaching Snapshots - Session snapshot conversion engine
=======================================================

Converts between the UI-owned teaching-session state and the versioned,
persisted snapshot envelope:
1. Normalizing untrusted AI extraction output into canonical values
2. Building and validating snapshot envelopes
3. Restoring application state from any readable schema version
4. Syncing restored results into dependent state containers

No I/O: storage and HTTP belong to the caller.
"""

__version__ = "2.0.0"

from .converter import SnapshotConverter
from .config import ConversionOptions
from .errors import SnapshotError, SnapshotTooLargeError, SnapshotValidationError, VersionError
from .sync import DependentSinks

__all__ = [
    "SnapshotConverter",
    "ConversionOptions",
    "DependentSinks",
    "SnapshotError",
    "SnapshotTooLargeError",
    "SnapshotValidationError",
    "VersionError",
]
