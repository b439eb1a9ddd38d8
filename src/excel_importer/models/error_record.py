from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime

"""ErrorRecord model for the structured error sink.

One record per failed unit: a row that failed checking, a row that failed to
import, or a tree node (which may span several source rows). ``rows`` holds
1-based source line numbers; an empty list means the position is unknown.

Serialized as JSON Lines with a fixed key set.
"""

__all__ = [
    "ErrorRecord",
    "STAGE_CHECK",
    "STAGE_IMPORT",
]

STAGE_CHECK = "check"
STAGE_IMPORT = "import"


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        source: source file name (or "<matrix>" when imported from memory)
        stage: "check" or "import"
        rows: 1-based line numbers the failure is attributed to
        error_type: classification in UPPER_SNAKE_CASE
        message: human readable description
    """
    timestamp: str
    source: str
    stage: str
    rows: list[int] = field(default_factory=list)
    error_type: str = "UNKNOWN"
    message: str = ""

    @staticmethod
    def create(source: str, stage: str, rows: list[int], error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            source=source,
            stage=stage,
            rows=list(rows),
            error_type=error_type,
            message=message,
        )

    @property
    def row(self) -> int:
        """First attributed line number, -1 when unknown."""
        return self.rows[0] if self.rows else -1

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
