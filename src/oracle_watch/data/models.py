"""Row models for persisted monitor data."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class PriceAlertRecord:
    """One anomaly-detector alert row.

    ``details`` holds the health status snapshot that raised the alert.
    """

    id: int
    symbol: str
    issue_type: str
    severity: str  # "high" for deviation, "medium" otherwise
    created_at: float
    details: dict[str, Any] = field(default_factory=dict)
    resolved: bool = False
    resolved_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "issue_type": self.issue_type,
            "severity": self.severity,
            "created_at": self.created_at,
            "details": self.details,
            "resolved": self.resolved,
            "resolved_at": self.resolved_at,
        }
